"""
Timing helpers for sweeps and batch jobs.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Optional


@dataclass
class TimingResult:
    """Filled in when the timed block exits."""
    name: str
    duration_sec: float = 0.0
    success: bool = True
    error: Optional[str] = None

    @property
    def duration_ms(self) -> float:
        return self.duration_sec * 1000

    def __str__(self) -> str:
        text = f"{self.name} took {format_duration(self.duration_sec)}"
        if not self.success:
            text += f" (failed: {self.error})"
        return text


@contextmanager
def timed_operation(
    name: str,
    logger: Optional[logging.Logger] = None,
    log_level: int = logging.DEBUG
) -> Iterator[TimingResult]:
    """
    Time a block; the result's duration is set even when the block raises.

    Usage:
        with timed_operation("cluster_sweep", logger) as timing:
            detector.detect_address_clusters()
        timing.duration_sec
    """
    result = TimingResult(name=name)
    start = time.perf_counter()
    try:
        yield result
    except Exception as e:
        result.success = False
        result.error = str(e)
        raise
    finally:
        result.duration_sec = time.perf_counter() - start
        if logger:
            logger.log(log_level, str(result))


def format_duration(seconds: float) -> str:
    """Human-readable duration: 850us, 12.5ms, 3.20s, 2m 5.0s, 1h 2m 3s."""
    if seconds < 0.001:
        return f"{seconds * 1_000_000:.0f}us"
    if seconds < 1:
        return f"{seconds * 1000:.1f}ms"
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{int(minutes)}m {secs:.1f}s"
    hours, minutes = divmod(int(minutes), 60)
    return f"{hours}h {minutes}m {secs:.0f}s"

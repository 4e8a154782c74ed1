"""
Base service class and service context.

Provides common functionality for all integrity services including
logging, timing, configuration access and the shared store/clock.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Any, Callable, Iterator

from ..config import Config, get_config
from ..exceptions import (
    IntegrityError,
    InvalidStateTransitionError,
    NotFoundError,
    TransactionFailureError,
    ValidationError,
)
from ..logger import get_logger
from ..persistence import RollStore, InMemoryRollStore


PASS_THROUGH_ERRORS = (
    NotFoundError,
    InvalidStateTransitionError,
    ValidationError,
    IntegrityError,
    TransactionFailureError,
)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock: timezone-aware UTC now."""
    return datetime.now(timezone.utc)


@dataclass
class ServiceContext:
    """
    Shared context passed to every service.

    Contains:
    - Configuration
    - The roll store
    - The clock (injectable for tests)
    - The geocoder chain (built from configuration when not given)
    """

    config: Config = field(default_factory=get_config)
    store: RollStore = field(default_factory=InMemoryRollStore)
    clock: Clock = utc_now
    geocoder: Optional[Any] = None

    def now(self) -> datetime:
        return self.clock()


class BaseService:
    """
    Base class for all services.

    Provides:
    - Consistent logging
    - Timing instrumentation
    - Configuration access
    """

    # Service name for logging (override in subclass)
    name: str = "BaseService"

    def __init__(self, context: ServiceContext):
        """
        Initialize service.

        Args:
            context: Shared service context
        """
        self.context = context
        self.config = context.config
        self.store = context.store
        self.logger = get_logger(f"rollguard.{self.name}")

    @property
    def debug_mode(self) -> bool:
        """Check if debug mode is enabled."""
        return self.config.debug

    def now(self) -> datetime:
        return self.context.now()

    def log_debug(self, message: str, **kwargs: Any) -> None:
        """Log debug message (only in debug mode)."""
        if self.debug_mode:
            extra = " ".join(f"{k}={v}" for k, v in kwargs.items())
            self.logger.debug(f"{message} {extra}".strip())

    def log_info(self, message: str, **kwargs: Any) -> None:
        """Log info message."""
        extra = " ".join(f"{k}={v}" for k, v in kwargs.items())
        self.logger.info(f"{message} {extra}".strip())

    def log_warning(self, message: str, **kwargs: Any) -> None:
        """Log warning message."""
        extra = " ".join(f"{k}={v}" for k, v in kwargs.items())
        self.logger.warning(f"{message} {extra}".strip())

    def log_error(self, message: str, error: Optional[BaseException] = None) -> None:
        """Log error message."""
        if error:
            self.logger.error(f"{message}: {error}", exc_info=self.debug_mode)
        else:
            self.logger.error(message)

    @contextmanager
    def unit_of_work(self, operation: str, snapshot: bool = False) -> Iterator[None]:
        """
        Run a block as one store transaction.

        Domain errors (not found, invalid transition, bad argument,
        integrity failure) pass through unchanged. Anything else is
        rolled back and re-raised as TransactionFailureError.
        """
        try:
            with self.store.transaction(snapshot=snapshot):
                yield
        except PASS_THROUGH_ERRORS:
            raise
        except Exception as e:
            self.log_error(f"{operation} rolled back", error=e)
            raise TransactionFailureError(
                f"{operation} failed and was rolled back", operation=operation, cause=e
            ) from e

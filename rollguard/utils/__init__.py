"""
Utility functions and helpers.
"""

from .timing import timed_operation, format_duration
from .progress import get_progress

__all__ = [
    "timed_operation",
    "format_duration",
    "get_progress",
]

"""
Advance Weekly

Async job orchestration and tenant-scoped data access for AI-assisted weekly
reflections and career drafts.
"""

import importlib.metadata

__version__ = importlib.metadata.version("advance-weekly")

from .errors import (
    AccessDenied,
    AdvanceWeeklyError,
    FuturePeriodError,
    HandlerError,
    SchedulerError,
    StorageError,
    ValidationError,
)

__all__ = [
    "AccessDenied",
    "AdvanceWeeklyError",
    "FuturePeriodError",
    "HandlerError",
    "SchedulerError",
    "StorageError",
    "ValidationError",
]

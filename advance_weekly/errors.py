"""
Error taxonomy for Advance Weekly.

Direct calls raise these; asynchronous work resolves them into a failed
operation whose ``error_message`` is the exception message.
"""

from typing import Optional


class AdvanceWeeklyError(Exception):
    """Base class for all domain errors."""

    default_message = "Advance Weekly error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AdvanceWeeklyError):
    """Input rejected before touching storage (never silently corrected)."""

    default_message = "Invalid input"


class FuturePeriodError(ValidationError):
    """Artifact requested for a period later than the current one."""

    default_message = "Cannot create an artifact for a future period"


class AccessDenied(AdvanceWeeklyError):
    """Ownership violation.

    Raised identically for missing rows and rows owned by someone else so
    callers cannot probe for other tenants' ids.
    """

    default_message = "Not found or access denied"


class StorageError(AdvanceWeeklyError):
    """Storage engine failure; carries the driver message verbatim."""

    default_message = "Storage error"


class OperationStateError(StorageError):
    """Illegal operation status transition."""

    default_message = "Illegal operation status transition"


class HandlerError(AdvanceWeeklyError):
    """Failure inside a job handler."""

    default_message = "Job handler failed"


class SchedulerError(AdvanceWeeklyError):
    """Failure while processing one user during a scheduler tick."""

    default_message = "Scheduler failed for user"

    def __init__(self, owner_id: str, message: Optional[str] = None):
        self.owner_id = owner_id
        super().__init__(message)

"""
Job handler interface.

A handler owns the business logic of one operation type. The dispatcher gives
it the operation's input and a context; the handler reports progress through
the context and returns the result stored on the operation.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Dict, Optional

from ...schemas.operations import OperationType

if TYPE_CHECKING:
    from ..dispatcher import JobContext


class JobHandler(ABC):
    """Abstract base class for job handlers."""

    @property
    @abstractmethod
    def operation_type(self) -> OperationType:
        """Operation type this handler processes."""
        pass

    @property
    def estimated_duration(self) -> Optional[int]:
        """Rough runtime in seconds, shown to pollers."""
        return None

    @abstractmethod
    def process(self, input_data: Dict[str, Any], context: "JobContext") -> Any:
        """Run the job.

        Args:
            input_data: The operation's stored input
            context: Owner identity, progress reporting and data access

        Returns:
            JSON-serialisable result. A dict with ``status == "error"`` marks
            the operation failed with its ``error`` message.
        """
        pass

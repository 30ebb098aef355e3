"""Wire schemas and shared enums."""

from .operations import (
    OperationStatus,
    OperationStatusResponse,
    OperationType,
    OperationView,
    SnippetCreate,
    SnippetUpdate,
    TriggerResponse,
    WeeklyReflectionTrigger,
)

__all__ = [
    "OperationStatus",
    "OperationStatusResponse",
    "OperationType",
    "OperationView",
    "SnippetCreate",
    "SnippetUpdate",
    "TriggerResponse",
    "WeeklyReflectionTrigger",
]

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class OperationType(str, Enum):
    """Kinds of asynchronous work a handler can be registered for."""

    CAREER_PLAN_GENERATION = "career_plan_generation"
    WEEKLY_ANALYSIS = "weekly_analysis"
    PERFORMANCE_ASSESSMENT = "performance_assessment"
    INTEGRATION_SYNC = "integration_sync"
    BULK_DATA_EXPORT = "bulk_data_export"
    WEEKLY_REFLECTION = "weekly_reflection_generation"


class OperationStatus(str, Enum):
    """Operation lifecycle: queued -> running -> completed | failed."""

    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationStatus.COMPLETED, OperationStatus.FAILED)


class CamelModel(BaseModel):
    """Wire models use camelCase names but accept snake_case too."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class WeeklyReflectionTrigger(CamelModel):
    """Body of ``POST /jobs/weekly-reflection``."""

    manual: bool = False
    include_previous_context: bool = True
    include_integration_types: List[str] = Field(default_factory=list)
    week_start: Optional[date] = None


class TriggerResponse(CamelModel):
    operation_id: str


class OperationView(CamelModel):
    id: str
    operation_type: str
    status: OperationStatus
    progress: int
    current_step: Optional[str] = None
    result_data: Optional[Any] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    estimated_duration: Optional[int] = None


class OperationStatusResponse(CamelModel):
    operation: OperationView
    is_complete: bool
    time_remaining: Optional[int] = None


class SnippetCreate(CamelModel):
    year: int
    week_number: int
    content: str
    start_date: Optional[date] = None
    end_date: Optional[date] = None


class SnippetUpdate(CamelModel):
    content: str

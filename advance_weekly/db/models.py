"""
SQLAlchemy models for Advance Weekly.

Every row except ``users`` carries a ``user_id`` and belongs exclusively to
that user. Artifact projections (``to_dict``) never include ``user_id``.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)

from ..schemas.operations import OperationStatus, OperationType
from .base import Base


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Optional[Any]) -> Optional[str]:
    return value.isoformat() if value else None


operation_status_enum = Enum(
    *[status.value for status in OperationStatus],
    name="operation_status",
)

operation_type_enum = Enum(
    *[operation_type.value for operation_type in OperationType],
    name="operation_type",
)


class UserModel(Base):
    """One row per user: identity, career context and reflection preferences."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(320), nullable=False, unique=True)
    name = Column(String(200), nullable=True)

    # Career context consumed by handlers
    job_title = Column(String(200), nullable=True)
    seniority_level = Column(String(100), nullable=True)
    performance_feedback = Column(Text, nullable=True)
    onboarding_completed_at = Column(DateTime(timezone=True), nullable=True)
    career_progression_plan = Column(Text, nullable=True)
    next_level_expectations = Column(Text, nullable=True)
    company_career_ladder = Column(Text, nullable=True)
    career_plan_generated_at = Column(DateTime(timezone=True), nullable=True)
    career_plan_last_updated = Column(DateTime(timezone=True), nullable=True)

    # Reflection automation preferences (NULL = use configured default)
    reflection_auto_generate = Column(Boolean, nullable=False, default=True)
    reflection_preferred_day = Column(String(10), nullable=True)
    reflection_preferred_hour = Column(Integer, nullable=True)
    reflection_timezone = Column(String(64), nullable=True)
    reflection_include_integrations = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "email": self.email,
            "name": self.name,
            "job_title": self.job_title,
            "seniority_level": self.seniority_level,
            "performance_feedback": self.performance_feedback,
            "onboarding_completed_at": _iso(self.onboarding_completed_at),
            "career_progression_plan": self.career_progression_plan,
            "next_level_expectations": self.next_level_expectations,
            "company_career_ladder": self.company_career_ladder,
            "career_plan_generated_at": _iso(self.career_plan_generated_at),
            "career_plan_last_updated": _iso(self.career_plan_last_updated),
            "reflection_auto_generate": self.reflection_auto_generate,
            "reflection_preferred_day": self.reflection_preferred_day,
            "reflection_preferred_hour": self.reflection_preferred_hour,
            "reflection_timezone": self.reflection_timezone,
            "reflection_include_integrations": self.reflection_include_integrations,
        }


class WeeklySnippetModel(Base):
    """Period artifact: one reflection per user per ISO week."""

    __tablename__ = "weekly_snippets"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    year = Column(Integer, nullable=False)
    week_number = Column(Integer, nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    content = Column(Text, nullable=False, default="")

    # Extracted / generation metadata
    source_integration_type = Column(String(50), nullable=True)
    consolidation_id = Column(String(36), nullable=True)
    generated_from_consolidation = Column(Boolean, nullable=False, default=False)
    ai_suggestions = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "year", "week_number", name="uq_weekly_snippets_user_period"
        ),
        Index("ix_weekly_snippets_user_start", "user_id", "start_date"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "year": self.year,
            "week_number": self.week_number,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "content": self.content,
            "source_integration_type": self.source_integration_type,
            "consolidation_id": self.consolidation_id,
            "generated_from_consolidation": self.generated_from_consolidation,
            "ai_suggestions": self.ai_suggestions,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class PerformanceAssessmentModel(Base):
    """Cycle artifact: one draft per user per review cycle."""

    __tablename__ = "performance_assessments"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    cycle_name = Column(String(200), nullable=False)
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    generated_draft = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint(
            "user_id", "cycle_name", name="uq_performance_assessments_user_cycle"
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "cycle_name": self.cycle_name,
            "start_date": _iso(self.start_date),
            "end_date": _iso(self.end_date),
            "generated_draft": self.generated_draft,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class IntegrationModel(Base):
    """Connection to an external data source; credentials stay server-side."""

    __tablename__ = "integrations"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    type = Column(String(50), nullable=False)
    access_token = Column(Text, nullable=False)
    refresh_token = Column(Text, nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    config = Column(JSON, nullable=False, default=dict)
    is_active = Column(Boolean, nullable=False, default=True)
    last_sync_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow
    )

    __table_args__ = (
        UniqueConstraint("user_id", "type", name="uq_integrations_user_type"),
        Index("ix_integrations_type_active", "type", "is_active"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary (without credentials)."""
        return {
            "id": self.id,
            "type": self.type,
            "is_active": self.is_active,
            "expires_at": _iso(self.expires_at),
            "last_sync_at": _iso(self.last_sync_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


class IntegrationConsolidationModel(Base):
    """Raw integration data and its summary captured for one generation."""

    __tablename__ = "integration_consolidations"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    integration_type = Column(String(50), nullable=False)
    year = Column(Integer, nullable=False)
    week_number = Column(Integer, nullable=False)
    week_start = Column(Date, nullable=False)
    week_end = Column(Date, nullable=False)
    raw_data = Column(JSON, nullable=False, default=dict)
    consolidated_summary = Column(Text, nullable=False, default="")
    processing_status = Column(String(20), nullable=False, default="pending")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index(
            "ix_integration_consolidations_user_period",
            "user_id",
            "year",
            "week_number",
        ),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "integration_type": self.integration_type,
            "year": self.year,
            "week_number": self.week_number,
            "week_start": _iso(self.week_start),
            "week_end": _iso(self.week_end),
            "raw_data": self.raw_data,
            "consolidated_summary": self.consolidated_summary,
            "processing_status": self.processing_status,
            "created_at": _iso(self.created_at),
        }


class AsyncOperationModel(Base):
    """A tracked unit of asynchronous work. Retained after completion."""

    __tablename__ = "async_operations"

    id = Column(String(36), primary_key=True, default=new_id)
    user_id = Column(
        String(36), ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    operation_type = Column(operation_type_enum, nullable=False)
    status = Column(
        operation_status_enum,
        nullable=False,
        default=OperationStatus.QUEUED.value,
    )
    progress = Column(Integer, nullable=False, default=0)
    current_step = Column(String(255), nullable=True)

    input_data = Column(JSON, nullable=False, default=dict)
    result_data = Column(JSON, nullable=True)
    error_message = Column(Text, nullable=True)

    # Scheduler dedupe key, e.g. "weekly_reflection_generation:2025-W30"
    idempotency_key = Column(String(128), nullable=True)
    estimated_duration = Column(Integer, nullable=True)
    metadata_ = Column("metadata", JSON, nullable=False, default=dict)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    started_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_async_operations_status_created", "status", "created_at"),
        Index(
            "ix_async_operations_user_type_status",
            "user_id",
            "operation_type",
            "status",
        ),
        Index("ix_async_operations_user_key", "user_id", "idempotency_key"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert model to dictionary."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "operation_type": self.operation_type,
            "status": self.status,
            "progress": self.progress,
            "current_step": self.current_step,
            "input_data": self.input_data,
            "result_data": self.result_data,
            "error_message": self.error_message,
            "idempotency_key": self.idempotency_key,
            "estimated_duration": self.estimated_duration,
            "metadata": self.metadata_,
            "created_at": _iso(self.created_at),
            "started_at": _iso(self.started_at),
            "completed_at": _iso(self.completed_at),
        }

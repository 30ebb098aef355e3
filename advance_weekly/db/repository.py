"""
User-scoped data repository.

Every instance is bound to one owner for its lifetime and every query is
filtered by that owner; nothing here accepts an arbitrary user id. Open it per
unit of work with :func:`open_repository` so the session is released on every
exit path::

    with open_repository(user_id) as repo:
        repo.create_or_update_period_artifact(2025, 30, None, None, "## Done ...")
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

import structlog
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import AccessDenied, FuturePeriodError, StorageError, ValidationError
from ..periods import is_future_period, is_valid_period_number, period_bounds
from ..schemas.operations import OperationStatus, OperationType
from .base import get_session_local
from .models import (
    AsyncOperationModel,
    IntegrationConsolidationModel,
    IntegrationModel,
    PerformanceAssessmentModel,
    UserModel,
    WeeklySnippetModel,
    new_id,
    utcnow,
)
from .operation_store import OPEN_STATUSES, OperationStore

logger = structlog.get_logger()

Clock = Callable[[], datetime]

SNIPPET_METADATA_FIELDS = (
    "source_integration_type",
    "consolidation_id",
    "generated_from_consolidation",
    "ai_suggestions",
)

PROFILE_FIELDS = (
    "name",
    "job_title",
    "seniority_level",
    "performance_feedback",
    "onboarding_completed_at",
    "career_progression_plan",
    "next_level_expectations",
    "company_career_ladder",
    "career_plan_generated_at",
    "career_plan_last_updated",
    "reflection_auto_generate",
    "reflection_preferred_day",
    "reflection_preferred_hour",
    "reflection_timezone",
    "reflection_include_integrations",
)


def _as_date(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.date()
    return value


def _upsert(
    db: Session,
    model: type,
    values: Dict[str, Any],
    conflict_columns: Sequence[str],
    update_columns: Sequence[str],
) -> None:
    """Single-statement INSERT ... ON CONFLICT DO UPDATE.

    The unique constraint on ``conflict_columns`` serialises concurrent
    writers; the primary key is never part of the update set.
    """
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        raise StorageError(f"Atomic upsert is not supported on dialect {dialect!r}")

    stmt = insert(model).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=list(conflict_columns),
        set_={column: stmt.excluded[column] for column in update_columns},
    )
    db.execute(stmt)


class ScopedDataRepository:
    """Data access bound to exactly one owner."""

    def __init__(self, owner_id: str, db: Session, clock: Optional[Clock] = None):
        if not owner_id:
            raise ValidationError("owner_id is required")
        self.owner_id = owner_id
        self.db = db
        self.clock = clock or utcnow
        self.operations = OperationStore(db)
        self._closed = False

    def __enter__(self) -> "ScopedDataRepository":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        """Release the underlying session."""
        if not self._closed:
            self.db.close()
            self._closed = True

    @contextmanager
    def _storage(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error(
                "storage_error", action=action, owner_id=self.owner_id, error=str(exc)
            )
            raise StorageError(str(exc)) from exc

    # Profile

    def get_profile(self) -> Optional[Dict[str, Any]]:
        with self._storage("get_profile"):
            user = self.db.get(UserModel, self.owner_id)
            return user.to_dict() if user else None

    def update_profile(self, **fields: Any) -> Dict[str, Any]:
        """Merge ``fields`` onto the owner's own profile row."""
        unknown = sorted(set(fields) - set(PROFILE_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown profile fields: {', '.join(unknown)}")
        with self._storage("update_profile"):
            user = self.db.get(UserModel, self.owner_id)
            if user is None:
                raise AccessDenied("Profile not found or access denied")
            for key, value in fields.items():
                setattr(user, key, value)
            self.db.commit()
            self.db.refresh(user)
            return user.to_dict()

    # Period artifacts (weekly snippets)

    def list_period_artifacts(self) -> List[Dict[str, Any]]:
        with self._storage("list_period_artifacts"):
            rows = (
                self.db.query(WeeklySnippetModel)
                .filter(WeeklySnippetModel.user_id == self.owner_id)
                .order_by(desc(WeeklySnippetModel.start_date))
                .all()
            )
            return [row.to_dict() for row in rows]

    def get_period_artifact(self, year: int, period: int) -> Optional[Dict[str, Any]]:
        with self._storage("get_period_artifact"):
            row = self._period_row(year, period)
            return row.to_dict() if row else None

    def list_period_artifacts_in_range(
        self, start: date, end: date
    ) -> List[Dict[str, Any]]:
        """Artifacts whose span overlaps ``[start, end]``, oldest first."""
        with self._storage("list_period_artifacts_in_range"):
            rows = (
                self.db.query(WeeklySnippetModel)
                .filter(
                    WeeklySnippetModel.user_id == self.owner_id,
                    WeeklySnippetModel.start_date <= _as_date(end),
                    WeeklySnippetModel.end_date >= _as_date(start),
                )
                .order_by(WeeklySnippetModel.start_date.asc())
                .all()
            )
            return [row.to_dict() for row in rows]

    def create_or_update_period_artifact(
        self,
        year: int,
        period: int,
        start_date: Optional[date],
        end_date: Optional[date],
        content: str,
        **metadata: Any,
    ) -> Dict[str, Any]:
        """Create the owner's artifact for a period, or update it in place.

        Dates default to the canonical Monday-Friday span; explicit dates that
        differ from it are rejected.
        """
        if not is_valid_period_number(period):
            raise ValidationError(
                "Period number must be a valid ISO week number (1-53)"
            )
        period = int(period)
        if is_future_period(period, year, self.clock()):
            raise FuturePeriodError(
                f"Cannot create an artifact for a future period ({year}-W{period:02d})"
            )
        canonical_start, canonical_end = period_bounds(year, period)
        start_date = _as_date(start_date) or canonical_start
        end_date = _as_date(end_date) or canonical_end
        if (start_date, end_date) != (canonical_start, canonical_end):
            raise ValidationError(
                f"Artifact dates must span {canonical_start.isoformat()} to "
                f"{canonical_end.isoformat()} for {year}-W{period:02d}"
            )
        unknown = sorted(set(metadata) - set(SNIPPET_METADATA_FIELDS))
        if unknown:
            raise ValidationError(f"Unknown artifact fields: {', '.join(unknown)}")

        now = self.clock()
        values = {
            "id": new_id(),
            "user_id": self.owner_id,
            "year": year,
            "week_number": period,
            "start_date": start_date,
            "end_date": end_date,
            "content": content,
            "generated_from_consolidation": False,
            "created_at": now,
            "updated_at": now,
            **metadata,
        }
        update_columns = ["start_date", "end_date", "content", "updated_at", *metadata]

        with self._storage("create_or_update_period_artifact"):
            _upsert(
                self.db,
                WeeklySnippetModel,
                values,
                conflict_columns=("user_id", "year", "week_number"),
                update_columns=update_columns,
            )
            self.db.commit()
            self.db.expire_all()
            return self._period_row(year, period).to_dict()

    def update_period_artifact(self, artifact_id: str, content: str) -> Dict[str, Any]:
        with self._storage("update_period_artifact"):
            row = self._owned(WeeklySnippetModel, artifact_id)
            row.content = content
            self.db.commit()
            self.db.refresh(row)
            return row.to_dict()

    def delete_period_artifact(self, artifact_id: str) -> bool:
        with self._storage("delete_period_artifact"):
            row = self._owned(WeeklySnippetModel, artifact_id)
            self.db.delete(row)
            self.db.commit()
            return True

    def _period_row(self, year: int, period: int) -> Optional[WeeklySnippetModel]:
        return (
            self.db.query(WeeklySnippetModel)
            .filter(
                WeeklySnippetModel.user_id == self.owner_id,
                WeeklySnippetModel.year == year,
                WeeklySnippetModel.week_number == period,
            )
            .first()
        )

    def _owned(self, model: type, row_id: str) -> Any:
        """Load a row by id, refusing identically when missing or foreign."""
        row = self.db.get(model, row_id)
        if row is None or row.user_id != self.owner_id:
            raise AccessDenied()
        return row

    # Cycle artifacts (performance assessments)

    def list_cycle_artifacts(self) -> List[Dict[str, Any]]:
        with self._storage("list_cycle_artifacts"):
            rows = (
                self.db.query(PerformanceAssessmentModel)
                .filter(PerformanceAssessmentModel.user_id == self.owner_id)
                .order_by(desc(PerformanceAssessmentModel.created_at))
                .all()
            )
            return [row.to_dict() for row in rows]

    def create_cycle_artifact(
        self,
        cycle_name: str,
        start_date: date,
        end_date: date,
        generated_draft: str,
    ) -> Dict[str, Any]:
        """Create the owner's draft for a cycle, or update it in place."""
        if not cycle_name or not cycle_name.strip():
            raise ValidationError("cycle_name is required")
        start_date, end_date = _as_date(start_date), _as_date(end_date)
        if end_date < start_date:
            raise ValidationError("Cycle end_date must not precede start_date")

        now = self.clock()
        values = {
            "id": new_id(),
            "user_id": self.owner_id,
            "cycle_name": cycle_name,
            "start_date": start_date,
            "end_date": end_date,
            "generated_draft": generated_draft,
            "created_at": now,
            "updated_at": now,
        }
        with self._storage("create_cycle_artifact"):
            _upsert(
                self.db,
                PerformanceAssessmentModel,
                values,
                conflict_columns=("user_id", "cycle_name"),
                update_columns=("start_date", "end_date", "generated_draft", "updated_at"),
            )
            self.db.commit()
            self.db.expire_all()
            row = (
                self.db.query(PerformanceAssessmentModel)
                .filter(
                    PerformanceAssessmentModel.user_id == self.owner_id,
                    PerformanceAssessmentModel.cycle_name == cycle_name,
                )
                .one()
            )
            return row.to_dict()

    def update_cycle_artifact(
        self, artifact_id: str, generated_draft: str
    ) -> Dict[str, Any]:
        with self._storage("update_cycle_artifact"):
            row = self._owned(PerformanceAssessmentModel, artifact_id)
            row.generated_draft = generated_draft
            self.db.commit()
            self.db.refresh(row)
            return row.to_dict()

    def delete_cycle_artifact(self, artifact_id: str) -> bool:
        with self._storage("delete_cycle_artifact"):
            row = self._owned(PerformanceAssessmentModel, artifact_id)
            self.db.delete(row)
            self.db.commit()
            return True

    # Integrations

    def list_integrations(self, active_only: bool = False) -> List[Dict[str, Any]]:
        with self._storage("list_integrations"):
            query = self.db.query(IntegrationModel).filter(
                IntegrationModel.user_id == self.owner_id
            )
            if active_only:
                query = query.filter(IntegrationModel.is_active.is_(True))
            return [row.to_dict() for row in query.order_by(IntegrationModel.type).all()]

    def upsert_integration(
        self,
        integration_type: str,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        config: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Connect (or reconnect and reactivate) an integration."""
        now = self.clock()
        values = {
            "id": new_id(),
            "user_id": self.owner_id,
            "type": integration_type,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "expires_at": expires_at,
            "config": config or {},
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        with self._storage("upsert_integration"):
            _upsert(
                self.db,
                IntegrationModel,
                values,
                conflict_columns=("user_id", "type"),
                update_columns=(
                    "access_token",
                    "refresh_token",
                    "expires_at",
                    "config",
                    "is_active",
                    "updated_at",
                ),
            )
            self.db.commit()
            self.db.expire_all()
            return self._integration_row(integration_type).to_dict()

    def get_integration_credentials(
        self, integration_type: str
    ) -> Optional[Dict[str, Any]]:
        """Tokens for an active integration; for handlers, never for clients."""
        with self._storage("get_integration_credentials"):
            row = self._integration_row(integration_type)
            if row is None or not row.is_active:
                return None
            return {
                "type": row.type,
                "access_token": row.access_token,
                "refresh_token": row.refresh_token,
                "expires_at": row.expires_at,
                "config": row.config or {},
            }

    def deactivate_integration(self, integration_id: str) -> Dict[str, Any]:
        with self._storage("deactivate_integration"):
            row = self._owned(IntegrationModel, integration_id)
            row.is_active = False
            self.db.commit()
            self.db.refresh(row)
            return row.to_dict()

    def mark_integration_synced(
        self, integration_type: str, when: Optional[datetime] = None
    ) -> None:
        with self._storage("mark_integration_synced"):
            row = self._integration_row(integration_type)
            if row is None:
                return
            row.last_sync_at = when or self.clock()
            self.db.commit()

    def _integration_row(self, integration_type: str) -> Optional[IntegrationModel]:
        return (
            self.db.query(IntegrationModel)
            .filter(
                IntegrationModel.user_id == self.owner_id,
                IntegrationModel.type == integration_type,
            )
            .first()
        )

    # Integration consolidations

    def create_integration_consolidation(
        self,
        integration_type: str,
        year: int,
        period: int,
        week_start: date,
        week_end: date,
        raw_data: Dict[str, Any],
        consolidated_summary: str,
        processing_status: str = "completed",
    ) -> Dict[str, Any]:
        with self._storage("create_integration_consolidation"):
            row = IntegrationConsolidationModel(
                user_id=self.owner_id,
                integration_type=integration_type,
                year=year,
                week_number=period,
                week_start=_as_date(week_start),
                week_end=_as_date(week_end),
                raw_data=raw_data,
                consolidated_summary=consolidated_summary,
                processing_status=processing_status,
            )
            self.db.add(row)
            self.db.commit()
            self.db.refresh(row)
            return row.to_dict()

    def list_integration_consolidations(
        self,
        integration_type: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        with self._storage("list_integration_consolidations"):
            query = self.db.query(IntegrationConsolidationModel).filter(
                IntegrationConsolidationModel.user_id == self.owner_id
            )
            if integration_type:
                query = query.filter(
                    IntegrationConsolidationModel.integration_type == integration_type
                )
            query = query.order_by(
                desc(IntegrationConsolidationModel.year),
                desc(IntegrationConsolidationModel.week_number),
            )
            if limit:
                query = query.limit(limit)
            return [row.to_dict() for row in query.all()]

    # Async operations

    def create_operation(
        self,
        operation_type: OperationType,
        input_data: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        estimated_duration: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        with self._storage("create_operation"):
            operation = self.operations.create(
                self.owner_id,
                operation_type,
                input_data=input_data,
                idempotency_key=idempotency_key,
                estimated_duration=estimated_duration,
                metadata=metadata,
            )
            return operation.to_dict()

    def get_operation(self, operation_id: str) -> Optional[Dict[str, Any]]:
        """The owner's operation, or None for unknown and foreign ids alike."""
        with self._storage("get_operation"):
            operation = self.operations.get(operation_id, owner_id=self.owner_id)
            return operation.to_dict() if operation else None

    def list_operations(
        self,
        operation_type: Optional[OperationType] = None,
        status: Optional[OperationStatus] = None,
        limit: int = 10,
    ) -> List[Dict[str, Any]]:
        with self._storage("list_operations"):
            return [
                operation.to_dict()
                for operation in self.operations.list_for_owner(
                    self.owner_id, operation_type, status, limit
                )
            ]

    def find_open_operation(
        self,
        operation_type: OperationType,
        idempotency_key: Optional[str] = None,
        statuses=OPEN_STATUSES,
    ) -> Optional[Dict[str, Any]]:
        with self._storage("find_open_operation"):
            operation: Optional[AsyncOperationModel] = self.operations.find_open(
                self.owner_id, operation_type, idempotency_key, statuses
            )
            return operation.to_dict() if operation else None


@contextmanager
def open_repository(
    owner_id: str,
    session_factory: Optional[sessionmaker] = None,
    clock: Optional[Clock] = None,
) -> Iterator[ScopedDataRepository]:
    """Open a repository for one unit of work and always close it."""
    if not owner_id:
        raise ValidationError("owner_id is required")
    session_factory = session_factory or get_session_local()
    repository = ScopedDataRepository(owner_id, session_factory(), clock=clock)
    try:
        yield repository
    finally:
        repository.close()

"""
Operation store: persistence for async operations and their state machine.

Status transitions are single conditional UPDATEs so two dispatchers can never
both move the same row, and progress can only move forward.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import desc, update
from sqlalchemy.orm import Session

from ..errors import OperationStateError
from ..schemas.operations import OperationStatus, OperationType
from .models import AsyncOperationModel

# Statuses that block a new operation for the same idempotency key.
OPEN_STATUSES = (
    OperationStatus.QUEUED.value,
    OperationStatus.RUNNING.value,
    OperationStatus.COMPLETED.value,
)


def clamp_progress(percent: float) -> int:
    return int(min(100, max(0, percent)))


class OperationStore:
    """Service for managing async operations in the database."""

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        owner_id: str,
        operation_type: OperationType,
        input_data: Optional[Dict[str, Any]] = None,
        idempotency_key: Optional[str] = None,
        estimated_duration: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> AsyncOperationModel:
        """Create a new operation with status 'queued'."""
        operation = AsyncOperationModel(
            user_id=owner_id,
            operation_type=OperationType(operation_type).value,
            status=OperationStatus.QUEUED.value,
            progress=0,
            input_data=input_data or {},
            idempotency_key=idempotency_key,
            estimated_duration=estimated_duration,
            metadata_=metadata or {},
        )
        self.db.add(operation)
        self.db.commit()
        self.db.refresh(operation)
        return operation

    def get(
        self, operation_id: str, owner_id: Optional[str] = None
    ) -> Optional[AsyncOperationModel]:
        """Get an operation by ID, optionally restricted to one owner."""
        query = self.db.query(AsyncOperationModel).filter(
            AsyncOperationModel.id == operation_id
        )
        if owner_id is not None:
            query = query.filter(AsyncOperationModel.user_id == owner_id)
        return query.first()

    def list_for_owner(
        self,
        owner_id: str,
        operation_type: Optional[OperationType] = None,
        status: Optional[OperationStatus] = None,
        limit: int = 10,
    ) -> List[AsyncOperationModel]:
        """Most recent operations of one owner, newest first."""
        query = self.db.query(AsyncOperationModel).filter(
            AsyncOperationModel.user_id == owner_id
        )
        if operation_type is not None:
            query = query.filter(
                AsyncOperationModel.operation_type == OperationType(operation_type).value
            )
        if status is not None:
            query = query.filter(
                AsyncOperationModel.status == OperationStatus(status).value
            )
        return query.order_by(desc(AsyncOperationModel.created_at)).limit(limit).all()

    def find_open(
        self,
        owner_id: str,
        operation_type: OperationType,
        idempotency_key: Optional[str] = None,
        statuses: Iterable[str] = OPEN_STATUSES,
    ) -> Optional[AsyncOperationModel]:
        """Most recent operation of a type in one of ``statuses``."""
        query = self.db.query(AsyncOperationModel).filter(
            AsyncOperationModel.user_id == owner_id,
            AsyncOperationModel.operation_type == OperationType(operation_type).value,
            AsyncOperationModel.status.in_(list(statuses)),
        )
        if idempotency_key is not None:
            query = query.filter(AsyncOperationModel.idempotency_key == idempotency_key)
        return query.order_by(desc(AsyncOperationModel.created_at)).first()

    def list_queued(self, limit: int = 50) -> List[AsyncOperationModel]:
        """Queued operations across all owners, oldest first."""
        return (
            self.db.query(AsyncOperationModel)
            .filter(AsyncOperationModel.status == OperationStatus.QUEUED.value)
            .order_by(AsyncOperationModel.created_at.asc())
            .limit(limit)
            .all()
        )

    def list_running(
        self, started_before: Optional[datetime] = None
    ) -> List[AsyncOperationModel]:
        """Running operations, oldest first; nothing reclaims these automatically."""
        query = self.db.query(AsyncOperationModel).filter(
            AsyncOperationModel.status == OperationStatus.RUNNING.value
        )
        if started_before is not None:
            query = query.filter(AsyncOperationModel.started_at < started_before)
        return query.order_by(AsyncOperationModel.started_at.asc()).all()

    def claim(self, operation_id: str) -> bool:
        """Atomically move a queued operation to running.

        Returns False when another dispatcher got there first or the
        operation is not queued.
        """
        result = self.db.execute(
            update(AsyncOperationModel)
            .where(
                AsyncOperationModel.id == operation_id,
                AsyncOperationModel.status == OperationStatus.QUEUED.value,
            )
            .values(
                status=OperationStatus.RUNNING.value,
                progress=0,
                started_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def update_progress(
        self, operation_id: str, percent: float, message: Optional[str] = None
    ) -> bool:
        """Record progress for a running operation.

        Progress is clamped to [0, 100]; a value lower than the stored one is
        ignored. Returns whether the row changed.
        """
        progress = clamp_progress(percent)
        values: Dict[str, Any] = {"progress": progress}
        if message:
            values["current_step"] = message[:255]
        result = self.db.execute(
            update(AsyncOperationModel)
            .where(
                AsyncOperationModel.id == operation_id,
                AsyncOperationModel.status == OperationStatus.RUNNING.value,
                AsyncOperationModel.progress <= progress,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        return result.rowcount == 1

    def complete(self, operation_id: str, result_data: Any) -> None:
        """Move a running operation to completed with its result."""
        self._finish(
            operation_id,
            status=OperationStatus.COMPLETED,
            progress=100,
            result_data=result_data,
        )

    def fail(self, operation_id: str, error_message: str) -> None:
        """Move a running operation to failed with an error message."""
        self._finish(
            operation_id,
            status=OperationStatus.FAILED,
            error_message=error_message,
        )

    def _finish(self, operation_id: str, status: OperationStatus, **values: Any) -> None:
        result = self.db.execute(
            update(AsyncOperationModel)
            .where(
                AsyncOperationModel.id == operation_id,
                AsyncOperationModel.status == OperationStatus.RUNNING.value,
            )
            .values(
                status=status.value,
                completed_at=datetime.now(timezone.utc),
                **values,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        if result.rowcount != 1:
            raise OperationStateError(
                f"Operation {operation_id} is not running; cannot mark it {status.value}"
            )

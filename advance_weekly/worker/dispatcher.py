"""
Job dispatcher.

Flow for one operation:
1. Load: unknown or not queued -> nothing to do
2. Claim: atomically move queued -> running
3. Execute: look up the handler for the operation type and run it
4. Finish: completed with the handler's result, or failed with its message

Handler failures never escape ``dispatch``; they end up on the operation.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional

import structlog
from sqlalchemy.orm import sessionmaker

from ..db.operation_store import OperationStore
from ..db.repository import ScopedDataRepository, open_repository
from ..errors import HandlerError, OperationStateError
from ..schemas.operations import OperationStatus, OperationType
from .handlers.base import JobHandler

logger = structlog.get_logger()


class HandlerRegistry:
    """Operation type -> handler mapping, built once at process start."""

    def __init__(self, handlers: Optional[List[JobHandler]] = None):
        self._handlers: Dict[str, JobHandler] = {}
        for handler in handlers or []:
            self.register(handler)

    def register(self, handler: JobHandler) -> None:
        key = OperationType(handler.operation_type).value
        self._handlers[key] = handler
        logger.debug("handler_registered", operation_type=key)

    def get(self, operation_type: str) -> Optional[JobHandler]:
        return self._handlers.get(OperationType(operation_type).value)

    def __contains__(self, operation_type: object) -> bool:
        try:
            return OperationType(operation_type).value in self._handlers
        except ValueError:
            return False

    @property
    def types(self) -> List[str]:
        return sorted(self._handlers)


@dataclass
class JobContext:
    """What a handler may touch while it runs."""

    owner_id: str
    operation_id: str
    session_factory: sessionmaker = field(repr=False)
    progress_reporter: Callable[[float, Optional[str]], bool] = field(repr=False)

    def update_progress(self, percent: float, message: Optional[str] = None) -> bool:
        return self.progress_reporter(percent, message)

    @contextmanager
    def open_repository(self) -> Iterator[ScopedDataRepository]:
        """Repository bound to the operation's owner."""
        with open_repository(self.owner_id, self.session_factory) as repository:
            yield repository


class Dispatcher:
    """Runs queued operations through their registered handlers."""

    def __init__(self, registry: HandlerRegistry, session_factory: sessionmaker):
        self.registry = registry
        self.session_factory = session_factory

    def estimated_duration(self, operation_type: OperationType) -> Optional[int]:
        handler = self.registry.get(operation_type)
        return handler.estimated_duration if handler else None

    def dispatch(self, operation_id: str) -> Optional[Dict[str, Any]]:
        """Execute one operation to a terminal state.

        Returns the operation as stored afterwards, or None for unknown ids.
        """
        db = self.session_factory()
        try:
            store = OperationStore(db)
            operation = store.get(operation_id)
            if operation is None:
                logger.warning("dispatch_unknown_operation", operation_id=operation_id)
                return None

            log = logger.bind(
                operation_id=operation.id,
                owner_id=operation.user_id,
                operation_type=operation.operation_type,
            )
            if operation.status != OperationStatus.QUEUED.value:
                log.info("dispatch_skipped", status=operation.status)
                return operation.to_dict()

            if not store.claim(operation.id):
                log.info("dispatch_claim_lost")
                db.expire_all()
                return store.get(operation_id).to_dict()

            log.info("operation_started")
            self._run(
                store,
                operation.id,
                operation.user_id,
                operation.operation_type,
                operation.input_data or {},
                log,
            )

            db.expire_all()
            return store.get(operation_id).to_dict()
        finally:
            db.close()

    def _run(
        self,
        store: OperationStore,
        operation_id: str,
        owner_id: str,
        operation_type: str,
        input_data: Dict[str, Any],
        log: Any,
    ) -> None:
        def report(percent: float, message: Optional[str] = None) -> bool:
            changed = store.update_progress(operation_id, percent, message)
            log.debug("operation_progress", progress=percent, step=message)
            return changed

        context = JobContext(
            owner_id=owner_id,
            operation_id=operation_id,
            session_factory=self.session_factory,
            progress_reporter=report,
        )

        try:
            handler = self.registry.get(operation_type)
            if handler is None:
                raise HandlerError(f"No handler registered for job type: {operation_type}")
            result = handler.process(input_data, context)
        except Exception as e:
            message = str(e) or e.__class__.__name__
            log.error("operation_failed", error=message, exc_info=True)
            self._fail(store, operation_id, message, log)
            return

        if isinstance(result, dict) and result.get("status") == "error":
            message = result.get("error") or "Job handler reported an error"
            log.warning("operation_failed", error=message)
            self._fail(store, operation_id, message, log)
            return

        try:
            store.complete(operation_id, result if result is not None else {})
        except OperationStateError as e:
            log.error("operation_complete_rejected", error=e.message)
            return
        except Exception as e:
            # Unstorable result (e.g. not JSON serialisable) or a failed UPDATE
            store.db.rollback()
            message = f"Could not store job result: {str(e) or e.__class__.__name__}"
            log.error("operation_failed", error=message, exc_info=True)
            self._fail(store, operation_id, message, log)
            return
        log.info("operation_completed")

    def _fail(
        self, store: OperationStore, operation_id: str, message: str, log: Any
    ) -> None:
        """Record a failure; a storage error here is logged, not raised."""
        try:
            store.fail(operation_id, message)
        except Exception as e:
            store.db.rollback()
            log.exception("operation_fail_not_recorded", error=str(e))

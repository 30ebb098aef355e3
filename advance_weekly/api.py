"""
FastAPI application: job trigger, operation status polling and scoped
snippet CRUD.

The caller's identity arrives in the ``X-User-Id`` header; authenticating it
is the job of whatever sits in front of this service.
"""

from __future__ import annotations

import importlib.metadata
from collections.abc import AsyncGenerator, Generator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .config import Settings, get_settings
from .db.base import get_db, init_database
from .db.repository import ScopedDataRepository
from .errors import AccessDenied, StorageError, ValidationError
from .logging_config import configure_logging
from .periods import is_future_period, iso_period_number, period_bounds, period_key
from .schemas.operations import (
    OperationStatus,
    OperationStatusResponse,
    OperationType,
    OperationView,
    SnippetCreate,
    SnippetUpdate,
    TriggerResponse,
    WeeklyReflectionTrigger,
)
from .worker.dispatcher import Dispatcher
from .worker.registry import build_dispatcher
from .worker.scheduler import reflection_idempotency_key

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    configure_logging()
    settings = get_settings()
    logger.info("api_starting", app_name=settings.app_name, environment=settings.environment)
    init_database()
    app.state.dispatcher = build_dispatcher()
    yield
    logger.info("api_stopped")


app = FastAPI(
    title=get_settings().app_name,
    description="Weekly reflections and career drafts generated by async jobs",
    version=importlib.metadata.version("advance-weekly"),
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error mapping


@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(AccessDenied)
async def access_denied_handler(request: Request, exc: AccessDenied) -> JSONResponse:
    # Identical for missing and foreign rows
    return JSONResponse(status_code=404, content={"detail": AccessDenied.default_message})


@app.exception_handler(StorageError)
async def storage_error_handler(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("storage_error_response", path=request.url.path, error=exc.message)
    return JSONResponse(status_code=500, content={"detail": exc.message})


# Dependencies


def get_owner_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_repository(
    owner_id: str = Depends(get_owner_id),
    db: Session = Depends(get_db),
) -> Generator[ScopedDataRepository, None, None]:
    """Repository bound to the caller for the duration of one request."""
    repository = ScopedDataRepository(owner_id, db)
    try:
        yield repository
    finally:
        repository.close()


def get_dispatcher(request: Request) -> Dispatcher:
    dispatcher = getattr(request.app.state, "dispatcher", None)
    if dispatcher is None:
        dispatcher = build_dispatcher()
        request.app.state.dispatcher = dispatcher
    return dispatcher


# Health


@app.get("/healthz", tags=["system"])
def healthz() -> Dict[str, str]:
    """Health check endpoint."""
    return {"status": "ok"}


@app.get("/version", tags=["system"])
def version() -> Dict[str, str]:
    return {"version": importlib.metadata.version("advance-weekly")}


# Jobs


@app.post(
    "/jobs/weekly-reflection",
    response_model=TriggerResponse,
    status_code=202,
    tags=["jobs"],
)
def trigger_weekly_reflection(
    body: WeeklyReflectionTrigger,
    background_tasks: BackgroundTasks,
    repo: ScopedDataRepository = Depends(get_repository),
    dispatcher: Dispatcher = Depends(get_dispatcher),
    settings: Settings = Depends(get_settings),
) -> TriggerResponse:
    """
    Queue generation of the caller's weekly reflection.

    Returns immediately with the operation id; progress is observed by
    polling ``GET /async-operations/{id}``. A reflection already queued or
    running for the caller is returned instead of starting another one.
    """
    in_flight = repo.find_open_operation(
        OperationType.WEEKLY_REFLECTION,
        statuses=(OperationStatus.QUEUED.value, OperationStatus.RUNNING.value),
    )
    if in_flight:
        logger.info(
            "weekly_reflection_in_flight",
            owner_id=repo.owner_id,
            operation_id=in_flight["id"],
        )
        return TriggerResponse(operation_id=in_flight["id"])

    now = datetime.now(timezone.utc)
    year, period = iso_period_number(body.week_start or now)
    if is_future_period(period, year, now):
        raise ValidationError(
            f"Cannot create an artifact for a future period ({period_key(year, period)})"
        )
    start, end = period_bounds(year, period)

    operation = repo.create_operation(
        OperationType.WEEKLY_REFLECTION,
        input_data={
            "owner_id": repo.owner_id,
            "period_start": start.isoformat(),
            "period_end": end.isoformat(),
            "include_previous_context": body.include_previous_context,
            "include_integration_types": body.include_integration_types,
            "manual": body.manual,
        },
        idempotency_key=reflection_idempotency_key(year, period),
        estimated_duration=dispatcher.estimated_duration(OperationType.WEEKLY_REFLECTION),
        metadata={
            "trigger_type": "manual" if body.manual else "automatic",
            "requested_at": now.isoformat(),
        },
    )
    logger.info(
        "weekly_reflection_queued",
        owner_id=repo.owner_id,
        operation_id=operation["id"],
        period=period_key(year, period),
    )

    if settings.dispatch_inline:
        background_tasks.add_task(dispatcher.dispatch, operation["id"])

    return TriggerResponse(operation_id=operation["id"])


def _time_remaining(operation: Dict[str, Any]) -> Optional[int]:
    if operation["status"] != OperationStatus.RUNNING.value:
        return None
    if not operation["estimated_duration"] or not operation["started_at"]:
        return None
    started_at = datetime.fromisoformat(operation["started_at"])
    if started_at.tzinfo is None:
        started_at = started_at.replace(tzinfo=timezone.utc)
    elapsed = (datetime.now(timezone.utc) - started_at).total_seconds()
    return max(0, int(operation["estimated_duration"] - elapsed))


@app.get(
    "/async-operations/{operation_id}",
    response_model=OperationStatusResponse,
    tags=["jobs"],
)
def get_operation_status(
    operation_id: str,
    repo: ScopedDataRepository = Depends(get_repository),
) -> OperationStatusResponse:
    """Current state of one of the caller's operations."""
    operation = repo.get_operation(operation_id)
    if operation is None:
        raise HTTPException(status_code=404, detail="Operation not found")

    return OperationStatusResponse(
        operation=OperationView.model_validate(operation),
        is_complete=OperationStatus(operation["status"]).is_terminal,
        time_remaining=_time_remaining(operation),
    )


@app.get("/async-operations", response_model=List[OperationView], tags=["jobs"])
def list_operations(
    operation_type: Optional[OperationType] = None,
    status: Optional[OperationStatus] = None,
    limit: int = 10,
    repo: ScopedDataRepository = Depends(get_repository),
) -> List[OperationView]:
    """The caller's most recent operations, newest first."""
    return [
        OperationView.model_validate(operation)
        for operation in repo.list_operations(operation_type, status, limit)
    ]


# Snippets


@app.get("/snippets", tags=["snippets"])
def list_snippets(
    repo: ScopedDataRepository = Depends(get_repository),
) -> List[Dict[str, Any]]:
    return repo.list_period_artifacts()


@app.post("/snippets", status_code=201, tags=["snippets"])
def create_snippet(
    body: SnippetCreate,
    repo: ScopedDataRepository = Depends(get_repository),
) -> Dict[str, Any]:
    """Create or update the caller's snippet for one ISO week."""
    return repo.create_or_update_period_artifact(
        body.year,
        body.week_number,
        body.start_date,
        body.end_date,
        body.content,
    )


@app.put("/snippets/{snippet_id}", tags=["snippets"])
def update_snippet(
    snippet_id: str,
    body: SnippetUpdate,
    repo: ScopedDataRepository = Depends(get_repository),
) -> Dict[str, Any]:
    return repo.update_period_artifact(snippet_id, body.content)


@app.delete("/snippets/{snippet_id}", tags=["snippets"])
def delete_snippet(
    snippet_id: str,
    repo: ScopedDataRepository = Depends(get_repository),
) -> Dict[str, str]:
    repo.delete_period_artifact(snippet_id)
    return {"status": "deleted", "id": snippet_id}

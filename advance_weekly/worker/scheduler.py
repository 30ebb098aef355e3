"""
Weekly reflection scheduler.

Each tick walks the eligible users (onboarded, auto-generation on, an active
integration of a relevant type), asks the trigger policy whether the user is
due, and enqueues at most one reflection per user per period. A period that
already has an artifact, or a queued, running or completed reflection
operation, is skipped; failed operations do not block a retry.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Sequence
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy import exists
from sqlalchemy.orm import sessionmaker

from ..config import Settings, get_settings
from ..db.models import IntegrationModel, UserModel
from ..db.repository import open_repository
from ..errors import SchedulerError
from ..periods import current_period, period_bounds, period_key
from ..schemas.operations import OperationType
from .dispatcher import Dispatcher

logger = structlog.get_logger()

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


def reflection_idempotency_key(year: int, period: int) -> str:
    return f"{OperationType.WEEKLY_REFLECTION.value}:{period_key(year, period)}"


class TriggerPolicy(ABC):
    """Decides whether a user's reflection is due at ``now``."""

    @abstractmethod
    def is_due(self, profile: Dict[str, Any], now: datetime) -> bool:
        pass

    def describe(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        """Operation metadata describing the user's trigger window."""
        return {}


@dataclass
class ReflectionPreferences:
    day: str
    hour: int
    timezone: str


class PreferredTimePolicy(TriggerPolicy):
    """Due during the user's preferred weekday and hour, in their timezone.

    Unset preferences fall back to the configured defaults.
    """

    def __init__(
        self,
        default_day: str = "friday",
        default_hour: int = 14,
        default_timezone: str = "America/New_York",
    ):
        self.default_day = default_day.lower()
        self.default_hour = default_hour
        self.default_timezone = default_timezone

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None) -> "PreferredTimePolicy":
        settings = settings or get_settings()
        return cls(
            default_day=settings.default_reflection_day,
            default_hour=settings.default_reflection_hour,
            default_timezone=settings.default_reflection_timezone,
        )

    def preferences(self, profile: Dict[str, Any]) -> ReflectionPreferences:
        hour = profile.get("reflection_preferred_hour")
        return ReflectionPreferences(
            day=(profile.get("reflection_preferred_day") or self.default_day).lower(),
            hour=self.default_hour if hour is None else hour,
            timezone=profile.get("reflection_timezone") or self.default_timezone,
        )

    def is_due(self, profile: Dict[str, Any], now: datetime) -> bool:
        prefs = self.preferences(profile)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(ZoneInfo(prefs.timezone))
        return WEEKDAYS[local.weekday()] == prefs.day and local.hour == prefs.hour

    def describe(self, profile: Dict[str, Any]) -> Dict[str, Any]:
        prefs = self.preferences(profile)
        return {
            "timezone": prefs.timezone,
            "preferred_time": f"{prefs.day} {prefs.hour}:00",
        }


@dataclass
class TickReport:
    processed: int = 0
    skipped: int = 0
    operation_ids: List[str] = field(default_factory=list)
    failures: List[SchedulerError] = field(default_factory=list)


class Scheduler:
    """Periodic tick that enqueues scheduled weekly reflections."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        session_factory: sessionmaker,
        policy: Optional[TriggerPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        dispatch_inline: bool = True,
        integration_types: Sequence[str] = ("google_calendar",),
    ):
        self.dispatcher = dispatcher
        self.session_factory = session_factory
        self.policy = policy or PreferredTimePolicy()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.dispatch_inline = dispatch_inline
        self.integration_types = list(integration_types)
        self._stop = threading.Event()

    def eligible_profiles(self) -> List[Dict[str, Any]]:
        """Onboarded users with auto-generation on and a relevant active integration."""
        db = self.session_factory()
        try:
            has_integration = exists().where(
                IntegrationModel.user_id == UserModel.id,
                IntegrationModel.is_active.is_(True),
                IntegrationModel.type.in_(self.integration_types),
            )
            users = (
                db.query(UserModel)
                .filter(
                    UserModel.onboarding_completed_at.isnot(None),
                    UserModel.reflection_auto_generate.is_(True),
                    has_integration,
                )
                .order_by(UserModel.created_at.asc())
                .all()
            )
            return [user.to_dict() for user in users]
        finally:
            db.close()

    def tick(self, now: Optional[datetime] = None) -> TickReport:
        now = now or self.clock()
        report = TickReport()
        profiles = self.eligible_profiles()
        logger.info("scheduler_tick_started", eligible=len(profiles), now=now.isoformat())

        for profile in profiles:
            try:
                operation_id = self._process_user(profile, now)
            except Exception as e:
                error = SchedulerError(profile["id"], str(e) or e.__class__.__name__)
                logger.error(
                    "scheduler_user_failed", owner_id=profile["id"], error=error.message
                )
                report.failures.append(error)
                continue
            if operation_id is None:
                report.skipped += 1
            else:
                report.processed += 1
                report.operation_ids.append(operation_id)

        logger.info(
            "scheduler_tick_completed",
            processed=report.processed,
            skipped=report.skipped,
            failed=len(report.failures),
        )
        return report

    def _process_user(self, profile: Dict[str, Any], now: datetime) -> Optional[str]:
        owner_id = profile["id"]
        log = logger.bind(owner_id=owner_id)
        if not self.policy.is_due(profile, now):
            return None

        year, period = current_period(now)
        key = reflection_idempotency_key(year, period)
        with open_repository(owner_id, self.session_factory) as repo:
            if repo.get_period_artifact(year, period):
                log.info("scheduler_skip_existing_artifact", period=period_key(year, period))
                return None
            if repo.find_open_operation(OperationType.WEEKLY_REFLECTION, key):
                log.info("scheduler_skip_existing_operation", period=period_key(year, period))
                return None

            start, end = period_bounds(year, period)
            operation = repo.create_operation(
                OperationType.WEEKLY_REFLECTION,
                input_data={
                    "owner_id": owner_id,
                    "period_start": start.isoformat(),
                    "period_end": end.isoformat(),
                    "include_previous_context": True,
                    "include_integration_types": profile.get(
                        "reflection_include_integrations"
                    )
                    or [],
                    "manual": False,
                },
                idempotency_key=key,
                estimated_duration=self.dispatcher.estimated_duration(
                    OperationType.WEEKLY_REFLECTION
                ),
                metadata={
                    "trigger_type": "scheduled",
                    "requested_at": now.isoformat(),
                    **self.policy.describe(profile),
                },
            )

        log.info("scheduler_operation_created", operation_id=operation["id"])
        if self.dispatch_inline:
            self.dispatcher.dispatch(operation["id"])
        return operation["id"]

    def run_forever(self, interval: Optional[float] = None) -> None:
        """Tick every ``interval`` seconds until :meth:`stop` is called."""
        interval = interval or get_settings().scheduler_interval_seconds
        self._stop.clear()
        logger.info("scheduler_started", interval=interval)
        while not self._stop.is_set():
            try:
                self.tick()
            except Exception as e:
                logger.exception("scheduler_tick_failed", error=str(e))
            self._stop.wait(interval)
        logger.info("scheduler_stopped")

    def stop(self) -> None:
        self._stop.set()

"""Job handlers, one per operation type."""

from .base import JobHandler
from .career_plan import CareerPlanHandler
from .weekly_reflection import WeeklyReflectionHandler, parse_reflection_response

__all__ = [
    "JobHandler",
    "CareerPlanHandler",
    "WeeklyReflectionHandler",
    "parse_reflection_response",
]

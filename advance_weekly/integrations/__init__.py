"""External collaborators: text generation and integration data sources."""

from .base import GenerationClient, IntegrationSource
from .google_calendar import CalendarAccessError, GoogleCalendarSource
from .llm_proxy import LLMProxyClient

__all__ = [
    "GenerationClient",
    "IntegrationSource",
    "CalendarAccessError",
    "GoogleCalendarSource",
    "LLMProxyClient",
]

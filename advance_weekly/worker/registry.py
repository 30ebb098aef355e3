"""
Process-start wiring: concrete collaborators, handler registry, dispatcher.
"""

from __future__ import annotations

from typing import Iterable, Optional

from sqlalchemy.orm import sessionmaker

from ..config import Settings, get_settings
from ..db.base import get_session_local
from ..integrations import (
    GenerationClient,
    GoogleCalendarSource,
    IntegrationSource,
    LLMProxyClient,
)
from .dispatcher import Dispatcher, HandlerRegistry
from .handlers import CareerPlanHandler, WeeklyReflectionHandler


def build_registry(
    settings: Optional[Settings] = None,
    generator: Optional[GenerationClient] = None,
    sources: Optional[Iterable[IntegrationSource]] = None,
) -> HandlerRegistry:
    """Build the handler registry once; collaborators default to HTTP clients."""
    settings = settings or get_settings()
    if generator is None:
        generator = LLMProxyClient(
            settings.llm_proxy_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            timeout=settings.llm_timeout_seconds,
        )
    if sources is None:
        sources = [
            GoogleCalendarSource(
                api_url=settings.google_calendar_api_url,
                timeout=settings.integration_timeout_seconds,
            )
        ]

    return HandlerRegistry(
        [
            WeeklyReflectionHandler(generator, sources),
            CareerPlanHandler(generator),
        ]
    )


def build_dispatcher(
    settings: Optional[Settings] = None,
    session_factory: Optional[sessionmaker] = None,
    registry: Optional[HandlerRegistry] = None,
) -> Dispatcher:
    return Dispatcher(
        registry or build_registry(settings),
        session_factory or get_session_local(),
    )

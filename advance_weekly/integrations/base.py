"""
Collaborator interfaces used by generation handlers.

Handlers depend on these abstractions only, so tests and alternative
deployments can swap the concrete HTTP clients for fakes.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date
from typing import Any, Dict, Optional


class GenerationClient(ABC):
    """Text generation backend (an LLM behind some proxy)."""

    @abstractmethod
    def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1500,
        context: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Return the generated text for ``prompt``."""
        pass


class IntegrationSource(ABC):
    """External data source summarised into a weekly reflection."""

    @property
    @abstractmethod
    def integration_type(self) -> str:
        """Integration type this source serves, e.g. ``google_calendar``."""
        pass

    @abstractmethod
    def fetch_weekly_data(
        self,
        credentials: Dict[str, Any],
        week_start: date,
        week_end: date,
    ) -> Dict[str, Any]:
        """Fetch and summarise one week of data.

        The returned dict must carry a ``summary`` string; anything else is
        stored verbatim as raw consolidation data.
        """
        pass

"""
HTTP client for the LLM proxy.

The proxy accepts ``{model, prompt, temperature, max_tokens, context}`` and
answers ``{"content": "..."}``.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

import httpx
import structlog

from .base import GenerationClient

logger = structlog.get_logger()


class LLMProxyClient(GenerationClient):
    """Synchronous client; every request carries its own timeout."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        model: str = "gemini-1.5-flash",
        timeout: float = 60.0,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self.client = httpx.Client(
            timeout=timeout,
            headers={"Authorization": f"Bearer {api_key}"} if api_key else {},
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self.client.close()

    def generate(
        self,
        prompt: str,
        *,
        temperature: float = 0.7,
        max_tokens: int = 1500,
        context: Optional[Dict[str, Any]] = None,
    ) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "temperature": temperature,
            "max_tokens": max_tokens,
            "context": context or {},
        }
        try:
            response = self.client.post(self.base_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.error("llm_proxy_request_failed", error=str(e), model=self.model)
            raise

        content = response.json().get("content")
        if not isinstance(content, str):
            raise ValueError("LLM proxy response is missing 'content'")
        return content

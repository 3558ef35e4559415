"""AI gateway adapter.

The gateway exposes an OpenAI-compatible chat completions API and fronts
several hosted models:
- google/gemini-2.5-pro: primary, best reasoning
- google/gemini-2.5-flash: backup, balanced
- google/gemini-2.5-flash-lite: cheap and fast, used for small edits
"""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from awash.config import get_settings
from awash.errors import GatewayError
from awash.llm.base import LLMAdapter
from awash.schemas import LLMMessage, LLMResponse


logger = logging.getLogger(__name__)


class GatewayAdapter(LLMAdapter):
    """AI gateway adapter using the OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.ai_gateway_api_key
        self.base_url = base_url or settings.ai_gateway_base_url
        self.default_model = settings.model_primary
        self.timeout = timeout or settings.ai_gateway_timeout_seconds

        if not self.api_key:
            raise ValueError("AI gateway API key not configured")

        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
            },
            timeout=self.timeout,
        )

    @property
    def provider_name(self) -> str:
        return "gateway"

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send chat completion request to the gateway."""
        model = model or self.default_model

        payload = self._build_request(
            messages=messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
        )

        start_time = time.perf_counter()

        try:
            response = await self._client.post("/chat/completions", json=payload)
        except httpx.HTTPError as e:
            raise GatewayError(self.provider_name, str(e)) from e

        self._raise_for_status(response)

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        logger.debug(f"Gateway {model} answered in {latency_ms}ms")

        def parse(data: dict[str, Any]) -> LLMResponse:
            choice = (data.get("choices") or [{}])[0]
            message = choice.get("message") or {}
            return LLMResponse(
                content=message.get("content"),
                model=data.get("model") or model,
                usage=data.get("usage") or {},
                finish_reason=choice.get("finish_reason"),
                raw_response=data,
            )

        return self._parse_body(response, parse)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

"""Direct Gemini API adapter.

Only used as the emergency layer when every gateway attempt failed.
Converts chat messages to Gemini ``contents`` and the answer back to the
chat-completions shape, so callers never see the difference.
"""

from __future__ import annotations

from typing import Any

import httpx

from awash.config import get_settings
from awash.errors import GatewayError
from awash.llm.base import LLMAdapter
from awash.schemas import LLMMessage, LLMResponse


class GeminiAdapter(LLMAdapter):
    """Gemini ``generateContent`` adapter."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float = 120.0,
        client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.gemini_api_key
        self.base_url = base_url or settings.gemini_base_url
        self.default_model = settings.gemini_model
        self.timeout = timeout

        if not self.api_key:
            raise ValueError("Gemini API key not configured")

        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json"},
            timeout=timeout,
        )

    @property
    def provider_name(self) -> str:
        return "gemini"

    @staticmethod
    def to_contents(messages: list[LLMMessage]) -> list[dict[str, Any]]:
        """Gemini only knows 'user' and 'model' roles; system prompts go in as user turns."""
        return [
            {
                "role": "model" if m.role == "assistant" else "user",
                "parts": [{"text": m.content}],
            }
            for m in messages
        ]

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "contents": self.to_contents(messages),
            "generationConfig": {
                "temperature": temperature,
                "maxOutputTokens": max_tokens or 8000,
            },
        }

        try:
            response = await self._client.post(
                f"/models/{model}:generateContent",
                params={"key": self.api_key},
                json=payload,
            )
        except httpx.HTTPError as e:
            raise GatewayError(self.provider_name, str(e)) from e

        self._raise_for_status(response)

        def parse(data: dict[str, Any]) -> LLMResponse:
            candidate = (data.get("candidates") or [{}])[0]
            parts = (candidate.get("content") or {}).get("parts") or [{}]
            return LLMResponse(
                content=parts[0].get("text") or "",
                model=model,
                usage=_usage(data.get("usageMetadata") or {}),
                finish_reason=candidate.get("finishReason"),
                raw_response=data,
            )

        result = self._parse_body(response, parse)
        if not result.content:
            raise GatewayError(self.provider_name, "empty response", response.status_code)
        return result

    async def close(self) -> None:
        await self._client.aclose()


def _usage(meta: dict[str, Any]) -> dict[str, Any]:
    if not meta:
        return {}
    return {
        "prompt_tokens": meta.get("promptTokenCount", 0),
        "completion_tokens": meta.get("candidatesTokenCount", 0),
        "total_tokens": meta.get("totalTokenCount", 0),
    }

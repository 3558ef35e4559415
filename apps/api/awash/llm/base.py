"""Abstract base class for LLM adapters."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable

import httpx
from pydantic import ValidationError

from awash.errors import GatewayError, PaymentRequiredError, RateLimitError
from awash.schemas import LLMMessage, LLMResponse


class LLMAdapter(ABC):
    """Abstract base class for LLM provider adapters.

    The AI gateway and the direct Gemini fallback both implement this
    interface so the fallback chain can treat them the same way.
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., 'gateway', 'gemini')."""
        ...

    @abstractmethod
    async def chat_completion(
        self,
        messages: list[LLMMessage],
        model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
    ) -> LLMResponse:
        """Send a chat completion request.

        Args:
            messages: List of conversation messages
            model: Model name (uses default if None)
            temperature: Sampling temperature (0-2)
            max_tokens: Maximum tokens in response, provider default if None

        Returns:
            LLMResponse with the assistant content

        Raises:
            RateLimitError: provider answered 429
            PaymentRequiredError: provider answered 402
            GatewayError: any other failure
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        ...

    def _build_request(
        self,
        messages: list[LLMMessage],
        model: str,
        temperature: float,
        max_tokens: int | None,
    ) -> dict[str, Any]:
        """Build an OpenAI-style request payload.

        This is a helper method that subclasses can use or override.
        """
        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "temperature": temperature,
        }

        if max_tokens:
            payload["max_tokens"] = max_tokens

        return payload

    def _raise_for_status(self, response: httpx.Response) -> None:
        """Map HTTP failures onto the gateway exception hierarchy."""
        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            try:
                seconds = float(retry_after) if retry_after else None
            except ValueError:
                seconds = None
            raise RateLimitError(self.provider_name, retry_after=seconds)

        if response.status_code == 402:
            raise PaymentRequiredError(self.provider_name)

        if response.is_error:
            raise GatewayError(self.provider_name, response.text[:500], response.status_code)

    def _parse_body(
        self,
        response: httpx.Response,
        parse: Callable[[Any], LLMResponse],
    ) -> LLMResponse:
        """Run ``parse`` over the JSON body; any shape mismatch becomes a GatewayError."""
        try:
            return parse(response.json())
        except (AttributeError, IndexError, KeyError, TypeError, ValueError, ValidationError) as e:
            raise GatewayError(self.provider_name, f"malformed response: {e}", response.status_code) from e

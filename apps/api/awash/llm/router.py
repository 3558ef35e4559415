"""LLM router with layered fallback.

Strategy:
- Layer 1: gateway, preferred (or primary) model
- Layer 2: gateway, the other of primary/backup
- Layer 3: direct Gemini API, if enabled and keyed
Each layer is retried with exponential backoff plus jitter; 429 answers
honour Retry-After.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Awaitable, Callable

from awash.config import Settings, get_settings
from awash.errors import AllProvidersFailedError, GatewayError, PaymentRequiredError, RateLimitError
from awash.llm.base import LLMAdapter
from awash.llm.gateway import GatewayAdapter
from awash.llm.gemini import GeminiAdapter
from awash.schemas import GatewayResult, LLMMessage


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 10.0


def calculate_backoff(attempt: int) -> float:
    """Exponential backoff capped at 10s, plus up to 1s of jitter."""
    delay = min(BASE_DELAY_SECONDS * (2 ** attempt), MAX_DELAY_SECONDS)
    return delay + random.uniform(0, 1.0)


class ModelRouter:
    """Routes LLM requests through the gateway with fallback logic."""

    def __init__(
        self,
        gateway: LLMAdapter | None = None,
        emergency: LLMAdapter | None = None,
        settings: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        self._settings = settings or get_settings()
        self.primary_model = self._settings.model_primary
        self.backup_model = self._settings.model_backup
        self._gateway = gateway
        self._emergency = emergency
        self._sleep = sleep

    def _get_gateway(self) -> LLMAdapter:
        if self._gateway is None:
            self._gateway = GatewayAdapter()
        return self._gateway

    def _get_emergency(self) -> LLMAdapter | None:
        if self._emergency is None and self._settings.gemini_api_key:
            self._emergency = GeminiAdapter()
        return self._emergency

    def models_for(self, preferred_model: str | None) -> list[str]:
        """Model order for the gateway layers."""
        if preferred_model is None:
            return [self.primary_model, self.backup_model]
        other = self.backup_model if preferred_model == self.primary_model else self.primary_model
        return [preferred_model, other]

    async def chat_completion(
        self,
        messages: list[LLMMessage],
        preferred_model: str | None = None,
        temperature: float = 0.7,
        max_tokens: int | None = None,
        max_retries: int | None = None,
        enable_emergency_fallback: bool | None = None,
    ) -> GatewayResult:
        """Route a chat completion request with fallback.

        Args:
            messages: Conversation messages
            preferred_model: Model tried first, primary if None
            temperature: Sampling temperature
            max_tokens: Max response tokens
            max_retries: Retries per layer (attempts = retries + 1)
            enable_emergency_fallback: Whether the direct Gemini layer may be used

        Returns:
            GatewayResult with the response and which layer produced it

        Raises:
            AllProvidersFailedError: every layer was exhausted
        """
        if max_retries is None:
            max_retries = self._settings.ai_max_retries
        if enable_emergency_fallback is None:
            enable_emergency_fallback = self._settings.ai_emergency_fallback

        start = time.perf_counter()
        attempts = 0
        last_error: Exception | None = None
        gateway = self._get_gateway()
        credits_exhausted = False

        # ============ Layers 1 & 2: gateway ============
        for model_index, model in enumerate(self.models_for(preferred_model)):
            is_backup = model_index > 0
            layer = "backup" if is_backup else "primary"

            for retry in range(max_retries + 1):
                attempts += 1
                logger.info(
                    f"Gateway {layer} {model}" + (f" (retry {retry}/{max_retries})" if retry else "")
                )
                try:
                    response = await gateway.chat_completion(
                        messages=messages,
                        model=model,
                        temperature=temperature,
                        max_tokens=max_tokens,
                    )
                except RateLimitError as e:
                    last_error = e
                    wait = e.retry_after if e.retry_after is not None else calculate_backoff(retry)
                    logger.warning(f"Rate limited on {model}, waiting {wait:.1f}s")
                    await self._sleep(wait)
                    continue
                except PaymentRequiredError as e:
                    last_error = e
                    credits_exhausted = True
                    logger.error("Gateway credits exhausted, skipping remaining gateway attempts")
                    break
                except GatewayError as e:
                    last_error = e
                    logger.error(f"Attempt {attempts} failed on {layer} {model}: {e}")
                    if retry < max_retries:
                        await self._sleep(calculate_backoff(retry))
                    continue

                total_ms = int((time.perf_counter() - start) * 1000)
                logger.info(f"Gateway {layer} {model} succeeded after {attempts} attempts in {total_ms}ms")
                return GatewayResult(
                    response=response,
                    model_used=model,
                    was_backup=is_backup,
                    gateway="gateway",
                    attempts=attempts,
                    total_latency_ms=total_ms,
                )

            if credits_exhausted:
                break
            logger.info(f"Moving on from {model}")

        # ============ Layer 3: direct Gemini ============
        if not enable_emergency_fallback:
            raise AllProvidersFailedError(attempts, last_error)

        emergency = self._get_emergency()
        if emergency is None:
            logger.error("All gateway attempts failed and no Gemini API key is configured")
            raise AllProvidersFailedError(attempts, last_error)

        logger.warning("All gateway attempts failed, using direct Gemini fallback")
        for retry in range(max_retries + 1):
            attempts += 1
            if retry > 0:
                await self._sleep(calculate_backoff(retry))
            try:
                response = await emergency.chat_completion(
                    messages=messages,
                    temperature=temperature,
                    max_tokens=max_tokens,
                )
            except RateLimitError as e:
                last_error = e
                wait = e.retry_after if e.retry_after is not None else calculate_backoff(retry + 2)
                await self._sleep(wait)
                continue
            except GatewayError as e:
                last_error = e
                logger.error(f"Emergency attempt {attempts} failed: {e}")
                continue

            total_ms = int((time.perf_counter() - start) * 1000)
            return GatewayResult(
                response=response,
                model_used=response.model,
                was_backup=True,
                gateway="direct-gemini-emergency",
                attempts=attempts,
                total_latency_ms=total_ms,
            )

        raise AllProvidersFailedError(attempts, last_error)

    async def close(self) -> None:
        """Close all adapters."""
        for adapter in (self._gateway, self._emergency):
            if adapter is not None:
                await adapter.close()


# Singleton instance
_router: ModelRouter | None = None


def get_router() -> ModelRouter:
    """Get the global model router instance."""
    global _router
    if _router is None:
        _router = ModelRouter()
    return _router


def set_router(router: ModelRouter | None) -> None:
    """Replace the global router (tests, alternate gateways)."""
    global _router
    _router = router


async def call_with_fallback(
    messages: list[LLMMessage],
    preferred_model: str | None = None,
    temperature: float = 0.7,
    max_retries: int = 2,
    enable_emergency_fallback: bool = True,
    max_tokens: int | None = None,
) -> GatewayResult:
    """Shortcut for ``get_router().chat_completion(...)``."""
    return await get_router().chat_completion(
        messages=messages,
        preferred_model=preferred_model,
        temperature=temperature,
        max_tokens=max_tokens,
        max_retries=max_retries,
        enable_emergency_fallback=enable_emergency_fallback,
    )

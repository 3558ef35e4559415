"""HTTP client for unified functions.

Calls never raise: every failure ends up in ``FunctionResult.error``.
Attempts are spaced ``backoff * 2**attempt`` seconds apart, and the final
failure is reported to unified-monitoring's track_error.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

import httpx

from awash.config import get_settings
from awash.schemas import FunctionResult


logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

MONITORING = "unified-monitoring"
AI_WORKERS = "unified-ai-workers"


async def _post(client: httpx.AsyncClient, name: str, operation: str, params: dict[str, Any]) -> Any:
    response = await client.post(f"/functions/{name}", json={"operation": operation, "params": params})
    response.raise_for_status()
    body = response.json()
    if not body.get("success", False):
        raise RuntimeError(body.get("error") or "function call failed")
    return body.get("data")


async def invoke_unified_function(
    name: str,
    operation: str,
    params: dict[str, Any] | None = None,
    retries: int | None = None,
    client: httpx.AsyncClient | None = None,
    sleep: Sleep = asyncio.sleep,
) -> FunctionResult:
    """Call ``operation`` of function ``name``, retrying failed attempts.

    Args:
        name: Function name, e.g. ``unified-ai-workers``
        operation: Operation within the function
        params: Operation params
        retries: Total attempts (settings default if None)
        client: HTTP client to use; one is created per call if None
        sleep: Awaitable used between attempts

    Returns:
        FunctionResult with ``data`` on success, ``error`` otherwise
    """
    settings = get_settings()
    params = params or {}
    retries = retries if retries is not None else settings.functions_retries
    retries = max(1, retries)

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(
            base_url=settings.functions_base_url,
            timeout=settings.functions_timeout_seconds,
        )

    last_error: Exception | None = None
    try:
        for attempt in range(retries):
            try:
                data = await _post(client, name, operation, params)
                return FunctionResult(data=data)
            except (httpx.HTTPError, ValueError, RuntimeError) as e:
                last_error = e
                logger.warning(f"{name}/{operation} attempt {attempt + 1}/{retries} failed: {e}")
                if attempt < retries - 1:
                    await sleep(settings.functions_backoff_seconds * (2 ** attempt))

        logger.error(f"{name}/{operation} failed after {retries} attempts: {last_error}")
        if not (name == MONITORING and operation == "track_error"):
            await invoke_unified_function(
                MONITORING,
                "track_error",
                {
                    "error_message": str(last_error),
                    "error_type": "function_call_failed",
                    "context": {"function": name, "operation": operation, "attempt": retries},
                },
                retries=1,
                client=client,
                sleep=sleep,
            )
    finally:
        if own_client:
            await client.aclose()

    return FunctionResult(error=str(last_error))


class _FunctionGroup:
    def __init__(self, owner: UnifiedFunctionsClient, name: str):
        self._owner = owner
        self._name = name

    async def _call(self, operation: str, **params: Any) -> FunctionResult:
        return await self._owner.invoke(
            self._name,
            operation,
            {k: v for k, v in params.items() if v is not None},
        )


class AIWorkers(_FunctionGroup):
    async def chat(self, message: str, conversation_id: str | None = None) -> FunctionResult:
        return await self._call("chat", message=message, conversation_id=conversation_id)

    async def generate_code(self, prompt: str, language: str | None = None) -> FunctionResult:
        return await self._call("code_generation", prompt=prompt, language=language)

    async def debug_assist(self, code: str, error: str) -> FunctionResult:
        return await self._call("debug_assistance", code=code, error=error)

    async def generate_tests(self, code: str, framework: str | None = None) -> FunctionResult:
        return await self._call("test_generation", code=code, framework=framework)

    async def reason(self, problem: str) -> FunctionResult:
        return await self._call("basic_reasoning", problem=problem)


class Monitoring(_FunctionGroup):
    async def track_error(
        self,
        error_message: str,
        error_type: str | None = None,
        severity: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> FunctionResult:
        return await self._call(
            "track_error",
            error_message=error_message,
            error_type=error_type,
            severity=severity,
            context=context,
        )

    async def track_metric(
        self,
        metric_type: str,
        metric_value: float,
        metadata: dict[str, Any] | None = None,
    ) -> FunctionResult:
        return await self._call("track_metric", metric_type=metric_type, metric_value=metric_value, metadata=metadata)

    async def track_event(self, event_type: str, event_data: dict[str, Any] | None = None) -> FunctionResult:
        return await self._call("track_event", event_type=event_type, event_data=event_data)

    async def health_status(self) -> FunctionResult:
        return await self._call("health_status")


class UnifiedFunctionsClient:
    """Grouped access to the unified functions over one HTTP client."""

    def __init__(
        self,
        base_url: str | None = None,
        user_id: str | None = None,
        retries: int | None = None,
        client: httpx.AsyncClient | None = None,
        sleep: Sleep = asyncio.sleep,
    ):
        settings = get_settings()
        headers = {"X-User-Id": user_id} if user_id else {}
        self._client = client or httpx.AsyncClient(
            base_url=base_url or settings.functions_base_url,
            headers=headers,
            timeout=settings.functions_timeout_seconds,
        )
        self.retries = retries
        self._sleep = sleep
        self.ai_workers = AIWorkers(self, AI_WORKERS)
        self.monitoring = Monitoring(self, MONITORING)

    async def invoke(self, name: str, operation: str, params: dict[str, Any] | None = None) -> FunctionResult:
        return await invoke_unified_function(
            name,
            operation,
            params,
            retries=self.retries,
            client=self._client,
            sleep=self._sleep,
        )

    async def close(self) -> None:
        await self._client.aclose()

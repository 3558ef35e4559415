"""Registry of unified functions.

A unified function is a named group of operations served from a single
endpoint. Handlers register themselves by name and operation:

    @registry.register("unified-monitoring", "track_metric")
    async def track_metric(ctx, params): ...

and are called with a ``FunctionContext`` plus the ``params`` dict of the
request body.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from awash.errors import FunctionNotFoundError, InvalidParamsError


logger = logging.getLogger(__name__)


@dataclass
class FunctionContext:
    """What a handler gets besides its params."""
    session: AsyncSession
    user_id: UUID | None = None


FunctionHandler = Callable[[FunctionContext, dict[str, Any]], Awaitable[Any]]


def require(params: dict[str, Any], *names: str) -> None:
    """Raise InvalidParamsError unless every name is present and not empty."""
    missing = [n for n in names if params.get(n) in (None, "")]
    if missing:
        raise InvalidParamsError(
            f"Missing required params: {', '.join(missing)}",
            {"missing": missing},
        )


def convert(params: dict[str, Any], name: str, parse: Callable[[Any], Any], default: Any = None) -> Any:
    """``parse(params[name])``, or ``default`` when the param is absent.

    Raises:
        InvalidParamsError: the value cannot be parsed
    """
    value = params.get(name)
    if value in (None, ""):
        return default
    try:
        return parse(value)
    except (TypeError, ValueError) as e:
        raise InvalidParamsError(f"Invalid value for {name}: {value!r}", {"param": name}) from e


def parse_uuid(value: Any) -> UUID:
    return value if isinstance(value, UUID) else UUID(str(value))


class FunctionRegistry:
    def __init__(self):
        self._functions: dict[str, dict[str, FunctionHandler]] = {}

    def register(self, name: str, operation: str) -> Callable[[FunctionHandler], FunctionHandler]:
        def decorator(handler: FunctionHandler) -> FunctionHandler:
            self._functions.setdefault(name, {})[operation] = handler
            return handler
        return decorator

    def names(self) -> list[str]:
        return sorted(self._functions)

    def operations(self, name: str) -> list[str]:
        return sorted(self._functions.get(name, {}))

    async def dispatch(
        self,
        name: str,
        operation: str,
        params: dict[str, Any],
        ctx: FunctionContext,
    ) -> Any:
        """Run one operation of a function.

        Raises:
            FunctionNotFoundError: unknown function or operation
        """
        operations = self._functions.get(name)
        if operations is None:
            raise FunctionNotFoundError(f"Unknown function: {name}", {"function": name})
        handler = operations.get(operation)
        if handler is None:
            raise FunctionNotFoundError(
                f"Unknown operation: {operation}",
                {"function": name, "operation": operation, "available": sorted(operations)},
            )

        logger.info(f"{name} operation: {operation}")
        return await handler(ctx, params)


# Singleton instance
registry = FunctionRegistry()


def load_builtin() -> FunctionRegistry:
    """Import the built-in function modules so their handlers are registered."""
    from awash.functions import ai_workers, monitoring  # noqa: F401

    return registry

"""Exceptions and persisted error reporting.

Errors are raised where they happen and turned into HTTP responses in the
API layer. Anything worth reviewing later is also written to the
``detected_errors`` / ``generation_failures`` tables.
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from awash.database.models import DetectedError, GenerationFailure
from awash.schemas import Severity


logger = logging.getLogger(__name__)


class AwashError(Exception):
    """Base exception for all Awash errors."""

    status_code = 500
    error_type = "unknown"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class GatewayError(AwashError):
    """LLM provider returned an error or could not be reached."""

    error_type = "gateway_error"

    def __init__(self, provider: str, message: str, status_code: int | None = None):
        super().__init__(
            f"{provider} error ({status_code}): {message}" if status_code else f"{provider} error: {message}",
            {"provider": provider, "status_code": status_code},
        )
        self.provider = provider
        self.upstream_status = status_code


class RateLimitError(GatewayError):
    """Provider answered 429."""

    status_code = 429
    error_type = "rate_limit"

    def __init__(self, provider: str, retry_after: float | None = None):
        super().__init__(provider, "rate limited", 429)
        self.retry_after = retry_after


class PaymentRequiredError(GatewayError):
    """Provider answered 402: credits exhausted."""

    status_code = 402
    error_type = "payment_required"

    def __init__(self, provider: str):
        super().__init__(provider, "payment required, credits exhausted", 402)


class AllProvidersFailedError(AwashError):
    """Every fallback layer was tried and none produced a response."""

    status_code = 503
    error_type = "all_providers_failed"

    def __init__(self, attempts: int, last_error: Exception | None):
        super().__init__(
            f"All {attempts} AI attempts failed. Last error: {last_error}",
            {"attempts": attempts},
        )
        self.attempts = attempts
        self.last_error = last_error


class ResponseParseError(AwashError):
    """Model output could not be parsed into the expected structure."""

    status_code = 502
    error_type = "parse_error"


class JobStateError(AwashError):
    """Illegal job status transition."""

    status_code = 409
    error_type = "job_state"


class FunctionNotFoundError(AwashError):
    status_code = 404
    error_type = "function_not_found"


class InvalidParamsError(AwashError):
    """A function call is missing required parameters."""

    status_code = 400
    error_type = "invalid_params"


# =============================================================================
# Persisted Reporting
# =============================================================================

async def report_error(
    session: AsyncSession,
    error: Exception | str,
    severity: Severity = Severity.MEDIUM,
    context: dict[str, Any] | None = None,
    error_type: str | None = None,
    status: str = "pending",
    user_id: UUID | None = None,
) -> DetectedError | None:
    """Write a ``detected_errors`` row.

    Returns None if the row could not be written; the failure is logged
    so that the caller's own error is not masked.
    """
    message = str(error)
    if error_type is None:
        error_type = error.error_type if isinstance(error, AwashError) else "runtime_error"

    row = DetectedError(
        user_id=user_id,
        error_type=error_type,
        error_message=message,
        severity=Severity(severity).value,
        status=status,
        context=context or {},
    )
    try:
        session.add(row)
        await session.flush()
    except Exception as e:
        logger.error(f"Failed to record detected error '{message}': {e}")
        return None

    logger.info(f"Recorded {row.severity} {error_type}: {message}")
    return row


async def record_generation_failure(
    session: AsyncSession,
    error: Exception | str,
    user_id: UUID | None = None,
    job_id: UUID | None = None,
    user_request: str | None = None,
    context: dict[str, Any] | None = None,
) -> GenerationFailure | None:
    """Write a ``generation_failures`` row; same never-raise contract as report_error."""
    if isinstance(error, AwashError):
        error_type = error.error_type
    elif isinstance(error, str):
        error_type = "generation_error"
    else:
        error_type = type(error).__name__
    row = GenerationFailure(
        user_id=user_id,
        job_id=job_id,
        error_type=error_type,
        error_message=str(error),
        user_request=user_request,
        context=context or {},
    )
    try:
        session.add(row)
        await session.flush()
    except Exception as e:
        logger.error(f"Failed to record generation failure for job {job_id}: {e}")
        return None
    return row

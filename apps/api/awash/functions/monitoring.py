"""unified-monitoring: error, metric and event tracking plus a health probe."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import func, text
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from awash.database.models import AnalyticsEvent, DetectedError, PerformanceMetric, utcnow
from awash.database.resilient import resilient_insert
from awash.errors import report_error
from awash.functions.registry import FunctionContext, convert, parse_uuid, registry, require
from awash.schemas import Severity


logger = logging.getLogger(__name__)

NAME = "unified-monitoring"

# Errors per hour at or above which the error rate counts as elevated
ELEVATED_ERROR_COUNT = 10


def _user_id(ctx: FunctionContext, params: dict[str, Any]) -> UUID | None:
    return convert(params, "user_id", parse_uuid, ctx.user_id)


def _parse_date(value: Any) -> datetime:
    """ISO date or datetime; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(str(value))
    return parsed.astimezone(timezone.utc) if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _since(params: dict[str, Any], key: str) -> datetime | None:
    return convert(params, key, _parse_date)


@registry.register(NAME, "track_error")
async def track_error(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    require(params, "error_message")
    row = await report_error(
        ctx.session,
        params["error_message"],
        severity=convert(params, "severity", Severity, Severity.MEDIUM),
        context=params.get("context") or {},
        error_type=params.get("error_type") or "unknown",
        status="new",
        user_id=_user_id(ctx, params),
    )
    if row is None:
        return {"tracked": False}
    return {"tracked": True, "error_id": str(row.id)}


@registry.register(NAME, "get_errors")
async def get_errors(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    query = select(DetectedError).order_by(DetectedError.created_at.desc())
    severity = convert(params, "severity", Severity)
    if severity is not None:
        query = query.where(DetectedError.severity == severity.value)
    if params.get("status"):
        query = query.where(DetectedError.status == params["status"])
    user_id = _user_id(ctx, params)
    if user_id is not None:
        query = query.where(DetectedError.user_id == user_id)
    start = _since(params, "start_date")
    if start is not None:
        query = query.where(DetectedError.created_at >= start)

    result = await ctx.session.execute(query.limit(50))
    errors = result.scalars().all()
    return {
        "errors": [e.model_dump(mode="json") for e in errors],
        "count": len(errors),
        "by_severity": {s.value: sum(1 for e in errors if e.severity == s.value) for s in Severity},
    }


@registry.register(NAME, "track_metric")
async def track_metric(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    require(params, "metric_type", "metric_value")
    metric = PerformanceMetric(
        user_id=_user_id(ctx, params),
        metric_type=params["metric_type"],
        metric_value=convert(params, "metric_value", float),
        meta=params.get("metadata") or {},
    )
    ctx.session.add(metric)
    await ctx.session.flush()
    return {"tracked": True, "metric_id": str(metric.id)}


@registry.register(NAME, "get_metrics")
async def get_metrics(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    query = select(PerformanceMetric).order_by(PerformanceMetric.created_at.desc())
    if params.get("metric_type"):
        query = query.where(PerformanceMetric.metric_type == params["metric_type"])
    user_id = _user_id(ctx, params)
    if user_id is not None:
        query = query.where(PerformanceMetric.user_id == user_id)
    start, end = _since(params, "start_date"), _since(params, "end_date")
    if start is not None:
        query = query.where(PerformanceMetric.created_at >= start)
    if end is not None:
        query = query.where(PerformanceMetric.created_at <= end)

    result = await ctx.session.execute(query.limit(100))
    metrics = result.scalars().all()
    values = [m.metric_value for m in metrics]
    return {
        "metrics": [m.model_dump(mode="json") for m in metrics],
        "aggregations": {
            "count": len(values),
            "average": sum(values) / len(values) if values else 0.0,
            "max": max(values, default=0.0),
            "min": min(values, default=0.0),
        },
    }


@registry.register(NAME, "track_event")
async def track_event(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    require(params, "event_type")
    result = await resilient_insert(ctx.session, "analytics_events", {
        "user_id": _user_id(ctx, params),
        "event_type": params["event_type"],
        "event_data": params.get("event_data") or {},
    })
    if not result.success:
        logger.error(f"Event {params['event_type']} not tracked: {result.error}")
        return {"tracked": False, "error": result.error}
    return {"tracked": True, "event_id": str(result.data["id"])}


@registry.register(NAME, "get_analytics")
async def get_analytics(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    """Event counts by type over the last ``time_range`` hours (default 24)."""
    hours = convert(params, "time_range", int, 24)
    start = utcnow() - timedelta(hours=hours)
    result = await ctx.session.execute(
        select(AnalyticsEvent.event_type, func.count())
        .where(AnalyticsEvent.created_at >= start)
        .group_by(AnalyticsEvent.event_type)
    )
    by_type = [{"type": event_type, "count": count} for event_type, count in result.all()]
    return {
        "total_events": sum(item["count"] for item in by_type),
        "time_range": hours,
        "events_by_type": by_type,
    }


@registry.register(NAME, "health_status")
async def health_status(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    start = time.perf_counter()
    try:
        await ctx.session.execute(text("SELECT 1"))
        db_up = True
    except SQLAlchemyError as e:
        logger.error(f"Health check database probe failed: {e}")
        db_up = False
    response_ms = int((time.perf_counter() - start) * 1000)

    recent_errors = 0
    if db_up:
        result = await ctx.session.execute(
            select(func.count())
            .select_from(DetectedError)
            .where(DetectedError.created_at >= utcnow() - timedelta(hours=1))
        )
        recent_errors = result.scalar_one()

    return {
        "status": "healthy" if db_up else "unhealthy",
        "checks": {
            "database": {"status": "up" if db_up else "down", "response_time_ms": response_ms},
            "error_rate": {
                "status": "normal" if recent_errors < ELEVATED_ERROR_COUNT else "elevated",
                "count": recent_errors,
            },
        },
        "timestamp": utcnow().isoformat(),
    }

"""Request routing.

Pattern-based intent classification, no model call needed:
- META_CHAT: questions about the platform or project (3-5s)
- DIRECT_EDIT: small focused changes (< 2s)
- REFACTOR: code optimization (30-60s)
- FEATURE_BUILD: everything else, queued as a generation job (10-30s)
"""

from __future__ import annotations

import logging
import re
import time
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from awash.agent.smart_diff import smart_diff_update
from awash.database.models import Project, RoutingDecisionLog, utcnow
from awash.functions.ai_workers import chat_reply
from awash.jobs.queue import enqueue_job
from awash.realtime import get_broadcaster, status_channel
from awash.schemas import JobType, Route, RouteResponse, RoutingDecision


logger = logging.getLogger(__name__)

META_PATTERNS = [
    re.compile(r"^(what|how|why|can you explain|tell me about|describe|show me)\s", re.IGNORECASE),
    re.compile(r"what (can|does|is|are)", re.IGNORECASE),
    re.compile(r"how (do|does|can|to)", re.IGNORECASE),
    re.compile(r"\?$"),
]

DIRECT_EDIT_PATTERNS = [
    re.compile(r"^(change|update|make|set)\s+(the\s+)?(background|color|text|font|size|padding|margin)", re.IGNORECASE),
    re.compile(r"^(change|update)\s+\w+\s+(color|to|from)", re.IGNORECASE),
    re.compile(r"^(change|update|replace)\s+(text|title|heading|label|button\s+text)", re.IGNORECASE),
    re.compile(r"^(show|hide|remove|add)\s+(the\s+)?\w+$", re.IGNORECASE),
    re.compile(r"^(fix|update|change|remove|add)\s+[\w\s]{1,30}$", re.IGNORECASE),
]
SIMPLE_ACTION = re.compile(r"^(change|update|fix|add|remove)\s", re.IGNORECASE)

REFACTOR_PATTERNS = [
    re.compile(r"^(refactor|optimize|improve|restructure|reorganize)", re.IGNORECASE),
    re.compile(r"(clean up|tidy|better structure|more efficient)", re.IGNORECASE),
    re.compile(r"make.*better", re.IGNORECASE),
]


def classify_intent(request: str) -> RoutingDecision:
    """Pick a route for ``request`` from its wording alone."""
    request = request.strip()

    if any(p.search(request) for p in META_PATTERNS):
        return RoutingDecision(
            route=Route.META_CHAT,
            confidence=0.95,
            reasoning="Question/information request detected",
            estimated_time="3-5s",
            estimated_cost="$0.05",
        )

    is_short = len(request.split()) <= 10
    if any(p.search(request) for p in DIRECT_EDIT_PATTERNS) or (SIMPLE_ACTION.search(request) and is_short):
        return RoutingDecision(
            route=Route.DIRECT_EDIT,
            confidence=0.90,
            reasoning="Simple, focused change detected",
            estimated_time="< 2s",
            estimated_cost="$0.02",
        )

    if any(p.search(request) for p in REFACTOR_PATTERNS):
        return RoutingDecision(
            route=Route.REFACTOR,
            confidence=0.85,
            reasoning="Code optimization request detected",
            estimated_time="30-60s",
            estimated_cost="$0.20",
        )

    return RoutingDecision(
        route=Route.FEATURE_BUILD,
        confidence=0.80,
        reasoning="Complex feature implementation required",
        estimated_time="10-30s",
        estimated_cost="$0.10",
    )


async def route_request(
    session: AsyncSession,
    request: str,
    user_id: UUID,
    conversation_id: UUID | None = None,
    project_id: UUID | None = None,
    context: dict[str, Any] | None = None,
) -> RouteResponse:
    """Classify ``request``, record the decision and run the matching handler.

    Edits run inline against the project's code (or ``context["current_code"]``);
    feature builds are queued as code generation jobs.
    """
    context = context or {}
    start = time.perf_counter()
    channel_key = project_id or conversation_id
    broadcaster = get_broadcaster()

    def broadcast(event: str, status: str, message: str, progress: int) -> None:
        if channel_key is not None:
            broadcaster.publish(
                status_channel(channel_key),
                event,
                {"status": status, "message": message, "progress": progress},
                source="router",
            )

    broadcast("routing:start", "analyzing", "Understanding your request...", 2)
    decision = classify_intent(request)
    logger.info(f"Routing to {decision.route.value}: {decision.reasoning}")

    session.add(RoutingDecisionLog(
        user_id=user_id,
        conversation_id=conversation_id,
        project_id=project_id,
        request_text=request,
        route=decision.route.value,
        confidence=decision.confidence,
        reasoning=decision.reasoning,
        estimated_time=decision.estimated_time,
        estimated_cost=decision.estimated_cost,
    ))
    await session.flush()

    project = None
    if project_id is not None:
        project = await session.get(Project, project_id)
        if project is not None and project.user_id != user_id:
            project = None
    current_code = context.get("current_code") or (project.html_code if project else "")

    route = decision.route
    if route in (Route.DIRECT_EDIT, Route.REFACTOR) and not current_code:
        logger.info("No existing code to edit, building as a new feature instead")
        route = Route.FEATURE_BUILD

    try:
        if route in (Route.DIRECT_EDIT, Route.REFACTOR):
            broadcast(f"route:{route.value.lower()}", "editing", "Updating your code...", 30)
            diff = await smart_diff_update(
                session,
                user_request=request,
                current_code=current_code,
                conversation_id=conversation_id,
                user_id=user_id,
            )
            if diff.code and project is not None:
                project.html_code = diff.code
                project.updated_at = utcnow()
                await session.flush()
            result: dict[str, Any] = diff.model_dump(mode="json")

        elif route == Route.META_CHAT:
            broadcast("route:meta_chat", "thinking", "Analyzing your question...", 30)
            result = await chat_reply(session, request, conversation_id=conversation_id)

        else:
            broadcast("route:feature_build", "queued", "Queued for generation...", 10)
            job = await enqueue_job(
                session,
                user_id=user_id,
                job_type=JobType.CODE_GENERATION,
                input_data={"prompt": request, **{k: v for k, v in context.items() if k != "current_code"}},
                project_id=project.id if project else None,
                conversation_id=conversation_id,
            )
            result = {"job_id": str(job.id), "status": job.status}

    except Exception as e:
        broadcast("route:error", "error", f"{route.value} failed: {e}", 0)
        raise

    broadcast("route:complete", "complete", "Done", 100)
    return RouteResponse(
        success=True,
        decision=decision if route == decision.route else decision.model_copy(update={"route": route}),
        result=result,
        duration_ms=int((time.perf_counter() - start) * 1000),
    )

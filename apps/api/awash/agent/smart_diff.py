"""Surgical code updates.

A keyword pass over the request estimates how much of the code the change
touches; the estimate picks the model, the token budget and the
instructions given to the model.
"""

from __future__ import annotations

import logging
import math
import re
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from awash.agent.prompts import format_smart_diff_prompt
from awash.config import get_settings
from awash.database.models import GenerationAnalytics, ProjectMemory
from awash.llm.router import get_router
from awash.schemas import ChangeAnalysis, ChangeScope, DiffEfficiency, LLMMessage, SmartDiffResponse


logger = logging.getLogger(__name__)

CODE_BLOCK = re.compile(r"<code>(.*?)</code>", re.DOTALL)

# Code longer than this is always treated as an extensive change
LARGE_CODE_CHARS = 10000

STRATEGIES = {
    ChangeScope.MINIMAL: "Target specific lines/sections only",
    ChangeScope.MODERATE: "Update relevant components while preserving others",
    ChangeScope.EXTENSIVE: "Comprehensive refactor with careful preservation",
}

# (keywords, scope, affected section); later matches override the scope
SCOPE_RULES: list[tuple[tuple[str, ...], ChangeScope, str]] = [
    (("color", "style", "font", "design"), ChangeScope.MINIMAL, "CSS styles"),
    (("text", "content", "heading", "button text"), ChangeScope.MINIMAL, "HTML content"),
    (("add", "new section", "create"), ChangeScope.MODERATE, "HTML structure"),
    (("function", "feature", "interactive", "click"), ChangeScope.MODERATE, "JavaScript logic"),
    (("refactor", "reorganize", "restructure"), ChangeScope.EXTENSIVE, "Full codebase"),
]


def analyze_changes(user_request: str, code: str) -> ChangeAnalysis:
    """Estimate the scope of a requested change."""
    request = user_request.lower()
    scope = ChangeScope.MINIMAL
    sections: list[str] = []

    for keywords, rule_scope, section in SCOPE_RULES:
        matched = any(k in request for k in keywords)
        if rule_scope == ChangeScope.EXTENSIVE:
            matched = matched or len(code) > LARGE_CODE_CHARS
        if matched:
            scope = rule_scope
            sections.append(section)

    return ChangeAnalysis(scope=scope, affected_sections=sections, strategy=STRATEGIES[scope])


def extract_code(answer: str) -> tuple[str | None, str]:
    """Split a model answer into the ``<code>`` body and the explanation around it."""
    match = CODE_BLOCK.search(answer)
    if not match:
        return None, answer.strip()
    return match.group(1).strip(), CODE_BLOCK.sub("", answer, count=1).strip()


def compute_efficiency(original: str, updated: str | None) -> DiffEfficiency:
    original_length = len(original)
    new_length = len(updated or "")
    if original_length == 0:
        return DiffEfficiency(
            original_length=0, new_length=new_length, change_percent="0.0%", lines_preserved=0
        )

    delta = abs(new_length - original_length) / original_length
    return DiffEfficiency(
        original_length=original_length,
        new_length=new_length,
        change_percent=f"{delta * 100:.1f}%",
        lines_preserved=math.floor((1 - delta) * 100),
    )


async def load_coding_patterns(session: AsyncSession, conversation_id: UUID | None) -> dict | None:
    if conversation_id is None:
        return None
    result = await session.execute(
        select(ProjectMemory).where(ProjectMemory.conversation_id == conversation_id)
    )
    memory = result.scalar_one_or_none()
    return memory.coding_patterns if memory else None


async def smart_diff_update(
    session: AsyncSession,
    user_request: str,
    current_code: str,
    conversation_id: UUID | None = None,
    user_id: UUID | None = None,
) -> SmartDiffResponse:
    """Apply ``user_request`` to ``current_code`` with as small a change as possible.

    Raises whatever the router raises once every model layer has failed.
    """
    settings = get_settings()
    analysis = analyze_changes(user_request, current_code)
    logger.info(
        f"Smart diff: scope={analysis.scope.value} sections={analysis.affected_sections} "
        f"code={len(current_code)} chars"
    )

    minimal = analysis.scope == ChangeScope.MINIMAL
    prompt = format_smart_diff_prompt(
        user_request=user_request,
        current_code=current_code,
        scope=analysis.scope.value,
        sections=analysis.affected_sections,
        strategy=analysis.strategy,
        coding_patterns=await load_coding_patterns(session, conversation_id),
    )

    result = await get_router().chat_completion(
        messages=[LLMMessage(role="user", content=prompt)],
        preferred_model=settings.model_lite if minimal else settings.model_backup,
        temperature=0.3,
        max_tokens=4000 if minimal else 8000,
    )

    code, explanation = extract_code(result.content)
    efficiency = compute_efficiency(current_code, code)
    logger.info(
        f"Smart diff complete: {efficiency.original_length} -> {efficiency.new_length} chars "
        f"({efficiency.change_percent})"
    )

    if user_id is not None:
        session.add(GenerationAnalytics(
            user_id=user_id,
            model_used=result.model_used,
            user_prompt=user_request,
            system_prompt="Diff-based smart update",
            generated_code=code or "",
            existing_code_context=(
                f"{efficiency.original_length} chars -> {efficiency.new_length} chars "
                f"({efficiency.change_percent} change)"
            ),
            status="success" if code else "no_code",
        ))
        await session.flush()

    return SmartDiffResponse(
        success=code is not None,
        code=code,
        explanation=explanation,
        change_analysis=analysis,
        efficiency=efficiency,
        model_used=result.model_used,
    )

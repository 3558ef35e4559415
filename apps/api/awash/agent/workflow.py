"""LangGraph workflow for code generation jobs.

Graph structure:
START → plan → schema → code → validate → END
                          ↑________↓
                    retry (max 2, with the parse error fed back)

Progress is reported through an optional async callback passed in the run
config as ``configurable.progress``.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Awaitable, Callable, Literal, TypedDict
from uuid import uuid4

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from awash.agent.prompts import (
    ARCHITECT_SYSTEM_PROMPT,
    SQL_SYSTEM_PROMPT,
    SYSTEM_PROMPT,
    format_architecture_prompt,
    format_code_prompt,
    format_repair_prompt,
    format_schema_prompt,
)
from awash.errors import ResponseParseError
from awash.llm.parsing import ResponseParser, extract_json
from awash.llm.router import get_router
from awash.schemas import LLMMessage


logger = logging.getLogger(__name__)

# Maximum retries of the code step after a failed validation
MAX_RETRIES = 2

ProgressCallback = Callable[[int, str], Awaitable[None]]

DEFAULT_ARCHITECTURE: dict[str, Any] = {
    "components": ["Main component"],
    "database_schema": [],
    "features": ["Basic functionality"],
    "file_structure": ["src/pages/Generated.tsx"],
    "complexity": "simple",
}

SQL_FENCE = re.compile(r"```(?:sql)?\s*\n?(.*?)```", re.DOTALL)


# =============================================================================
# State Definition
# =============================================================================

class GenerationState(TypedDict, total=False):
    """State for the generation workflow.

    Attributes:
        job_id: Job this run belongs to
        prompt: The user's description of the application
        architecture: Planned components, tables, features and files
        database_sql: SQL for the planned tables, empty if none
        raw_code: Last raw model answer from the code step
        files: Generated files, path -> content
        plan: Implementation steps the model reported
        message_to_user: Summary to show the user
        model_used: Model that produced the accepted code
        retry_count: Failed validations so far
        errors: Validation errors, oldest first
        status: planning | schema | generating | validating | completed | failed
    """
    job_id: str
    prompt: str
    architecture: dict[str, Any]
    database_sql: str
    raw_code: str
    files: dict[str, str]
    plan: list[str]
    message_to_user: str
    model_used: str
    retry_count: int
    errors: list[str]
    status: str


def initial_state(prompt: str, job_id: str | None = None) -> GenerationState:
    return GenerationState(
        job_id=job_id or str(uuid4()),
        prompt=prompt,
        architecture={},
        database_sql="",
        raw_code="",
        files={},
        plan=[],
        message_to_user="",
        model_used="",
        retry_count=0,
        errors=[],
        status="planning",
    )


async def _report(config: RunnableConfig | None, progress: int, step: str) -> None:
    callback = ((config or {}).get("configurable") or {}).get("progress")
    if callback is not None:
        await callback(progress, step)


# =============================================================================
# Node Functions
# =============================================================================

async def plan_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    """Ask for an architecture plan; fall back to a single-page default."""
    logger.info(f"[{state['job_id']}] Planning architecture")
    await _report(config, 10, "Planning architecture...")

    router = get_router()
    result = await router.chat_completion(
        messages=[
            LLMMessage(role="system", content=ARCHITECT_SYSTEM_PROMPT),
            LLMMessage(role="user", content=format_architecture_prompt(state["prompt"])),
        ],
        preferred_model=router.backup_model,
        temperature=0.7,
    )

    try:
        architecture = extract_json(result.content)
        if not isinstance(architecture, dict):
            raise ResponseParseError("architecture must be a JSON object")
    except ResponseParseError as e:
        logger.warning(f"[{state['job_id']}] Unusable architecture plan, using default: {e}")
        architecture = dict(DEFAULT_ARCHITECTURE)

    return {"architecture": architecture, "status": "schema"}


async def schema_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    """Generate SQL for the planned tables, if there are any."""
    await _report(config, 30, "Generating database schema...")

    tables = state["architecture"].get("database_schema") or []
    if not tables:
        logger.info(f"[{state['job_id']}] No tables planned, skipping schema")
        return {"database_sql": "", "status": "generating"}

    logger.info(f"[{state['job_id']}] Generating schema for {len(tables)} table(s)")
    router = get_router()
    result = await router.chat_completion(
        messages=[
            LLMMessage(role="system", content=SQL_SYSTEM_PROMPT),
            LLMMessage(role="user", content=format_schema_prompt(tables)),
        ],
        preferred_model=router.backup_model,
        temperature=0.3,
    )

    sql = result.content.strip()
    fenced = SQL_FENCE.search(sql)
    if fenced:
        sql = fenced.group(1).strip()
    return {"database_sql": sql, "status": "generating"}


async def code_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    """Generate the application files; on a retry the last error is fed back."""
    attempt = state["retry_count"] + 1
    logger.info(f"[{state['job_id']}] Generating code (attempt {attempt})")
    await _report(config, 60, "Generating code...")

    messages = [
        LLMMessage(role="system", content=SYSTEM_PROMPT),
        LLMMessage(
            role="user",
            content=format_code_prompt(state["prompt"], state["architecture"], state["database_sql"]),
        ),
    ]
    if state["retry_count"] and state["raw_code"]:
        messages.append(LLMMessage(role="assistant", content=state["raw_code"]))
        messages.append(LLMMessage(role="user", content=format_repair_prompt(state["errors"][-1])))

    result = await get_router().chat_completion(messages=messages, temperature=0.5)
    return {"raw_code": result.content, "model_used": result.model_used, "status": "validating"}


async def validate_node(state: GenerationState, config: RunnableConfig) -> dict[str, Any]:
    """Parse the code answer and reject incomplete output."""
    await _report(config, 90, "Validating generated code...")

    try:
        parsed = ResponseParser().parse_full(state["raw_code"])
        if not parsed.files:
            raise ResponseParseError("Response contained no files")
    except ResponseParseError as e:
        retry_count = state["retry_count"] + 1
        logger.warning(f"[{state['job_id']}] Validation failed ({retry_count}/{MAX_RETRIES + 1}): {e}")
        return {
            "retry_count": retry_count,
            "errors": [*state["errors"], e.message],
            "status": "failed" if retry_count > MAX_RETRIES else "generating",
        }

    logger.info(f"[{state['job_id']}] Validation passed with {len(parsed.files)} file(s)")
    return {
        "files": parsed.files,
        "plan": parsed.plan,
        "message_to_user": parsed.message_to_user,
        "status": "completed",
    }


# =============================================================================
# Routing Functions
# =============================================================================

def should_retry(state: GenerationState) -> Literal["code", "end"]:
    """Retry the code step until validation passes or retries run out."""
    if state["status"] == "generating":
        return "code"
    return "end"


# =============================================================================
# Workflow Builder
# =============================================================================

def build_workflow() -> StateGraph:
    """Build the LangGraph workflow."""
    workflow = StateGraph(GenerationState)

    workflow.add_node("plan", plan_node)
    workflow.add_node("schema", schema_node)
    workflow.add_node("code", code_node)
    workflow.add_node("validate", validate_node)

    workflow.set_entry_point("plan")

    workflow.add_edge("plan", "schema")
    workflow.add_edge("schema", "code")
    workflow.add_edge("code", "validate")

    workflow.add_conditional_edges(
        "validate",
        should_retry,
        {
            "code": "code",
            "end": END,
        },
    )

    return workflow


# Compiled workflow
generation_workflow = build_workflow().compile()


# =============================================================================
# Public API
# =============================================================================

async def run_generation(
    prompt: str,
    job_id: str | None = None,
    progress: ProgressCallback | None = None,
) -> GenerationState:
    """Run the whole generation workflow.

    Args:
        prompt: Description of the application to build
        job_id: Job the run belongs to (generated if not provided)
        progress: Optional ``async (percent, step)`` callback

    Returns:
        Final state; ``status`` is ``completed`` or ``failed``
    """
    state = initial_state(prompt, job_id)
    logger.info(f"Starting generation {state['job_id']}")

    final = await generation_workflow.ainvoke(state, config={"configurable": {"progress": progress}})

    logger.info(f"Generation {final['job_id']} finished with status {final['status']}")
    return final


def generation_output(state: GenerationState) -> dict[str, Any]:
    """Shape a completed state into a job's ``output_data``."""
    architecture = state["architecture"]
    return {
        "architecture": architecture,
        "database_sql": state["database_sql"],
        "generated_files": [
            {"path": path, "content": content, "type": "component"}
            for path, content in state["files"].items()
        ],
        "plan": state["plan"],
        "message": state["message_to_user"],
        "model_used": state["model_used"],
        "summary": {
            "components_created": len(architecture.get("components") or []) or 1,
            "tables_created": len(architecture.get("database_schema") or []),
            "features_implemented": len(architecture.get("features") or []) or 1,
        },
    }

"""Job handlers, one per job type.

A handler receives the claimed job and returns the dict stored as its
``output_data``; raising marks the job failed.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from awash.agent.smart_diff import smart_diff_update
from awash.agent.workflow import generation_output, run_generation
from awash.database.models import GenerationJob
from awash.errors import InvalidParamsError, ResponseParseError
from awash.functions.ai_workers import chat_reply
from awash.jobs.queue import JobHandler, update_progress
from awash.schemas import JobType


logger = logging.getLogger(__name__)


async def handle_code_generation(session: AsyncSession, job: GenerationJob) -> dict[str, Any]:
    prompt = job.input_data.get("prompt")
    if not prompt:
        raise InvalidParamsError("Code generation job has no prompt")

    async def progress(percent: int, step: str) -> None:
        await update_progress(session, job, percent, step)
        await session.commit()

    state = await run_generation(prompt, job_id=str(job.id), progress=progress)
    if state["status"] != "completed":
        errors = state.get("errors") or ["unknown error"]
        raise ResponseParseError(f"Code generation failed: {errors[-1]}", {"errors": errors})

    await update_progress(session, job, 100, "Completed")
    return generation_output(state)


async def handle_smart_diff(session: AsyncSession, job: GenerationJob) -> dict[str, Any]:
    data = job.input_data
    if not data.get("user_request") or not data.get("current_code"):
        raise InvalidParamsError("Smart diff job needs user_request and current_code")

    await update_progress(session, job, 30, "Updating code...")
    diff = await smart_diff_update(
        session,
        user_request=data["user_request"],
        current_code=data["current_code"],
        conversation_id=job.conversation_id,
        user_id=job.user_id,
    )
    return diff.model_dump(mode="json")


async def handle_chat(session: AsyncSession, job: GenerationJob) -> dict[str, Any]:
    message = job.input_data.get("message") or job.input_data.get("prompt")
    if not message:
        raise InvalidParamsError("Chat job has no message")
    return await chat_reply(session, message, conversation_id=job.conversation_id)


HANDLERS: dict[str, JobHandler] = {
    JobType.CODE_GENERATION.value: handle_code_generation,
    JobType.SMART_DIFF.value: handle_smart_diff,
    JobType.CHAT.value: handle_chat,
}


async def run_job(session: AsyncSession, job: GenerationJob) -> dict[str, Any]:
    """Default queue handler: dispatch on ``job.job_type``."""
    handler = HANDLERS.get(job.job_type)
    if handler is None:
        raise InvalidParamsError(f"Unsupported job type: {job.job_type}")
    logger.info(f"Running {job.job_type} job {job.id}")
    return await handler(session, job)

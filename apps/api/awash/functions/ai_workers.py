"""unified-ai-workers: single-shot model calls.

Operations:
- chat: answer a developer question, stored in the conversation if given
- code_generation: code for a prompt, on the model the selector picks
- debug_assistance: root cause and fix for a code error
- test_generation: tests for a piece of code
- basic_reasoning: step-by-step breakdown of a problem
"""

from __future__ import annotations

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from awash.agent.prompts import (
    CHAT_SYSTEM_PROMPT,
    CODE_GENERATION_SYSTEM_PROMPT,
    DEBUG_SYSTEM_PROMPT,
    REASONING_SYSTEM_PROMPT,
    TEST_GENERATION_SYSTEM_PROMPT,
    format_debug_prompt,
)
from awash.config import get_settings
from awash.database.models import Conversation, Message
from awash.functions.registry import FunctionContext, convert, parse_uuid, registry, require
from awash.llm.router import get_router
from awash.llm.selector import profile_task, select_optimal_model
from awash.schemas import LLMMessage


logger = logging.getLogger(__name__)

NAME = "unified-ai-workers"


async def ask(system: str, user: str, model: str | None = None) -> str:
    """One system + user exchange, on the backup model unless ``model`` is given."""
    result = await get_router().chat_completion(
        messages=[
            LLMMessage(role="system", content=system),
            LLMMessage(role="user", content=user),
        ],
        preferred_model=model or get_settings().model_backup,
    )
    return result.content


async def chat_reply(
    session: AsyncSession,
    message: str,
    conversation_id: UUID | str | None = None,
) -> dict[str, Any]:
    """Answer ``message``; the reply is appended to the conversation when it exists."""
    response = await ask(CHAT_SYSTEM_PROMPT, message)

    if conversation_id is not None:
        conversation_id = UUID(str(conversation_id))
        if await session.get(Conversation, conversation_id) is not None:
            session.add(Message(conversation_id=conversation_id, role="assistant", content=response))
            await session.flush()
        else:
            logger.warning(f"Conversation {conversation_id} not found, reply not stored")

    return {"response": response}


@registry.register(NAME, "chat")
async def chat(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    require(params, "message")
    conversation_id = convert(params, "conversation_id", parse_uuid)
    return await chat_reply(ctx.session, params["message"], conversation_id=conversation_id)


@registry.register(NAME, "code_generation")
async def code_generation(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    require(params, "prompt")
    system = CODE_GENERATION_SYSTEM_PROMPT.format(language=params.get("language") or "TypeScript")
    model = select_optimal_model(profile_task(params["prompt"], params.get("context")))
    return {"code": await ask(system, params["prompt"], model=model), "model": model}


@registry.register(NAME, "debug_assistance")
async def debug_assistance(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    require(params, "code", "error")
    return {"analysis": await ask(DEBUG_SYSTEM_PROMPT, format_debug_prompt(params["code"], params["error"]))}


@registry.register(NAME, "test_generation")
async def test_generation(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    require(params, "code")
    system = TEST_GENERATION_SYSTEM_PROMPT.format(framework=params.get("framework") or "vitest")
    return {"tests": await ask(system, f"Generate tests for:\n\n{params['code']}")}


@registry.register(NAME, "basic_reasoning")
async def basic_reasoning(ctx: FunctionContext, params: dict[str, Any]) -> dict[str, Any]:
    require(params, "problem")
    return {"reasoning": await ask(REASONING_SYSTEM_PROMPT, params["problem"])}

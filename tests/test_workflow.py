"""Tests for the code generation workflow and the job handlers built on it."""

import json

import pytest
from sqlmodel import select

from awash.agent.workflow import DEFAULT_ARCHITECTURE, generation_output, run_generation
from awash.database.models import Conversation, GenerationAnalytics, GenerationJob, Message
from awash.errors import InvalidParamsError, ResponseParseError
from awash.jobs.handlers import handle_code_generation, run_job
from awash.jobs.queue import enqueue_job
from awash.schemas import JobType


ARCHITECTURE = {
    "components": ["TodoList", "TodoItem"],
    "database_schema": [{"table": "todos", "columns": ["id", "title", "done"]}],
    "features": ["Add todos", "Complete todos"],
    "file_structure": ["src/pages/Todos.tsx"],
    "complexity": "simple",
}

SQL_ANSWER = "```sql\nCREATE TABLE todos (id uuid PRIMARY KEY, title text, done boolean);\n```"

CODE_ANSWER = json.dumps({
    "thought": "A list with a form",
    "plan": ["Create the page", "Wire up state"],
    "files": {"src/pages/Todos.tsx": "export default function Todos() {\n  return <ul />;\n}\n"},
    "messageToUser": "Your todo app is ready",
})

INCOMPLETE_ANSWER = json.dumps({
    "thought": "Skipping the boring parts",
    "files": {"src/pages/Todos.tsx": "export default function Todos() {\n  // ...\n}\n"},
    "messageToUser": "Done",
})


class TestRunGeneration:
    async def test_full_run(self, fake_router, make_result):
        fake_router.chat_completion.side_effect = [
            make_result(json.dumps(ARCHITECTURE)),
            make_result(SQL_ANSWER),
            make_result(CODE_ANSWER),
        ]
        steps = []

        async def progress(percent, step):
            steps.append(percent)

        state = await run_generation("Build a todo app", job_id="job-1", progress=progress)

        assert state["status"] == "completed"
        assert state["job_id"] == "job-1"
        assert state["architecture"] == ARCHITECTURE
        assert state["database_sql"].startswith("CREATE TABLE todos")
        assert list(state["files"]) == ["src/pages/Todos.tsx"]
        assert state["message_to_user"] == "Your todo app is ready"
        assert state["retry_count"] == 0
        assert steps == [10, 30, 60, 90]

    async def test_plan_and_schema_use_backup_model(self, fake_router, make_result):
        fake_router.chat_completion.side_effect = [
            make_result(json.dumps(ARCHITECTURE)),
            make_result(SQL_ANSWER),
            make_result(CODE_ANSWER),
        ]
        await run_generation("Build a todo app")

        calls = fake_router.chat_completion.call_args_list
        assert calls[0].kwargs["preferred_model"] == fake_router.backup_model
        assert calls[1].kwargs["preferred_model"] == fake_router.backup_model
        assert "preferred_model" not in calls[2].kwargs

    async def test_unusable_plan_falls_back_to_default(self, fake_router, make_result):
        fake_router.chat_completion.side_effect = [
            make_result("I would build a nice app"),
            make_result(CODE_ANSWER),
        ]
        state = await run_generation("Build something")

        assert state["architecture"] == DEFAULT_ARCHITECTURE
        assert state["database_sql"] == ""
        assert state["status"] == "completed"
        # No tables planned, so the schema step never called the model
        assert fake_router.chat_completion.call_count == 2

    async def test_retry_feeds_error_back(self, fake_router, make_result):
        fake_router.chat_completion.side_effect = [
            make_result(json.dumps({**ARCHITECTURE, "database_schema": []})),
            make_result(INCOMPLETE_ANSWER),
            make_result(CODE_ANSWER),
        ]
        state = await run_generation("Build a todo app")

        assert state["status"] == "completed"
        assert state["retry_count"] == 1
        assert "placeholders" in state["errors"][0]

        retry_messages = fake_router.chat_completion.call_args_list[-1].kwargs["messages"]
        assert [m.role for m in retry_messages] == ["system", "user", "assistant", "user"]
        assert retry_messages[2].content == INCOMPLETE_ANSWER
        assert state["errors"][0] in retry_messages[3].content

    async def test_gives_up_after_max_retries(self, fake_router, make_result):
        fake_router.chat_completion.side_effect = [
            make_result(json.dumps({**ARCHITECTURE, "database_schema": []})),
            make_result(INCOMPLETE_ANSWER),
            make_result("not json"),
            make_result(INCOMPLETE_ANSWER),
        ]
        state = await run_generation("Build a todo app")

        assert state["status"] == "failed"
        assert state["retry_count"] == 3
        assert len(state["errors"]) == 3
        assert state["files"] == {}

    def test_generation_output(self):
        state = {
            "architecture": ARCHITECTURE,
            "database_sql": "CREATE TABLE todos ();",
            "files": {"src/pages/Todos.tsx": "x"},
            "plan": ["a"],
            "message_to_user": "Ready",
            "model_used": "google/gemini-2.5-pro",
        }
        output = generation_output(state)

        assert output["generated_files"] == [{"path": "src/pages/Todos.tsx", "content": "x", "type": "component"}]
        assert output["summary"] == {"components_created": 2, "tables_created": 1, "features_implemented": 2}
        assert output["message"] == "Ready"


class TestJobHandlers:
    async def _job(self, session, user_id, job_type, input_data, **kwargs):
        job = await enqueue_job(session, user_id, job_type, input_data, **kwargs)
        job.status = "running"
        await session.commit()
        return job

    async def test_code_generation_handler(self, session, user_id, fake_router, make_result):
        fake_router.chat_completion.side_effect = [
            make_result(json.dumps(ARCHITECTURE)),
            make_result(SQL_ANSWER),
            make_result(CODE_ANSWER),
        ]
        job = await self._job(session, user_id, JobType.CODE_GENERATION, {"prompt": "Build a todo app"})

        output = await run_job(session, job)

        assert output["generated_files"][0]["path"] == "src/pages/Todos.tsx"
        assert output["model_used"] == "google/gemini-2.5-pro"
        assert job.progress == 100
        assert job.current_step == "Completed"

    async def test_code_generation_failure_raises(self, session, user_id, fake_router, make_result):
        fake_router.chat_completion.side_effect = [
            make_result(json.dumps({**ARCHITECTURE, "database_schema": []})),
            *[make_result(INCOMPLETE_ANSWER)] * 3,
        ]
        job = await self._job(session, user_id, JobType.CODE_GENERATION, {"prompt": "Build a todo app"})

        with pytest.raises(ResponseParseError):
            await handle_code_generation(session, job)

    async def test_code_generation_needs_prompt(self, session, user_id):
        job = await self._job(session, user_id, JobType.CODE_GENERATION, {})
        with pytest.raises(InvalidParamsError):
            await run_job(session, job)

    async def test_smart_diff_handler(self, session, user_id, fake_router, make_result):
        fake_router.chat_completion.return_value = make_result("Made it blue <code><p class='blue'>Hi</p></code>")
        job = await self._job(
            session, user_id, JobType.SMART_DIFF,
            {"user_request": "make the text blue", "current_code": "<p>Hi</p>"},
        )

        output = await run_job(session, job)

        assert output["success"] is True
        assert output["code"] == "<p class='blue'>Hi</p>"
        analytics = (await session.execute(select(GenerationAnalytics))).scalars().all()
        assert len(analytics) == 1

    async def test_chat_handler_stores_reply(self, session, user_id, fake_router, make_result):
        fake_router.chat_completion.return_value = make_result("Use a context provider.")
        conversation = Conversation(user_id=user_id)
        session.add(conversation)
        await session.flush()
        job = await self._job(
            session, user_id, JobType.CHAT, {"message": "How do I share state?"},
            conversation_id=conversation.id,
        )

        output = await run_job(session, job)

        assert output == {"response": "Use a context provider."}
        messages = (await session.execute(select(Message))).scalars().all()
        assert [(m.role, m.content) for m in messages] == [("assistant", "Use a context provider.")]

    async def test_unknown_job_type(self, session, user_id):
        job = GenerationJob(user_id=user_id, job_type="video_render", status="running")
        with pytest.raises(InvalidParamsError, match="video_render"):
            await run_job(session, job)

"""Tests for request classification and routing."""

from uuid import UUID, uuid4

import pytest
from sqlmodel import select

from awash.agent.intent import classify_intent, route_request
from awash.database.models import GenerationJob, Project, RoutingDecisionLog
from awash.realtime import get_broadcaster, status_channel
from awash.schemas import Route


PAGE = "<main>\n<h1>Welcome</h1>\n</main>"


class TestClassifyIntent:
    @pytest.mark.parametrize("request_text, route", [
        ("What can you do?", Route.META_CHAT),
        ("how does the preview work", Route.META_CHAT),
        ("Explain the auth flow?", Route.META_CHAT),
        ("change the background color to blue", Route.DIRECT_EDIT),
        ("update title to Welcome", Route.DIRECT_EDIT),
        ("hide navbar", Route.DIRECT_EDIT),
        ("fix the footer links", Route.DIRECT_EDIT),
        ("refactor the navigation code so it is easier to maintain and test", Route.REFACTOR),
        ("Please clean up the messy dashboard components and split them into smaller files", Route.REFACTOR),
        ("Build a recipe sharing app with user accounts, favourites and a weekly meal planner",
         Route.FEATURE_BUILD),
        ("add a complete checkout flow with cart, payment form, order history and email receipts",
         Route.FEATURE_BUILD),
    ])
    def test_routes(self, request_text, route):
        assert classify_intent(request_text).route == route

    def test_estimates_follow_route(self):
        decision = classify_intent("change the text color to red")
        assert decision.confidence == 0.90
        assert decision.estimated_time == "< 2s"
        assert decision.estimated_cost == "$0.02"


class TestRouteRequest:
    async def test_meta_chat_answers_and_broadcasts(self, session, user_id, fake_router, make_result):
        fake_router.chat_completion.return_value = make_result("I build web apps from descriptions.")
        conversation_id = uuid4()

        async with get_broadcaster().subscribe(status_channel(conversation_id)) as queue:
            response = await route_request(session, "What can you do?", user_id, conversation_id=conversation_id)
            events = [queue.get_nowait()["event"] for _ in range(queue.qsize())]

        assert response.decision.route == Route.META_CHAT
        assert response.result == {"response": "I build web apps from descriptions."}
        assert events == ["routing:start", "route:meta_chat", "route:complete"]

        log = (await session.execute(select(RoutingDecisionLog))).scalar_one()
        assert log.route == "META_CHAT"
        assert log.request_text == "What can you do?"

    async def test_edit_without_code_becomes_feature_build(self, session, user_id, fake_router):
        response = await route_request(session, "change the background color to blue", user_id)

        assert response.decision.route == Route.FEATURE_BUILD
        job = await session.get(GenerationJob, UUID(response.result["job_id"]))
        assert job.status == "queued"
        assert job.input_data["prompt"] == "change the background color to blue"
        fake_router.chat_completion.assert_not_called()

        log = (await session.execute(select(RoutingDecisionLog))).scalar_one()
        assert log.route == "DIRECT_EDIT"

    async def test_direct_edit_updates_project(self, session, user_id, fake_router, make_result):
        project = Project(user_id=user_id, title="Landing", html_code=PAGE)
        session.add(project)
        await session.flush()
        fake_router.chat_completion.return_value = make_result(
            "Blue now.\n<code><main class='bg-blue'>\n<h1>Welcome</h1>\n</main></code>"
        )

        response = await route_request(
            session, "change the background color to blue", user_id, project_id=project.id
        )

        assert response.decision.route == Route.DIRECT_EDIT
        assert response.result["success"] is True
        assert project.html_code.startswith("<main class='bg-blue'>")
        assert project.updated_at is not None

    async def test_context_code_used_without_project(self, session, user_id, fake_router, make_result):
        fake_router.chat_completion.return_value = make_result("<code>optimized</code>")

        response = await route_request(
            session,
            "refactor the navigation code so it is easier to maintain and test",
            user_id,
            context={"current_code": PAGE},
        )

        assert response.decision.route == Route.REFACTOR
        assert response.result["code"] == "optimized"

    async def test_other_users_project_is_ignored(self, session, user_id, fake_router):
        project = Project(user_id=uuid4(), title="Not mine", html_code=PAGE)
        session.add(project)
        await session.flush()

        response = await route_request(session, "hide navbar", user_id, project_id=project.id)

        assert response.decision.route == Route.FEATURE_BUILD
        job = await session.get(GenerationJob, UUID(response.result["job_id"]))
        assert job.project_id is None
        assert project.html_code == PAGE

    async def test_handler_failure_broadcasts_error(self, session, user_id, fake_router):
        fake_router.chat_completion.side_effect = RuntimeError("gateway down")
        conversation_id = uuid4()

        async with get_broadcaster().subscribe(status_channel(conversation_id)) as queue:
            with pytest.raises(RuntimeError):
                await route_request(session, "What can you do?", user_id, conversation_id=conversation_id)
            events = [queue.get_nowait()["event"] for _ in range(queue.qsize())]

        assert events[-1] == "route:error"

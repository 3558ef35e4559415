"""Tests for surgical code updates."""

from uuid import uuid4

import pytest
from sqlmodel import select

from awash.agent.smart_diff import analyze_changes, compute_efficiency, extract_code, smart_diff_update
from awash.database.models import GenerationAnalytics, ProjectMemory
from awash.schemas import ChangeScope


PAGE = "<html>\n<body>\n<h1>Welcome</h1>\n<button>Sign up</button>\n</body>\n</html>"


class TestAnalyzeChanges:
    def test_style_change_is_minimal(self):
        analysis = analyze_changes("change the background color to navy", PAGE)
        assert analysis.scope == ChangeScope.MINIMAL
        assert analysis.affected_sections == ["CSS styles"]
        assert analysis.strategy == "Target specific lines/sections only"

    def test_new_section_is_moderate(self):
        analysis = analyze_changes("add a pricing table below the hero", PAGE)
        assert analysis.scope == ChangeScope.MODERATE
        assert analysis.affected_sections == ["HTML structure"]

    def test_refactor_is_extensive(self):
        analysis = analyze_changes("refactor the page into components", PAGE)
        assert analysis.scope == ChangeScope.EXTENSIVE
        assert "Full codebase" in analysis.affected_sections

    def test_large_code_is_always_extensive(self):
        analysis = analyze_changes("change the font", "x" * 10001)
        assert analysis.scope == ChangeScope.EXTENSIVE
        assert analysis.affected_sections == ["CSS styles", "Full codebase"]

    def test_unmatched_request_defaults_to_minimal(self):
        analysis = analyze_changes("tweak it", PAGE)
        assert analysis.scope == ChangeScope.MINIMAL
        assert analysis.affected_sections == []


def test_extract_code():
    code, explanation = extract_code("Changed the heading.\n<code>\n<h1>Hi</h1>\n</code>\nEnjoy!")
    assert code == "<h1>Hi</h1>"
    assert explanation == "Changed the heading.\n\nEnjoy!"

    assert extract_code("I could not do that.") == (None, "I could not do that.")


@pytest.mark.parametrize("original, updated, percent, preserved", [
    ("a" * 200, "a" * 150, "25.0%", 75),
    ("a" * 100, "a" * 100, "0.0%", 100),
    ("", "new", "0.0%", 0),
])
def test_compute_efficiency(original, updated, percent, preserved):
    efficiency = compute_efficiency(original, updated)
    assert efficiency.change_percent == percent
    assert efficiency.lines_preserved == preserved
    assert efficiency.new_length == len(updated)


class TestSmartDiffUpdate:
    async def test_minimal_change_uses_lite_model(self, session, user_id, fake_router, make_result):
        fake_router.chat_completion.return_value = make_result(
            "Made the button green.\n<code><button class='green'>Sign up</button></code>",
            model="google/gemini-2.5-flash-lite",
        )

        result = await smart_diff_update(session, "change the button color to green", PAGE, user_id=user_id)

        call = fake_router.chat_completion.call_args
        assert call.kwargs["preferred_model"] == "google/gemini-2.5-flash-lite"
        assert call.kwargs["max_tokens"] == 4000
        assert result.success is True
        assert result.code == "<button class='green'>Sign up</button>"
        assert result.explanation == "Made the button green."
        assert result.model_used == "google/gemini-2.5-flash-lite"

        analytics = (await session.execute(select(GenerationAnalytics))).scalar_one()
        assert analytics.status == "success"
        assert analytics.system_prompt == "Diff-based smart update"

    async def test_moderate_change_uses_backup_model(self, session, fake_router, make_result):
        fake_router.chat_completion.return_value = make_result("<code>new</code>")

        await smart_diff_update(session, "add a contact form", PAGE)

        call = fake_router.chat_completion.call_args
        assert call.kwargs["preferred_model"] == "google/gemini-2.5-flash"
        assert call.kwargs["max_tokens"] == 8000

    async def test_answer_without_code(self, session, user_id, fake_router, make_result):
        fake_router.chat_completion.return_value = make_result("That change is not possible.")

        result = await smart_diff_update(session, "change the text", PAGE, user_id=user_id)

        assert result.success is False
        assert result.code is None
        assert result.efficiency.new_length == 0
        analytics = (await session.execute(select(GenerationAnalytics))).scalar_one()
        assert analytics.status == "no_code"

    async def test_project_patterns_added_to_prompt(self, session, fake_router, make_result):
        memory = ProjectMemory(conversation_id=uuid4(), coding_patterns={"css": "tailwind"})
        session.add(memory)
        await session.flush()
        fake_router.chat_completion.return_value = make_result("<code>x</code>")

        await smart_diff_update(session, "change the font", PAGE, conversation_id=memory.conversation_id)

        prompt = fake_router.chat_completion.call_args.kwargs["messages"][0].content
        assert "PROJECT PATTERNS" in prompt
        assert "tailwind" in prompt

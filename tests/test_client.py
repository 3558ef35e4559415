"""Tests for the unified functions HTTP client."""

import json

import httpx
import pytest

from awash.functions.client import UnifiedFunctionsClient, invoke_unified_function


class Recorder:
    """Collects requests and plays back scripted responses."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []
        self.sleeps = []

    def handler(self, request):
        self.requests.append(request)
        status, body = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        return httpx.Response(status, json=body)

    async def sleep(self, seconds):
        self.sleeps.append(seconds)

    def client(self, **kwargs):
        return httpx.AsyncClient(
            base_url="http://test/api", transport=httpx.MockTransport(self.handler), **kwargs
        )

    def bodies(self):
        return [json.loads(r.content) for r in self.requests]


def ok(data):
    return 200, {"success": True, "data": data}


FAILED = (500, None)


class TestInvokeUnifiedFunction:
    async def test_retries_then_succeeds(self):
        recorder = Recorder(FAILED, FAILED, ok({"response": "hi"}))
        async with recorder.client() as client:
            result = await invoke_unified_function(
                "unified-ai-workers", "chat", {"message": "hi"}, client=client, sleep=recorder.sleep
            )

        assert result.ok
        assert result.data == {"response": "hi"}
        assert recorder.sleeps == [1.0, 2.0]
        assert recorder.requests[0].url.path == "/api/functions/unified-ai-workers"
        assert recorder.bodies()[0] == {"operation": "chat", "params": {"message": "hi"}}

    async def test_final_failure_is_tracked(self):
        recorder = Recorder((503, None))
        async with recorder.client() as client:
            result = await invoke_unified_function(
                "unified-ai-workers", "chat", {"message": "hi"}, client=client, sleep=recorder.sleep
            )

        assert not result.ok
        assert "503" in result.error
        assert len(recorder.requests) == 4
        tracking = recorder.requests[-1]
        assert tracking.url.path == "/api/functions/unified-monitoring"
        body = json.loads(tracking.content)
        assert body["operation"] == "track_error"
        assert body["params"]["error_type"] == "function_call_failed"
        assert body["params"]["context"] == {"function": "unified-ai-workers", "operation": "chat", "attempt": 3}

    async def test_failed_tracking_is_not_tracked_again(self):
        recorder = Recorder(FAILED)
        async with recorder.client() as client:
            result = await invoke_unified_function(
                "unified-monitoring", "track_error", {"error_message": "x"},
                retries=2, client=client, sleep=recorder.sleep,
            )

        assert result.error is not None
        assert len(recorder.requests) == 2
        assert recorder.sleeps == [1.0]

    async def test_unsuccessful_body_counts_as_failure(self):
        recorder = Recorder(
            (200, {"success": False, "error": "model overloaded"}),
            ok({"tracked": True}),
        )
        async with recorder.client() as client:
            result = await invoke_unified_function(
                "unified-ai-workers", "basic_reasoning", {"problem": "p"},
                retries=1, client=client, sleep=recorder.sleep,
            )

        assert result.error == "model overloaded"
        assert recorder.sleeps == []
        assert recorder.bodies()[-1]["operation"] == "track_error"

    async def test_retries_never_below_one(self):
        recorder = Recorder(ok(1))
        async with recorder.client() as client:
            result = await invoke_unified_function(
                "unified-monitoring", "health_status", retries=0, client=client, sleep=recorder.sleep
            )
        assert result.data == 1
        assert recorder.bodies() == [{"operation": "health_status", "params": {}}]


class TestUnifiedFunctionsClient:
    @pytest.fixture
    def recorder(self):
        return Recorder(ok({"response": "hello"}))

    async def test_groups_drop_unset_params(self, recorder):
        functions = UnifiedFunctionsClient(client=recorder.client(), sleep=recorder.sleep)

        result = await functions.ai_workers.chat("hello")
        await functions.monitoring.track_metric("page_load_ms", 120.0)
        await functions.close()

        assert result.data == {"response": "hello"}
        assert recorder.bodies() == [
            {"operation": "chat", "params": {"message": "hello"}},
            {"operation": "track_metric", "params": {"metric_type": "page_load_ms", "metric_value": 120.0}},
        ]

    async def test_user_header(self, recorder):
        functions = UnifiedFunctionsClient(
            client=recorder.client(headers={"X-User-Id": "u-1"}), sleep=recorder.sleep
        )

        await functions.ai_workers.generate_tests("x()", framework="jest")
        await functions.close()

        request = recorder.requests[0]
        assert request.headers["X-User-Id"] == "u-1"
        assert json.loads(request.content)["params"] == {"code": "x()", "framework": "jest"}

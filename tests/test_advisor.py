"""Tests for the advisor bridge and its heuristic fallback."""

import json

import anyio
import httpx
import pytest

from project_atlas.config import Config
from project_atlas.db.models import NextTaskRecommendation, TaskContext
from project_atlas.integrations import advisor as advisor_mod


@pytest.fixture
def context():
    return advisor_mod.RecommendationContext(
        projects=[advisor_mod.ProjectSummary("proj_1", "Atlas", 64)],
        tasks=[TaskContext("task_1", "proj_1", "Write docs", "todo", ["review"])],
        heuristic=NextTaskRecommendation(
            task_id="task_1",
            project_id="proj_1",
            reason="Push Write docs (Docs) forward.",
            score=64,
        ),
    )


def _advisor(handler):
    return advisor_mod.OpenAIAdvisor(api_key="sk-test", transport=httpx.MockTransport(handler))


def _completion(content: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})


class TestPrompt:
    def test_prompt_mentions_state(self, context):
        prompt = advisor_mod.build_prompt(context)
        assert "Atlas (health 64)" in prompt
        assert "Write docs [todo] blockers:1" in prompt
        assert "Heuristic top candidate taskId: task_1" in prompt

    def test_prompt_without_pick(self):
        prompt = advisor_mod.build_prompt(advisor_mod.RecommendationContext())
        assert "No heuristic recommendation available." in prompt


class TestOpenAIAdvisor:
    @pytest.mark.anyio
    async def test_success(self, context):
        seen = {}

        def handler(request: httpx.Request):
            seen["auth"] = request.headers["authorization"]
            seen["body"] = json.loads(request.content)
            return _completion(
                json.dumps({"summary": "Ship the docs.", "recommendedTaskIds": ["task_1", 3]})
            )

        result = await _advisor(handler).recommend(context)
        assert result.summary == "Ship the docs."
        assert result.recommended_task_ids == ["task_1"]
        assert result.provider == "openai"
        assert seen["auth"] == "Bearer sk-test"
        assert seen["body"]["model"] == "gpt-4o-mini"

    @pytest.mark.anyio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(500, text="upstream down"),
            httpx.Response(200, text="<html>not json</html>"),
            httpx.Response(200, json={"choices": []}),
            _completion("I think you should write docs."),
            _completion(json.dumps({"summary": "no ids"})),
            _completion(json.dumps(["not", "an", "object"])),
        ],
    )
    async def test_degrades_to_nothing(self, context, response):
        assert await _advisor(lambda request: response).recommend(context) is None

    @pytest.mark.anyio
    async def test_unreachable(self, context):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        assert await _advisor(handler).recommend(context) is None


class TestGetRecommendation:
    @pytest.mark.anyio
    async def test_no_advisor_uses_heuristic(self, context):
        result = await advisor_mod.get_recommendation(None, context)
        assert result.summary == "Momentum move: Push Write docs (Docs) forward."
        assert result.recommended_task_ids == ["task_1"]
        assert result.provider == "heuristic"

    @pytest.mark.anyio
    async def test_no_pick_at_all(self):
        result = await advisor_mod.get_recommendation(None, advisor_mod.RecommendationContext())
        assert result.summary == advisor_mod.NO_WORK_SUMMARY
        assert result.recommended_task_ids == []

    @pytest.mark.anyio
    async def test_failed_advisor_falls_back(self, context):
        advisor = _advisor(lambda request: httpx.Response(503))
        result = await advisor_mod.get_recommendation(advisor, context)
        assert result.provider == "heuristic"

    @pytest.mark.anyio
    async def test_timeout_falls_back(self, context):
        class SlowAdvisor:
            async def recommend(self, context):
                await anyio.sleep(5)

        result = await advisor_mod.get_recommendation(SlowAdvisor(), context, timeout=0.05)
        assert result.provider == "heuristic"
        assert result.recommended_task_ids == ["task_1"]


class TestBuildAdvisor:
    def test_needs_key(self):
        assert advisor_mod.build_advisor(Config(openai_api_key=None)) is None

    def test_other_provider_disables(self):
        assert advisor_mod.build_advisor(Config(llm_provider="none", openai_api_key="k")) is None

    def test_openai(self):
        advisor = advisor_mod.build_advisor(
            Config(openai_api_key="k", openai_model="gpt-x", advisor_timeout=3.0)
        )
        assert advisor.model == "gpt-x"
        assert advisor.timeout == 3.0

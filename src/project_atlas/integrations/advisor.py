"""Optional LLM advisor layered on top of the heuristic recommendation."""

import json
import logging
from dataclasses import dataclass, field

import anyio
import httpx

from project_atlas.config import Config
from project_atlas.db.models import NextTaskRecommendation, TaskContext
from project_atlas.errors import AdvisorUnavailable

logger = logging.getLogger(__name__)

MAX_PROJECTS = 10
MAX_TASKS = 20
NO_WORK_SUMMARY = "No active tasks yet. Create a quest and define the first concrete task."


@dataclass
class ProjectSummary:
    id: str
    name: str
    health_score: int


@dataclass
class RecommendationContext:
    projects: list[ProjectSummary] = field(default_factory=list)
    tasks: list[TaskContext] = field(default_factory=list)
    heuristic: NextTaskRecommendation | None = None


@dataclass
class AdvisorRecommendation:
    summary: str
    recommended_task_ids: list[str]
    provider: str


def build_prompt(context: RecommendationContext) -> str:
    projects = ", ".join(
        f"{p.name} (health {p.health_score})" for p in context.projects[:MAX_PROJECTS]
    )
    tasks = "\n".join(
        f"{t.title} [{t.state}] blockers:{len(t.blockers)}" for t in context.tasks[:MAX_TASKS]
    )
    if context.heuristic:
        pick = f"Heuristic top candidate taskId: {context.heuristic.task_id}"
    else:
        pick = "No heuristic recommendation available."
    return "\n\n".join(
        [
            "You are a project execution coach.",
            "Given project and task state, provide one concise execution summary "
            "and 1-3 task IDs to focus next.",
            'Return strict JSON: {"summary": string, "recommendedTaskIds": string[]}',
            f"Projects: {projects}",
            f"Tasks:\n{tasks}",
            pick,
        ]
    )


class OpenAIAdvisor:
    """Asks an OpenAI-compatible chat completions endpoint for a summary."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-4o-mini",
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.model = model
        self.base_url = base_url
        self.timeout = timeout
        self.transport = transport

    async def recommend(self, context: RecommendationContext) -> AdvisorRecommendation | None:
        """Return the advisor's pick, or None when the service cannot help."""
        try:
            content = await self._complete(build_prompt(context))
            return self._parse(content)
        except AdvisorUnavailable as e:
            logger.warning("Advisor unavailable: %s", e)
            return None

    async def _complete(self, prompt: str) -> str:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": "You output valid JSON only."},
                {"role": "user", "content": prompt},
            ],
            "temperature": 0.2,
        }
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url, timeout=self.timeout, transport=self.transport
            ) as client:
                response = await client.post(
                    "/chat/completions",
                    json=payload,
                    headers={"Authorization": f"Bearer {self.api_key}"},
                )
                response.raise_for_status()
                body = response.json()
        except httpx.HTTPStatusError as e:
            raise AdvisorUnavailable(f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise AdvisorUnavailable(f"request failed: {e}") from e
        except ValueError as e:
            raise AdvisorUnavailable("response body is not JSON") from e

        try:
            content = body["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise AdvisorUnavailable("response has no message content") from e
        if not isinstance(content, str) or not content:
            raise AdvisorUnavailable("response has no message content")
        return content

    def _parse(self, content: str) -> AdvisorRecommendation:
        try:
            parsed = json.loads(content)
        except ValueError as e:
            raise AdvisorUnavailable("message content is not JSON") from e
        if not isinstance(parsed, dict):
            raise AdvisorUnavailable("message content is not a JSON object")

        summary = parsed.get("summary")
        task_ids = parsed.get("recommendedTaskIds")
        if not isinstance(summary, str) or not isinstance(task_ids, list):
            raise AdvisorUnavailable("message content is missing summary or recommendedTaskIds")
        return AdvisorRecommendation(
            summary=summary,
            recommended_task_ids=[t for t in task_ids if isinstance(t, str)],
            provider=self.name,
        )


def heuristic_fallback(context: RecommendationContext) -> AdvisorRecommendation:
    if context.heuristic:
        return AdvisorRecommendation(
            summary=f"Momentum move: {context.heuristic.reason}",
            recommended_task_ids=[context.heuristic.task_id],
            provider="heuristic",
        )
    return AdvisorRecommendation(
        summary=NO_WORK_SUMMARY,
        recommended_task_ids=[],
        provider="heuristic",
    )


def build_advisor(config: Config) -> OpenAIAdvisor | None:
    """Build the configured advisor. None when disabled or missing a key."""
    if config.llm_provider != "openai" or not config.openai_api_key:
        return None
    return OpenAIAdvisor(
        api_key=config.openai_api_key,
        model=config.openai_model,
        base_url=config.openai_base_url,
        timeout=config.advisor_timeout,
    )


async def get_recommendation(
    advisor: OpenAIAdvisor | None,
    context: RecommendationContext,
    timeout: float = 15.0,
) -> AdvisorRecommendation:
    """Ask the advisor within a deadline, falling back to the heuristic pick."""
    if advisor is not None:
        result = None
        with anyio.move_on_after(timeout) as scope:
            result = await advisor.recommend(context)
        if scope.cancelled_caught:
            logger.warning("Advisor timed out after %.1fs", timeout)
        if result is not None:
            return result
    return heuristic_fallback(context)

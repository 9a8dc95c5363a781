"""Tool table exposed to agents over the protocol server."""

from __future__ import annotations

import inspect
import logging
import sqlite3
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Literal

import pydantic
from mcp.types import Tool
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from project_atlas.config import Config
from project_atlas.core import projects as projects_mod
from project_atlas.core import pulse as pulse_mod
from project_atlas.core import quests as quests_mod
from project_atlas.core import recommend as recommend_mod
from project_atlas.core import sessions as sessions_mod
from project_atlas.core import tasks as tasks_mod
from project_atlas.db.engine import transaction
from project_atlas.db.models import SESSION_AGENTS
from project_atlas.errors import NotFoundError, ValidationError
from project_atlas.integrations import advisor as advisor_mod

logger = logging.getLogger(__name__)

TaskState = Literal["todo", "doing", "review", "done", "blocked"]
QuestState = Literal["todo", "active", "done", "blocked"]


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config
    advisor: advisor_mod.OpenAIAdvisor | None = None


@dataclass
class ToolSpec:
    name: str
    description: str
    args_model: type[BaseModel]
    handler: Callable


TOOLS: dict[str, ToolSpec] = {}


def tool(name: str, args_model: type[BaseModel]):
    """Register a handler under a tool name; its docstring is the description."""

    def decorator(fn):
        TOOLS[name] = ToolSpec(name, inspect.getdoc(fn) or "", args_model, fn)
        return fn

    return decorator


def tool_catalog() -> list[Tool]:
    return [
        Tool(name=spec.name, description=spec.description, inputSchema=spec.args_model.model_json_schema())
        for spec in TOOLS.values()
    ]


async def call_tool(app: AppContext, name: str, arguments: object) -> dict:
    """Validate arguments, then run the named tool. Raises AtlasError subclasses."""
    spec = TOOLS.get(name)
    if spec is None:
        raise ValidationError(f"Unknown tool: {name}")
    try:
        args = spec.args_model.model_validate(arguments if arguments is not None else {})
    except pydantic.ValidationError as e:
        raise ValidationError(_describe(e)) from e

    logger.debug("Calling tool %s", name)
    result = spec.handler(app, args)
    if inspect.isawaitable(result):
        result = await result
    return result


def _describe(error: pydantic.ValidationError) -> str:
    problems = []
    for item in error.errors():
        where = ".".join(str(part) for part in item["loc"]) or "arguments"
        problems.append(f"{where}: {item['msg']}")
    return "Invalid arguments: " + "; ".join(problems)


# ── Argument models ───────────────────────────────────────────────────────────


class ToolArgs(BaseModel):
    model_config = ConfigDict(strict=True, extra="ignore")


class NoArgs(ToolArgs):
    pass


class ProjectRefArgs(ToolArgs):
    project_id: str


class OptionalProjectArgs(ToolArgs):
    project_id: str | None = None


class ListTasksArgs(ToolArgs):
    project_id: str | None = None
    state: TaskState | None = None


class CreateTaskArgs(ToolArgs):
    title: str = Field(min_length=1)
    project_id: str | None = None
    quest_id: str | None = None
    details: str = ""
    estimate_points: int = Field(default=10, ge=0)
    blockers: list[str] = Field(default_factory=list)
    notes: str = ""

    @model_validator(mode="after")
    def _needs_parent(self):
        if not self.project_id and not self.quest_id:
            raise ValueError("project_id or quest_id is required")
        return self


class UpdateTaskArgs(ToolArgs):
    task_id: str
    title: str | None = Field(default=None, min_length=1)
    details: str | None = None
    state: TaskState | None = None
    blockers: list[str] | None = None
    notes: str | None = None
    estimate_points: int | None = Field(default=None, ge=0)
    actual_points: int | None = Field(default=None, ge=0)


class TaskRefArgs(ToolArgs):
    task_id: str


class LogSessionEventArgs(ToolArgs):
    cwd: str
    command: str
    agent: str = "unknown"
    started_at: datetime | None = Field(default=None, strict=False)
    ended_at: datetime | None = Field(default=None, strict=False)
    suggested_task_ids: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("agent", mode="before")
    @classmethod
    def _known_agent(cls, value: object) -> str:
        return value if value in SESSION_AGENTS else "unknown"


class CreateQuestArgs(ToolArgs):
    project_id: str
    title: str = Field(min_length=1)
    description: str = ""
    state: QuestState = "todo"
    priority: int = 2
    xp_reward: int = Field(default=50, ge=0)
    due_at: datetime | None = Field(default=None, strict=False)


class UpdateQuestArgs(ToolArgs):
    quest_id: str
    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    state: QuestState | None = None
    priority: int | None = None
    xp_reward: int | None = Field(default=None, ge=0)
    due_at: datetime | None = Field(default=None, strict=False)


# ── Tools ─────────────────────────────────────────────────────────────────────


@tool("list_projects", NoArgs)
def list_projects(app: AppContext, args: NoArgs) -> dict:
    """List all tracked projects."""
    return {"projects": [_project_to_dict(p) for p in projects_mod.list_projects(app.db)]}


@tool("get_project_pulse", ProjectRefArgs)
def get_project_pulse(app: AppContext, args: ProjectRefArgs) -> dict:
    """Get pulse metrics for a project by id, slug or path."""
    project = _resolve_project(app, args.project_id)
    pulse = pulse_mod.get_project_pulse(app.db, project.id)
    return {"project": _project_to_dict(project), "pulse": _pulse_to_dict(pulse)}


@tool("list_tasks", ListTasksArgs)
def list_tasks(app: AppContext, args: ListTasksArgs) -> dict:
    """List tasks filtered by project and/or state."""
    project_id = _resolve_project(app, args.project_id).id if args.project_id else None
    tasks = tasks_mod.list_tasks(app.db, project_id, state=args.state)
    return {"tasks": [_task_to_dict(t) for t in tasks]}


@tool("create_task", CreateTaskArgs)
def create_task(app: AppContext, args: CreateTaskArgs) -> dict:
    """Create a task in an existing quest or in the project's backlog quest."""
    if args.quest_id:
        quest = quests_mod.get_quest(app.db, args.quest_id)
        if not quest:
            raise NotFoundError(f"Quest not found: {args.quest_id}")
    else:
        project = _resolve_project(app, args.project_id)

    with transaction(app.db):
        if not args.quest_id:
            quest = quests_mod.ensure_backlog_quest(app.db, project.id)
        task = tasks_mod.create_task(
            app.db,
            quest.id,
            args.title,
            details=args.details,
            estimate_points=args.estimate_points,
            blockers=args.blockers,
            notes=args.notes,
        )
    return {"task": _task_to_dict(task)}


@tool("update_task", UpdateTaskArgs)
def update_task(app: AppContext, args: UpdateTaskArgs) -> dict:
    """Update fields on a task. Omitted fields are left as they are."""
    patch = args.model_dump(exclude={"task_id"}, exclude_none=True)
    task = tasks_mod.update_task(app.db, args.task_id, **patch)
    if not task:
        raise NotFoundError(f"Task not found: {args.task_id}")
    return {"task": _task_to_dict(task)}


@tool("complete_task", TaskRefArgs)
def complete_task(app: AppContext, args: TaskRefArgs) -> dict:
    """Mark a task complete and award its points."""
    task = tasks_mod.complete_task(app.db, args.task_id)
    if not task:
        raise NotFoundError(f"Task not found: {args.task_id}")
    return {"task": _task_to_dict(task)}


@tool("get_next_task", OptionalProjectArgs)
async def get_next_task(app: AppContext, args: OptionalProjectArgs) -> dict:
    """Get the next task recommendation with an optional LLM summary."""
    project_id = _resolve_project(app, args.project_id).id if args.project_id else None
    heuristic, advice = await next_task_advice(
        app.db, app.advisor, project_id, timeout=app.config.advisor_timeout
    )
    return {
        "recommendation": _recommendation_to_dict(heuristic) if heuristic else None,
        "summary": advice.summary,
        "provider": advice.provider,
        "recommendedTaskIds": advice.recommended_task_ids,
    }


@tool("log_session_event", LogSessionEventArgs)
def log_session_event(app: AppContext, args: LogSessionEventArgs) -> dict:
    """Log a codex/claude session event."""
    event = sessions_mod.log_session_event(
        app.db,
        args.cwd,
        args.command,
        agent=args.agent,
        started_at=args.started_at,
        ended_at=args.ended_at,
        suggested_task_ids=args.suggested_task_ids,
        metadata=args.metadata,
    )
    return {"event": _event_to_dict(event)}


@tool("list_quests", OptionalProjectArgs)
def list_quests(app: AppContext, args: OptionalProjectArgs) -> dict:
    """List quests, highest priority first, optionally for one project."""
    project_id = _resolve_project(app, args.project_id).id if args.project_id else None
    return {"quests": [_quest_to_dict(q) for q in quests_mod.list_quests(app.db, project_id)]}


@tool("create_quest", CreateQuestArgs)
def create_quest(app: AppContext, args: CreateQuestArgs) -> dict:
    """Create a quest in a project."""
    project = _resolve_project(app, args.project_id)
    quest = quests_mod.create_quest(
        app.db,
        project.id,
        args.title,
        description=args.description,
        state=args.state,
        xp_reward=args.xp_reward,
        due_at=args.due_at,
        priority=args.priority,
    )
    return {"quest": _quest_to_dict(quest)}


@tool("update_quest", UpdateQuestArgs)
def update_quest(app: AppContext, args: UpdateQuestArgs) -> dict:
    """Update fields on a quest. Omitted fields are left as they are."""
    patch = args.model_dump(exclude={"quest_id"}, exclude_none=True)
    quest = quests_mod.update_quest(app.db, args.quest_id, **patch)
    if not quest:
        raise NotFoundError(f"Quest not found: {args.quest_id}")
    return {"quest": _quest_to_dict(quest)}


# ── Helpers ───────────────────────────────────────────────────────────────────


async def next_task_advice(
    db: sqlite3.Connection,
    advisor: advisor_mod.OpenAIAdvisor | None,
    project_id: str | None = None,
    timeout: float = 15.0,
):
    """Return the heuristic pick and the advisor's take on it, or the fallback."""
    heuristic = recommend_mod.get_next_task_recommendation(db, project_id)
    context = advisor_mod.RecommendationContext(
        projects=[
            advisor_mod.ProjectSummary(p.id, p.name, p.health_score)
            for p in projects_mod.list_projects(db)
        ],
        tasks=tasks_mod.list_task_contexts(db, project_id),
        heuristic=heuristic,
    )
    advice = await advisor_mod.get_recommendation(advisor, context, timeout=timeout)
    return heuristic, advice


def _resolve_project(app: AppContext, ref: str):
    project = projects_mod.get_project(app.db, ref)
    if not project:
        raise NotFoundError(f"Project not found: {ref}")
    return project


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _project_to_dict(project) -> dict:
    return {
        "id": project.id,
        "slug": project.slug,
        "name": project.name,
        "path": project.path,
        "status": project.status,
        "tags": project.tags,
        "healthScore": project.health_score,
        "summary": project.summary,
        "projectType": project.project_type,
        "languages": project.languages,
        "hasGit": project.has_git,
        "createdAt": _iso(project.created_at),
        "updatedAt": _iso(project.updated_at),
    }


def _quest_to_dict(quest) -> dict:
    return {
        "id": quest.id,
        "projectId": quest.project_id,
        "title": quest.title,
        "description": quest.description,
        "state": quest.state,
        "xpReward": quest.xp_reward,
        "dueAt": _iso(quest.due_at),
        "priority": quest.priority,
        "createdAt": _iso(quest.created_at),
        "updatedAt": _iso(quest.updated_at),
    }


def _task_to_dict(task) -> dict:
    return {
        "id": task.id,
        "questId": task.quest_id,
        "title": task.title,
        "details": task.details,
        "state": task.state,
        "estimatePoints": task.estimate_points,
        "actualPoints": task.actual_points,
        "blockers": task.blockers,
        "notes": task.notes,
        "createdAt": _iso(task.created_at),
        "updatedAt": _iso(task.updated_at),
        "completedAt": _iso(task.completed_at),
    }


def _event_to_dict(event) -> dict:
    return {
        "id": event.id,
        "agent": event.agent,
        "cwd": event.cwd,
        "command": event.command,
        "startedAt": _iso(event.started_at),
        "endedAt": _iso(event.ended_at),
        "suggestedTaskIds": event.suggested_task_ids,
        "metadata": event.metadata,
    }


def _pulse_to_dict(pulse) -> dict:
    return {
        "projectId": pulse.project_id,
        "completionPercent": pulse.completion_percent,
        "tasksTodo": pulse.tasks_todo,
        "tasksDoing": pulse.tasks_doing,
        "tasksBlocked": pulse.tasks_blocked,
        "tasksDone": pulse.tasks_done,
        "velocity7d": pulse.velocity_7d,
        "stale": pulse.stale,
        "xpEarned": pulse.xp_earned,
        "nextAction": pulse.next_action,
    }


def _recommendation_to_dict(rec) -> dict:
    return {
        "taskId": rec.task_id,
        "projectId": rec.project_id,
        "reason": rec.reason,
        "score": rec.score,
    }

"""Data models for project atlas."""

from dataclasses import dataclass, field
from datetime import datetime

PROJECT_STATUSES = ("active", "paused", "archived")
QUEST_STATES = ("todo", "active", "done", "blocked")
TASK_STATES = ("todo", "doing", "review", "done", "blocked")
SESSION_AGENTS = ("codex", "claude", "unknown")


@dataclass
class Project:
    id: str
    slug: str
    name: str
    path: str
    status: str = "active"
    tags: list[str] = field(default_factory=list)
    health_score: int = 50
    summary: str = ""
    project_type: str = "project"
    languages: list[str] = field(default_factory=list)
    has_git: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Quest:
    id: str
    project_id: str
    title: str
    description: str = ""
    state: str = "todo"
    xp_reward: int = 50
    due_at: datetime | None = None
    priority: int = 2
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class Task:
    id: str
    quest_id: str
    title: str
    details: str = ""
    state: str = "todo"
    estimate_points: int = 10
    actual_points: int | None = None
    blockers: list[str] = field(default_factory=list)
    notes: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None


@dataclass
class SessionEvent:
    id: str
    agent: str
    cwd: str
    command: str
    started_at: datetime | None = None
    ended_at: datetime | None = None
    suggested_task_ids: list[str] = field(default_factory=list)
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class TaskContext:
    """A task summary joined to its project, as handed to the advisor."""

    id: str
    project_id: str
    title: str
    state: str
    blockers: list[str] = field(default_factory=list)


@dataclass
class ProjectPulse:
    project_id: str
    completion_percent: int = 0
    tasks_todo: int = 0
    tasks_doing: int = 0
    tasks_blocked: int = 0
    tasks_done: int = 0
    velocity_7d: int = 0
    stale: bool = True
    xp_earned: int = 0
    next_action: str = ""


@dataclass
class NextTaskRecommendation:
    task_id: str
    project_id: str
    reason: str
    score: int

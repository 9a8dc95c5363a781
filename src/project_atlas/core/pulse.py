"""Per-project progress metrics derived from the current task set."""

import math
import sqlite3
from datetime import datetime, timedelta, timezone

from project_atlas.core import recommend as recommend_mod
from project_atlas.db.codec import row_to_task
from project_atlas.db.models import ProjectPulse, Task

NO_QUEST_ACTION = "Create your first quest to start momentum."
VELOCITY_WINDOW = timedelta(days=7)
STALE_AFTER = timedelta(days=10)


def round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def compute_pulse(
    project_id: str,
    tasks: list[Task],
    next_action: str = NO_QUEST_ACTION,
    now: datetime | None = None,
) -> ProjectPulse:
    """Compute pulse metrics for a task set at a point in time."""
    now = now or datetime.now(timezone.utc)
    total = len(tasks)
    done = [t for t in tasks if t.state == "done"]

    velocity = sum(
        1 for t in tasks if t.completed_at and t.completed_at >= now - VELOCITY_WINDOW
    )
    updates = [t.updated_at for t in tasks if t.updated_at]
    stale = not updates or now - max(updates) > STALE_AFTER

    return ProjectPulse(
        project_id=project_id,
        completion_percent=round_half_up(100 * len(done) / total) if total else 0,
        tasks_todo=sum(1 for t in tasks if t.state == "todo"),
        tasks_doing=sum(1 for t in tasks if t.state in ("doing", "review")),
        tasks_blocked=sum(1 for t in tasks if t.state == "blocked"),
        tasks_done=len(done),
        velocity_7d=velocity,
        stale=stale,
        xp_earned=sum(
            t.actual_points if t.actual_points is not None else t.estimate_points
            for t in done
        ),
        next_action=next_action,
    )


def project_tasks(db: sqlite3.Connection, project_id: str) -> list[Task]:
    rows = db.execute(
        """SELECT t.* FROM tasks t
           JOIN quests q ON q.id = t.quest_id
           WHERE q.project_id = ?""",
        (project_id,),
    ).fetchall()
    return [row_to_task(r) for r in rows]


def get_project_pulse(
    db: sqlite3.Connection,
    project_id: str,
    now: datetime | None = None,
) -> ProjectPulse:
    """Recompute the pulse for a project from its tasks. Never cached."""
    recommendation = recommend_mod.get_next_task_recommendation(db, project_id)
    next_action = recommendation.reason if recommendation else NO_QUEST_ACTION
    return compute_pulse(project_id, project_tasks(db, project_id), next_action, now)

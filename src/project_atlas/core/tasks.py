"""Task management operations."""

import sqlite3

from project_atlas.core import health as health_mod
from project_atlas.db.codec import (
    decode_list,
    encode_list,
    format_dt,
    new_id,
    now_iso,
    row_to_task,
)
from project_atlas.db.engine import transaction
from project_atlas.db.models import Task, TaskContext


def create_task(
    db: sqlite3.Connection,
    quest_id: str,
    title: str,
    details: str = "",
    state: str = "todo",
    estimate_points: int = 10,
    blockers: list[str] | None = None,
    notes: str = "",
) -> Task:
    """Create a task under a quest and refresh the owning project's health."""
    task_id = new_id("task")
    now = now_iso()
    with transaction(db):
        db.execute(
            """INSERT INTO tasks
               (id, quest_id, title, details, state, estimate_points, actual_points,
                blockers, notes, created_at, updated_at, completed_at)
               VALUES (?, ?, ?, ?, ?, ?, NULL, ?, ?, ?, ?, ?)""",
            (
                task_id,
                quest_id,
                title,
                details,
                state,
                estimate_points,
                encode_list(blockers),
                notes,
                now,
                now,
                now if state == "done" else None,
            ),
        )
        health_mod.propagate_health(db, quest_id)
    return get_task(db, task_id)


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    row = db.execute("SELECT * FROM tasks WHERE id = ?", (task_id,)).fetchone()
    if not row:
        return None
    return row_to_task(row)


def list_tasks(
    db: sqlite3.Connection,
    project_id: str | None = None,
    state: str | None = None,
) -> list[Task]:
    """List tasks with optional filters, most recently updated first."""
    query = "SELECT t.* FROM tasks t JOIN quests q ON q.id = t.quest_id WHERE 1 = 1"
    params: list = []

    if project_id:
        query += " AND q.project_id = ?"
        params.append(project_id)

    if state:
        query += " AND t.state = ?"
        params.append(state)

    query += " ORDER BY t.updated_at DESC, t.rowid DESC"
    rows = db.execute(query, params).fetchall()
    return [row_to_task(r) for r in rows]


def list_task_contexts(
    db: sqlite3.Connection,
    project_id: str | None = None,
) -> list[TaskContext]:
    """Task summaries joined to their project, most recently updated first."""
    query = """SELECT t.id, t.title, t.state, t.blockers, q.project_id
               FROM tasks t JOIN quests q ON q.id = t.quest_id"""
    params: list = []
    if project_id:
        query += " WHERE q.project_id = ?"
        params.append(project_id)
    query += " ORDER BY t.updated_at DESC, t.rowid DESC"
    return [
        TaskContext(
            id=r["id"],
            project_id=r["project_id"],
            title=r["title"],
            state=r["state"],
            blockers=decode_list(r["blockers"]),
        )
        for r in db.execute(query, params)
    ]


def update_task(db: sqlite3.Connection, task_id: str, **kwargs) -> Task | None:
    """Patch task fields. Returns the updated task.

    Moving into 'done' stamps completed_at (keeping an existing stamp);
    moving out of 'done' clears it.
    """
    task = get_task(db, task_id)
    if not task:
        return None

    allowed = {"title", "details", "state", "estimate_points", "actual_points", "blockers", "notes"}
    updates = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
    if "blockers" in updates:
        updates["blockers"] = encode_list(updates["blockers"])

    now = now_iso()
    next_state = updates.get("state", task.state)
    if next_state == "done":
        updates["completed_at"] = format_dt(task.completed_at) or now
    else:
        updates["completed_at"] = None
    updates["updated_at"] = now

    set_clause = ", ".join(f"{k} = ?" for k in updates)
    with transaction(db):
        db.execute(
            f"UPDATE tasks SET {set_clause} WHERE id = ?",
            list(updates.values()) + [task_id],
        )
        health_mod.propagate_health(db, task.quest_id)
    return get_task(db, task_id)


def complete_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Mark a task done and award its points.

    actual_points falls back to the estimate when it was never recorded.
    """
    task = get_task(db, task_id)
    if not task:
        return None

    now = now_iso()
    actual = task.actual_points if task.actual_points is not None else task.estimate_points
    with transaction(db):
        db.execute(
            """UPDATE tasks
               SET state = 'done', completed_at = ?, updated_at = ?, actual_points = ?
               WHERE id = ?""",
            (now, now, actual, task_id),
        )
        health_mod.propagate_health(db, task.quest_id)
    return get_task(db, task_id)

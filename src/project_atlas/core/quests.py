"""Quest management operations."""

import sqlite3
from datetime import datetime

from project_atlas.core import health as health_mod
from project_atlas.db.codec import format_dt, new_id, now_iso, row_to_quest
from project_atlas.db.engine import transaction
from project_atlas.db.models import Quest

BACKLOG_TITLE = "General Backlog"


def create_quest(
    db: sqlite3.Connection,
    project_id: str,
    title: str,
    description: str = "",
    state: str = "todo",
    xp_reward: int = 50,
    due_at: datetime | None = None,
    priority: int = 2,
) -> Quest:
    """Create a quest under a project and refresh the project's health."""
    quest_id = new_id("quest")
    now = now_iso()
    with transaction(db):
        db.execute(
            """INSERT INTO quests
               (id, project_id, title, description, state, xp_reward, due_at, priority, created_at, updated_at)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                quest_id,
                project_id,
                title,
                description,
                state,
                xp_reward,
                format_dt(due_at),
                priority,
                now,
                now,
            ),
        )
        health_mod.propagate_health(db, quest_id)
    return get_quest(db, quest_id)


def get_quest(db: sqlite3.Connection, quest_id: str) -> Quest | None:
    row = db.execute("SELECT * FROM quests WHERE id = ?", (quest_id,)).fetchone()
    if not row:
        return None
    return row_to_quest(row)


def list_quests(db: sqlite3.Connection, project_id: str | None = None) -> list[Quest]:
    """List quests by descending priority, most recently updated first within a priority."""
    query = "SELECT * FROM quests"
    params: list = []
    if project_id:
        query += " WHERE project_id = ?"
        params.append(project_id)
    query += " ORDER BY priority DESC, updated_at DESC, rowid DESC"
    rows = db.execute(query, params).fetchall()
    return [row_to_quest(r) for r in rows]


def update_quest(db: sqlite3.Connection, quest_id: str, **kwargs) -> Quest | None:
    """Patch quest fields. Always refreshes updated_at and project health."""
    if not get_quest(db, quest_id):
        return None

    allowed = {"title", "description", "state", "xp_reward", "due_at", "priority"}
    updates = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
    if "due_at" in updates:
        updates["due_at"] = format_dt(updates["due_at"])
    updates["updated_at"] = now_iso()

    set_clause = ", ".join(f"{k} = ?" for k in updates)
    with transaction(db):
        db.execute(
            f"UPDATE quests SET {set_clause} WHERE id = ?",
            list(updates.values()) + [quest_id],
        )
        health_mod.propagate_health(db, quest_id)
    return get_quest(db, quest_id)


def ensure_backlog_quest(db: sqlite3.Connection, project_id: str) -> Quest:
    """Find the project's backlog quest, creating it if needed."""
    for quest in list_quests(db, project_id):
        if quest.title.lower() == BACKLOG_TITLE.lower():
            return quest
    return create_quest(
        db,
        project_id,
        BACKLOG_TITLE,
        description="Auto-created quest for tasks filed without one.",
        state="active",
        xp_reward=30,
        priority=2,
    )

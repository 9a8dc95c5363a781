"""Append-only log of coding agent sessions."""

import sqlite3
from datetime import datetime

from project_atlas.db.codec import (
    encode_list,
    encode_mapping,
    format_dt,
    new_id,
    now_iso,
    row_to_session_event,
)
from project_atlas.db.models import SESSION_AGENTS, SessionEvent


def log_session_event(
    db: sqlite3.Connection,
    cwd: str,
    command: str,
    agent: str = "unknown",
    started_at: datetime | None = None,
    ended_at: datetime | None = None,
    suggested_task_ids: list[str] | None = None,
    metadata: dict[str, str] | None = None,
) -> SessionEvent:
    """Record a session event. Events are never updated afterwards."""
    event_id = new_id("evt")
    db.execute(
        """INSERT INTO session_events
           (id, agent, cwd, command, started_at, ended_at, suggested_task_ids, metadata)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            event_id,
            agent if agent in SESSION_AGENTS else "unknown",
            cwd,
            command,
            format_dt(started_at) or now_iso(),
            format_dt(ended_at),
            encode_list(suggested_task_ids),
            encode_mapping(metadata),
        ),
    )
    db.commit()
    row = db.execute("SELECT * FROM session_events WHERE id = ?", (event_id,)).fetchone()
    return row_to_session_event(row)


def list_session_events(db: sqlite3.Connection, limit: int = 100) -> list[SessionEvent]:
    """List session events, most recently started first."""
    rows = db.execute(
        "SELECT * FROM session_events ORDER BY started_at DESC, rowid DESC LIMIT ?",
        (limit,),
    ).fetchall()
    return [row_to_session_event(r) for r in rows]

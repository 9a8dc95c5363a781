"""Row decoding and the text codec for list- and mapping-valued columns.

Entities outside this module only ever see native lists and dicts. Columns
holding JSON text decode to an empty collection when the stored text is
absent or malformed; every other column must have the expected shape or the
row is rejected with :class:`DecodeError`.
"""

import json
import sqlite3
import uuid
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone

from project_atlas.db.models import (
    PROJECT_STATUSES,
    QUEST_STATES,
    SESSION_AGENTS,
    TASK_STATES,
    Project,
    Quest,
    SessionEvent,
    Task,
)
from project_atlas.errors import DecodeError


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex}"


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def format_dt(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


# ── Collection columns ───────────────────────────────────────────────────────


def encode_list(values: Iterable[str] | None) -> str:
    return json.dumps(list(values or []))


def decode_list(raw: object) -> list[str]:
    if not isinstance(raw, str):
        return []
    try:
        parsed = json.loads(raw)
    except ValueError:
        return []
    if not isinstance(parsed, list):
        return []
    return [item for item in parsed if isinstance(item, str)]


def encode_mapping(values: Mapping[str, str] | None) -> str:
    return json.dumps({str(k): str(v) for k, v in (values or {}).items()})


def decode_mapping(raw: object) -> dict[str, str]:
    if not isinstance(raw, str):
        return {}
    try:
        parsed = json.loads(raw)
    except ValueError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return {str(k): str(v) for k, v in parsed.items()}


# ── Scalar columns ───────────────────────────────────────────────────────────


def _column(row: sqlite3.Row, key: str):
    try:
        return row[key]
    except (IndexError, KeyError) as e:
        raise DecodeError(f"Row is missing column '{key}'") from e


def _text(row: sqlite3.Row, key: str) -> str:
    value = _column(row, key)
    if not isinstance(value, str):
        raise DecodeError(f"Column '{key}' should be text, got {type(value).__name__}")
    return value


def _int(row: sqlite3.Row, key: str) -> int:
    value = _column(row, key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise DecodeError(f"Column '{key}' should be numeric, got {type(value).__name__}")
    return int(value)


def _optional_int(row: sqlite3.Row, key: str) -> int | None:
    if _column(row, key) is None:
        return None
    return _int(row, key)


def _choice(row: sqlite3.Row, key: str, allowed: tuple[str, ...]) -> str:
    value = _text(row, key)
    if value not in allowed:
        raise DecodeError(f"Column '{key}' has unexpected value '{value}'")
    return value


def parse_dt(val: str | None) -> datetime | None:
    if val is None:
        return None
    try:
        parsed = datetime.fromisoformat(val.replace("Z", "+00:00"))
    except (AttributeError, ValueError) as e:
        raise DecodeError(f"Unparseable timestamp: {val!r}") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _dt(row: sqlite3.Row, key: str) -> datetime | None:
    value = _column(row, key)
    if value is not None and not isinstance(value, str):
        raise DecodeError(f"Column '{key}' should be a timestamp, got {type(value).__name__}")
    return parse_dt(value)


# ── Entities ─────────────────────────────────────────────────────────────────


def row_to_project(row: sqlite3.Row) -> Project:
    return Project(
        id=_text(row, "id"),
        slug=_text(row, "slug"),
        name=_text(row, "name"),
        path=_text(row, "path"),
        status=_choice(row, "status", PROJECT_STATUSES),
        tags=decode_list(_column(row, "tags")),
        health_score=_int(row, "health_score"),
        summary=_text(row, "summary"),
        project_type=_text(row, "project_type"),
        languages=decode_list(_column(row, "languages")),
        has_git=bool(_int(row, "has_git")),
        created_at=_dt(row, "created_at"),
        updated_at=_dt(row, "updated_at"),
    )


def row_to_quest(row: sqlite3.Row) -> Quest:
    return Quest(
        id=_text(row, "id"),
        project_id=_text(row, "project_id"),
        title=_text(row, "title"),
        description=_text(row, "description"),
        state=_choice(row, "state", QUEST_STATES),
        xp_reward=_int(row, "xp_reward"),
        due_at=_dt(row, "due_at"),
        priority=_int(row, "priority"),
        created_at=_dt(row, "created_at"),
        updated_at=_dt(row, "updated_at"),
    )


def row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        id=_text(row, "id"),
        quest_id=_text(row, "quest_id"),
        title=_text(row, "title"),
        details=_text(row, "details"),
        state=_choice(row, "state", TASK_STATES),
        estimate_points=_int(row, "estimate_points"),
        actual_points=_optional_int(row, "actual_points"),
        blockers=decode_list(_column(row, "blockers")),
        notes=_text(row, "notes"),
        created_at=_dt(row, "created_at"),
        updated_at=_dt(row, "updated_at"),
        completed_at=_dt(row, "completed_at"),
    )


def row_to_session_event(row: sqlite3.Row) -> SessionEvent:
    return SessionEvent(
        id=_text(row, "id"),
        agent=_choice(row, "agent", SESSION_AGENTS),
        cwd=_text(row, "cwd"),
        command=_text(row, "command"),
        started_at=_dt(row, "started_at"),
        ended_at=_dt(row, "ended_at"),
        suggested_task_ids=decode_list(_column(row, "suggested_task_ids")),
        metadata=decode_mapping(_column(row, "metadata")),
    )

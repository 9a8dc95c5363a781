"""Project management operations."""

import json
import logging
import re
import sqlite3
from pathlib import Path

from project_atlas.db.codec import encode_list, new_id, now_iso, row_to_project
from project_atlas.db.models import Project

logger = logging.getLogger(__name__)

DEFAULT_HEALTH = 50
IMPORTED_HEALTH = 55


def slugify(text: str) -> str:
    """Convert text to a URL-friendly slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return slug.strip("-")[:64]


def create_project(
    db: sqlite3.Connection,
    name: str,
    path: str,
    slug: str | None = None,
    status: str = "active",
    tags: list[str] | None = None,
    summary: str = "",
) -> Project:
    """Create a new project. Slug defaults to a slugified name."""
    project_id = new_id("proj")
    now = now_iso()
    db.execute(
        """INSERT INTO projects
           (id, slug, name, path, status, tags, health_score, summary, created_at, updated_at)
           VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            project_id,
            slug or slugify(name),
            name,
            path,
            status,
            encode_list(tags),
            DEFAULT_HEALTH,
            summary,
            now,
            now,
        ),
    )
    db.commit()
    return get_project(db, project_id)


def get_project(db: sqlite3.Connection, ref: str) -> Project | None:
    """Get a project by id, slug or path, in that order of precedence."""
    row = db.execute(
        """SELECT * FROM projects
           WHERE id = ? OR slug = ? OR path = ?
           ORDER BY CASE WHEN id = ? THEN 0 WHEN slug = ? THEN 1 ELSE 2 END
           LIMIT 1""",
        (ref, ref, ref, ref, ref),
    ).fetchone()
    if not row:
        return None
    return row_to_project(row)


def list_projects(db: sqlite3.Connection) -> list[Project]:
    """List all projects, most recently updated first."""
    rows = db.execute(
        "SELECT * FROM projects ORDER BY updated_at DESC, rowid DESC"
    ).fetchall()
    return [row_to_project(r) for r in rows]


def update_project(db: sqlite3.Connection, ref: str, **kwargs) -> Project | None:
    """Patch project fields. Always refreshes updated_at."""
    project = get_project(db, ref)
    if not project:
        return None

    allowed = {"name", "slug", "path", "status", "tags", "summary"}
    updates = {k: v for k, v in kwargs.items() if k in allowed and v is not None}
    if "tags" in updates:
        updates["tags"] = encode_list(updates["tags"])
    updates["updated_at"] = now_iso()

    set_clause = ", ".join(f"{k} = ?" for k in updates)
    db.execute(
        f"UPDATE projects SET {set_clause} WHERE id = ?",
        list(updates.values()) + [project.id],
    )
    db.commit()
    return get_project(db, project.id)


def delete_project(db: sqlite3.Connection, ref: str) -> bool:
    """Delete a project. Its quests and their tasks go with it."""
    project = get_project(db, ref)
    if not project:
        return False
    db.execute("DELETE FROM projects WHERE id = ?", (project.id,))
    db.commit()
    return True


def _name_from_path(path: str) -> str:
    last = path.rstrip("/").split("/")[-1]
    spaced = re.sub(r"[-_]+", " ", last)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), spaced)


def import_projects_from_index(db: sqlite3.Connection, index_path: Path) -> dict:
    """Upsert projects from a JSON inventory file, keyed by path.

    Each record needs a ``path``; ``project_type``, ``languages``, ``has_git``
    and ``summary`` are optional. Existing projects keep their id and health.
    """
    records = json.loads(Path(index_path).read_text(encoding="utf-8"))
    imported = 0
    updated = 0

    for record in records:
        path = record.get("path") if isinstance(record, dict) else None
        if not path:
            logger.debug("Skipping inventory record without a path: %r", record)
            continue

        existing = db.execute(
            "SELECT id FROM projects WHERE path = ? LIMIT 1", (path,)
        ).fetchone()
        project_id = existing["id"] if existing else new_id("proj")
        project_type = str(record.get("project_type") or "project")
        languages = [str(lang) for lang in record.get("languages") or []]
        tags = [item.lower() for item in [project_type, *languages[:2]]]
        now = now_iso()

        db.execute(
            """INSERT INTO projects
               (id, slug, name, path, status, tags, health_score, summary,
                project_type, languages, has_git, created_at, updated_at)
               VALUES (?, ?, ?, ?, 'active', ?, ?, ?, ?, ?, ?, ?, ?)
               ON CONFLICT(path) DO UPDATE SET
                 slug = excluded.slug,
                 name = excluded.name,
                 tags = excluded.tags,
                 summary = excluded.summary,
                 project_type = excluded.project_type,
                 languages = excluded.languages,
                 has_git = excluded.has_git,
                 updated_at = excluded.updated_at""",
            (
                project_id,
                slugify(path.replace("/", "-")),
                _name_from_path(path),
                path,
                encode_list(tags),
                IMPORTED_HEALTH,
                record.get("summary") or "",
                project_type,
                encode_list(languages),
                1 if record.get("has_git") else 0,
                now,
                now,
            ),
        )

        if existing:
            updated += 1
        else:
            imported += 1

    db.commit()
    logger.info("Imported %d new and updated %d existing projects", imported, updated)
    return {"imported": imported, "updated": updated}

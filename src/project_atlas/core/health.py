"""Project health score, recomputed after every quest or task write."""

import logging
import sqlite3

from project_atlas.core import pulse as pulse_mod
from project_atlas.core.recommend import clamp
from project_atlas.db.codec import now_iso
from project_atlas.db.models import ProjectPulse

logger = logging.getLogger(__name__)


def health_score(pulse: ProjectPulse) -> int:
    """Fold completion, velocity, blockage and staleness into 0-100."""
    raw = (
        pulse.completion_percent * 0.5
        + min(25, pulse.velocity_7d * 3)
        + (-12 if pulse.tasks_blocked > 0 else 8)
        + (-16 if pulse.stale else 8)
    )
    return int(clamp(pulse_mod.round_half_up(raw), 0, 100))


def propagate_health(db: sqlite3.Connection, quest_id: str) -> int | None:
    """Refresh the health score of the project owning a quest.

    Bumps the project's updated_at even when the score is unchanged. Does
    not commit; the caller's write and this refresh share one transaction.
    Returns None when the quest no longer resolves to a project.
    """
    row = db.execute(
        "SELECT project_id FROM quests WHERE id = ?", (quest_id,)
    ).fetchone()
    if not row:
        logger.debug("Skipping health refresh, quest %s has no project", quest_id)
        return None

    project_id = row["project_id"]
    score = health_score(pulse_mod.get_project_pulse(db, project_id))
    db.execute(
        "UPDATE projects SET health_score = ?, updated_at = ? WHERE id = ?",
        (score, now_iso(), project_id),
    )
    logger.debug("Project %s health is now %d", project_id, score)
    return score

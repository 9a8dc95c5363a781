"""Next-task recommendation scoring."""

import sqlite3

from project_atlas.db.codec import decode_list
from project_atlas.db.models import NextTaskRecommendation

STATE_WEIGHTS = {"doing": 40, "review": 34, "todo": 24}
PRIORITY_WEIGHT = 11
ACTIVE_QUEST_BONUS = 18
BLOCKER_PENALTY = 20


def clamp(value: float, low: float, high: float):
    return max(low, min(high, value))


def score_candidate(
    state: str,
    quest_priority: int,
    quest_state: str,
    blocker_count: int,
) -> int:
    """Score an open task on a 0-100 scale."""
    score = STATE_WEIGHTS.get(state, 0)
    score += quest_priority * PRIORITY_WEIGHT
    if quest_state == "active":
        score += ACTIVE_QUEST_BONUS
    score -= blocker_count * BLOCKER_PENALTY
    return int(clamp(score, 0, 100))


def recommendation_reason(
    task_title: str,
    quest_title: str,
    project_name: str,
    blocker_count: int,
) -> str:
    if blocker_count > 0:
        return f"Unblock {task_title} in {project_name}."
    return f"Push {task_title} ({quest_title}) forward."


def get_next_task_recommendation(
    db: sqlite3.Connection,
    project_id: str | None = None,
) -> NextTaskRecommendation | None:
    """Pick the single best open task, optionally within one project.

    Candidates are pre-sorted by quest priority then task recency, so the
    first candidate to reach the top score wins ties. Returns None when there
    is no open work.
    """
    query = """
        SELECT
            t.id AS task_id,
            t.title AS task_title,
            t.state AS task_state,
            t.blockers AS blockers,
            q.title AS quest_title,
            q.state AS quest_state,
            q.priority AS quest_priority,
            p.id AS project_id,
            p.name AS project_name
        FROM tasks t
        JOIN quests q ON q.id = t.quest_id
        JOIN projects p ON p.id = q.project_id
        WHERE t.state IN ('todo', 'doing', 'review')
    """
    params: list = []
    if project_id:
        query += " AND p.id = ?"
        params.append(project_id)
    query += " ORDER BY q.priority DESC, t.updated_at DESC, t.rowid DESC"

    top: NextTaskRecommendation | None = None
    for row in db.execute(query, params):
        blocker_count = len(decode_list(row["blockers"]))
        score = score_candidate(
            row["task_state"], row["quest_priority"], row["quest_state"], blocker_count
        )
        if top is not None and score <= top.score:
            continue
        top = NextTaskRecommendation(
            task_id=row["task_id"],
            project_id=row["project_id"],
            reason=recommendation_reason(
                row["task_title"], row["quest_title"], row["project_name"], blocker_count
            ),
            score=score,
        )
    return top

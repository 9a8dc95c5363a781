"""Tests for pulse metrics and the health score."""

import itertools
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from project_atlas.core import health as health_mod
from project_atlas.core import projects as projects_mod
from project_atlas.core import pulse as pulse_mod
from project_atlas.core import quests as quests_mod
from project_atlas.core import tasks as tasks_mod
from project_atlas.db.engine import init_db
from project_atlas.db.models import ProjectPulse, Task

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _task(state="todo", updated=NOW, completed=None, estimate=10, actual=None):
    return Task(
        id=f"task_{state}",
        quest_id="quest_1",
        title=state,
        state=state,
        estimate_points=estimate,
        actual_points=actual,
        updated_at=updated,
        completed_at=completed,
    )


@pytest.fixture
def db():
    with tempfile.TemporaryDirectory() as tmp:
        conn = init_db(Path(tmp) / "test.db")
        yield conn
        conn.close()


class TestComputePulse:
    def test_no_tasks(self):
        pulse = pulse_mod.compute_pulse("proj_1", [], now=NOW)
        assert pulse.completion_percent == 0
        assert pulse.stale is True
        assert pulse.xp_earned == 0
        assert pulse.velocity_7d == 0
        assert pulse.next_action == pulse_mod.NO_QUEST_ACTION

    def test_counts_and_completion(self):
        tasks = [
            _task("todo"),
            _task("doing"),
            _task("review"),
            _task("blocked"),
            _task("done", completed=NOW),
            _task("done", completed=NOW),
        ]
        pulse = pulse_mod.compute_pulse("proj_1", tasks, now=NOW)
        assert pulse.tasks_todo == 1
        assert pulse.tasks_doing == 2
        assert pulse.tasks_blocked == 1
        assert pulse.tasks_done == 2
        assert pulse.completion_percent == 33

    def test_completion_rounds_half_up(self):
        tasks = [_task("done", completed=NOW)] + [_task("todo")] * 7
        # 12.5% rounds up
        assert pulse_mod.compute_pulse("p", tasks, now=NOW).completion_percent == 13

    def test_velocity_window(self):
        tasks = [
            _task("done", completed=NOW - timedelta(days=1)),
            _task("done", completed=NOW - timedelta(days=7)),
            _task("done", completed=NOW - timedelta(days=7, seconds=1)),
        ]
        assert pulse_mod.compute_pulse("p", tasks, now=NOW).velocity_7d == 2

    def test_xp_prefers_actual_points(self):
        tasks = [
            _task("done", completed=NOW, estimate=10, actual=4),
            _task("done", completed=NOW, estimate=6),
            _task("todo", estimate=100),
        ]
        assert pulse_mod.compute_pulse("p", tasks, now=NOW).xp_earned == 10

    def test_stale_after_ten_days(self):
        fresh = [_task(updated=NOW - timedelta(days=10))]
        old = [_task(updated=NOW - timedelta(days=10, minutes=1))]
        assert pulse_mod.compute_pulse("p", fresh, now=NOW).stale is False
        assert pulse_mod.compute_pulse("p", old, now=NOW).stale is True


class TestHealthScore:
    def test_empty_project(self):
        pulse = ProjectPulse(project_id="p", completion_percent=0, stale=True)
        # 0 + 0 + 8 - 16 clamps to 0
        assert health_mod.health_score(pulse) == 0

    def test_perfect_project(self):
        pulse = ProjectPulse(
            project_id="p", completion_percent=100, velocity_7d=20, stale=False
        )
        # 50 + 25 (capped) + 8 + 8
        assert health_mod.health_score(pulse) == 91

    def test_blocked_penalty(self):
        pulse = ProjectPulse(
            project_id="p", completion_percent=50, tasks_blocked=1, stale=False
        )
        assert health_mod.health_score(pulse) == 25 - 12 + 8

    def test_always_in_range(self):
        grid = itertools.product(
            [0, 1, 49, 50, 99, 100], [0, 1, 8, 50], [0, 3], [True, False]
        )
        for completion, velocity, blocked, stale in grid:
            pulse = ProjectPulse(
                project_id="p",
                completion_percent=completion,
                velocity_7d=velocity,
                tasks_blocked=blocked,
                stale=stale,
            )
            assert 0 <= health_mod.health_score(pulse) <= 100


class TestProjectPulse:
    def test_empty_project_pulse(self, db):
        project = projects_mod.create_project(db, "Empty", "/src/empty")
        pulse = pulse_mod.get_project_pulse(db, project.id)
        assert pulse.completion_percent == 0
        assert pulse.stale is True
        assert pulse.xp_earned == 0
        assert pulse.next_action == "Create your first quest to start momentum."

    def test_next_action_is_recommendation_reason(self, db):
        project = projects_mod.create_project(db, "Busy", "/src/busy")
        quest = quests_mod.create_quest(db, project.id, "Launch", state="active")
        tasks_mod.create_task(db, quest.id, "Write copy")
        pulse = pulse_mod.get_project_pulse(db, project.id)
        assert pulse.next_action == "Push Write copy (Launch) forward."
        assert pulse.stale is False

    def test_stale_project_loses_health(self, db):
        project = projects_mod.create_project(db, "Dusty", "/src/dusty")
        quest = quests_mod.create_quest(db, project.id, "Old quest")
        task = tasks_mod.create_task(db, quest.id, "Old task")
        old = (datetime.now(timezone.utc) - timedelta(days=30)).isoformat()
        db.execute("UPDATE tasks SET updated_at = ? WHERE id = ?", (old, task.id))
        db.commit()

        assert pulse_mod.get_project_pulse(db, project.id).stale is True
        assert health_mod.propagate_health(db, quest.id) == 0

    def test_propagate_for_missing_quest_is_noop(self, db):
        assert health_mod.propagate_health(db, "quest_gone") is None

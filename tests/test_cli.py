"""Tests for the CLI."""

import json
import os
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from project_atlas.cli import main
from project_atlas.core import sessions as sessions_mod
from project_atlas.db.engine import get_db


@pytest.fixture
def cli_env():
    """Set up a temp environment for CLI testing."""
    with tempfile.TemporaryDirectory() as tmp:
        db_path = Path(tmp) / "test.db"
        project_path = Path(tmp) / "demo"
        project_path.mkdir()

        env = {
            "ATLAS_DB_PATH": str(db_path),
            "LLM_PROVIDER": "none",
        }
        old_env = {}
        for k, v in env.items():
            old_env[k] = os.environ.get(k)
            os.environ[k] = v

        yield CliRunner(), db_path, str(project_path)

        for k, v in old_env.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


def _task_id(output):
    for line in output.splitlines():
        if line.startswith("Created task: "):
            return line.split(": ", 1)[1].strip()
    raise AssertionError(f"no task id in {output!r}")


class TestCLI:
    def test_help(self, cli_env):
        runner, _, _ = cli_env
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "brief" in result.output

    def test_project_add_and_list(self, cli_env):
        runner, _, path = cli_env
        result = runner.invoke(main, ["project", "add", "Demo", path, "--tag", "web"])
        assert result.exit_code == 0
        assert "Project created: demo" in result.output

        result = runner.invoke(main, ["project", "list"])
        assert result.exit_code == 0
        assert "demo: Demo (active) [web]" in result.output

    def test_duplicate_project(self, cli_env):
        runner, _, path = cli_env
        runner.invoke(main, ["project", "add", "Demo", path])
        result = runner.invoke(main, ["project", "add", "Demo", path])
        assert result.exit_code == 1

    def test_task_flow(self, cli_env):
        runner, _, path = cli_env
        runner.invoke(main, ["project", "add", "Demo", path])

        result = runner.invoke(
            main, ["task", "add", "Write docs", "--project", "demo", "--estimate", "5"]
        )
        assert result.exit_code == 0
        assert "Quest: General Backlog" in result.output
        task_id = _task_id(result.output)

        result = runner.invoke(main, ["task", "list", "--project", "demo"])
        assert result.exit_code == 0
        assert f"{task_id}: Write docs (todo)" in result.output

        result = runner.invoke(main, ["next"])
        assert result.exit_code == 0
        assert f"task={task_id}" in result.output

        result = runner.invoke(main, ["task", "done", task_id])
        assert result.exit_code == 0
        assert f"Completed task: {task_id} (+5 xp)" in result.output

        result = runner.invoke(main, ["pulse", "demo"])
        assert result.exit_code == 0
        assert "Completion: 100%" in result.output
        assert "XP earned: 5" in result.output

    def test_task_add_needs_parent(self, cli_env):
        runner, _, _ = cli_env
        result = runner.invoke(main, ["task", "add", "Orphan"])
        assert result.exit_code == 1

    def test_quest_add(self, cli_env):
        runner, _, path = cli_env
        runner.invoke(main, ["project", "add", "Demo", path])
        result = runner.invoke(main, ["quest", "add", "demo", "Launch", "-p", "4"])
        assert result.exit_code == 0
        assert "Priority: 4" in result.output

    def test_missing_project(self, cli_env):
        runner, _, _ = cli_env
        result = runner.invoke(main, ["pulse", "nope"])
        assert result.exit_code == 1

    def test_next_with_nothing_to_do(self, cli_env):
        runner, _, _ = cli_env
        result = runner.invoke(main, ["next"])
        assert result.exit_code == 0
        assert "No active tasks yet" in result.output


class TestBrief:
    def test_brief_with_pick(self, cli_env):
        runner, db_path, path = cli_env
        runner.invoke(main, ["project", "add", "Demo", path])
        task_id = _task_id(
            runner.invoke(main, ["task", "add", "Write docs", "--project", "demo"]).output
        )

        result = runner.invoke(main, ["brief", path, "codex", "codex", "--yolo"])
        assert result.exit_code == 0
        lines = result.output.splitlines()
        assert lines[0].startswith("[atlas] Momentum move: ")
        assert f"task={task_id}" in lines[1]
        assert "provider=heuristic" in lines[1]

        with get_db(db_path) as db:
            events = sessions_mod.list_session_events(db)
        assert len(events) == 1
        assert events[0].agent == "codex"
        assert events[0].command == "codex --yolo"
        assert events[0].suggested_task_ids == [task_id]
        assert events[0].metadata == {"source": "startup-brief"}

    def test_brief_without_pick(self, cli_env):
        runner, db_path, path = cli_env
        result = runner.invoke(main, ["brief", path])
        assert result.exit_code == 0
        assert result.output.splitlines() == [
            "[atlas] No active tasks yet. Create a quest and define the first concrete task."
        ]

        with get_db(db_path) as db:
            events = sessions_mod.list_session_events(db)
        assert events[0].agent == "unknown"
        assert events[0].suggested_task_ids == []


class TestImportIndex:
    def test_import_twice(self, cli_env):
        runner, db_path, path = cli_env
        index = db_path.parent / "PROJECT_INDEX.json"
        index.write_text(
            json.dumps(
                [
                    {"path": path, "project_type": "cli", "languages": ["Python"]},
                    {"path": "/code/other"},
                ]
            )
        )

        result = runner.invoke(main, ["import-index", str(index)])
        assert result.exit_code == 0
        assert "imported=2 updated=0" in result.output

        result = runner.invoke(main, ["import-index", str(index)])
        assert result.exit_code == 0
        assert "imported=0 updated=2" in result.output

    def test_missing_index(self, cli_env):
        runner, db_path, _ = cli_env
        result = runner.invoke(main, ["import-index", str(db_path.parent / "nope.json")])
        assert result.exit_code == 1

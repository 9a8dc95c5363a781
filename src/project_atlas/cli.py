"""CLI entry point for project atlas."""

import os
import sqlite3
import sys
from pathlib import Path

import anyio
import click

from project_atlas.config import get_config
from project_atlas.core import projects as projects_mod
from project_atlas.core import pulse as pulse_mod
from project_atlas.core import quests as quests_mod
from project_atlas.core import recommend as recommend_mod
from project_atlas.core import sessions as sessions_mod
from project_atlas.core import tasks as tasks_mod
from project_atlas.db.engine import get_db, transaction
from project_atlas.db.models import QUEST_STATES, TASK_STATES
from project_atlas.integrations import advisor as advisor_mod
from project_atlas.mcp.server import configure_logging
from project_atlas.mcp.tools import next_task_advice


def _get_db():
    config = get_config()
    return get_db(config.db_path)


def _require_project(db, ref):
    project = projects_mod.get_project(db, ref)
    if not project:
        click.echo(f"Project not found: {ref}", err=True)
        sys.exit(1)
    return project


@click.group()
def main():
    """atlas - Project Atlas CLI"""
    configure_logging(get_config())


# ── Server & Import ──────────────────────────────────────────────────────────


@main.command("serve")
def serve():
    """Start the tool server on stdio."""
    from project_atlas.mcp.server import app_lifespan, run_stdio

    with app_lifespan(get_config()) as app:
        anyio.run(run_stdio, app)


@main.command("import-index")
@click.argument("index_path", required=False, type=click.Path(dir_okay=False, path_type=Path))
def import_index(index_path):
    """Import projects from a JSON project inventory."""
    config = get_config()
    index_path = index_path or config.project_index
    if not index_path:
        click.echo("No index path given and ATLAS_PROJECT_INDEX is not set.", err=True)
        sys.exit(1)
    if not index_path.exists():
        click.echo(f"Index not found: {index_path}", err=True)
        sys.exit(1)

    with _get_db() as db:
        result = projects_mod.import_projects_from_index(db, index_path)
    click.echo(
        f"project-atlas: imported={result['imported']} updated={result['updated']} from {index_path}"
    )


# ── Project Commands ──────────────────────────────────────────────────────────


@main.group("project")
def project_group():
    """Manage projects."""
    pass


@project_group.command("add")
@click.argument("name")
@click.argument("path", default=".")
@click.option("--slug", default=None, help="Project slug (defaults to the slugified name)")
@click.option("--tag", "tags", multiple=True, help="Tag, may be repeated")
def project_add(name, path, slug, tags):
    """Register a project."""
    path = os.path.abspath(path)
    with _get_db() as db:
        try:
            project = projects_mod.create_project(db, name, path, slug=slug, tags=list(tags))
        except sqlite3.IntegrityError:
            click.echo(f"A project with that slug or path already exists: {path}", err=True)
            sys.exit(1)
        click.echo(f"Project created: {project.slug} ({project.id})")
        click.echo(f"  Path: {project.path}")


@project_group.command("list")
def project_list():
    """List projects, most recently touched first."""
    with _get_db() as db:
        projects = projects_mod.list_projects(db)
        if not projects:
            click.echo("No projects found.")
            return
        for p in projects:
            tags = f" [{', '.join(p.tags)}]" if p.tags else ""
            click.echo(f"  {p.health_score:>3} {p.slug}: {p.name} ({p.status}){tags}")


# ── Quest & Task Commands ────────────────────────────────────────────────────


@main.group("quest")
def quest_group():
    """Manage quests."""
    pass


@quest_group.command("add")
@click.argument("project")
@click.argument("title")
@click.option("--description", "-d", default="", help="Quest description")
@click.option("--state", type=click.Choice(QUEST_STATES), default="todo")
@click.option("--priority", "-p", default=2, type=int, help="Higher is more urgent")
@click.option("--xp", default=50, type=click.IntRange(min=0), help="XP reward")
def quest_add(project, title, description, state, priority, xp):
    """Create a quest in a project."""
    with _get_db() as db:
        proj = _require_project(db, project)
        quest = quests_mod.create_quest(
            db, proj.id, title, description, state=state, xp_reward=xp, priority=priority
        )
        click.echo(f"Created quest: {quest.id}")
        click.echo(f"  Title: {quest.title}")
        click.echo(f"  Priority: {quest.priority}")


@main.group("task")
def task_group():
    """Manage tasks."""
    pass


@task_group.command("add")
@click.argument("title")
@click.option("--project", default=None, help="Project id, slug or path (uses its backlog quest)")
@click.option("--quest", default=None, help="Quest id")
@click.option("--details", "-d", default="", help="Task details")
@click.option("--estimate", default=10, type=click.IntRange(min=0), help="Estimate in points")
def task_add(title, project, quest, details, estimate):
    """Create a new task."""
    if not project and not quest:
        click.echo("Either --project or --quest is required.", err=True)
        sys.exit(1)

    with _get_db() as db:
        if quest:
            parent = quests_mod.get_quest(db, quest)
            if not parent:
                click.echo(f"Quest not found: {quest}", err=True)
                sys.exit(1)
        else:
            project_id = _require_project(db, project).id
        with transaction(db):
            if not quest:
                parent = quests_mod.ensure_backlog_quest(db, project_id)
            task = tasks_mod.create_task(db, parent.id, title, details, estimate_points=estimate)
        click.echo(f"Created task: {task.id}")
        click.echo(f"  Title: {task.title}")
        click.echo(f"  Quest: {parent.title}")


@task_group.command("list")
@click.option("--project", default=None, help="Project id, slug or path")
@click.option("--state", type=click.Choice(TASK_STATES), default=None)
def task_list(project, state):
    """List tasks."""
    with _get_db() as db:
        project_id = _require_project(db, project).id if project else None
        tasks = tasks_mod.list_tasks(db, project_id, state=state)
        if not tasks:
            click.echo("No tasks found.")
            return

        state_icons = {
            "todo": "○",
            "doing": "●",
            "review": "◐",
            "done": "✓",
            "blocked": "✗",
        }
        for task in tasks:
            icon = state_icons.get(task.state, "?")
            blockers = f" [blockers: {len(task.blockers)}]" if task.blockers else ""
            click.echo(f"  {icon} {task.id}: {task.title} ({task.state}){blockers}")


@task_group.command("done")
@click.argument("task_id")
def task_done(task_id):
    """Mark a task as done."""
    with _get_db() as db:
        task = tasks_mod.complete_task(db, task_id)
        if not task:
            click.echo(f"Task not found: {task_id}", err=True)
            sys.exit(1)
        click.echo(f"Completed task: {task.id} (+{task.actual_points} xp)")


# ── Recommendation Commands ──────────────────────────────────────────────────


@main.command("pulse")
@click.argument("project")
def pulse(project):
    """Show pulse metrics for a project."""
    with _get_db() as db:
        proj = _require_project(db, project)
        p = pulse_mod.get_project_pulse(db, proj.id)
        click.echo(f"{proj.name} (health {proj.health_score})")
        click.echo(f"  Completion: {p.completion_percent}%")
        click.echo(
            f"  Tasks: {p.tasks_todo} todo, {p.tasks_doing} doing, "
            f"{p.tasks_blocked} blocked, {p.tasks_done} done"
        )
        click.echo(f"  Velocity (7d): {p.velocity_7d}")
        click.echo(f"  XP earned: {p.xp_earned}")
        if p.stale:
            click.echo("  Stale: no task activity in the last 10 days")
        click.echo(f"  Next: {p.next_action}")


@main.command("next")
@click.option("--project", default=None, help="Project id, slug or path")
def next_task(project):
    """Show the recommended next task."""
    with _get_db() as db:
        project_id = _require_project(db, project).id if project else None
        rec = recommend_mod.get_next_task_recommendation(db, project_id)
        if not rec:
            click.echo(advisor_mod.NO_WORK_SUMMARY)
            return
        click.echo(rec.reason)
        click.echo(f"  task={rec.task_id} project={rec.project_id} score={rec.score}")


@main.command("brief", context_settings={"ignore_unknown_options": True})
@click.argument("cwd", default=".")
@click.argument("agent", default="unknown")
@click.argument("command", nargs=-1, type=click.UNPROCESSED)
def brief(cwd, agent, command):
    """Print a startup brief for a shell in CWD and log the session."""
    cwd = os.path.abspath(cwd)
    config = get_config()
    with _get_db() as db:
        project = projects_mod.get_project(db, cwd)
        rec, advice = anyio.run(
            next_task_advice,
            db,
            advisor_mod.build_advisor(config),
            project.id if project else None,
            config.advisor_timeout,
        )

        click.echo(f"[atlas] {advice.summary}")
        if rec:
            click.echo(
                f"[atlas] task={rec.task_id} project={rec.project_id} "
                f"score={rec.score} provider={advice.provider}"
            )

        sessions_mod.log_session_event(
            db,
            cwd,
            " ".join(command),
            agent=agent,
            suggested_task_ids=[rec.task_id] if rec else [],
            metadata={"source": "startup-brief"},
        )


if __name__ == "__main__":
    main()

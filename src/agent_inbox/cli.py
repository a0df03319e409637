"""CLI entry point for agent-inbox."""

import json
import logging
import os
import sys
import time

import click

from agent_inbox import display
from agent_inbox.config import get_config
from agent_inbox.core import tasks as tasks_mod
from agent_inbox.db.engine import get_db
from agent_inbox.db.models import AgentKind, TaskStatus
from agent_inbox.errors import AgentInboxError, TaskNotFoundError

logger = logging.getLogger(__name__)

STATUS_CHOICES = [s.value for s in TaskStatus]
AGENT_CHOICES = [k.value for k in AgentKind]


def _get_db():
    config = get_config()
    return get_db(config.db_path)


def _fail(message: str):
    click.echo(message, err=True)
    sys.exit(1)


def _follow_logs(verbose: bool):
    """Long-running commands log their progress at INFO."""
    if not verbose:
        logging.getLogger("agent_inbox").setLevel(logging.INFO)


@click.group(invoke_without_command=True)
@click.option("--verbose", "-v", is_flag=True, help="Enable debug logging on stderr")
@click.pass_context
def main(ctx, verbose):
    """agent-inbox - track agent sessions and surface the ones needing attention"""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
    )
    ctx.obj = {"verbose": verbose}

    config = get_config()
    try:
        with _get_db() as db:
            tasks_mod.purge(db, config.retention_seconds)
    except AgentInboxError as e:
        logger.debug("Skipping retention sweep: %s", e)

    if ctx.invoked_subcommand is None:
        ctx.invoke(list_cmd)


# ── Reporting Commands (used by wrapper scripts) ─────────────────────────────


@main.group("report")
def report_group():
    """Report task status (used by agent wrappers)."""
    pass


def _report(action: str, fn, *args, **kwargs):
    """Run a store write, warning instead of failing so the wrapped process is never blocked."""
    try:
        with _get_db() as db:
            task = fn(db, *args, **kwargs)
    except AgentInboxError as e:
        click.echo(f"Warning: could not report {action}: {e}", err=True)
        return None
    return task


@report_group.command("start")
@click.argument("task_id")
@click.argument("agent_kind", type=click.Choice(AGENT_CHOICES))
@click.argument("cwd")
@click.argument("title")
@click.option("--pid", type=int, default=None, help="Process ID of the agent")
@click.option("--ppid", type=int, default=None, help="Parent process ID")
def report_start(task_id, agent_kind, cwd, title, pid, ppid):
    """Register (or re-activate) a running task."""
    task = _report(
        "start",
        tasks_mod.upsert_start,
        task_id,
        agent_kind,
        title,
        context={"project_path": cwd},
        pid=pid,
        ppid=ppid,
    )
    if task:
        click.echo(f"Task started: {task.task_id}")


@report_group.command("running")
@click.argument("task_id")
def report_running(task_id):
    """Report that a task is active again."""
    task = _report("running", tasks_mod.set_status, task_id, TaskStatus.RUNNING)
    if task:
        click.echo(f"Task {task.status.value}: {task_id}")


@report_group.command("complete")
@click.argument("task_id")
@click.option("--exit-code", type=int, default=None, help="Exit code; non-zero marks the task failed")
def report_complete(task_id, exit_code):
    """Report that a task finished."""
    if exit_code:
        task = _report("failure", tasks_mod.set_status, task_id, TaskStatus.FAILED, exit_code=exit_code)
    else:
        task = _report("completion", tasks_mod.set_status, task_id, TaskStatus.COMPLETED)
    if task:
        click.echo(f"Task {task.status.value}: {task_id}")


@report_group.command("needs-attention")
@click.argument("task_id")
@click.argument("reason")
def report_needs_attention(task_id, reason):
    """Report that a task is waiting on the user."""
    task = _report(
        "attention", tasks_mod.set_status, task_id, TaskStatus.NEEDS_ATTENTION, reason=reason
    )
    if task:
        click.echo(f"Task {task.status.value}: {task_id}")


@report_group.command("failed")
@click.argument("task_id")
@click.argument("exit_code", type=int)
def report_failed(task_id, exit_code):
    """Report that a task failed."""
    task = _report("failure", tasks_mod.set_status, task_id, TaskStatus.FAILED, exit_code=exit_code)
    if task:
        click.echo(f"Task {task.status.value}: {task_id}")


@report_group.command("exited")
@click.argument("task_id")
@click.option("--exit-code", type=int, default=None, help="Exit code of the process")
def report_exited(task_id, exit_code):
    """Report that a task's process exited."""
    task = _report("exit", tasks_mod.set_status, task_id, TaskStatus.EXITED, exit_code=exit_code)
    if task:
        click.echo(f"Task {task.status.value}: {task_id}")


# ── Query Commands ────────────────────────────────────────────────────────────


@main.command("list")
@click.option("--all", "show_all", is_flag=True, help="Show tasks in every status")
@click.option("--status", type=click.Choice(STATUS_CHOICES), default=None, help="Filter by status")
@click.option("--json-output", "--json", is_flag=True, help="Output as JSON")
def list_cmd(show_all=False, status=None, json_output=False):
    """List tasks (default: only tasks needing attention)."""
    if not status and not show_all:
        status = TaskStatus.NEEDS_ATTENTION.value
    try:
        with _get_db() as db:
            tasks = tasks_mod.list_tasks(db, status=status)
    except AgentInboxError as e:
        _fail(f"Error: {e}")

    if json_output:
        click.echo(json.dumps([display.task_dict(t) for t in tasks], indent=2))
        return
    click.echo(display.render_task_list(tasks))


@main.command("show")
@click.argument("task_id")
def show_cmd(task_id):
    """Show task details."""
    try:
        with _get_db() as db:
            task = tasks_mod.get_task(db, task_id)
    except AgentInboxError as e:
        _fail(f"Error: {e}")
    if not task:
        _fail(f"Task not found: {task_id}")
    click.echo(display.render_task_detail(task))


@main.command("clear")
@click.argument("task_id")
def clear_cmd(task_id):
    """Remove a single task."""
    try:
        with _get_db() as db:
            deleted = tasks_mod.clear_task(db, task_id)
    except AgentInboxError as e:
        _fail(f"Error: {e}")
    if not deleted:
        _fail(f"Task not found: {task_id}")
    click.echo(f"Task {task_id} cleared")


@main.command("clear-all")
@click.option("--finished", is_flag=True, help="Only remove completed, failed and exited tasks")
def clear_all_cmd(finished):
    """Remove every task."""
    try:
        with _get_db() as db:
            if finished:
                count = tasks_mod.clear_finished(db)
            else:
                count = tasks_mod.clear_all(db)
    except AgentInboxError as e:
        _fail(f"Error: {e}")
    click.echo(f"Cleared {count} tasks")


@main.command("reset")
@click.option("--force", "-f", is_flag=True, help="Skip confirmation prompt")
def reset_cmd(force):
    """Delete ALL tasks regardless of status (use when stuck)."""
    try:
        with _get_db() as db:
            tasks = tasks_mod.list_tasks(db)
            if not tasks:
                click.echo("No tasks to clear.")
                return

            click.echo(f"This will delete ALL {len(tasks)} tasks:")
            for task in tasks:
                click.echo(f"  - [{task.agent_kind}] {task.title}")

            if not force and not click.confirm("Are you sure you want to delete ALL tasks?"):
                click.echo("Aborted. No tasks were deleted.")
                return

            count = tasks_mod.clear_all(db)
    except AgentInboxError as e:
        _fail(f"Error: {e}")
    click.echo(f"Cleared all {count} tasks")


@main.command("cleanup")
@click.option("--retention-secs", type=int, default=None, help="Retention window in seconds")
def cleanup_cmd(retention_secs):
    """Purge finished tasks older than the retention window."""
    if retention_secs is None:
        retention_secs = get_config().retention_seconds
    try:
        with _get_db() as db:
            count = tasks_mod.purge(db, retention_secs)
    except AgentInboxError as e:
        _fail(f"Error: {e}")
    click.echo(f"Cleaned up {count} old finished tasks")


@main.command("watch")
@click.option("--interval", default=2.0, type=float, help="Refresh interval in seconds")
def watch_cmd(interval):
    """Show all tasks, refreshing until interrupted."""
    try:
        while True:
            with _get_db() as db:
                tasks = tasks_mod.list_tasks(db)
            click.clear()
            click.echo(display.render_task_list(tasks))
            time.sleep(interval)
    except KeyboardInterrupt:
        pass
    except AgentInboxError as e:
        _fail(f"Error: {e}")


# ── Producer Commands ─────────────────────────────────────────────────────────


@main.command("monitor")
@click.argument("task_id")
@click.argument("pid", type=int)
@click.pass_context
def monitor_cmd(ctx, task_id, pid):
    """Watch a task's process tree until it exits (started by wrappers)."""
    from agent_inbox.core.detectors import default_detectors
    from agent_inbox.core.monitor import TaskMonitor

    _follow_logs(ctx.obj["verbose"])
    config = get_config()
    try:
        with _get_db() as db:
            tasks_mod.set_monitor_pid(db, task_id, os.getpid())
    except TaskNotFoundError as e:
        _fail(str(e))
    except AgentInboxError as e:
        logger.warning("Could not record monitor pid: %s", e)

    monitor = TaskMonitor(
        config.db_path,
        task_id,
        pid,
        detectors=default_detectors(config),
        poll_interval=config.poll_interval,
        slack_token=config.slack_bot_token,
        slack_channel=config.slack_channel,
    )
    try:
        monitor.run()
    except KeyboardInterrupt:
        monitor.stop()


@main.command(
    "bridge",
    context_settings={"ignore_unknown_options": True, "allow_extra_args": True},
)
@click.pass_context
def bridge_cmd(ctx):
    """Run the browser bridge host on stdin/stdout."""
    from agent_inbox.bridge.host import BridgeHost

    # Browsers pass the calling origin as an extra argument.
    _follow_logs(ctx.obj["verbose"])
    config = get_config()
    host = BridgeHost(config.db_path, sys.stdin.buffer, sys.stdout.buffer)
    host.serve()


# ── Dashboard Command ────────────────────────────────────────────────────────


@main.command("ui")
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8787, type=int, help="Port to listen on")
@click.option("--open/--no-open", default=True, help="Open browser automatically")
def ui_command(host, port, open):
    """Launch the web dashboard."""
    import webbrowser

    from agent_inbox.web.app import run_server

    url = f"http://{host}:{port}"
    click.echo(f"Starting dashboard at {url}")
    if open:
        webbrowser.open(url)
    run_server(host=host, port=port)


# ── MCP Server Command ───────────────────────────────────────────────────────


@main.group("mcp")
def mcp_group():
    """MCP server commands."""
    pass


@mcp_group.command("serve")
def mcp_serve():
    """Start the MCP server (stdio transport)."""
    from agent_inbox.mcp.server import mcp

    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()

"""MCP server exposing the task inbox to agents."""

from __future__ import annotations

import sqlite3
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from mcp.server.fastmcp import Context, FastMCP

from agent_inbox.config import Config, get_config
from agent_inbox.core import tasks as tasks_mod
from agent_inbox.db.engine import init_db
from agent_inbox.db.models import AgentKind, TaskStatus
from agent_inbox.display import task_dict
from agent_inbox.errors import AgentInboxError
from agent_inbox.integrations import slack as slack_mod


@dataclass
class AppContext:
    db: sqlite3.Connection
    config: Config


@asynccontextmanager
async def app_lifespan(server: FastMCP) -> AsyncIterator[AppContext]:
    """Open the task database on startup, close on shutdown."""
    config = get_config()
    db = init_db(config.db_path)
    try:
        yield AppContext(db=db, config=config)
    finally:
        db.close()


mcp = FastMCP("agent-inbox", lifespan=app_lifespan)


def _ctx(ctx: Context) -> AppContext:
    """Extract AppContext from MCP Context."""
    return ctx.request_context.lifespan_context


# ── Query Tools ───────────────────────────────────────────────────────────────


@mcp.tool()
def list_tasks(ctx: Context, status: str | None = None) -> list[dict] | dict:
    """List tracked tasks, most recently updated first.

    Valid statuses: running, needs_attention, completed, failed, exited.
    """
    app = _ctx(ctx)
    if status:
        try:
            status = TaskStatus(status)
        except ValueError:
            return {"error": f"Unknown status: {status}"}
    tasks = tasks_mod.list_tasks(app.db, status=status)
    return [task_dict(t) for t in tasks]


@mcp.tool()
def get_task(ctx: Context, task_id: str) -> dict:
    """Get full details of a task."""
    app = _ctx(ctx)
    task = tasks_mod.get_task(app.db, task_id)
    if not task:
        return {"error": f"Task not found: {task_id}"}
    return task_dict(task)


# ── Reporting Tools ───────────────────────────────────────────────────────────


@mcp.tool()
def report_start(
    ctx: Context,
    task_id: str,
    title: str,
    agent_kind: str = AgentKind.CLAUDE_CODE.value,
    project_path: str | None = None,
) -> dict:
    """Register a task as running, or re-activate an existing one."""
    app = _ctx(ctx)
    try:
        AgentKind(agent_kind)
    except ValueError:
        return {"error": f"Unknown agent kind: {agent_kind}"}
    context = {"project_path": project_path} if project_path else None
    try:
        task = tasks_mod.upsert_start(app.db, task_id, agent_kind, title, context=context)
    except AgentInboxError as e:
        return {"error": str(e)}
    return task_dict(task)


@mcp.tool()
def report_status(
    ctx: Context,
    task_id: str,
    status: str,
    reason: str | None = None,
    exit_code: int | None = None,
) -> dict:
    """Report a status change for an existing task.

    A reason only applies to needs_attention; an exit code only to failed or exited.
    """
    app = _ctx(ctx)
    try:
        new_status = TaskStatus(status)
    except ValueError:
        return {"error": f"Unknown status: {status}"}
    try:
        task = tasks_mod.set_status(
            app.db, task_id, new_status, reason=reason, exit_code=exit_code
        )
    except AgentInboxError as e:
        return {"error": str(e)}
    return task_dict(task)


@mcp.tool()
def clear_task(ctx: Context, task_id: str) -> dict:
    """Remove a task from the inbox."""
    app = _ctx(ctx)
    if not tasks_mod.clear_task(app.db, task_id):
        return {"error": f"Task not found: {task_id}"}
    return {"deleted": task_id}


# ── Slack Tools ───────────────────────────────────────────────────────────────


@mcp.tool()
def notify_task(ctx: Context, task_id: str, channel: str | None = None) -> dict:
    """Post a task's current status to Slack (defaults to the configured channel)."""
    app = _ctx(ctx)
    task = tasks_mod.get_task(app.db, task_id)
    if not task:
        return {"error": f"Task not found: {task_id}"}
    channel = channel or app.config.slack_channel
    if not channel:
        return {"error": "No Slack channel given and AGENT_INBOX_SLACK_CHANNEL not set"}

    blocks = slack_mod.format_task_notification(
        task.task_id, task.title, task.status.value, task.agent_kind, reason=task.attention_reason
    )
    try:
        result = slack_mod.send_message(
            app.config.slack_bot_token, channel, f"Task update: {task.title}", blocks
        )
        return {"channel": result.channel, "ts": result.ts}
    except slack_mod.SlackError as e:
        return {"error": str(e)}

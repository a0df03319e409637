"""Plain-text rendering of tasks for the CLI."""

import time
from datetime import datetime

import click

from agent_inbox.db.models import Task, TaskStatus

STATUS_ICONS = {
    TaskStatus.RUNNING: "●",
    TaskStatus.NEEDS_ATTENTION: "!",
    TaskStatus.COMPLETED: "✓",
    TaskStatus.FAILED: "✗",
    TaskStatus.EXITED: "○",
}

STATUS_COLORS = {
    TaskStatus.RUNNING: "blue",
    TaskStatus.NEEDS_ATTENTION: "yellow",
    TaskStatus.COMPLETED: "green",
    TaskStatus.FAILED: "red",
    TaskStatus.EXITED: "bright_black",
}

# Sections in display order: what needs the user comes first.
SECTION_ORDER = [
    TaskStatus.NEEDS_ATTENTION,
    TaskStatus.RUNNING,
    TaskStatus.COMPLETED,
    TaskStatus.FAILED,
    TaskStatus.EXITED,
]

AGENT_BADGES = {
    "claude_web": "claude.ai",
    "gemini_web": "gemini",
    "claude_code": "claude-code",
    "opencode": "opencode",
}


def format_elapsed(when: datetime | None, now: float | None = None) -> str:
    if when is None:
        return ""
    seconds = int((time.time() if now is None else now) - when.timestamp())
    if seconds < 60:
        return f"{max(seconds, 0)}s ago"
    if seconds < 3600:
        return f"{seconds // 60}m ago"
    if seconds < 86400:
        return f"{seconds // 3600}h ago"
    return f"{seconds // 86400}d ago"


def _truncate(text: str, max_len: int) -> str:
    return text if len(text) <= max_len else text[: max_len - 1] + "…"


def task_line(idx: int, task: Task) -> str:
    icon = click.style(STATUS_ICONS[task.status], fg=STATUS_COLORS[task.status])
    badge = AGENT_BADGES.get(task.agent_kind, task.agent_kind)
    if task.pid and task.agent_kind not in AGENT_BADGES:
        badge = f"{badge}:{task.pid}"
    line = f"  {idx:2}. {icon} [{badge}] \"{_truncate(task.title, 60)}\" {format_elapsed(task.updated_at)}"
    if task.status == TaskStatus.NEEDS_ATTENTION and task.attention_reason:
        line += f"\n      -> {task.attention_reason}"
    elif task.exit_code is not None:
        line += f"\n      -> exit code {task.exit_code}"
    return line


def render_task_list(tasks: list[Task]) -> str:
    if not tasks:
        return "No tasks found."

    by_status: dict[TaskStatus, list[Task]] = {}
    for task in tasks:
        by_status.setdefault(task.status, []).append(task)

    summary = "  •  ".join(
        f"{len(by_status[s])} {s.value.replace('_', ' ')}" for s in SECTION_ORDER if s in by_status
    )
    lines = [summary, ""]
    idx = 1
    for status in SECTION_ORDER:
        section = by_status.get(status)
        if not section:
            continue
        lines.append(click.style(status.value.replace("_", " ").upper(), bold=True))
        for task in section:
            lines.append(task_line(idx, task))
            idx += 1
        lines.append("")
    return "\n".join(lines).rstrip()


def render_task_detail(task: Task) -> str:
    lines = [
        f"Task: {task.task_id}",
        f"  Status: {task.status.value}",
        f"  Agent: {task.agent_kind}",
        f"  Title: {task.title}",
        f"  Created: {task.created_at.isoformat() if task.created_at else '-'}",
        f"  Updated: {task.updated_at.isoformat() if task.updated_at else '-'}",
    ]
    if task.completed_at:
        lines.append(f"  Completed: {task.completed_at.isoformat()}")
    if task.pid is not None:
        lines.append(f"  PID: {task.pid}")
    if task.ppid is not None:
        lines.append(f"  Parent PID: {task.ppid}")
    if task.monitor_pid is not None:
        lines.append(f"  Monitor PID: {task.monitor_pid}")
    if task.attention_reason:
        lines.append(f"  Attention: {task.attention_reason}")
    if task.exit_code is not None:
        lines.append(f"  Exit code: {task.exit_code}")
    if task.context:
        lines.append("  Context:")
        for key, value in task.context.items():
            lines.append(f"    {key}: {value}")
    return "\n".join(lines)


def task_dict(task: Task) -> dict:
    return {
        "task_id": task.task_id,
        "agent_type": task.agent_kind,
        "title": task.title,
        "status": task.status.value,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "updated_at": task.updated_at.isoformat() if task.updated_at else None,
        "completed_at": task.completed_at.isoformat() if task.completed_at else None,
        "pid": task.pid,
        "ppid": task.ppid,
        "monitor_pid": task.monitor_pid,
        "attention_reason": task.attention_reason,
        "exit_code": task.exit_code,
        "context": task.context,
    }

"""Data models for agent-inbox."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

TITLE_MAX_LEN = 100


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    NEEDS_ATTENTION = "needs_attention"
    FAILED = "failed"
    EXITED = "exited"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.EXITED}
)


class AgentKind(str, Enum):
    """Producer of a task: a CLI-wrapped agent or a tracked web surface."""

    CLAUDE_CODE = "claude_code"
    OPENCODE = "opencode"
    CLAUDE_WEB = "claude_web"
    GEMINI_WEB = "gemini_web"


@dataclass
class Task:
    task_id: str
    agent_kind: str
    title: str
    status: TaskStatus = TaskStatus.RUNNING
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None
    pid: int | None = None
    ppid: int | None = None
    monitor_pid: int | None = None
    attention_reason: str | None = None
    exit_code: int | None = None
    context: dict = field(default_factory=dict)


def truncate_title(title: str, max_len: int = TITLE_MAX_LEN) -> str:
    if len(title) <= max_len:
        return title
    return title[: max_len - 3] + "..."

"""Attention detectors: infer "needs human input" from process signals.

Each detector is a pure check over a task and a snapshot of its live process
tree. Detectors run in a fixed order and the first one that returns a reason
decides; signals from different detectors are never combined.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from agent_inbox.db.models import Task

# States that mean "blocked in the kernel", see proc(5).
SLEEPING_STATES = frozenset({"S", "D"})


class AttentionReason(str, Enum):
    WAITING_FOR_INPUT = "waiting_for_input"
    STALLED = "stalled"


@dataclass(frozen=True)
class ProcessSample:
    pid: int
    ppid: int
    state: str
    cpu_seconds: float
    interactive: bool = False


@dataclass(frozen=True)
class LiveContext:
    """What a monitor observed about a task's process tree on one poll.

    `idle_for` is how long every process has been asleep without consuming
    CPU; `cpu_unchanged_for` is how long the tree's total CPU time has stayed
    flat.
    """

    now: float
    task_age: float
    since_update: float
    idle_for: float
    cpu_unchanged_for: float
    processes: tuple[ProcessSample, ...] = field(default_factory=tuple)

    @property
    def total_cpu(self) -> float:
        return sum(p.cpu_seconds for p in self.processes)

    @property
    def all_sleeping(self) -> bool:
        return bool(self.processes) and all(
            p.state in SLEEPING_STATES for p in self.processes
        )

    @property
    def interactive(self) -> bool:
        return any(p.interactive for p in self.processes)


class Detector(Protocol):
    def check(self, task: Task, context: LiveContext) -> AttentionReason | None: ...


@dataclass(frozen=True)
class IdleInputDetector:
    """Fires when an interactive process tree has sat idle long enough."""

    min_age: float = 10.0
    idle_window: float = 5.0

    def check(self, task: Task, context: LiveContext) -> AttentionReason | None:
        if context.task_age < self.min_age:
            return None
        if not context.interactive or not context.all_sleeping:
            return None
        if context.idle_for < self.idle_window:
            return None
        return AttentionReason.WAITING_FOR_INPUT


@dataclass(frozen=True)
class StallDetector:
    """Fires when the tree's CPU time has not moved for a long time."""

    min_age: float = 30.0
    timeout: float = 600.0

    def check(self, task: Task, context: LiveContext) -> AttentionReason | None:
        if context.task_age < self.min_age:
            return None
        if context.cpu_unchanged_for < self.timeout:
            return None
        return AttentionReason.STALLED


def default_detectors(config) -> list[Detector]:
    return [
        IdleInputDetector(min_age=config.idle_min_age, idle_window=config.idle_window),
        StallDetector(min_age=config.stall_min_age, timeout=config.stall_timeout),
    ]


def detect(
    detectors: list[Detector], task: Task, context: LiveContext
) -> AttentionReason | None:
    """Return the first reason any detector reports, in list order."""
    for detector in detectors:
        reason = detector.check(task, context)
        if reason is not None:
            return reason
    return None

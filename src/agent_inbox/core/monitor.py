"""Per-task process monitor: polls a process tree and flags tasks needing attention."""

import logging
import threading
import time
from collections.abc import Callable
from pathlib import Path

from agent_inbox.core import tasks as tasks_mod
from agent_inbox.core.detectors import (
    SLEEPING_STATES,
    AttentionReason,
    Detector,
    IdleInputDetector,
    LiveContext,
    ProcessSample,
    StallDetector,
    detect,
)
from agent_inbox.core.procfs import ProcessInspector, ProcfsInspector
from agent_inbox.db.engine import get_db
from agent_inbox.db.models import Task, TaskStatus
from agent_inbox.errors import (
    ProcessQueryError,
    StoreUnavailableError,
    TaskNotFoundError,
)

logger = logging.getLogger(__name__)

# A wrapper reporting completion, or the process ending, ends monitoring.
STOP_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.EXITED, TaskStatus.FAILED})

MONITOR_REASONS = frozenset(r.value for r in AttentionReason)


class ActivityTracker:
    """Turns successive process-tree samples into idle and stall durations."""

    def __init__(self):
        self._last_cpu: float | None = None
        self._last_cpu_change: float | None = None
        self._last_active: float | None = None

    def observe(
        self, task: Task, samples: list[ProcessSample], now: float
    ) -> LiveContext:
        total = sum(s.cpu_seconds for s in samples)

        if self._last_cpu is None:
            self._last_cpu_change = now
            self._last_active = now
        elif total != self._last_cpu:
            # A drop means a child exited, which is activity too.
            self._last_cpu_change = now
            self._last_active = now
        self._last_cpu = total

        if any(s.state not in SLEEPING_STATES for s in samples):
            self._last_active = now

        created = task.created_at.timestamp() if task.created_at else now
        updated = task.updated_at.timestamp() if task.updated_at else now
        return LiveContext(
            now=now,
            task_age=now - created,
            since_update=now - updated,
            idle_for=now - self._last_active,
            cpu_unchanged_for=now - self._last_cpu_change,
            processes=tuple(samples),
        )


class TaskMonitor:
    """Watches one task's process tree until the task ends.

    Monitors share nothing with each other; every write goes through the
    store's own transactions.
    """

    def __init__(
        self,
        db_path: Path,
        task_id: str,
        pid: int,
        inspector: ProcessInspector | None = None,
        detectors: list[Detector] | None = None,
        poll_interval: float = 5.0,
        clock: Callable[[], float] = time.time,
        slack_token: str | None = None,
        slack_channel: str | None = None,
        retry_attempts: int = 5,
        retry_backoff: float = 0.5,
    ):
        self.db_path = db_path
        self.task_id = task_id
        self.pid = pid
        self.inspector = inspector or ProcfsInspector()
        self.detectors = detectors if detectors is not None else [IdleInputDetector(), StallDetector()]
        self.poll_interval = poll_interval
        self.clock = clock
        self.slack_token = slack_token
        self.slack_channel = slack_channel
        self.retry_attempts = retry_attempts
        self.retry_backoff = retry_backoff
        self.activity = ActivityTracker()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self):
        """Start monitoring on a background thread."""
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run, name=f"task-monitor-{self.task_id}", daemon=True
        )
        self._thread.start()
        logger.info("Monitor started for task %s (pid %s)", self.task_id, self.pid)

    def stop(self):
        """Signal the monitor to stop and wait for its thread."""
        self._stop_event.set()
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join(timeout=10)
        logger.info("Monitor stopped for task %s", self.task_id)

    @property
    def stopped(self) -> bool:
        return self._stop_event.is_set()

    def run(self):
        """Poll until the task ends or stop() is called."""
        while not self._stop_event.is_set():
            try:
                if not self.poll_once():
                    break
            except StoreUnavailableError:
                logger.warning(
                    "Task store unavailable while monitoring %s; retrying next poll",
                    self.task_id,
                )
            except Exception:
                logger.exception("Error in monitor loop for task %s", self.task_id)
            self._stop_event.wait(self.poll_interval)
        self._stop_event.set()

    def poll_once(self) -> bool:
        """Run one polling cycle. Returns False once monitoring should end."""
        task = self._with_store(tasks_mod.get_task, self.task_id)
        if task is None:
            logger.info("Task %s was removed; stopping monitor", self.task_id)
            return False
        if task.status in STOP_STATUSES:
            logger.info("Task %s is %s; stopping monitor", self.task_id, task.status.value)
            return False

        try:
            samples = self._sample_tree()
        except ProcessQueryError as e:
            logger.info("Process %s for task %s is gone: %s", self.pid, self.task_id, e)
            self._mark_exited()
            return False

        now = self.clock()
        context = self.activity.observe(task, samples, now)
        reason = detect(self.detectors, task, context)

        try:
            if reason is not None:
                already_flagged = (
                    task.status == TaskStatus.NEEDS_ATTENTION
                    and task.attention_reason == reason.value
                )
                if not already_flagged:
                    updated = self._with_store(
                        tasks_mod.set_status,
                        self.task_id,
                        TaskStatus.NEEDS_ATTENTION,
                        reason=reason.value,
                        now=now,
                    )
                    if updated.status == TaskStatus.NEEDS_ATTENTION:
                        logger.info("Task %s needs attention: %s", self.task_id, reason.value)
                        self._notify_attention(updated)
            elif self._should_clear(task, context):
                self._with_store(
                    tasks_mod.set_status, self.task_id, TaskStatus.RUNNING, now=now
                )
                logger.info("Task %s is active again", self.task_id)
        except TaskNotFoundError:
            logger.info("Task %s was removed; stopping monitor", self.task_id)
            return False
        return True

    @staticmethod
    def _should_clear(task: Task, context: LiveContext) -> bool:
        """Clear only flags this monitor raised, and only once the tree shows activity.

        Reasons reported by wrappers or the bridge stay until their producer clears them.
        """
        if task.status != TaskStatus.NEEDS_ATTENTION:
            return False
        if task.attention_reason not in MONITOR_REASONS:
            return False
        return context.idle_for == 0

    def _sample_tree(self) -> list[ProcessSample]:
        if not self.inspector.is_alive(self.pid):
            raise ProcessQueryError(self.pid, "process exited")
        samples = []
        for info in self.inspector.enumerate_tree(self.pid):
            try:
                samples.append(self.inspector.sample(info.pid))
            except ProcessQueryError:
                if info.pid == self.pid:
                    raise
                # Helper subprocesses may exit mid-poll.
        return samples

    def _mark_exited(self):
        try:
            self._with_store(
                tasks_mod.set_status, self.task_id, TaskStatus.EXITED, now=self.clock()
            )
        except TaskNotFoundError:
            logger.info("Task %s was removed before its process exited", self.task_id)

    def _with_store(self, fn, *args, **kwargs):
        """Call a store operation on a fresh connection, backing off while the database is locked."""
        delay = self.retry_backoff
        for attempt in range(1, self.retry_attempts + 1):
            try:
                with get_db(self.db_path) as db:
                    return fn(db, *args, **kwargs)
            except StoreUnavailableError as e:
                if attempt == self.retry_attempts:
                    raise
                logger.warning(
                    "Task store busy (attempt %d/%d): %s", attempt, self.retry_attempts, e
                )
                self._stop_event.wait(delay)
                delay *= 2

    def _notify_attention(self, task: Task):
        """Send a Slack notification that a task needs attention."""
        if not self.slack_token or not self.slack_channel:
            return
        try:
            from agent_inbox.integrations.slack import format_task_notification, send_message

            blocks = format_task_notification(
                task.task_id,
                task.title,
                task.status.value,
                task.agent_kind,
                reason=task.attention_reason,
            )
            send_message(
                self.slack_token,
                self.slack_channel,
                f"Task needs attention: {task.title}",
                blocks,
            )
        except Exception:
            logger.exception("Failed to send Slack notification for task %s", task.task_id)

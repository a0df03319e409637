"""Task store: upsert, status transitions, queries and retention purge."""

import json
import logging
import sqlite3
import time
from contextlib import contextmanager
from datetime import datetime, timezone

from agent_inbox.db.models import (
    TERMINAL_STATUSES,
    Task,
    TaskStatus,
    truncate_title,
)
from agent_inbox.errors import StoreUnavailableError, TaskNotFoundError

logger = logging.getLogger(__name__)

# Exited/failed have no outgoing edges; only upsert_start reopens them.
ALLOWED_TRANSITIONS: dict[TaskStatus, frozenset[TaskStatus]] = {
    TaskStatus.RUNNING: frozenset(
        {
            TaskStatus.COMPLETED,
            TaskStatus.NEEDS_ATTENTION,
            TaskStatus.EXITED,
            TaskStatus.FAILED,
        }
    ),
    TaskStatus.NEEDS_ATTENTION: frozenset(
        {TaskStatus.RUNNING, TaskStatus.EXITED, TaskStatus.FAILED}
    ),
    TaskStatus.COMPLETED: frozenset(
        {TaskStatus.RUNNING, TaskStatus.EXITED, TaskStatus.FAILED}
    ),
    TaskStatus.EXITED: frozenset(),
    TaskStatus.FAILED: frozenset(),
}


def can_transition(current: TaskStatus, new: TaskStatus) -> bool:
    """Whether a status report moves a task from `current` to `new`.

    Repeating the current status counts as a refresh and is always allowed;
    it may fill in a late exit code or a new attention reason.
    """
    if current == new:
        return True
    return new in ALLOWED_TRANSITIONS[current]


@contextmanager
def _write_txn(db: sqlite3.Connection):
    """Run a read-modify-write under BEGIN IMMEDIATE so no other writer interleaves."""
    try:
        if db.in_transaction:
            db.commit()
        db.execute("BEGIN IMMEDIATE")
    except sqlite3.DatabaseError as e:
        raise StoreUnavailableError(f"Task database unavailable: {e}") from e
    try:
        yield
    except sqlite3.IntegrityError:
        db.rollback()
        raise
    except sqlite3.DatabaseError as e:
        db.rollback()
        raise StoreUnavailableError(f"Task database unavailable: {e}") from e
    except BaseException:
        db.rollback()
        raise
    else:
        db.commit()


def _now(now: float | None) -> float:
    return time.time() if now is None else now


def _dump_context(context: dict | None) -> str | None:
    if not context:
        return None
    return json.dumps(context)


def upsert_start(
    db: sqlite3.Connection,
    task_id: str,
    agent_kind: str,
    title: str,
    context: dict | None = None,
    pid: int | None = None,
    ppid: int | None = None,
    now: float | None = None,
) -> Task:
    """Create a running task, or re-activate the existing one with this id."""
    ts = _now(now)
    title = truncate_title(title)
    agent_kind = getattr(agent_kind, "value", agent_kind)

    with _write_txn(db):
        row = db.execute(
            "SELECT status, updated_at, context FROM tasks WHERE task_id = ?", (task_id,)
        ).fetchone()
        if row is None:
            db.execute(
                """INSERT INTO tasks (task_id, agent_type, title, status, created_at,
                                      updated_at, pid, ppid, context)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    task_id,
                    agent_kind,
                    title,
                    TaskStatus.RUNNING.value,
                    ts,
                    ts,
                    pid,
                    ppid,
                    _dump_context(context),
                ),
            )
            logger.debug("Created task %s (%s)", task_id, agent_kind)
        else:
            merged = _load_context(row["context"])
            merged.update(context or {})
            db.execute(
                """UPDATE tasks
                   SET agent_type = ?, title = ?, status = ?, updated_at = ?,
                       completed_at = NULL, attention_reason = NULL, exit_code = NULL,
                       pid = COALESCE(?, pid), ppid = COALESCE(?, ppid), context = ?
                   WHERE task_id = ?""",
                (
                    agent_kind,
                    title,
                    TaskStatus.RUNNING.value,
                    max(ts, row["updated_at"]),
                    pid,
                    ppid,
                    _dump_context(merged),
                    task_id,
                ),
            )
            if row["status"] != TaskStatus.RUNNING.value:
                logger.debug("Re-activated task %s (was %s)", task_id, row["status"])
    return get_task(db, task_id)


def set_status(
    db: sqlite3.Connection,
    task_id: str,
    status: TaskStatus | str,
    *,
    reason: str | None = None,
    exit_code: int | None = None,
    context: dict | None = None,
    now: float | None = None,
) -> Task:
    """Apply a status report to an existing task.

    Raises TaskNotFoundError for unknown ids so reports cannot race ahead of
    registration. A report the state machine rejects leaves the status alone
    but still refreshes `updated_at`.
    """
    status = TaskStatus(status)
    ts = _now(now)

    with _write_txn(db):
        row = db.execute(
            "SELECT status, updated_at, completed_at, attention_reason, exit_code, context "
            "FROM tasks WHERE task_id = ?",
            (task_id,),
        ).fetchone()
        if row is None:
            raise TaskNotFoundError(task_id)

        current = TaskStatus(row["status"])
        updated_at = max(ts, row["updated_at"])

        if not can_transition(current, status):
            logger.debug(
                "Ignoring %s -> %s for task %s", current.value, status.value, task_id
            )
            db.execute(
                "UPDATE tasks SET updated_at = ? WHERE task_id = ?", (updated_at, task_id)
            )
        else:
            refresh = current == status
            if status not in TERMINAL_STATUSES:
                completed_at = None
            elif refresh and row["completed_at"] is not None:
                completed_at = row["completed_at"]
            else:
                completed_at = ts

            if refresh:
                reason = reason if reason is not None else row["attention_reason"]
                exit_code = exit_code if exit_code is not None else row["exit_code"]

            merged = _load_context(row["context"])
            merged.update(context or {})

            db.execute(
                """UPDATE tasks
                   SET status = ?, updated_at = ?, completed_at = ?,
                       attention_reason = ?, exit_code = ?, context = ?
                   WHERE task_id = ?""",
                (
                    status.value,
                    updated_at,
                    completed_at,
                    reason if status == TaskStatus.NEEDS_ATTENTION else None,
                    exit_code if status in (TaskStatus.FAILED, TaskStatus.EXITED) else None,
                    _dump_context(merged),
                    task_id,
                ),
            )
    return get_task(db, task_id)


def set_monitor_pid(
    db: sqlite3.Connection, task_id: str, monitor_pid: int | None
) -> Task:
    """Record the pid of the monitor process watching a task."""
    with _write_txn(db):
        cur = db.execute(
            "UPDATE tasks SET monitor_pid = ? WHERE task_id = ?", (monitor_pid, task_id)
        )
        if cur.rowcount == 0:
            raise TaskNotFoundError(task_id)
    return get_task(db, task_id)


def get_task(db: sqlite3.Connection, task_id: str) -> Task | None:
    """Get a task by ID."""
    try:
        row = db.execute("SELECT * FROM tasks WHERE task_id = ?", (task_id,)).fetchone()
    except sqlite3.DatabaseError as e:
        raise StoreUnavailableError(f"Task database unavailable: {e}") from e
    if not row:
        return None
    return _row_to_task(row)


def list_tasks(
    db: sqlite3.Connection,
    status: TaskStatus | str | None = None,
) -> list[Task]:
    """List tasks, most recently updated first."""
    query = "SELECT * FROM tasks"
    params: list = []

    if status:
        query += " WHERE status = ?"
        params.append(TaskStatus(status).value)

    query += " ORDER BY updated_at DESC, id DESC"
    try:
        rows = db.execute(query, params).fetchall()
    except sqlite3.DatabaseError as e:
        raise StoreUnavailableError(f"Task database unavailable: {e}") from e
    return [_row_to_task(r) for r in rows]


def purge(
    db: sqlite3.Connection, retention_seconds: float, now: float | None = None
) -> int:
    """Delete terminal tasks whose completion is older than the retention window.

    A task completed exactly `retention_seconds` ago is kept.
    """
    cutoff = _now(now) - retention_seconds
    placeholders = ", ".join("?" for _ in TERMINAL_STATUSES)
    with _write_txn(db):
        cur = db.execute(
            f"""DELETE FROM tasks
                WHERE status IN ({placeholders})
                  AND completed_at IS NOT NULL
                  AND completed_at < ?""",
            [s.value for s in TERMINAL_STATUSES] + [cutoff],
        )
        count = cur.rowcount
    if count:
        logger.info("Purged %d finished tasks older than %ss", count, retention_seconds)
    return count


def clear_task(db: sqlite3.Connection, task_id: str) -> bool:
    """Delete a single task."""
    with _write_txn(db):
        cur = db.execute("DELETE FROM tasks WHERE task_id = ?", (task_id,))
        return cur.rowcount > 0


def clear_finished(db: sqlite3.Connection) -> int:
    """Delete every task in a terminal status."""
    placeholders = ", ".join("?" for _ in TERMINAL_STATUSES)
    with _write_txn(db):
        cur = db.execute(
            f"DELETE FROM tasks WHERE status IN ({placeholders})",
            [s.value for s in TERMINAL_STATUSES],
        )
        return cur.rowcount


def clear_all(db: sqlite3.Connection) -> int:
    """Delete every task regardless of status."""
    with _write_txn(db):
        cur = db.execute("DELETE FROM tasks")
        return cur.rowcount


def _load_context(val: str | None) -> dict:
    if not val:
        return {}
    try:
        data = json.loads(val)
    except json.JSONDecodeError:
        logger.warning("Discarding unreadable task context: %r", val[:80])
        return {}
    return data if isinstance(data, dict) else {}


def _row_to_task(row: sqlite3.Row) -> Task:
    return Task(
        task_id=row["task_id"],
        agent_kind=row["agent_type"],
        title=row["title"],
        status=TaskStatus(row["status"]),
        created_at=_parse_ts(row["created_at"]),
        updated_at=_parse_ts(row["updated_at"]),
        completed_at=_parse_ts(row["completed_at"]),
        pid=row["pid"],
        ppid=row["ppid"],
        monitor_pid=row["monitor_pid"],
        attention_reason=row["attention_reason"],
        exit_code=row["exit_code"],
        context=_load_context(row["context"]),
    )


def _parse_ts(val: float | None) -> datetime | None:
    if val is None:
        return None
    return datetime.fromtimestamp(val, tz=timezone.utc)

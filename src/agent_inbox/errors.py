"""Error types shared by the store, monitors and the bridge."""


class AgentInboxError(Exception):
    """Base class for agent-inbox failures."""


class TaskNotFoundError(AgentInboxError):
    """Raised when a status report names a task that was never registered."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__(f"Task not found: {task_id}")


class ValidationError(AgentInboxError):
    """Raised for malformed bridge frames or messages missing required fields."""


class StoreUnavailableError(AgentInboxError):
    """Raised when the task database is locked or cannot be opened."""


class ProcessQueryError(AgentInboxError):
    """Raised when a tracked process's OS metadata can no longer be read."""

    def __init__(self, pid: int, reason: str = "unreadable"):
        self.pid = pid
        super().__init__(f"Cannot query process {pid}: {reason}")


class FrameTooLargeError(ValidationError):
    """Raised for a length prefix over the frame cap; the stream cannot be resynchronized."""

    def __init__(self, length: int):
        self.length = length
        super().__init__(f"Message too large: {length} bytes")

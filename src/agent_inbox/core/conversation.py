"""Conversation tracking for browser chat surfaces.

A surface is polled for "is the agent generating right now"; the tracker
collapses that stream of booleans into one task per conversation and only
reports when the status actually changes.
"""

import asyncio
import logging
import re
import threading
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from agent_inbox.db.models import AgentKind, TaskStatus
from agent_inbox.errors import AgentInboxError

logger = logging.getLogger(__name__)

SURFACE_CLOSED = "surface_closed"

_CLAUDE_PATH = re.compile(r"/chat/([a-f0-9-]+)")
_GEMINI_PATHS = (
    re.compile(r"/app/([a-zA-Z0-9_-]+)"),
    re.compile(r"/chat/([a-zA-Z0-9_-]+)"),
)


def conversation_task_id(agent_kind: str, conversation_id: str) -> str:
    """Stable task id for a conversation, the same across page reloads."""
    return f"{getattr(agent_kind, 'value', agent_kind)}-{conversation_id}"


def extract_conversation_id(agent_kind: str, url: str) -> str | None:
    """Pull the conversation identifier out of a surface URL."""
    parsed = urlparse(url)
    kind = getattr(agent_kind, "value", agent_kind)

    if kind == AgentKind.CLAUDE_WEB.value:
        match = _CLAUDE_PATH.search(parsed.path)
        return match.group(1) if match else None

    if kind == AgentKind.GEMINI_WEB.value:
        for pattern in _GEMINI_PATHS:
            match = pattern.search(parsed.path)
            if match:
                return match.group(1)
        values = parse_qs(parsed.query).get("conversation")
        if values and re.fullmatch(r"[a-zA-Z0-9_-]+", values[0]):
            return values[0]
        return None

    return None


@dataclass
class ActiveConversation:
    conversation_id: str
    task_id: str
    title: str
    url: str | None = None
    last_status: TaskStatus | None = None
    started_at: float | None = None
    attention_reported: bool = False


class ConversationTracker:
    """Per-surface state machine. One instance per browser tab."""

    def __init__(
        self,
        agent_kind: str,
        send: Callable[[dict], object],
        clock: Callable[[], float] = time.time,
    ):
        self.agent_kind = getattr(agent_kind, "value", agent_kind)
        self.send = send
        self.clock = clock
        self.active: ActiveConversation | None = None

    def check_state(
        self,
        conversation_id: str | None,
        is_generating: bool,
        title: str,
        url: str | None = None,
    ) -> dict | None:
        """Feed one poll observation. Returns the message sent, if any."""
        if not conversation_id:
            logger.debug("No conversation id on %s surface", self.agent_kind)
            return None

        if self.active and self.active.conversation_id != conversation_id:
            # The old task keeps whatever status it last reported.
            logger.debug("Conversation changed to %s; resetting", conversation_id)
            self.active = None

        if self.active is None:
            self.active = ActiveConversation(
                conversation_id=conversation_id,
                task_id=conversation_task_id(self.agent_kind, conversation_id),
                title=title,
            )
        if url:
            self.active.url = url

        status = TaskStatus.RUNNING if is_generating else TaskStatus.COMPLETED
        if self.active.last_status == status:
            return None

        if status == TaskStatus.RUNNING:
            self.active.started_at = self.clock()
            self.active.attention_reported = False
        message = self._message(status)
        if not self._send(message):
            return None
        self.active.last_status = status
        return message

    def mark_needs_attention(self, reason: str) -> dict | None:
        """Report that the conversation is waiting on the user, once per conversation."""
        if self.active is None or self.active.attention_reported:
            return None
        message = self._message(TaskStatus.NEEDS_ATTENTION, reason=reason)
        if not self._send(message):
            return None
        self.active.attention_reported = True
        return message

    def handle_surface_closed(self) -> dict | None:
        """Close out a conversation that was still generating when its surface went away."""
        if self.active is None or self.active.last_status != TaskStatus.RUNNING:
            return None
        extra = {"reason": SURFACE_CLOSED}
        if self.active.started_at is not None:
            extra["duration_ms"] = int((self.clock() - self.active.started_at) * 1000)
        message = self._message(TaskStatus.COMPLETED, **extra)
        if not self._send(message):
            return None
        self.active.last_status = TaskStatus.COMPLETED
        return message

    def _message(self, status: TaskStatus, **extra) -> dict:
        context = {
            "url": self.active.url,
            "conversation_id": self.active.conversation_id,
            "timestamp": int(self.clock() * 1000),
        }
        context.update(extra)
        return {
            "type": "task_update",
            "task_id": self.active.task_id,
            "agent_type": self.agent_kind,
            "status": status.value,
            "title": self.active.title,
            "context": context,
        }

    def _send(self, message: dict) -> bool:
        try:
            self.send(message)
        except (AgentInboxError, OSError, EOFError) as e:
            logger.warning(
                "Failed to report %s for %s: %s", message["status"], message["task_id"], e
            )
            return False
        return True


# (surface url, is generating, title)
Observation = tuple[str, bool, str]


class SurfaceWatcher:
    """Polls one surface on an asyncio loop and feeds its tracker.

    The tracker's send callback may block on a pipe or socket, so tracker
    updates run in a worker thread and never stall the loop.
    """

    def __init__(
        self,
        tracker: ConversationTracker,
        observe: Callable[[], Awaitable[Observation]],
        interval: float = 2.0,
    ):
        self.tracker = tracker
        self.observe = observe
        self.interval = interval
        self._closed = asyncio.Event()
        self._lock = threading.Lock()

    async def run(self):
        while not self._closed.is_set():
            try:
                url, is_generating, title = await self.observe()
                conversation_id = extract_conversation_id(self.tracker.agent_kind, url)
                await asyncio.to_thread(
                    self._apply, conversation_id, is_generating, title, url
                )
            except Exception:
                logger.exception("Error polling %s surface", self.tracker.agent_kind)
            try:
                await asyncio.wait_for(self._closed.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

    def _apply(self, conversation_id, is_generating: bool, title: str, url: str):
        with self._lock:
            if self._closed.is_set():
                return
            self.tracker.check_state(conversation_id, is_generating, title, url=url)

    def close(self) -> dict | None:
        """Stop polling and report the surface as closed right away.

        Waits for an in-flight tracker update so the closing report is sent last.
        """
        self._closed.set()
        with self._lock:
            return self.tracker.handle_surface_closed()

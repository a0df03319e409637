"""Bridge host: applies task updates from a browser surface to the task store."""

import logging
import sqlite3
from pathlib import Path
from typing import BinaryIO

from agent_inbox.bridge.protocol import (
    BridgeMessage,
    decode_message,
    decode_response,
    error_response,
    ok_response,
    read_frame,
    write_frame,
)
from agent_inbox.core import tasks as tasks_mod
from agent_inbox.db.engine import init_db
from agent_inbox.db.models import TaskStatus
from agent_inbox.errors import (
    AgentInboxError,
    FrameTooLargeError,
    StoreUnavailableError,
    TaskNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

DEFAULT_ATTENTION_REASON = "waiting_for_user_action"


def apply_message(db: sqlite3.Connection, message: BridgeMessage):
    """Route one task update onto the store's upsert/transition operations."""
    if message.status == TaskStatus.RUNNING:
        return tasks_mod.upsert_start(
            db,
            message.task_id,
            message.agent_type,
            message.title,
            context=message.context,
        )
    if message.status == TaskStatus.NEEDS_ATTENTION:
        return tasks_mod.set_status(
            db,
            message.task_id,
            TaskStatus.NEEDS_ATTENTION,
            reason=message.context.get("reason") or DEFAULT_ATTENTION_REASON,
            context=message.context,
        )
    exit_code = message.context.get("exit_code")
    return tasks_mod.set_status(
        db,
        message.task_id,
        message.status,
        exit_code=exit_code if isinstance(exit_code, int) else None,
        context=message.context,
    )


class BridgeHost:
    """Reads framed task updates until end of stream, answering each one."""

    def __init__(self, db_path: Path, reader: BinaryIO, writer: BinaryIO):
        self.db_path = db_path
        self.reader = reader
        self.writer = writer
        self.received = 0
        self.dropped = 0
        self.failed = 0
        self._db: sqlite3.Connection | None = None

    def _conn(self) -> sqlite3.Connection:
        if self._db is None:
            self._db = init_db(self.db_path)
        return self._db

    def serve(self):
        logger.info("Bridge host started (db: %s)", self.db_path)
        try:
            while True:
                try:
                    payload = read_frame(self.reader)
                except FrameTooLargeError as e:
                    # The unread body makes every later length prefix meaningless.
                    self.dropped += 1
                    logger.warning("Closing bridge after oversized frame: %s", e)
                    self._respond(error_response(str(e)))
                    break
                except ValidationError as e:
                    self.dropped += 1
                    logger.warning("Dropped malformed frame: %s", e)
                    self._respond(error_response(str(e)))
                    continue
                except EOFError as e:
                    logger.warning("Bridge stream closed mid-message: %s", e)
                    break
                if payload is None:
                    break
                self._respond(self.handle(payload))
        except (BrokenPipeError, ConnectionResetError):
            logger.info("Bridge peer went away")
        finally:
            if self._db is not None:
                self._db.close()
                self._db = None
            logger.info(
                "Bridge host exiting (received=%d dropped=%d failed=%d)",
                self.received,
                self.dropped,
                self.failed,
            )

    def handle(self, payload: bytes) -> dict:
        """Decode and apply one message body, returning the response to send."""
        try:
            message = decode_message(payload)
            if message.type != "task_update":
                raise ValidationError(f"Unsupported message type: {message.type}")
        except ValidationError as e:
            self.dropped += 1
            logger.warning("Dropped invalid message: %s", e)
            return error_response(str(e))

        self.received += 1
        logger.debug("Applying %s for %s", message.status.value, message.task_id)
        try:
            apply_message(self._conn(), message)
        except TaskNotFoundError as e:
            self.failed += 1
            logger.warning("%s (status %s)", e, message.status.value)
            return error_response(str(e))
        except StoreUnavailableError as e:
            self.failed += 1
            logger.warning("Task store unavailable: %s", e)
            if self._db is not None:
                self._db.close()
                self._db = None
            return error_response(str(e))
        except AgentInboxError as e:
            self.failed += 1
            logger.warning("Failed to apply message: %s", e)
            return error_response(str(e))
        return ok_response()

    def _respond(self, response: dict):
        write_frame(self.writer, response)


class BridgeClient:
    """Sends framed task updates to a bridge host and reads its replies."""

    def __init__(self, reader: BinaryIO, writer: BinaryIO):
        self.reader = reader
        self.writer = writer

    def send(self, message: dict) -> dict:
        write_frame(self.writer, message)
        payload = read_frame(self.reader)
        if payload is None:
            raise EOFError("Bridge host closed the connection")
        response = decode_response(payload)
        if response.get("status") != "ok":
            logger.warning(
                "Bridge host rejected %s: %s", message.get("task_id"), response.get("message")
            )
        return response


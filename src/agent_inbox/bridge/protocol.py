"""Bridge wire format: 4-byte little-endian length prefix + UTF-8 JSON object.

This is the browser native-messaging framing; the same format is used in
both directions.
"""

import json
import struct
from dataclasses import dataclass, field
from typing import BinaryIO

from agent_inbox.db.models import AgentKind, TaskStatus
from agent_inbox.errors import FrameTooLargeError, ValidationError

HEADER = struct.Struct("<I")
MAX_MESSAGE_SIZE = 1024 * 1024

REQUIRED_FIELDS = ("type", "task_id", "agent_type", "status", "title", "context")


@dataclass
class BridgeMessage:
    type: str
    task_id: str
    agent_type: str
    status: TaskStatus
    title: str
    context: dict = field(default_factory=dict)


def _read_exact(stream: BinaryIO, size: int) -> bytes:
    chunks = []
    remaining = size
    while remaining:
        chunk = stream.read(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def read_frame(stream: BinaryIO) -> bytes | None:
    """Read one whole message body. Returns None on a clean end of stream.

    Raises ValidationError for a zero length, FrameTooLargeError for a length
    over MAX_MESSAGE_SIZE (the body is left unread) and EOFError when the
    stream ends mid-frame.
    """
    header = _read_exact(stream, HEADER.size)
    if not header:
        return None
    if len(header) < HEADER.size:
        raise EOFError("Stream ended inside a length prefix")

    (length,) = HEADER.unpack(header)
    if length == 0:
        raise ValidationError("Empty message")
    if length > MAX_MESSAGE_SIZE:
        raise FrameTooLargeError(length)

    body = _read_exact(stream, length)
    if len(body) < length:
        raise EOFError(f"Stream ended after {len(body)} of {length} bytes")
    return body


def encode_frame(obj: dict) -> bytes:
    body = json.dumps(obj).encode("utf-8")
    if len(body) > MAX_MESSAGE_SIZE:
        raise ValidationError(f"Message too large: {len(body)} bytes")
    return HEADER.pack(len(body)) + body


def write_frame(stream: BinaryIO, obj: dict):
    stream.write(encode_frame(obj))
    stream.flush()


def decode_message(payload: bytes) -> BridgeMessage:
    """Parse and validate a task update message body."""
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid JSON message: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Message must be a JSON object")

    missing = [name for name in REQUIRED_FIELDS if data.get(name) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    for name in ("type", "task_id", "agent_type", "status", "title"):
        if not isinstance(data[name], str):
            raise ValidationError(f"Field '{name}' must be a string")
    if not data["task_id"]:
        raise ValidationError("Field 'task_id' must not be empty")
    if not isinstance(data["context"], dict):
        raise ValidationError("Field 'context' must be an object")

    try:
        status = TaskStatus(data["status"])
    except ValueError as e:
        raise ValidationError(f"Unknown status: {data['status']}") from e
    try:
        AgentKind(data["agent_type"])
    except ValueError as e:
        raise ValidationError(f"Unknown agent type: {data['agent_type']}") from e

    return BridgeMessage(
        type=data["type"],
        task_id=data["task_id"],
        agent_type=data["agent_type"],
        status=status,
        title=data["title"],
        context=data["context"],
    )


def ok_response() -> dict:
    return {"status": "ok"}


def error_response(message: str) -> dict:
    return {"status": "error", "message": message}


def decode_response(payload: bytes) -> dict:
    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValidationError(f"Invalid response: {e}") from e
    if not isinstance(data, dict):
        raise ValidationError("Response must be a JSON object")
    return data

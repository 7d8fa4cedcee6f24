"""
MODULE OVERVIEW:
Event names and framing for the `/generation` websocket channel.

WHAT IS HAPPENING HERE:
Client and server share these constants so neither side hardcodes a string.
`encode_message` / `decode_message` wrap the JSON envelope; decoding failures are
raised as MalformedPayloadError so the session can log and skip a single bad frame.
"""
import json
from typing import Any

from pydantic import ValidationError

from scriptstream.shared.errors import MalformedPayloadError
from scriptstream.shared.models import SocketMessage

# Client -> server
JOIN_GENERATION = "join_generation"
CANCEL_GENERATION = "cancel_generation"
PING = "ping"

# Server -> client
CONNECTION_STATUS = "connection_status"
GENERATION_STARTED = "generation_started"
GENERATION_STAGE = "generation_stage"
CONTENT_CHUNK = "content_chunk"
GENERATION_COMPLETED = "generation_completed"
GENERATION_ERROR = "generation_error"
PONG = "pong"


def encode_message(event: str, data: dict[str, Any] | None = None) -> str:
    return SocketMessage(event=event, data=data or {}).model_dump_json()


def decode_message(raw: str | bytes) -> SocketMessage:
    try:
        return SocketMessage.model_validate_json(raw)
    except (ValidationError, json.JSONDecodeError) as e:
        raise MalformedPayloadError("<frame>", str(e)) from e

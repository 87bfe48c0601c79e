#!/usr/bin/env python3
"""
Netstring framing and JSON messages for the clipsession wire protocol.

Netstrings provide a simple, reliable framing format for transmitting
arbitrary binary data over a stream connection. Format: <length>:<content>,
where length is ASCII decimal digits, followed by a colon, the raw content
bytes, and a trailing comma.

Example: "12:Hello world!," encodes the 12-byte string "Hello world!".

Each frame carries one UTF-8 JSON object: a request, a response, or an
event pushed for a subscription. Frames are capped at 16 MB so that a
base64-encoded 10 MB attachment fits.
"""

from __future__ import annotations

import asyncio
import base64
import json
from typing import Any

from clipsession.errors import ClipSessionError, ProtocolError, error_from_kind

# Maximum size of one frame in bytes (16 MB).
# Prevents memory exhaustion from a hostile or broken peer.
MAX_FRAME_SIZE: int = 16777216

# Maximum digits in the length field (8 digits allows up to 99999999 bytes).
# Enforced during parsing to prevent denial of service from huge length values.
MAX_LENGTH_DIGITS: int = 8

REQUEST = "request"
RESPONSE = "response"
EVENT = "event"


def encode_netstring(data: bytes) -> bytes:
    """
    Encode raw bytes as a netstring.

    Args:
        data: Raw bytes to encode.

    Returns:
        Netstring-encoded bytes in format "<length>:<content>,".
    """
    length = len(data)
    return f"{length}:".encode("ascii") + data + b","


async def read_netstring(reader: asyncio.StreamReader) -> bytes:
    """
    Read and decode a netstring from an async stream.

    Args:
        reader: asyncio StreamReader to read from.

    Returns:
        Decoded content bytes.

    Raises:
        ProtocolError: On invalid format or size violation.
        EOFError: If the stream ends cleanly before a new frame starts.
    """
    length_bytes = b""
    while len(length_bytes) < MAX_LENGTH_DIGITS + 1:
        byte = await reader.read(1)
        if not byte:
            if not length_bytes:
                raise EOFError("Connection closed")
            raise ProtocolError("Connection closed while reading length field")
        if byte == b":":
            break
        if not byte.isdigit():
            raise ProtocolError(f"Invalid character in length field: {byte!r}")
        length_bytes += byte
    else:
        raise ProtocolError("Length field exceeds maximum digits")
    if not length_bytes:
        raise ProtocolError("Empty length field")
    length = int(length_bytes.decode("ascii"))
    if length > MAX_FRAME_SIZE:
        raise ProtocolError(f"Frame size {length} exceeds limit {MAX_FRAME_SIZE}")
    try:
        content = await reader.readexactly(length)
    except asyncio.IncompleteReadError as e:
        raise ProtocolError(f"Connection closed after {len(e.partial)} bytes") from e
    comma = await reader.read(1)
    if comma != b",":
        raise ProtocolError(f"Expected comma terminator, got {comma!r}")
    return content


def encode_message(message: dict[str, Any]) -> bytes:
    """Serialize a message dict into one netstring frame."""
    return encode_netstring(json.dumps(message, separators=(",", ":")).encode("utf-8"))


async def read_message(reader: asyncio.StreamReader) -> dict[str, Any]:
    """
    Read one framed JSON message.

    Raises:
        ProtocolError: If the frame is malformed or not a JSON object with a type.
        EOFError: If the peer closed the connection between frames.
    """
    frame = await read_netstring(reader)
    try:
        message = json.loads(frame.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Malformed message: {e}") from e
    if not isinstance(message, dict) or message.get("type") not in (REQUEST, RESPONSE, EVENT):
        raise ProtocolError("Message is not a typed JSON object")
    return message


def make_request(request_id: int, op: str, params: dict[str, Any]) -> dict[str, Any]:
    return {"type": REQUEST, "id": request_id, "op": op, "params": params}


def make_response(request_id: int, result: Any = None) -> dict[str, Any]:
    return {"type": RESPONSE, "id": request_id, "ok": True, "result": result}


def make_error(request_id: int | None, error: ClipSessionError) -> dict[str, Any]:
    return {
        "type": RESPONSE,
        "id": request_id,
        "ok": False,
        "error": {"kind": error.kind, "message": error.message},
    }


def make_event(subscription_id: str, event: dict[str, Any]) -> dict[str, Any]:
    return {"type": EVENT, "subscription": subscription_id, "event": event}


def response_error(message: dict[str, Any]) -> ClipSessionError:
    """Rebuild the typed error carried by a failed response."""
    error = message.get("error") or {}
    return error_from_kind(error.get("kind", "error"), error.get("message"))


def encode_bytes(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def decode_bytes(text: Any) -> bytes:
    """Decode base64 attachment data.

    Raises:
        ProtocolError: If text is not a string of valid base64.
    """
    if not isinstance(text, str):
        raise ProtocolError(
            f"Invalid attachment encoding: expected a string, got {type(text).__name__}"
        )
    try:
        return base64.b64decode(text.encode("ascii"), validate=True)
    except (ValueError, UnicodeEncodeError) as e:
        raise ProtocolError(f"Invalid attachment encoding: {e}") from e

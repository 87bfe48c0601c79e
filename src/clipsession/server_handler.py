#!/usr/bin/env python3
"""Server client connection handler.

This module provides the handler for client connections to the server.
Each connection sends requests which are dispatched to the SessionService;
responses are written back in request order. Channel events for the
connection's subscriptions are pushed on the same stream, serialized with
the responses by a per-connection write lock.

Whatever way the connection ends, every subscription it made is released
exactly once.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from clipsession.errors import ClipSessionError, ProtocolError
from clipsession.models import ChangeEvent, Upload, event_to_dict
from clipsession.protocol import (
    REQUEST,
    decode_bytes,
    encode_message,
    make_error,
    make_event,
    make_response,
    read_message,
)

if TYPE_CHECKING:
    from clipsession.channel import Subscription
    from clipsession.connections import ConnectionRegistry
    from clipsession.service import SessionService

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """State of one client connection.

    Attributes:
        id: Short identifier used in logs and the connection table.
        service: The server facade.
        connections: Process-wide connection table.
        writer: Stream to the client.
        subscriptions: Live subscriptions keyed by client-chosen id.
    """

    id: str
    service: SessionService
    connections: ConnectionRegistry
    writer: asyncio.StreamWriter
    subscriptions: dict[str, Subscription] = field(default_factory=dict)
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    async def send(self, message: dict[str, Any]) -> None:
        async with self.write_lock:
            self.writer.write(encode_message(message))
            await self.writer.drain()

    def forwarder(self, subscription_id: str) -> Callable[[ChangeEvent], Awaitable[None]]:
        """Build the channel handler that pushes events to this client."""

        async def forward(event: ChangeEvent) -> None:
            try:
                await self.send(make_event(subscription_id, event_to_dict(event)))
            except ConnectionError as e:
                logger.debug("Dropping %s event for %s: %s", event.kind, self.id, e)

        return forward

    async def release(self, subscription_id: str) -> None:
        subscription = self.subscriptions.pop(subscription_id, None)
        if subscription is None:
            return
        await self.service.unsubscribe(subscription)
        remaining = await self.connections.discard(subscription.session_code, self.id)
        logger.debug(
            "Connection %s left session %s (%d remaining)",
            self.id, subscription.session_code, remaining,
        )

    async def release_all(self) -> None:
        for subscription_id in list(self.subscriptions):
            await self.release(subscription_id)


async def _create_session(conn: Connection, params: dict[str, Any]) -> Any:
    return await conn.service.create_session()


async def _join_session(conn: Connection, params: dict[str, Any]) -> Any:
    return await conn.service.join_session(params["code"])


async def _list_entries(conn: Connection, params: dict[str, Any]) -> Any:
    entries = await conn.service.list_entries(params["session"])
    return [entry.to_dict() for entry in entries]


async def _append_entry(conn: Connection, params: dict[str, Any]) -> Any:
    content = params.get("content", "")
    if not isinstance(content, str):
        raise ProtocolError("Entry content must be a string")
    upload = None
    if params.get("upload"):
        raw = params["upload"]
        upload = Upload(name=str(raw["name"]), data=decode_bytes(raw["data"]))
    entry = await conn.service.append_entry(params["session"], content, upload)
    return entry.to_dict()


async def _delete_entry(conn: Connection, params: dict[str, Any]) -> Any:
    await conn.service.delete_entry(params["id"])


async def _clear_session(conn: Connection, params: dict[str, Any]) -> Any:
    return await conn.service.clear_session(params["session"])


async def _subscribe(conn: Connection, params: dict[str, Any]) -> Any:
    subscription_id = params["subscription"]
    if subscription_id in conn.subscriptions:
        raise ProtocolError(f"Subscription id already in use: {subscription_id}")
    subscription = await conn.service.subscribe(
        params["session"], conn.forwarder(subscription_id), subscription_id
    )
    conn.subscriptions[subscription_id] = subscription
    members = await conn.connections.add(subscription.session_code, conn.id)
    logger.debug(
        "Connection %s follows session %s (%d member(s))",
        conn.id, subscription.session_code, members,
    )
    return {"subscription": subscription_id, "session": subscription.session_code}


async def _unsubscribe(conn: Connection, params: dict[str, Any]) -> Any:
    await conn.release(params["subscription"])


OPERATIONS: dict[str, Callable[[Connection, dict[str, Any]], Awaitable[Any]]] = {
    "create_session": _create_session,
    "join_session": _join_session,
    "list_entries": _list_entries,
    "append_entry": _append_entry,
    "delete_entry": _delete_entry,
    "clear_session": _clear_session,
    "subscribe": _subscribe,
    "unsubscribe": _unsubscribe,
}


async def dispatch_request(conn: Connection, message: dict[str, Any]) -> dict[str, Any]:
    """Run one request and build its response.

    Typed failures become error responses; they never end the connection.

    Args:
        conn: The connection the request arrived on.
        message: A decoded request message.

    Returns:
        The response message.
    """
    request_id = message.get("id")
    op = message.get("op")
    operation = OPERATIONS.get(op) if isinstance(op, str) else None
    if operation is None:
        return make_error(request_id, ProtocolError(f"Unknown operation: {op!r}"))
    params = message.get("params") or {}
    if not isinstance(params, dict):
        return make_error(request_id, ProtocolError(f"Bad parameters for {op}: expected an object"))
    try:
        result = await operation(conn, params)
    except ClipSessionError as e:
        logger.debug("%s failed for %s: %s", op, conn.id, e)
        return make_error(request_id, e)
    except (KeyError, TypeError, AttributeError) as e:
        return make_error(request_id, ProtocolError(f"Bad parameters for {op}: {e}"))
    return make_response(request_id, result)


async def handle_client(
    service: SessionService,
    connections: ConnectionRegistry,
    reader: asyncio.StreamReader,
    writer: asyncio.StreamWriter,
) -> None:
    """Handle a single client connection.

    Reads requests until the client disconnects. On disconnect (EOF,
    protocol error, or connection error), releases the connection's
    subscriptions and closes the stream.

    Args:
        service: The server facade.
        connections: Process-wide connection table.
        reader: The asyncio StreamReader for the socket connection.
        writer: The asyncio StreamWriter for the socket connection.
    """
    conn = Connection(secrets.token_hex(4), service, connections, writer)
    logger.debug("Client %s connected", conn.id)

    try:
        while True:
            try:
                message = await read_message(reader)
            except EOFError:
                logger.debug("Client %s disconnected cleanly", conn.id)
                break
            if message["type"] != REQUEST:
                raise ProtocolError(f"Expected a request, got {message['type']}")
            await conn.send(await dispatch_request(conn, message))
    except ProtocolError as e:
        logger.error("Protocol error from %s: %s", conn.id, e)
        with suppress(ConnectionError):
            await conn.send(make_error(None, e))
    except ConnectionError as e:
        logger.error("Connection error on %s: %s", conn.id, e)
    finally:
        await conn.release_all()
        writer.close()
        with suppress(ConnectionError):
            await writer.wait_closed()

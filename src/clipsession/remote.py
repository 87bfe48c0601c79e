#!/usr/bin/env python3
"""Client side of the wire protocol.

RemoteService offers the same async methods as SessionService, carried
over a stream connection. A single reader task matches responses to
pending calls by request id and hands pushed events to the handler
registered for their subscription, in arrival order.

Subscription ids are chosen here and registered before the subscribe
request goes out, so no event can arrive for an unknown subscription.
When the connection drops, every in-flight call fails with NotConnected.
"""

from __future__ import annotations

import asyncio
import inspect
import itertools
import logging
import secrets
from contextlib import suppress
from typing import TYPE_CHECKING, Any

from clipsession.errors import ChannelError, ClipSessionError, NotConnected, ProtocolError
from clipsession.limits import REQUEST_TIMEOUT
from clipsession.models import Entry, event_from_dict
from clipsession.protocol import (
    EVENT,
    RESPONSE,
    encode_bytes,
    encode_message,
    make_request,
    read_message,
    response_error,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable

    from clipsession.address import ServerAddress
    from clipsession.channel import Handler
    from clipsession.models import Upload

logger = logging.getLogger(__name__)


class RemoteSubscription:
    """Client-side handle for a server subscription."""

    def __init__(self, subscription_id: str, session_code: str, handler: Handler) -> None:
        self.id = subscription_id
        self.session_code = session_code
        self.handler = handler
        self.active = True


async def open_connection(
    address: ServerAddress,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Connect to a clipsession server.

    Args:
        address: Unix socket path or TCP address of the server.

    Returns:
        Tuple of (StreamReader, StreamWriter) for the connection.

    Raises:
        ConnectionError: If connection fails (socket not found, refused, etc).
    """
    try:
        if address.socket_path is not None:
            return await asyncio.open_unix_connection(address.socket_path)
        return await asyncio.open_connection(address.host, address.port)
    except OSError as e:
        raise ConnectionError(f"Failed to connect to {address}: {e}") from e


class RemoteService:
    """Session operations executed by a remote server.

    Args:
        reader: Stream from the server.
        writer: Stream to the server.
        timeout: Seconds to wait for each response.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._timeout = timeout
        self._ids = itertools.count(1)
        self._pending: dict[int, asyncio.Future[Any]] = {}
        self._subscriptions: dict[str, RemoteSubscription] = {}
        self._write_lock = asyncio.Lock()
        self._read_task: asyncio.Task[None] | None = None
        self._handler_tasks: set[asyncio.Task[None]] = set()
        self.close_reason: ClipSessionError | None = None

    @classmethod
    async def connect(cls, address: ServerAddress, timeout: float = REQUEST_TIMEOUT) -> RemoteService:
        """Open a connection and start reading from it.

        Raises:
            ConnectionError: If the server cannot be reached.
        """
        reader, writer = await open_connection(address)
        service = cls(reader, writer, timeout)
        service.start()
        return service

    @property
    def connected(self) -> bool:
        return self._read_task is not None and self.close_reason is None

    def start(self) -> None:
        self._read_task = asyncio.get_running_loop().create_task(self._read_loop())

    async def _read_loop(self) -> None:
        reason: ClipSessionError = NotConnected("Connection closed")
        try:
            while True:
                self._dispatch(await read_message(self._reader))
        except EOFError:
            reason = NotConnected("Server closed the connection")
        except ProtocolError as e:
            logger.error("Protocol error: %s", e)
            reason = e
        except OSError as e:
            reason = NotConnected(f"Connection lost: {e}")
        finally:
            self._fail_pending(reason)

    def _fail_pending(self, reason: ClipSessionError) -> None:
        self.close_reason = reason
        for future in self._pending.values():
            if not future.done():
                future.set_exception(reason)
        self._pending.clear()
        for subscription in self._subscriptions.values():
            subscription.active = False
        self._subscriptions.clear()
        logger.debug("Connection closed: %s", reason)

    def _dispatch(self, message: dict[str, Any]) -> None:
        if message["type"] == RESPONSE:
            self._resolve(message)
        elif message["type"] == EVENT:
            self._deliver(message)
        else:
            raise ProtocolError(f"Unexpected {message['type']} from server")

    def _resolve(self, message: dict[str, Any]) -> None:
        future = self._pending.get(message.get("id"))  # type: ignore[arg-type]
        if future is None:
            if not message.get("ok"):
                logger.error("Server reported: %s", response_error(message))
                return
            logger.debug("Ignoring response to unknown request %s", message.get("id"))
            return
        if future.done():
            return
        if message.get("ok"):
            future.set_result(message.get("result"))
        else:
            future.set_exception(response_error(message))

    def _deliver(self, message: dict[str, Any]) -> None:
        subscription = self._subscriptions.get(message.get("subscription", ""))
        if subscription is None or not subscription.active:
            logger.debug("Dropping event for released subscription %s", message.get("subscription"))
            return
        try:
            event = event_from_dict(message["event"])
        except (KeyError, TypeError, ValueError) as e:
            raise ProtocolError(f"Malformed event: {e}") from e
        try:
            result = subscription.handler(event)
        except Exception:
            logger.exception("Subscription handler failed on %s event", event.kind)
            return
        if inspect.isawaitable(result):
            task = asyncio.get_running_loop().create_task(self._await_handler(result, event.kind))
            self._handler_tasks.add(task)
            task.add_done_callback(self._handler_tasks.discard)

    @staticmethod
    async def _await_handler(result: Awaitable[None], kind: str) -> None:
        try:
            await result
        except Exception:
            logger.exception("Subscription handler failed on %s event", kind)

    async def call(self, op: str, **params: Any) -> Any:
        """Send one request and wait for its result.

        Raises:
            NotConnected: If the connection is closed or drops meanwhile.
            ChannelError: If no response arrives within the timeout.
            ClipSessionError: The typed failure reported by the server.
        """
        if not self.connected:
            raise NotConnected(self.close_reason.message if self.close_reason else None)
        request_id = next(self._ids)
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            async with self._write_lock:
                self._writer.write(encode_message(make_request(request_id, op, params)))
                await self._writer.drain()
            return await asyncio.wait_for(future, self._timeout)
        except asyncio.TimeoutError as e:
            raise ChannelError(f"No response to {op} within {self._timeout:g}s") from e
        except OSError as e:
            raise NotConnected(f"Connection lost: {e}") from e
        finally:
            self._pending.pop(request_id, None)

    async def create_session(self) -> str:
        return await self.call("create_session")

    async def join_session(self, code: str) -> str:
        return await self.call("join_session", code=code)

    async def list_entries(self, session_code: str) -> list[Entry]:
        rows = await self.call("list_entries", session=session_code)
        return [Entry.from_dict(row) for row in rows]

    async def append_entry(
        self, session_code: str, content: str, upload: Upload | None = None
    ) -> Entry:
        params: dict[str, Any] = {"session": session_code, "content": content}
        if upload is not None:
            params["upload"] = {"name": upload.name, "data": encode_bytes(upload.data)}
        return Entry.from_dict(await self.call("append_entry", **params))

    async def delete_entry(self, entry_id: str) -> None:
        await self.call("delete_entry", id=entry_id)

    async def clear_session(self, session_code: str) -> int:
        return await self.call("clear_session", session=session_code)

    async def subscribe(
        self, session_code: str, handler: Handler, subscription_id: str | None = None
    ) -> RemoteSubscription:
        subscription = RemoteSubscription(
            subscription_id or secrets.token_hex(8), session_code, handler
        )
        self._subscriptions[subscription.id] = subscription
        try:
            result = await self.call("subscribe", session=session_code, subscription=subscription.id)
        except BaseException:
            self._subscriptions.pop(subscription.id, None)
            subscription.active = False
            raise
        subscription.session_code = result["session"]
        return subscription

    async def unsubscribe(self, subscription: RemoteSubscription) -> None:
        """Release a subscription. Idempotent.

        A dead connection already released it server-side, so NotConnected
        is not an error here.
        """
        if not subscription.active:
            return
        subscription.active = False
        self._subscriptions.pop(subscription.id, None)
        with suppress(NotConnected):
            await self.call("unsubscribe", subscription=subscription.id)

    async def wait_closed(self) -> None:
        """Return once the connection has ended for any reason."""
        if self._read_task is not None:
            await asyncio.wait({self._read_task})

    async def close(self) -> None:
        for task in list(self._handler_tasks):
            task.cancel()
        if self._read_task is not None and not self._read_task.done():
            self._read_task.cancel()
            with suppress(asyncio.CancelledError):
                await self._read_task
        self._writer.close()
        with suppress(OSError):
            await self._writer.wait_closed()

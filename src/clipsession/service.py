#!/usr/bin/env python3
"""Server-side facade over registry, store and channel.

SessionService exposes the async surface a Session Client talks to. The
network handler dispatches requests to it, and tests or a single-process
setup hand it to a SessionClient directly. RemoteService mirrors the same
methods over a socket.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from clipsession.channel import ChangeChannel, Handler, Subscription
from clipsession.limits import Limits
from clipsession.registry import SessionRegistry
from clipsession.store import EntryStore

if TYPE_CHECKING:
    from clipsession.attachments import AttachmentBackend
    from clipsession.models import Entry, Upload

logger = logging.getLogger(__name__)


class SessionService:
    """Bundle of the components that make up a clipsession server.

    Args:
        registry: Session registry; created when omitted.
        channel: Change channel; created when omitted.
        attachments: Attachment backend, or None to refuse uploads.
        limits: Size ceilings for the entry store.
    """

    def __init__(
        self,
        registry: SessionRegistry | None = None,
        channel: ChangeChannel | None = None,
        attachments: AttachmentBackend | None = None,
        limits: Limits = Limits(),
    ) -> None:
        self.registry = registry or SessionRegistry()
        self.channel = channel or ChangeChannel()
        self.store = EntryStore(self.registry, self.channel, attachments, limits=limits)

    async def create_session(self) -> str:
        return self.registry.create_session()

    async def join_session(self, code: str) -> str:
        return self.registry.join_session(code)

    async def list_entries(self, session_code: str) -> list[Entry]:
        return self.store.list_entries(session_code)

    async def append_entry(
        self, session_code: str, content: str, upload: Upload | None = None
    ) -> Entry:
        if upload is None:
            return await self.store.append_entry(session_code, content)
        return await self.store.append_upload(session_code, content, upload)

    async def delete_entry(self, entry_id: str) -> None:
        await self.store.delete_entry(entry_id)

    async def clear_session(self, session_code: str) -> int:
        return await self.store.clear_session(session_code)

    async def subscribe(
        self, session_code: str, handler: Handler, subscription_id: str | None = None
    ) -> Subscription:
        code = self.registry.join_session(session_code)
        return self.channel.subscribe(code, handler, subscription_id)

    async def unsubscribe(self, subscription: Subscription) -> None:
        self.channel.unsubscribe(subscription)

    def close(self) -> None:
        self.channel.close()

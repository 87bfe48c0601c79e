#!/usr/bin/env python3
"""Per-device session client and its reconciliation state machine.

States::

    UNJOINED -> JOINING -> JOINED <-> DISCONNECTED
        ^                     |            |
        +------ leave --------+------------+

Joining subscribes to the change channel first and buffers events while
the history is fetched; once the snapshot replaces the local view the
buffered events are replayed on top of it. Every view mutation is
idempotent (dedup by id, delete-if-present), so replaying events the
snapshot already contains is harmless and nothing committed between the
fetch and the subscription is lost.

Reconnecting always refetches the full history and replaces the view
wholesale, because the channel does not redeliver events missed while
disconnected.

The client holds at most one subscription. It is released before any new
one is made and whenever the client leaves JOINED, so handlers never
accumulate across repeated joins.
"""

from __future__ import annotations

import enum
import logging
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from clipsession.attachments import validate_attachment_size
from clipsession.client_state import PersistedState
from clipsession.errors import (
    ClipSessionError,
    EntryNotFound,
    NotConnected,
    NotJoined,
    SessionNotFound,
)
from clipsession.limits import Limits
from clipsession.models import EntryDeleted
from clipsession.store import validate_content
from clipsession.view import LocalView

if TYPE_CHECKING:
    from clipsession.models import ChangeEvent, Entry, Upload

logger = logging.getLogger(__name__)


class ClientState(enum.Enum):
    UNJOINED = "unjoined"
    JOINING = "joining"
    JOINED = "joined"
    DISCONNECTED = "disconnected"


class SessionClient:
    """One device's view of one session.

    Args:
        service: SessionService or RemoteService; may be attached later
            through go_online().
        persisted: Record holding the joined code and theme.
        limits: Ceilings checked before anything is sent.
        on_change: Called as on_change(event, changed) after each applied
            channel event.
    """

    def __init__(
        self,
        service: Any = None,
        persisted: PersistedState | None = None,
        limits: Limits = Limits(),
        on_change: Callable[[ChangeEvent, bool], None] | None = None,
    ) -> None:
        self.service = service
        self.persisted = persisted if persisted is not None else PersistedState()
        self.limits = limits
        self.on_change = on_change
        self.state = ClientState.UNJOINED
        self.session_code: str | None = None
        self.view = LocalView()
        self.composer = ""
        self._subscription: Any = None
        self._subscribed_via: Any = None
        self._buffer: list[ChangeEvent] | None = None
        self._recalling: set[str] = set()

    @property
    def joined(self) -> bool:
        return self.state is ClientState.JOINED

    def _require_service(self) -> Any:
        if self.service is None:
            raise NotConnected()
        return self.service

    def _require_writable(self) -> str:
        if self.state is ClientState.DISCONNECTED:
            raise NotConnected("Offline; changes cannot be sent")
        if self.state is not ClientState.JOINED or self.session_code is None:
            raise NotJoined()
        return self.session_code

    # Subscription lifecycle

    async def _subscribe(self, session_code: str) -> None:
        await self._release_subscription()
        service = self._require_service()
        self._subscription = await service.subscribe(session_code, self.handle_event)
        self._subscribed_via = service

    async def _release_subscription(self) -> None:
        subscription, self._subscription = self._subscription, None
        service, self._subscribed_via = self._subscribed_via, None
        if subscription is None:
            return
        try:
            await service.unsubscribe(subscription)
        except ClipSessionError as e:
            logger.debug("Unsubscribe failed, connection already gone: %s", e)

    async def _materialize(self, session_code: str) -> None:
        """Subscribe, fetch the history, replace the view, replay buffered events."""
        service = self._require_service()
        self._buffer = []
        try:
            await self._subscribe(session_code)
            entries = await service.list_entries(session_code)
            view = LocalView(entries)
            for event in self._buffer:
                view.apply(event)
            self.view.replace(view)
            self._recalling.clear()
        except Exception:
            await self._release_subscription()
            raise
        finally:
            self._buffer = None

    # Joining and leaving

    async def _join(self, resolve: Callable[[], Any]) -> str:
        await self._release_subscription()
        self.state = ClientState.JOINING
        self.session_code = None
        self.view.clear()
        try:
            code = await resolve()
            self.session_code = code
            await self._materialize(code)
        except Exception:
            self.state = ClientState.UNJOINED
            self.session_code = None
            raise
        self.state = ClientState.JOINED
        self.persisted.set_session(code)
        logger.debug("Joined session %s with %d entries", code, len(self.view))
        return code

    async def create_session(self) -> str:
        """Create a new session and join it.

        Returns:
            The new session code.
        """
        service = self._require_service()
        return await self._join(service.create_session)

    async def join_session(self, code: str) -> str:
        """Join an existing session by code (any letter case).

        Returns:
            The normalized code.

        Raises:
            SessionNotFound: If the code does not exist. The client is
                left UNJOINED.
        """
        service = self._require_service()
        return await self._join(lambda: service.join_session(code))

    async def leave_session(self) -> None:
        """Forget the current session locally. Server state is untouched."""
        await self._release_subscription()
        self.view.clear()
        self._recalling.clear()
        self.session_code = None
        self.state = ClientState.UNJOINED
        self.persisted.set_session(None)

    # Channel events

    def handle_event(self, event: ChangeEvent) -> None:
        """Apply one channel event to the local view."""
        if event.session_code != self.session_code:
            logger.debug("Ignoring %s event for session %s", event.kind, event.session_code)
            return
        if self._buffer is not None:
            self._buffer.append(event)
            return
        if self.state is not ClientState.JOINED:
            return
        if isinstance(event, EntryDeleted) and event.id in self._recalling:
            self._recalling.discard(event.id)
            logger.debug("Received echo of own recall of %s", event.id)
        changed = self.view.apply(event)
        if self.on_change is not None:
            self.on_change(event, changed)

    # Writes

    async def share(self, content: str, upload: Upload | None = None) -> Entry:
        """Append a new entry to the session.

        Size and emptiness are checked before anything is sent.

        Raises:
            ContentEmpty: If content is empty and there is no upload.
            ContentTooLarge: If content is over the character ceiling.
            AttachmentTooLarge: If the upload is over the byte ceiling.
            NotConnected: While disconnected.
            NotJoined: Without a session.
        """
        validate_content(content, upload is not None, self.limits)
        if upload is not None:
            validate_attachment_size(upload.data, self.limits.max_attachment_bytes)
        code = self._require_writable()
        entry = await self.service.append_entry(code, content, upload)
        self.view.add(entry)
        return entry

    async def delete_entry(self, entry_id: str) -> None:
        self._require_writable()
        await self.service.delete_entry(entry_id)
        self.view.remove(entry_id)

    async def clear_session(self) -> int:
        """Remove every entry of the session for all members.

        Returns:
            Number of entries removed; 0 means there was nothing to clear.
        """
        code = self._require_writable()
        removed = await self.service.clear_session(code)
        if removed:
            self.view.clear()
        return removed

    async def edit_entry(self, entry_id: str) -> str:
        """Recall an entry: move its content into the composer and delete it.

        The id is marked as recalled before the delete goes out, so the
        resulting entry-deleted event is recognized as this client's own.

        Returns:
            The recalled content.

        Raises:
            EntryNotFound: If the entry is not in the local view.
        """
        self._require_writable()
        entry = self.view.get(entry_id)
        if entry is None:
            raise EntryNotFound(f"Entry not found: {entry_id}")
        previous = self.composer
        self._recalling.add(entry_id)
        self.view.editing.add(entry_id)
        self.composer = entry.content
        try:
            await self.service.delete_entry(entry_id)
        except Exception:
            self._recalling.discard(entry_id)
            self.view.editing.discard(entry_id)
            self.composer = previous
            raise
        self.view.remove(entry_id)
        return entry.content

    # Connectivity

    async def go_offline(self) -> None:
        """Enter DISCONNECTED after losing connectivity."""
        if self.state is not ClientState.JOINED:
            return
        self.state = ClientState.DISCONNECTED
        await self._release_subscription()
        logger.debug("Session %s disconnected", self.session_code)

    async def go_online(self, service: Any = None) -> None:
        """Resume after (re)connecting.

        A DISCONNECTED client reconciles by full refetch. An UNJOINED
        client rejoins the session remembered in the persisted state; a
        remembered code that no longer exists is forgotten.

        Args:
            service: New transport to use; keeps the current one if None.
        """
        if service is not None:
            self.service = service
        if self.state is ClientState.DISCONNECTED:
            await self.reconcile()
        elif self.state is ClientState.UNJOINED and self.persisted.session_code:
            try:
                await self.join_session(self.persisted.session_code)
            except SessionNotFound:
                logger.warning("Remembered session %s no longer exists", self.persisted.session_code)
                self.persisted.set_session(None)
                raise

    async def reconcile(self) -> None:
        """Replace the local view with the server's history and resubscribe.

        On failure the client stays DISCONNECTED.
        """
        if self.session_code is None:
            raise NotJoined()
        await self._materialize(self.session_code)
        self.state = ClientState.JOINED
        logger.debug("Reconciled session %s: %d entries", self.session_code, len(self.view))

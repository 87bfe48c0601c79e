#!/usr/bin/env python3
"""Ordered clipboard-entry store.

The store is the single mutation path for session content: entries are
appended or deleted, never updated in place. Each successful mutation is
committed to the backend and then published on the change channel, under
a per-session lock so the publish order matches the commit order.

Ordering: newest first by server timestamp. Timestamps are clamped to be
non-decreasing per session, and ties are broken by insertion sequence
(the later insertion is listed first).
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import secrets
from collections import defaultdict
from datetime import datetime, timezone
from typing import Protocol

from clipsession.attachments import (
    AttachmentBackend,
    attachment_kind,
    validate_attachment_size,
)
from clipsession.channel import ChangeChannel
from clipsession.errors import (
    ClipSessionError,
    ContentEmpty,
    ContentTooLarge,
    EntryNotFound,
    SessionInvalid,
    StorageFailure,
)
from clipsession.limits import Limits
from clipsession.models import (
    Attachment,
    Entry,
    EntryCreated,
    EntryDeleted,
    SessionCleared,
    Upload,
)
from clipsession.registry import SessionRegistry, normalize_code

logger = logging.getLogger(__name__)


def validate_content(
    content: str,
    has_attachment: bool = False,
    limits: Limits = Limits(),
) -> None:
    """Reject content the store would refuse, without touching the network.

    Args:
        content: Text to share.
        has_attachment: Whether an attachment accompanies the text.
        limits: Ceilings to apply.

    Raises:
        ContentEmpty: If content is empty and there is no attachment.
        ContentTooLarge: If content exceeds limits.max_content_chars.
    """
    if not content and not has_attachment:
        raise ContentEmpty()
    if len(content) > limits.max_content_chars:
        raise ContentTooLarge(
            f"Content is {len(content)} characters; the limit is {limits.max_content_chars}"
        )


class StoreBackend(Protocol):
    """Ordered table of entries."""

    def select(self, session_code: str) -> list[Entry]: ...

    def get(self, entry_id: str) -> Entry | None: ...

    def insert(self, session_code: str, content: str, attachment: Attachment | None) -> Entry: ...

    def delete(self, entry_id: str) -> Entry | None: ...

    def delete_all(self, session_code: str) -> list[Entry]: ...


class MemoryStoreBackend:
    """Entries held in process memory, with server-assigned ids and timestamps."""

    def __init__(self, clock=None) -> None:
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._seq = itertools.count()
        self._rows: dict[str, tuple[int, Entry]] = {}
        self._last_stamp: dict[str, datetime] = {}

    def _stamp(self, session_code: str) -> datetime:
        now = self._clock()
        last = self._last_stamp.get(session_code)
        if last is not None and now < last:
            now = last
        self._last_stamp[session_code] = now
        return now

    def select(self, session_code: str) -> list[Entry]:
        rows = [row for row in self._rows.values() if row[1].session_code == session_code]
        rows.sort(key=lambda row: (row[1].created_at, row[0]), reverse=True)
        return [entry for _, entry in rows]

    def get(self, entry_id: str) -> Entry | None:
        row = self._rows.get(entry_id)
        return row[1] if row else None

    def insert(self, session_code: str, content: str, attachment: Attachment | None) -> Entry:
        entry = Entry(
            id=secrets.token_hex(12),
            session_code=session_code,
            content=content,
            created_at=self._stamp(session_code),
            attachment=attachment,
        )
        self._rows[entry.id] = (next(self._seq), entry)
        return entry

    def delete(self, entry_id: str) -> Entry | None:
        row = self._rows.pop(entry_id, None)
        return row[1] if row else None

    def delete_all(self, session_code: str) -> list[Entry]:
        doomed = self.select(session_code)
        for entry in doomed:
            del self._rows[entry.id]
        return doomed


class EntryStore:
    """Session-scoped append/delete store that publishes every change.

    Args:
        registry: Used to check that a session exists.
        channel: Receives created/deleted/cleared events.
        attachments: Backend for attachment bytes; None disables uploads.
        backend: Entry table. Defaults to memory.
        limits: Size ceilings.
    """

    def __init__(
        self,
        registry: SessionRegistry,
        channel: ChangeChannel,
        attachments: AttachmentBackend | None = None,
        backend: StoreBackend | None = None,
        limits: Limits = Limits(),
    ) -> None:
        self.registry = registry
        self.channel = channel
        self.attachments = attachments
        self.backend = backend if backend is not None else MemoryStoreBackend()
        self.limits = limits
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def _require_session(self, session_code: str) -> str:
        code = normalize_code(session_code)
        if not self.registry.exists(code):
            raise SessionInvalid(f"Session does not exist: {code}")
        return code

    def list_entries(self, session_code: str) -> list[Entry]:
        """Return a session's entries, newest first.

        Raises:
            SessionInvalid: If the session does not exist.
        """
        return self.backend.select(self._require_session(session_code))

    def get_entry(self, entry_id: str) -> Entry:
        entry = self.backend.get(entry_id)
        if entry is None:
            raise EntryNotFound(f"Entry not found: {entry_id}")
        return entry

    async def upload_attachment(self, upload: Upload) -> Attachment:
        """Store attachment bytes and return the reference for a new entry.

        Raises:
            AttachmentTooLarge: Before uploading, if the data is over the limit.
            StorageFailure: If the backend is missing or the upload fails.
        """
        validate_attachment_size(upload.data, self.limits.max_attachment_bytes)
        if self.attachments is None:
            raise StorageFailure("Attachments are not enabled on this server")
        stored = await self.attachments.upload(upload.data, upload.name)
        return Attachment(
            path=stored.path,
            url=stored.url,
            kind=attachment_kind(upload.name),
            name=upload.name,
        )

    async def append_entry(
        self,
        session_code: str,
        content: str,
        attachment: Attachment | None = None,
    ) -> Entry:
        """Persist a new entry and publish an entry-created event.

        Raises:
            ContentEmpty: If content is empty and attachment is None.
            ContentTooLarge: If content is over the character ceiling.
            SessionInvalid: If the session does not exist.
        """
        validate_content(content, attachment is not None, self.limits)
        code = self._require_session(session_code)
        async with self._locks[code]:
            entry = self.backend.insert(code, content, attachment)
            self.channel.publish(EntryCreated(code, entry))
        logger.debug("Appended entry %s to session %s", entry.id, code)
        return entry

    async def append_upload(self, session_code: str, content: str, upload: Upload) -> Entry:
        """Upload an attachment and append the entry referencing it.

        The stored object is released again if the entry is rejected.
        """
        validate_content(content, True, self.limits)
        self._require_session(session_code)
        attachment = await self.upload_attachment(upload)
        try:
            return await self.append_entry(session_code, content, attachment)
        except ClipSessionError:
            await self._release(attachment)
            raise

    async def _release(self, attachment: Attachment) -> None:
        if self.attachments is None:
            logger.warning("No attachment backend; cannot release %s", attachment.path)
            return
        try:
            await self.attachments.remove(attachment.path)
        except Exception as e:
            logger.warning("Failed to release attachment %s: %s", attachment.path, e)

    async def delete_entry(self, entry_id: str) -> Entry:
        """Remove one entry, releasing its attachment first (best-effort).

        Returns:
            The deleted entry.

        Raises:
            EntryNotFound: If no entry has that id.
        """
        entry = self.get_entry(entry_id)
        async with self._locks[entry.session_code]:
            entry = self.get_entry(entry_id)
            if entry.attachment is not None:
                await self._release(entry.attachment)
            self.backend.delete(entry_id)
            self.channel.publish(EntryDeleted(entry.session_code, entry_id))
        logger.debug("Deleted entry %s from session %s", entry_id, entry.session_code)
        return entry

    async def clear_session(self, session_code: str) -> int:
        """Remove every entry of a session.

        Attachments are released best-effort before the records go. A
        single session-cleared event is published, and only when something
        was removed.

        Returns:
            Number of entries removed; 0 means there was nothing to clear.

        Raises:
            SessionInvalid: If the session does not exist.
        """
        code = self._require_session(session_code)
        async with self._locks[code]:
            entries = self.backend.select(code)
            if not entries:
                logger.debug("Nothing to clear in session %s", code)
                return 0
            for entry in entries:
                if entry.attachment is not None:
                    await self._release(entry.attachment)
            removed = self.backend.delete_all(code)
            self.channel.publish(SessionCleared(code))
        logger.debug("Cleared %d entries from session %s", len(removed), code)
        return len(removed)

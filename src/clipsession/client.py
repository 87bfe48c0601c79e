#!/usr/bin/env python3
"""Client mode implementation for clipsession.

One-shot commands connect to the server, restore the session remembered
in the persisted state, perform a single operation and disconnect. watch
keeps a SessionClient online, prints every change and optionally mirrors
new text entries into the local X11 clipboard.

See client_retry.py for reconnection handling.
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, TypeVar

import click

from clipsession.client_retry import run_client_connection
from clipsession.errors import ClipboardError, EntryNotFound, NotJoined
from clipsession.models import EntryCreated, EntryDeleted, SessionCleared
from clipsession.remote import RemoteService
from clipsession.session_client import SessionClient

if TYPE_CHECKING:
    from clipsession.address import ServerAddress
    from clipsession.client_state import PersistedState
    from clipsession.models import ChangeEvent, Entry
    from clipsession.view import LocalView

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Characters of an entry id shown in listings; any unique prefix is accepted.
SHORT_ID: int = 8

PREVIEW_CHARS: int = 60


def format_entry(entry: Entry) -> str:
    """One-line listing of an entry: short id, time, preview, attachment."""
    stamp = entry.created_at.astimezone().strftime("%Y-%m-%d %H:%M:%S")
    preview = " ".join(entry.content.split())
    if len(preview) > PREVIEW_CHARS:
        preview = preview[: PREVIEW_CHARS - 3] + "..."
    line = f"{entry.id[:SHORT_ID]}  {stamp}  {preview}".rstrip()
    if entry.attachment is not None:
        line += f"  [{entry.attachment.kind}: {entry.attachment.name}] {entry.attachment.url}"
    return line


def format_event(event: ChangeEvent) -> str:
    if isinstance(event, EntryCreated):
        return "+ " + format_entry(event.entry)
    if isinstance(event, EntryDeleted):
        return f"- {event.id[:SHORT_ID]}"
    if isinstance(event, SessionCleared):
        return "* session cleared"
    return f"? {event.kind}"


def resolve_entry_id(view: LocalView, prefix: str) -> str:
    """Expand an id prefix typed by the user to a full entry id.

    Raises:
        EntryNotFound: If no entry, or more than one, matches.
    """
    matches = [entry.id for entry in view if entry.id.startswith(prefix)]
    if len(matches) == 1:
        return matches[0]
    if not matches:
        raise EntryNotFound(f"No entry matches {prefix}")
    raise EntryNotFound(f"Ambiguous entry id {prefix}; type more characters")


async def with_client(
    address: ServerAddress,
    persisted: PersistedState,
    action: Callable[[SessionClient], Awaitable[T]],
    restore: bool = True,
) -> T:
    """Connect, optionally rejoin the remembered session, run action, disconnect.

    Raises:
        NotJoined: If restore is requested but no session is remembered.
        ConnectionError: If the server cannot be reached.
    """
    if restore and not persisted.session_code:
        raise NotJoined()
    service = await RemoteService.connect(address)
    try:
        client = SessionClient(service, persisted)
        if restore:
            await client.go_online()
        return await action(client)
    finally:
        await service.close()


async def run_watch(
    address: ServerAddress,
    persisted: PersistedState,
    copy_to_clipboard: bool = False,
) -> None:
    """Follow the remembered session until interrupted.

    Args:
        address: Where the server listens.
        persisted: Client state holding the session to follow.
        copy_to_clipboard: Put each new text entry on the X11 clipboard.

    Raises:
        NotJoined: If no session is remembered.
        ClipboardError: If copy_to_clipboard is set and X11 is unavailable.
    """
    if not persisted.session_code:
        raise NotJoined()

    clipboard = None
    if copy_to_clipboard:
        from clipsession.clipboard import X11Clipboard

        clipboard = X11Clipboard()
        clipboard.attach()

    def on_change(event: ChangeEvent, changed: bool) -> None:
        if not changed:
            return
        click.echo(format_event(event))
        if clipboard is not None and isinstance(event, EntryCreated) and event.entry.content:
            try:
                clipboard.write_text(event.entry.content)
            except ClipboardError as e:
                logger.warning("Could not copy entry %s: %s", event.entry.id, e)

    def on_online(client: SessionClient) -> None:
        click.echo(f"Session {client.session_code}: {len(client.view)} entries")
        for entry in client.view:
            click.echo("  " + format_entry(entry))

    client = SessionClient(persisted=persisted, on_change=on_change)

    shutdown_requested = asyncio.Event()
    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, shutdown_requested.set)
    loop.add_signal_handler(signal.SIGTERM, shutdown_requested.set)

    try:
        await run_client_connection(address, client, shutdown_requested, on_online)
    finally:
        if clipboard is not None:
            clipboard.close()

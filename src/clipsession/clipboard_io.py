"""X11 selection I/O.

This module provides the low-level pieces of the X11 selection protocol
used by X11Clipboard:
- Reading a selection's content with timeout handling
- Answering SelectionRequest events while owning a selection
- Draining pending X11 events without blocking asyncio
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from Xlib import X, Xatom

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.event import SelectionRequest
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

logger = logging.getLogger(__name__)

# Timeout in seconds for clipboard read operations to prevent hangs
# when the clipboard owner is unresponsive
CLIPBOARD_TIMEOUT: float = 2.0

# Property our window receives converted selection data on.
TRANSFER_PROPERTY: str = "CLIPSESSION_SEL"

# Pause between checks for pending X11 events while waiting on a reply.
EVENT_POLL_INTERVAL: float = 0.01


async def wait_for_event_type(
    display: Display,
    target_event_type: int,
    deferred_events: list[Event],
    timeout: float = CLIPBOARD_TIMEOUT,
) -> Event | None:
    """Wait until an event of the target type arrives, or give up.

    The display is polled with pending_events() and never blocked on, so
    nothing is left reading from it once the wait is abandoned.
    SelectionRequest events read meanwhile are appended to deferred_events
    so they can still be answered afterwards.

    Args:
        display: The X11 display connection.
        target_event_type: The X11 event type to wait for.
        deferred_events: List to collect SelectionRequests during the wait.
        timeout: Seconds to wait before giving up.

    Returns:
        The matching event, or None on timeout.
    """
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        while display.pending_events() > 0:
            event = display.next_event()
            if event.type == target_event_type:
                return event
            if event.type == X.SelectionRequest:
                deferred_events.append(event)
        if loop.time() >= deadline:
            return None
        await asyncio.sleep(EVENT_POLL_INTERVAL)


async def read_selection(
    display: Display,
    window: Window,
    selection_atom: int,
    deferred_events: list[Event],
) -> bytes | None:
    """Read content from the current owner of a selection.

    Requests the UTF8_STRING target and waits for SelectionNotify for at
    most CLIPBOARD_TIMEOUT seconds.

    Args:
        display: The X11 display connection.
        window: The window to receive selection data.
        selection_atom: The selection atom to read (usually CLIPBOARD).
        deferred_events: List to collect events read during the wait.

    Returns:
        Content bytes, or None if there is no owner, the owner refused, or
        the read timed out.
    """
    owner = display.get_selection_owner(selection_atom)
    if owner == X.NONE:
        logger.debug("No selection owner for atom %s", selection_atom)
        return None

    utf8_atom = display.intern_atom("UTF8_STRING")
    prop_atom = display.intern_atom(TRANSFER_PROPERTY)
    window.convert_selection(selection_atom, utf8_atom, prop_atom, X.CurrentTime)
    display.flush()

    notify = await wait_for_event_type(
        display, X.SelectionNotify, deferred_events, CLIPBOARD_TIMEOUT
    )
    if notify is None:
        logger.debug("Clipboard read timed out after %s seconds", CLIPBOARD_TIMEOUT)
        return None

    if notify.property == X.NONE:
        logger.debug("Selection owner refused UTF8_STRING conversion")
        return None
    return _read_property(display, window, prop_atom)


def _read_property(display: Display, window: Window, prop_atom: int) -> bytes | None:
    """Read and delete the transfer property from our window."""
    prop = window.get_full_property(prop_atom, X.AnyPropertyType)
    window.delete_property(prop_atom)
    display.flush()
    if prop is None:
        logger.debug("Selection property was empty")
        return None
    data = prop.value
    if isinstance(data, str):
        return data.encode("utf-8")
    return bytes(data)


def answer_selection_request(display: Display, event: SelectionRequest, content: bytes) -> None:
    """Respond to a SelectionRequest while we own the selection.

    Supports TARGETS, UTF8_STRING and STRING. Anything else is refused
    with property=None.

    Args:
        display: The X11 display connection.
        event: The SelectionRequest event.
        content: The content bytes to serve.
    """
    from Xlib.protocol.event import SelectionNotify

    targets_atom = display.intern_atom("TARGETS")
    utf8_atom = display.intern_atom("UTF8_STRING")
    prop = event.property if event.property != X.NONE else event.target

    if event.target == targets_atom:
        event.requestor.change_property(prop, Xatom.ATOM, 32, [targets_atom, utf8_atom, Xatom.STRING])
    elif event.target in (utf8_atom, Xatom.STRING):
        event.requestor.change_property(prop, event.target, 8, content)
    else:
        logger.debug("Refusing selection target %s", event.target)
        prop = X.NONE

    event.requestor.send_event(
        SelectionNotify(
            time=event.time,
            requestor=event.requestor.id,
            selection=event.selection,
            target=event.target,
            property=prop,
        ),
        event_mask=0,
    )
    display.flush()


def process_pending_events(display: Display, deferred_events: list[Event]) -> list[Event]:
    """Collect SelectionRequest events already pending, without blocking.

    Args:
        display: The X11 display connection.
        deferred_events: Events deferred during reads; drained first to
            keep ordering.

    Returns:
        SelectionRequest events to answer.
    """
    events: list[Event] = list(deferred_events)
    deferred_events.clear()
    while display.pending_events() > 0:
        event = display.next_event()
        if event.type == X.SelectionRequest:
            events.append(event)
    return events

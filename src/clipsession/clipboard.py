"""Local X11 clipboard access.

X11Clipboard reads the CLIPBOARD selection and publishes text by taking
ownership of CLIPBOARD and PRIMARY with a hidden window. While it owns a
selection it must answer requests from other applications; attach() hooks
the display's file descriptor into the asyncio loop with add_reader() so
requests are served as they arrive.

Every failure surfaces as ClipboardError, which callers treat as a
recoverable, user-visible condition.
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING

from Xlib import X, Xatom

from clipsession.clipboard_io import (
    answer_selection_request,
    process_pending_events,
    read_selection,
)
from clipsession.errors import ClipboardError

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

logger = logging.getLogger(__name__)


def open_display() -> Display:
    """Open the X11 display named by $DISPLAY.

    Raises:
        ClipboardError: If DISPLAY is unset or the connection fails.
    """
    display_name = os.environ.get("DISPLAY")
    if not display_name:
        raise ClipboardError("DISPLAY is not set; clipboard access needs an X11 display")
    try:
        from Xlib.display import Display as XDisplay
        return XDisplay(display_name)
    except Exception as e:
        raise ClipboardError(f"Failed to connect to X11 display: {e}") from e


def create_hidden_window(display: Display) -> Window:
    """Create a 1x1 unmapped window for clipboard ownership.

    Args:
        display: The X11 display connection.

    Returns:
        A Window object for owning clipboard selections.
    """
    screen = display.screen()
    return screen.root.create_window(
        0, 0, 1, 1, 0, screen.root_depth, event_mask=X.PropertyChangeMask,
    )


class X11Clipboard:
    """Read and write the desktop clipboard.

    Args:
        display: Open display; opened from $DISPLAY when omitted.
    """

    def __init__(self, display: Display | None = None) -> None:
        self.display = display if display is not None else open_display()
        self.window = create_hidden_window(self.display)
        self.clipboard_atom = self.display.intern_atom("CLIPBOARD")
        self.content = b""
        self._deferred: list[Event] = []
        self._loop: asyncio.AbstractEventLoop | None = None

    async def read_text(self) -> str:
        """Return the current CLIPBOARD text.

        Raises:
            ClipboardError: If the clipboard is empty or could not be read.
        """
        if self.display.get_selection_owner(self.clipboard_atom) == self.window:
            return self.content.decode("utf-8", errors="replace")
        # The reader callback would swallow the SelectionNotify awaited below.
        loop = self._loop
        self.detach()
        try:
            data = await read_selection(self.display, self.window, self.clipboard_atom, self._deferred)
        except Exception as e:
            raise ClipboardError(f"Failed to read clipboard: {e}") from e
        finally:
            if self._deferred:
                self.serve_pending()
            if loop is not None:
                self.attach(loop)
        if data is None:
            raise ClipboardError("Clipboard is empty or its owner did not answer")
        return data.decode("utf-8", errors="replace")

    def write_text(self, text: str) -> None:
        """Own CLIPBOARD and PRIMARY and serve text to other applications.

        Raises:
            ClipboardError: If ownership could not be acquired.
        """
        self.content = text.encode("utf-8")
        for atom in (self.clipboard_atom, Xatom.PRIMARY):
            try:
                self.window.set_selection_owner(atom, X.CurrentTime)
                self.display.flush()
                owner = self.display.get_selection_owner(atom)
            except Exception as e:
                raise ClipboardError(f"Failed to set clipboard: {e}") from e
            if owner != self.window:
                raise ClipboardError("Another application refused clipboard ownership")
        logger.debug("Clipboard set to %d bytes", len(self.content))

    def serve_pending(self) -> None:
        """Answer every pending SelectionRequest."""
        for event in process_pending_events(self.display, self._deferred):
            answer_selection_request(self.display, event, self.content)

    def attach(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Serve selection requests from the asyncio loop."""
        self._loop = loop or asyncio.get_running_loop()
        self._loop.add_reader(self.display.fileno(), self.serve_pending)

    def detach(self) -> None:
        if self._loop is not None:
            self._loop.remove_reader(self.display.fileno())
            self._loop = None

    def close(self) -> None:
        self.detach()
        self.display.close()

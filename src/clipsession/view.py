#!/usr/bin/env python3
"""Client-local projection of a session's entry history.

The view is newest-first. Every mutation either applies completely or not
at all, and applying the same event twice has the same effect as applying
it once: creations are deduplicated by id and deletions of unknown ids are
no-ops.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from typing import TYPE_CHECKING

from clipsession.models import EntryCreated, EntryDeleted, SessionCleared

if TYPE_CHECKING:
    from clipsession.models import ChangeEvent, Entry


class LocalView:
    """Ordered entries plus transient expanded/editing flags."""

    def __init__(self, entries: Iterable[Entry] = ()) -> None:
        self._entries: list[Entry] = list(entries)
        self.expanded: set[str] = set()
        self.editing: set[str] = set()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[Entry]:
        return iter(self._entries)

    def __contains__(self, entry_id: object) -> bool:
        return any(entry.id == entry_id for entry in self._entries)

    @property
    def entries(self) -> list[Entry]:
        return list(self._entries)

    def contents(self) -> list[str]:
        return [entry.content for entry in self._entries]

    def get(self, entry_id: str) -> Entry | None:
        for entry in self._entries:
            if entry.id == entry_id:
                return entry
        return None

    def replace(self, entries: Iterable[Entry]) -> None:
        """Swap in an authoritative history wholesale."""
        self._entries = list(entries)
        ids = {entry.id for entry in self._entries}
        self.expanded &= ids
        self.editing &= ids

    def add(self, entry: Entry) -> bool:
        """Prepend an entry unless its id is already present.

        Returns:
            True if the view changed.
        """
        if entry.id in self:
            return False
        self._entries.insert(0, entry)
        return True

    def remove(self, entry_id: str) -> bool:
        """Drop an entry by id.

        Returns:
            True if the view changed.
        """
        kept = [entry for entry in self._entries if entry.id != entry_id]
        if len(kept) == len(self._entries):
            return False
        self._entries = kept
        self.expanded.discard(entry_id)
        self.editing.discard(entry_id)
        return True

    def clear(self) -> None:
        self.replace(())

    def apply(self, event: ChangeEvent) -> bool:
        """Apply one channel event.

        Returns:
            True if the view changed.
        """
        if isinstance(event, EntryCreated):
            return self.add(event.entry)
        if isinstance(event, EntryDeleted):
            return self.remove(event.id)
        if isinstance(event, SessionCleared):
            changed = bool(self._entries)
            self.clear()
            return changed
        return False

    def toggle_expanded(self, entry_id: str) -> bool:
        """Flip the expanded flag of an entry. Returns the new state."""
        if entry_id in self.expanded:
            self.expanded.discard(entry_id)
            return False
        self.expanded.add(entry_id)
        return True

#!/usr/bin/env python3
"""Data model shared by the server, the wire protocol and the client.

Entries are immutable once created. Channel events are small frozen
dataclasses with a ``kind`` so that a bulk clear can never be mistaken for
the removal of a single entry.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Union

ATTACHMENT_KINDS = ("file", "image")


@dataclass(frozen=True)
class Attachment:
    """Reference to binary content held by the attachment backend.

    Attributes:
        path: Backend-relative object path, used to release the object.
        url: Public retrieval URL.
        kind: Either "file" or "image".
        name: Original file name.
    """

    path: str
    url: str
    kind: str = "file"
    name: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "url": self.url, "kind": self.kind, "name": self.name}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Attachment:
        return cls(
            path=data["path"],
            url=data["url"],
            kind=data.get("kind", "file"),
            name=data.get("name", ""),
        )


@dataclass(frozen=True)
class Upload:
    """Raw attachment bytes on their way to the attachment backend."""

    name: str
    data: bytes


@dataclass(frozen=True)
class Entry:
    """One clipboard write belonging to a session.

    Attributes:
        id: Store-assigned unique identifier.
        session_code: Code of the owning session.
        content: Text content, possibly empty when an attachment is present.
        created_at: Server-assigned timestamp.
        attachment: Optional attachment reference.
    """

    id: str
    session_code: str
    content: str
    created_at: datetime
    attachment: Attachment | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "session_code": self.session_code,
            "content": self.content,
            "created_at": self.created_at.isoformat(),
            "attachment": self.attachment.to_dict() if self.attachment else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entry:
        attachment = data.get("attachment")
        return cls(
            id=data["id"],
            session_code=data["session_code"],
            content=data.get("content", ""),
            created_at=datetime.fromisoformat(data["created_at"]),
            attachment=Attachment.from_dict(attachment) if attachment else None,
        )


@dataclass(frozen=True)
class EntryCreated:
    session_code: str
    entry: Entry
    kind: str = "created"


@dataclass(frozen=True)
class EntryDeleted:
    session_code: str
    id: str
    kind: str = "deleted"


@dataclass(frozen=True)
class SessionCleared:
    session_code: str
    kind: str = "cleared"


ChangeEvent = Union[EntryCreated, EntryDeleted, SessionCleared]


def event_to_dict(event: ChangeEvent) -> dict[str, Any]:
    """Serialize a channel event for the wire."""
    data: dict[str, Any] = {"kind": event.kind, "session": event.session_code}
    if isinstance(event, EntryCreated):
        data["entry"] = event.entry.to_dict()
    elif isinstance(event, EntryDeleted):
        data["id"] = event.id
    return data


def event_from_dict(data: dict[str, Any]) -> ChangeEvent:
    """Parse a channel event received from the wire.

    Raises:
        ValueError: If the event kind is unknown.
    """
    kind = data.get("kind")
    session_code = data["session"]
    if kind == "created":
        return EntryCreated(session_code, Entry.from_dict(data["entry"]))
    if kind == "deleted":
        return EntryDeleted(session_code, data["id"])
    if kind == "cleared":
        return SessionCleared(session_code)
    raise ValueError(f"Unknown event kind: {kind!r}")

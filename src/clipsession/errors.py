#!/usr/bin/env python3
"""Error taxonomy for clipsession.

Every failure that reaches a caller is a ClipSessionError subclass with a
stable ``kind`` string. The kind is what travels over the wire, so the
remote client can rebuild the same typed exception the server raised.
"""

from __future__ import annotations


class ClipSessionError(Exception):
    """Base class for all clipsession failures.

    Attributes:
        kind: Stable identifier used on the wire.
        default_message: Human-readable text used when none is given.
    """

    kind: str = "error"
    default_message: str = "Unexpected error"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)

    @property
    def message(self) -> str:
        """Short human-readable notification text."""
        return str(self)


class NotFound(ClipSessionError):
    kind = "not_found"
    default_message = "Not found"


class SessionNotFound(NotFound):
    kind = "session_not_found"
    default_message = "Invalid session code"


class SessionInvalid(SessionNotFound):
    """Store operation addressed a session the registry does not know."""

    kind = "session_invalid"
    default_message = "Session does not exist"


class EntryNotFound(NotFound):
    kind = "entry_not_found"
    default_message = "Entry not found"


class ValidationError(ClipSessionError):
    """Raised before any network call when input is rejected locally."""

    kind = "validation"
    default_message = "Invalid input"


class ContentEmpty(ValidationError):
    kind = "content_empty"
    default_message = "Nothing to share"


class ContentTooLarge(ValidationError):
    kind = "content_too_large"
    default_message = "Content is too large"


class AttachmentTooLarge(ValidationError):
    kind = "attachment_too_large"
    default_message = "Attachment is too large"


class NotConnected(ClipSessionError):
    kind = "not_connected"
    default_message = "Not connected"


class NotJoined(ClipSessionError):
    kind = "not_joined"
    default_message = "No active session; create or join one first"


class StorageFailure(ClipSessionError):
    kind = "storage_failure"
    default_message = "Attachment storage failed"


class ChannelError(ClipSessionError):
    kind = "channel_error"
    default_message = "Change channel failure"


class ProtocolError(ChannelError):
    """
    Exception raised for protocol-level errors.

    Raised when netstring parsing fails due to invalid format, size
    violations, malformed JSON, or connection issues during message reading.
    """

    kind = "protocol_error"
    default_message = "Protocol error"


class ServerSocketError(ClipSessionError):
    """The listening socket path is held by a live server or is unusable."""

    kind = "server_socket_error"
    default_message = "Cannot listen on the server socket"


class ClipboardError(ClipSessionError):
    """OS clipboard could not be read or written. Always recoverable."""

    kind = "clipboard_error"
    default_message = "Clipboard is not available"


_KINDS: dict[str, type[ClipSessionError]] = {}


def _register(cls: type[ClipSessionError]) -> None:
    _KINDS[cls.kind] = cls
    for sub in cls.__subclasses__():
        _register(sub)


_register(ClipSessionError)


def error_from_kind(kind: str, message: str | None = None) -> ClipSessionError:
    """Rebuild a typed error from its wire kind.

    Args:
        kind: The ``kind`` string carried in an error response.
        message: The message carried alongside it.

    Returns:
        An instance of the matching subclass, or ClipSessionError for an
        unknown kind.
    """
    return _KINDS.get(kind, ClipSessionError)(message)

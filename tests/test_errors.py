#!/usr/bin/env python3
"""Tests for the error taxonomy and wire kinds."""
import pytest

from clipsession.errors import (
    AttachmentTooLarge,
    ChannelError,
    ClipSessionError,
    ContentEmpty,
    ContentTooLarge,
    EntryNotFound,
    NotConnected,
    NotFound,
    ProtocolError,
    SessionInvalid,
    ServerSocketError,
    SessionNotFound,
    StorageFailure,
    ValidationError,
    error_from_kind,
)


@pytest.mark.parametrize(
    "cls",
    [
        NotFound, SessionNotFound, SessionInvalid, EntryNotFound, ContentEmpty,
        ContentTooLarge, AttachmentTooLarge, NotConnected, StorageFailure,
        ChannelError, ProtocolError, ServerSocketError,
    ],
)
def test_error_from_kind_rebuilds_same_type(cls: type[ClipSessionError]) -> None:
    """Test every kind maps back to its own class with the message kept."""
    error = error_from_kind(cls.kind, "details")
    assert type(error) is cls
    assert error.message == "details"


def test_error_from_unknown_kind_falls_back_to_base() -> None:
    error = error_from_kind("something_new", "odd")
    assert type(error) is ClipSessionError
    assert str(error) == "odd"


def test_default_message_used_when_none_given() -> None:
    assert str(ContentEmpty()) == "Nothing to share"


def test_hierarchy() -> None:
    """Test the groupings callers rely on when catching."""
    assert issubclass(SessionInvalid, NotFound)
    assert issubclass(ContentTooLarge, ValidationError)
    assert issubclass(AttachmentTooLarge, ValidationError)
    assert issubclass(ProtocolError, ChannelError)

#!/usr/bin/env python3
"""Tests for the ordered entry store."""
import logging
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from conftest import StepClock, fixed_codes

from clipsession.attachments import LocalAttachmentStore, StoredObject
from clipsession.channel import ChangeChannel
from clipsession.errors import (
    AttachmentTooLarge,
    ContentEmpty,
    ContentTooLarge,
    EntryNotFound,
    SessionInvalid,
    StorageFailure,
)
from clipsession.limits import Limits
from clipsession.models import (
    Attachment,
    EntryCreated,
    EntryDeleted,
    SessionCleared,
    Upload,
)
from clipsession.registry import SessionRegistry
from clipsession.store import EntryStore, MemoryStoreBackend, validate_content


@pytest.fixture
def clock() -> StepClock:
    return StepClock()


@pytest.fixture
def registry() -> SessionRegistry:
    registry = SessionRegistry(code_factory=fixed_codes("K3F9Q", "OTHER"))
    registry.create_session()
    return registry


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
async def channel(events: list):
    channel = ChangeChannel()
    channel.subscribe("K3F9Q", events.append)
    yield channel
    channel.close()


@pytest.fixture
def store(registry: SessionRegistry, channel: ChangeChannel, clock: StepClock, tmp_path: Path) -> EntryStore:
    return EntryStore(
        registry,
        channel,
        LocalAttachmentStore(tmp_path / "files"),
        backend=MemoryStoreBackend(clock),
    )


class TestValidateContent:
    """Tests for the pre-persistence content checks."""

    def test_content_at_limit_is_accepted(self) -> None:
        validate_content("x" * 15000)

    def test_content_over_limit_is_rejected(self) -> None:
        with pytest.raises(ContentTooLarge):
            validate_content("x" * 15001)

    def test_empty_without_attachment_is_rejected(self) -> None:
        with pytest.raises(ContentEmpty):
            validate_content("")

    def test_empty_with_attachment_is_accepted(self) -> None:
        validate_content("", has_attachment=True)

    def test_custom_limit(self) -> None:
        with pytest.raises(ContentTooLarge):
            validate_content("abcd", limits=Limits(max_content_chars=3))


@pytest.mark.asyncio
async def test_list_entries_newest_first(store: EntryStore, clock: StepClock) -> None:
    """Test entries created later are listed first."""
    await store.append_entry("K3F9Q", "first")
    clock.tick()
    await store.append_entry("K3F9Q", "second")
    assert [e.content for e in store.list_entries("K3F9Q")] == ["second", "first"]


@pytest.mark.asyncio
async def test_timestamp_ties_follow_insertion_order(store: EntryStore) -> None:
    """Test equal timestamps keep insertion order (later insertion first)."""
    for content in ("a", "b", "c"):
        await store.append_entry("K3F9Q", content)
    entries = store.list_entries("K3F9Q")
    assert len({e.created_at for e in entries}) == 1
    assert [e.content for e in entries] == ["c", "b", "a"]


@pytest.mark.asyncio
async def test_timestamps_never_decrease_within_session(store: EntryStore, clock: StepClock) -> None:
    """Test a clock stepping backwards does not reorder a session."""
    first = await store.append_entry("K3F9Q", "first")
    clock.tick(-30)
    second = await store.append_entry("K3F9Q", "second")
    assert second.created_at >= first.created_at
    assert [e.content for e in store.list_entries("K3F9Q")] == ["second", "first"]


@pytest.mark.asyncio
async def test_list_entries_is_scoped_to_session(store: EntryStore, registry: SessionRegistry) -> None:
    other = registry.create_session()
    await store.append_entry("K3F9Q", "mine")
    await store.append_entry(other, "theirs")
    assert [e.content for e in store.list_entries("k3f9q")] == ["mine"]


@pytest.mark.asyncio
async def test_list_entries_unknown_session(store: EntryStore) -> None:
    with pytest.raises(SessionInvalid):
        store.list_entries("NOPE1")


@pytest.mark.asyncio
async def test_append_entry_assigns_id_and_publishes(
    store: EntryStore, channel: ChangeChannel, events: list
) -> None:
    """Test append assigns a store id and fans out an entry-created event."""
    entry = await store.append_entry("K3F9Q", "hello")
    await channel.join()
    assert entry.id
    assert entry.session_code == "K3F9Q"
    assert events == [EntryCreated("K3F9Q", entry)]


@pytest.mark.asyncio
async def test_append_entry_size_boundary(store: EntryStore) -> None:
    """Test 15,000 characters succeed and 15,001 fail."""
    await store.append_entry("K3F9Q", "x" * 15000)
    with pytest.raises(ContentTooLarge):
        await store.append_entry("K3F9Q", "x" * 15001)
    assert len(store.list_entries("K3F9Q")) == 1


@pytest.mark.asyncio
async def test_append_entry_empty_rejected_without_publishing(
    store: EntryStore, channel: ChangeChannel, events: list
) -> None:
    with pytest.raises(ContentEmpty):
        await store.append_entry("K3F9Q", "")
    await channel.join()
    assert events == []


@pytest.mark.asyncio
async def test_append_entry_unknown_session(store: EntryStore) -> None:
    with pytest.raises(SessionInvalid):
        await store.append_entry("NOPE1", "hello")


@pytest.mark.asyncio
async def test_append_upload_stores_attachment(store: EntryStore, tmp_path: Path) -> None:
    """Test an attachment-only entry is accepted and classified by name."""
    entry = await store.append_upload("K3F9Q", "", Upload("cat.png", b"\x89PNG"))
    assert entry.attachment is not None
    assert entry.attachment.kind == "image"
    assert entry.attachment.name == "cat.png"
    assert (tmp_path / "files" / entry.attachment.path).read_bytes() == b"\x89PNG"


@pytest.mark.asyncio
async def test_append_upload_too_large_never_uploads(registry: SessionRegistry, channel: ChangeChannel) -> None:
    """Test AttachmentTooLarge is raised before the backend is called."""
    backend = AsyncMock()
    store = EntryStore(registry, channel, backend, limits=Limits(max_attachment_bytes=4))
    with pytest.raises(AttachmentTooLarge):
        await store.append_upload("K3F9Q", "", Upload("big.bin", b"12345"))
    backend.upload.assert_not_called()


@pytest.mark.asyncio
async def test_append_upload_without_backend(registry: SessionRegistry, channel: ChangeChannel) -> None:
    store = EntryStore(registry, channel)
    with pytest.raises(StorageFailure):
        await store.append_upload("K3F9Q", "", Upload("a.txt", b"a"))


@pytest.mark.asyncio
async def test_delete_entry_publishes_deleted_id(
    store: EntryStore, channel: ChangeChannel, events: list
) -> None:
    entry = await store.append_entry("K3F9Q", "hello")
    await store.delete_entry(entry.id)
    await channel.join()
    assert store.list_entries("K3F9Q") == []
    assert events[-1] == EntryDeleted("K3F9Q", entry.id)


@pytest.mark.asyncio
async def test_delete_entry_unknown_id(store: EntryStore) -> None:
    with pytest.raises(EntryNotFound):
        await store.delete_entry("missing")


@pytest.mark.asyncio
async def test_delete_entry_releases_attachment(store: EntryStore, tmp_path: Path) -> None:
    """Test deleting an entry with an attachment removes the backing object."""
    entry = await store.append_upload("K3F9Q", "see file", Upload("notes.txt", b"data"))
    stored = tmp_path / "files" / entry.attachment.path
    assert stored.exists()
    await store.delete_entry(entry.id)
    assert not stored.exists()


@pytest.mark.asyncio
async def test_delete_entry_without_attachment_makes_no_storage_call(
    registry: SessionRegistry, channel: ChangeChannel
) -> None:
    backend = AsyncMock()
    store = EntryStore(registry, channel, backend)
    entry = await store.append_entry("K3F9Q", "plain")
    await store.delete_entry(entry.id)
    backend.remove.assert_not_called()


@pytest.mark.asyncio
async def test_delete_entry_release_failure_is_logged_not_raised(
    registry: SessionRegistry, channel: ChangeChannel, caplog: pytest.LogCaptureFixture
) -> None:
    """Test a failing release does not block the record deletion."""
    backend = AsyncMock()
    backend.upload.return_value = StoredObject(path="p/x.txt", url="https://x/p/x.txt")
    backend.remove.side_effect = StorageFailure("bucket unavailable")
    store = EntryStore(registry, channel, backend)
    entry = await store.append_upload("K3F9Q", "", Upload("x.txt", b"x"))

    with caplog.at_level(logging.WARNING):
        await store.delete_entry(entry.id)

    assert store.list_entries("K3F9Q") == []
    assert "Failed to release attachment p/x.txt" in caplog.text


@pytest.mark.asyncio
async def test_clear_session_publishes_single_cleared_event(
    store: EntryStore, channel: ChangeChannel, events: list
) -> None:
    """Test clear removes everything and publishes exactly one cleared event."""
    for content in ("a", "b", "c"):
        await store.append_entry("K3F9Q", content)
    await channel.join()
    events.clear()

    assert await store.clear_session("K3F9Q") == 3
    await channel.join()

    assert store.list_entries("K3F9Q") == []
    assert events == [SessionCleared("K3F9Q")]


@pytest.mark.asyncio
async def test_clear_session_empty_is_silent_noop(
    store: EntryStore, channel: ChangeChannel, events: list
) -> None:
    """Test clearing an empty session reports 0 and publishes nothing."""
    assert await store.clear_session("K3F9Q") == 0
    await channel.join()
    assert events == []


@pytest.mark.asyncio
async def test_clear_session_releases_every_attachment(
    registry: SessionRegistry, channel: ChangeChannel
) -> None:
    backend = AsyncMock()
    backend.upload.side_effect = [
        StoredObject(path="1/a.txt", url="u1"),
        StoredObject(path="2/b.txt", url="u2"),
    ]
    store = EntryStore(registry, channel, backend)
    await store.append_upload("K3F9Q", "", Upload("a.txt", b"a"))
    await store.append_upload("K3F9Q", "", Upload("b.txt", b"b"))
    await store.append_entry("K3F9Q", "plain")

    await store.clear_session("K3F9Q")

    released = sorted(call.args[0] for call in backend.remove.call_args_list)
    assert released == ["1/a.txt", "2/b.txt"]


@pytest.mark.asyncio
async def test_append_entry_with_prebuilt_attachment(store: EntryStore) -> None:
    attachment = Attachment(path="x/y.pdf", url="https://files/x/y.pdf", kind="file", name="y.pdf")
    entry = await store.append_entry("K3F9Q", "", attachment)
    assert store.get_entry(entry.id).attachment == attachment

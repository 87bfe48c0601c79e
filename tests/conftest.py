#!/usr/bin/env python3
"""Pytest fixtures for clipsession tests.

Provides an in-process SessionService, a server on a temporary Unix
socket, and helpers for building entries.
"""

from collections.abc import AsyncGenerator, Callable, Iterator
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from clipsession.address import ServerAddress
from clipsession.attachments import LocalAttachmentStore
from clipsession.client_state import PersistedState
from clipsession.connections import ConnectionRegistry
from clipsession.models import Entry
from clipsession.registry import SessionRegistry
from clipsession.service import SessionService


def fixed_codes(*codes: str) -> Callable[[], str]:
    """Code factory returning the given codes in order, then repeating the last."""
    remaining = list(codes)

    def factory() -> str:
        return remaining.pop(0) if len(remaining) > 1 else remaining[0]

    return factory


class StepClock:
    """Clock for MemoryStoreBackend; advances only when told to."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def tick(self, seconds: float = 1.0) -> None:
        self.now += timedelta(seconds=seconds)


def make_entry(entry_id: str, content: str = "text", session_code: str = "K3F9Q") -> Entry:
    """Build an Entry without going through a store."""
    return Entry(
        id=entry_id,
        session_code=session_code,
        content=content,
        created_at=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )


@pytest.fixture
def attachment_dir(tmp_path: Path) -> Path:
    return tmp_path / "attachments"


@pytest.fixture
async def service(attachment_dir: Path) -> AsyncGenerator[SessionService, None]:
    """In-process service whose first session code is K3F9Q."""
    svc = SessionService(
        registry=SessionRegistry(code_factory=fixed_codes("K3F9Q", "ZZZZ1", "ZZZZ2")),
        attachments=LocalAttachmentStore(attachment_dir, "https://files.example"),
    )
    yield svc
    svc.close()


@pytest.fixture
def persisted(tmp_path: Path) -> PersistedState:
    return PersistedState(path=tmp_path / "state.json")


@pytest.fixture
def temp_socket_path(tmp_path: Path) -> Iterator[Path]:
    """Provide a temporary path for Unix domain socket testing."""
    socket_path = tmp_path / "test.sock"
    yield socket_path
    if socket_path.exists():
        socket_path.unlink()


@pytest.fixture
async def server_address(
    service: SessionService, temp_socket_path: Path
) -> AsyncGenerator[ServerAddress, None]:
    """Run a real server for the test on a temporary Unix socket."""
    from clipsession.server import start_listening

    address = ServerAddress(socket_path=str(temp_socket_path))
    server = await start_listening(address, service, ConnectionRegistry())
    yield address
    server.close()

#!/usr/bin/env python3
"""
Tests for listening socket housekeeping.

Covers leftover vs live socket detection, the startup banner, and that
run_server removes only a socket file it bound itself.
"""
import asyncio
import socket
from collections.abc import Iterator
from pathlib import Path

import pytest

from clipsession.address import ServerAddress
from clipsession.errors import ServerSocketError
from clipsession.server import run_server
from clipsession.server_socket import check_socket_state, cleanup_socket, print_startup_message


@pytest.fixture
def live_socket(temp_socket_path: Path) -> Iterator[Path]:
    """A socket file some other server is accepting on."""
    listener = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    listener.bind(str(temp_socket_path))
    listener.listen(1)
    try:
        yield temp_socket_path
    finally:
        listener.close()


def test_missing_path_is_left_alone(tmp_path: Path) -> None:
    check_socket_state(str(tmp_path / "absent.sock"))
    assert not (tmp_path / "absent.sock").exists()


def test_leftover_socket_is_removed(temp_socket_path: Path) -> None:
    """Test a socket file nobody accepts on is unlinked before binding."""
    leftover = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    leftover.bind(str(temp_socket_path))
    leftover.close()

    check_socket_state(str(temp_socket_path))

    assert not temp_socket_path.exists()


def test_live_socket_is_refused_and_kept(live_socket: Path) -> None:
    """Test a socket another server answers on raises and stays in place."""
    with pytest.raises(ServerSocketError, match="already in use"):
        check_socket_state(str(live_socket))
    assert live_socket.exists()


def test_regular_file_is_refused_and_kept(tmp_path: Path) -> None:
    path = tmp_path / "notes.txt"
    path.write_text("keep me")

    with pytest.raises(ServerSocketError, match="Not a socket"):
        check_socket_state(str(path))

    assert path.read_text() == "keep me"


@pytest.mark.asyncio
async def test_run_server_refusal_leaves_foreign_socket(live_socket: Path) -> None:
    """Test a server that never bound does not remove the other server's socket."""
    with pytest.raises(ServerSocketError):
        await run_server(ServerAddress(socket_path=str(live_socket)))
    assert live_socket.exists()


@pytest.mark.asyncio
async def test_run_server_removes_its_own_socket(temp_socket_path: Path) -> None:
    """Test the socket file is gone once a running server shuts down."""
    stop = asyncio.Event()
    task = asyncio.create_task(
        run_server(ServerAddress(socket_path=str(temp_socket_path)), shutdown_requested=stop)
    )
    for _ in range(100):
        if temp_socket_path.exists():
            break
        await asyncio.sleep(0.01)
    assert temp_socket_path.exists()

    stop.set()
    await asyncio.wait_for(task, timeout=2)

    assert not temp_socket_path.exists()


def test_startup_message_for_unix_socket(capsys: pytest.CaptureFixture[str]) -> None:
    print_startup_message(ServerAddress(socket_path="/tmp/clip.sock"))
    err = capsys.readouterr().err
    assert "Listening on /tmp/clip.sock" in err
    assert "ssh -R" in err


def test_startup_message_for_tcp(capsys: pytest.CaptureFixture[str]) -> None:
    print_startup_message(ServerAddress(host="0.0.0.0", port=5000))
    err = capsys.readouterr().err
    assert "Listening on 0.0.0.0:5000" in err
    assert "ssh" not in err


def test_cleanup_socket_twice(tmp_path: Path) -> None:
    path = tmp_path / "gone.sock"
    path.write_text("")
    cleanup_socket(str(path))
    assert not path.exists()
    cleanup_socket(str(path))

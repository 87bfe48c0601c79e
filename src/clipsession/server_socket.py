#!/usr/bin/env python3
"""Listening socket housekeeping for the clipsession server.

A Unix socket path outlives a crashed server, so before binding we tell a
leftover file from one that a running server still answers on. Only the
server that bound the path removes it again.
"""

from __future__ import annotations

import contextlib
import os
import socket
import stat
import sys

from clipsession.address import ServerAddress
from clipsession.errors import ServerSocketError


def check_socket_state(socket_path: str) -> None:
    """Make socket_path free to bind.

    A socket nobody accepts on is left over from an earlier run and is
    removed. Anything else at the path is left untouched.

    Args:
        socket_path: Path to the Unix domain socket file.

    Raises:
        ServerSocketError: If a server answers on the path, if the path is
            not a socket, or if it cannot be inspected.
    """
    try:
        mode = os.stat(socket_path).st_mode
    except FileNotFoundError:
        return
    except OSError as e:
        raise ServerSocketError(f"Cannot access socket {socket_path}: {e}") from e
    if not stat.S_ISSOCK(mode):
        raise ServerSocketError(f"Not a socket: {socket_path}")

    with socket.socket(socket.AF_UNIX, socket.SOCK_STREAM) as knock:
        try:
            knock.connect(socket_path)
        except ConnectionRefusedError:
            os.unlink(socket_path)
            return
        except OSError as e:
            raise ServerSocketError(f"Cannot access socket {socket_path}: {e}") from e
    raise ServerSocketError(f"Socket already in use by active server: {socket_path}")


def print_startup_message(address: ServerAddress) -> None:
    """Tell the operator where the server listens.

    Unix sockets get an ``ssh -R`` line as well, since that is how remote
    devices usually reach them.
    """
    print(f"Listening on {address}", file=sys.stderr)
    if address.is_unix:
        print(f"Example SSH forward: ssh -R REMOTE_SOCKET_PATH:{address} user@host",
            file=sys.stderr)


def cleanup_socket(socket_path: str) -> None:
    """Remove the socket file this process bound; a missing file is fine."""
    with contextlib.suppress(FileNotFoundError):
        os.unlink(socket_path)

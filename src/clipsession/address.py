#!/usr/bin/env python3
"""Where the clipsession server listens: a Unix socket or a TCP address."""

from __future__ import annotations

from dataclasses import dataclass

DEFAULT_HOST: str = "127.0.0.1"
DEFAULT_PORT: int = 47300


@dataclass(frozen=True)
class ServerAddress:
    """Server endpoint.

    Attributes:
        socket_path: Unix domain socket path; takes precedence when set.
        host: TCP host used when socket_path is None.
        port: TCP port used when socket_path is None.
    """

    socket_path: str | None = None
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT

    @property
    def is_unix(self) -> bool:
        return self.socket_path is not None

    def __str__(self) -> str:
        if self.socket_path is not None:
            return self.socket_path
        return f"{self.host}:{self.port}"

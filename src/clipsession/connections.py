#!/usr/bin/env python3
"""Process-wide table of live connections per session.

Created when the server starts and cleared when it shuts down. Several
connection handlers update it concurrently, so every access goes through
an asyncio.Lock.
"""

from __future__ import annotations

import asyncio


class ConnectionRegistry:
    """Tracks which connections currently follow which session."""

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._members: dict[str, set[str]] = {}

    async def add(self, session_code: str, connection_id: str) -> int:
        """Record a connection as following a session.

        Returns:
            Number of connections following the session afterwards.
        """
        async with self._lock:
            members = self._members.setdefault(session_code, set())
            members.add(connection_id)
            return len(members)

    async def discard(self, session_code: str, connection_id: str) -> int:
        """Forget a connection for a session. Unknown pairs are ignored.

        Returns:
            Number of connections still following the session.
        """
        async with self._lock:
            members = self._members.get(session_code)
            if members is None:
                return 0
            members.discard(connection_id)
            if not members:
                del self._members[session_code]
                return 0
            return len(members)

    async def members(self, session_code: str) -> frozenset[str]:
        async with self._lock:
            return frozenset(self._members.get(session_code, ()))

    async def count(self) -> int:
        """Number of sessions with at least one live connection."""
        async with self._lock:
            return len(self._members)

    async def clear(self) -> None:
        async with self._lock:
            self._members.clear()

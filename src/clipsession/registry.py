#!/usr/bin/env python3
"""Session code issuance and validation.

Codes are short bearer secrets drawn from an uppercase alphanumeric
alphabet. They are normalized to uppercase at every boundary, so a code
typed in lowercase on another device still resolves.
"""

from __future__ import annotations

import logging
import secrets
from typing import Protocol

from clipsession.errors import SessionNotFound, StorageFailure
from clipsession.limits import CODE_ALPHABET, CODE_LENGTH, MAX_CODE_ATTEMPTS

logger = logging.getLogger(__name__)


class RegistryBackend(Protocol):
    """Persistence for session records."""

    def insert(self, code: str) -> None: ...

    def exists(self, code: str) -> bool: ...


class MemoryRegistryBackend:
    """Session records held in process memory."""

    def __init__(self) -> None:
        self._codes: set[str] = set()

    def insert(self, code: str) -> None:
        self._codes.add(code)

    def exists(self, code: str) -> bool:
        return code in self._codes


def normalize_code(code: str) -> str:
    """Return the canonical (stripped, uppercase) form of a session code."""
    return code.strip().upper()


def generate_code(length: int = CODE_LENGTH, alphabet: str = CODE_ALPHABET) -> str:
    """Draw a random session code.

    Args:
        length: Number of characters.
        alphabet: Characters to draw from.

    Returns:
        A new code; not checked against the registry.
    """
    return "".join(secrets.choice(alphabet) for _ in range(length))


class SessionRegistry:
    """Issues session codes and answers whether a code is valid.

    Args:
        backend: Where session records live. Defaults to memory.
        code_factory: Callable producing candidate codes.
    """

    def __init__(
        self,
        backend: RegistryBackend | None = None,
        code_factory=generate_code,
    ) -> None:
        self.backend = backend if backend is not None else MemoryRegistryBackend()
        self._code_factory = code_factory

    def create_session(self) -> str:
        """Persist a new session and return its code.

        Candidate codes already in use are discarded and redrawn.

        Raises:
            StorageFailure: If no unused code was found in MAX_CODE_ATTEMPTS draws.
        """
        for _ in range(MAX_CODE_ATTEMPTS):
            code = normalize_code(self._code_factory())
            if self.backend.exists(code):
                logger.debug("Session code %s already in use, redrawing", code)
                continue
            self.backend.insert(code)
            logger.debug("Session created: %s", code)
            return code
        raise StorageFailure("Could not allocate an unused session code")

    def exists(self, code: str) -> bool:
        return self.backend.exists(normalize_code(code))

    def join_session(self, code: str) -> str:
        """Validate a code typed by a user.

        Args:
            code: Session code in any letter case.

        Returns:
            The normalized code.

        Raises:
            SessionNotFound: If no session exists for the code.
        """
        normalized = normalize_code(code)
        if not normalized or not self.backend.exists(normalized):
            raise SessionNotFound(f"Invalid session code: {code.strip()}")
        return normalized

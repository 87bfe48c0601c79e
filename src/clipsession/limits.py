#!/usr/bin/env python3
"""Limits and tunables for clipsession.

Module-level constants are the defaults; Limits groups the ceilings that
the store and the client enforce so a server or a test can override them.
"""

from __future__ import annotations

import string
from dataclasses import dataclass

# Maximum number of characters in an entry's text content.
MAX_CONTENT_CHARS: int = 15000

# Maximum attachment size in bytes (10 MB). Checked before upload.
MAX_ATTACHMENT_BYTES: int = 10485760

# Session codes: fixed length, uppercase letters and digits.
CODE_LENGTH: int = 5
CODE_ALPHABET: str = string.ascii_uppercase + string.digits

# Attempts at drawing an unused code before giving up.
MAX_CODE_ATTEMPTS: int = 16

# Seconds a remote call may wait for its response.
REQUEST_TIMEOUT: float = 30.0

# Retry parameters for exponential backoff reconnection.
# Initial delay between connection attempts in seconds.
INITIAL_WAIT: float = 1.0

# Maximum delay between connection attempts in seconds.
MAX_WAIT: float = 60.0

# Multiplier for exponential backoff (delay = initial * multiplier^attempt).
WAIT_MULTIPLIER: float = 2.0


@dataclass(frozen=True)
class Limits:
    """Size ceilings applied before anything is persisted.

    Attributes:
        max_content_chars: Largest accepted text content, inclusive.
        max_attachment_bytes: Largest accepted attachment, inclusive.
    """

    max_content_chars: int = MAX_CONTENT_CHARS
    max_attachment_bytes: int = MAX_ATTACHMENT_BYTES

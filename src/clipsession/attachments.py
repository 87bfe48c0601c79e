#!/usr/bin/env python3
"""Attachment storage backend.

Attachments are stored as plain files under a root directory, one random
subdirectory per upload so two files with the same name never collide.
Release is idempotent: removing an object that is already gone succeeds.
"""

from __future__ import annotations

import asyncio
import logging
import mimetypes
import os
import secrets
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol
from urllib.parse import quote

from clipsession.errors import AttachmentTooLarge, StorageFailure
from clipsession.limits import MAX_ATTACHMENT_BYTES

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StoredObject:
    path: str
    url: str


class AttachmentBackend(Protocol):
    async def upload(self, data: bytes, name: str) -> StoredObject: ...

    async def remove(self, path: str) -> None: ...


def attachment_kind(name: str) -> str:
    """Classify an attachment as "image" or "file" from its name."""
    mime, _ = mimetypes.guess_type(name)
    if mime and mime.startswith("image/"):
        return "image"
    return "file"


def validate_attachment_size(data: bytes, limit: int = MAX_ATTACHMENT_BYTES) -> None:
    """Reject an attachment above the size ceiling.

    Raises:
        AttachmentTooLarge: If len(data) exceeds limit.
    """
    if len(data) > limit:
        raise AttachmentTooLarge(
            f"Attachment is {len(data)} bytes; the limit is {limit} bytes"
        )


def _safe_name(name: str) -> str:
    base = os.path.basename(name.replace("\\", "/")).strip()
    return base or "attachment"


class LocalAttachmentStore:
    """Attachment backend writing to a local directory.

    Args:
        root: Directory holding stored objects. Created on first upload.
        base_url: Public URL prefix under which root is served.
    """

    def __init__(self, root: str | Path, base_url: str = "") -> None:
        self.root = Path(root)
        self.base_url = base_url.rstrip("/")

    def _resolve(self, path: str) -> Path:
        target = (self.root / path).resolve()
        if self.root.resolve() not in target.parents:
            raise StorageFailure(f"Object path escapes storage root: {path}")
        return target

    def url_for(self, path: str) -> str:
        if self.base_url:
            return f"{self.base_url}/{quote(path)}"
        return (self.root / path).resolve().as_uri()

    async def upload(self, data: bytes, name: str) -> StoredObject:
        """Store bytes and return where they live.

        Raises:
            StorageFailure: On any filesystem error.
        """
        path = f"{secrets.token_hex(8)}/{_safe_name(name)}"
        target = self._resolve(path)

        def write() -> None:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)

        try:
            await asyncio.to_thread(write)
        except OSError as e:
            raise StorageFailure(f"Failed to store {name}: {e}") from e
        logger.debug("Stored %d bytes at %s", len(data), path)
        return StoredObject(path=path, url=self.url_for(path))

    async def remove(self, path: str) -> None:
        """Release a stored object. Missing objects are not an error.

        Raises:
            StorageFailure: On any other filesystem error.
        """
        target = self._resolve(path)

        def unlink() -> None:
            target.unlink(missing_ok=True)
            if target.parent != self.root.resolve():
                shutil.rmtree(target.parent, ignore_errors=True)

        try:
            await asyncio.to_thread(unlink)
        except OSError as e:
            raise StorageFailure(f"Failed to remove {path}: {e}") from e
        logger.debug("Released %s", path)

#!/usr/bin/env python3
"""Client state persisted across process restarts.

The record holds the currently joined session code and the theme
preference. It is read once when the client starts and written whenever
either value changes (join, leave, theme toggle).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass
from pathlib import Path

import click

logger = logging.getLogger(__name__)

THEMES = ("light", "dark")


def default_state_path() -> Path:
    """Per-user state file location, e.g. ~/.config/clipsession/state.json."""
    return Path(click.get_app_dir("clipsession")) / "state.json"


@dataclass
class PersistedState:
    """Small JSON-backed record of client preferences.

    Attributes:
        session_code: Code of the joined session, or None.
        theme: "light" or "dark".
        path: File the record is stored in; None keeps it in memory only.
    """

    session_code: str | None = None
    theme: str = "light"
    path: Path | None = None

    @classmethod
    def load(cls, path: Path | None = None) -> PersistedState:
        """Read the record, falling back to defaults when missing or corrupt."""
        path = path or default_state_path()
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return cls(path=path)
        except (OSError, ValueError) as e:
            logger.warning("Ignoring unreadable state file %s: %s", path, e)
            return cls(path=path)
        if not isinstance(data, dict):
            logger.warning("Ignoring malformed state file %s", path)
            return cls(path=path)
        theme = data.get("theme")
        code = data.get("session_code")
        return cls(
            session_code=code if isinstance(code, str) and code else None,
            theme=theme if theme in THEMES else "light",
            path=path,
        )

    def save(self) -> None:
        """Write the record atomically. No-op for an in-memory record."""
        if self.path is None:
            return
        payload = asdict(self)
        del payload["path"]
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_suffix(".tmp")
        tmp.write_text(json.dumps(payload), encoding="utf-8")
        os.replace(tmp, self.path)

    def set_session(self, session_code: str | None) -> None:
        self.session_code = session_code
        self.save()

    def set_theme(self, theme: str) -> None:
        if theme not in THEMES:
            raise ValueError(f"Unknown theme: {theme}")
        self.theme = theme
        self.save()

    def toggle_theme(self) -> str:
        self.set_theme("dark" if self.theme == "light" else "light")
        return self.theme

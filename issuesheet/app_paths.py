"""Centralised helpers for locating issuesheet's per-user data directory."""
from __future__ import annotations

import logging
import os
from pathlib import Path


logger = logging.getLogger(__name__)



def _detect_base_directory() -> Path:
    override = os.environ.get("ISSUESHEET_HOME")
    if override:
        return Path(override).expanduser().resolve()
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return Path(xdg).expanduser().resolve() / "issuesheet"
    return Path.home().resolve() / ".issuesheet"


APP_DIR: Path = _detect_base_directory()
LOGS_DIR: Path = APP_DIR / "logs"


def ensure_directory(path: Path) -> Path:
    """Ensure that ``path`` exists, returning the :class:`~pathlib.Path`."""

    path.mkdir(parents=True, exist_ok=True)
    return path


def data_path(*parts: str) -> Path:
    """Return a path rooted inside :data:`APP_DIR`, creating parent directories."""

    target = APP_DIR.joinpath(*parts)
    ensure_directory(target.parent)
    return target


def logs_path(*parts: str) -> Path:
    """Return a path inside the log directory."""

    target = LOGS_DIR.joinpath(*parts)
    ensure_directory(target.parent)
    return target


__all__ = [
    "APP_DIR",
    "LOGS_DIR",
    "data_path",
    "ensure_directory",
    "logs_path",
]

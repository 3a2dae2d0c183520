"""Host and driver file helpers."""

from __future__ import annotations

import shutil
from pathlib import Path


def copy_file(source: Path, destination: Path) -> Path:
    """Copy content and permission bits, creating parent directories."""
    destination.parent.mkdir(parents=True, exist_ok=True)
    shutil.copyfile(source, destination)
    shutil.copymode(source, destination)
    return destination


def is_nonempty_file(path: Path) -> bool:
    return path.is_file() and path.stat().st_size > 0


def is_nonempty_dir(path: Path) -> bool:
    return path.is_dir() and any(path.iterdir())

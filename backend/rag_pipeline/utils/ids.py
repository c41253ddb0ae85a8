"""ID helpers."""

from __future__ import annotations

import re
import uuid
from pathlib import Path

_UNSAFE_RE = re.compile(r"[^A-Za-z0-9]")


def new_id(prefix: str | None = None) -> str:
    """Generate a random UUID4 string with optional prefix."""
    base = uuid.uuid4().hex
    return f"{prefix}_{base}" if prefix else base


def source_id_for_path(root: Path, path: Path) -> str:
    """Stable source id for a file below a watched root.

    The POSIX form of the relative path, so ``docs/a/b.txt`` under ``docs``
    becomes ``a/b.txt`` and never collides with a root-level ``a_b.txt``.
    """
    return path.resolve().relative_to(root.resolve()).as_posix()


def source_id_for_filename(filename: str) -> str:
    """Source id for a standalone file: every non-alphanumeric char becomes ``_``."""
    return _UNSAFE_RE.sub("_", filename)


__all__ = ["new_id", "source_id_for_path", "source_id_for_filename"]

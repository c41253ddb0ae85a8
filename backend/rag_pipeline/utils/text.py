"""Text processing helpers."""

from __future__ import annotations

import re


WHITESPACE_RE = re.compile(r"\s+")
TAG_RE = re.compile(r"<[^>]*>")


def normalize(text: str) -> str:
    """Collapse whitespace and strip."""
    return WHITESPACE_RE.sub(" ", text).strip()


def strip_tags(html: str) -> str:
    """Replace every HTML tag with a space."""
    return TAG_RE.sub(" ", html)

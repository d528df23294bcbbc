from __future__ import annotations

import re
from typing import Iterable

_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_SEPARATOR_RE = re.compile(r"[-_]+")
_DELIMITER = " | "


def clean_filename(filename: str) -> str:
    # Recover human words from a filename: drop the extension, split on separators.
    stem = _EXTENSION_RE.sub("", filename or "")
    return " ".join(_SEPARATOR_RE.sub(" ", stem).split()).lower()


def compose_embedding_text(
    filename: str,
    alt_text: str | None,
    description: str | None,
    ai_caption: str | None,
    tag_names: Iterable[str],
) -> str:
    """Build the canonical text embedded for an asset.

    Segments are the cleaned filename, alt text, description, AI caption and the
    space-joined tag names, in that order. Absent or blank segments are omitted
    so the ``" | "`` delimiter never repeats.
    """
    tags = " ".join(name for name in tag_names if name and name.strip())
    parts = [clean_filename(filename), alt_text, description, ai_caption, tags]
    return _DELIMITER.join(part for part in parts if part and part.strip())

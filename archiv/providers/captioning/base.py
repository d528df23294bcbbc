from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


# SVG is excluded: vision models cannot read vector formats.
CAPTIONABLE_MIME_TYPES = frozenset({"image/jpeg", "image/png", "image/gif", "image/webp"})


def is_captionable(mime_type: str | None) -> bool:
    return (mime_type or "").lower() in CAPTIONABLE_MIME_TYPES


@dataclass(frozen=True)
class CaptionResult:
    text: str
    model_id: str


class CaptionProvider(Protocol):
    async def caption(self, image_bytes: bytes) -> CaptionResult:
        ...

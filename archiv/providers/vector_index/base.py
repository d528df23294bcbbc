from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence


# The managed index caps topK at 50 when metadata is returned.
MAX_TOP_K = 50


@dataclass(frozen=True)
class VectorMetadata:
    """Typed view of the metadata stored next to each asset vector.

    The index only accepts flat scalar values, so ``folder_id`` is stored as an
    empty-string sentinel and ``tag_ids`` as a JSON-encoded array. That encoding
    lives in ``to_index``/``from_index`` and nowhere else.
    """

    organization_id: str
    folder_id: str | None
    mime_type: str
    created_at_ms: int
    tag_ids: list[str] = field(default_factory=list)

    def to_index(self) -> dict[str, Any]:
        return {
            "organizationId": self.organization_id,
            "folderId": self.folder_id or "",
            "mimeType": self.mime_type,
            "createdAt": int(self.created_at_ms),
            "tagIds": json.dumps(list(self.tag_ids)),
        }

    @classmethod
    def from_index(cls, raw: Mapping[str, Any] | None) -> "VectorMetadata":
        raw = raw or {}
        raw_tags = raw.get("tagIds") or "[]"
        if isinstance(raw_tags, str):
            try:
                tag_ids = json.loads(raw_tags)
            except ValueError:
                tag_ids = []
        else:
            tag_ids = raw_tags
        if not isinstance(tag_ids, list):
            tag_ids = []
        return cls(
            organization_id=str(raw.get("organizationId") or ""),
            folder_id=str(raw.get("folderId")) if raw.get("folderId") else None,
            mime_type=str(raw.get("mimeType") or ""),
            created_at_ms=int(raw.get("createdAt") or 0),
            tag_ids=[str(tag_id) for tag_id in tag_ids],
        )


@dataclass(frozen=True)
class VectorFilter:
    # Equality predicates only; the index has no array-contains or prefix operators.
    organization_id: str
    folder_id: str | None = None

    def to_index(self) -> dict[str, str]:
        flat = {"organizationId": self.organization_id}
        if self.folder_id:
            flat["folderId"] = self.folder_id
        return flat


@dataclass(frozen=True)
class VectorRecord:
    id: str
    values: list[float]
    metadata: VectorMetadata


@dataclass(frozen=True)
class VectorMatch:
    id: str
    score: float
    metadata: VectorMetadata


def clamp_top_k(top_k: int) -> int:
    return max(1, min(int(top_k), MAX_TOP_K))


class VectorIndex(Protocol):
    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        ...

    async def query(
        self,
        vector: Sequence[float],
        *,
        top_k: int,
        filter: VectorFilter,
    ) -> list[VectorMatch]:
        ...

    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        ...

from __future__ import annotations

import math
from typing import Any, Sequence

from archiv.core.config import EMBED_DIM
from archiv.core.errors import VectorIndexError
from archiv.providers.vector_index.base import (
    VectorFilter,
    VectorMatch,
    VectorMetadata,
    VectorRecord,
    clamp_top_k,
)


def _cosine(a: Sequence[float], b: Sequence[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class InMemoryVectorIndex:
    """Process-local index with the same contract as the managed service."""

    def __init__(self, dimension: int = EMBED_DIM) -> None:
        self._dimension = dimension
        # Store flattened metadata exactly as the managed index would.
        self._vectors: dict[str, tuple[list[float], dict[str, Any]]] = {}

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, vector_id: object) -> bool:
        return vector_id in self._vectors

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        for record in records:
            if len(record.values) != self._dimension:
                raise VectorIndexError("vector dimension mismatch")
            self._vectors[record.id] = (list(record.values), record.metadata.to_index())

    async def query(
        self,
        vector: Sequence[float],
        *,
        top_k: int,
        filter: VectorFilter,
    ) -> list[VectorMatch]:
        if len(vector) != self._dimension:
            raise VectorIndexError("query vector dimension mismatch")
        predicates = filter.to_index()
        scored: list[tuple[float, str, dict[str, Any]]] = []
        for vector_id, (values, metadata) in self._vectors.items():
            if any(metadata.get(key) != value for key, value in predicates.items()):
                continue
            scored.append((_cosine(vector, values), vector_id, metadata))
        # Secondary ordering keeps tie-breaking deterministic.
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            VectorMatch(id=vector_id, score=score, metadata=VectorMetadata.from_index(metadata))
            for score, vector_id, metadata in scored[: clamp_top_k(top_k)]
        ]

    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        for vector_id in ids:
            self._vectors.pop(vector_id, None)

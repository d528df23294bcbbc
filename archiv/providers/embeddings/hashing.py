from __future__ import annotations

import hashlib
import math
import re

from archiv.core.config import EMBED_DIM

_TOKEN_RE = re.compile(r"[A-Za-z0-9]+")


def _hash_token(token: str, dimension: int) -> tuple[int, float]:
    digest = hashlib.sha256(token.encode("utf-8")).hexdigest()
    # Hash to a stable index within the fixed embedding dimension.
    idx = int(digest[:8], 16) % dimension
    sign = 1.0 if int(digest[8:12], 16) % 2 == 0 else -1.0
    magnitude = (int(digest[12:20], 16) % 1000) / 1000.0
    return idx, sign * (0.2 + magnitude)


def hash_embed(text: str, dimension: int = EMBED_DIM) -> list[float]:
    # Always allocate the full embedding dimension to match the index schema.
    vector = [0.0] * dimension
    tokens = _TOKEN_RE.findall(text.lower())
    if not tokens:
        return vector

    for token in tokens:
        idx, value = _hash_token(token, dimension)
        vector[idx] += value

    norm = math.sqrt(sum(v * v for v in vector))
    if norm == 0:
        return vector
    return [v / norm for v in vector]


class HashingEmbeddingProvider:
    """Deterministic bag-of-tokens embedder for offline development and tests."""

    def __init__(self, dimension: int = EMBED_DIM) -> None:
        self._dimension = dimension

    async def embed(self, text: str) -> list[float]:
        return hash_embed(text, self._dimension)

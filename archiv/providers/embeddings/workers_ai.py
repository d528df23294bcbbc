from __future__ import annotations

from archiv.core.config import EMBED_DIM
from archiv.core.errors import EmbeddingProviderError
from archiv.providers.workers_ai import WorkersAIClient


class WorkersAIEmbeddingProvider:
    def __init__(self, client: WorkersAIClient, model: str) -> None:
        self._client = client
        self._model = model

    async def embed(self, text: str) -> list[float]:
        result = await self._client.run(
            self._model,
            {"text": [text]},
            error_cls=EmbeddingProviderError,
        )
        data = result.get("data")
        if not isinstance(data, list) or not data or not isinstance(data[0], list):
            raise EmbeddingProviderError("embedding response is missing vector data")
        vector = [float(value) for value in data[0]]
        if len(vector) != EMBED_DIM:
            # Index schema is fixed; fail fast instead of writing a mismatched vector.
            raise EmbeddingProviderError(
                f"Embedding dimension mismatch; expected {EMBED_DIM}, got {len(vector)}."
            )
        return vector

    async def aclose(self) -> None:
        await self._client.aclose()

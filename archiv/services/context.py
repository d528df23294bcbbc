from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from archiv.core.config import Settings, get_settings
from archiv.core.errors import QueueUnavailableError
from archiv.providers.captioning.base import CaptionProvider
from archiv.providers.embeddings.base import EmbeddingProvider
from archiv.providers.storage.base import ObjectStorage
from archiv.providers.vector_index.base import VectorIndex
from archiv.services.embeddings.messages import EmbeddingQueue


@dataclass
class ServiceContext:
    """Collaborators every operation receives explicitly instead of reading globals."""

    session_factory: async_sessionmaker[AsyncSession]
    embedder: EmbeddingProvider
    vector_index: VectorIndex
    storage: ObjectStorage
    captioner: CaptionProvider | None = None
    queue: EmbeddingQueue | None = None
    settings: Settings = field(default_factory=get_settings)

    def require_queue(self) -> EmbeddingQueue:
        if self.queue is None:
            raise QueueUnavailableError("No embedding queue is configured")
        return self.queue

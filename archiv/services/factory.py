from __future__ import annotations

import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from archiv.core.config import Settings, get_settings
from archiv.core.errors import ProviderConfigError
from archiv.persistence.db import get_session_factory
from archiv.providers.captioning.base import CaptionProvider
from archiv.providers.captioning.fake import FakeCaptionProvider
from archiv.providers.captioning.workers_ai import WorkersAICaptionProvider
from archiv.providers.embeddings.base import EmbeddingProvider
from archiv.providers.embeddings.hashing import HashingEmbeddingProvider
from archiv.providers.embeddings.workers_ai import WorkersAIEmbeddingProvider
from archiv.providers.storage.local import LocalObjectStorage
from archiv.providers.vector_index.base import VectorIndex
from archiv.providers.vector_index.memory import InMemoryVectorIndex
from archiv.providers.workers_ai import WorkersAIClient
from archiv.services.context import ServiceContext
from archiv.services.embeddings.queue import ArqEmbeddingQueue, InlineEmbeddingQueue


logger = logging.getLogger(__name__)


def build_embedding_provider(settings: Settings, client: WorkersAIClient | None = None) -> EmbeddingProvider:
    # Select the embedding backend by name so local runs need no credentials.
    name = settings.embedding_provider.lower()
    if name == "hashing":
        return HashingEmbeddingProvider()
    if name == "workers_ai":
        return WorkersAIEmbeddingProvider(client or WorkersAIClient.from_settings(settings), settings.embedding_model)
    raise ProviderConfigError(f"Unknown embedding provider: {settings.embedding_provider}")


def build_caption_provider(settings: Settings, client: WorkersAIClient | None = None) -> CaptionProvider | None:
    name = settings.caption_provider.lower()
    if name == "none":
        return None
    if name == "fake":
        return FakeCaptionProvider()
    if name == "workers_ai":
        return WorkersAICaptionProvider(
            client or WorkersAIClient.from_settings(settings),
            settings.caption_model,
            prompt=settings.caption_prompt,
            max_tokens=settings.caption_max_tokens,
        )
    raise ProviderConfigError(f"Unknown caption provider: {settings.caption_provider}")


def build_vector_index(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
) -> VectorIndex:
    name = settings.vector_index_provider.lower()
    if name == "memory":
        return InMemoryVectorIndex()
    if name == "pgvector":
        # Imported lazily so deployments without pgvector never load its types.
        from archiv.providers.vector_index.pgvector import PgVectorIndex

        return PgVectorIndex(session_factory)
    raise ProviderConfigError(f"Unknown vector index provider: {settings.vector_index_provider}")


def build_service_context(
    settings: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> ServiceContext:
    """Wire providers and the embedding queue from settings.

    Workers AI providers share one HTTP client. The queue is chosen by
    ``embed_execution_mode``: ``inline`` runs the consumer in-process,
    anything else enqueues to Redis through arq.
    """
    settings = settings or get_settings()
    session_factory = session_factory or get_session_factory()

    client: WorkersAIClient | None = None
    if "workers_ai" in {settings.embedding_provider.lower(), settings.caption_provider.lower()}:
        client = WorkersAIClient.from_settings(settings)

    ctx = ServiceContext(
        session_factory=session_factory,
        embedder=build_embedding_provider(settings, client),
        vector_index=build_vector_index(settings, session_factory),
        storage=LocalObjectStorage(settings.object_storage_dir),
        captioner=build_caption_provider(settings, client),
        settings=settings,
    )
    if settings.embed_execution_mode.lower() == "inline":
        ctx.queue = InlineEmbeddingQueue(ctx)
    else:
        ctx.queue = ArqEmbeddingQueue(settings)
    logger.info(
        "service_context_ready embedding=%s caption=%s vector_index=%s queue=%s",
        settings.embedding_provider,
        settings.caption_provider,
        settings.vector_index_provider,
        settings.embed_execution_mode,
    )
    return ctx


async def close_service_context(ctx: ServiceContext) -> None:
    # Release HTTP clients and Redis pools held by providers.
    for resource in (ctx.queue, ctx.embedder, ctx.captioner):
        aclose = getattr(resource, "aclose", None)
        if aclose is not None:
            await aclose()

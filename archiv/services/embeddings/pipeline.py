from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from archiv.core.errors import (
    ArchivError,
    CaptionProviderError,
    EmbeddingProviderError,
    InvalidTransitionError,
    NotFoundError,
    QueueUnavailableError,
    ValidationError,
    VectorIndexError,
)
from archiv.domain.models import Asset
from archiv.domain.state import EmbeddingStatus, ensure_transition
from archiv.persistence.repos import assets as assets_repo
from archiv.persistence.repos import tags as tags_repo
from archiv.providers.captioning.base import is_captionable
from archiv.providers.vector_index.base import VectorMetadata, VectorRecord
from archiv.services.context import ServiceContext
from archiv.services.embeddings.composer import compose_embedding_text
from archiv.services.embeddings.messages import EmbeddingMessage
from archiv.services.resilience import call_with_timeout
from archiv.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

# Keep stored failure reasons short enough for list views and audit exports.
_MAX_ERROR_CHARS = 2000


def _utc_now() -> datetime:
    # Use UTC timestamps for deterministic status tracking across hosts.
    return datetime.now(timezone.utc)


def _epoch_ms(value: datetime | None) -> int:
    if value is None:
        value = _utc_now()
    if value.tzinfo is None:
        # SQLite hands back naive datetimes; they were written as UTC.
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


async def _generate_caption(ctx: ServiceContext, session: AsyncSession, asset: Asset) -> str | None:
    # Captioning is best-effort: any failure leaves the caption empty and embedding continues.
    captioner = ctx.captioner
    if captioner is None:
        return None
    try:
        image_bytes = await ctx.storage.get(asset.storage_key)
        result = await call_with_timeout(
            lambda: captioner.caption(image_bytes),
            integration="captioning",
            error_cls=CaptionProviderError,
        )
    except Exception as exc:  # noqa: BLE001 - caption failure must not abort the embedding
        increment_counter("embedding_caption_failures_total")
        logger.warning("embedding_caption_failed asset_id=%s error=%s", asset.id, exc)
        return None

    # Persist right away so the caption survives even if embedding fails later.
    await assets_repo.set_caption(
        session,
        asset.id,
        caption=result.text,
        model_id=result.model_id,
        updated_at=_utc_now(),
    )
    await session.commit()
    return result.text


async def generate_asset_embedding(ctx: ServiceContext, asset_id: str) -> None:
    """Compose, embed and index one asset, then mark it completed.

    Safe to re-run for the same id: captioning is skipped once a caption exists,
    the vector write is an upsert and the final status write is unconditional.
    Raises ``NotFoundError`` for unknown ids and for assets deleted while the
    run was in flight, whose freshly written vector is removed again. Any
    other failure propagates to the queue consumer, which decides between
    retrying and failing permanently.
    """
    if not asset_id:
        raise ValidationError("asset_id is required")

    async with ctx.session_factory() as session:
        asset = await assets_repo.get_asset_by_id(session, asset_id)
        if asset is None:
            raise NotFoundError(f"Asset not found: {asset_id}")

        caption = asset.ai_caption
        if not caption and is_captionable(asset.mime_type):
            caption = await _generate_caption(ctx, session, asset)

        tags = await tags_repo.list_asset_tags(session, asset_id)
        text = compose_embedding_text(
            asset.filename,
            asset.alt_text,
            asset.description,
            caption,
            [tag.name for tag in tags],
        )

        embedding = await call_with_timeout(
            lambda: ctx.embedder.embed(text),
            integration="embedding",
            error_cls=EmbeddingProviderError,
        )
        record = VectorRecord(
            id=asset.id,
            values=embedding,
            metadata=VectorMetadata(
                organization_id=asset.organization_id,
                folder_id=asset.folder_id,
                mime_type=asset.mime_type,
                created_at_ms=_epoch_ms(asset.created_at),
                tag_ids=[tag.id for tag in tags],
            ),
        )
        await call_with_timeout(
            lambda: ctx.vector_index.upsert([record]),
            integration="vector_index.upsert",
            error_cls=VectorIndexError,
        )

        completed = await assets_repo.mark_embedding_completed(session, asset_id, embedded_at=_utc_now())
        await session.commit()
    if not completed:
        # The asset was deleted mid-run after its vector was removed; drop the vector we just wrote.
        await delete_asset_vectors(ctx, [asset_id])
        logger.info("embedding_discarded_deleted_asset asset_id=%s", asset_id)
        raise NotFoundError(f"Asset deleted during embedding: {asset_id}")
    increment_counter("embeddings_completed_total")
    logger.info("embedding_completed asset_id=%s tags=%d", asset_id, len(tags))


async def mark_embedding_failed(ctx: ServiceContext, asset_id: str, error: str) -> None:
    # Persist final failure state for operators and the backfill status view.
    async with ctx.session_factory() as session:
        updated = await assets_repo.set_embedding_status(
            session,
            asset_id,
            EmbeddingStatus.FAILED,
            error=(error or "Unknown error")[:_MAX_ERROR_CHARS],
        )
        await session.commit()
    if not updated:
        logger.warning("embedding_mark_failed_missing_asset asset_id=%s", asset_id)


async def queue_embedding(ctx: ServiceContext, asset_id: str) -> None:
    """Flip the asset to processing and hand it to the embedding queue.

    The status flips before the send so an inline consumer's final write is
    never overwritten. If the queue rejects the message the asset is marked
    failed and ``QueueUnavailableError`` is raised.
    """
    if not asset_id:
        raise ValidationError("asset_id is required")
    queue = ctx.require_queue()

    async with ctx.session_factory() as session:
        asset = await assets_repo.get_asset_by_id(session, asset_id)
        if asset is None:
            raise NotFoundError(f"Asset not found: {asset_id}")
        ensure_transition(asset.embedding_status, EmbeddingStatus.PROCESSING)
        moved = await assets_repo.transition_embedding_status(session, asset_id, EmbeddingStatus.PROCESSING)
        await session.commit()
    if not moved:
        # Another caller queued the asset between the read and the update.
        raise InvalidTransitionError(f"Asset {asset_id} is already being embedded")

    try:
        await queue.send(EmbeddingMessage(asset_id=asset_id))
    except Exception as exc:  # noqa: BLE001 - map any queue failure to a durable failed state
        await mark_embedding_failed(ctx, asset_id, "Embedding queue unavailable")
        logger.exception("embedding_enqueue_failed asset_id=%s", asset_id)
        if isinstance(exc, ArchivError):
            raise
        raise QueueUnavailableError("Embedding queue unavailable") from exc


async def reembed_asset(ctx: ServiceContext, organization_id: str, asset_id: str) -> None:
    # Verify the asset belongs to the caller's organization before re-queueing.
    async with ctx.session_factory() as session:
        asset = await assets_repo.get_asset(session, organization_id, asset_id)
    if asset is None:
        raise NotFoundError("Asset not found")
    await queue_embedding(ctx, asset_id)


async def delete_asset_vector(ctx: ServiceContext, asset_id: str) -> None:
    await delete_asset_vectors(ctx, [asset_id])


async def delete_asset_vectors(ctx: ServiceContext, asset_ids: Sequence[str]) -> None:
    ids = [asset_id for asset_id in asset_ids if asset_id]
    if not ids:
        return
    await call_with_timeout(
        lambda: ctx.vector_index.delete_by_ids(ids),
        integration="vector_index.delete",
        error_cls=VectorIndexError,
    )

from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from archiv.domain.models import Asset, AssetTag
from archiv.domain.state import EmbeddingStatus, allowed_sources
from archiv.persistence.guards import tenant_predicate


async def get_asset(session: AsyncSession, organization_id: str, asset_id: str) -> Asset | None:
    # Return None for tenant mismatch to keep 404 semantics.
    result = await session.execute(
        select(Asset).where(Asset.id == asset_id, tenant_predicate(Asset, organization_id))
    )
    return result.scalar_one_or_none()


async def get_asset_by_id(session: AsyncSession, asset_id: str) -> Asset | None:
    # Use with care; only the queue consumer loads assets without a tenant predicate.
    result = await session.execute(select(Asset).where(Asset.id == asset_id))
    return result.scalar_one_or_none()


async def list_assets_by_ids(
    session: AsyncSession, organization_id: str, asset_ids: Sequence[str]
) -> list[Asset]:
    # Re-apply the tenant predicate even for ids that came from a tenant-filtered index.
    if not asset_ids:
        return []
    result = await session.execute(
        select(Asset).where(Asset.id.in_(list(asset_ids)), tenant_predicate(Asset, organization_id))
    )
    return list(result.scalars().all())


async def keyword_search(
    session: AsyncSession,
    organization_id: str,
    query: str,
    *,
    limit: int,
    folder_id: str | None = None,
) -> list[Asset]:
    # Case-insensitive substring match; the query is matched literally, not as a LIKE pattern.
    term = query.strip()
    stmt = select(Asset).where(
        tenant_predicate(Asset, organization_id),
        or_(
            Asset.filename.icontains(term, autoescape=True),
            Asset.alt_text.icontains(term, autoescape=True),
            Asset.description.icontains(term, autoescape=True),
        ),
    )
    if folder_id:
        stmt = stmt.where(Asset.folder_id == folder_id)
    stmt = stmt.order_by(Asset.created_at.desc(), Asset.id.asc()).limit(limit)
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def list_asset_ids_by_status(
    session: AsyncSession,
    organization_id: str,
    status: EmbeddingStatus,
    *,
    limit: int,
) -> list[str]:
    result = await session.execute(
        select(Asset.id)
        .where(tenant_predicate(Asset, organization_id), Asset.embedding_status == status.value)
        .order_by(Asset.created_at.asc(), Asset.id.asc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_by_status(session: AsyncSession, organization_id: str) -> dict[str, int]:
    result = await session.execute(
        select(Asset.embedding_status, func.count())
        .where(tenant_predicate(Asset, organization_id))
        .group_by(Asset.embedding_status)
    )
    return {str(status): int(count) for status, count in result.all()}


async def set_embedding_status(
    session: AsyncSession,
    asset_id: str,
    status: EmbeddingStatus,
    *,
    error: str | None = None,
) -> int:
    # embedded_at is only meaningful while completed, so every other status clears it.
    result = await session.execute(
        update(Asset)
        .where(Asset.id == asset_id)
        .values(embedding_status=status.value, embedding_error=error, embedded_at=None)
    )
    return int(result.rowcount or 0)


async def transition_embedding_status(
    session: AsyncSession,
    asset_id: str,
    target: EmbeddingStatus,
) -> int:
    # Compare-and-set: only rows still in an allowed source status move; 0 means another writer won.
    sources = [status.value for status in allowed_sources(target)]
    result = await session.execute(
        update(Asset)
        .where(Asset.id == asset_id, Asset.embedding_status.in_(sources))
        .values(embedding_status=target.value, embedding_error=None, embedded_at=None)
    )
    return int(result.rowcount or 0)


async def mark_embedding_completed(session: AsyncSession, asset_id: str, *, embedded_at: datetime) -> int:
    result = await session.execute(
        update(Asset)
        .where(Asset.id == asset_id)
        .values(
            embedding_status=EmbeddingStatus.COMPLETED.value,
            embedding_error=None,
            embedded_at=embedded_at,
        )
    )
    return int(result.rowcount or 0)


async def set_caption(
    session: AsyncSession,
    asset_id: str,
    *,
    caption: str,
    model_id: str,
    updated_at: datetime,
) -> None:
    await session.execute(
        update(Asset)
        .where(Asset.id == asset_id)
        .values(ai_caption=caption, ai_caption_model=model_id, updated_at=updated_at)
    )


async def reset_failed(session: AsyncSession, organization_id: str) -> int:
    # Failed assets go back to pending; re-queueing is a separate backfill call.
    result = await session.execute(
        update(Asset)
        .where(
            tenant_predicate(Asset, organization_id),
            Asset.embedding_status == EmbeddingStatus.FAILED.value,
        )
        .values(embedding_status=EmbeddingStatus.PENDING.value, embedding_error=None)
    )
    return int(result.rowcount or 0)


async def delete_assets(
    session: AsyncSession, organization_id: str, asset_ids: Sequence[str]
) -> list[Asset]:
    # Return the deleted rows so callers can clean up vectors and stored objects.
    assets = await list_assets_by_ids(session, organization_id, asset_ids)
    if not assets:
        return []
    ids = [asset.id for asset in assets]
    # Remove tag links explicitly so deletion does not depend on FK enforcement settings.
    await session.execute(delete(AssetTag).where(AssetTag.asset_id.in_(ids)))
    await session.execute(
        delete(Asset).where(Asset.id.in_(ids), tenant_predicate(Asset, organization_id))
    )
    return assets

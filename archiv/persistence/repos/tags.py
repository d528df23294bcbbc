from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from archiv.domain.models import AssetTag, Tag


async def list_asset_tags(session: AsyncSession, asset_id: str) -> list[Tag]:
    # Stable ordering keeps composed embedding text deterministic across runs.
    result = await session.execute(
        select(Tag)
        .join(AssetTag, AssetTag.tag_id == Tag.id)
        .where(AssetTag.asset_id == asset_id)
        .order_by(Tag.name.asc(), Tag.id.asc())
    )
    return list(result.scalars().all())

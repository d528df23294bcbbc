from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from archiv.domain.models import Asset, AssetTag, Folder, Tag


async def create_test_asset(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    organization_id: str = "org-a",
    asset_id: str | None = None,
    filename: str = "photo.jpg",
    mime_type: str = "image/jpeg",
    alt_text: str | None = None,
    description: str | None = None,
    ai_caption: str | None = None,
    folder_id: str | None = None,
    embedding_status: str = "pending",
    age_minutes: int = 0,
) -> Asset:
    # Insert an asset row directly; uploads are outside this package.
    asset_id = asset_id or f"asset-{uuid4().hex[:12]}"
    asset = Asset(
        id=asset_id,
        filename=filename,
        storage_key=f"{organization_id}/{asset_id}/{filename}",
        mime_type=mime_type,
        size=1024,
        alt_text=alt_text,
        description=description,
        ai_caption=ai_caption,
        folder_id=folder_id,
        organization_id=organization_id,
        embedding_status=embedding_status,
        created_at=datetime.now(timezone.utc) - timedelta(minutes=age_minutes),
    )
    async with session_factory() as session:
        session.add(asset)
        await session.commit()
    return asset


async def create_test_folder(
    session_factory: async_sessionmaker[AsyncSession],
    *,
    organization_id: str = "org-a",
    name: str = "Campaigns",
) -> Folder:
    folder = Folder(id=f"folder-{uuid4().hex[:12]}", name=name, slug=name.lower(), organization_id=organization_id)
    async with session_factory() as session:
        session.add(folder)
        await session.commit()
    return folder


async def tag_asset(
    session_factory: async_sessionmaker[AsyncSession],
    asset_id: str,
    *names: str,
    organization_id: str = "org-a",
) -> list[Tag]:
    tags = [
        Tag(id=f"tag-{uuid4().hex[:12]}", name=name, slug=name.lower(), organization_id=organization_id)
        for name in names
    ]
    async with session_factory() as session:
        session.add_all(tags)
        await session.flush()
        session.add_all([AssetTag(asset_id=asset_id, tag_id=tag.id) for tag in tags])
        await session.commit()
    return tags


async def load_asset(session_factory: async_sessionmaker[AsyncSession], asset_id: str) -> Asset | None:
    async with session_factory() as session:
        result = await session.execute(select(Asset).where(Asset.id == asset_id))
        return result.scalar_one_or_none()

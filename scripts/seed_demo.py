from __future__ import annotations

import asyncio
import sys
from dataclasses import dataclass

from sqlalchemy import select

from archiv.core.logging import configure_logging
from archiv.domain.models import Asset, AssetTag, Folder, Tag
from archiv.services.embeddings.backfill import start_backfill
from archiv.services.factory import build_service_context, close_service_context


DEMO_ORGANIZATION_ID = "demo-org"
DEMO_FOLDER_ID = "demo-folder-campaigns"


@dataclass(frozen=True)
class DemoAsset:
    # Stable ids keep the seed idempotent across runs.
    id: str
    filename: str
    mime_type: str
    alt_text: str | None
    description: str | None
    tags: tuple[str, ...]
    in_folder: bool = False


DEMO_ASSETS: tuple[DemoAsset, ...] = (
    DemoAsset(
        id="demo-asset-sunset",
        filename="Sunset_Over_Harbor.jpg",
        mime_type="image/jpeg",
        alt_text="Boats in the harbor at sunset",
        description=None,
        tags=("travel", "coast"),
        in_folder=True,
    ),
    DemoAsset(
        id="demo-asset-logo",
        filename="brand-logo.svg",
        mime_type="image/svg+xml",
        alt_text="Company logo",
        description="Primary wordmark for light backgrounds",
        tags=("brand",),
    ),
    DemoAsset(
        id="demo-asset-deck",
        filename="Q3_Campaign_Deck.pdf",
        mime_type="application/pdf",
        alt_text=None,
        description="Quarterly campaign plan with channel budgets",
        tags=("brand", "planning"),
        in_folder=True,
    ),
)


async def seed_demo() -> int:
    services = build_service_context()
    try:
        async with services.session_factory() as session:
            existing = await session.execute(
                select(Asset.id).where(Asset.organization_id == DEMO_ORGANIZATION_ID).limit(1)
            )
            if existing.scalar_one_or_none() is not None:
                print("Demo organization already seeded; skipping.")
                return 0

            session.add(
                Folder(
                    id=DEMO_FOLDER_ID,
                    name="Campaigns",
                    slug="campaigns",
                    organization_id=DEMO_ORGANIZATION_ID,
                )
            )
            tags: dict[str, Tag] = {}
            for demo in DEMO_ASSETS:
                for name in demo.tags:
                    if name not in tags:
                        tags[name] = Tag(
                            id=f"demo-tag-{name}",
                            name=name,
                            slug=name,
                            organization_id=DEMO_ORGANIZATION_ID,
                        )
            session.add_all(tags.values())
            for demo in DEMO_ASSETS:
                session.add(
                    Asset(
                        id=demo.id,
                        filename=demo.filename,
                        storage_key=f"{DEMO_ORGANIZATION_ID}/{demo.id}/{demo.filename}",
                        mime_type=demo.mime_type,
                        size=0,
                        alt_text=demo.alt_text,
                        description=demo.description,
                        folder_id=DEMO_FOLDER_ID if demo.in_folder else None,
                        organization_id=DEMO_ORGANIZATION_ID,
                    )
                )
            await session.flush()
            session.add_all(
                AssetTag(asset_id=demo.id, tag_id=tags[name].id) for demo in DEMO_ASSETS for name in demo.tags
            )
            await session.commit()

        result = await start_backfill(services, DEMO_ORGANIZATION_ID)
        print(f"Seeded {len(DEMO_ASSETS)} demo assets; queued {result.queued}, failed {result.failed}.")
        return 0
    finally:
        await close_service_context(services)


def main() -> int:
    # Exit non-zero so dev scripts can detect setup failures.
    configure_logging()
    try:
        return asyncio.run(seed_demo())
    except Exception as exc:  # noqa: BLE001 - surface any setup or DB errors
        print(f"seed_demo failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

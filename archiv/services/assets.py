from __future__ import annotations

import logging
from typing import Sequence

from archiv.core.errors import NotFoundError
from archiv.persistence.repos import assets as assets_repo
from archiv.services.context import ServiceContext
from archiv.services.embeddings.pipeline import delete_asset_vectors
from archiv.services.telemetry import increment_counter
from archiv.services.validation import require_organization_id


logger = logging.getLogger(__name__)


async def delete_assets(ctx: ServiceContext, organization_id: str, asset_ids: Sequence[str]) -> int:
    """Delete assets, their vector records and their stored objects.

    Rows and vectors go together: the relational delete is rolled back when the
    vector delete fails, so no asset ever loses its vector while its row
    survives. Stored objects are removed afterwards on a best-effort basis.
    Ids that do not exist or belong to another organization are ignored.
    Returns the number of assets deleted.
    """
    require_organization_id(organization_id)
    ids = list(dict.fromkeys(asset_id for asset_id in asset_ids if asset_id))
    if not ids:
        return 0

    async with ctx.session_factory() as session:
        deleted = await assets_repo.delete_assets(session, organization_id, ids)
        if not deleted:
            return 0
        try:
            await delete_asset_vectors(ctx, [asset.id for asset in deleted])
        except Exception:
            await session.rollback()
            logger.exception("asset_delete_vector_failed org_id=%s count=%d", organization_id, len(deleted))
            raise
        await session.commit()

    for asset in deleted:
        try:
            await ctx.storage.delete(asset.storage_key)
        except Exception as exc:  # noqa: BLE001 - orphaned objects are cleaned up out of band
            increment_counter("asset_storage_delete_failures_total")
            logger.warning(
                "asset_storage_delete_failed asset_id=%s key=%s error=%s",
                asset.id,
                asset.storage_key,
                exc,
            )

    logger.info("assets_deleted org_id=%s count=%d", organization_id, len(deleted))
    return len(deleted)


async def delete_asset(ctx: ServiceContext, organization_id: str, asset_id: str) -> None:
    # Single-asset variant; missing or foreign ids surface as 404s.
    deleted = await delete_assets(ctx, organization_id, [asset_id])
    if not deleted:
        raise NotFoundError("Asset not found")

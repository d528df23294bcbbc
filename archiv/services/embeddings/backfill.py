from __future__ import annotations

import logging

from pydantic import BaseModel

from archiv.core.errors import ValidationError
from archiv.domain.state import EmbeddingStatus
from archiv.persistence.repos import assets as assets_repo
from archiv.services.context import ServiceContext
from archiv.services.embeddings.pipeline import queue_embedding
from archiv.services.telemetry import increment_counter, set_gauge
from archiv.services.validation import require_organization_id


logger = logging.getLogger(__name__)


class BackfillStatus(BaseModel):
    total: int = 0
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0


class BackfillResult(BaseModel):
    queued: int = 0
    failed: int = 0


async def get_backfill_status(ctx: ServiceContext, organization_id: str) -> BackfillStatus:
    # Report per-status counts so operators can watch a backfill drain.
    require_organization_id(organization_id)
    async with ctx.session_factory() as session:
        counts = await assets_repo.count_by_status(session, organization_id)
    status = BackfillStatus(
        pending=counts.get(EmbeddingStatus.PENDING.value, 0),
        processing=counts.get(EmbeddingStatus.PROCESSING.value, 0),
        completed=counts.get(EmbeddingStatus.COMPLETED.value, 0),
        failed=counts.get(EmbeddingStatus.FAILED.value, 0),
    )
    status.total = sum(counts.values())
    return status


async def start_backfill(
    ctx: ServiceContext,
    organization_id: str,
    batch_size: int | None = None,
) -> BackfillResult:
    """Enqueue up to ``batch_size`` pending assets for the organization.

    Each asset is enqueued on its own; a failure for one asset is logged and
    counted and the batch continues. Call repeatedly until nothing is pending.
    """
    require_organization_id(organization_id)
    batch_size = batch_size if batch_size is not None else ctx.settings.backfill_batch_size
    if batch_size < 1:
        raise ValidationError("batch_size must be at least 1")

    async with ctx.session_factory() as session:
        asset_ids = await assets_repo.list_asset_ids_by_status(
            session,
            organization_id,
            EmbeddingStatus.PENDING,
            limit=batch_size,
        )

    result = BackfillResult()
    for asset_id in asset_ids:
        try:
            await queue_embedding(ctx, asset_id)
        except Exception:  # noqa: BLE001 - one bad asset must not stop the batch
            result.failed += 1
            logger.exception("backfill_enqueue_failed org_id=%s asset_id=%s", organization_id, asset_id)
            continue
        result.queued += 1

    increment_counter("backfill_queued_total", result.queued)
    set_gauge(f"backfill_last_batch_failed.{organization_id}", result.failed)
    logger.info(
        "backfill_batch_done org_id=%s queued=%d failed=%d",
        organization_id,
        result.queued,
        result.failed,
    )
    return result


async def retry_failed_embeddings(ctx: ServiceContext, organization_id: str) -> int:
    # Reset failed assets to pending; a later backfill call re-queues them.
    require_organization_id(organization_id)
    async with ctx.session_factory() as session:
        count = await assets_repo.reset_failed(session, organization_id)
        await session.commit()
    logger.info("embedding_retry_failed_reset org_id=%s count=%d", organization_id, count)
    return count

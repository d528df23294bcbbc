from __future__ import annotations

import asyncio
import logging

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from archiv.core.config import Settings, get_settings
from archiv.core.errors import ErrorKind, error_kind
from archiv.services.context import ServiceContext
from archiv.services.embeddings.messages import (
    EmbeddingMessage,
    HandlerOutcome,
    PermanentFailure,
    QueueMessageHandle,
    RetryAfter,
    Success,
)
from archiv.services.embeddings.pipeline import generate_asset_embedding, mark_embedding_failed
from archiv.services.resilience import retry_delay_seconds
from archiv.services.telemetry import increment_counter


logger = logging.getLogger(__name__)

# Must match the worker function name registered with arq.
EMBED_JOB_NAME = "embed_asset"


def _failure_reason(exc: BaseException) -> str:
    # Keep the stored reason readable even for exceptions without a message.
    message = str(exc).strip()
    return message or type(exc).__name__


async def handle_embedding_message(ctx: ServiceContext, message: EmbeddingMessage) -> HandlerOutcome:
    """Process one queue message and decide what the queue should do with it.

    Transient failures are retried with exponential delay while
    ``retry_count < embed_max_retries``. Everything else, and transient failures
    past the retry budget, ends in a permanent failure with the asset marked
    failed.
    """
    try:
        await generate_asset_embedding(ctx, message.asset_id)
    except Exception as exc:  # noqa: BLE001 - every failure is recorded as an outcome
        kind = error_kind(exc)
        if kind is ErrorKind.TRANSIENT and message.retry_count < ctx.settings.embed_max_retries:
            delay = retry_delay_seconds(
                message.retry_count,
                base_delay_s=ctx.settings.embed_retry_base_delay_s,
            )
            increment_counter("embedding_retries_total")
            logger.warning(
                "embedding_retry_scheduled asset_id=%s retry_count=%d delay_s=%d error=%s",
                message.asset_id,
                message.retry_count,
                delay,
                exc,
            )
            return RetryAfter(delay_seconds=delay)

        reason = _failure_reason(exc)
        if kind is not ErrorKind.NOT_FOUND:
            await mark_embedding_failed(ctx, message.asset_id, reason)
        increment_counter("embedding_permanent_failures_total")
        logger.error(
            "embedding_failed asset_id=%s kind=%s retry_count=%d error=%s",
            message.asset_id,
            kind.value,
            message.retry_count,
            reason,
        )
        return PermanentFailure(reason=reason)
    return Success()


def apply_outcome(handle: QueueMessageHandle, outcome: HandlerOutcome) -> None:
    # Every delivered message is either acked or retried, never left dangling.
    if isinstance(outcome, RetryAfter):
        handle.retry(delay_seconds=outcome.delay_seconds)
        return
    handle.ack()


class InlineEmbeddingQueue:
    """Run the consumer in-process, retrying immediately instead of sleeping."""

    def __init__(self, ctx: ServiceContext) -> None:
        self._ctx = ctx

    async def send(self, message: EmbeddingMessage) -> None:
        while True:
            outcome = await handle_embedding_message(self._ctx, message)
            if not isinstance(outcome, RetryAfter):
                return
            message = message.model_copy(update={"retry_count": message.retry_count + 1})

    async def depth(self) -> int:
        # Inline mode bypasses Redis, so nothing is ever waiting.
        return 0


class ArqEmbeddingQueue:
    def __init__(self, settings: Settings | None = None) -> None:
        self._settings = settings or get_settings()
        self._pool: ArqRedis | None = None
        self._pool_loop: asyncio.AbstractEventLoop | None = None
        self._lock = asyncio.Lock()

    async def _get_pool(self) -> ArqRedis:
        # Cache the Redis pool to avoid reconnecting on every enqueue.
        current_loop = asyncio.get_running_loop()
        if self._pool is not None and self._pool_loop is current_loop:
            return self._pool
        if self._pool is not None:
            # Drop loop-bound pools to avoid cross-loop errors in tests.
            self._pool = None
        async with self._lock:
            if self._pool is None:
                self._pool = await create_pool(
                    RedisSettings.from_dsn(self._settings.redis_url),
                    default_queue_name=self._settings.embed_queue_name,
                )
                self._pool_loop = current_loop
        return self._pool

    async def send(self, message: EmbeddingMessage) -> None:
        redis = await self._get_pool()
        await redis.enqueue_job(
            EMBED_JOB_NAME,
            message.model_dump(mode="json"),
            _queue_name=self._settings.embed_queue_name,
        )
        logger.debug("embedding_enqueued asset_id=%s", message.asset_id)

    async def depth(self) -> int | None:
        # Return None to signal Redis unavailability to the health endpoint.
        try:
            redis = await self._get_pool()
            # arq keeps each queue as a sorted set keyed by the queue name.
            return int(await redis.zcard(self._settings.embed_queue_name))
        except Exception:  # noqa: BLE001 - health checks report degraded Redis
            return None

    async def aclose(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

from __future__ import annotations

import logging

from arq import Retry
from arq.connections import RedisSettings

from archiv.core.config import get_settings
from archiv.core.logging import configure_logging
from archiv.services.embeddings.messages import EmbeddingMessage, RetryAfter
from archiv.services.embeddings.queue import handle_embedding_message
from archiv.services.factory import build_service_context, close_service_context


logger = logging.getLogger(__name__)


async def embed_asset(ctx, payload: dict) -> str:
    # Parse and validate payloads in the worker to enforce schema contracts.
    message = EmbeddingMessage.model_validate(payload)
    # arq counts tries from 1; the first delivery is retry_count 0.
    message = message.model_copy(update={"retry_count": max(0, int(ctx.get("job_try", 1)) - 1)})
    outcome = await handle_embedding_message(ctx["services"], message)
    if isinstance(outcome, RetryAfter):
        raise Retry(defer=outcome.delay_seconds)
    # Success and permanent failure both complete the job so arq stops redelivering.
    return type(outcome).__name__


async def _startup(ctx) -> None:
    configure_logging()
    ctx["services"] = build_service_context()
    logger.info("embedding_worker_started queue=%s", get_settings().embed_queue_name)


async def _shutdown(ctx) -> None:
    services = ctx.get("services")
    if services is not None:
        await close_service_context(services)


class WorkerSettings:
    # Keep worker configuration as class attributes for arq CLI compatibility.
    settings = get_settings()
    redis_settings = RedisSettings.from_dsn(settings.redis_url)
    queue_name = settings.embed_queue_name
    # One first attempt plus the retry budget; the handler decides before arq gives up.
    max_tries = settings.embed_max_retries + 1
    functions = [embed_asset]
    on_startup = _startup
    on_shutdown = _shutdown

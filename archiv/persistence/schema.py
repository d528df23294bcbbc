from __future__ import annotations

import logging

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from archiv.domain.models import Base


logger = logging.getLogger(__name__)


async def create_schema(engine: AsyncEngine, *, include_vectors: bool = True) -> None:
    # Create relational tables, and the pgvector table when the engine is Postgres.
    is_postgres = engine.dialect.name == "postgresql"
    async with engine.begin() as conn:
        if is_postgres and include_vectors:
            await conn.execute(text("CREATE EXTENSION IF NOT EXISTS vector"))
        await conn.run_sync(Base.metadata.create_all)
        if is_postgres and include_vectors:
            # Imported lazily so SQLite-only deployments never touch pgvector types.
            from archiv.providers.vector_index.pgvector import VectorBase

            await conn.run_sync(VectorBase.metadata.create_all)
    logger.info("schema_ready dialect=%s vectors=%s", engine.dialect.name, is_postgres and include_vectors)

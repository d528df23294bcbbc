from __future__ import annotations

from typing import Sequence

from pgvector.sqlalchemy import Vector
from sqlalchemy import BigInteger, String, Text, delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from archiv.core.config import EMBED_DIM
from archiv.core.errors import VectorIndexError
from archiv.providers.vector_index.base import (
    VectorFilter,
    VectorMatch,
    VectorMetadata,
    VectorRecord,
    clamp_top_k,
)


class VectorBase(DeclarativeBase):
    pass


class AssetVector(VectorBase):
    __tablename__ = "asset_vectors"

    # Same id as the asset so search results join straight back to relational rows.
    id: Mapped[str] = mapped_column(String, primary_key=True)
    organization_id: Mapped[str] = mapped_column(String, index=True)
    # Empty string sentinel when the asset has no folder.
    folder_id: Mapped[str] = mapped_column(String, default="")
    mime_type: Mapped[str] = mapped_column(String)
    created_at_ms: Mapped[int] = mapped_column(BigInteger)
    tag_ids_json: Mapped[str] = mapped_column(Text, default="[]")
    embedding: Mapped[list[float]] = mapped_column(Vector(EMBED_DIM))


def similarity_from_distance(distance: float) -> float:
    # Cosine distance spans [0, 2]; convert to similarity and clamp to [0, 1].
    return max(0.0, min(1.0, 1.0 - float(distance)))


def build_upsert_statement(records: Sequence[VectorRecord]):
    rows = []
    for record in records:
        if len(record.values) != EMBED_DIM:
            raise VectorIndexError("vector dimension mismatch")
        flat = record.metadata.to_index()
        rows.append(
            {
                "id": record.id,
                "organization_id": flat["organizationId"],
                "folder_id": flat["folderId"],
                "mime_type": flat["mimeType"],
                "created_at_ms": flat["createdAt"],
                "tag_ids_json": flat["tagIds"],
                "embedding": list(record.values),
            }
        )
    stmt = insert(AssetVector).values(rows)
    return stmt.on_conflict_do_update(
        index_elements=[AssetVector.id],
        set_={
            "organization_id": stmt.excluded.organization_id,
            "folder_id": stmt.excluded.folder_id,
            "mime_type": stmt.excluded.mime_type,
            "created_at_ms": stmt.excluded.created_at_ms,
            "tag_ids_json": stmt.excluded.tag_ids_json,
            "embedding": stmt.excluded.embedding,
        },
    )


def build_query_statement(vector: Sequence[float], *, top_k: int, filter: VectorFilter):
    if len(vector) != EMBED_DIM:
        raise VectorIndexError("query vector dimension mismatch")
    # Cosine distance from pgvector; lower is more similar.
    distance_expr = AssetVector.embedding.cosine_distance(list(vector))
    stmt = select(AssetVector, distance_expr.label("distance")).where(
        AssetVector.organization_id == filter.organization_id
    )
    if filter.folder_id:
        stmt = stmt.where(AssetVector.folder_id == filter.folder_id)
    return stmt.order_by(distance_expr.asc(), AssetVector.id.asc()).limit(clamp_top_k(top_k))


class PgVectorIndex:
    """Vector index backed by a pgvector table with equality-only metadata filters."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            return
        stmt = build_upsert_statement(records)
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            raise VectorIndexError("pgvector upsert failed") from exc

    async def query(
        self,
        vector: Sequence[float],
        *,
        top_k: int,
        filter: VectorFilter,
    ) -> list[VectorMatch]:
        stmt = build_query_statement(vector, top_k=top_k, filter=filter)
        try:
            async with self._session_factory() as session:
                rows = (await session.execute(stmt)).all()
        except SQLAlchemyError as exc:
            raise VectorIndexError("pgvector query failed") from exc

        matches: list[VectorMatch] = []
        for row, distance in rows:
            metadata = VectorMetadata.from_index(
                {
                    "organizationId": row.organization_id,
                    "folderId": row.folder_id,
                    "mimeType": row.mime_type,
                    "createdAt": row.created_at_ms,
                    "tagIds": row.tag_ids_json,
                }
            )
            matches.append(
                VectorMatch(id=row.id, score=similarity_from_distance(distance), metadata=metadata)
            )
        return matches

    async def delete_by_ids(self, ids: Sequence[str]) -> None:
        if not ids:
            return
        try:
            async with self._session_factory() as session:
                await session.execute(delete(AssetVector).where(AssetVector.id.in_(list(ids))))
                await session.commit()
        except SQLAlchemyError as exc:
            raise VectorIndexError("pgvector delete failed") from exc

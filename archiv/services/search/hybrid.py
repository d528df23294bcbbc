from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Sequence

from archiv.core.errors import EmbeddingProviderError, VectorIndexError
from archiv.domain.search import MatchType, ScoredHit, SearchResult
from archiv.persistence.repos import assets as assets_repo
from archiv.providers.storage.base import public_url
from archiv.providers.vector_index.base import MAX_TOP_K, VectorFilter, VectorMatch
from archiv.services.context import ServiceContext
from archiv.services.resilience import call_with_timeout
from archiv.services.search.fusion import fuse_results, rank_semantic
from archiv.services.validation import require_limit, require_organization_id


logger = logging.getLogger(__name__)

# Keyword-only results have no similarity; every hit counts as a full match.
KEYWORD_ONLY_SCORE = 1.0


async def _semantic_matches(
    ctx: ServiceContext,
    organization_id: str,
    query: str,
    *,
    top_k: int,
    folder_id: str | None,
) -> list[VectorMatch]:
    embedding = await call_with_timeout(
        lambda: ctx.embedder.embed(query),
        integration="embedding",
        error_cls=EmbeddingProviderError,
    )
    return await call_with_timeout(
        lambda: ctx.vector_index.query(
            embedding,
            top_k=min(top_k, MAX_TOP_K),
            filter=VectorFilter(organization_id=organization_id, folder_id=folder_id),
        ),
        integration="vector_index.query",
        error_cls=VectorIndexError,
    )


async def _keyword_ids(
    ctx: ServiceContext,
    organization_id: str,
    query: str,
    *,
    limit: int,
    folder_id: str | None,
) -> list[str]:
    async with ctx.session_factory() as session:
        rows = await assets_repo.keyword_search(
            session,
            organization_id,
            query,
            limit=limit,
            folder_id=folder_id,
        )
    return [row.id for row in rows]


async def _gather_or_cancel(*aws: Awaitable[Any]) -> list[Any]:
    # Both branches must succeed; the first failure cancels the sibling and propagates.
    tasks = [asyncio.ensure_future(aw) for aw in aws]
    try:
        return list(await asyncio.gather(*tasks))
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


async def _hydrate(
    ctx: ServiceContext,
    organization_id: str,
    hits: Sequence[ScoredHit],
) -> list[SearchResult]:
    if not hits:
        return []
    # Re-check the tenant in the relational store even though the index was filtered.
    async with ctx.session_factory() as session:
        assets = await assets_repo.list_assets_by_ids(
            session,
            organization_id,
            [hit.asset_id for hit in hits],
        )
    by_id = {asset.id: asset for asset in assets}
    results: list[SearchResult] = []
    for hit in hits:
        asset = by_id.get(hit.asset_id)
        if asset is None:
            # Deleted since the index query, or not in this tenant.
            continue
        results.append(
            SearchResult(
                asset=asset,
                url=public_url(asset.storage_key, ctx.settings.cdn_domain),
                score=hit.score,
                match_type=hit.match_type,
            )
        )
    if len(results) < len(hits):
        logger.debug(
            "search_hydration_dropped org_id=%s dropped=%d",
            organization_id,
            len(hits) - len(results),
        )
    return results


async def hybrid_search(
    ctx: ServiceContext,
    organization_id: str,
    query: str,
    *,
    limit: int | None = None,
    folder_id: str | None = None,
    tag_ids: Sequence[str] | None = None,
    mime_type_prefix: str | None = None,
    min_score: float | None = None,
    keyword_boost: float | None = None,
) -> list[SearchResult]:
    """Run semantic and keyword search concurrently and fuse the results.

    A blank query returns ``[]`` without touching the model, index or database.
    Either branch failing fails the whole request.
    """
    settings = ctx.settings
    require_organization_id(organization_id)
    limit = require_limit(limit if limit is not None else settings.search_default_limit)
    min_score = settings.hybrid_min_score if min_score is None else min_score
    keyword_boost = settings.hybrid_keyword_boost if keyword_boost is None else keyword_boost

    term = (query or "").strip()
    if not term:
        return []

    semantic, keyword_ids = await _gather_or_cancel(
        _semantic_matches(ctx, organization_id, term, top_k=limit, folder_id=folder_id),
        _keyword_ids(ctx, organization_id, term, limit=limit, folder_id=folder_id),
    )
    hits = fuse_results(
        semantic,
        keyword_ids,
        limit=limit,
        min_score=min_score,
        keyword_boost=keyword_boost,
        tag_ids=tag_ids,
        mime_type_prefix=mime_type_prefix,
    )
    return await _hydrate(ctx, organization_id, hits)


async def vector_search(
    ctx: ServiceContext,
    organization_id: str,
    query: str,
    *,
    limit: int | None = None,
    folder_id: str | None = None,
    tag_ids: Sequence[str] | None = None,
    mime_type_prefix: str | None = None,
    min_score: float | None = None,
) -> list[SearchResult]:
    # Similarity-only search; over-fetch to leave room for client-side filtering.
    settings = ctx.settings
    require_organization_id(organization_id)
    limit = require_limit(limit if limit is not None else settings.search_default_limit)
    min_score = settings.vector_min_score if min_score is None else min_score

    term = (query or "").strip()
    if not term:
        return []

    matches = await _semantic_matches(
        ctx,
        organization_id,
        term,
        top_k=limit * 2,
        folder_id=folder_id,
    )
    hits = rank_semantic(
        matches,
        limit=limit,
        min_score=min_score,
        tag_ids=tag_ids,
        mime_type_prefix=mime_type_prefix,
    )
    return await _hydrate(ctx, organization_id, hits)


async def search_assets(
    ctx: ServiceContext,
    organization_id: str,
    query: str,
    *,
    limit: int | None = None,
    folder_id: str | None = None,
) -> list[SearchResult]:
    # Keyword-only search ordered newest first.
    settings = ctx.settings
    require_organization_id(organization_id)
    limit = require_limit(limit if limit is not None else settings.search_default_limit)

    term = (query or "").strip()
    if not term:
        return []

    async with ctx.session_factory() as session:
        rows = await assets_repo.keyword_search(
            session,
            organization_id,
            term,
            limit=limit,
            folder_id=folder_id,
        )
    return [
        SearchResult(
            asset=row,
            url=public_url(row.storage_key, settings.cdn_domain),
            score=KEYWORD_ONLY_SCORE,
            match_type=MatchType.KEYWORD,
        )
        for row in rows
    ]

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from pydantic import BaseModel

from archiv.apps.api.deps import Principal, get_principal, get_services
from archiv.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from archiv.apps.api.response import SuccessEnvelope, success_response
from archiv.domain.search import MatchType, SearchResult
from archiv.services.context import ServiceContext
from archiv.services.search.hybrid import hybrid_search, search_assets, vector_search
from archiv.services.validation import MAX_SEARCH_LIMIT


router = APIRouter(prefix="/search", tags=["search"], responses=DEFAULT_ERROR_RESPONSES)


class AssetResponse(BaseModel):
    id: str
    filename: str
    mime_type: str
    size: int
    width: int | None = None
    height: int | None = None
    alt_text: str | None = None
    description: str | None = None
    ai_caption: str | None = None
    folder_id: str | None = None
    embedding_status: str
    embedded_at: datetime | None = None
    created_at: datetime | None = None
    url: str


class SearchResultResponse(BaseModel):
    asset: AssetResponse
    score: float
    match_type: MatchType


def _to_response(result: SearchResult) -> SearchResultResponse:
    asset = result.asset
    return SearchResultResponse(
        asset=AssetResponse(
            id=asset.id,
            filename=asset.filename,
            mime_type=asset.mime_type,
            size=asset.size,
            width=asset.width,
            height=asset.height,
            alt_text=asset.alt_text,
            description=asset.description,
            ai_caption=asset.ai_caption,
            folder_id=asset.folder_id,
            embedding_status=asset.embedding_status,
            embedded_at=asset.embedded_at,
            created_at=asset.created_at,
            url=result.url,
        ),
        score=result.score,
        match_type=result.match_type,
    )


@router.get("/hybrid", response_model=SuccessEnvelope[list[SearchResultResponse]])
async def hybrid(
    request: Request,
    q: str = Query(default=""),
    limit: int | None = Query(default=None, ge=1, le=MAX_SEARCH_LIMIT),
    folder_id: str | None = Query(default=None),
    tag_ids: list[str] | None = Query(default=None),
    mime_type_prefix: str | None = Query(default=None),
    min_score: float | None = Query(default=None),
    keyword_boost: float | None = Query(default=None),
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    results = await hybrid_search(
        services,
        principal.organization_id,
        q,
        limit=limit,
        folder_id=folder_id,
        tag_ids=tag_ids,
        mime_type_prefix=mime_type_prefix,
        min_score=min_score,
        keyword_boost=keyword_boost,
    )
    return success_response(request=request, data=[_to_response(result) for result in results])


@router.get("/vector", response_model=SuccessEnvelope[list[SearchResultResponse]])
async def vector(
    request: Request,
    q: str = Query(default=""),
    limit: int | None = Query(default=None, ge=1, le=MAX_SEARCH_LIMIT),
    folder_id: str | None = Query(default=None),
    tag_ids: list[str] | None = Query(default=None),
    mime_type_prefix: str | None = Query(default=None),
    min_score: float | None = Query(default=None),
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    results = await vector_search(
        services,
        principal.organization_id,
        q,
        limit=limit,
        folder_id=folder_id,
        tag_ids=tag_ids,
        mime_type_prefix=mime_type_prefix,
        min_score=min_score,
    )
    return success_response(request=request, data=[_to_response(result) for result in results])


@router.get("", response_model=SuccessEnvelope[list[SearchResultResponse]])
async def keyword(
    request: Request,
    q: str = Query(default=""),
    limit: int | None = Query(default=None, ge=1, le=MAX_SEARCH_LIMIT),
    folder_id: str | None = Query(default=None),
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    results = await search_assets(
        services,
        principal.organization_id,
        q,
        limit=limit,
        folder_id=folder_id,
    )
    return success_response(request=request, data=[_to_response(result) for result in results])

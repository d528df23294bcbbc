from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Request
from pydantic import BaseModel, Field

from archiv.apps.api.deps import Principal, get_principal, get_services
from archiv.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from archiv.apps.api.response import SuccessEnvelope, success_response
from archiv.services.context import ServiceContext
from archiv.services.embeddings.backfill import (
    BackfillResult,
    BackfillStatus,
    get_backfill_status,
    retry_failed_embeddings,
    start_backfill,
)


router = APIRouter(prefix="/embeddings", tags=["embeddings"], responses=DEFAULT_ERROR_RESPONSES)


class BackfillRequest(BaseModel):
    batch_size: int | None = Field(default=None, ge=1, le=500)

    model_config = {"extra": "forbid"}


class RetryFailedResponse(BaseModel):
    reset: int


@router.get("/backfill", response_model=SuccessEnvelope[BackfillStatus])
async def backfill_status(
    request: Request,
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    status = await get_backfill_status(services, principal.organization_id)
    return success_response(request=request, data=status)


@router.post("/backfill", status_code=202, response_model=SuccessEnvelope[BackfillResult])
async def backfill(
    request: Request,
    payload: BackfillRequest | None = Body(default=None),
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    batch_size = payload.batch_size if payload is not None else None
    result = await start_backfill(services, principal.organization_id, batch_size=batch_size)
    return success_response(request=request, data=result)


@router.post("/retry-failed", response_model=SuccessEnvelope[RetryFailedResponse])
async def retry_failed(
    request: Request,
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    count = await retry_failed_embeddings(services, principal.organization_id)
    return success_response(request=request, data=RetryFailedResponse(reset=count))

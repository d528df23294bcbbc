from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from archiv.apps.api.deps import Principal, get_principal, get_services
from archiv.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from archiv.apps.api.response import SuccessEnvelope, success_response
from archiv.services.assets import delete_asset, delete_assets
from archiv.services.context import ServiceContext
from archiv.services.embeddings.pipeline import reembed_asset


router = APIRouter(prefix="/assets", tags=["assets"], responses=DEFAULT_ERROR_RESPONSES)


class ReembedResponse(BaseModel):
    asset_id: str
    queued: bool


class BulkDeleteRequest(BaseModel):
    asset_ids: list[str] = Field(min_length=1, max_length=500)

    # Reject unknown fields so organization_id cannot be supplied in the payload.
    model_config = {"extra": "forbid"}


class DeleteResponse(BaseModel):
    deleted: int


@router.post("/{asset_id}/reembed", status_code=202, response_model=SuccessEnvelope[ReembedResponse])
async def reembed(
    asset_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    await reembed_asset(services, principal.organization_id, asset_id)
    return success_response(request=request, data=ReembedResponse(asset_id=asset_id, queued=True))


@router.delete("/{asset_id}", response_model=SuccessEnvelope[DeleteResponse])
async def delete_one(
    asset_id: str,
    request: Request,
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    await delete_asset(services, principal.organization_id, asset_id)
    return success_response(request=request, data=DeleteResponse(deleted=1))


@router.post("/bulk-delete", response_model=SuccessEnvelope[DeleteResponse])
async def bulk_delete(
    payload: BulkDeleteRequest,
    request: Request,
    principal: Principal = Depends(get_principal),
    services: ServiceContext = Depends(get_services),
) -> dict:
    deleted = await delete_assets(services, principal.organization_id, payload.asset_ids)
    return success_response(request=request, data=DeleteResponse(deleted=deleted))

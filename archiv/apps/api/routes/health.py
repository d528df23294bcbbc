from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel

from archiv.apps.api.deps import get_services
from archiv.apps.api.openapi import DEFAULT_ERROR_RESPONSES
from archiv.apps.api.response import SuccessEnvelope, success_response
from archiv.services.context import ServiceContext

router = APIRouter(tags=["health"], responses=DEFAULT_ERROR_RESPONSES)


class HealthResponse(BaseModel):
    status: str
    # None means the queue backend could not be reached.
    queue_depth: int | None = None


@router.get("/health", response_model=SuccessEnvelope[HealthResponse])
async def health(request: Request, services: ServiceContext = Depends(get_services)) -> dict:
    depth = None
    queue_depth = getattr(services.queue, "depth", None)
    if queue_depth is not None:
        depth = await queue_depth()
    status = "ok" if services.queue is not None and depth is not None else "degraded"
    return success_response(request=request, data=HealthResponse(status=status, queue_depth=depth))

from __future__ import annotations

from fastapi import Header, HTTPException, Request
from pydantic import BaseModel

from archiv.services.context import ServiceContext


class Principal(BaseModel):
    # Organization resolved by the upstream auth layer; every operation is scoped to it.
    organization_id: str


def get_services(request: Request) -> ServiceContext:
    return request.app.state.services


async def get_principal(
    x_organization_id: str | None = Header(default=None, alias="X-Organization-Id"),
) -> Principal:
    # Tenant comes only from the trusted header, never from query or body.
    organization_id = (x_organization_id or "").strip()
    if not organization_id:
        raise HTTPException(
            status_code=401,
            detail={"code": "AUTH_UNAUTHORIZED", "message": "X-Organization-Id header is required"},
        )
    return Principal(organization_id=organization_id)

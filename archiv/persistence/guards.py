from __future__ import annotations

from dataclasses import dataclass

from archiv.core.config import get_settings


@dataclass(frozen=True)
class TenantPredicateError(RuntimeError):
    # Surface missing tenant predicates when guard enforcement is enabled.
    message: str

    def __str__(self) -> str:
        return self.message


def require_tenant_id(organization_id: str | None) -> None:
    # Enforce non-empty organization identifiers when tenant guard checks are enabled.
    settings = get_settings()
    if not settings.authz_require_tenant_predicate:
        return
    if not organization_id:
        raise TenantPredicateError("Tenant predicate required but organization_id is missing")


def tenant_predicate(model, organization_id: str) -> object:
    # Build tenant predicates through a single helper to guarantee guard coverage.
    require_tenant_id(organization_id)
    return model.organization_id == organization_id

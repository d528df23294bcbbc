from __future__ import annotations

from archiv.core.errors import ValidationError


# Upper bound for one page of search results; keeps the keyword scan bounded.
MAX_SEARCH_LIMIT = 200


def require_organization_id(organization_id: str | None) -> str:
    # Service entry points reject blank tenants before any repository call.
    if not organization_id or not organization_id.strip():
        raise ValidationError("organization_id is required")
    return organization_id


def require_limit(limit: int) -> int:
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    if limit > MAX_SEARCH_LIMIT:
        raise ValidationError(f"limit must be at most {MAX_SEARCH_LIMIT}")
    return limit

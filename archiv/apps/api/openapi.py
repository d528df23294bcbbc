from __future__ import annotations

from typing import Any

from archiv.apps.api.response import ErrorEnvelope


def _error_example(*, code: str, message: str) -> dict[str, Any]:
    # Build a consistent error envelope example for OpenAPI docs.
    return {
        "error": {"code": code, "message": message},
        "meta": {"request_id": "req_example", "api_version": "v1"},
    }


def _error_response(description: str, code: str, message: str) -> dict[str, Any]:
    return {
        "model": ErrorEnvelope,
        "description": description,
        "content": {"application/json": {"example": _error_example(code=code, message=message)}},
    }


DEFAULT_ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    401: _error_response("Unauthorized", "AUTH_UNAUTHORIZED", "X-Organization-Id header is required"),
    404: _error_response("Not found", "NOT_FOUND", "Asset not found"),
    422: _error_response("Validation error", "VALIDATION_ERROR", "limit must be at least 1"),
    500: _error_response("Internal error", "INTERNAL_ERROR", "Internal server error"),
    503: _error_response("Dependency unavailable", "SERVICE_UNAVAILABLE", "embedding timed out after 8000ms"),
}

from __future__ import annotations

import time
from typing import Any

import httpx

from archiv.core.config import Settings
from archiv.core.errors import ProviderConfigError, TransientDependencyError
from archiv.services.telemetry import record_external_call


class WorkersAIClient:
    """Minimal REST client for Cloudflare Workers AI model runs."""

    def __init__(
        self,
        *,
        account_id: str | None,
        api_token: str | None,
        base_url: str,
        timeout_s: float,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        # Validate early so callers get stable config errors instead of HTTP 401s.
        if not account_id or not api_token:
            raise ProviderConfigError("cloudflare_account_id and cloudflare_api_token are required")
        self._account_id = account_id
        self._api_token = api_token
        self._base_url = base_url.rstrip("/")
        self._timeout_s = timeout_s
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings) -> "WorkersAIClient":
        return cls(
            account_id=settings.cloudflare_account_id,
            api_token=settings.cloudflare_api_token,
            base_url=settings.cloudflare_api_base_url,
            timeout_s=settings.ext_call_timeout_ms / 1000.0,
        )

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout_s)
        return self._client

    async def run(
        self,
        model: str,
        payload: dict[str, Any],
        *,
        error_cls: type[TransientDependencyError] = TransientDependencyError,
    ) -> dict[str, Any]:
        url = f"{self._base_url}/accounts/{self._account_id}/ai/run/{model}"
        headers = {"Authorization": f"Bearer {self._api_token}"}
        start = time.monotonic()
        try:
            response = await self._get_client().post(url, json=payload, headers=headers)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPStatusError as exc:
            record_external_call(
                integration=f"workers_ai.{model}",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            if exc.response.status_code in {401, 403}:
                raise ProviderConfigError("Workers AI rejected the API token") from exc
            raise error_cls(f"Workers AI request failed with status {exc.response.status_code}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            record_external_call(
                integration=f"workers_ai.{model}",
                latency_ms=(time.monotonic() - start) * 1000.0,
                success=False,
            )
            raise error_cls("Workers AI request failed") from exc

        record_external_call(
            integration=f"workers_ai.{model}",
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=True,
        )
        if not isinstance(body, dict) or not body.get("success", True):
            raise error_cls("Workers AI returned an unsuccessful response")
        result = body.get("result")
        if not isinstance(result, dict):
            raise error_cls("Workers AI response is missing a result")
        return result

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

from __future__ import annotations

import asyncio
import time
from typing import Awaitable, Callable, TypeVar

from archiv.core.config import get_settings
from archiv.core.errors import TransientDependencyError
from archiv.services.telemetry import increment_counter, record_external_call


T = TypeVar("T")


async def call_with_timeout(
    func: Callable[[], Awaitable[T]],
    *,
    integration: str,
    timeout_ms: int | None = None,
    error_cls: type[TransientDependencyError] = TransientDependencyError,
) -> T:
    """Run one external call under a deadline and record its latency.

    Timeouts become ``error_cls`` so callers classify them as transient; other
    exceptions propagate unchanged.
    """
    timeout_ms = timeout_ms if timeout_ms is not None else get_settings().ext_call_timeout_ms
    start = time.monotonic()
    try:
        result = await asyncio.wait_for(func(), timeout=timeout_ms / 1000.0)
    except asyncio.TimeoutError as exc:
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=False,
        )
        increment_counter(f"external_timeouts_total.{integration}")
        raise error_cls(f"{integration} timed out after {timeout_ms}ms") from exc
    except Exception:
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - start) * 1000.0,
            success=False,
        )
        raise
    record_external_call(
        integration=integration,
        latency_ms=(time.monotonic() - start) * 1000.0,
        success=True,
    )
    return result


def retry_delay_seconds(retry_count: int, *, base_delay_s: int | None = None) -> int:
    # Exponential schedule: base * 2^(retry_count + 1), i.e. 20s, 40s, 80s for base 10.
    base = base_delay_s if base_delay_s is not None else get_settings().embed_retry_base_delay_s
    return int(base * (2 ** (retry_count + 1)))

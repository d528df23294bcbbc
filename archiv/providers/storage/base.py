from __future__ import annotations

from typing import Protocol


class ObjectStorage(Protocol):
    async def get(self, key: str) -> bytes:
        ...

    async def delete(self, key: str) -> None:
        ...


def public_url(storage_key: str, cdn_domain: str) -> str:
    return f"https://{cdn_domain}/{storage_key}"

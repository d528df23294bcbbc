from __future__ import annotations

import asyncio
from pathlib import Path

from archiv.core.errors import NotFoundError, ObjectStorageError


class LocalObjectStorage:
    """Filesystem-backed object storage keyed by relative paths."""

    def __init__(self, root: str | Path) -> None:
        self._root = Path(root)

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        # Keys must stay inside the storage root.
        if self._root.resolve() not in path.parents:
            raise ObjectStorageError(f"invalid storage key: {key}")
        return path

    async def put(self, key: str, data: bytes) -> None:
        path = self._path(key)

        def _write() -> None:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(data)

        await asyncio.to_thread(_write)

    async def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except FileNotFoundError as exc:
            raise NotFoundError(f"Stored object not found: {key}") from exc
        except OSError as exc:
            raise ObjectStorageError(f"Failed to read stored object: {key}") from exc

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as exc:
            raise ObjectStorageError(f"Failed to delete stored object: {key}") from exc

from __future__ import annotations

import asyncio
import sys

from archiv.core.logging import configure_logging
from archiv.persistence.db import get_engine
from archiv.persistence.schema import create_schema


async def init_db() -> int:
    # Reuse the shared engine so DATABASE_URL matches the API and worker.
    engine = get_engine()
    try:
        await create_schema(engine)
    finally:
        await engine.dispose()
    print(f"Schema ready on {engine.dialect.name}.")
    return 0


def main() -> int:
    configure_logging()
    try:
        return asyncio.run(init_db())
    except Exception as exc:  # noqa: BLE001 - surface connection and DDL errors
        print(f"init_db failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())

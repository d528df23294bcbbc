from __future__ import annotations

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from archiv.core.config import get_settings
from archiv.persistence.db import build_engine
from archiv.persistence.schema import create_schema
from archiv.providers.captioning.fake import FakeCaptionProvider
from archiv.providers.embeddings.hashing import HashingEmbeddingProvider
from archiv.providers.vector_index.memory import InMemoryVectorIndex
from archiv.services.context import ServiceContext
from archiv.services.embeddings.queue import InlineEmbeddingQueue
from archiv.services.telemetry import reset_telemetry
from archiv.tests.utils.stubs import StubStorage


@pytest.fixture(autouse=True)
def reset_process_state() -> None:
    # Settings and counters are process-global; isolate them per test.
    get_settings.cache_clear()
    reset_telemetry()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def session_factory(tmp_path):
    # A file-backed SQLite database keeps one schema visible to every session.
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'archiv.db'}")
    await create_schema(engine)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def services(session_factory) -> ServiceContext:
    ctx = ServiceContext(
        session_factory=session_factory,
        embedder=HashingEmbeddingProvider(),
        vector_index=InMemoryVectorIndex(),
        storage=StubStorage(),
        captioner=FakeCaptionProvider(),
        settings=get_settings(),
    )
    ctx.queue = InlineEmbeddingQueue(ctx)
    return ctx

from __future__ import annotations

import asyncio
import math
from dataclasses import replace

import pytest

from archiv.core.config import EMBED_DIM
from archiv.core.errors import ValidationError
from archiv.domain.search import MatchType
from archiv.persistence.repos import assets as assets_repo
from archiv.providers.vector_index.base import VectorMetadata, VectorRecord
from archiv.services.search.hybrid import hybrid_search, search_assets, vector_search
from archiv.services.validation import MAX_SEARCH_LIMIT
from archiv.tests.utils.assets import create_test_asset, create_test_folder
from archiv.tests.utils.stubs import FailingVectorIndex, StubEmbedder


def _basis(index: int) -> list[float]:
    vector = [0.0] * EMBED_DIM
    vector[index] = 1.0
    return vector


def _similar(score: float) -> list[float]:
    # Unit vector whose cosine similarity with _basis(0) equals score.
    vector = [0.0] * EMBED_DIM
    vector[0] = score
    vector[1] = math.sqrt(1.0 - score * score)
    return vector


async def _index(services, asset, vector, *, organization_id: str | None = None, tag_ids=()) -> None:
    await services.vector_index.upsert(
        [
            VectorRecord(
                id=asset.id,
                values=vector,
                metadata=VectorMetadata(
                    organization_id=organization_id or asset.organization_id,
                    folder_id=asset.folder_id,
                    mime_type=asset.mime_type,
                    created_at_ms=0,
                    tag_ids=list(tag_ids),
                ),
            )
        ]
    )


@pytest.fixture
def query_services(services):
    services.embedder = StubEmbedder({"sunset": _basis(0)})
    return services


@pytest.mark.asyncio
async def test_blank_query_returns_nothing_without_io(services) -> None:
    def _no_sessions():
        raise AssertionError("database must not be touched")

    embedder = StubEmbedder()
    ctx = replace(
        services,
        session_factory=_no_sessions,
        embedder=embedder,
        vector_index=FailingVectorIndex(services.vector_index, fail_query=True),
    )

    assert await hybrid_search(ctx, "org-a", "") == []
    assert await hybrid_search(ctx, "org-a", "   ") == []
    assert await vector_search(ctx, "org-a", " ") == []
    assert await search_assets(ctx, "org-a", "") == []
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_hybrid_search_fuses_and_ranks(query_services) -> None:
    services = query_services
    factory = services.session_factory
    semantic_only = await create_test_asset(factory, filename="beach.jpg")
    keyword_only = await create_test_asset(factory, filename="sunset-party.png", mime_type="image/png")
    both = await create_test_asset(factory, filename="sunset_over_sea.jpg")
    await _index(services, semantic_only, _similar(0.5))
    await _index(services, both, _similar(0.9))

    results = await hybrid_search(services, "org-a", "sunset")

    assert [result.asset.id for result in results] == [both.id, semantic_only.id, keyword_only.id]
    assert [result.match_type for result in results] == [
        MatchType.BOTH,
        MatchType.SEMANTIC,
        MatchType.KEYWORD,
    ]
    assert results[0].score == pytest.approx(1.2)
    assert results[1].score == pytest.approx(0.5)
    assert results[2].score == pytest.approx(0.3)
    assert results[0].url == f"https://cdn.localhost/{both.storage_key}"


@pytest.mark.asyncio
async def test_hybrid_search_never_leaks_other_tenants(query_services) -> None:
    services = query_services
    factory = services.session_factory
    mine = await create_test_asset(factory, filename="sunset.jpg")
    theirs = await create_test_asset(factory, organization_id="org-b", filename="sunset-b.jpg")
    misfiled = await create_test_asset(factory, organization_id="org-b", filename="sunset-c.jpg")
    await _index(services, mine, _similar(0.4))
    await _index(services, theirs, _basis(0))
    # A vector whose metadata wrongly claims org-a is still dropped at hydration.
    await _index(services, misfiled, _basis(0), organization_id="org-a")

    results = await hybrid_search(services, "org-a", "sunset")

    assert [result.asset.id for result in results] == [mine.id]
    assert all(result.asset.organization_id == "org-a" for result in results)


@pytest.mark.asyncio
async def test_vectors_without_rows_are_dropped(query_services) -> None:
    services = query_services
    live = await create_test_asset(services.session_factory, filename="coast.jpg")
    ghost = await create_test_asset(services.session_factory, filename="ghost.jpg")
    await _index(services, live, _similar(0.6))
    await _index(services, ghost, _basis(0))
    async with services.session_factory() as session:
        await session.delete(await session.get(type(ghost), ghost.id))
        await session.commit()

    results = await hybrid_search(services, "org-a", "sunset")

    assert [result.asset.id for result in results] == [live.id]


@pytest.mark.asyncio
async def test_hybrid_search_applies_folder_tag_and_mime_filters(query_services) -> None:
    services = query_services
    factory = services.session_factory
    folder = await create_test_folder(factory)
    in_folder = await create_test_asset(factory, filename="a.jpg", folder_id=folder.id)
    outside = await create_test_asset(factory, filename="b.jpg")
    video = await create_test_asset(factory, filename="c.mp4", mime_type="video/mp4", folder_id=folder.id)
    await _index(services, in_folder, _similar(0.8), tag_ids=["t1"])
    await _index(services, outside, _similar(0.9), tag_ids=["t1"])
    await _index(services, video, _similar(0.7), tag_ids=["t1"])

    results = await hybrid_search(
        services,
        "org-a",
        "sunset",
        folder_id=folder.id,
        tag_ids=["t1"],
        mime_type_prefix="image/",
    )

    assert [result.asset.id for result in results] == [in_folder.id]


@pytest.mark.asyncio
async def test_failed_branch_fails_the_search(query_services) -> None:
    services = query_services
    await create_test_asset(services.session_factory, filename="sunset.jpg")
    services.vector_index = FailingVectorIndex(services.vector_index, fail_query=True)

    with pytest.raises(ConnectionError):
        await hybrid_search(services, "org-a", "sunset")


@pytest.mark.asyncio
async def test_vector_search_is_semantic_only(query_services) -> None:
    services = query_services
    factory = services.session_factory
    strong = await create_test_asset(factory, filename="one.jpg")
    weak = await create_test_asset(factory, filename="two.jpg")
    await create_test_asset(factory, filename="sunset.jpg")
    await _index(services, strong, _similar(0.7))
    await _index(services, weak, _similar(0.25))

    results = await vector_search(services, "org-a", "sunset")

    # 0.25 clears the hybrid threshold but not the stricter vector-only default.
    assert [result.asset.id for result in results] == [strong.id]
    assert results[0].match_type is MatchType.SEMANTIC
    assert results[0].score == pytest.approx(0.7)


@pytest.mark.asyncio
async def test_search_assets_is_keyword_only_newest_first(services) -> None:
    factory = services.session_factory
    old = await create_test_asset(factory, filename="harbor.jpg", age_minutes=60)
    new = await create_test_asset(factory, filename="photo.jpg", description="Harbor at dawn", age_minutes=1)
    await create_test_asset(factory, filename="harbor.jpg", organization_id="org-b")

    results = await search_assets(services, "org-a", "HARBOR")

    assert [result.asset.id for result in results] == [new.id, old.id]
    assert all(result.match_type is MatchType.KEYWORD for result in results)


@pytest.mark.asyncio
async def test_keyword_query_is_matched_literally(services) -> None:
    factory = services.session_factory
    percent = await create_test_asset(factory, filename="50%_off.png", mime_type="image/png")
    await create_test_asset(factory, filename="plain.png", mime_type="image/png")

    results = await search_assets(services, "org-a", "%")

    assert [result.asset.id for result in results] == [percent.id]


@pytest.mark.asyncio
async def test_search_validates_limit_and_organization(services) -> None:
    with pytest.raises(ValidationError):
        await hybrid_search(services, "org-a", "sunset", limit=0)
    with pytest.raises(ValidationError):
        await vector_search(services, "", "sunset")
    with pytest.raises(ValidationError):
        await search_assets(services, "org-a", "sunset", limit=-1)
    with pytest.raises(ValidationError):
        await hybrid_search(services, "org-a", "sunset", limit=MAX_SEARCH_LIMIT + 1)


class _BarrierEmbedder:
    def __init__(self, barrier: asyncio.Barrier) -> None:
        self._barrier = barrier

    async def embed(self, text: str) -> list[float]:
        await asyncio.wait_for(self._barrier.wait(), timeout=1.0)
        return _basis(0)


@pytest.mark.asyncio
async def test_hybrid_branches_run_concurrently(services, monkeypatch) -> None:
    # Each branch waits for the other at the barrier; run one after the other they would time out.
    barrier = asyncio.Barrier(2)

    async def keyword_search(session, organization_id, query, *, limit, folder_id=None):
        await asyncio.wait_for(barrier.wait(), timeout=1.0)
        return []

    monkeypatch.setattr(assets_repo, "keyword_search", keyword_search)
    services.embedder = _BarrierEmbedder(barrier)

    assert await hybrid_search(services, "org-a", "sunset") == []


class _FailAfterStartEmbedder:
    def __init__(self, started: asyncio.Event) -> None:
        self._started = started

    async def embed(self, text: str) -> list[float]:
        await self._started.wait()
        raise ConnectionError("embedding model unreachable")


@pytest.mark.asyncio
async def test_failed_branch_cancels_its_sibling(services, monkeypatch) -> None:
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def keyword_search(session, organization_id, query, *, limit, folder_id=None):
        started.set()
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            cancelled.set()
            raise
        return []

    monkeypatch.setattr(assets_repo, "keyword_search", keyword_search)
    services.embedder = _FailAfterStartEmbedder(started)

    with pytest.raises(ConnectionError):
        await asyncio.wait_for(hybrid_search(services, "org-a", "sunset"), timeout=1.0)

    assert cancelled.is_set()

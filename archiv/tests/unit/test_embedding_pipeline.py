from __future__ import annotations

import pytest

from archiv.core.errors import InvalidTransitionError, NotFoundError, QueueUnavailableError
from archiv.domain.state import EmbeddingStatus
from archiv.persistence.repos import assets as assets_repo
from archiv.providers.captioning.fake import FakeCaptionProvider
from archiv.providers.embeddings.hashing import hash_embed
from archiv.providers.vector_index.base import VectorFilter
from archiv.services.assets import delete_assets
from archiv.services.embeddings.messages import EmbeddingMessage, PermanentFailure
from archiv.services.embeddings.pipeline import (
    delete_asset_vector,
    delete_asset_vectors,
    generate_asset_embedding,
    mark_embedding_failed,
    queue_embedding,
    reembed_asset,
)
from archiv.services.embeddings.queue import handle_embedding_message
from archiv.services.telemetry import get_counter
from archiv.tests.utils.assets import create_test_asset, load_asset, tag_asset
from archiv.tests.utils.stubs import FailingCaptioner, RecordingQueue, StubEmbedder


async def _indexed_match(services, asset_id: str, text: str, organization_id: str = "org-a"):
    matches = await services.vector_index.query(
        hash_embed(text),
        top_k=50,
        filter=VectorFilter(organization_id=organization_id),
    )
    return next((match for match in matches if match.id == asset_id), None)


@pytest.mark.asyncio
async def test_generate_embedding_captions_indexes_and_completes(services) -> None:
    asset = await create_test_asset(
        services.session_factory,
        filename="Sunset_Beach.jpg",
        alt_text="Golden hour",
    )
    tags = await tag_asset(services.session_factory, asset.id, "travel", "beach")
    services.storage.objects[asset.storage_key] = b"\xff\xd8jpeg"
    embedder = StubEmbedder()
    services.embedder = embedder

    await generate_asset_embedding(services, asset.id)

    # Tags are joined in name order after the caption.
    expected_text = "sunset beach | Golden hour | an image | beach travel"
    assert embedder.calls == [expected_text]
    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "completed"
    assert stored.embedded_at is not None
    assert stored.embedding_error is None
    assert stored.ai_caption == "an image"
    assert stored.ai_caption_model == "fake-caption"

    match = await _indexed_match(services, asset.id, expected_text)
    assert match is not None
    assert match.metadata.organization_id == "org-a"
    assert match.metadata.folder_id is None
    assert match.metadata.mime_type == "image/jpeg"
    assert sorted(match.metadata.tag_ids) == sorted(tag.id for tag in tags)
    assert match.metadata.created_at_ms > 0


@pytest.mark.asyncio
async def test_generate_embedding_twice_keeps_one_vector(services) -> None:
    asset = await create_test_asset(services.session_factory, filename="logo.png", mime_type="image/png")
    services.storage.objects[asset.storage_key] = b"png"
    captioner = FakeCaptionProvider()
    services.captioner = captioner

    await generate_asset_embedding(services, asset.id)
    await generate_asset_embedding(services, asset.id)

    assert len(services.vector_index) == 1
    assert asset.id in services.vector_index
    # The persisted caption is reused on redelivery.
    assert captioner.calls == 1
    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "completed"


class DeletingEmbedder(StubEmbedder):
    """Deletes the asset while its embedding is being computed."""

    def __init__(self, services, asset_id: str) -> None:
        super().__init__()
        self._services = services
        self._asset_id = asset_id

    async def embed(self, text: str) -> list[float]:
        vector = await super().embed(text)
        await delete_assets(self._services, "org-a", [self._asset_id])
        return vector


@pytest.mark.asyncio
async def test_asset_deleted_mid_run_leaves_no_vector(services) -> None:
    asset = await create_test_asset(services.session_factory, filename="brief.pdf", mime_type="application/pdf")
    services.embedder = DeletingEmbedder(services, asset.id)

    with pytest.raises(NotFoundError):
        await generate_asset_embedding(services, asset.id)

    assert await load_asset(services.session_factory, asset.id) is None
    assert asset.id not in services.vector_index
    assert get_counter("embeddings_completed_total") == 0


@pytest.mark.asyncio
async def test_consumer_acks_asset_deleted_mid_run(services) -> None:
    asset = await create_test_asset(
        services.session_factory,
        filename="brief.pdf",
        mime_type="application/pdf",
        embedding_status="processing",
    )
    services.embedder = DeletingEmbedder(services, asset.id)

    outcome = await handle_embedding_message(services, EmbeddingMessage(asset_id=asset.id))

    assert isinstance(outcome, PermanentFailure)
    assert len(services.vector_index) == 0


@pytest.mark.asyncio
async def test_caption_failure_does_not_block_embedding(services) -> None:
    asset = await create_test_asset(services.session_factory, filename="cat.gif", mime_type="image/gif")
    services.storage.objects[asset.storage_key] = b"gif"
    captioner = FailingCaptioner()
    services.captioner = captioner

    await generate_asset_embedding(services, asset.id)

    assert captioner.calls == 1
    assert asset.id in services.vector_index
    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "completed"
    assert stored.ai_caption is None


@pytest.mark.asyncio
async def test_missing_image_bytes_skip_caption(services) -> None:
    asset = await create_test_asset(services.session_factory, filename="lost.webp", mime_type="image/webp")

    await generate_asset_embedding(services, asset.id)

    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "completed"
    assert stored.ai_caption is None


@pytest.mark.asyncio
async def test_svg_and_documents_are_not_captioned(services) -> None:
    svg = await create_test_asset(services.session_factory, filename="icon.svg", mime_type="image/svg+xml")
    pdf = await create_test_asset(services.session_factory, filename="brief.pdf", mime_type="application/pdf")
    services.storage.objects[svg.storage_key] = b"<svg/>"
    captioner = FakeCaptionProvider()
    services.captioner = captioner

    await generate_asset_embedding(services, svg.id)
    await generate_asset_embedding(services, pdf.id)

    assert captioner.calls == 0
    assert len(services.vector_index) == 2


@pytest.mark.asyncio
async def test_existing_caption_is_reused(services) -> None:
    asset = await create_test_asset(services.session_factory, filename="dog.jpg", ai_caption="a dog running")
    captioner = FakeCaptionProvider()
    services.captioner = captioner
    embedder = StubEmbedder()
    services.embedder = embedder

    await generate_asset_embedding(services, asset.id)

    assert captioner.calls == 0
    assert embedder.calls == ["dog | a dog running"]


@pytest.mark.asyncio
async def test_generate_embedding_for_unknown_asset_raises(services) -> None:
    with pytest.raises(NotFoundError):
        await generate_asset_embedding(services, "missing")


@pytest.mark.asyncio
async def test_queue_embedding_flips_status_and_sends(services) -> None:
    asset = await create_test_asset(services.session_factory)
    queue = RecordingQueue()
    services.queue = queue

    await queue_embedding(services, asset.id)

    assert [message.asset_id for message in queue.messages] == [asset.id]
    assert queue.messages[0].retry_count == 0
    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "processing"


@pytest.mark.asyncio
async def test_queue_send_failure_marks_asset_failed(services) -> None:
    asset = await create_test_asset(services.session_factory)
    services.queue = RecordingQueue(fail=True)

    with pytest.raises(QueueUnavailableError):
        await queue_embedding(services, asset.id)

    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "failed"
    assert stored.embedding_error == "Embedding queue unavailable"


@pytest.mark.asyncio
async def test_queue_embedding_rejects_in_flight_asset(services) -> None:
    asset = await create_test_asset(services.session_factory, embedding_status="processing")
    queue = RecordingQueue()
    services.queue = queue

    with pytest.raises(InvalidTransitionError):
        await queue_embedding(services, asset.id)
    assert queue.messages == []


@pytest.mark.asyncio
async def test_inline_queue_runs_pipeline_to_completion(services) -> None:
    asset = await create_test_asset(services.session_factory, filename="report.pdf", mime_type="application/pdf")

    await queue_embedding(services, asset.id)

    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "completed"
    assert asset.id in services.vector_index


@pytest.mark.asyncio
async def test_reembed_is_tenant_scoped(services) -> None:
    asset = await create_test_asset(services.session_factory, embedding_status="completed")
    queue = RecordingQueue()
    services.queue = queue

    with pytest.raises(NotFoundError):
        await reembed_asset(services, "org-b", asset.id)
    assert queue.messages == []

    await reembed_asset(services, "org-a", asset.id)
    assert [message.asset_id for message in queue.messages] == [asset.id]
    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "processing"


@pytest.mark.asyncio
async def test_mark_failed_records_error_and_clears_embedded_at(services) -> None:
    asset = await create_test_asset(services.session_factory)
    await generate_asset_embedding(services, asset.id)

    await mark_embedding_failed(services, asset.id, "model exploded")

    stored = await load_asset(services.session_factory, asset.id)
    assert stored.embedding_status == "failed"
    assert stored.embedding_error == "model exploded"
    assert stored.embedded_at is None


@pytest.mark.asyncio
async def test_delete_vectors_removes_ids_and_ignores_empty(services) -> None:
    first = await create_test_asset(services.session_factory, filename="one.pdf", mime_type="application/pdf")
    second = await create_test_asset(services.session_factory, filename="two.pdf", mime_type="application/pdf")
    await generate_asset_embedding(services, first.id)
    await generate_asset_embedding(services, second.id)

    await delete_asset_vectors(services, [])
    assert len(services.vector_index) == 2

    await delete_asset_vectors(services, [first.id])
    assert first.id not in services.vector_index
    assert second.id in services.vector_index

    await delete_asset_vector(services, second.id)
    assert len(services.vector_index) == 0


@pytest.mark.asyncio
async def test_status_transition_is_compare_and_set(services) -> None:
    asset = await create_test_asset(services.session_factory)

    async with services.session_factory() as session:
        first = await assets_repo.transition_embedding_status(session, asset.id, EmbeddingStatus.PROCESSING)
        second = await assets_repo.transition_embedding_status(session, asset.id, EmbeddingStatus.PROCESSING)
        await session.commit()

    assert (first, second) == (1, 0)


@pytest.mark.asyncio
async def test_concurrent_enqueue_sends_only_once(services, monkeypatch) -> None:
    asset = await create_test_asset(services.session_factory)
    stale = await load_asset(services.session_factory, asset.id)
    queue = RecordingQueue()
    services.queue = queue
    await queue_embedding(services, asset.id)

    async def _stale_lookup(session, asset_id):
        # A second caller that read the row before the first caller flipped it.
        return stale

    monkeypatch.setattr(assets_repo, "get_asset_by_id", _stale_lookup)

    with pytest.raises(InvalidTransitionError):
        await queue_embedding(services, asset.id)
    assert [message.asset_id for message in queue.messages] == [asset.id]

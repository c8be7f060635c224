"""Tests for the embedding pipeline and startup recovery."""

import asyncio

import pytest

from gallery.api.embedding_api import EmbeddingAPIError, Modality
from gallery.core.errors import RecordNotFound, StorageUnavailable
from gallery.core.events import Topic
from gallery.core.models import RecordState
from gallery.core.pipeline import EmbeddingPipeline, ProgressUpdate

from .conftest import FakeProvider


async def save_pending(db, count):
    return [await db.save(f"image-{i}".encode(), f"{i}.png", "image/png") for i in range(count)]


async def test_process_new_stores_embedding_and_publishes(db, bus):
    provider = FakeProvider(vectors={b"cat": [0.6, 0.8]})
    pipeline = EmbeddingPipeline(db, provider, bus)
    processed = []
    bus.subscribe(Topic.PROCESSED, processed.append)

    record_id = await db.save(b"cat", "cat.png", "image/png")
    embedding = await pipeline.process_new(record_id, b"cat", "image/png")

    assert embedding == [0.6, 0.8]
    record = await db.get(record_id)
    assert record.state == RecordState.READY
    assert record.embedding == [0.6, 0.8]
    assert processed == [record_id]
    assert provider.calls == [(b"cat", Modality.VISION, "image/png")]


async def test_process_new_failure_leaves_record_pending(db, bus):
    provider = FakeProvider(fail_on={b"bad"})
    pipeline = EmbeddingPipeline(db, provider, bus)
    processed = []
    bus.subscribe(Topic.PROCESSED, processed.append)

    record_id = await db.save(b"bad", "bad.png", "image/png")
    with pytest.raises(EmbeddingAPIError):
        await pipeline.process_new(record_id, b"bad")

    record = await db.get(record_id)
    assert record.state == RecordState.PENDING
    assert processed == []
    # No automatic retry
    assert len(provider.calls) == 1


async def test_process_new_for_deleted_record(db, bus, provider):
    pipeline = EmbeddingPipeline(db, provider, bus)
    record_id = await db.save(b"gone", "gone.png", "image/png")
    await db.delete(record_id)

    with pytest.raises(RecordNotFound):
        await pipeline.process_new(record_id, b"gone")


async def test_recover_pending_processes_all(db, bus, provider):
    ids = await save_pending(db, 3)
    pipeline = EmbeddingPipeline(db, provider, bus)

    report = await pipeline.recover_pending()

    assert sorted(report.processed) == ids
    assert report.failed == []
    for record in await db.get_all():
        assert record.state == RecordState.READY


async def test_recover_pending_isolates_failures(db, bus):
    ids = await save_pending(db, 3)
    provider = FakeProvider(fail_on={b"image-1"})
    pipeline = EmbeddingPipeline(db, provider, bus)

    report = await pipeline.recover_pending()

    assert report.failed == [ids[1]]
    assert sorted(report.processed) == [ids[0], ids[2]]
    states = {r.id: r.state for r in await db.get_all()}
    assert states == {
        ids[0]: RecordState.READY,
        ids[1]: RecordState.PENDING,
        ids[2]: RecordState.READY,
    }


async def test_failed_record_is_retried_by_next_recovery(db, bus):
    (record_id,) = await save_pending(db, 1)
    provider = FakeProvider(fail_on={b"image-0"})
    pipeline = EmbeddingPipeline(db, provider, bus)

    first = await pipeline.recover_pending()
    provider.fail_on.clear()
    second = await pipeline.recover_pending()

    assert first.failed == [record_id]
    assert second.processed == [record_id]
    assert (await db.get(record_id)).state == RecordState.READY


async def test_recover_only_touches_pending_records(db, bus, provider):
    ready, pending = await save_pending(db, 2)
    await db.update_embedding(ready, [0.0, 1.0])
    pipeline = EmbeddingPipeline(db, provider, bus)

    report = await pipeline.recover_pending()

    assert report.total == 1
    assert report.processed == [pending]
    assert [call[0] for call in provider.calls] == [b"image-1"]
    assert (await db.get(ready)).embedding == [0.0, 1.0]


async def test_recover_with_nothing_pending(db, bus, provider):
    report = await EmbeddingPipeline(db, provider, bus).recover_pending()
    assert report.total == 0
    assert provider.calls == []
    assert str(report) == "No pending images"


async def test_concurrent_recovery_runs_once(db, bus, provider):
    await save_pending(db, 4)
    pipeline = EmbeddingPipeline(db, provider, bus, batch_size=2)

    first, second = await asyncio.gather(
        pipeline.recover_pending(), pipeline.recover_pending()
    )

    assert not first.skipped
    assert second.skipped
    assert len(first.processed) == 4
    assert len(provider.calls) == 4
    assert not pipeline.is_recovering


async def test_batch_size_bounds_concurrent_calls(db, bus, provider):
    await save_pending(db, 7)
    pipeline = EmbeddingPipeline(db, provider, bus, batch_size=2)

    report = await pipeline.recover_pending()

    assert len(report.processed) == 7
    assert 1 <= provider.max_in_flight <= 2


async def test_batch_size_one_is_sequential(db, bus, provider):
    await save_pending(db, 3)
    await EmbeddingPipeline(db, provider, bus, batch_size=1).recover_pending()
    assert provider.max_in_flight == 1


def test_batch_size_must_be_positive(bus, provider):
    with pytest.raises(ValueError):
        EmbeddingPipeline(object(), provider, bus, batch_size=0)


async def test_delay_between_batches(db, bus, provider):
    await save_pending(db, 5)
    delays = []

    async def fake_sleep(seconds):
        delays.append(seconds)

    pipeline = EmbeddingPipeline(db, provider, bus, batch_size=2, batch_delay=0.5, sleep=fake_sleep)
    await pipeline.recover_pending()

    # Three batches, so two pauses between them
    assert delays == [0.5, 0.5]


async def test_progress_updates_after_each_success(db, bus):
    await save_pending(db, 3)
    provider = FakeProvider(fail_on={b"image-2"})
    pipeline = EmbeddingPipeline(db, provider, bus, batch_size=1)
    published = []
    callbacks = []
    bus.subscribe(Topic.PROGRESS, published.append)

    await pipeline.recover_pending(on_progress=callbacks.append)

    expected = [ProgressUpdate(total=3, completed=1), ProgressUpdate(total=3, completed=2)]
    assert published == expected
    assert callbacks == expected


async def test_processed_event_per_success(db, bus, provider):
    ids = await save_pending(db, 3)
    processed = []
    bus.subscribe(Topic.PROCESSED, processed.append)

    await EmbeddingPipeline(db, provider, bus).recover_pending()

    assert sorted(processed) == ids


async def test_deleted_record_is_not_resurrected(db, bus, provider):
    record_id = await db.save(b"short-lived", "s.png", "image/png")
    await db.delete(record_id)

    report = await EmbeddingPipeline(db, provider, bus).recover_pending()

    assert report.total == 0
    assert await db.get_all() == []


async def test_record_deleted_during_recovery(db, bus):
    keep, drop = await save_pending(db, 2)
    provider = FakeProvider()

    async def delete_mid_call(data):
        if data == b"image-1":
            await db.delete(drop)

    provider.before_return = delete_mid_call
    report = await EmbeddingPipeline(db, provider, bus).recover_pending()

    assert report.missing == [drop]
    assert report.processed == [keep]
    assert [r.id for r in await db.get_all()] == [keep]


async def test_unexpected_provider_error_does_not_abort(db, bus):
    ids = await save_pending(db, 2)

    class FlakyProvider(FakeProvider):
        async def embed(self, data, modality=Modality.VISION, mimetype="application/octet-stream"):
            if data == b"image-0":
                raise RuntimeError("connection reset")
            return await super().embed(data, modality, mimetype)

    report = await EmbeddingPipeline(db, FlakyProvider(), bus).recover_pending()

    assert report.failed == [ids[0]]
    assert report.processed == [ids[1]]


async def test_failing_progress_callback_does_not_abort(db, bus, provider):
    ids = await save_pending(db, 3)

    def broken(_update):
        raise RuntimeError("display closed")

    report = await EmbeddingPipeline(db, provider, bus).recover_pending(on_progress=broken)

    assert sorted(report.processed) == ids
    assert all(r.state == RecordState.READY for r in await db.get_all())


async def test_storage_failure_waits_for_rest_of_batch(db, bus):
    ids = await save_pending(db, 3)
    provider = FakeProvider()

    async def fail_first(data):
        if data == b"image-0":
            raise StorageUnavailable("disk went away")
        await asyncio.sleep(0.05)

    provider.before_return = fail_first
    pipeline = EmbeddingPipeline(db, provider, bus, batch_size=3)

    with pytest.raises(StorageUnavailable):
        await pipeline.recover_pending()

    assert not pipeline.is_recovering
    states = {r.id: r.state for r in await db.get_all()}
    assert states[ids[0]] == RecordState.PENDING
    assert states[ids[1]] == RecordState.READY
    assert states[ids[2]] == RecordState.READY

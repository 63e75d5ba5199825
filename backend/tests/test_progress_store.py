import asyncio
from datetime import datetime, timezone

import pytest

from productsync.schemas.sync import ERROR_LOG_LIMIT, SyncErrorEntry, SyncJob, SyncStatus
from productsync.services.progress_store import ProgressStore, StaleProgressError


def _error(record_id: int) -> SyncErrorEntry:
    return SyncErrorEntry(
        record_id=record_id,
        tenant="shop-a",
        message="boom",
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@pytest.mark.asyncio
async def test_read_without_stored_job_is_idle(control_sessions):
    job = await ProgressStore(control_sessions).read()

    assert job.status == SyncStatus.idle
    assert job.total == 0
    assert job.errors == []


@pytest.mark.asyncio
async def test_merge_keeps_fields_not_in_partial(control_sessions):
    store = ProgressStore(control_sessions)
    await store.replace(SyncJob(status=SyncStatus.processing, total=25, start_time=100.0))

    await store.merge({"processed": 10, "cursor": 10})
    job = await store.read()

    assert job.status == SyncStatus.processing
    assert job.total == 25
    assert job.processed == 10
    assert job.cursor == 10
    assert job.start_time == 100.0


@pytest.mark.asyncio
async def test_concurrent_merges_do_not_lose_fields(control_sessions):
    store = ProgressStore(control_sessions)
    await store.replace(SyncJob(status=SyncStatus.processing, total=25))

    await asyncio.gather(
        store.merge({"current": 7}),
        store.merge({"processed": 5}),
    )
    job = await store.read()

    assert job.current == 7
    assert job.processed == 5


@pytest.mark.asyncio
async def test_merge_with_failed_expectation_raises_and_leaves_job(control_sessions):
    store = ProgressStore(control_sessions)
    await store.replace(SyncJob(status=SyncStatus.cancelled, total=25, processed=10, cursor=10))

    with pytest.raises(StaleProgressError) as exc:
        await store.merge({"status": SyncStatus.completed}, expect={"status": SyncStatus.processing})

    assert exc.value.field == "status"
    assert exc.value.actual == "cancelled"
    assert (await store.read()).status == SyncStatus.cancelled


@pytest.mark.asyncio
async def test_merge_with_matching_expectation_applies(control_sessions):
    store = ProgressStore(control_sessions)
    await store.replace(SyncJob(status=SyncStatus.processing, total=25, cursor=10))

    job = await store.merge({"cursor": 20}, expect={"cursor": 10})

    assert job.cursor == 20


@pytest.mark.asyncio
async def test_error_list_is_capped_oldest_first(control_sessions):
    store = ProgressStore(control_sessions)
    await store.replace(SyncJob(status=SyncStatus.processing, total=100))

    await store.merge({"errors": [_error(i) for i in range(ERROR_LOG_LIMIT + 5)]})
    job = await store.read()

    assert len(job.errors) == ERROR_LOG_LIMIT
    assert job.errors[0].record_id == 5
    assert job.errors[-1].record_id == ERROR_LOG_LIMIT + 4


@pytest.mark.asyncio
async def test_stores_with_different_keys_are_independent(control_sessions):
    first = ProgressStore(control_sessions, key="first")
    second = ProgressStore(control_sessions, key="second")

    await first.replace(SyncJob(status=SyncStatus.processing, total=3))

    assert (await second.read()).status == SyncStatus.idle

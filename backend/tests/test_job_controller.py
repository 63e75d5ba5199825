import pytest

from productsync.schemas.sync import SyncJob, SyncStatus
from productsync.services.job_controller import SyncAlreadyRunningError, build_report


def test_report_for_never_started_job():
    report = build_report(SyncJob(), now=1000.0)

    assert report.status == SyncStatus.idle
    assert report.elapsed == 0
    assert report.percentage == 0
    assert report.estimated == 0


def test_report_derives_percentage_and_estimate():
    job = SyncJob(status=SyncStatus.processing, total=25, processed=10, start_time=1000.0)

    report = build_report(job, now=1030.0)

    assert report.elapsed == 30
    assert report.percentage == 40
    assert report.estimated == 75


def test_report_rounds_half_up():
    job = SyncJob(status=SyncStatus.processing, total=8, processed=1, start_time=1000.0)

    report = build_report(job, now=1001.0)

    assert report.percentage == 13  # 12.5
    assert report.estimated == 8


@pytest.mark.asyncio
async def test_start_snapshots_published_total(sync_engine, make_product):
    for i in range(3):
        await make_product(title=f"Product {i}")
    await make_product(status="draft")

    job = await sync_engine.jobs.start()

    assert job.status == SyncStatus.processing
    assert job.total == 3
    assert job.processed == job.cursor == 0
    assert job.errors == []
    assert job.start_time > 0


@pytest.mark.asyncio
async def test_start_with_limit_caps_total(sync_engine, make_product):
    for i in range(3):
        await make_product(title=f"Product {i}")

    assert (await sync_engine.jobs.start(limit=2)).total == 2
    assert (await sync_engine.jobs.start(limit=10, force=True)).total == 3


@pytest.mark.asyncio
async def test_start_while_processing_requires_force(sync_engine, make_product):
    await make_product()
    await sync_engine.jobs.start()
    await sync_engine.progress.merge({"processed": 1, "cursor": 1})

    with pytest.raises(SyncAlreadyRunningError):
        await sync_engine.jobs.start()
    assert (await sync_engine.progress.read()).processed == 1

    job = await sync_engine.jobs.start(force=True)
    assert job.processed == 0
    assert job.cursor == 0


@pytest.mark.asyncio
async def test_start_after_terminal_state_resets_job(sync_engine, make_product):
    await make_product()
    await sync_engine.jobs.start()
    await sync_engine.jobs.cancel()

    job = await sync_engine.jobs.start()

    assert job.status == SyncStatus.processing


@pytest.mark.asyncio
async def test_cancel_keeps_progress(sync_engine):
    await sync_engine.progress.replace(SyncJob(status=SyncStatus.processing, total=10, processed=4, cursor=4))

    job = await sync_engine.jobs.cancel()

    assert job.status == SyncStatus.cancelled
    assert job.processed == 4


@pytest.mark.asyncio
async def test_status_reports_stored_job(sync_engine):
    await sync_engine.progress.replace(
        SyncJob(status=SyncStatus.processing, total=20, processed=5, current=7, cursor=5, start_time=500.0)
    )

    report = await sync_engine.jobs.status(now=520.0)

    assert report.current == 7
    assert report.percentage == 25
    assert report.elapsed == 20
    assert report.estimated == 80

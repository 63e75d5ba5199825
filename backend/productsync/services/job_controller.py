import logging
import math
import time
from typing import Optional

from productsync.schemas.sync import ChunkResult, SyncJob, SyncReport, SyncStatus
from productsync.services.batch_processor import SYNC_STATUS, BatchProcessor
from productsync.services.progress_store import ProgressStore
from productsync.tenant_database import TenantRegistry

logger = logging.getLogger(__name__)


class SyncAlreadyRunningError(Exception):
    pass


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def build_report(job: SyncJob, now: Optional[float] = None) -> SyncReport:
    """Progress plus derived timing: elapsed seconds, percentage, estimated total duration."""
    now = time.time() if now is None else now
    elapsed = int(now - job.start_time) if job.start_time else 0
    percentage = _round_half_up(job.processed / job.total * 100) if job.total > 0 else 0
    estimated = _round_half_up(elapsed * job.total / job.processed) if job.processed > 0 else 0
    return SyncReport(
        status=job.status,
        current=job.current,
        total=job.total,
        processed=job.processed,
        percentage=percentage,
        errors=job.errors,
        elapsed=elapsed,
        estimated=estimated,
    )


class JobController:
    """Idle -> Processing -> Completed | Cancelled. Terminal states last until the next start()."""

    def __init__(self, registry: TenantRegistry, progress: ProgressStore, batch: BatchProcessor):
        self.registry = registry
        self.progress = progress
        self.batch = batch

    async def count_in_scope(self, limit: Optional[int] = None) -> int:
        async with self.registry.open(self.registry.master) as master:
            total = await master.products.count(status=SYNC_STATUS)
        if limit is not None:
            total = min(total, limit)
        return total

    async def start(self, limit: Optional[int] = None, force: bool = False) -> SyncJob:
        current = await self.progress.read()
        if current.status == SyncStatus.processing and not force:
            raise SyncAlreadyRunningError(
                f"A sync is already processing ({current.processed}/{current.total}); pass force to restart it"
            )

        total = await self.count_in_scope(limit)
        job = await self.progress.replace(
            SyncJob(
                status=SyncStatus.processing,
                total=total,
                processed=0,
                current=0,
                cursor=0,
                errors=[],
                start_time=time.time(),
            )
        )
        if current.status == SyncStatus.processing:
            logger.warning("Sync restarted by force; previous progress %d/%d discarded", current.processed, current.total)
        logger.info("Sync started: %d product(s) in scope%s", total, f" (limit {limit})" if limit else "")
        return job

    async def cancel(self) -> SyncJob:
        job = await self.progress.merge({"status": SyncStatus.cancelled})
        logger.info("Sync cancelled at %d/%d", job.processed, job.total)
        return job

    async def status(self, now: Optional[float] = None) -> SyncReport:
        return build_report(await self.progress.read(), now)

    async def run_chunk(self) -> ChunkResult:
        return await self.batch.run_chunk()

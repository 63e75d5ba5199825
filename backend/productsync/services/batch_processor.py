import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, List

from productsync.schemas.sync import ERROR_LOG_LIMIT, ChunkResult, SyncErrorEntry, SyncStatus
from productsync.services.progress_store import ProgressStore, StaleProgressError
from productsync.services.record_store import ProductSnapshot
from productsync.services.replicator import Replicator
from productsync.tenant_database import TenantRegistry

logger = logging.getLogger(__name__)

# Products per chunk; also what keeps one chunk call within a request time budget
BATCH_SIZE = 10

# Published products are the sync scope
SYNC_STATUS = "publish"


class BatchProcessor:
    def __init__(
        self,
        registry: TenantRegistry,
        progress: ProgressStore,
        replicator: Replicator,
        targets: Callable[[], Awaitable[List[str]]],
        batch_size: int = BATCH_SIZE,
    ):
        self.registry = registry
        self.progress = progress
        self.replicator = replicator
        self.targets = targets
        self.batch_size = batch_size
        self._lock = asyncio.Lock()

    async def run_chunk(self) -> ChunkResult:
        if self._lock.locked():
            return ChunkResult(status=SyncStatus.processing, message="A chunk is already running")
        async with self._lock:
            return await self._run_chunk()

    async def fetch_page(self, offset: int, limit: int) -> List[ProductSnapshot]:
        async with self.registry.open(self.registry.master) as master:
            products = await master.products.find(status=SYNC_STATUS, offset=offset, limit=limit)
            snapshots = []
            for product in products:
                snapshot = await master.products.load_snapshot(product.id)
                if snapshot is not None:
                    snapshots.append(snapshot)
            return snapshots

    async def _run_chunk(self) -> ChunkResult:
        job = await self.progress.read()
        if job.status != SyncStatus.processing:
            return ChunkResult(status=SyncStatus.idle, message="No sync in progress")

        # Never page past the snapshotted total, so a --limit run stops where it should
        page_size = min(self.batch_size, max(job.total - job.cursor, 0))
        page = await self.fetch_page(job.cursor, page_size) if page_size else []

        if not page:
            return await self._complete(job.processed, synced=0, message="Sync completed")

        targets = await self.targets()
        errors = list(job.errors)
        synced = 0
        for snapshot in page:
            outcomes = await self.replicator.replicate_to_targets(snapshot, targets)
            for outcome in outcomes:
                if not outcome.ok:
                    errors.append(
                        SyncErrorEntry(
                            record_id=snapshot.id,
                            tenant=outcome.tenant,
                            message=outcome.error,
                            timestamp=datetime.now(timezone.utc).isoformat(),
                        )
                    )
            errors = errors[-ERROR_LOG_LIMIT:]
            synced += 1
            # Errors are only persisted with the page, so a retried page never logs them twice
            await self.progress.merge({"current": job.cursor + synced})

        new_cursor = job.cursor + len(page)
        try:
            job = await self.progress.merge(
                {
                    "processed": job.processed + synced,
                    "cursor": new_cursor,
                    "current": new_cursor,
                    "errors": errors,
                },
                expect={"cursor": job.cursor},
            )
        except StaleProgressError as e:
            logger.warning("Chunk at cursor %d finished after progress moved on (%s); not advancing", job.cursor, e)
            return ChunkResult(status=SyncStatus.processing, synced=synced, message="Progress was advanced concurrently")

        logger.info("Sync chunk done: %d product(s), cursor %d/%d", synced, new_cursor, job.total)

        if new_cursor >= job.total:
            return await self._complete(job.total, synced=synced, message="Sync completed successfully")

        return ChunkResult(
            status=SyncStatus.processing,
            synced=synced,
            remaining=job.total - new_cursor,
            message=f"Processed {synced} products",
        )

    async def _complete(self, processed: int, synced: int, message: str) -> ChunkResult:
        try:
            job = await self.progress.merge(
                {"status": SyncStatus.completed, "processed": processed},
                expect={"status": SyncStatus.processing},
            )
        except StaleProgressError:
            job = await self.progress.read()
            logger.info("Sync finished its last chunk but is now %s; leaving it", job.status.value)
            return ChunkResult(status=job.status, synced=synced, message=f"Sync {job.status.value}")
        logger.info("Sync completed: %d product(s) processed", job.processed)
        return ChunkResult(status=SyncStatus.completed, synced=synced, total_processed=job.processed, message=message)

"""
Single entry point for every sync trigger.

The on-write hook, the periodic scheduler and the interactive polling API/CLI each
build a command and hand it to `SyncEngine.dispatch`, so all three share the same
replicator, batch processor and job state.
"""

import logging
from dataclasses import dataclass
from typing import List, Union

from sqlalchemy.ext.asyncio import async_sessionmaker

from productsync.config import Settings
from productsync.schemas.sync import ChunkResult
from productsync.services.batch_processor import BatchProcessor
from productsync.services.job_controller import JobController
from productsync.services.progress_store import ProgressStore
from productsync.services.replicator import ReplicationOutcome, Replicator
from productsync.services.tenant_targets import get_target_tenants
from productsync.tenant_database import TenantRegistry

logger = logging.getLogger(__name__)

# Products in this state are editor placeholders, never replicated on write
SKIPPED_ON_WRITE = {"auto-draft"}


@dataclass(frozen=True)
class ReplicateOne:
    product_id: int


@dataclass(frozen=True)
class DeleteReplicas:
    product_id: int


@dataclass(frozen=True)
class RunChunk:
    pass


SyncCommand = Union[ReplicateOne, DeleteReplicas, RunChunk]


class SyncEngine:
    def __init__(self, registry: TenantRegistry, control_sessions: async_sessionmaker, taxonomies=()):
        self.registry = registry
        self.control_sessions = control_sessions
        self.progress = ProgressStore(control_sessions)
        self.replicator = Replicator(registry, taxonomies)
        self.batch = BatchProcessor(registry, self.progress, self.replicator, self.target_tenants)
        self.jobs = JobController(registry, self.progress, self.batch)

    async def target_tenants(self) -> List[str]:
        async with self.control_sessions() as db:
            return await get_target_tenants(db, self.registry)

    async def dispatch(self, command: SyncCommand):
        if isinstance(command, ReplicateOne):
            return await self.replicate_one(command.product_id)
        if isinstance(command, DeleteReplicas):
            return await self.delete_replicas(command.product_id)
        if isinstance(command, RunChunk):
            return await self.run_chunk()
        raise TypeError(f"Unknown sync command: {command!r}")

    async def replicate_one(self, product_id: int) -> List[ReplicationOutcome]:
        async with self.registry.open(self.registry.master) as master:
            snapshot = await master.products.load_snapshot(product_id)
        if snapshot is None:
            logger.info("Product ID %s not found on master, nothing to replicate", product_id)
            return []
        if snapshot.fields.get("status") in SKIPPED_ON_WRITE:
            return []

        outcomes = await self.replicator.replicate_to_targets(snapshot, await self.target_tenants())
        failed = [o for o in outcomes if not o.ok]
        if failed:
            logger.warning(
                "Product ID %s replicated to %d of %d tenant(s)",
                product_id, len(outcomes) - len(failed), len(outcomes),
            )
        return outcomes

    async def delete_replicas(self, product_id: int) -> int:
        deleted = 0
        for tenant in await self.target_tenants():
            deleted += await self.replicator.delete_replicas(product_id, tenant)
        return deleted

    async def run_chunk(self) -> ChunkResult:
        return await self.jobs.run_chunk()

    async def close(self) -> None:
        await self.registry.dispose()


def build_engine(settings: Settings, control_sessions: async_sessionmaker) -> SyncEngine:
    registry = TenantRegistry(settings.tenant_databases, settings.master_tenant, settings.media_root)
    return SyncEngine(registry, control_sessions, settings.product_taxonomies)

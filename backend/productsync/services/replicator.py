import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from productsync.models.product import GALLERY_META_KEY, MASTER_ID_META_KEY
from productsync.services.asset_duplicator import AssetDuplicator
from productsync.services.record_store import ProductSnapshot, UpsertError, deserialize_meta_value
from productsync.tenant_database import TenantHandle, TenantRegistry

logger = logging.getLogger(__name__)


class ReplicationError(Exception):
    def __init__(self, source_id: int, tenant: str, reason: str):
        super().__init__(reason)
        self.source_id = source_id
        self.tenant = tenant
        self.reason = reason


@dataclass
class ReplicationOutcome:
    tenant: str
    target_id: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class Replicator:
    """Upserts one master product into one target tenant, with its meta, terms and images."""

    def __init__(self, registry: TenantRegistry, taxonomies: Iterable[str] = (), assets: Optional[AssetDuplicator] = None):
        self.registry = registry
        self.taxonomies = list(taxonomies)
        self.assets = assets or AssetDuplicator()

    async def replicate(self, source_id: int, snapshot: ProductSnapshot, target_tenant: str) -> int:
        if target_tenant == self.registry.master:
            raise ValueError("Cannot replicate into the master tenant")

        async with self.registry.scope(target_tenant) as target:
            products = target.products
            try:
                existing = await products.find(master_id=source_id, limit=1)
                target_id = existing[0].id if existing else None
                new_id = await products.upsert(target_id, snapshot.fields)
            except (UpsertError, SQLAlchemyError) as e:
                await target.session.rollback()
                logger.error("Error syncing product ID %s to tenant %s: %s", source_id, target_tenant, e)
                raise ReplicationError(source_id, target_tenant, str(e)) from e

            try:
                await products.set_metadata(new_id, MASTER_ID_META_KEY, source_id)
                await self._copy_meta_terms(snapshot, new_id, target)
                await self.assets.copy_product_images(snapshot, new_id, target)
                await target.session.commit()
            except SQLAlchemyError as e:
                await target.session.rollback()
                await target.assets.discard_written_files()
                logger.error("Error syncing product ID %s to tenant %s: %s", source_id, target_tenant, e)
                raise ReplicationError(source_id, target_tenant, str(e)) from e
            except Exception:
                await target.session.rollback()
                await target.assets.discard_written_files()
                raise

        logger.info("Synced product ID %s to tenant %s as %s", source_id, target_tenant, new_id)
        return new_id

    async def replicate_to_targets(self, snapshot: ProductSnapshot, targets: Iterable[str]) -> List[ReplicationOutcome]:
        """Replicate to every target in order; one tenant failing never stops the others."""
        outcomes = []
        for tenant in targets:
            try:
                target_id = await self.replicate(snapshot.id, snapshot, tenant)
            except ReplicationError as e:
                outcomes.append(ReplicationOutcome(tenant=tenant, error=e.reason))
            else:
                outcomes.append(ReplicationOutcome(tenant=tenant, target_id=target_id))
        return outcomes

    async def delete_replicas(self, source_id: int, target_tenant: str) -> int:
        async with self.registry.scope(target_tenant) as target:
            replicas = await target.products.find(master_id=source_id)
            for replica in replicas:
                await target.products.delete(replica.id)
                logger.info(
                    "Deleted product ID %s on tenant %s synced from master ID %s",
                    replica.id, target_tenant, source_id,
                )
            await target.session.commit()
        return len(replicas)

    async def _copy_meta_terms(self, snapshot: ProductSnapshot, target_id: int, target: TenantHandle) -> None:
        products = target.products
        for key, values in snapshot.metadata.items():
            # The gallery is rewritten with the duplicated asset ids
            if key in (MASTER_ID_META_KEY, GALLERY_META_KEY):
                continue
            decoded = [deserialize_meta_value(v) for v in values]
            await products.set_metadata(target_id, key, decoded[0])
            for value in decoded[1:]:
                await products.add_metadata(target_id, key, value)

        for taxonomy in dict.fromkeys([*self.taxonomies, *snapshot.terms]):
            await products.set_terms(target_id, taxonomy, snapshot.terms.get(taxonomy, []))

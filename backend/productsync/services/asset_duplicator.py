import logging
from typing import List, Optional

from productsync.models.product import GALLERY_META_KEY
from productsync.services.asset_store import SourceAsset
from productsync.services.record_store import ProductSnapshot
from productsync.tenant_database import TenantHandle

logger = logging.getLogger(__name__)


class AssetDuplicator:
    """Copies master assets into a target tenant. Every failure here is soft: the asset is skipped."""

    async def duplicate(self, source: Optional[SourceAsset], owner_id: int, target: TenantHandle) -> Optional[int]:
        if source is None:
            return None
        if source.data is None:
            logger.warning("Asset %s skipped for %s: source file unavailable", source.id, target.tenant_id)
            return None

        assets = target.assets
        try:
            file_name = await assets.unique_filename(source.path.name)
            dest_path = await assets.write_bytes(file_name, source.data)
        except OSError as e:
            logger.warning("Asset %s skipped for %s: could not write file (%s)", source.id, target.tenant_id, e)
            return None

        asset_id = await assets.insert_asset(
            {"title": source.title, "mime_type": source.mime_type},
            file_name,
            owner_id,
        )
        await assets.generate_derived_metadata(asset_id, dest_path)
        logger.debug("Duplicated asset %s to %s as %s (%s)", source.id, target.tenant_id, asset_id, file_name)
        return asset_id

    async def copy_featured_image(self, snapshot: ProductSnapshot, target_id: int, target: TenantHandle) -> Optional[int]:
        if not snapshot.thumbnail_id:
            return None
        new_id = await self.duplicate(snapshot.thumbnail, target_id, target)
        if new_id:
            await target.products.set_primary_image(target_id, new_id)
        return new_id

    async def copy_gallery(self, snapshot: ProductSnapshot, target_id: int, target: TenantHandle) -> Optional[List[int]]:
        if snapshot.gallery_ids is None:
            return None
        new_ids = []
        for old_id in snapshot.gallery_ids:
            new_id = await self.duplicate(snapshot.gallery_assets.get(old_id), target_id, target)
            if new_id:
                new_ids.append(new_id)
        await target.products.set_metadata(target_id, GALLERY_META_KEY, ",".join(str(i) for i in new_ids))
        return new_ids

    async def copy_product_images(self, snapshot: ProductSnapshot, target_id: int, target: TenantHandle) -> None:
        await self.copy_featured_image(snapshot, target_id, target)
        await self.copy_gallery(snapshot, target_id, target)

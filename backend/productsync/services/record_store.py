import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from sqlalchemy import Text, cast, delete, func, select
from sqlalchemy.exc import SQLAlchemyError

from productsync.models.product import (
    GALLERY_META_KEY,
    MASTER_ID_META_KEY,
    PRODUCT_FIELDS,
    Product,
    ProductMeta,
    ProductTerm,
)
from productsync.services.asset_store import SourceAsset

logger = logging.getLogger(__name__)


class UpsertError(Exception):
    pass


@dataclass
class ProductSnapshot:
    """Everything replication needs from a master product, read before any target tenant is entered."""

    id: int
    fields: Dict[str, Any]
    metadata: Dict[str, List[Any]]
    terms: Dict[str, List[str]]
    thumbnail: Optional[SourceAsset] = None
    thumbnail_id: Optional[int] = None
    gallery_ids: Optional[List[int]] = None  # None when the product has no gallery meta at all
    gallery_assets: Dict[int, SourceAsset] = field(default_factory=dict)


def deserialize_meta_value(value: Any) -> Any:
    """Decode structured values that arrive as serialized JSON text so they are stored natively."""
    if isinstance(value, str) and value[:1] in ("{", "["):
        try:
            return json.loads(value)
        except ValueError:
            return value
    return value


def parse_gallery(value: Any) -> List[int]:
    ids = []
    for part in str(value or "").split(","):
        part = part.strip()
        if part.isdigit() and int(part) > 0:
            ids.append(int(part))
    return ids


class ProductStore:
    """Product records, metadata and taxonomy terms of one tenant."""

    def __init__(self, handle):
        self.handle = handle
        self.session = handle.session

    @property
    def tenant_id(self) -> str:
        return self.handle.tenant_id

    async def find(
        self,
        status: Optional[str] = None,
        master_id: Optional[int] = None,
        offset: int = 0,
        limit: Optional[int] = None,
    ) -> List[Product]:
        query = select(Product)
        if status is not None:
            query = query.where(Product.status == status)
        if master_id is not None:
            linked = select(ProductMeta.product_id).where(
                ProductMeta.meta_key == MASTER_ID_META_KEY,
                cast(ProductMeta.meta_value, Text) == json.dumps(master_id),
            )
            query = query.where(Product.id.in_(linked))
        query = query.order_by(Product.id.asc()).offset(offset)
        if limit is not None:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def count(self, status: Optional[str] = None) -> int:
        query = select(func.count(Product.id))
        if status is not None:
            query = query.where(Product.status == status)
        return (await self.session.execute(query)).scalar() or 0

    async def get(self, product_id: int) -> Optional[Product]:
        return await self.session.get(Product, product_id)

    async def upsert(self, product_id: Optional[int], fields: Dict[str, Any]) -> int:
        values = {k: v for k, v in fields.items() if k in PRODUCT_FIELDS}
        try:
            if product_id is None:
                product = Product(**values)
                self.session.add(product)
            else:
                product = await self.session.get(Product, product_id)
                if product is None:
                    raise UpsertError(f"Product {product_id} does not exist in tenant {self.tenant_id}")
                for key, value in values.items():
                    setattr(product, key, value)
            await self.session.flush()
        except SQLAlchemyError as e:
            raise UpsertError(str(e)) from e
        return product.id

    async def delete(self, product_id: int) -> None:
        await self.session.execute(delete(ProductMeta).where(ProductMeta.product_id == product_id))
        await self.session.execute(delete(ProductTerm).where(ProductTerm.product_id == product_id))
        await self.session.execute(delete(Product).where(Product.id == product_id))

    async def get_metadata(self, product_id: int) -> Dict[str, List[Any]]:
        result = await self.session.execute(
            select(ProductMeta.meta_key, ProductMeta.meta_value)
            .where(ProductMeta.product_id == product_id)
            .order_by(ProductMeta.id)
        )
        meta: Dict[str, List[Any]] = {}
        for key, value in result.all():
            meta.setdefault(key, []).append(value)
        return meta

    async def set_metadata(self, product_id: int, key: str, value: Any) -> None:
        """Replace every value stored under `key` with a single value."""
        await self.session.execute(
            delete(ProductMeta).where(ProductMeta.product_id == product_id, ProductMeta.meta_key == key)
        )
        await self.add_metadata(product_id, key, value)

    async def add_metadata(self, product_id: int, key: str, value: Any) -> None:
        self.session.add(ProductMeta(product_id=product_id, meta_key=key, meta_value=value))
        await self.session.flush()

    async def get_terms(self, product_id: int, taxonomy: str) -> List[str]:
        result = await self.session.execute(
            select(ProductTerm.slug)
            .where(ProductTerm.product_id == product_id, ProductTerm.taxonomy == taxonomy)
            .order_by(ProductTerm.id)
        )
        return list(result.scalars().all())

    async def get_all_terms(self, product_id: int) -> Dict[str, List[str]]:
        result = await self.session.execute(
            select(ProductTerm.taxonomy, ProductTerm.slug)
            .where(ProductTerm.product_id == product_id)
            .order_by(ProductTerm.id)
        )
        terms: Dict[str, List[str]] = {}
        for taxonomy, slug in result.all():
            terms.setdefault(taxonomy, []).append(slug)
        return terms

    async def set_terms(self, product_id: int, taxonomy: str, slugs: List[str]) -> None:
        await self.session.execute(
            delete(ProductTerm).where(ProductTerm.product_id == product_id, ProductTerm.taxonomy == taxonomy)
        )
        for slug in dict.fromkeys(slugs):
            self.session.add(ProductTerm(product_id=product_id, taxonomy=taxonomy, slug=slug))
        await self.session.flush()

    async def set_primary_image(self, product_id: int, asset_id: Optional[int]) -> None:
        product = await self.session.get(Product, product_id)
        if product is not None:
            product.thumbnail_id = asset_id
            await self.session.flush()

    async def load_snapshot(self, product_id: int) -> Optional[ProductSnapshot]:
        product = await self.get(product_id)
        if product is None:
            return None

        metadata = await self.get_metadata(product_id)
        assets = self.handle.assets
        snapshot = ProductSnapshot(
            id=product.id,
            fields={name: getattr(product, name) for name in PRODUCT_FIELDS},
            metadata=metadata,
            terms=await self.get_all_terms(product_id),
            thumbnail_id=product.thumbnail_id,
        )
        if product.thumbnail_id:
            snapshot.thumbnail = await assets.source_asset(product.thumbnail_id)

        if GALLERY_META_KEY in metadata:
            snapshot.gallery_ids = parse_gallery(metadata[GALLERY_META_KEY][0])
            for asset_id in snapshot.gallery_ids:
                source = await assets.source_asset(asset_id)
                if source is not None:
                    snapshot.gallery_assets[asset_id] = source
        return snapshot

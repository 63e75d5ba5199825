import json
import os
import tempfile

# Set required env vars before any productsync module is imported so
# pydantic-settings validation succeeds and nothing points at a real server.
_tmp = tempfile.mkdtemp(prefix="productsync-tests-")
_test_env = {
    "CONTROL_DATABASE_URL": f"sqlite+aiosqlite:///{os.path.join(_tmp, 'control.db')}",
    "TENANT_DATABASES": json.dumps({"main": f"sqlite+aiosqlite:///{os.path.join(_tmp, 'main.db')}"}),
    "MASTER_TENANT": "main",
    "MEDIA_ROOT": os.path.join(_tmp, "media"),
    "SCHEDULER_ENABLED": "false",
    "JWT_SECRET": "test-secret",
    "CORS_ORIGINS": '["http://localhost:5173"]',
}

for key, value in _test_env.items():
    os.environ.setdefault(key, value)

import pytest_asyncio  # noqa: E402
from PIL import Image  # noqa: E402
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine  # noqa: E402

from productsync.control_database import Base  # noqa: E402
from productsync.models import sync_progress, sync_setting, user  # noqa: E402,F401
from productsync.models.asset import Asset  # noqa: E402
from productsync.models.product import GALLERY_META_KEY, Product  # noqa: E402
from productsync.services.sync_engine import SyncEngine  # noqa: E402
from productsync.services.tenant_targets import set_target_tenants  # noqa: E402
from productsync.tenant_database import TenantRegistry  # noqa: E402

TENANTS = ("main", "shop-a", "shop-b", "shop-c")
TARGETS = ["shop-a", "shop-b", "shop-c"]


@pytest_asyncio.fixture
async def registry(tmp_path):
    databases = {t: f"sqlite+aiosqlite:///{tmp_path / f'{t}.db'}" for t in TENANTS}
    reg = TenantRegistry(databases, "main", tmp_path / "media")
    await reg.init_schemas()
    yield reg
    await reg.dispose()


@pytest_asyncio.fixture
async def control_sessions(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'control.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, expire_on_commit=False)
    await engine.dispose()


@pytest_asyncio.fixture
async def sync_engine(registry, control_sessions):
    engine = SyncEngine(registry, control_sessions, taxonomies=["product_cat", "product_tag"])
    async with control_sessions() as db:
        await set_target_tenants(db, registry, TARGETS)
    return engine


@pytest_asyncio.fixture
async def make_asset(registry):
    """Create an asset row on a tenant; the PNG file is written unless `on_disk=False`."""

    async def _make(
        file_name="photo.png", tenant="main", on_disk=True, size=(400, 200), title="Photo", mime_type="image/png"
    ):
        media_dir = registry.media_dir(tenant)
        if on_disk:
            media_dir.mkdir(parents=True, exist_ok=True)
            Image.new("RGB", size, color=(200, 30, 30)).save(media_dir / file_name, format="PNG")
        async with registry.open(tenant) as handle:
            asset = Asset(title=title, mime_type=mime_type, file_name=file_name)
            handle.session.add(asset)
            await handle.session.commit()
            return asset.id

    return _make


@pytest_asyncio.fixture
async def make_product(registry):
    """Create a product on a tenant with optional meta, terms, thumbnail and gallery."""

    async def _make(
        title="Widget",
        tenant="main",
        status="publish",
        meta=None,
        terms=None,
        thumbnail_id=None,
        gallery=None,
        **fields,
    ):
        async with registry.open(tenant) as handle:
            product = Product(title=title, status=status, thumbnail_id=thumbnail_id, **fields)
            handle.session.add(product)
            await handle.session.flush()
            for key, value in (meta or {}).items():
                await handle.products.add_metadata(product.id, key, value)
            for taxonomy, slugs in (terms or {}).items():
                await handle.products.set_terms(product.id, taxonomy, slugs)
            if gallery is not None:
                await handle.products.add_metadata(product.id, GALLERY_META_KEY, ",".join(str(i) for i in gallery))
            await handle.session.commit()
            return product.id

    return _make


@pytest_asyncio.fixture
async def find_replicas(registry):
    async def _find(tenant, master_id):
        async with registry.open(tenant) as handle:
            return await handle.products.find(master_id=master_id)

    return _find

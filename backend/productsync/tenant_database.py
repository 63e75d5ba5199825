import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import AsyncIterator, Dict, List

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class CatalogBase(DeclarativeBase):
    """Tables present in every tenant database (products, meta, terms, assets)."""


class UnknownTenantError(KeyError):
    pass


@dataclass
class TenantHandle:
    tenant_id: str
    session: AsyncSession
    media_dir: Path
    # Files written during this scope, removed again if its transaction is rolled back
    written_files: List[Path] = field(default_factory=list)

    @property
    def products(self):
        from productsync.services.record_store import ProductStore

        return ProductStore(self)

    @property
    def assets(self):
        from productsync.services.asset_store import AssetStore

        return AssetStore(self)


class TenantRegistry:
    """One engine per tenant database, plus the scoped execution context for target tenants.

    `open()` hands out a plain handle and is what master reads use. `scope()` is the
    exclusive context replication writes go through: only one target tenant is active
    per process at a time, and the active-tenant stack is restored on every exit path.
    """

    def __init__(self, databases: Dict[str, str], master: str, media_root: Path):
        if master not in databases:
            raise UnknownTenantError(f"Master tenant {master!r} has no database configured")
        self.master = master
        self.media_root = Path(media_root)
        self._engines: Dict[str, AsyncEngine] = {}
        self._sessions: Dict[str, async_sessionmaker] = {}
        for tenant_id, url in databases.items():
            engine = create_async_engine(url, echo=False, pool_pre_ping=True)
            self._engines[tenant_id] = engine
            self._sessions[tenant_id] = async_sessionmaker(engine, expire_on_commit=False)
        self._scope_lock = asyncio.Lock()
        self._active: List[str] = [master]
        logger.info("Tenant registry initialised: master=%s tenants=%s", master, ", ".join(self.tenant_ids))

    @property
    def tenant_ids(self) -> List[str]:
        return list(self._engines)

    @property
    def active_tenant(self) -> str:
        return self._active[-1]

    def is_known(self, tenant_id: str) -> bool:
        return tenant_id in self._engines

    def media_dir(self, tenant_id: str) -> Path:
        self._require(tenant_id)
        return self.media_root / tenant_id

    def _require(self, tenant_id: str) -> None:
        if tenant_id not in self._engines:
            raise UnknownTenantError(f"Unknown tenant {tenant_id!r}")

    @asynccontextmanager
    async def open(self, tenant_id: str) -> AsyncIterator[TenantHandle]:
        self._require(tenant_id)
        async with self._sessions[tenant_id]() as session:
            yield TenantHandle(tenant_id, session, self.media_dir(tenant_id))

    @asynccontextmanager
    async def scope(self, tenant_id: str) -> AsyncIterator[TenantHandle]:
        self._require(tenant_id)
        async with self._scope_lock:
            self._active.append(tenant_id)
            try:
                async with self._sessions[tenant_id]() as session:
                    yield TenantHandle(tenant_id, session, self.media_dir(tenant_id))
            finally:
                self._active.pop()

    async def init_schemas(self) -> None:
        # Import catalog models so they are registered with CatalogBase.metadata
        from productsync.models import asset, product  # noqa: F401

        for tenant_id, engine in self._engines.items():
            async with engine.begin() as conn:
                await conn.run_sync(CatalogBase.metadata.create_all)
            self.media_dir(tenant_id).mkdir(parents=True, exist_ok=True)
        logger.info("Catalog schema created/verified on %d tenant(s)", len(self._engines))

    async def dispose(self) -> None:
        for engine in self._engines.values():
            await engine.dispose()

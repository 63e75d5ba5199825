import logging
from typing import List

from sqlalchemy.ext.asyncio import AsyncSession

from productsync.models.sync_setting import TARGET_TENANTS_KEY, SyncSetting
from productsync.tenant_database import TenantRegistry, UnknownTenantError

logger = logging.getLogger(__name__)


async def get_target_tenants(db: AsyncSession, registry: TenantRegistry) -> List[str]:
    """Configured target tenants, in configured order, without the master or tenants no longer known."""
    setting = await db.get(SyncSetting, TARGET_TENANTS_KEY)
    selected = setting.value if setting and setting.value else []
    targets = []
    for tenant_id in selected:
        if tenant_id == registry.master or tenant_id in targets:
            continue
        if not registry.is_known(tenant_id):
            logger.warning("Configured target tenant %s has no database, skipping", tenant_id)
            continue
        targets.append(tenant_id)
    return targets


async def set_target_tenants(db: AsyncSession, registry: TenantRegistry, tenant_ids: List[str]) -> List[str]:
    unknown = [t for t in tenant_ids if not registry.is_known(t)]
    if unknown:
        raise UnknownTenantError(f"Unknown tenant(s): {', '.join(unknown)}")

    targets: List[str] = []
    for tenant_id in tenant_ids:
        if tenant_id != registry.master and tenant_id not in targets:
            targets.append(tenant_id)

    setting = await db.get(SyncSetting, TARGET_TENANTS_KEY)
    if setting is None:
        db.add(SyncSetting(key=TARGET_TENANTS_KEY, value=targets))
    else:
        setting.value = targets
    await db.commit()
    logger.info("Target tenants updated: %s", ", ".join(targets) or "(none)")
    return targets

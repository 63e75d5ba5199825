from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from productsync.auth_deps import require_admin
from productsync.control_database import get_db
from productsync.routers.sync import get_sync_engine
from productsync.schemas.sync import TargetTenantsBody, TargetTenantsResponse
from productsync.services.sync_engine import SyncEngine
from productsync.services.tenant_targets import get_target_tenants, set_target_tenants
from productsync.tenant_database import UnknownTenantError

router = APIRouter()


def _response(engine: SyncEngine, selected) -> TargetTenantsResponse:
    registry = engine.registry
    return TargetTenantsResponse(
        master=registry.master,
        available=[t for t in registry.tenant_ids if t != registry.master],
        selected=selected,
    )


@router.get("/admin/sync/targets", response_model=TargetTenantsResponse)
async def get_targets(
    db: AsyncSession = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
    _=Depends(require_admin),
) -> TargetTenantsResponse:
    return _response(engine, await get_target_tenants(db, engine.registry))


@router.put("/admin/sync/targets", response_model=TargetTenantsResponse)
async def put_targets(
    body: TargetTenantsBody,
    db: AsyncSession = Depends(get_db),
    engine: SyncEngine = Depends(get_sync_engine),
    _=Depends(require_admin),
) -> TargetTenantsResponse:
    try:
        selected = await set_target_tenants(db, engine.registry, body.tenants)
    except UnknownTenantError as e:
        raise HTTPException(status_code=400, detail=e.args[0])
    return _response(engine, selected)

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from core.tenancy import get_tenant_id
from db.session import get_db
from services.container import get_sync_service
from services.sync_service import SyncService
from schemas.responses import ApiResponse
from helpers import cache_clear_prefix, tenant_prefix

router = APIRouter(prefix="/sync", tags=["sync"])


@router.post("/run", response_model=ApiResponse[dict])
async def run_sync(
    request: Request,
    client_company_id: int = Query(..., ge=1),
    tenant_id: str = Depends(get_tenant_id),
    db: Session = Depends(get_db),
    sync: SyncService = Depends(get_sync_service),
):
    """
    Run one accounting sync cycle manually.
    After sync, we clear the tenant's TTL cached dashboard data.
    """
    res = await sync.run_one_cycle(db, tenant_id, client_company_id)

    cache = getattr(request.app.state, "ttl_cache", None)
    if cache is not None:
        res["ttl_cache_cleared_keys"] = cache_clear_prefix(cache, tenant_prefix(tenant_id))

    return ApiResponse(data=res)

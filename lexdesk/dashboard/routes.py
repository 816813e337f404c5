"""Operator API routes"""

import os
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Header

from lexdesk.gateway.dependencies import Services, get_services
from lexdesk.gateway.models import TenantCreateBody

router = APIRouter(prefix="/api/admin", tags=["admin"])


def verify_admin_key(admin_key: Optional[str] = Header(None, alias="X-Admin-Key")) -> str:
    """Verify admin API key"""
    expected_key = os.getenv("ADMIN_API_KEY")
    if not expected_key:
        raise HTTPException(status_code=500, detail="Admin key not configured")
    if admin_key != expected_key:
        raise HTTPException(status_code=401, detail="Invalid admin key")
    return admin_key


@router.get("/tenants")
async def list_tenants(
    admin_key: str = Depends(verify_admin_key),
    services: Services = Depends(get_services),
):
    """List all tenants"""
    tenants = await services.tenants.list_tenants()
    return {
        "tenants": [
            {
                "id": tenant.id,
                "name": tenant.name,
                "schema_name": tenant.schema_name,
                "is_active": tenant.is_active,
                "plan_id": tenant.plan_id,
                "created_at": tenant.created_at.isoformat(),
            }
            for tenant in tenants
        ],
        "total": len(tenants),
    }


@router.post("/tenants", status_code=201)
async def onboard_tenant(
    body: TenantCreateBody,
    admin_key: str = Depends(verify_admin_key),
    services: Services = Depends(get_services),
):
    """Create a tenant and its namespace"""
    tenant = await services.tenants.create_tenant(body.name, plan_id=body.plan_id)
    return tenant.model_dump(mode="json")


@router.post("/tenants/{tenant_id}/deactivate")
async def deactivate_tenant(
    tenant_id: str,
    admin_key: str = Depends(verify_admin_key),
    services: Services = Depends(get_services),
):
    tenant = await services.tenants.deactivate_tenant(tenant_id)
    return tenant.model_dump(mode="json") if tenant else {"id": tenant_id, "is_active": False}


@router.get("/tenants/{tenant_id}/quota")
async def tenant_quota(
    tenant_id: str,
    admin_key: str = Depends(verify_admin_key),
    services: Services = Depends(get_services),
):
    """Plan usage for one tenant"""
    status = await services.monitoring.quota_status(tenant_id)
    return {"tenant_id": tenant_id, **status, "timestamp": datetime.now(timezone.utc).isoformat()}


@router.post("/tenants/{tenant_id}/trackings/resync")
async def resync_trackings(
    tenant_id: str,
    admin_key: str = Depends(verify_admin_key),
    services: Services = Depends(get_services),
):
    """Mirror the provider's tracking list into the tenant"""
    await services.tenants.resolve(tenant_id)
    summary = await services.monitoring.resync_trackings(tenant_id)
    return {"tenant_id": tenant_id, **summary}

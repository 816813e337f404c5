"""
LexDesk API - Main FastAPI Application

Tenant-facing endpoints for provider requests, trackings, case timelines and
quota, plus the provider's webhook callback.
"""

import json
import os
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from lexdesk.database.ddl import create_platform_tables
from lexdesk.database.engine import SqlExecutor, create_engine_from_env
from lexdesk.errors import InvalidWebhook, LexDeskError
from lexdesk.gateway.dependencies import Services, TenantContext, get_context, get_services, get_tenant_id
from lexdesk.gateway.models import InvoiceBody, RegistrySearchBody, RequestCreateBody, TrackingCreateBody
from lexdesk.logging_config import configure_logging
from lexdesk.models.ledger import InvoiceCreate


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events"""
    configure_logging()
    executor = SqlExecutor(create_engine_from_env())
    await create_platform_tables(executor)
    services = Services.build(executor)
    await services.connect()
    app.state.services = services
    yield
    await services.close()
    await executor.dispose()


app = FastAPI(
    title="LexDesk API",
    description="Multi-tenant legal practice monitoring core",
    version="0.1.0",
    lifespan=lifespan,
)

from lexdesk.dashboard.routes import router as dashboard_router  # noqa: E402
app.include_router(dashboard_router)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(LexDeskError)
async def lexdesk_error_handler(request: Request, exc: LexDeskError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.get("/health")
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint"""
    database = await services.executor.health_check() if services.executor else False
    cache = False
    if services.tenants.redis_client:
        try:
            cache = bool(await services.tenants.redis_client.ping())
        except Exception:
            cache = False
    return {
        "status": "healthy" if database else "degraded",
        "database": "connected" if database else "disconnected",
        "cache": "connected" if cache else "disconnected",
        "version": "0.1.0",
    }


# Provider webhook

@app.post("/webhooks/provider")
async def provider_webhook(
    request: Request,
    tenant_id: Optional[str] = Query(None, alias="tenantId"),
    user_id: Optional[str] = Query(None, alias="userId"),
    services: Services = Depends(get_services),
):
    """Callback target registered with every tracking"""
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise InvalidWebhook("Webhook body is not valid JSON") from e
    await services.reconciler.handle(body, tenant_id=tenant_id, user_id=user_id)
    return {"received": True}


# One-off requests

@app.get("/api/requests")
async def list_requests(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    items = await services.monitoring.list_requests(ctx.tenant_id, ctx.user_id, limit=limit, offset=offset)
    return {"items": items}


@app.post("/api/requests", status_code=201)
async def create_request(
    body: RequestCreateBody,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.create_search_request(
        ctx.tenant_id, ctx.user_id, {"search": body.search.descriptor().model_dump()}, wait=body.wait
    )


@app.get("/api/requests/{record_id}")
async def get_request(
    record_id: str,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.get_request(ctx.tenant_id, ctx.user_id, record_id)


@app.post("/api/requests/{record_id}/refresh")
async def refresh_request(
    record_id: str,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.refresh_request(ctx.tenant_id, ctx.user_id, record_id)


@app.post("/api/search/registry")
async def search_registry(
    body: RegistrySearchBody,
    tenant_id: str = Depends(get_tenant_id),
    services: Services = Depends(get_services),
):
    """Lawsuits linked to a registry number"""
    items = await services.monitoring.search_by_registry(tenant_id, body.registry_number, body.region.upper())
    return {"items": items, "total": len(items)}


# Trackings

@app.get("/api/trackings")
async def list_trackings(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    force_sync: bool = False,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.list_trackings(
        ctx.tenant_id, ctx.user_id, page=page, page_size=page_size, status=status, force_sync=force_sync
    )


@app.post("/api/trackings", status_code=201)
async def register_tracking(
    body: TrackingCreateBody,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.register_tracking(
        ctx.tenant_id, ctx.user_id, body.registration(), mode=body.mode
    )


@app.get("/api/trackings/{tracking_id}")
async def get_tracking(
    tracking_id: str,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.get_tracking(ctx.tenant_id, ctx.user_id, tracking_id)


@app.post("/api/trackings/{tracking_id}/pause")
async def pause_tracking(
    tracking_id: str,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.pause_tracking(ctx.tenant_id, ctx.user_id, tracking_id)


@app.post("/api/trackings/{tracking_id}/resume")
async def resume_tracking(
    tracking_id: str,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.resume_tracking(ctx.tenant_id, ctx.user_id, tracking_id)


@app.delete("/api/trackings/{tracking_id}")
async def delete_tracking(
    tracking_id: str,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.delete_tracking(ctx.tenant_id, ctx.user_id, tracking_id)


@app.get("/api/trackings/{tracking_id}/history")
async def tracking_history(
    tracking_id: str,
    page: Optional[int] = Query(None, ge=1),
    page_size: Optional[int] = Query(None, ge=1, le=100),
    created_at_gte: Optional[str] = None,
    created_at_lte: Optional[str] = None,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    """Fetch history from the provider (counts against the quota)"""
    return await services.monitoring.get_tracking_history(
        ctx.tenant_id,
        ctx.user_id,
        tracking_id,
        page=page,
        page_size=page_size,
        created_at_gte=created_at_gte,
        created_at_lte=created_at_lte,
    )


@app.get("/api/trackings/{tracking_id}/local-history")
async def local_history(
    tracking_id: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.local_history(
        ctx.tenant_id, ctx.user_id, tracking_id, page=page, page_size=page_size
    )


@app.get("/api/trackings/{tracking_id}/history/{response_id}")
async def history_item(
    tracking_id: str,
    response_id: str,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.history_item(ctx.tenant_id, ctx.user_id, tracking_id, response_id)


# Timelines

@app.get("/api/history")
async def history_lookup(
    search_type: str = Query(..., min_length=1),
    search_key: str = Query(..., min_length=1),
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    return await services.monitoring.history_lookup(ctx.tenant_id, ctx.user_id, search_type, search_key)


@app.get("/api/public/history")
async def public_history_lookup(
    search_type: str = Query(..., min_length=1),
    search_key: str = Query(..., min_length=1),
    services: Services = Depends(get_services),
):
    return await services.monitoring.public_history_lookup(search_type, search_key)


@app.post("/api/public/requests", status_code=201)
async def create_public_request(
    body: RequestCreateBody,
    tenant_id: str = Depends(get_tenant_id),
    services: Services = Depends(get_services),
):
    return await services.monitoring.create_public_request(
        tenant_id, {"search": body.search.descriptor().model_dump()}, wait=body.wait
    )


# Quota and receivables

@app.get("/api/quota")
async def quota_status(
    tenant_id: str = Depends(get_tenant_id),
    services: Services = Depends(get_services),
):
    return await services.monitoring.quota_status(tenant_id)


@app.post("/api/invoices", status_code=201)
async def create_invoice(
    body: InvoiceBody,
    ctx: TenantContext = Depends(get_context),
    services: Services = Depends(get_services),
):
    """Issue a receivable; gated by the monthly receivables allowance"""
    records = await services.tenants.records(ctx.tenant_id)
    return await services.invoices.create_invoice(
        records, ctx.tenant_id, InvoiceCreate(**body.model_dump()), created_by=ctx.user_id
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "lexdesk.gateway.main:app",
        host=os.getenv("GATEWAY_HOST", "0.0.0.0"),
        port=int(os.getenv("GATEWAY_PORT", "8000")),
    )

"""Shared components and request context for the API routes"""

import os
from typing import Optional

from fastapi import Header, HTTPException, Request
from pydantic import BaseModel

from lexdesk.provider.client import ProviderClient
from lexdesk.provider.monitoring import MonitoringService
from lexdesk.quota.ledger import QuotaLedger
from lexdesk.quota.limiter import PeriodFlags
from lexdesk.services.emails import EmailService
from lexdesk.services.invoices import InvoicesService
from lexdesk.services.notifications import NotificationService
from lexdesk.services.publications import PublicationsService
from lexdesk.services.transactions import TransactionsService
from lexdesk.tenancy.platform import PlatformStore
from lexdesk.tenancy.tenant_manager import TenantManager
from lexdesk.webhooks.ownership import OwnershipResolver
from lexdesk.webhooks.reconciler import WebhookReconciler


class Services:
    """Everything the routes need, wired once per application"""

    def __init__(
        self,
        tenants: TenantManager,
        provider: ProviderClient,
        flags: PeriodFlags,
        ledger: QuotaLedger,
        monitoring: MonitoringService,
        reconciler: WebhookReconciler,
        invoices: InvoicesService,
        executor=None,
    ):
        self.tenants = tenants
        self.provider = provider
        self.flags = flags
        self.ledger = ledger
        self.monitoring = monitoring
        self.reconciler = reconciler
        self.invoices = invoices
        self.executor = executor

    @classmethod
    def build(cls, executor, provider: Optional[ProviderClient] = None) -> "Services":
        tenants = TenantManager(PlatformStore(executor), executor)
        provider = provider or ProviderClient()
        flags = PeriodFlags()
        notifications = NotificationService()
        ledger = QuotaLedger(tenants, TransactionsService(), notifications, flags)
        ownership = OwnershipResolver(tenants)
        return cls(
            tenants=tenants,
            provider=provider,
            flags=flags,
            ledger=ledger,
            monitoring=MonitoringService(tenants, provider, ledger, ownership),
            reconciler=WebhookReconciler(
                tenants, provider, ownership, notifications, PublicationsService(), EmailService()
            ),
            invoices=InvoicesService(ledger),
            executor=executor,
        )

    async def connect(self):
        """Connect the Redis-backed caches"""
        redis_host = os.getenv("REDIS_HOST", "localhost")
        redis_port = int(os.getenv("REDIS_PORT", "6379"))
        await self.tenants.connect(redis_host, redis_port)
        await self.flags.connect(redis_host, redis_port)

    async def close(self):
        await self.tenants.disconnect()
        await self.flags.disconnect()
        await self.provider.close()


class TenantContext(BaseModel):
    tenant_id: str
    user_id: str


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_tenant_id(tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id")) -> str:
    if not tenant_id:
        raise HTTPException(status_code=400, detail="Missing X-Tenant-Id header")
    return tenant_id


def get_context(
    tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    user_id: Optional[str] = Header(None, alias="X-User-Id"),
) -> TenantContext:
    """Tenant and user the call acts for"""
    if not tenant_id:
        raise HTTPException(status_code=400, detail="Missing X-Tenant-Id header")
    if not user_id:
        raise HTTPException(status_code=400, detail="Missing X-User-Id header")
    return TenantContext(tenant_id=tenant_id, user_id=user_id)

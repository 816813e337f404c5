"""Tenant resolution and storage"""

import json
import logging
import os
import uuid
from typing import Optional, Dict, List, Set

import redis.asyncio as redis

from lexdesk.database.ddl import create_tenant_tables
from lexdesk.database.records import TenantRecords
from lexdesk.errors import NotFound
from lexdesk.models.tenant import Plan, Tenant, TenantUser
from lexdesk.tenancy.platform import PlatformStore

logger = logging.getLogger(__name__)


class TenantManager:
    """Resolves tenants to their namespace and hands out scoped record operations"""

    def __init__(self, store: PlatformStore, executor, default_api_key: Optional[str] = None):
        self.store = store
        self.executor = executor
        self.default_api_key = default_api_key if default_api_key is not None else os.getenv("PROVIDER_API_KEY")
        self.redis_client: Optional[redis.Redis] = None
        self.tenants_cache: Dict[str, Tenant] = {}
        self._provisioned: Set[str] = set()
        self.cache_ttl = int(os.getenv("TENANT_CACHE_TTL_SECONDS", "300"))

    async def connect(self, redis_host: str = "localhost", redis_port: int = 6379):
        """Connect to Redis"""
        self.redis_client = await redis.from_url(
            f"redis://{redis_host}:{redis_port}/1",
            decode_responses=True,
        )

    async def disconnect(self):
        """Disconnect from Redis"""
        if self.redis_client:
            await self.redis_client.close()

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        """Get tenant by ID"""
        if not tenant_id:
            return None

        if tenant_id in self.tenants_cache:
            return self.tenants_cache[tenant_id]

        if self.redis_client:
            tenant_data = await self.redis_client.get(f"tenant:{tenant_id}")
            if tenant_data:
                tenant = Tenant(**json.loads(tenant_data))
                self.tenants_cache[tenant_id] = tenant
                return tenant

        tenant = await self.store.get_tenant(tenant_id)
        if tenant:
            await self._cache(tenant)
        return tenant

    async def _cache(self, tenant: Tenant):
        self.tenants_cache[tenant.id] = tenant
        if self.redis_client:
            tenant_dict = tenant.model_dump()
            tenant_dict["created_at"] = tenant.created_at.isoformat()
            await self.redis_client.set(
                f"tenant:{tenant.id}",
                json.dumps(tenant_dict),
                ex=self.cache_ttl,
            )

    async def _evict(self, tenant_id: str):
        self.tenants_cache.pop(tenant_id, None)
        if self.redis_client:
            await self.redis_client.delete(f"tenant:{tenant_id}")

    async def resolve(self, tenant_id: str) -> str:
        """Namespace for the tenant; never falls back to the shared schema"""
        tenant = await self.get_tenant(tenant_id)
        if not tenant:
            raise NotFound(f"Tenant {tenant_id} not found")
        return tenant.schema_name

    async def records(self, tenant_id: str) -> TenantRecords:
        """Record operations bound to the tenant's namespace"""
        schema = await self.resolve(tenant_id)
        if schema not in self._provisioned:
            await create_tenant_tables(self.executor, schema)
            self._provisioned.add(schema)
        return TenantRecords(self.executor, schema, tenant_id=tenant_id)

    def system_records(self) -> TenantRecords:
        return TenantRecords.system(self.executor)

    async def get_plan(self, tenant_id: str) -> Optional[Plan]:
        """Always the current plan; plans are never cached"""
        return await self.store.get_plan(tenant_id)

    async def get_api_key(self, tenant_id: Optional[str]) -> Optional[str]:
        """Tenant key when configured and active, else the deployment default"""
        if tenant_id:
            config = await self.store.get_api_config(tenant_id)
            if config and config.is_active and config.api_key:
                return config.api_key
        return self.default_api_key or None

    async def create_tenant(self, name: str, plan_id: Optional[str] = None) -> Tenant:
        """Onboard a tenant with its own namespace"""
        tenant = Tenant(
            id=str(uuid.uuid4()),
            name=name,
            schema_name=f"tenant_{uuid.uuid4().hex[:16]}",
            plan_id=plan_id,
        )
        await self.store.insert_tenant(tenant)
        await create_tenant_tables(self.executor, tenant.schema_name)
        self._provisioned.add(tenant.schema_name)
        await self._cache(tenant)
        logger.info("Onboarded tenant %s in schema %s", tenant.id, tenant.schema_name)
        return tenant

    async def deactivate_tenant(self, tenant_id: str) -> Tenant:
        """Deactivation only flips the flag; data stays in place"""
        if not await self.store.set_tenant_active(tenant_id, False):
            raise NotFound(f"Tenant {tenant_id} not found")
        await self._evict(tenant_id)
        tenant = await self.get_tenant(tenant_id)
        logger.info("Deactivated tenant %s", tenant_id)
        return tenant

    async def list_tenants(self) -> List[Tenant]:
        return await self.store.list_tenants()

    async def list_active_users(self, tenant_id: str) -> List[TenantUser]:
        return await self.store.list_active_users(tenant_id)

    async def find_active_user_by_emails(self, tenant_id: str, emails: List[str]) -> Optional[TenantUser]:
        """First active user matching the emails, in the order the emails were given"""
        wanted = [e.strip().lower() for e in emails if e and e.strip()]
        if not wanted:
            return None
        users = await self.store.find_active_users_by_emails(tenant_id, wanted)
        by_email = {}
        for user in users:
            by_email.setdefault(user.email.lower(), user)
        for email in wanted:
            if email in by_email:
                return by_email[email]
        return None

    async def first_active_user(self, tenant_id: str) -> Optional[TenantUser]:
        users = await self.store.list_active_users(tenant_id)
        return users[0] if users else None

    async def get_user(self, tenant_id: str, user_id: str) -> Optional[TenantUser]:
        """Active user of this tenant, or None"""
        if not user_id:
            return None
        user = await self.store.get_user(user_id)
        if not user or user.tenant_id != tenant_id or not user.is_active:
            return None
        return user

"""Shared-schema lookups: tenants, plans, users, subscriptions and query logs"""

import json
from datetime import datetime
from typing import Optional, List, Dict, Any

from lexdesk.database.statements import infer_cast
from lexdesk.models.tenant import (
    Plan,
    SubscriptionPeriod,
    Tenant,
    TenantApiConfig,
    TenantUser,
)


def _user(row: Dict[str, Any]) -> TenantUser:
    return TenantUser(
        id=str(row["id"]),
        tenant_id=str(row["tenant_id"]),
        email=row.get("email") or "",
        name=row.get("name") or "",
        is_active=bool(row.get("is_active", True)),
        created_at=row.get("created_at"),
    )


class PlatformStore:
    """SQL over the public schema"""

    def __init__(self, executor):
        self.executor = executor

    async def get_tenant(self, tenant_id: str) -> Optional[Tenant]:
        rows = await self.executor.fetch(
            "SELECT id, name, schema_name, is_active, plan_id, created_at "
            "FROM public.tenants WHERE id = :id LIMIT 1",
            {"id": tenant_id},
        )
        if not rows:
            return None
        row = rows[0]
        return Tenant(
            id=str(row["id"]),
            name=row["name"],
            schema_name=row["schema_name"],
            is_active=bool(row["is_active"]),
            plan_id=row.get("plan_id"),
            created_at=row.get("created_at") or datetime.now(),
        )

    async def list_tenants(self) -> List[Tenant]:
        rows = await self.executor.fetch(
            "SELECT id, name, schema_name, is_active, plan_id, created_at "
            "FROM public.tenants ORDER BY created_at",
            {},
        )
        return [
            Tenant(
                id=str(r["id"]),
                name=r["name"],
                schema_name=r["schema_name"],
                is_active=bool(r["is_active"]),
                plan_id=r.get("plan_id"),
                created_at=r.get("created_at") or datetime.now(),
            )
            for r in rows
        ]

    async def insert_tenant(self, tenant: Tenant) -> Tenant:
        await self.executor.fetch(
            "INSERT INTO public.tenants (id, name, schema_name, is_active, plan_id) "
            "VALUES (:id, :name, :schema_name, :is_active, :plan_id)",
            {
                "id": tenant.id,
                "name": tenant.name,
                "schema_name": tenant.schema_name,
                "is_active": tenant.is_active,
                "plan_id": tenant.plan_id,
            },
        )
        return tenant

    async def set_tenant_active(self, tenant_id: str, is_active: bool) -> bool:
        rows = await self.executor.fetch(
            "UPDATE public.tenants SET is_active = :active, updated_at = NOW() "
            "WHERE id = :id RETURNING id",
            {"id": tenant_id, "active": is_active},
        )
        return bool(rows)

    async def get_plan(self, tenant_id: str) -> Optional[Plan]:
        """Current plan of the tenant, read fresh on every call"""
        rows = await self.executor.fetch(
            "SELECT p.id, p.name, p.max_queries, p.additional_query_fee, "
            "p.max_receivables, p.additional_receivable_fee "
            "FROM public.tenants t JOIN public.plans p ON p.id = t.plan_id "
            "WHERE t.id = :id LIMIT 1",
            {"id": tenant_id},
        )
        if not rows:
            return None
        row = rows[0]
        return Plan(
            id=str(row["id"]),
            name=row.get("name") or "",
            max_queries=row.get("max_queries"),
            additional_query_fee=float(row.get("additional_query_fee") or 0),
            max_receivables=row.get("max_receivables"),
            additional_receivable_fee=float(row.get("additional_receivable_fee") or 0),
        )

    async def get_api_config(self, tenant_id: str) -> Optional[TenantApiConfig]:
        rows = await self.executor.fetch(
            "SELECT tenant_id, api_key, is_active FROM public.tenant_api_configs "
            "WHERE tenant_id = :id LIMIT 1",
            {"id": tenant_id},
        )
        if not rows:
            return None
        row = rows[0]
        return TenantApiConfig(
            tenant_id=str(row["tenant_id"]),
            api_key=row.get("api_key"),
            is_active=row.get("is_active") is not False,
        )

    async def list_active_users(self, tenant_id: str) -> List[TenantUser]:
        rows = await self.executor.fetch(
            "SELECT id, tenant_id, email, name, is_active, created_at FROM public.users "
            "WHERE tenant_id = :tenant_id AND is_active = TRUE ORDER BY created_at ASC",
            {"tenant_id": tenant_id},
        )
        return [_user(r) for r in rows]

    async def find_active_users_by_emails(self, tenant_id: str, emails: List[str]) -> List[TenantUser]:
        """Active users whose email is in the list (case-insensitive)"""
        if not emails:
            return []
        cast, wire = infer_cast([e.lower() for e in emails])
        rows = await self.executor.fetch(
            "SELECT id, tenant_id, email, name, is_active, created_at FROM public.users "
            "WHERE tenant_id = :tenant_id AND is_active = TRUE AND lower(email) IN "
            f"(SELECT jsonb_array_elements_text(CAST(:emails AS {cast}))) "
            "ORDER BY created_at ASC",
            {"tenant_id": tenant_id, "emails": wire},
        )
        return [_user(r) for r in rows]

    async def get_user(self, user_id: str) -> Optional[TenantUser]:
        rows = await self.executor.fetch(
            "SELECT id, tenant_id, email, name, is_active, created_at FROM public.users "
            "WHERE id = :id LIMIT 1",
            {"id": user_id},
        )
        return _user(rows[0]) if rows else None

    async def latest_subscription(self, tenant_id: str) -> Optional[SubscriptionPeriod]:
        rows = await self.executor.fetch(
            "SELECT status, current_period_start, current_period_end FROM public.subscriptions "
            "WHERE tenant_id = :tenant_id ORDER BY updated_at DESC LIMIT 1",
            {"tenant_id": tenant_id},
        )
        if not rows:
            return None
        row = rows[0]
        return SubscriptionPeriod(
            start=row.get("current_period_start"),
            end=row.get("current_period_end"),
            status=row.get("status"),
        )

    async def log_event(
        self,
        tenant_id: str,
        message: str,
        metadata: Optional[Dict[str, Any]] = None,
        level: str = "info",
    ):
        await self.executor.fetch(
            "INSERT INTO public.system_logs (tenant_id, level, message, metadata) "
            "VALUES (:tenant_id, :level, :message, CAST(:metadata AS jsonb))",
            {
                "tenant_id": tenant_id,
                "level": level,
                "message": message,
                "metadata": json.dumps(metadata or {}, default=str),
            },
        )

    async def count_events(
        self,
        tenant_id: str,
        message: str,
        start: datetime,
        end: Optional[datetime] = None,
    ) -> int:
        sql = (
            "SELECT COUNT(*) AS total FROM public.system_logs "
            "WHERE tenant_id = :tenant_id AND message = :message "
            "AND created_at >= CAST(:start AS timestamptz)"
        )
        params: Dict[str, Any] = {
            "tenant_id": tenant_id,
            "message": message,
            "start": infer_cast(start)[1],
        }
        if end is not None:
            sql += " AND created_at < CAST(:end AS timestamptz)"
            params["end"] = infer_cast(end)[1]
        rows = await self.executor.fetch(sql, params)
        return int(rows[0]["total"]) if rows else 0

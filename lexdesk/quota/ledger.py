"""
Quota & overage ledger

Usage is never stored as a counter: it is the number of query log entries in
the current billing period. The gate runs before every quota-relevant
provider call and either lets it through or blocks it. An over-limit call on a
plan with an overage fee is let through with the charge pending; the charge is
booked together with the query log, once the provider has accepted the call.
"""

import logging
import math
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable

from pydantic import BaseModel

from lexdesk.database.records import TenantRecords
from lexdesk.errors import QuotaExceeded
from lexdesk.models.ledger import OverageKind, TransactionCreate
from lexdesk.quota.limiter import PeriodFlags
from lexdesk.services.notifications import NotificationService
from lexdesk.services.transactions import TransactionsService

logger = logging.getLogger(__name__)

QUERY_LOG_MESSAGE = "PROVIDER_QUERY"
WARNING_RATIO = 0.8

FLAG_WARNING = "warning_80"
FLAG_LIMIT = "limit_reached"

OVERAGE_LABELS = {
    OverageKind.QUERY: ("Overage Query", "Query overage fee", "queries"),
    OverageKind.RECEIVABLE: ("Overage Receivable", "Receivable overage fee", "invoices"),
}


class BillingPeriod(BaseModel):
    """Window usage is counted in"""
    start: datetime
    end: datetime
    source: str = "calendar"


class QuotaDecision(BaseModel):
    """Outcome of a quota check that did not block"""
    allowed: bool = True
    used: int = 0
    limit: Optional[int] = None
    warning_sent: bool = False
    overage: bool = False
    fee: float = 0.0
    overage_transaction_id: Optional[str] = None


def calendar_month(now: datetime) -> BillingPeriod:
    start = now.astimezone(timezone.utc).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return BillingPeriod(start=start, end=end, source="calendar")


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class QuotaLedger:
    """Enforces plan allowances and books overage charges"""

    def __init__(
        self,
        tenants,
        transactions: Optional[TransactionsService] = None,
        notifications: Optional[NotificationService] = None,
        flags: Optional[PeriodFlags] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.tenants = tenants
        self.transactions = transactions or TransactionsService()
        self.notifications = notifications or NotificationService()
        self.flags = flags or PeriodFlags()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def current_period(self, tenant_id: str) -> BillingPeriod:
        """Subscription period when it brackets now, else the calendar month"""
        now = _aware(self.clock())
        subscription = await self.tenants.store.latest_subscription(tenant_id)
        if subscription and subscription.start and subscription.end:
            start, end = _aware(subscription.start), _aware(subscription.end)
            if start <= now < end:
                return BillingPeriod(start=start, end=end, source="subscription")
        return calendar_month(now)

    async def usage(self, tenant_id: str, period: Optional[BillingPeriod] = None) -> int:
        period = period or await self.current_period(tenant_id)
        return await self.tenants.store.count_events(
            tenant_id, QUERY_LOG_MESSAGE, period.start, period.end
        )

    async def enforce_query_quota(self, tenant_id: str) -> QuotaDecision:
        """
        Gate one quota-relevant provider call

        Raises:
            QuotaExceeded: allowance used up and the plan has no overage fee
        """
        plan = await self.tenants.get_plan(tenant_id)
        max_queries = plan.max_queries if plan else None
        if not max_queries or max_queries <= 0:
            return QuotaDecision()

        period = await self.current_period(tenant_id)
        used = await self.usage(tenant_id, period)
        decision = QuotaDecision(used=used, limit=max_queries)

        if math.floor(max_queries * WARNING_RATIO) <= used < max_queries:
            if await self.flags.set_once(tenant_id, period.start, FLAG_WARNING):
                await self._notify_all(
                    tenant_id,
                    "Provider query usage",
                    f"You have used {used}/{max_queries} queries this period",
                    {"used": used, "max": max_queries},
                )
                decision.warning_sent = True
            return decision

        if used < max_queries:
            return decision

        fee = float(plan.additional_query_fee or 0)
        if fee > 0:
            decision.overage = True
            decision.fee = fee
            return decision

        if await self.flags.set_once(tenant_id, period.start, FLAG_LIMIT):
            await self._notify_all(
                tenant_id,
                "Period query limit reached",
                "New queries are blocked until the next cycle.",
                {"used": used, "max": max_queries},
            )
        logger.info("Tenant %s blocked at %d/%d queries", tenant_id, used, max_queries)
        raise QuotaExceeded(f"Period query limit reached for current plan ({used}/{max_queries})")

    async def log_query(
        self,
        tenant_id: str,
        operation: str,
        metadata: Optional[Dict[str, Any]] = None,
        decision: Optional[QuotaDecision] = None,
    ) -> Optional[QuotaDecision]:
        """
        Count one provider call against the period

        Call only after the provider accepted the call. When the gate let it
        through as overage, the overage transaction is booked here.
        """
        entry = {"operation": operation}
        entry.update(metadata or {})
        await self.tenants.store.log_event(tenant_id, QUERY_LOG_MESSAGE, entry)

        if decision is None or not decision.overage or decision.overage_transaction_id:
            return decision
        details = {"used": decision.used, "max": decision.limit}
        row = await self.record_overage(tenant_id, decision.fee, OverageKind.QUERY, metadata=details)
        decision.overage_transaction_id = str(row.get("id")) if row.get("id") else None
        await self._notify_all(
            tenant_id,
            "Extra query charged",
            f"Period limit reached. Extra query charged: {decision.fee:.2f}",
            {**details, "fee": decision.fee},
        )
        return decision

    async def record_overage(
        self,
        tenant_id: str,
        fee: float,
        kind: OverageKind,
        records: Optional[TenantRecords] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """One income transaction per over-limit unit of work"""
        if records is None:
            records = await self.tenants.records(tenant_id)
        category, description, tag = OVERAGE_LABELS[kind]
        transaction = TransactionCreate(
            type="income",
            amount=fee,
            category_id=kind.value,
            category=category,
            description=description,
            date=self.clock().date().isoformat(),
            payment_method="credit_card",
            status="confirmed",
            tags=["overage", tag],
            notes=", ".join(f"{k}={v}" for k, v in (metadata or {}).items()) or None,
        )
        return await self.transactions.create_transaction(records, transaction, "system")

    async def enforce_receivable_quota(self, tenant_id: str, records: TenantRecords) -> QuotaDecision:
        """Monthly invoice allowance; charged or blocked the same way as queries"""
        plan = await self.tenants.get_plan(tenant_id)
        max_receivables = plan.max_receivables if plan else None
        if not max_receivables or max_receivables <= 0:
            return QuotaDecision()

        month = calendar_month(_aware(self.clock()))
        monthly = await records.count("invoices", since=month.start)
        decision = QuotaDecision(used=monthly, limit=max_receivables)
        if monthly < max_receivables:
            return decision

        fee = float(plan.additional_receivable_fee or 0)
        if fee <= 0:
            raise QuotaExceeded("Monthly receivables limit reached for current plan")
        row = await self.record_overage(
            tenant_id, fee, OverageKind.RECEIVABLE, records=records,
            metadata={"used": monthly, "max": max_receivables},
        )
        decision.overage = True
        decision.overage_transaction_id = str(row.get("id")) if row.get("id") else None
        return decision

    async def status(self, tenant_id: str) -> Dict[str, Any]:
        """Plan, usage, overage and blocked flag for the current period"""
        plan = await self.tenants.get_plan(tenant_id)
        period = await self.current_period(tenant_id)
        used = await self.usage(tenant_id, period)
        max_queries = (plan.max_queries if plan else None) or 0
        fee = float(plan.additional_query_fee or 0) if plan else 0.0

        records = await self.tenants.records(tenant_id)
        overage = await self.transactions.overage_summary(records, period.start, OverageKind.QUERY)

        return {
            "plan": {
                "id": plan.id if plan else None,
                "name": plan.name if plan else None,
                "maxQueries": max_queries,
                "additionalQueryFee": fee,
            },
            "usage": {
                "used": used,
                "remaining": max(0, max_queries - used),
                "percentage": round(used / max_queries * 100) if max_queries > 0 else 0,
                "nextResetAt": period.end.isoformat(),
            },
            "overage": overage,
            "blocked": max_queries > 0 and used >= max_queries and fee <= 0,
        }

    async def _notify_all(self, tenant_id: str, title: str, message: str, payload: Dict[str, Any]):
        users = await self.tenants.list_active_users(tenant_id)
        if not users:
            return
        records = await self.tenants.records(tenant_id)
        await self.notifications.notify_users(
            records, [u.id for u in users], title, message, payload=payload
        )

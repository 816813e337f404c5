"""Tests for the quota gate and overage ledger"""

from datetime import datetime, timedelta, timezone

import pytest

from lexdesk.errors import QuotaExceeded
from lexdesk.models.ledger import InvoiceCreate
from lexdesk.models.tenant import Plan, SubscriptionPeriod
from lexdesk.quota.ledger import QUERY_LOG_MESSAGE, QuotaLedger, calendar_month
from lexdesk.quota.limiter import PeriodFlags
from lexdesk.services.invoices import InvoicesService

from fakes import FakePlatformStore, FakeTenants


def make_ledger(plan: Plan, used: int = 0, users=("u1",)):
    store = FakePlatformStore()
    store.add_tenant("t1", plan=plan)
    for user_id in users:
        store.add_user("t1", user_id)
    for _ in range(used):
        store.logs.append({
            "tenant_id": "t1",
            "message": QUERY_LOG_MESSAGE,
            "metadata": {},
            "level": "info",
            "created_at": datetime.now(timezone.utc),
        })
    tenants = FakeTenants(store)
    return QuotaLedger(tenants, flags=PeriodFlags()), tenants, store


def test_calendar_month_bounds():
    period = calendar_month(datetime(2026, 12, 15, 8, 30, tzinfo=timezone.utc))
    assert period.start == datetime(2026, 12, 1, tzinfo=timezone.utc)
    assert period.end == datetime(2027, 1, 1, tzinfo=timezone.utc)


@pytest.mark.asyncio
async def test_unlimited_plan_always_allows():
    ledger, _, _ = make_ledger(Plan(id="free", max_queries=None), used=500)
    decision = await ledger.enforce_query_quota("t1")
    assert decision.allowed is True
    assert decision.limit is None


@pytest.mark.asyncio
async def test_limit_reached_without_fee_blocks():
    """At the allowance with no overage fee the call is rejected"""
    ledger, tenants, _ = make_ledger(Plan(id="basic", max_queries=10), used=10)

    with pytest.raises(QuotaExceeded):
        await ledger.enforce_query_quota("t1")
    with pytest.raises(QuotaExceeded):
        await ledger.enforce_query_quota("t1")

    records = await tenants.records("t1")
    assert records.all("transactions") == []
    # limit notification goes out once per period
    assert len(records.all("notifications")) == 1


@pytest.mark.asyncio
async def test_limit_reached_with_fee_charges_once_per_call():
    """Each over-limit call books exactly one overage transaction once it is logged"""
    ledger, tenants, _ = make_ledger(Plan(id="pro", max_queries=10, additional_query_fee=2.5), used=10)

    decision = await ledger.enforce_query_quota("t1")

    assert decision.allowed is True
    assert decision.overage is True
    assert decision.fee == 2.5
    records = await tenants.records("t1")
    assert records.all("transactions") == []

    await ledger.log_query("t1", "tracking_create", decision=decision)
    transactions = records.all("transactions")
    assert len(transactions) == 1
    assert transactions[0]["category_id"] == "overage_query"
    assert transactions[0]["amount"] == 2.5
    assert transactions[0]["type"] == "income"
    assert transactions[0]["tags"] == ["overage", "queries"]
    assert transactions[0]["created_by"] == "system"

    second = await ledger.enforce_query_quota("t1")
    await ledger.log_query("t1", "tracking_create", decision=second)
    assert len(records.all("transactions")) == 2
    assert await ledger.usage("t1") == 12


@pytest.mark.asyncio
async def test_overage_gate_alone_books_nothing():
    """A call let through as overage but never logged is never charged"""
    ledger, tenants, _ = make_ledger(Plan(id="pro", max_queries=1, additional_query_fee=2.5), used=1)

    for _ in range(3):
        await ledger.enforce_query_quota("t1")

    records = await tenants.records("t1")
    assert records.all("transactions") == []
    assert records.all("notifications") == []


@pytest.mark.asyncio
async def test_warning_fires_once_per_period():
    """Crossing 80% notifies every active user a single time"""
    ledger, tenants, _ = make_ledger(Plan(id="basic", max_queries=10), used=8, users=("u1", "u2"))

    first = await ledger.enforce_query_quota("t1")
    second = await ledger.enforce_query_quota("t1")

    assert first.warning_sent is True
    assert second.warning_sent is False
    records = await tenants.records("t1")
    assert sorted(n["user_id"] for n in records.all("notifications")) == ["u1", "u2"]


@pytest.mark.asyncio
async def test_below_warning_threshold_is_silent():
    ledger, tenants, _ = make_ledger(Plan(id="basic", max_queries=10), used=7)
    decision = await ledger.enforce_query_quota("t1")
    assert decision.warning_sent is False
    records = await tenants.records("t1")
    assert records.all("notifications") == []


@pytest.mark.asyncio
async def test_log_query_counts_towards_usage():
    ledger, _, store = make_ledger(Plan(id="basic", max_queries=10))
    await ledger.log_query("t1", "tracking_create", {"search_type": "oab"})
    await ledger.log_query("t1", "request_create")
    assert await ledger.usage("t1") == 2
    assert store.logs[0]["metadata"] == {"operation": "tracking_create", "search_type": "oab"}


@pytest.mark.asyncio
async def test_subscription_period_used_only_when_it_brackets_now():
    ledger, _, store = make_ledger(Plan(id="basic", max_queries=10))
    now = datetime.now(timezone.utc)

    store.subscriptions["t1"] = SubscriptionPeriod(start=now - timedelta(days=3), end=now + timedelta(days=27))
    period = await ledger.current_period("t1")
    assert period.source == "subscription"

    store.subscriptions["t1"] = SubscriptionPeriod(start=now + timedelta(days=1), end=now + timedelta(days=31))
    period = await ledger.current_period("t1")
    assert period.source == "calendar"

    store.subscriptions["t1"] = SubscriptionPeriod(start=now - timedelta(days=3), end=None)
    assert (await ledger.current_period("t1")).source == "calendar"


@pytest.mark.asyncio
async def test_status_reports_usage_and_overage():
    ledger, _, _ = make_ledger(Plan(id="pro", name="Pro", max_queries=10, additional_query_fee=1.0), used=10)
    decision = await ledger.enforce_query_quota("t1")
    await ledger.log_query("t1", "request_create", decision=decision)

    status = await ledger.status("t1")

    assert status["plan"] == {"id": "pro", "name": "Pro", "maxQueries": 10, "additionalQueryFee": 1.0}
    assert status["usage"]["used"] == 11
    assert status["usage"]["remaining"] == 0
    assert status["usage"]["percentage"] == 110
    assert status["overage"] == {"count": 1, "amount": 1.0}
    assert status["blocked"] is False


@pytest.mark.asyncio
async def test_status_blocked_without_fee():
    ledger, _, _ = make_ledger(Plan(id="basic", max_queries=5), used=5)
    status = await ledger.status("t1")
    assert status["blocked"] is True


def invoice(number: str) -> InvoiceCreate:
    return InvoiceCreate(number=number, title="Fees", client_name="ACME", amount=100.0)


@pytest.mark.asyncio
async def test_receivables_limit_blocks_without_fee():
    ledger, tenants, _ = make_ledger(Plan(id="basic", max_receivables=1))
    service = InvoicesService(ledger)
    records = await tenants.records("t1")

    await service.create_invoice(records, "t1", invoice("INV-1"), created_by="u1")
    with pytest.raises(QuotaExceeded):
        await service.create_invoice(records, "t1", invoice("INV-2"), created_by="u1")


@pytest.mark.asyncio
async def test_resubmitted_invoice_is_not_charged_again():
    """The same invoice number returns the stored invoice before any quota check"""
    ledger, tenants, _ = make_ledger(Plan(id="pro", max_receivables=1, additional_receivable_fee=3.0))
    service = InvoicesService(ledger)
    records = await tenants.records("t1")

    await service.create_invoice(records, "t1", invoice("INV-1"), created_by="u1")
    await service.create_invoice(records, "t1", invoice("INV-2"), created_by="u1")
    again = await service.create_invoice(records, "t1", invoice("INV-2"), created_by="u1")

    assert again["number"] == "INV-2"
    assert len(records.all("invoices")) == 2
    transactions = records.all("transactions")
    assert len(transactions) == 1
    assert transactions[0]["category_id"] == "overage_receivable"
    assert transactions[0]["tags"] == ["overage", "invoices"]


@pytest.mark.asyncio
async def test_period_flags_set_once():
    flags = PeriodFlags()
    start = datetime(2026, 10, 1, tzinfo=timezone.utc)
    assert await flags.set_once("t1", start, "warning_80") is True
    assert await flags.set_once("t1", start, "warning_80") is False
    assert await flags.set_once("t1", start + timedelta(days=31), "warning_80") is True
    assert PeriodFlags.key("t1", start, "limit_reached") == "quota_flag:t1:2026-10-01:limit_reached"

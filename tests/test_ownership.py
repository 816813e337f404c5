"""Tests for tracking owner inference"""

import pytest

from lexdesk.models.tracking import OwnerResolution, Tracking
from lexdesk.services.trackings import TrackingRepository
from lexdesk.webhooks.ownership import OwnershipResolver


def oab_tracking(tracking_id, emails=None):
    return {
        "tracking_id": tracking_id,
        "search": {"search_type": "oab", "search_key": "123456/SP"},
        "notification_emails": emails or [],
    }


@pytest.fixture
def resolver(tenants):
    return OwnershipResolver(tenants)


@pytest.mark.asyncio
async def test_email_match_wins_over_registry_match(resolver, tenants, store):
    """A notification email beats another tracking's owner for the same registry key"""
    store.add_user("t1", "u2", email="partner@firm.com")
    records = await tenants.records("t1")
    await TrackingRepository(records).save(Tracking.from_provider(oab_tracking("T0"), "u1"))

    match = await resolver.resolve(records, "t1", oab_tracking("T1", ["Partner@Firm.com "]))

    assert match.user_id == "u2"
    assert match.resolution == OwnerResolution.EMAIL


@pytest.mark.asyncio
async def test_registry_match_uses_owner_of_other_tracking(resolver, tenants):
    records = await tenants.records("t1")
    await TrackingRepository(records).save(Tracking.from_provider(oab_tracking("T0"), "u1"))

    match = await resolver.resolve(records, "t1", oab_tracking("T1", ["unknown@elsewhere.com"]))

    assert match.user_id == "u1"
    assert match.resolution == OwnerResolution.REGISTRY


@pytest.mark.asyncio
async def test_registry_match_ignores_itself_and_fallback_rows(resolver, tenants):
    """Only real owners of other trackings count as registry evidence"""
    records = await tenants.records("t1")
    repo = TrackingRepository(records)
    await repo.save(Tracking.from_provider(oab_tracking("T1"), "u1"))
    await repo.save(Tracking.from_provider(oab_tracking("T2"), "u1", OwnerResolution.FALLBACK))
    await repo.save(Tracking.from_provider(oab_tracking("T3"), "system", OwnerResolution.SYSTEM))

    assert await resolver.resolve(records, "t1", oab_tracking("T1")) is None


@pytest.mark.asyncio
async def test_non_registry_search_without_email_is_unresolved(resolver, tenants):
    records = await tenants.records("t1")
    tracking = {"tracking_id": "T9", "search": {"search_type": "lawsuit_cnj", "search_key": "x"}}
    assert await resolver.resolve(records, "t1", tracking) is None


@pytest.mark.asyncio
async def test_inactive_user_email_does_not_match(resolver, tenants, store):
    store.add_user("t1", "gone", email="gone@firm.com", is_active=False)
    records = await tenants.records("t1")
    tracking = {"tracking_id": "T9", "search": {}, "notification_emails": ["gone@firm.com"]}
    assert await resolver.resolve(records, "t1", tracking) is None


@pytest.mark.asyncio
async def test_webhook_prefers_existing_owner(resolver, tenants, store):
    store.add_user("t1", "u2", email="partner@firm.com")
    records = await tenants.records("t1")
    local = {"tracking_id": "T1", "user_id": "u1", "owner_resolution": "owner"}

    match = await resolver.resolve_for_webhook(records, "t1", local, "u2", oab_tracking("T1"))

    assert match.user_id == "u1"
    assert match.resolution == OwnerResolution.OWNER


@pytest.mark.asyncio
async def test_webhook_ignores_hint_from_other_tenant(resolver, tenants, store):
    """A user hint is trusted only for an active user of the same tenant"""
    store.add_tenant("t2")
    store.add_user("t2", "intruder")
    store.add_user("t1", "u2", email="partner@firm.com")
    records = await tenants.records("t1")

    match = await resolver.resolve_for_webhook(
        records, "t1", None, "intruder", {"tracking_id": "T1", "notification_emails": ["partner@firm.com"]}
    )

    assert match.user_id == "u2"
    assert match.resolution == OwnerResolution.EMAIL


@pytest.mark.asyncio
async def test_webhook_uses_system_owner_without_users(tenants, store):
    store.add_tenant("empty")
    resolver = OwnershipResolver(tenants)
    records = await tenants.records("empty")

    match = await resolver.resolve_for_webhook(records, "empty", None, None, {"tracking_id": "T1"})

    assert match.user_id == "system"
    assert match.resolution == OwnerResolution.SYSTEM
    assert match.provisional is True

"""Tests for the provider webhook reconciler"""

import httpx
import pytest

from lexdesk.errors import InvalidWebhook, NotFound
from lexdesk.models.tracking import SearchDescriptor, Tracking, TrackingStatus
from lexdesk.services.publications import PublicationsService
from lexdesk.services.requests import RequestRepository
from lexdesk.services.trackings import TrackingRepository
from lexdesk.webhooks.reconciler import WebhookReconciler, next_status

CNJ = "0001234-56.2024.8.26.0100"


def tracking_event(response_id="R1", event_type="response_created", tracking_id="T1"):
    return {
        "reference_type": "tracking",
        "reference_id": tracking_id,
        "event_type": event_type,
        "search": {"search_type": "lawsuit_cnj", "search_key": CNJ},
        "payload": {
            "response_id": response_id,
            "response_type": "lawsuit",
            "response_data": {"code": CNJ, "name": "Silva v. Souza"},
        },
    }


def unreachable(request):
    raise AssertionError(f"unexpected provider call: {request.url}")


class FailingPublications(PublicationsService):
    async def create_publication(self, records, user_id, publication):
        raise RuntimeError("publications table unavailable")


@pytest.fixture
def reconciler(tenants, make_client, no_email):
    return WebhookReconciler(tenants, make_client(unreachable), emails=no_email)


def test_next_status_state_machine():
    """response_created and empty events land on updated, anything else on updating"""
    assert next_status("response_created") == TrackingStatus.UPDATED
    assert next_status("") == TrackingStatus.UPDATED
    assert next_status(None) == TrackingStatus.UPDATED
    assert next_status("tracking_updated") == TrackingStatus.UPDATING
    assert next_status("anything_else") == TrackingStatus.UPDATING


@pytest.mark.asyncio
async def test_tracking_event_creates_history_and_one_notification(reconciler, tenants):
    """First delivery stores the tracking, its history, a publication and one notification"""
    result = await reconciler.handle(tracking_event(), tenant_id="t1", user_id="u1")

    assert result.tracking_id == "T1"
    assert result.user_id == "u1"
    assert result.owner_resolution == "hint"
    assert result.status == "updated"
    assert result.history_appended is True
    assert result.duplicate is False
    assert result.errors == []

    records = await tenants.records("t1")
    trackings = records.all("trackings")
    assert len(trackings) == 1
    assert trackings[0]["status"] == "updated"
    assert trackings[0]["last_webhook_received_at"] is not None
    assert len(records.all("tracking_history")) == 1

    notifications = records.all("notifications")
    assert len(notifications) == 1
    assert notifications[0]["type"] == "system"
    assert notifications[0]["user_id"] == "u1"
    assert notifications[0]["payload"]["trackingId"] == "T1"

    publications = records.all("publications")
    assert len(publications) == 1
    assert publications[0]["external_id"] == "R1"
    assert publications[0]["process_number"] == CNJ


@pytest.mark.asyncio
async def test_duplicate_delivery_is_idempotent(reconciler, tenants):
    """Redelivering the same response adds no history and no derived records"""
    await reconciler.handle(tracking_event(), tenant_id="t1", user_id="u1")
    result = await reconciler.handle(tracking_event(), tenant_id="t1", user_id="u1")

    assert result.duplicate is True
    assert result.history_appended is False
    records = await tenants.records("t1")
    assert len(records.all("tracking_history")) == 1
    assert len(records.all("notifications")) == 1
    assert len(records.all("publications")) == 1


@pytest.mark.asyncio
async def test_non_creation_event_marks_tracking_updating(reconciler, tenants):
    result = await reconciler.handle(
        tracking_event(event_type="tracking_updated"), tenant_id="t1", user_id="u1"
    )
    assert result.status == "updating"


@pytest.mark.asyncio
async def test_deleted_tracking_keeps_terminal_status(reconciler, tenants):
    """A late callback never revives a deleted tracking"""
    await reconciler.handle(tracking_event(), tenant_id="t1", user_id="u1")
    records = await tenants.records("t1")
    await records.update_where(
        "trackings", {"tracking_id": "T1"}, {"status": "deleted", "is_active": False}
    )

    result = await reconciler.handle(tracking_event(response_id="R2"), tenant_id="t1", user_id="u1")

    row = records.all("trackings")[0]
    assert row["status"] == "deleted"
    assert row["is_active"] is False
    assert result.status == "deleted"


@pytest.mark.asyncio
async def test_paused_tracking_stays_paused_on_callback(reconciler, tenants):
    """Only an explicit resume takes a tracking out of paused"""
    records = await tenants.records("t1")
    await TrackingRepository(records).save(
        Tracking(tracking_id="T9", user_id="u1", status=TrackingStatus.PAUSED)
    )

    result = await reconciler.handle(tracking_event(tracking_id="T9"), tenant_id="t1", user_id="u1")

    row = records.all("trackings")[0]
    assert row["status"] == "paused"
    assert row["last_webhook_received_at"] is not None
    assert result.status == "paused"
    assert result.history_appended is True


@pytest.mark.asyncio
async def test_callback_without_response_id_publishes_nothing(reconciler, tenants):
    body = tracking_event()
    del body["payload"]["response_id"]

    await reconciler.handle(body, tenant_id="t1", user_id="u1")
    result = await reconciler.handle(body, tenant_id="t1", user_id="u1")

    records = await tenants.records("t1")
    assert records.all("tracking_history") == []
    assert records.all("publications") == []
    assert records.all("notifications") == []
    assert result.status == "updated"


@pytest.mark.asyncio
async def test_lawsuit_callback_without_tracking_is_acknowledged(reconciler, tenants):
    body = {
        "reference_type": "lawsuit",
        "reference_id": "L1",
        "event_type": "response_created",
        "payload": {"response_id": "R1", "response_type": "lawsuit", "response_data": {"code": CNJ}},
    }

    result = await reconciler.handle(body, tenant_id="t1")

    assert result.received is True
    assert result.tenant_id == "t1"
    assert result.tracking_id is None
    records = await tenants.records("t1")
    assert records.all("trackings") == []
    with pytest.raises(InvalidWebhook):
        await reconciler.handle(body)


@pytest.mark.asyncio
async def test_lawsuit_callback_correlates_by_body_id(reconciler, tenants):
    body = {
        "reference_type": "lawsuit",
        "reference_id": "L1",
        "id": "T5",
        "event_type": "response_created",
        "payload": {"response_id": "R1", "response_type": "lawsuit", "response_data": {"code": CNJ}},
    }

    result = await reconciler.handle(body, tenant_id="t1", user_id="u1")

    assert result.tracking_id == "T5"
    records = await tenants.records("t1")
    assert [r["tracking_id"] for r in records.all("trackings")] == ["T5"]
    assert len(records.all("tracking_history")) == 1


@pytest.mark.asyncio
async def test_tenant_from_body_when_query_param_missing(reconciler):
    body = tracking_event()
    body["tenantId"] = "t1"
    result = await reconciler.handle(body)
    assert result.tenant_id == "t1"


@pytest.mark.asyncio
async def test_heartbeat_is_acknowledged_without_tenant(reconciler):
    body = {"payload": {"response_data": {"message": "REQUEST_COMPLETED", "code": 600}}}
    result = await reconciler.handle(body)
    assert result.heartbeat is True
    assert result.tenant_id is None


@pytest.mark.asyncio
async def test_missing_correlation_key_is_invalid(reconciler):
    with pytest.raises(InvalidWebhook):
        await reconciler.handle({"event_type": "response_created"}, tenant_id="t1")


@pytest.mark.asyncio
async def test_missing_tenant_is_invalid(reconciler):
    with pytest.raises(InvalidWebhook):
        await reconciler.handle(tracking_event())


@pytest.mark.asyncio
async def test_unknown_tenant_is_not_found(reconciler):
    with pytest.raises(NotFound):
        await reconciler.handle(tracking_event(), tenant_id="nope")


@pytest.mark.asyncio
async def test_non_object_body_is_invalid(reconciler):
    with pytest.raises(InvalidWebhook):
        await reconciler.handle(["not", "an", "object"], tenant_id="t1")


@pytest.mark.asyncio
async def test_failing_side_effect_does_not_stop_the_rest(tenants, make_client, no_email):
    """A broken publication is logged; history and notification still happen"""
    reconciler = WebhookReconciler(
        tenants, make_client(unreachable), publications=FailingPublications(), emails=no_email
    )

    result = await reconciler.handle(tracking_event(), tenant_id="t1", user_id="u1")

    assert any(e.startswith("publication") for e in result.errors)
    records = await tenants.records("t1")
    assert len(records.all("tracking_history")) == 1
    assert len(records.all("notifications")) == 1
    assert result.status == "updated"


@pytest.mark.asyncio
async def test_request_event_refreshes_stored_result(tenants, make_client, no_email):
    """Request callbacks store the authoritative responses, nothing else"""
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"request_status": "completed", "page_data": [{"response_id": "X"}]})

    reconciler = WebhookReconciler(tenants, make_client(handler), emails=no_email)
    records = await tenants.records("t1")
    await RequestRepository(records).create(
        "u1", "REQ1", SearchDescriptor(search_type="lawsuit_cnj", search_key=CNJ)
    )

    result = await reconciler.handle(
        {"reference_type": "request", "reference_id": "REQ1", "event_type": "response_created"},
        tenant_id="t1",
    )

    assert result.status == "completed"
    assert seen[0].url.path == "/responses"
    assert seen[0].url.params["request_id"] == "REQ1"
    assert seen[0].headers["api-key"] == "tenant-key"
    row = records.all("external_requests")[0]
    assert row["status"] == "completed"
    assert row["result"]["page_data"] == [{"response_id": "X"}]
    assert records.all("notifications") == []
    assert records.all("publications") == []


@pytest.mark.asyncio
async def test_request_event_with_provider_failure_is_logged(tenants, make_client, no_email):
    reconciler = WebhookReconciler(
        tenants, make_client(lambda request: httpx.Response(400, text="bad")), emails=no_email
    )
    records = await tenants.records("t1")
    await RequestRepository(records).create("u1", "REQ1", SearchDescriptor(search_type="cpf", search_key="1"))

    result = await reconciler.handle({"reference_type": "request", "reference_id": "REQ1"}, tenant_id="t1")

    assert result.errors and result.errors[0].startswith("request_refresh")
    assert records.all("external_requests")[0]["status"] == "pending"


@pytest.mark.asyncio
async def test_unknown_owner_falls_back_to_first_active_user(reconciler, tenants, store):
    """Without a hint or any match the tracking goes to the first active user"""
    store.add_user("t1", "u2", email="second@firm.com")

    result = await reconciler.handle(tracking_event(), tenant_id="t1")

    assert result.user_id == "u1"
    assert result.owner_resolution == "fallback"
    records = await tenants.records("t1")
    assert records.all("trackings")[0]["owner_resolution"] == "fallback"


@pytest.mark.asyncio
async def test_provisional_owner_is_upgraded_by_later_hint(reconciler, tenants, store):
    store.add_user("t1", "u2", email="second@firm.com")
    await reconciler.handle(tracking_event(), tenant_id="t1")

    result = await reconciler.handle(tracking_event(response_id="R2"), tenant_id="t1", user_id="u2")

    assert result.user_id == "u2"
    assert result.owner_resolution == "hint"
    records = await tenants.records("t1")
    row = records.all("trackings")[0]
    assert row["user_id"] == "u2"
    assert row["owner_resolution"] == "hint"

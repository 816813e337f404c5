"""Tests for the HTTP surface"""

import httpx
import pytest
from fastapi.testclient import TestClient

from lexdesk.gateway.dependencies import Services
from lexdesk.gateway.main import app
from lexdesk.models.tenant import Plan
from lexdesk.provider.monitoring import MonitoringService
from lexdesk.quota.ledger import QuotaLedger
from lexdesk.quota.limiter import PeriodFlags
from lexdesk.services.invoices import InvoicesService
from lexdesk.webhooks.reconciler import WebhookReconciler

HEADERS = {"X-Tenant-Id": "t1", "X-User-Id": "u1"}


def provider_handler(request):
    if request.method == "POST" and request.url.path == "/tracking":
        return httpx.Response(200, json={"tracking_id": "T1", "status": "created"})
    return httpx.Response(404, text="not found")


@pytest.fixture
def services(tenants, make_client, no_email):
    client = make_client(provider_handler)
    flags = PeriodFlags()
    ledger = QuotaLedger(tenants, flags=flags)
    return Services(
        tenants=tenants,
        provider=client,
        flags=flags,
        ledger=ledger,
        monitoring=MonitoringService(tenants, client, ledger),
        reconciler=WebhookReconciler(tenants, client, emails=no_email),
        invoices=InvoicesService(ledger),
    )


@pytest.fixture
def client(services):
    app.state.services = services
    yield TestClient(app)
    del app.state.services


def tracking_event():
    return {
        "reference_type": "tracking",
        "reference_id": "T1",
        "event_type": "response_created",
        "payload": {"response_id": "R1", "response_type": "lawsuit", "response_data": {"code": "X"}},
    }


def test_health_without_database_is_degraded(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "degraded"


def test_webhook_heartbeat_is_acknowledged(client):
    body = {"payload": {"response_data": {"message": "REQUEST_COMPLETED", "code": 600}}}
    response = client.post("/webhooks/provider", json=body)
    assert response.status_code == 200
    assert response.json() == {"received": True}


def test_webhook_tracking_event_is_reconciled(client, tenants):
    response = client.post("/webhooks/provider?tenantId=t1&userId=u1", json=tracking_event())
    assert response.status_code == 200
    rows = tenants.backend.rows("tenant_t1", "trackings")
    assert rows[0]["tracking_id"] == "T1"
    assert rows[0]["user_id"] == "u1"


def test_webhook_without_tenant_is_rejected(client):
    response = client.post("/webhooks/provider", json=tracking_event())
    assert response.status_code == 400
    assert response.json()["reason"] == "invalid_payload"


def test_webhook_for_unknown_tenant_is_not_found(client):
    response = client.post("/webhooks/provider?tenantId=ghost", json=tracking_event())
    assert response.status_code == 404
    assert response.json()["reason"] == "not_found"


def test_webhook_with_broken_json_is_rejected(client):
    response = client.post(
        "/webhooks/provider?tenantId=t1",
        content=b"{not json",
        headers={"Content-Type": "application/json"},
    )
    assert response.status_code == 400


def test_tenant_routes_require_context_headers(client):
    assert client.get("/api/trackings").status_code == 400
    assert client.get("/api/trackings", headers={"X-Tenant-Id": "t1"}).status_code == 400
    assert client.get("/api/quota").status_code == 400


def test_register_and_list_trackings(client):
    body = {"search": {"search_type": "oab", "search_key": "123456/SP"}}
    created = client.post("/api/trackings", json=body, headers=HEADERS)
    assert created.status_code == 201
    assert created.json()["tracking"]["tracking_id"] == "T1"

    listing = client.get("/api/trackings", headers=HEADERS)
    assert listing.status_code == 200
    assert [t["tracking_id"] for t in listing.json()["items"]] == ["T1"]


def test_tracking_body_is_validated(client):
    body = {"search": {"search_type": "oab", "search_key": ""}}
    assert client.post("/api/trackings", json=body, headers=HEADERS).status_code == 422


def test_quota_block_maps_to_429(client, store):
    store.add_tenant("t2", plan=Plan(id="basic", max_receivables=1))
    store.add_user("t2", "u2")
    headers = {"X-Tenant-Id": "t2", "X-User-Id": "u2"}
    invoice = {"title": "Fees", "client_name": "ACME", "amount": 10.0}

    first = client.post("/api/invoices", json={"number": "INV-1", **invoice}, headers=headers)
    second = client.post("/api/invoices", json={"number": "INV-2", **invoice}, headers=headers)

    assert first.status_code == 201
    assert second.status_code == 429
    assert second.json()["reason"] == "quota_exceeded"


def test_quota_status_route(client):
    response = client.get("/api/quota", headers={"X-Tenant-Id": "t1"})
    assert response.status_code == 200
    assert response.json()["usage"]["used"] == 0


def test_missing_tracking_is_404(client):
    response = client.get("/api/trackings/nope", headers=HEADERS)
    assert response.status_code == 404


def test_admin_key_not_configured(client, monkeypatch):
    monkeypatch.delenv("ADMIN_API_KEY", raising=False)
    assert client.get("/api/admin/tenants").status_code == 500


def test_admin_key_checked(client, monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "secret")

    assert client.get("/api/admin/tenants", headers={"X-Admin-Key": "wrong"}).status_code == 401

    response = client.get("/api/admin/tenants", headers={"X-Admin-Key": "secret"})
    assert response.status_code == 200
    assert response.json()["total"] == 1


def test_admin_quota_for_tenant(client, monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", "secret")
    response = client.get("/api/admin/tenants/t1/quota", headers={"X-Admin-Key": "secret"})
    assert response.status_code == 200
    assert response.json()["tenant_id"] == "t1"


def test_webhook_lawsuit_reference_is_acknowledged(client):
    body = {"reference_type": "lawsuit", "reference_id": "L1", "event_type": "response_created"}
    response = client.post("/webhooks/provider?tenantId=t1", json=body)
    assert response.status_code == 200
    assert response.json() == {"received": True}

"""Tests for the provider HTTP client and retry policy"""

import httpx
import pytest

from lexdesk.errors import ProviderNotConfigured, ProviderTimeout, UpstreamFailure
from lexdesk.provider.client import request_status, tracking_items
from lexdesk.provider.retry import RetryPolicy

from fakes import no_sleep

SEARCH = {"search": {"search_type": "cpf", "search_key": "12345678900"}}


class Sequence:
    """Handler answering with the given responses in order"""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request):
        self.requests.append(request)
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeClock:
    def __init__(self, step: float = 5.0):
        self.now = 0.0
        self.step = step

    def __call__(self) -> float:
        current = self.now
        self.now += self.step
        return current


@pytest.mark.asyncio
async def test_create_request_retries_server_errors(make_client):
    handler = Sequence(
        httpx.Response(503, text="unavailable"),
        httpx.Response(502, text="bad gateway"),
        httpx.Response(200, json={"request_id": "REQ1"}),
    )
    client = make_client(handler)

    assert await client.create_request("key", SEARCH) == "REQ1"
    assert len(handler.requests) == 3
    assert handler.requests[0].headers["api-key"] == "key"
    assert handler.requests[0].url.path == "/requests"


@pytest.mark.asyncio
async def test_create_request_does_not_retry_validation_errors(make_client):
    handler = Sequence(httpx.Response(400, text="invalid search_key"))
    client = make_client(handler)

    with pytest.raises(UpstreamFailure) as excinfo:
        await client.create_request("key", SEARCH)

    assert excinfo.value.upstream_status == 400
    assert "invalid search_key" in excinfo.value.body
    assert len(handler.requests) == 1


@pytest.mark.asyncio
async def test_transport_errors_are_transient(make_client):
    handler = Sequence(
        httpx.ConnectError("connection refused"),
        httpx.Response(200, json={"id": "REQ2"}),
    )
    client = make_client(handler)
    assert await client.create_request("key", SEARCH) == "REQ2"


@pytest.mark.asyncio
async def test_retries_give_up_after_max_attempts(make_client):
    handler = Sequence(*[httpx.Response(500, text="boom") for _ in range(3)])
    client = make_client(handler)

    with pytest.raises(UpstreamFailure):
        await client.create_request("key", SEARCH)
    assert len(handler.requests) == 3


@pytest.mark.asyncio
async def test_missing_request_id_is_upstream_failure(make_client):
    client = make_client(Sequence(httpx.Response(200, json={"status": "ok"})))
    with pytest.raises(UpstreamFailure):
        await client.create_request("key", SEARCH)


@pytest.mark.asyncio
async def test_empty_api_key_fails_before_any_call(make_client):
    handler = Sequence()
    client = make_client(handler)

    with pytest.raises(ProviderNotConfigured):
        await client.list_trackings("")
    assert handler.requests == []


@pytest.mark.asyncio
async def test_malformed_json_is_upstream_failure(make_client):
    client = make_client(Sequence(httpx.Response(200, text="<html>oops</html>")))
    with pytest.raises(UpstreamFailure) as excinfo:
        await client.get_tracking("key", "T1")
    assert "malformed" in excinfo.value.message


@pytest.mark.asyncio
async def test_empty_body_is_empty_dict(make_client):
    client = make_client(Sequence(httpx.Response(204)))
    assert await client.pause_tracking("key", "T1") == {}


@pytest.mark.asyncio
async def test_wait_for_completion_polls_until_terminal(make_client):
    handler = Sequence(
        httpx.Response(200, json={"status": "pending"}),
        httpx.Response(200, json={"status": "pending"}),
        httpx.Response(200, json={"status": "completed", "request_id": "REQ1"}),
    )
    client = make_client(handler)

    data = await client.wait_for_completion("key", "REQ1")

    assert data["status"] == "completed"
    assert len(handler.requests) == 3
    assert handler.requests[0].url.path == "/requests/REQ1"


@pytest.mark.asyncio
async def test_wait_for_completion_times_out(make_client):
    """A request still pending after the window is a timeout, not a failure"""
    handler = Sequence(*[httpx.Response(200, json={"status": "pending"}) for _ in range(10)])
    client = make_client(handler, clock=FakeClock(step=5.0))

    with pytest.raises(ProviderTimeout):
        await client.wait_for_completion("key", "REQ1", timeout=20)
    assert 0 < len(handler.requests) < 10


@pytest.mark.asyncio
async def test_tracking_calls_use_tracking_host(make_client):
    handler = Sequence(
        httpx.Response(200, json={"page_data": []}),
        httpx.Response(200, json={}),
        httpx.Response(200, json={"page_data": []}),
    )
    client = make_client(handler)

    await client.list_trackings("key", page=2, page_size=50, status="active")
    await client.delete_tracking("key", "T/1")
    await client.get_tracking_history("key", "T1", page=1)

    listing, deletion, history = handler.requests
    assert listing.url.host == "tracking.provider.test"
    assert listing.url.params["page"] == "2"
    assert listing.url.params["status"] == "active"
    assert deletion.method == "DELETE"
    assert deletion.url.raw_path == b"/tracking/T%2F1"
    assert history.url.host == "requests.provider.test"
    assert history.url.path == "/responses/tracking/T1"
    assert "created_at_gte" not in history.url.params


def test_tracking_items_accepts_known_shapes():
    assert tracking_items([{"tracking_id": "A"}]) == [{"tracking_id": "A"}]
    assert tracking_items({"page_data": [1]}) == [1]
    assert tracking_items({"trackings": [2]}) == [2]
    assert tracking_items({"data": "nope"}) == []
    assert tracking_items(None) == []


def test_request_status_prefers_top_level():
    assert request_status({"status": "completed"}) == "completed"
    assert request_status({"result": {"status": "failed"}}) == "failed"
    assert request_status({}, "created") == "created"
    assert request_status("garbage") == "pending"


def test_backoff_delay_bounds():
    policy = RetryPolicy(max_attempts=3, base_delay=0.5, jitter=0.5, sleep=no_sleep)
    for attempt in range(4):
        delay = policy.delay_for(attempt)
        assert 0.5 * 2 ** attempt <= delay <= 0.5 * 2 ** attempt + 0.5


@pytest.mark.asyncio
async def test_retry_sleeps_between_attempts():
    slept = []

    async def record(seconds):
        slept.append(seconds)

    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise UpstreamFailure("busy", status_code=429)
        return "ok"

    policy = RetryPolicy(max_attempts=3, base_delay=1.0, jitter=0.0, sleep=record)
    assert await policy.execute(flaky) == "ok"
    assert slept == [1.0, 2.0]


@pytest.mark.asyncio
async def test_retry_surfaces_validation_error_immediately():
    calls = []

    async def rejected():
        calls.append(1)
        raise UpstreamFailure("bad input", status_code=422)

    with pytest.raises(UpstreamFailure):
        await RetryPolicy(max_attempts=3, sleep=no_sleep).execute(rejected)
    assert len(calls) == 1

"""Shared fixtures"""

import httpx
import pytest

from lexdesk.config import ProviderSettings, SmtpSettings
from lexdesk.provider.client import ProviderClient
from lexdesk.provider.retry import RetryPolicy
from lexdesk.services.emails import EmailService

from fakes import FakePlatformStore, FakeTenants, no_sleep

REQUESTS_BASE = "https://requests.provider.test"
TRACKING_BASE = "https://tracking.provider.test"


@pytest.fixture
def store():
    store = FakePlatformStore()
    store.add_tenant("t1")
    store.add_user("t1", "u1", email="owner@firm.com")
    return store


@pytest.fixture
def tenants(store):
    return FakeTenants(store)


@pytest.fixture
def settings():
    return ProviderSettings(
        base_url=REQUESTS_BASE,
        tracking_base_url=TRACKING_BASE,
        webhook_url="https://app.test/webhooks/provider",
        poll_timeout_seconds=20,
        poll_interval_seconds=1,
    )


@pytest.fixture
def make_client(settings):
    """Provider client answering through the given handler"""
    def factory(handler, clock=None):
        return ProviderClient(
            settings=settings,
            transport=httpx.MockTransport(handler),
            retry=RetryPolicy(max_attempts=3, sleep=no_sleep),
            sleep=no_sleep,
            clock=clock,
        )
    return factory


@pytest.fixture
def no_email():
    return EmailService(SmtpSettings(host=None))

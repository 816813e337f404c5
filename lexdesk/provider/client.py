"""HTTP client for the legal-data provider"""

import asyncio
import logging
import time
from typing import Optional, Dict, Any, List, Callable, Awaitable
from urllib.parse import quote

import httpx
from httpx import AsyncClient, Limits, Timeout

from lexdesk.config import ProviderSettings
from lexdesk.errors import ProviderNotConfigured, ProviderTimeout, UpstreamFailure
from lexdesk.provider.retry import RetryPolicy

logger = logging.getLogger(__name__)

TERMINAL_REQUEST_STATUSES = {"completed", "failed"}


def tracking_items(data: Any) -> List[Dict[str, Any]]:
    """Trackings from a list page, whichever key the provider used"""
    if isinstance(data, list):
        return data
    if not isinstance(data, dict):
        return []
    for key in ("page_data", "trackings", "data", "items"):
        value = data.get(key)
        if isinstance(value, list):
            return value
    return []


def request_status(data: Any, default: str = "pending") -> str:
    if not isinstance(data, dict):
        return default
    result = data.get("result") if isinstance(data.get("result"), dict) else {}
    return str(data.get("status") or result.get("status") or default)


class ProviderClient:
    """
    Thin wrapper over the provider's request and tracking APIs.

    Every call takes the API key explicitly; key selection and quota belong
    to the caller. Only request creation is retried.
    """

    def __init__(
        self,
        settings: Optional[ProviderSettings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry: Optional[RetryPolicy] = None,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
        clock: Optional[Callable[[], float]] = None,
    ):
        self.settings = settings or ProviderSettings.from_env()
        self.transport = transport
        self.sleep = sleep or asyncio.sleep
        self.clock = clock or time.monotonic
        self.retry = retry or RetryPolicy(sleep=self.sleep)
        self.default_limits = Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=30.0,
        )
        self.default_timeout = Timeout(self.settings.timeout_seconds, connect=10.0)
        self._client: Optional[AsyncClient] = None

    def get_client(self) -> AsyncClient:
        """Get or create the pooled HTTP client"""
        if self._client is None:
            self._client = AsyncClient(
                limits=self.default_limits,
                timeout=self.default_timeout,
                transport=self.transport,
            )
        return self._client

    async def close(self):
        """Close the connection pool"""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _call(
        self,
        method: str,
        url: str,
        api_key: Optional[str],
        operation: str,
        params: Optional[Dict[str, Any]] = None,
        body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        if not api_key:
            raise ProviderNotConfigured("Provider API key not configured for tenant")
        try:
            response = await self.get_client().request(
                method,
                url,
                headers={"Content-Type": "application/json", "api-key": api_key},
                params={k: v for k, v in (params or {}).items() if v is not None} or None,
                json=body,
            )
        except httpx.HTTPError as e:
            raise UpstreamFailure(f"Provider {operation} failed: {e}") from e

        text = response.text
        if response.status_code >= 400:
            raise UpstreamFailure(
                f"Provider {operation} failed: {response.status_code} {text[:300]}",
                status_code=response.status_code,
                body=text,
            )
        if not text.strip():
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise UpstreamFailure(
                f"Provider {operation} returned malformed JSON",
                status_code=response.status_code,
                body=text,
            ) from e

    def _requests_url(self, path: str) -> str:
        return f"{self.settings.base_url}{path}"

    def _tracking_url(self, path: str) -> str:
        return f"{self.settings.tracking_base_url}{path}"

    async def _create_request_once(self, api_key: str, payload: Dict[str, Any]) -> str:
        data = await self._call("POST", self._requests_url("/requests"), api_key, "request create", body=payload)
        request_id = (data.get("request_id") or data.get("id")) if isinstance(data, dict) else None
        if not request_id:
            raise UpstreamFailure("Invalid provider request response", status_code=200, body=str(data)[:300])
        return str(request_id)

    async def create_request(self, api_key: str, payload: Dict[str, Any]) -> str:
        """Create a one-off request and return its id (retried on transient failures)"""
        return await self.retry.execute(
            lambda: self._create_request_once(api_key, payload), operation="request create"
        )

    async def get_request(self, api_key: str, request_id: str) -> Dict[str, Any]:
        return await self._call(
            "GET", self._requests_url(f"/requests/{quote(request_id, safe='')}"), api_key, "request status"
        )

    async def wait_for_completion(
        self,
        api_key: str,
        request_id: str,
        timeout: Optional[float] = None,
        interval: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Poll until the request reaches a terminal status

        Raises:
            ProviderTimeout: the window elapsed while the request was still pending
        """
        timeout = self.settings.poll_timeout_seconds if timeout is None else timeout
        interval = self.settings.poll_interval_seconds if interval is None else interval
        started = self.clock()
        status = "created"
        while self.clock() - started < timeout:
            data = await self.get_request(api_key, request_id)
            status = request_status(data, status)
            if status in TERMINAL_REQUEST_STATUSES:
                return data
            await self.sleep(interval)
        raise ProviderTimeout(f"Provider request {request_id} still {status} after {timeout:.0f}s")

    async def fetch_responses(self, api_key: str, request_id: str) -> Dict[str, Any]:
        """Authoritative results of a one-off request"""
        return await self._call(
            "GET", self._requests_url("/responses"), api_key, "responses fetch", params={"request_id": request_id}
        )

    async def register_tracking(self, api_key: str, body: Dict[str, Any]) -> Dict[str, Any]:
        return await self._call("POST", self._tracking_url("/tracking"), api_key, "tracking create", body=body)

    async def list_trackings(
        self,
        api_key: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._call(
            "GET",
            self._tracking_url("/tracking"),
            api_key,
            "tracking list",
            params={"page": page, "page_size": page_size, "status": status or None},
        )

    async def get_tracking(self, api_key: str, tracking_id: str) -> Dict[str, Any]:
        return await self._call(
            "GET", self._tracking_url(f"/tracking/{quote(tracking_id, safe='')}"), api_key, "tracking get"
        )

    async def pause_tracking(self, api_key: str, tracking_id: str) -> Dict[str, Any]:
        return await self._call(
            "POST", self._tracking_url(f"/tracking/{quote(tracking_id, safe='')}/pause"), api_key, "tracking pause"
        )

    async def resume_tracking(self, api_key: str, tracking_id: str) -> Dict[str, Any]:
        return await self._call(
            "POST", self._tracking_url(f"/tracking/{quote(tracking_id, safe='')}/resume"), api_key, "tracking resume"
        )

    async def delete_tracking(self, api_key: str, tracking_id: str) -> Dict[str, Any]:
        return await self._call(
            "DELETE", self._tracking_url(f"/tracking/{quote(tracking_id, safe='')}"), api_key, "tracking delete"
        )

    async def get_tracking_history(
        self,
        api_key: str,
        tracking_id: str,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        created_at_gte: Optional[str] = None,
        created_at_lte: Optional[str] = None,
    ) -> Dict[str, Any]:
        return await self._call(
            "GET",
            self._requests_url(f"/responses/tracking/{quote(tracking_id, safe='')}"),
            api_key,
            "tracking history",
            params={
                "page": page,
                "page_size": page_size,
                "created_at_gte": created_at_gte,
                "created_at_lte": created_at_lte,
            },
        )

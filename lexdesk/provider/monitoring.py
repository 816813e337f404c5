"""
Quota-gated provider operations for tenants

Every call that the provider bills (request creation, tracking registration,
pause/resume/delete, history fetch, registry search) passes the quota gate
first. It is logged as a query, and charged when over the limit, only after
the provider accepted it. Listing, reading and refreshing never touch the
quota.
"""

import logging
from typing import Optional, Dict, Any, List, Tuple
from urllib.parse import urlencode

from lexdesk.config import ProviderSettings
from lexdesk.errors import NotFound, ProviderNotConfigured, UpstreamFailure
from lexdesk.models.tracking import (
    HistoryEntry,
    REGISTRY_SEARCH_TYPE,
    SearchDescriptor,
    Tracking,
    TrackingRegistration,
    TrackingStatus,
)
from lexdesk.provider.client import ProviderClient, request_status, tracking_items
from lexdesk.provider.timeline import extract_responses, summarize_client_request, summarize_requests
from lexdesk.quota.ledger import QuotaDecision, QuotaLedger
from lexdesk.services.requests import ClientRequestRepository, RequestRepository
from lexdesk.services.trackings import HistoryRepository, TrackingRepository, UNRESOLVED_OWNERS
from lexdesk.webhooks.ownership import PROVISIONAL, OwnershipResolver, row_resolution

logger = logging.getLogger(__name__)

REGISTRATION_MODES = ("ensure", "force")


def callback_url(base: Optional[str], tenant_id: str, user_id: str) -> Optional[str]:
    """Webhook URL carrying the tenant and owner back to us"""
    if not base:
        return None
    separator = "&" if "?" in base else "?"
    return f"{base}{separator}{urlencode({'tenantId': tenant_id, 'userId': user_id})}"


def normalize_lawsuit(item: Any) -> Dict[str, Any]:
    """Flatten one lawsuit from a registry search"""
    d = item.get("response_data") if isinstance(item, dict) and isinstance(item.get("response_data"), dict) else item
    if not isinstance(d, dict):
        d = {}
    number = d.get("code") or d.get("lawsuit_cnj") or d.get("id") or ""
    crawler = d.get("crawler") if isinstance(d.get("crawler"), dict) else {}
    parties = d.get("parties")
    if not isinstance(parties, list):
        parties = ((crawler.get("parties") or {}).get("data")) or []
    cover = d.get("cover") or (crawler.get("cover") or {}).get("data") or {}
    last_step = d.get("last_step") if isinstance(d.get("last_step"), dict) else {}
    classification = d.get("classification") if isinstance(d.get("classification"), dict) else {}
    first_party = parties[0] if parties and isinstance(parties[0], dict) else {}
    return {
        "id": str(d.get("id") or number),
        "number": number,
        "cnj": d.get("lawsuit_cnj") or d.get("code") or "",
        "client": first_party.get("name") or first_party.get("document") or "",
        "court": cover.get("court_name") or cover.get("court") or d.get("tribunal") or "",
        "status": d.get("status") or "ongoing",
        "last_step": last_step.get("summary") or "",
        "last_step_date": last_step.get("date") or d.get("updated_at"),
        "classification": classification.get("value") or "",
        "amount": d.get("amount") or "",
    }


class MonitoringService:
    """Tenant-facing facade over the provider client"""

    def __init__(
        self,
        tenants,
        client: ProviderClient,
        ledger: QuotaLedger,
        ownership: Optional[OwnershipResolver] = None,
        settings: Optional[ProviderSettings] = None,
    ):
        self.tenants = tenants
        self.client = client
        self.ledger = ledger
        self.ownership = ownership or OwnershipResolver(tenants)
        self.settings = settings or client.settings

    async def _api_key(self, tenant_id: Optional[str]) -> str:
        api_key = await self.tenants.get_api_key(tenant_id)
        if not api_key:
            raise ProviderNotConfigured("Provider API key not configured for tenant")
        return api_key

    async def _gate(self, tenant_id: str) -> Tuple[str, QuotaDecision]:
        """API key first, so a tenant without one is never charged"""
        api_key = await self._api_key(tenant_id)
        decision = await self.ledger.enforce_query_quota(tenant_id)
        return api_key, decision

    # One-off requests

    async def create_search_request(
        self,
        tenant_id: str,
        user_id: str,
        payload: Dict[str, Any],
        wait: bool = False,
    ) -> Dict[str, Any]:
        records = await self.tenants.records(tenant_id)
        search = SearchDescriptor.from_payload(payload)
        api_key, decision = await self._gate(tenant_id)

        request_id = await self.client.create_request(api_key, {"search": search.model_dump(exclude_none=True)})
        await self.ledger.log_query(
            tenant_id, "request_create", {"request_id": request_id, "search_type": search.search_type},
            decision=decision,
        )
        repo = RequestRepository(records)
        saved = await repo.create(user_id, request_id, search)

        status = saved.get("status") or "pending"
        responses = None
        if wait:
            data = await self.client.wait_for_completion(api_key, request_id)
            status = request_status(data, "completed")
            responses = extract_responses(data)
            saved = await repo.store_result(request_id, status, data) or saved

        return {"request_id": request_id, "status": status, "responses": responses, "saved": saved}

    async def create_public_request(
        self,
        tenant_id: str,
        payload: Dict[str, Any],
        wait: bool = False,
    ) -> Dict[str, Any]:
        """Portal lookup stored once per search, shared across tenants"""
        search = SearchDescriptor.from_payload(payload)
        api_key, decision = await self._gate(tenant_id)

        request_id = await self.client.create_request(api_key, {"search": search.model_dump(exclude_none=True)})
        await self.ledger.log_query(
            tenant_id, "public_request_create", {"request_id": request_id, "search_type": search.search_type},
            decision=decision,
        )
        repo = ClientRequestRepository(self.tenants.system_records())
        saved = await repo.upsert(search, request_id)

        status = saved.get("status") or "pending"
        responses = None
        if wait:
            data = await self.client.wait_for_completion(api_key, request_id)
            status = request_status(data, "completed")
            responses = extract_responses(data)
            row = await repo.store_result(saved["id"], status, data) or saved
            saved = await repo.store_timeline(row["id"], summarize_client_request(row)) or row

        return {"request_id": request_id, "status": status, "responses": responses, "saved": saved}

    async def refresh_request(self, tenant_id: str, user_id: str, record_id: str) -> Dict[str, Any]:
        """Pull the latest responses for a stored request"""
        records = await self.tenants.records(tenant_id)
        repo = RequestRepository(records)
        row = await repo.get(record_id, user_id)
        if not row:
            raise NotFound("Request not found")
        api_key = await self._api_key(tenant_id)
        data = await self.client.fetch_responses(api_key, row["request_id"])
        status = (data.get("request_status") if isinstance(data, dict) else None) or row.get("status") or "pending"
        updated = await repo.store_result(row["request_id"], status, data)
        return {"updated": updated or row, "data": data}

    async def list_requests(
        self,
        tenant_id: str,
        user_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        records = await self.tenants.records(tenant_id)
        return await RequestRepository(records).list_for_user(user_id, limit=limit, offset=offset)

    async def get_request(self, tenant_id: str, user_id: str, record_id: str) -> Dict[str, Any]:
        records = await self.tenants.records(tenant_id)
        row = await RequestRepository(records).get(record_id, user_id)
        if not row:
            raise NotFound("Request not found")
        return row

    async def search_by_registry(
        self,
        tenant_id: str,
        registry_number: str,
        region: str,
    ) -> List[Dict[str, Any]]:
        """Lawsuits linked to a professional registry number, waited on synchronously"""
        api_key, decision = await self._gate(tenant_id)
        search_key = f"{registry_number}/{region}"
        request_id = await self.client.create_request(
            api_key,
            {
                "search": {
                    "search_type": REGISTRY_SEARCH_TYPE,
                    "search_key": search_key,
                    "response_type": "lawsuits",
                    "search_params": {},
                }
            },
        )
        data = await self.client.wait_for_completion(api_key, request_id)
        await self.ledger.log_query(
            tenant_id, "registry_search", {"search_key": search_key}, decision=decision
        )
        return [normalize_lawsuit(item) for item in extract_responses(data)]

    # Trackings

    async def register_tracking(
        self,
        tenant_id: str,
        user_id: str,
        registration: TrackingRegistration,
        mode: str = "ensure",
    ) -> Dict[str, Any]:
        """
        Register a recurring tracking for the user

        In ensure mode an existing, non-deleted local tracking for the same
        search is returned without calling the provider.
        """
        if mode not in REGISTRATION_MODES:
            raise ValueError(f"Unknown registration mode: {mode}")
        records = await self.tenants.records(tenant_id)
        repo = TrackingRepository(records)
        search = registration.search

        if mode == "ensure":
            existing = await repo.find_active_by_search(search.search_type, search.search_key)
            if existing:
                logger.info(
                    "Tracking for %s %s already registered as %s",
                    search.search_type,
                    search.search_key,
                    existing.get("tracking_id"),
                )
                return {"tracking": existing, "created": False, "provider": None}

        api_key, decision = await self._gate(tenant_id)
        body = registration.model_copy(
            update={"callback_url": registration.callback_url or callback_url(self.settings.webhook_url, tenant_id, user_id)}
        ).provider_body()
        data = await self.client.register_tracking(api_key, body)
        await self.ledger.log_query(
            tenant_id,
            "tracking_create",
            {"search_type": search.search_type, "search_key": search.search_key},
            decision=decision,
        )

        merged = dict(body)
        if isinstance(data, dict):
            merged.update({k: v for k, v in data.items() if v is not None})
        tracking = Tracking.from_provider(merged, user_id)
        if not tracking.tracking_id:
            raise UpstreamFailure("Provider did not return a tracking id", status_code=200, body=str(data)[:300])
        row, created = await repo.save(tracking)
        return {"tracking": row, "created": created, "provider": data}

    async def list_trackings(
        self,
        tenant_id: str,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        status: Optional[str] = None,
        force_sync: bool = False,
    ) -> Dict[str, Any]:
        if force_sync:
            await self.resync_trackings(tenant_id)
        records = await self.tenants.records(tenant_id)
        page = max(page, 1)
        items = await TrackingRepository(records).list_for_user(
            user_id, status=status, limit=page_size, offset=(page - 1) * page_size
        )
        return {"items": items, "page": page, "page_size": page_size}

    async def resync_trackings(self, tenant_id: str, page_size: int = 100, max_pages: int = 50) -> Dict[str, int]:
        """
        Mirror the provider's tracking list into the tenant

        New trackings are stored only when an owner can be resolved; provisional
        owners are upgraded when a real match appears. Nothing is guessed here.
        """
        api_key = await self._api_key(tenant_id)
        records = await self.tenants.records(tenant_id)
        repo = TrackingRepository(records)
        summary = {"pages": 0, "seen": 0, "created": 0, "upgraded": 0, "skipped": 0}

        for page in range(1, max_pages + 1):
            data = await self.client.list_trackings(api_key, page=page, page_size=page_size)
            items = [i for i in tracking_items(data) if isinstance(i, dict)]
            summary["pages"] = page
            if not items:
                break

            ids = [str(i.get("tracking_id") or i.get("id") or "") for i in items]
            owners = await repo.owner_map([i for i in ids if i])
            for tracking_id, item in zip(ids, items):
                if not tracking_id:
                    continue
                summary["seen"] += 1
                if tracking_id in owners:
                    if await self._upgrade_owner(records, tenant_id, repo, tracking_id, owners[tracking_id], item):
                        summary["upgraded"] += 1
                    continue

                match = await self.ownership.resolve(records, tenant_id, item)
                if match is None:
                    logger.info("Skipping tracking %s in tenant %s: owner unresolved", tracking_id, tenant_id)
                    summary["skipped"] += 1
                    continue
                _, created = await repo.save(Tracking.from_provider(item, match.user_id, match.resolution))
                if created:
                    summary["created"] += 1

            if len(items) < page_size:
                break

        logger.info("Re-synced trackings for tenant %s: %s", tenant_id, summary)
        return summary

    async def _upgrade_owner(self, records, tenant_id: str, repo: TrackingRepository, tracking_id: str, owner: str, item) -> bool:
        if (owner or "") not in UNRESOLVED_OWNERS:
            row = await repo.get_by_tracking_id(tracking_id)
            if not row or row_resolution(row) not in PROVISIONAL:
                return False
        match = await self.ownership.resolve(records, tenant_id, item)
        if match is None or match.user_id == owner:
            return False
        await repo.update_owner(tracking_id, match.user_id, match.resolution)
        logger.info("Upgraded owner of tracking %s to %s (%s)", tracking_id, match.user_id, match.resolution.value)
        return True

    async def _owned_tracking(self, records, user_id: str, tracking_id: str, allow_deleted: bool = False) -> Dict[str, Any]:
        row = await TrackingRepository(records).get_by_tracking_id(tracking_id)
        if not row or row.get("user_id") != user_id:
            raise NotFound("Tracking not found")
        if not allow_deleted and row.get("status") == TrackingStatus.DELETED.value:
            raise NotFound("Tracking was deleted")
        return row

    async def get_tracking(self, tenant_id: str, user_id: str, tracking_id: str) -> Dict[str, Any]:
        records = await self.tenants.records(tenant_id)
        row = await self._owned_tracking(records, user_id, tracking_id, allow_deleted=True)
        api_key = await self._api_key(tenant_id)
        data = await self.client.get_tracking(api_key, tracking_id)
        return {"tracking": row, "provider": data}

    async def _change_tracking(self, tenant_id: str, user_id: str, tracking_id: str, operation: str) -> Dict[str, Any]:
        records = await self.tenants.records(tenant_id)
        row = await self._owned_tracking(records, user_id, tracking_id)
        api_key, decision = await self._gate(tenant_id)

        call, status = {
            "pause": (self.client.pause_tracking, TrackingStatus.PAUSED),
            "resume": (self.client.resume_tracking, TrackingStatus.ACTIVE),
            "delete": (self.client.delete_tracking, TrackingStatus.DELETED),
        }[operation]
        data = await call(api_key, tracking_id)
        await self.ledger.log_query(
            tenant_id, f"tracking_{operation}", {"tracking_id": tracking_id}, decision=decision
        )

        updated = await TrackingRepository(records).update_status(tracking_id, status)
        return {"tracking": updated or row, "provider": data}

    async def pause_tracking(self, tenant_id: str, user_id: str, tracking_id: str) -> Dict[str, Any]:
        return await self._change_tracking(tenant_id, user_id, tracking_id, "pause")

    async def resume_tracking(self, tenant_id: str, user_id: str, tracking_id: str) -> Dict[str, Any]:
        return await self._change_tracking(tenant_id, user_id, tracking_id, "resume")

    async def delete_tracking(self, tenant_id: str, user_id: str, tracking_id: str) -> Dict[str, Any]:
        return await self._change_tracking(tenant_id, user_id, tracking_id, "delete")

    async def get_tracking_history(
        self,
        tenant_id: str,
        user_id: str,
        tracking_id: str,
        page: Optional[int] = None,
        page_size: Optional[int] = None,
        created_at_gte: Optional[str] = None,
        created_at_lte: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Provider history page; new items are stored locally"""
        records = await self.tenants.records(tenant_id)
        await self._owned_tracking(records, user_id, tracking_id, allow_deleted=True)
        api_key, decision = await self._gate(tenant_id)

        data = await self.client.get_tracking_history(
            api_key,
            tracking_id,
            page=page,
            page_size=page_size,
            created_at_gte=created_at_gte,
            created_at_lte=created_at_lte,
        )
        await self.ledger.log_query(
            tenant_id, "tracking_history", {"tracking_id": tracking_id}, decision=decision
        )

        entries = [
            entry
            for entry in (HistoryEntry.from_provider(tracking_id, item) for item in tracking_items(data) if isinstance(item, dict))
            if entry is not None
        ]
        stored = await HistoryRepository(records).append_batch(entries)
        result = dict(data) if isinstance(data, dict) else {"page_data": data}
        result["stored"] = stored
        return result

    async def local_history(
        self,
        tenant_id: str,
        user_id: str,
        tracking_id: str,
        page: int = 1,
        page_size: int = 20,
    ) -> Dict[str, Any]:
        records = await self.tenants.records(tenant_id)
        await self._owned_tracking(records, user_id, tracking_id, allow_deleted=True)
        return await HistoryRepository(records).list_page(tracking_id, page=page, page_size=page_size)

    async def history_item(self, tenant_id: str, user_id: str, tracking_id: str, response_id: str) -> Dict[str, Any]:
        records = await self.tenants.records(tenant_id)
        await self._owned_tracking(records, user_id, tracking_id, allow_deleted=True)
        item = await HistoryRepository(records).get_item(tracking_id, response_id)
        if not item:
            raise NotFound("History item not found")
        return item

    # Timelines and quota

    async def history_lookup(self, tenant_id: str, user_id: str, search_type: str, search_key: str) -> Dict[str, Any]:
        """Case timeline built from the user's stored request results"""
        records = await self.tenants.records(tenant_id)
        rows = await RequestRepository(records).list_for_search(user_id, search_type, search_key.strip())
        return summarize_requests(rows)

    async def public_history_lookup(self, search_type: str, search_key: str) -> Dict[str, Any]:
        repo = ClientRequestRepository(self.tenants.system_records())
        row = await repo.get_by_search(search_type, search_key.strip())
        return summarize_client_request(row)

    async def quota_status(self, tenant_id: str) -> Dict[str, Any]:
        await self.tenants.resolve(tenant_id)
        return await self.ledger.status(tenant_id)

"""One-off provider requests, tenant-scoped and system-owned"""

import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List

from lexdesk.database.records import TenantRecords
from lexdesk.errors import ConstraintViolation
from lexdesk.models.tracking import SearchDescriptor

logger = logging.getLogger(__name__)

REQUESTS_TABLE = "external_requests"
CLIENT_REQUESTS_TABLE = "client_requests"


def _wrap(result: Any) -> Any:
    if result is None or isinstance(result, (dict, list)):
        return result
    return {"value": result}


class RequestRepository:
    """External Request rows of one tenant"""

    def __init__(self, records: TenantRecords):
        self.records = records

    async def create(
        self,
        user_id: str,
        request_id: str,
        search: SearchDescriptor,
        status: str = "pending",
    ) -> Dict[str, Any]:
        data = {
            "user_id": user_id,
            "request_id": request_id,
            "search": search.model_dump(exclude_none=True),
            "search_type": search.search_type,
            "search_key": search.search_key,
            "status": status,
        }
        try:
            return await self.records.insert(REQUESTS_TABLE, data)
        except ConstraintViolation:
            existing = await self.get_by_request_id(request_id)
            if existing is None:
                raise
            return existing

    async def get(self, record_id: str, user_id: Optional[str] = None) -> Optional[Dict[str, Any]]:
        where: Dict[str, Any] = {"id": record_id}
        if user_id:
            where["user_id"] = user_id
        return await self.records.select_one(REQUESTS_TABLE, where)

    async def get_by_request_id(self, request_id: str) -> Optional[Dict[str, Any]]:
        return await self.records.select_one(REQUESTS_TABLE, {"request_id": request_id})

    async def list_for_user(
        self,
        user_id: str,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        return await self.records.select(
            REQUESTS_TABLE,
            where={"user_id": user_id},
            order_by="created_at DESC",
            limit=limit,
            offset=offset,
        )

    async def list_for_search(self, user_id: str, search_type: str, search_key: str) -> List[Dict[str, Any]]:
        return await self.records.select(
            REQUESTS_TABLE,
            where={"user_id": user_id, "search_type": search_type, "search_key": search_key},
            order_by="created_at DESC",
        )

    async def store_result(self, request_id: str, status: str, result: Any) -> Optional[Dict[str, Any]]:
        """Persist the latest fetched result; None if the request is unknown locally"""
        rows = await self.records.update_where(
            REQUESTS_TABLE,
            {"request_id": request_id},
            {"status": status, "result": _wrap(result)},
            active_only=True,
        )
        return rows[0] if rows else None


class ClientRequestRepository:
    """Public-portal lookups shared by every tenant"""

    def __init__(self, records: TenantRecords):
        self.records = records

    async def get_by_search(self, search_type: str, search_key: str) -> Optional[Dict[str, Any]]:
        return await self.records.select_one(
            CLIENT_REQUESTS_TABLE,
            {"search_type": search_type, "search_key": search_key},
            system_owned=True,
        )

    async def upsert(
        self,
        search: SearchDescriptor,
        request_id: str,
        status: str = "pending",
    ) -> Dict[str, Any]:
        """One row per (search_type, search_key); request ids accumulate"""
        existing = await self.get_by_search(search.search_type, search.search_key)
        if existing:
            request_ids = list(existing.get("request_ids") or [])
            if request_id not in request_ids:
                request_ids.append(request_id)
            row = await self.records.update(
                CLIENT_REQUESTS_TABLE,
                existing["id"],
                {"request_ids": request_ids, "status": status},
                system_owned=True,
            )
            return row or existing
        data = {
            "search_type": search.search_type,
            "search_key": search.search_key,
            "search": search.model_dump(exclude_none=True),
            "request_ids": [request_id],
            "status": status,
        }
        try:
            return await self.records.insert(CLIENT_REQUESTS_TABLE, data, system_owned=True)
        except ConstraintViolation:
            # concurrent first lookup for the same search
            existing = await self.get_by_search(search.search_type, search.search_key)
            if existing is None:
                raise
            return existing

    async def store_result(self, record_id: str, status: str, result: Any) -> Optional[Dict[str, Any]]:
        return await self.records.update(
            CLIENT_REQUESTS_TABLE,
            record_id,
            {"status": status, "metadata": _wrap(result) or {}, "last_update": datetime.now(timezone.utc)},
            system_owned=True,
        )

    async def store_timeline(self, record_id: str, summary: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        last_update = (summary.get("lastUpdate") or {}).get("date")
        data = {
            "status": summary.get("status") or "pending",
            "process_number": summary.get("processNumber"),
            "process_title": summary.get("processTitle"),
            "timeline": summary.get("timeline") or [],
        }
        if last_update:
            data["last_update"] = last_update
        return await self.records.update(CLIENT_REQUESTS_TABLE, record_id, data, system_owned=True)

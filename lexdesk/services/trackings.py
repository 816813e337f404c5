"""Local tracking rows and their append-only history"""

import json
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, List, Tuple

from lexdesk.database.records import TenantRecords
from lexdesk.errors import ConstraintViolation
from lexdesk.models.tracking import HistoryEntry, OwnerResolution, Tracking, TrackingStatus

logger = logging.getLogger(__name__)

TRACKINGS_TABLE = "trackings"
HISTORY_TABLE = "tracking_history"

# Owners that do not count as a resolved user
UNRESOLVED_OWNERS = {"", "system"}


class TrackingRepository:
    """Tracking rows of one tenant"""

    def __init__(self, records: TenantRecords):
        self.records = records

    async def save(self, tracking: Tracking) -> Tuple[Dict[str, Any], bool]:
        """Insert the row; an existing row for the same tracking id is returned instead

        Returns (row, created).
        """
        try:
            row = await self.records.insert(TRACKINGS_TABLE, tracking.to_row())
            return row, True
        except ConstraintViolation:
            existing = await self.get_by_tracking_id(tracking.tracking_id)
            if existing is None:
                raise
            logger.debug("Tracking %s already stored locally", tracking.tracking_id)
            return existing, False

    async def get_by_tracking_id(self, tracking_id: str) -> Optional[Dict[str, Any]]:
        """Row for the provider id, including deleted ones"""
        return await self.records.select_one(
            TRACKINGS_TABLE, {"tracking_id": tracking_id}, active_only=False
        )

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        where: Dict[str, Any] = {"user_id": user_id}
        if status:
            where["status"] = status
        return await self.records.select(
            TRACKINGS_TABLE,
            where=where,
            order_by="created_at DESC",
            limit=limit,
            offset=offset,
        )

    async def owner_map(self, tracking_ids: List[str]) -> Dict[str, str]:
        """tracking_id -> user_id for the ids already stored locally"""
        if not tracking_ids:
            return {}
        rows = await self.records.query(
            "SELECT tracking_id, user_id FROM {schema}.trackings "
            "WHERE tracking_id IN (SELECT jsonb_array_elements_text(CAST(:ids AS jsonb)))",
            {"ids": _json_list(tracking_ids)},
        )
        return {row["tracking_id"]: row["user_id"] for row in rows}

    async def find_active_by_search(self, search_type: str, search_key: str) -> Optional[Dict[str, Any]]:
        """Non-deleted row watching the same search, if any"""
        rows = await self.records.select(
            TRACKINGS_TABLE,
            where={"search_type": search_type, "search_key": search_key},
            order_by="created_at ASC",
        )
        for row in rows:
            if row.get("status") != TrackingStatus.DELETED.value:
                return row
        return None

    async def find_owned_by_search(
        self,
        search_type: str,
        search_key: str,
        exclude_tracking_id: Optional[str] = None,
    ) -> Optional[Dict[str, Any]]:
        """Oldest active row for the same search that already has a real owner"""
        rows = await self.records.select(
            TRACKINGS_TABLE,
            where={"search_type": search_type, "search_key": search_key},
            order_by="created_at ASC",
        )
        for row in rows:
            if row.get("tracking_id") == exclude_tracking_id:
                continue
            if (row.get("user_id") or "") in UNRESOLVED_OWNERS:
                continue
            if row.get("owner_resolution") == OwnerResolution.FALLBACK.value:
                continue
            return row
        return None

    async def update_owner(self, tracking_id: str, user_id: str, resolution: OwnerResolution) -> List[Dict[str, Any]]:
        return await self.records.update_where(
            TRACKINGS_TABLE,
            {"tracking_id": tracking_id},
            {"user_id": user_id, "owner_resolution": resolution.value},
            active_only=True,
        )

    async def update_status(
        self,
        tracking_id: str,
        status: TrackingStatus,
        keep_paused: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """
        Last write wins; deleted is terminal and also clears the active flag

        With keep_paused a paused row is left alone, so only an explicit
        resume takes a tracking out of paused.
        """
        data: Dict[str, Any] = {"status": status.value}
        if status == TrackingStatus.DELETED:
            data["is_active"] = False
        exclude = {"status": TrackingStatus.PAUSED.value} if keep_paused else None
        # deleted rows are inactive, so the active filter keeps them untouched
        rows = await self.records.update_where(
            TRACKINGS_TABLE, {"tracking_id": tracking_id}, data, active_only=True, exclude=exclude
        )
        return rows[0] if rows else None

    async def stamp_webhook(self, tracking_id: str, when: Optional[datetime] = None) -> Optional[Dict[str, Any]]:
        rows = await self.records.update_where(
            TRACKINGS_TABLE,
            {"tracking_id": tracking_id},
            {"last_webhook_received_at": when or datetime.now(timezone.utc)},
            active_only=True,
        )
        return rows[0] if rows else None


class HistoryRepository:
    """Provider responses keyed by their response id"""

    def __init__(self, records: TenantRecords):
        self.records = records

    async def append(self, entry: HistoryEntry) -> Optional[Dict[str, Any]]:
        """Insert once per response id; None when it was already stored"""
        try:
            return await self.records.insert(HISTORY_TABLE, entry.to_row())
        except ConstraintViolation:
            logger.debug("History entry %s already recorded", entry.response_id)
            return None

    async def append_batch(self, entries: List[HistoryEntry]) -> int:
        inserted = 0
        for entry in entries:
            if await self.append(entry) is not None:
                inserted += 1
        return inserted

    async def list_page(self, tracking_id: str, page: int = 1, page_size: int = 20) -> Dict[str, Any]:
        page = max(page, 1)
        items = await self.records.select(
            HISTORY_TABLE,
            where={"tracking_id": tracking_id},
            order_by="created_at DESC",
            limit=page_size,
            offset=(page - 1) * page_size,
        )
        total = await self.records.count(HISTORY_TABLE, where={"tracking_id": tracking_id})
        return {"items": items, "page": page, "page_size": page_size, "total": total}

    async def get_item(self, tracking_id: str, response_id: str) -> Optional[Dict[str, Any]]:
        return await self.records.select_one(
            HISTORY_TABLE, {"tracking_id": tracking_id, "response_id": response_id}
        )


def _json_list(values: List[str]) -> str:
    return json.dumps([str(v) for v in values])

"""
Ownership resolution for trackings the system did not create itself

Priority:
1. notification emails -> first active tenant user with that email
2. registry-number searches -> owner of another tracking for the same key
3. unresolved

Only webhook processing goes further (user hint, first active user, system),
because a callback must be stored somewhere. Re-sync never guesses.
"""

import logging
from typing import Optional, Dict, Any

from pydantic import BaseModel

from lexdesk.database.records import TenantRecords
from lexdesk.models.tracking import OwnerResolution, REGISTRY_SEARCH_TYPE, SearchDescriptor
from lexdesk.services.trackings import TrackingRepository, UNRESOLVED_OWNERS

logger = logging.getLogger(__name__)

SYSTEM_OWNER = "system"

# Tags that a later, stronger match may replace
PROVISIONAL = {OwnerResolution.FALLBACK, OwnerResolution.SYSTEM}


class OwnerMatch(BaseModel):
    user_id: str
    resolution: OwnerResolution

    @property
    def provisional(self) -> bool:
        return self.resolution in PROVISIONAL


def notification_emails(tracking: Dict[str, Any]) -> list:
    emails = tracking.get("notification_emails") if isinstance(tracking, dict) else None
    if not isinstance(emails, list):
        return []
    return [e.strip() for e in emails if isinstance(e, str) and e.strip()]


def row_resolution(row: Dict[str, Any]) -> OwnerResolution:
    try:
        return OwnerResolution(row.get("owner_resolution") or OwnerResolution.OWNER.value)
    except ValueError:
        return OwnerResolution.OWNER


class OwnershipResolver:
    """Infers the owning user of an externally discovered tracking"""

    def __init__(self, tenants):
        self.tenants = tenants

    async def resolve(
        self,
        records: TenantRecords,
        tenant_id: str,
        tracking: Dict[str, Any],
    ) -> Optional[OwnerMatch]:
        """Email match, then registry-key match; None when neither applies"""
        emails = notification_emails(tracking)
        if emails:
            user = await self.tenants.find_active_user_by_emails(tenant_id, emails)
            if user:
                return OwnerMatch(user_id=user.id, resolution=OwnerResolution.EMAIL)

        search = SearchDescriptor.from_payload(tracking)
        if search.search_type == REGISTRY_SEARCH_TYPE and search.search_key:
            tracking_id = str(tracking.get("tracking_id") or tracking.get("id") or "")
            row = await TrackingRepository(records).find_owned_by_search(
                search.search_type, search.search_key, exclude_tracking_id=tracking_id or None
            )
            if row:
                return OwnerMatch(user_id=str(row["user_id"]), resolution=OwnerResolution.REGISTRY)

        return None

    async def resolve_for_webhook(
        self,
        records: TenantRecords,
        tenant_id: str,
        local_row: Optional[Dict[str, Any]],
        user_hint: Optional[str],
        tracking: Dict[str, Any],
    ) -> OwnerMatch:
        """Always returns an owner; provisional owners are logged"""
        current = None
        if local_row and (local_row.get("user_id") or "") not in UNRESOLVED_OWNERS:
            current = OwnerMatch(user_id=str(local_row["user_id"]), resolution=row_resolution(local_row))
            if not current.provisional:
                return current

        if user_hint:
            user = await self.tenants.get_user(tenant_id, user_hint)
            if user:
                return OwnerMatch(user_id=user.id, resolution=OwnerResolution.HINT)
            logger.info("Ignoring user hint %s: not an active user of tenant %s", user_hint, tenant_id)

        match = await self.resolve(records, tenant_id, tracking)
        if match:
            return match

        if current:
            return current

        first = await self.tenants.first_active_user(tenant_id)
        if first:
            logger.warning(
                "Tracking %s in tenant %s has no resolvable owner; assigning first active user %s",
                tracking.get("tracking_id"),
                tenant_id,
                first.id,
            )
            return OwnerMatch(user_id=first.id, resolution=OwnerResolution.FALLBACK)

        logger.warning(
            "Tenant %s has no active users; tracking %s stored under %s",
            tenant_id,
            tracking.get("tracking_id"),
            SYSTEM_OWNER,
        )
        return OwnerMatch(user_id=SYSTEM_OWNER, resolution=OwnerResolution.SYSTEM)

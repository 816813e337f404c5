"""In-app notifications"""

import logging
import time
import uuid
from typing import Optional, Dict, Any, List

from lexdesk.database.records import TenantRecords
from lexdesk.models.ledger import NotificationCreate

logger = logging.getLogger(__name__)

NOTIFICATIONS_TABLE = "notifications"


class NotificationService:
    """Creates notification rows in the tenant namespace"""

    async def create_notification(self, records: TenantRecords, notification: NotificationCreate) -> Dict[str, Any]:
        data = notification.model_dump(exclude_none=True)
        data["id"] = f"notif_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"
        data["read"] = False
        return await records.insert(NOTIFICATIONS_TABLE, data)

    async def notify_users(
        self,
        records: TenantRecords,
        user_ids: List[str],
        title: str,
        message: str,
        payload: Optional[Dict[str, Any]] = None,
        type: str = "system",
        link: Optional[str] = None,
    ) -> int:
        """Fan out one notification per user; a failing user does not stop the rest"""
        sent = 0
        for user_id in user_ids:
            try:
                await self.create_notification(
                    records,
                    NotificationCreate(
                        user_id=user_id,
                        type=type,
                        title=title,
                        message=message,
                        payload=payload,
                        link=link,
                    ),
                )
                sent += 1
            except Exception:
                logger.exception("Failed to notify user %s", user_id)
        return sent

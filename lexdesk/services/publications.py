"""Publications derived from tracking events"""

from typing import Dict, Any

from lexdesk.database.records import TenantRecords
from lexdesk.models.ledger import PublicationCreate

PUBLICATIONS_TABLE = "publications"


class PublicationsService:
    async def create_publication(
        self,
        records: TenantRecords,
        user_id: str,
        publication: PublicationCreate,
    ) -> Dict[str, Any]:
        data = publication.model_dump()
        data["user_id"] = user_id
        return await records.insert(PUBLICATIONS_TABLE, data)

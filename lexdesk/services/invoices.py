"""Receivables (invoices) behind the monthly receivables quota"""

import logging
import time
import uuid
from typing import Optional, Dict, Any

from lexdesk.database.records import TenantRecords
from lexdesk.errors import ConstraintViolation
from lexdesk.models.ledger import InvoiceCreate

logger = logging.getLogger(__name__)

INVOICES_TABLE = "invoices"


class InvoicesService:
    def __init__(self, ledger):
        self.ledger = ledger

    async def get_by_number(self, records: TenantRecords, number: str) -> Optional[Dict[str, Any]]:
        return await records.select_one(INVOICES_TABLE, {"number": number})

    async def create_invoice(
        self,
        records: TenantRecords,
        tenant_id: str,
        invoice: InvoiceCreate,
        created_by: str,
    ) -> Dict[str, Any]:
        """Return the invoice with the same number, else gate on the receivables quota and insert"""
        existing = await self.get_by_number(records, invoice.number)
        if existing:
            return existing

        await self.ledger.enforce_receivable_quota(tenant_id, records)

        data = invoice.model_dump(exclude_none=True)
        data["id"] = f"invoice_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"
        data["status"] = "draft"
        data["created_by"] = created_by
        try:
            return await records.insert(INVOICES_TABLE, data)
        except ConstraintViolation:
            existing = await self.get_by_number(records, invoice.number)
            if existing is None:
                raise
            return existing

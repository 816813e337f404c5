"""Financial ledger rows"""

import logging
from datetime import date, datetime
from typing import Dict, Any, Union

from lexdesk.database.records import TenantRecords
from lexdesk.database.statements import infer_cast
from lexdesk.models.ledger import OverageKind, TransactionCreate

logger = logging.getLogger(__name__)

TRANSACTIONS_TABLE = "transactions"


class TransactionsService:
    """Append-only income/expense ledger"""

    async def create_transaction(
        self,
        records: TenantRecords,
        transaction: TransactionCreate,
        actor: str,
    ) -> Dict[str, Any]:
        data = transaction.model_dump(exclude_none=True)
        data["created_by"] = actor
        row = await records.insert(TRANSACTIONS_TABLE, data)
        logger.info(
            "Recorded %s transaction %s (%s %.2f)",
            transaction.type,
            row.get("id"),
            transaction.category_id,
            transaction.amount,
        )
        return row

    async def overage_summary(
        self,
        records: TenantRecords,
        since: Union[date, datetime],
        kind: OverageKind = OverageKind.QUERY,
    ) -> Dict[str, Any]:
        """Count and total of overage charges booked since the given day"""
        if isinstance(since, datetime):
            since = since.date()
        cast, wire = infer_cast(since)
        rows = await records.query(
            "SELECT COUNT(*) AS total, COALESCE(SUM(amount), 0) AS amount "
            "FROM {schema}.transactions "
            f"WHERE category_id = :category AND date >= CAST(:since AS {cast}) AND is_active = TRUE",
            {"category": kind.value, "since": wire},
        )
        row = rows[0] if rows else {}
        return {"count": int(row.get("total") or 0), "amount": float(row.get("amount") or 0)}

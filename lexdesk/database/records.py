"""
Generic record operations scoped to one tenant namespace.

Every domain repository is a thin wrapper around TenantRecords. A records
instance is bound to exactly one schema, so a write can only land in the
namespace it was created for. The single exception is the explicit
system-owned table registry: rows in those tables live in ``public`` and are
visible tenant-wide, and callers must opt in per call with
``system_owned=True``.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Protocol

from lexdesk.database import statements
from lexdesk.database.statements import Statement, check_identifier

logger = logging.getLogger(__name__)

SYSTEM_SCHEMA = "public"

# Tables whose rows are shared by all tenants (public portal lookups)
SYSTEM_OWNED_TABLES = frozenset({"client_requests"})

# Legacy tables with NOT NULL columns older callers do not send
LEGACY_BACKFILLS: Dict[str, Dict[str, Callable[[Dict[str, Any]], Any]]] = {
    "projects": {
        "name": lambda data: data.get("title") or "",
        "client_name": lambda data: "",
    },
}

REQUIRED_COLUMNS_SQL = """
    SELECT column_name, is_nullable, column_default
    FROM information_schema.columns
    WHERE table_schema = :schema AND table_name = :table
"""


class Executor(Protocol):
    async def fetch(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        ...


class TenantRecords:
    """Insert / update / soft-delete / query bound to one namespace"""

    def __init__(
        self,
        executor: Executor,
        schema: str,
        tenant_id: Optional[str] = None,
        system_only: bool = False,
    ):
        check_identifier(schema)
        if not system_only and schema == SYSTEM_SCHEMA:
            raise ValueError("Tenant records cannot be bound to the shared schema")
        self.executor = executor
        self.schema = schema
        self.tenant_id = tenant_id
        self.system_only = system_only

    @classmethod
    def system(cls, executor: Executor) -> "TenantRecords":
        """Records that can only reach system-owned tables"""
        return cls(executor, SYSTEM_SCHEMA, tenant_id=None, system_only=True)

    def _schema_for(self, table: str, system_owned: bool = False) -> str:
        check_identifier(table)
        if system_owned or self.system_only:
            if table not in SYSTEM_OWNED_TABLES:
                raise ValueError(f"Table {table} is not registered as system-owned")
            return SYSTEM_SCHEMA
        return self.schema

    async def _run(self, statement: Statement) -> List[Dict[str, Any]]:
        return await self.executor.fetch(statement.sql, statement.params)

    async def insert(
        self,
        table: str,
        data: Dict[str, Any],
        system_owned: bool = False,
    ) -> Dict[str, Any]:
        """Insert one row and return it; raises ConstraintViolation on conflicts"""
        schema = self._schema_for(table, system_owned)
        if table in LEGACY_BACKFILLS:
            data = await self._backfill_required(schema, table, data)
        rows = await self._run(statements.build_insert(schema, table, data))
        return rows[0] if rows else {}

    async def update(
        self,
        table: str,
        record_id: Any,
        data: Dict[str, Any],
        active_only: bool = True,
        system_owned: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """Update by id; None when no row matched"""
        schema = self._schema_for(table, system_owned)
        rows = await self._run(
            statements.build_update(schema, table, record_id, data, active_only=active_only)
        )
        return rows[0] if rows else None

    async def update_where(
        self,
        table: str,
        where: Dict[str, Any],
        data: Dict[str, Any],
        active_only: bool = False,
        system_owned: bool = False,
        exclude: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        schema = self._schema_for(table, system_owned)
        return await self._run(
            statements.build_update_where(schema, table, where, data, active_only=active_only, exclude=exclude)
        )

    async def soft_delete(self, table: str, record_id: Any) -> Optional[Dict[str, Any]]:
        """Flip is_active; None if already inactive or absent"""
        schema = self._schema_for(table)
        rows = await self._run(statements.build_soft_delete(schema, table, record_id))
        return rows[0] if rows else None

    async def select(
        self,
        table: str,
        where: Optional[Dict[str, Any]] = None,
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
        offset: Optional[int] = None,
        active_only: bool = True,
        system_owned: bool = False,
    ) -> List[Dict[str, Any]]:
        schema = self._schema_for(table, system_owned)
        return await self._run(
            statements.build_select(
                schema,
                table,
                where=where,
                order_by=order_by,
                limit=limit,
                offset=offset,
                active_only=active_only,
            )
        )

    async def select_one(
        self,
        table: str,
        where: Dict[str, Any],
        active_only: bool = True,
        system_owned: bool = False,
    ) -> Optional[Dict[str, Any]]:
        rows = await self.select(
            table, where=where, limit=1, active_only=active_only, system_owned=system_owned
        )
        return rows[0] if rows else None

    async def count(
        self,
        table: str,
        where: Optional[Dict[str, Any]] = None,
        active_only: bool = True,
        since: Optional[datetime] = None,
        since_column: str = "created_at",
    ) -> int:
        schema = self._schema_for(table)
        rows = await self._run(
            statements.build_count(
                schema,
                table,
                where=where,
                active_only=active_only,
                since=since,
                since_column=since_column,
            )
        )
        return int(rows[0]["total"]) if rows else 0

    async def query(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Raw passthrough; {schema} always resolves to the bound namespace"""
        return await self.executor.fetch(statements.substitute_schema(sql, self.schema), params or {})

    async def _backfill_required(
        self,
        schema: str,
        table: str,
        data: Dict[str, Any],
    ) -> Dict[str, Any]:
        try:
            columns = await self.executor.fetch(
                REQUIRED_COLUMNS_SQL, {"schema": schema, "table": table}
            )
        except Exception:
            logger.debug("Could not read column metadata for %s.%s", schema, table, exc_info=True)
            return data
        required = {
            c["column_name"]
            for c in columns
            if c.get("is_nullable") == "NO" and not (c.get("column_default") or "").strip()
        }
        filled = dict(data)
        for column, fill in LEGACY_BACKFILLS[table].items():
            if column in required and column not in filled:
                filled[column] = fill(filled)
        return filled

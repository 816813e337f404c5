"""
Typed Statement Builder

Turns a logical column -> value mapping into a parameterized SQL statement,
choosing the wire cast of every value from its shape so callers never name
column types. Inference order, evaluated per value:

1. None                          -> no cast
2. datetime instance             -> timestamptz (ISO-8601 string)
3. "YYYY-MM-DD" string           -> date
4. "YYYY-MM-DDTHH:MM:SS..." str  -> timestamptz
5. list / tuple / dict           -> jsonb (JSON text, never a native array)
6. canonical UUID string         -> uuid
7. anything else                 -> untyped

Statements use SQLAlchemy named binds (``:p0``) and ``CAST(:p0 AS type)``;
the ``{schema}`` token is replaced with the validated tenant namespace.
Equality filters on uuid-shaped values compare ``column::text`` instead.
"""

import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE
)
DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
DATETIME_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}")
IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
ORDER_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)(\s+(ASC|DESC))?$", re.IGNORECASE)

SCHEMA_TOKEN = "{schema}"

CAST_TIMESTAMPTZ = "timestamptz"
CAST_DATE = "date"
CAST_JSONB = "jsonb"
CAST_UUID = "uuid"


@dataclass
class Statement:
    """SQL text plus its bind parameters"""
    sql: str
    params: Dict[str, Any] = field(default_factory=dict)


def infer_cast(value: Any) -> Tuple[Optional[str], Any]:
    """Return (cast, wire value) for a single value"""
    if value is None:
        return None, None

    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return CAST_TIMESTAMPTZ, value.isoformat()

    if isinstance(value, date):
        return CAST_DATE, value.isoformat()

    if isinstance(value, str) and DATE_RE.match(value):
        return CAST_DATE, value

    if isinstance(value, str) and DATETIME_RE.match(value):
        return CAST_TIMESTAMPTZ, value

    if isinstance(value, (list, tuple, dict)):
        return CAST_JSONB, json.dumps(value, default=str)

    if isinstance(value, uuid.UUID):
        return CAST_UUID, str(value)

    if isinstance(value, str) and UUID_RE.match(value):
        return CAST_UUID, value

    return None, value


def placeholder(name: str, cast: Optional[str]) -> str:
    if cast:
        return f"CAST(:{name} AS {cast})"
    return f":{name}"


def check_identifier(name: str) -> str:
    """Reject anything that is not a bare SQL identifier"""
    if not isinstance(name, str) or not IDENTIFIER_RE.match(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def qualified(schema: str, table: str) -> str:
    return f"{check_identifier(schema)}.{check_identifier(table)}"


def substitute_schema(sql: str, schema: str) -> str:
    """Replace every {schema} token with the namespace"""
    return sql.replace(SCHEMA_TOKEN, check_identifier(schema))


def _bind(data: Dict[str, Any], prefix: str) -> Tuple[List[str], List[str], Dict[str, Any]]:
    columns: List[str] = []
    placeholders: List[str] = []
    params: Dict[str, Any] = {}
    for index, (column, value) in enumerate(data.items()):
        name = f"{prefix}{index}"
        cast, wire = infer_cast(value)
        columns.append(check_identifier(column))
        placeholders.append(placeholder(name, cast))
        params[name] = wire
    return columns, placeholders, params


def _where(
    where: Optional[Dict[str, Any]],
    active_only: bool,
) -> Tuple[List[str], Dict[str, Any]]:
    clauses: List[str] = []
    params: Dict[str, Any] = {}
    for index, (column, value) in enumerate((where or {}).items()):
        check_identifier(column)
        if value is None:
            clauses.append(f"{column} IS NULL")
            continue
        name = f"w{index}"
        cast, wire = infer_cast(value)
        if cast == CAST_UUID or column == "id":
            # identifiers are stored as uuid or varchar depending on the table
            clauses.append(f"{column}::text = :{name}")
            wire = str(value)
        else:
            clauses.append(f"{column} = {placeholder(name, cast)}")
        params[name] = wire
    if active_only:
        clauses.append("is_active = TRUE")
    return clauses, params


def build_insert(schema: str, table: str, data: Dict[str, Any]) -> Statement:
    """INSERT ... RETURNING * with one placeholder per column"""
    if not data:
        raise ValueError(f"No data provided for insert into {table}")
    columns, placeholders, params = _bind(data, "p")
    sql = (
        f"INSERT INTO {qualified(schema, table)} ({', '.join(columns)}) "
        f"VALUES ({', '.join(placeholders)}) RETURNING *"
    )
    return Statement(sql, params)


def _set_clause(data: Dict[str, Any]) -> Tuple[str, Dict[str, Any]]:
    columns, placeholders, params = _bind(data, "p")
    assignments = [f"{c} = {p}" for c, p in zip(columns, placeholders)]
    if "updated_at" not in data:
        assignments.append("updated_at = NOW()")
    return ", ".join(assignments), params


def build_update(
    schema: str,
    table: str,
    record_id: Any,
    data: Dict[str, Any],
    active_only: bool = True,
) -> Statement:
    """UPDATE one row by id; inactive rows are skipped unless active_only is False"""
    if not data:
        raise ValueError(f"No data provided for update of {table}")
    assignments, params = _set_clause(data)
    params["id"] = str(record_id)
    sql = f"UPDATE {qualified(schema, table)} SET {assignments} WHERE id::text = :id"
    if active_only:
        sql += " AND is_active = TRUE"
    return Statement(sql + " RETURNING *", params)


def _exclude(exclude: Optional[Dict[str, Any]]) -> Tuple[List[str], Dict[str, Any]]:
    clauses: List[str] = []
    params: Dict[str, Any] = {}
    for index, (column, value) in enumerate((exclude or {}).items()):
        check_identifier(column)
        name = f"x{index}"
        cast, wire = infer_cast(value)
        if cast == CAST_UUID:
            clauses.append(f"{column}::text IS DISTINCT FROM :{name}")
        else:
            clauses.append(f"{column} IS DISTINCT FROM {placeholder(name, cast)}")
        params[name] = wire
    return clauses, params


def build_update_where(
    schema: str,
    table: str,
    where: Dict[str, Any],
    data: Dict[str, Any],
    active_only: bool = False,
    exclude: Optional[Dict[str, Any]] = None,
) -> Statement:
    """UPDATE every row matching equality filters, skipping rows that hold an excluded value"""
    if not data:
        raise ValueError(f"No data provided for update of {table}")
    if not where:
        raise ValueError(f"Refusing unfiltered update of {table}")
    assignments, params = _set_clause(data)
    clauses, where_params = _where(where, active_only)
    params.update(where_params)
    excluded, exclude_params = _exclude(exclude)
    clauses.extend(excluded)
    params.update(exclude_params)
    sql = (
        f"UPDATE {qualified(schema, table)} SET {assignments} "
        f"WHERE {' AND '.join(clauses)} RETURNING *"
    )
    return Statement(sql, params)


def build_soft_delete(schema: str, table: str, record_id: Any) -> Statement:
    sql = (
        f"UPDATE {qualified(schema, table)} SET is_active = FALSE, updated_at = NOW() "
        f"WHERE id::text = :id AND is_active = TRUE RETURNING *"
    )
    return Statement(sql, {"id": str(record_id)})


def build_select(
    schema: str,
    table: str,
    where: Optional[Dict[str, Any]] = None,
    order_by: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    active_only: bool = True,
) -> Statement:
    clauses, params = _where(where, active_only)
    sql = f"SELECT * FROM {qualified(schema, table)}"
    if clauses:
        sql += f" WHERE {' AND '.join(clauses)}"
    if order_by:
        match = ORDER_RE.match(order_by.strip())
        if not match:
            raise ValueError(f"Invalid ORDER BY: {order_by!r}")
        sql += f" ORDER BY {order_by.strip()}"
    if limit is not None:
        sql += " LIMIT :limit"
        params["limit"] = int(limit)
    if offset:
        sql += " OFFSET :offset"
        params["offset"] = int(offset)
    return Statement(sql, params)


def build_count(
    schema: str,
    table: str,
    where: Optional[Dict[str, Any]] = None,
    active_only: bool = True,
    since: Optional[datetime] = None,
    since_column: str = "created_at",
) -> Statement:
    clauses, params = _where(where, active_only)
    if since is not None:
        cast, wire = infer_cast(since)
        clauses.append(f"{check_identifier(since_column)} >= {placeholder('since', cast)}")
        params["since"] = wire
    sql = f"SELECT COUNT(*) AS total FROM {qualified(schema, table)}"
    if clauses:
        sql += f" WHERE {' AND '.join(clauses)}"
    return Statement(sql, params)

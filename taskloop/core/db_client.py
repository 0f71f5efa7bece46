"""SQLite database client wrapper with CRUD and conditional-update operations."""

import asyncio
import json
import logging
import re
import threading
from collections.abc import Mapping, Sequence
from datetime import datetime
from pathlib import Path
from typing import Any

import aiosqlite

from taskloop.core.config import settings


logger = logging.getLogger(__name__)

_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

# Filter keys look like "column" or "column__op"
_FILTER_OPERATORS = {
    "eq": "=",
    "ne": "!=",
    "lt": "<",
    "lte": "<=",
    "gt": ">",
    "gte": ">=",
    "like": "LIKE",
}


def _validate_identifier(name: str) -> None:
    """Validate that a table or column name contains only alphanumeric characters and underscores."""
    if not _IDENTIFIER_PATTERN.match(name):
        msg = f"Invalid identifier: {name}. Only alphanumeric characters and underscores are allowed."
        raise ValueError(msg)


def _to_db_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict | list):
        return json.dumps(value)
    return value


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so the value matches literally (used with ESCAPE '\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _build_condition(key: str, value: Any) -> tuple[str, list[Any]]:
    column, _, op = key.partition("__")
    _validate_identifier(column)
    op = op or "eq"

    if op == "in":
        values = list(value)
        if not values:
            return "0", []
        placeholders = ", ".join("?" for _ in values)
        return f"{column} IN ({placeholders})", [_to_db_value(v) for v in values]

    if value is None and op in ("eq", "ne"):
        return (f"{column} IS NULL" if op == "eq" else f"{column} IS NOT NULL"), []

    sql_op = _FILTER_OPERATORS.get(op)
    if not sql_op:
        msg = f"Unsupported operator: {op}"
        raise ValueError(msg)

    if sql_op == "LIKE":
        return f"{column} LIKE ? ESCAPE '\\'", [f"%{escape_like(str(value))}%"]
    return f"{column} {sql_op} ?", [_to_db_value(value)]


def build_where(
    filters: Mapping[str, Any] | None = None,
    or_groups: Sequence[Mapping[str, Any]] = (),
) -> tuple[str, list[Any]]:
    """Build a WHERE clause (without the keyword) and its parameters.

    Conditions in ``filters`` are AND-ed. Each mapping in ``or_groups`` becomes a
    parenthesised OR group, AND-ed with the rest.
    """
    conditions: list[str] = []
    params: list[Any] = []

    for key, value in (filters or {}).items():
        cond, cond_params = _build_condition(key, value)
        conditions.append(cond)
        params.extend(cond_params)

    for group in or_groups:
        if not group:
            continue
        or_conditions = []
        for key, value in group.items():
            cond, cond_params = _build_condition(key, value)
            or_conditions.append(cond)
            params.extend(cond_params)
        conditions.append(f"({' OR '.join(or_conditions)})")

    return " AND ".join(conditions), params


def get_db_path(db_path: str | None = None) -> Path:
    """Get the resolved SQLite database file path."""
    path_str = db_path or settings.sqlite_db_path
    return Path(path_str).resolve()


_db_connections: dict[tuple[int, int, str], aiosqlite.Connection] = {}


def _cache_key(db_path: str | None) -> tuple[int, int, str]:
    loop = asyncio.get_running_loop()
    return threading.get_ident(), id(loop), str(get_db_path(db_path))


async def get_connection(*, db_path: str | None = None) -> aiosqlite.Connection:
    """Get or create a cached connection for the current thread, loop, and db path."""
    cache_key = _cache_key(db_path)

    cached_conn = _db_connections.get(cache_key)
    if cached_conn is not None:
        return cached_conn

    path = get_db_path(db_path)
    path.parent.mkdir(parents=True, exist_ok=True)

    conn = await aiosqlite.connect(str(path))
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode = WAL")

    # Another coroutine on this loop may have connected while we were awaiting
    existing = _db_connections.setdefault(cache_key, conn)
    if existing is not conn:
        await conn.close()
        return existing

    logger.info("Created new SQLite connection", extra={"db_path": str(path)})
    return conn


async def close_connection(*, db_path: str | None = None) -> None:
    """Close the cached SQLite connection for the current thread, loop, and db path."""
    conn = _db_connections.pop(_cache_key(db_path), None)
    if conn is None:
        return

    try:
        await conn.close()
        logger.info("Closed SQLite connection", extra={"db_path": str(get_db_path(db_path))})
    except Exception as e:
        logger.warning("Error closing SQLite connection", extra={"error": str(e)})


async def init_db() -> None:
    """Initialize the database schema by delegating to schema.init_db()."""
    from taskloop.core import schema

    await schema.init_db()


async def create_record(*, collection: str, data: dict[str, Any]) -> dict[str, Any]:
    """Insert a new record and return it with its assigned id."""
    _validate_identifier(collection)
    for column in data:
        _validate_identifier(column)

    try:
        conn = await get_connection()
        columns_str = ", ".join(data)
        placeholders_str = ", ".join("?" for _ in data)
        values = [_to_db_value(value) for value in data.values()]

        query = f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str})"  # noqa: S608 - identifiers are validated
        cursor = await conn.execute(query, values)
        await conn.commit()
        record_id = cursor.lastrowid
    except aiosqlite.OperationalError as e:
        if "no such table" in str(e):
            msg = f"Table '{collection}' does not exist. Call init_db() first."
            raise RuntimeError(msg) from e
        logger.error("create_record_failed", extra={"collection": collection, "error": str(e)})
        raise

    logger.debug("Created record", extra={"collection": collection, "record_id": record_id})
    return await get_record(collection=collection, record_id=record_id)


async def get_record(*, collection: str, record_id: int | str) -> dict[str, Any]:
    """Fetch a single record by ID, raising KeyError if not found."""
    record = await get_first_record(collection=collection, filters={"id": int(record_id)})
    if record is None:
        msg = f"Record not found in {collection}: {record_id}"
        raise KeyError(msg)
    return record


async def get_first_record(
    *,
    collection: str,
    filters: Mapping[str, Any] | None = None,
) -> dict[str, Any] | None:
    """Return the first record matching the filters, or None."""
    records = await list_records(collection=collection, filters=filters, limit=1)
    return records[0] if records else None


async def list_records(
    *,
    collection: str,
    filters: Mapping[str, Any] | None = None,
    or_groups: Sequence[Mapping[str, Any]] = (),
    order_by: str = "id ASC",
    limit: int | None = None,
) -> list[dict[str, Any]]:
    """List records with optional filtering, ordering and limit."""
    _validate_identifier(collection)

    # Only allow: column_name [ASC|DESC]
    safe_order = "id ASC"
    if re.match(r"^[A-Za-z_][A-Za-z0-9_]*(\s+(ASC|DESC))?$", order_by.strip(), re.IGNORECASE):
        safe_order = order_by.strip()
    else:
        logger.warning("Invalid order_by parameter, using default", extra={"order_by": order_by})

    where_clause, params = build_where(filters, or_groups)
    query = f"SELECT * FROM {collection}"  # noqa: S608 - identifiers are validated
    if where_clause:
        query += f" WHERE {where_clause}"
    query += f" ORDER BY {safe_order}"
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)

    conn = await get_connection()
    cursor = await conn.execute(query, params)
    rows = await cursor.fetchall()
    return [dict(row) for row in rows]


async def update_record(*, collection: str, record_id: int | str, data: dict[str, Any]) -> dict[str, Any]:
    """Update a record by ID and return the updated record."""
    changed = await update_records_where(collection=collection, data=data, filters={"id": int(record_id)})
    if changed == 0:
        msg = f"Record not found in {collection}: {record_id}"
        raise KeyError(msg)
    return await get_record(collection=collection, record_id=record_id)


async def update_records_where(
    *,
    collection: str,
    data: Mapping[str, Any],
    filters: Mapping[str, Any],
    increments: Mapping[str, int] | None = None,
) -> int:
    """Conditionally update records and return the number of rows actually changed.

    ``increments`` adds to integer columns atomically (NULL counts as 0). The filters
    are evaluated by SQLite at write time, so a guard such as ``{"status": "PENDING"}``
    only matches rows still in that state.
    """
    if not data and not increments:
        msg = "Empty update payload"
        raise ValueError(msg)
    if not filters:
        msg = "Refusing to update without a filter"
        raise ValueError(msg)

    _validate_identifier(collection)
    assignments: list[str] = []
    values: list[Any] = []
    for column, value in data.items():
        _validate_identifier(column)
        assignments.append(f"{column} = ?")
        values.append(_to_db_value(value))
    for column, amount in (increments or {}).items():
        _validate_identifier(column)
        assignments.append(f"{column} = COALESCE({column}, 0) + ?")
        values.append(amount)

    where_clause, where_params = build_where(filters)
    query = f"UPDATE {collection} SET {', '.join(assignments)} WHERE {where_clause}"  # noqa: S608 - identifiers are validated

    conn = await get_connection()
    cursor = await conn.execute(query, [*values, *where_params])
    await conn.commit()

    logger.debug("Updated records", extra={"collection": collection, "changes": cursor.rowcount})
    return cursor.rowcount


async def upsert_record(*, collection: str, data: dict[str, Any], conflict_column: str) -> None:
    """Insert a record or replace the non-key columns of the row sharing ``conflict_column``."""
    _validate_identifier(collection)
    _validate_identifier(conflict_column)
    for column in data:
        _validate_identifier(column)

    columns_str = ", ".join(data)
    placeholders_str = ", ".join("?" for _ in data)
    updates = ", ".join(f"{column} = excluded.{column}" for column in data if column != conflict_column)
    query = (
        f"INSERT INTO {collection} ({columns_str}) VALUES ({placeholders_str}) "  # noqa: S608 - identifiers are validated
        f"ON CONFLICT({conflict_column}) DO UPDATE SET {updates}"
    )

    conn = await get_connection()
    await conn.execute(query, [_to_db_value(value) for value in data.values()])
    await conn.commit()

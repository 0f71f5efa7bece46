"""SQLite schema management (code-first, additive migrations)."""

import logging

import aiosqlite

from taskloop.core.db_client import get_connection


logger = logging.getLogger(__name__)


# Central list of all tables in the schema, in creation order
TABLES = ["tasks", "user_calendars"]


# Column definitions per table. New columns are appended here; existing databases
# receive them through ALTER TABLE on the next start-up.
_TABLE_COLUMNS: dict[str, list[tuple[str, str]]] = {
    "tasks": [
        ("id", "INTEGER PRIMARY KEY AUTOINCREMENT"),
        ("external_schedule_id", "TEXT NOT NULL UNIQUE"),
        ("title", "TEXT NOT NULL DEFAULT ''"),
        ("description", "TEXT NOT NULL DEFAULT ''"),
        ("creator_id", "TEXT NOT NULL DEFAULT ''"),
        ("executor_id", "TEXT NOT NULL DEFAULT ''"),
        ("owner_id", "TEXT NOT NULL DEFAULT ''"),
        ("owner_calendar_id", "TEXT NOT NULL DEFAULT ''"),
        ("start_time", "TEXT"),
        ("end_time", "TEXT"),
        ("status", "TEXT NOT NULL DEFAULT 'PENDING'"),
        ("completion_time", "TEXT"),
        ("verify_time", "TEXT"),
        ("completed_by_id", "TEXT"),
        ("verifier_id", "TEXT"),
        ("reject_reason", "TEXT"),
        ("redo_count", "INTEGER NOT NULL DEFAULT 0"),
        ("last_reminder_kind", "TEXT"),
        ("last_reminder_at", "TEXT"),
        ("created_at", "TEXT"),
        ("updated_at", "TEXT"),
    ],
    "user_calendars": [
        ("user_id", "TEXT PRIMARY KEY"),
        ("cal_id", "TEXT NOT NULL"),
        ("updated_at", "TEXT"),
    ],
}

_TABLE_INDEXES: dict[str, list[str]] = {
    "tasks": [
        "CREATE INDEX IF NOT EXISTS idx_tasks_status ON tasks (status)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_executor ON tasks (executor_id)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_owner ON tasks (owner_id)",
        "CREATE INDEX IF NOT EXISTS idx_tasks_creator ON tasks (creator_id)",
    ],
    "user_calendars": [],
}


def _create_table_sql(table: str) -> str:
    columns = ", ".join(f"{name} {definition}" for name, definition in _TABLE_COLUMNS[table])
    return f"CREATE TABLE IF NOT EXISTS {table} ({columns})"


def _alter_definition(definition: str) -> str:
    """Column definition usable in ALTER TABLE ADD COLUMN.

    SQLite cannot add PRIMARY KEY or UNIQUE columns to an existing table, nor a
    NOT NULL column without a default.
    """
    result = definition.replace("AUTOINCREMENT", "").replace("PRIMARY KEY", "").replace("UNIQUE", "")
    if "NOT NULL" in result and "DEFAULT" not in result:
        result = result.replace("NOT NULL", "")
    return " ".join(result.split())


async def _existing_columns(conn: aiosqlite.Connection, table: str) -> set[str]:
    cursor = await conn.execute(f"PRAGMA table_info({table})")
    rows = await cursor.fetchall()
    return {row["name"] for row in rows}


async def _add_missing_columns(conn: aiosqlite.Connection, table: str) -> list[str]:
    """Add any declared column the table lacks. Returns the names that were added."""
    existing = await _existing_columns(conn, table)

    added = []
    for name, definition in _TABLE_COLUMNS[table]:
        if name in existing:
            continue
        await conn.execute(f"ALTER TABLE {table} ADD COLUMN {name} {_alter_definition(definition)}")
        added.append(name)

    if added:
        await conn.commit()
    return added


async def init_db() -> None:
    """Create missing tables, columns and indexes in the configured database (idempotent)."""
    conn = await get_connection()

    for table in TABLES:
        await conn.execute(_create_table_sql(table))
        await conn.commit()

        added = await _add_missing_columns(conn, table)
        if added:
            logger.info("Migrated table %s: added %s", table, added)
        else:
            logger.debug("Table %s schema is already up to date", table)

        for index_sql in _TABLE_INDEXES[table]:
            await conn.execute(index_sql)
        await conn.commit()

    logger.info("SQLite schema initialized", extra={"tables": TABLES})

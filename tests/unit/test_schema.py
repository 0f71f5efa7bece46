"""Tests for schema creation and additive migration."""

from pathlib import Path

import pytest

from taskloop.core import db_client, schema
from taskloop.core.config import settings
from taskloop.core.db_client import close_connection, get_connection


async def _columns(table: str) -> set[str]:
    conn = await get_connection()
    cursor = await conn.execute(f"PRAGMA table_info({table})")
    return {row["name"] for row in await cursor.fetchall()}


@pytest.mark.unit
async def test_init_db_creates_all_tables(db):
    for table in schema.TABLES:
        assert await _columns(table)

    assert {"external_schedule_id", "redo_count", "last_reminder_kind"} <= await _columns("tasks")


@pytest.mark.unit
async def test_init_db_is_idempotent(db):
    await schema.init_db()
    await schema.init_db()

    assert "status" in await _columns("tasks")


@pytest.mark.unit
async def test_old_table_gains_missing_columns(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(settings, "sqlite_db_path", str(tmp_path / "legacy.db"))
    conn = await get_connection()
    await conn.execute(
        "CREATE TABLE tasks (id INTEGER PRIMARY KEY AUTOINCREMENT, external_schedule_id TEXT NOT NULL UNIQUE, "
        "title TEXT, status TEXT)"
    )
    await conn.execute("INSERT INTO tasks (external_schedule_id, title, status) VALUES ('sch-old', 'Old', 'PENDING')")
    await conn.commit()

    try:
        await schema.init_db()

        columns = await _columns("tasks")
        assert {"redo_count", "last_reminder_at", "owner_calendar_id", "reject_reason"} <= columns

        cursor = await conn.execute("SELECT title, redo_count FROM tasks WHERE external_schedule_id = 'sch-old'")
        row = await cursor.fetchone()
        assert row["title"] == "Old"
        assert row["redo_count"] == 0
    finally:
        await close_connection()


@pytest.mark.unit
def test_alter_definition_strips_constraints_sqlite_cannot_add():
    assert schema._alter_definition("INTEGER PRIMARY KEY AUTOINCREMENT") == "INTEGER"
    assert schema._alter_definition("TEXT NOT NULL UNIQUE") == "TEXT"
    assert schema._alter_definition("TEXT NOT NULL DEFAULT ''") == "TEXT NOT NULL DEFAULT ''"
    assert schema._alter_definition("INTEGER NOT NULL DEFAULT 0") == "INTEGER NOT NULL DEFAULT 0"


@pytest.mark.unit
async def test_init_db_targets_database_used_by_records(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    db_file = tmp_path / "configured.db"
    monkeypatch.setattr(settings, "sqlite_db_path", str(db_file))

    try:
        await db_client.init_db()
        record = await db_client.create_record(collection="tasks", data={"external_schedule_id": "sch-9"})

        assert db_file.exists()
        assert record["status"] == "PENDING"
        assert [r["external_schedule_id"] for r in await db_client.list_records(collection="tasks")] == ["sch-9"]
    finally:
        await close_connection()

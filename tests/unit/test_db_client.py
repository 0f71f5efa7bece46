"""Tests for the SQLite client against a temporary database."""

import pytest

from taskloop.core import db_client


def _task_row(schedule_id: str, **overrides):
    return {"external_schedule_id": schedule_id, "title": "t", "status": "PENDING", **overrides}


@pytest.mark.unit
class TestBuildWhere:
    def test_and_filters_with_operators(self):
        sql, params = db_client.build_where({"status": "PENDING", "redo_count__gte": 1, "reject_reason": None})

        assert sql == "status = ? AND redo_count >= ? AND reject_reason IS NULL"
        assert params == ["PENDING", 1]

    def test_or_group_and_like_escaping(self):
        sql, params = db_client.build_where({}, [{"title__like": "50%_off", "executor_id": "bob"}])

        assert sql == "(title LIKE ? ESCAPE '\\' OR executor_id = ?)"
        assert params == ["%50\\%\\_off%", "bob"]

    def test_in_operator(self):
        sql, params = db_client.build_where({"status__in": ["PENDING", "COMPLETED"]})

        assert sql == "status IN (?, ?)"
        assert params == ["PENDING", "COMPLETED"]

    def test_rejects_bad_identifier(self):
        with pytest.raises(ValueError, match="Invalid identifier"):
            db_client.build_where({"status; DROP TABLE tasks": "x"})

    def test_rejects_unknown_operator(self):
        with pytest.raises(ValueError, match="Unsupported operator"):
            db_client.build_where({"status__regex": "x"})


@pytest.mark.unit
class TestRecords:
    async def test_create_and_get(self, db):
        created = await db_client.create_record(collection="tasks", data=_task_row("sch-1"))

        fetched = await db_client.get_record(collection="tasks", record_id=created["id"])

        assert fetched["external_schedule_id"] == "sch-1"
        assert fetched["redo_count"] == 0

    async def test_get_missing_record_raises(self, db):
        with pytest.raises(KeyError):
            await db_client.get_record(collection="tasks", record_id=999)

    async def test_list_with_keyword_matches_literally(self, db):
        await db_client.create_record(collection="tasks", data=_task_row("sch-1", title="100% done"))
        await db_client.create_record(collection="tasks", data=_task_row("sch-2", title="1000 done"))

        records = await db_client.list_records(collection="tasks", or_groups=[{"title__like": "100%"}])

        assert [record["external_schedule_id"] for record in records] == ["sch-1"]

    async def test_invalid_order_by_falls_back(self, db):
        await db_client.create_record(collection="tasks", data=_task_row("sch-1"))
        await db_client.create_record(collection="tasks", data=_task_row("sch-2"))

        records = await db_client.list_records(collection="tasks", order_by="id; DROP TABLE tasks")

        assert [record["external_schedule_id"] for record in records] == ["sch-1", "sch-2"]

    async def test_missing_table_raises_runtime_error(self, db):
        with pytest.raises(RuntimeError, match="does not exist"):
            await db_client.create_record(collection="nope", data={"x": 1})


@pytest.mark.unit
class TestConditionalUpdate:
    async def test_guard_matches_only_once(self, db):
        await db_client.create_record(collection="tasks", data=_task_row("sch-1"))
        guard = {"external_schedule_id": "sch-1", "status": "PENDING"}

        first = await db_client.update_records_where(
            collection="tasks", data={"status": "WAITING_VERIFY"}, filters=guard
        )
        second = await db_client.update_records_where(
            collection="tasks", data={"status": "WAITING_VERIFY"}, filters=guard
        )

        assert first == 1
        assert second == 0

    async def test_increment(self, db):
        created = await db_client.create_record(collection="tasks", data=_task_row("sch-1"))

        await db_client.update_records_where(
            collection="tasks", data={}, filters={"id": created["id"]}, increments={"redo_count": 1}
        )
        await db_client.update_records_where(
            collection="tasks", data={}, filters={"id": created["id"]}, increments={"redo_count": 1}
        )

        record = await db_client.get_record(collection="tasks", record_id=created["id"])
        assert record["redo_count"] == 2

    async def test_refuses_unfiltered_update(self, db):
        with pytest.raises(ValueError, match="without a filter"):
            await db_client.update_records_where(collection="tasks", data={"title": "x"}, filters={})

    async def test_update_record_missing(self, db):
        with pytest.raises(KeyError):
            await db_client.update_record(collection="tasks", record_id=42, data={"title": "x"})


@pytest.mark.unit
async def test_upsert_replaces_existing_row(db):
    await db_client.upsert_record(
        collection="user_calendars", data={"user_id": "alice", "cal_id": "cal-1"}, conflict_column="user_id"
    )
    await db_client.upsert_record(
        collection="user_calendars", data={"user_id": "alice", "cal_id": "cal-2"}, conflict_column="user_id"
    )

    rows = await db_client.list_records(collection="user_calendars", order_by="user_id ASC")

    assert [(row["user_id"], row["cal_id"]) for row in rows] == [("alice", "cal-2")]

"""Pytest configuration and shared fixtures."""

from collections.abc import AsyncIterator, Callable, Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest

from taskloop.core.config import settings
from taskloop.core.db_client import close_connection, init_db
from taskloop.core.scheduler import job_tracker
from taskloop.domain.task import Task, TaskStatus
from taskloop.interface import wecom_client
from taskloop.modules.tasks import repository


NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Start every test from empty mappings and fresh in-memory state."""
    monkeypatch.setattr(settings, "default_cal_id", "")
    monkeypatch.setattr(settings, "user_calendar_map", "")
    monkeypatch.setattr(settings, "global_verifiers", "")
    monkeypatch.setattr(settings, "reminder_cooldown_hours", 12)
    monkeypatch.setattr(settings, "enable_scheduler", False)
    wecom_client.token_cache.clear()
    job_tracker.reset()
    yield
    wecom_client.token_cache.clear()
    job_tracker.reset()


@pytest.fixture
async def db(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> AsyncIterator[Path]:
    """Real SQLite database in a temporary directory, schema initialized."""
    db_path = tmp_path / "taskloop_test.db"
    monkeypatch.setattr(settings, "sqlite_db_path", str(db_path))
    await init_db()
    yield db_path
    await close_connection()


@pytest.fixture
def wecom(monkeypatch: pytest.MonkeyPatch) -> dict[str, AsyncMock]:
    """Replace every WeCom call with an AsyncMock; no request leaves the process."""
    mocks = {
        "send_template_card": AsyncMock(return_value="msg-1"),
        "create_schedule": AsyncMock(return_value="sch-created"),
        "list_schedules": AsyncMock(return_value=[]),
        "get_schedule": AsyncMock(return_value=None),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(wecom_client, name, mock)
    return mocks


def build_task(**overrides: Any) -> Task:
    """In-memory task with sensible defaults: PENDING, alice assigns to bob, due in two days."""
    data: dict[str, Any] = {
        "id": 1,
        "external_schedule_id": "sch-1",
        "title": "Quarterly report",
        "creator_id": "alice",
        "executor_id": "bob",
        "owner_id": "bob",
        "owner_calendar_id": "cal-bob",
        "start_time": NOW - timedelta(days=1),
        "end_time": NOW + timedelta(days=2),
        "status": TaskStatus.PENDING,
    }
    data.update(overrides)
    return Task(**data)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def task_factory() -> Callable[..., Task]:
    return build_task


@pytest.fixture
def stored_task(db: Path) -> Callable[..., Any]:
    """Insert a task row and return it; keyword arguments override the defaults."""

    async def _create(**overrides: Any) -> Task:
        data: dict[str, Any] = {
            "external_schedule_id": "sch-1",
            "title": "Quarterly report",
            "creator_id": "alice",
            "executor_id": "bob",
            "owner_id": "bob",
            "owner_calendar_id": "cal-bob",
            "start_time": NOW - timedelta(days=1),
            "end_time": NOW + timedelta(days=2),
        }
        data.update(overrides)
        return await repository.insert_task(data)

    return _create

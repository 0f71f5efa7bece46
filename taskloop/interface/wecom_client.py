"""WeCom (enterprise WeChat) API client: access tokens, OA schedules and template cards."""

import asyncio
import logging
import time
from typing import Any

import httpx

from taskloop.core.config import constants, settings


logger = logging.getLogger(__name__)


class CalendarProviderError(Exception):
    """A WeCom call failed at the transport level or returned a non-zero errcode."""

    def __init__(self, message: str, *, errcode: int | None = None, errmsg: str | None = None) -> None:
        super().__init__(message)
        self.errcode = errcode
        self.errmsg = errmsg


class AccessTokenCache:
    """In-memory access token, refreshed shortly before WeCom expires it."""

    def __init__(self) -> None:
        self._token: str | None = None
        self._expires_at: float = 0.0
        self._lock: asyncio.Lock | None = None

    def get(self) -> str | None:
        if self._token and time.monotonic() < self._expires_at:
            return self._token
        return None

    def set(self, token: str, expires_in: int) -> None:
        self._token = token
        self._expires_at = time.monotonic() + max(expires_in - constants.TOKEN_EXPIRY_BUFFER_SECONDS, 0)

    def clear(self) -> None:
        self._token = None
        self._expires_at = 0.0

    def lock(self) -> asyncio.Lock:
        # Created lazily so the lock binds to the running loop
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock


# Global token cache instance
token_cache = AccessTokenCache()


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url=settings.wecom_base_url, timeout=constants.API_TIMEOUT_SECONDS)


def _check_errcode(data: dict[str, Any], operation: str) -> dict[str, Any]:
    errcode = data.get("errcode", 0)
    if errcode != 0:
        errmsg = data.get("errmsg", "")
        msg = f"WeCom {operation} failed: {errcode} {errmsg}"
        raise CalendarProviderError(msg, errcode=errcode, errmsg=errmsg)
    return data


async def _fetch_access_token() -> str:
    corp_id = settings.require_credential("wecom_corp_id", "WeCom")
    corp_secret = settings.require_credential("wecom_corp_secret", "WeCom")

    try:
        async with _client() as client:
            response = await client.get("/gettoken", params={"corpid": corp_id, "corpsecret": corp_secret})
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPError as e:
        msg = f"WeCom gettoken request failed: {e}"
        raise CalendarProviderError(msg) from e

    _check_errcode(data, "gettoken")
    token = data["access_token"]
    token_cache.set(token, int(data.get("expires_in", 7200)))
    logger.info("Fetched WeCom access token", extra={"expires_in": data.get("expires_in")})
    return token


async def get_access_token() -> str:
    """Return the cached access token, fetching a new one when it is about to expire."""
    cached = token_cache.get()
    if cached:
        return cached

    async with token_cache.lock():
        cached = token_cache.get()
        if cached:
            return cached
        return await _fetch_access_token()


async def _post(path: str, payload: dict[str, Any], operation: str) -> dict[str, Any]:
    token = await get_access_token()
    try:
        async with _client() as client:
            response = await client.post(path, params={"access_token": token}, json=payload)
            response.raise_for_status()
            data = response.json()
    except httpx.HTTPError as e:
        msg = f"WeCom {operation} request failed: {e}"
        raise CalendarProviderError(msg) from e

    return _check_errcode(data, operation)


async def list_schedules(cal_id: str) -> list[dict[str, Any]]:
    """List all schedules in a calendar, following offset pagination."""
    schedules: list[dict[str, Any]] = []
    offset = 0
    limit = constants.SCHEDULE_LIST_PAGE_LIMIT

    while True:
        data = await _post(
            "/oa/schedule/get_by_calendar",
            {"cal_id": cal_id, "offset": offset, "limit": limit},
            "schedule list",
        )
        page = data.get("schedule_list") or []
        schedules.extend(item for item in page if isinstance(item, dict))
        if len(page) < limit:
            break
        offset += limit

    logger.debug("Listed %d schedules for calendar %s", len(schedules), cal_id)
    return schedules


async def get_schedule(schedule_id: str) -> dict[str, Any] | None:
    """Fetch one schedule's detail, or None when WeCom returns no schedule."""
    data = await _post("/oa/schedule/get", {"schedule_id": schedule_id}, "schedule get")
    schedule = data.get("schedule")
    return schedule if isinstance(schedule, dict) and schedule else None


async def create_schedule(schedule: dict[str, Any]) -> str:
    """Create a schedule and return its id."""
    data = await _post("/oa/schedule/add", {"schedule": schedule}, "schedule add")
    schedule_id = str(data.get("schedule_id") or "").strip()
    if not schedule_id:
        msg = "WeCom schedule add returned no schedule_id"
        raise CalendarProviderError(msg)

    logger.info("Created WeCom schedule %s", schedule_id, extra={"cal_id": schedule.get("cal_id")})
    return schedule_id


async def send_template_card(
    *,
    touser: str,
    task_id: str,
    title: str,
    description: str,
    sub_title: str = "",
    details: list[dict[str, str]] | None = None,
    buttons: list[dict[str, str]] | None = None,
) -> str | None:
    """Send an interactive button card. Returns the message id.

    ``touser`` may hold several user ids joined with ``|``. Button ids come back as the
    ``SelectedKey`` of the interaction callback.
    """
    payload = {
        "touser": touser,
        "msgtype": "template_card",
        "agentid": settings.wecom_agent_id,
        "template_card": {
            "card_type": "button_interaction",
            "main_title": {"title": title, "desc": description},
            "sub_title_text": sub_title,
            "horizontal_content_list": details or [],
            "task_id": task_id,
            "button_selection": {
                "question_key": "task_action",
                "title": "Task progress",
                "option_list": buttons or [],
            },
        },
        "enable_duplicate_check": 0,
    }

    data = await _post("/message/send", payload, "template card send")
    logger.info("Sent template card", extra={"touser": touser, "task_id": task_id})
    return data.get("msgid")

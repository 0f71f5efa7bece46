"""Resolve which calendars to poll and which calendar a user's new tasks go to.

Mappings come from three places: the ``USER_CALENDAR_MAP`` setting, the
``user_calendars`` table and the default calendar. Configuration rows are merged
first and storage rows after, so storage wins for the same user.
"""

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from taskloop.core.value_parser import normalize_text
from taskloop.domain.calendar import CalendarSource, CalendarTarget


logger = logging.getLogger(__name__)

_USER_ID_KEYS = ("user_id", "userid", "userId", "user", "organizer")
_CAL_ID_KEYS = ("cal_id", "calId", "calendar_id", "calendarId")

CalendarRow = CalendarTarget | Mapping[str, Any]


def _first_present(row: Mapping[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = normalize_text(row.get(key))
        if value:
            return value
    return ""


def _to_target(row: CalendarRow, fallback_source: CalendarSource) -> CalendarTarget | None:
    """Normalize any supported row shape into a target; rows without a calendar are dropped."""
    if isinstance(row, CalendarTarget):
        return row
    if not isinstance(row, Mapping):
        return None

    cal_id = _first_present(row, _CAL_ID_KEYS)
    if not cal_id:
        return None

    raw_source = normalize_text(row.get("source"))
    known_sources = {source.value for source in CalendarSource}
    source = CalendarSource(raw_source) if raw_source in known_sources else fallback_source
    return CalendarTarget(user_id=_first_present(row, _USER_ID_KEYS), cal_id=cal_id, source=source)


def _parse_json_map(raw: str) -> list[CalendarTarget]:
    parsed = json.loads(raw)

    if isinstance(parsed, list):
        rows = [_to_target(item, CalendarSource.ENV_MAP) for item in parsed]
    elif isinstance(parsed, dict):
        rows = [
            _to_target({"user_id": user_id, "cal_id": cal_id}, CalendarSource.ENV_MAP)
            for user_id, cal_id in parsed.items()
        ]
    else:
        return []

    return [row for row in rows if row and row.user_id]


def _parse_pairs(raw: str) -> list[CalendarTarget]:
    """Parse ``alice:cal-a,bob=cal-b``. ``:`` takes precedence over ``=`` as the separator."""
    targets = []
    for item in raw.split(","):
        entry = item.strip()
        if not entry:
            continue

        separator = ":" if ":" in entry else "="
        user_id, found, cal_id = entry.partition(separator)
        if not found or not user_id.strip():
            continue

        target = _to_target({"user_id": user_id, "cal_id": cal_id}, CalendarSource.ENV_MAP)
        if target and target.user_id:
            targets.append(target)
    return targets


def parse_user_calendar_map(raw: str | None) -> list[CalendarTarget]:
    """Parse the configured user-to-calendar map.

    JSON is detected from the first non-blank character (``{`` or ``[``); if it fails to
    parse, the text is read as comma-separated pairs instead. The result holds one
    target per user, the last mapping winning.
    """
    text = normalize_text(raw)
    if not text:
        return []

    if text[0] in "{[":
        try:
            rows = _parse_json_map(text)
        except json.JSONDecodeError:
            logger.warning("USER_CALENDAR_MAP is not valid JSON, parsing as pairs")
            rows = _parse_pairs(text)
    else:
        rows = _parse_pairs(text)

    return merge_calendar_mappings_by_user(rows)


def merge_calendar_mappings_by_user(rows: Iterable[CalendarRow]) -> list[CalendarTarget]:
    """One target per user, later rows overriding earlier ones. Rows without a user are dropped."""
    merged: dict[str, CalendarTarget] = {}
    for row in rows:
        target = _to_target(row, CalendarSource.DB)
        if target is None or not target.user_id:
            continue
        merged[target.user_id] = target
    return list(merged.values())


def deduplicate_targets_by_calendar(targets: Iterable[CalendarRow]) -> list[CalendarTarget]:
    """Keep only the first target per calendar id."""
    seen: set[str] = set()
    result = []
    for row in targets:
        target = _to_target(row, CalendarSource.DEFAULT)
        if target is None or target.cal_id in seen:
            continue
        seen.add(target.cal_id)
        result.append(target)
    return result


def build_sync_calendar_targets(
    *,
    default_cal_id: str | None,
    user_calendar_map_raw: str | None,
    user_calendar_rows: Iterable[CalendarRow] = (),
) -> list[CalendarTarget]:
    """Build the list of calendars one sync run should poll.

    Per-user mappings come first, each calendar at most once; the default calendar is
    appended last unless a user already maps to it.
    """
    config_rows = parse_user_calendar_map(user_calendar_map_raw)
    storage_rows = merge_calendar_mappings_by_user(user_calendar_rows)

    targets = deduplicate_targets_by_calendar(merge_calendar_mappings_by_user([*config_rows, *storage_rows]))

    default_id = normalize_text(default_cal_id)
    if default_id:
        targets.append(CalendarTarget(user_id="", cal_id=default_id, source=CalendarSource.DEFAULT))

    return deduplicate_targets_by_calendar(targets)


def resolve_calendar_id_for_user(
    user_id: str | None,
    *,
    default_cal_id: str | None,
    user_calendar_map_raw: str | None,
    user_calendar_rows: Iterable[CalendarRow] = (),
) -> str:
    """Calendar a user's tasks should be written to, falling back to the default calendar."""
    user = normalize_text(user_id)
    default_id = normalize_text(default_cal_id)
    if not user:
        return default_id

    mappings = merge_calendar_mappings_by_user(
        [*parse_user_calendar_map(user_calendar_map_raw), *user_calendar_rows]
    )
    for target in mappings:
        if target.user_id == user:
            return target.cal_id
    return default_id

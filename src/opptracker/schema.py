# opptracker/schema.py
from __future__ import annotations

import json
from typing import Any, Callable, Dict, List, Optional, Tuple

from ._util import _date_key_from_text, _iso_from_ms
from .errors import SchemaError
from .model import (
    DEFAULT_MAX_UNDOS,
    Action,
    ActionKind,
    DayRecord,
    LogEntry,
    Settings,
    TrackerState,
    percent,
)

SCHEMA_VERSION = 2


def _is_int(v: Any) -> bool:
    return isinstance(v, int) and not isinstance(v, bool)


def _is_count(v: Any) -> bool:
    return _is_int(v) and v >= 0


def _is_text(v: Any) -> bool:
    return isinstance(v, str) and bool(v.strip())


# --- Defaults -----------------------------------------------------------------

def default_day(today: str) -> DayRecord:
    return DayRecord(date=today)


def default_state(today: str, now: str) -> TrackerState:
    return TrackerState(
        schema_version=SCHEMA_VERSION,
        current_day=default_day(today),
        log=[],
        settings=Settings(max_undos=DEFAULT_MAX_UNDOS, created_at=now),
    )


# --- Version upgrades ---------------------------------------------------------

def detect_version(raw: Dict[str, Any]) -> int:
    """Return the schema version a decoded payload claims.

    v1 (the browser format) carries a string "version" and camelCase keys.
    A payload with no marker at all is treated as current and left to
    validation.
    """
    v = raw.get("schema_version")
    if _is_int(v):
        return v
    if "version" in raw or "currentDay" in raw or "logs" in raw:
        return 1
    return SCHEMA_VERSION


def _upgrade_action_v1(item: Any) -> Any:
    if not isinstance(item, dict):
        return item
    ts = item.get("timestamp")
    if _is_int(ts) or isinstance(ts, float):
        ts = _iso_from_ms(ts)
    return {"kind": item.get("type"), "timestamp": ts}


def _upgrade_log_v1(item: Any) -> Any:
    if not isinstance(item, dict):
        return item
    date = item.get("date")
    return {
        "date": _date_key_from_text(date) if isinstance(date, str) else date,
        "taken_count": item.get("taken"),
        "missed_count": item.get("missed"),
        "total": item.get("total"),
        "percentage": item.get("percentage"),
    }


def upgrade_v1_to_v2(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Rename camelCase v1 fields to v2 and normalize dates/timestamps.

    Values are carried over as-is (even if invalid) so validation can heal
    them field by field. Never mutates the input.
    """
    out: Dict[str, Any] = {"schema_version": 2}

    day_in = raw.get("currentDay")
    if isinstance(day_in, dict):
        date = day_in.get("date")
        history = day_in.get("actionHistory")
        out["current_day"] = {
            "date": _date_key_from_text(date) if isinstance(date, str) else date,
            "taken_count": day_in.get("taken"),
            "missed_count": day_in.get("missed"),
            "undo_count": day_in.get("undoCount"),
            "action_history": (
                [_upgrade_action_v1(a) for a in history] if isinstance(history, list) else history
            ),
        }
    elif "currentDay" in raw:
        out["current_day"] = day_in

    logs_in = raw.get("logs")
    if isinstance(logs_in, list):
        out["log"] = [_upgrade_log_v1(e) for e in logs_in]
    elif "logs" in raw:
        out["log"] = logs_in

    settings_in = raw.get("settings")
    if isinstance(settings_in, dict):
        out["settings"] = {
            "max_undos": settings_in.get("maxUndos"),
            "created_at": settings_in.get("createdAt"),
        }
    elif "settings" in raw:
        out["settings"] = settings_in

    return out


UPGRADES: Dict[int, Callable[[Dict[str, Any]], Dict[str, Any]]] = {
    1: upgrade_v1_to_v2,
}


def upgrade(raw: Any) -> Dict[str, Any]:
    """Upgrade a decoded payload to SCHEMA_VERSION. Never downgrades."""
    if not isinstance(raw, dict):
        raise SchemaError(f"state must be a JSON object; got {type(raw).__name__}")

    cur = detect_version(raw)
    if cur > SCHEMA_VERSION:
        raise SchemaError(f"Unsupported schema_version: {cur} (latest={SCHEMA_VERSION})")
    if cur < 1:
        raise SchemaError(f"Invalid schema_version: {cur}")

    out = raw
    while cur < SCHEMA_VERSION:
        out = UPGRADES[cur](out)
        cur += 1
    return out


# --- Validation (shallow, self-healing) --------------------------------------

def _action_from(raw: Any) -> Optional[Action]:
    if not isinstance(raw, dict):
        return None
    try:
        kind = ActionKind(raw.get("kind"))
    except ValueError:
        return None
    ts = raw.get("timestamp")
    return Action(kind=kind, timestamp=ts if isinstance(ts, str) else "")


def _log_entry_from(raw: Any) -> Optional[LogEntry]:
    if not isinstance(raw, dict):
        return None
    date = raw.get("date")
    taken = raw.get("taken_count")
    missed = raw.get("missed_count")
    if not (_is_text(date) and _is_count(taken) and _is_count(missed)):
        return None
    total = taken + missed
    return LogEntry(
        date=date,
        taken_count=taken,
        missed_count=missed,
        total=total,
        percentage=percent(taken, total),
    )


def _settings_from(raw: Any, now: str, issues: List[str]) -> Settings:
    if not isinstance(raw, dict):
        issues.append("settings missing or not an object; using defaults")
        return Settings(max_undos=DEFAULT_MAX_UNDOS, created_at=now)

    # the undo budget is fixed; stored values are informational only
    max_undos = raw.get("max_undos")
    if max_undos != DEFAULT_MAX_UNDOS or not _is_int(max_undos):
        issues.append(f"settings.max_undos invalid ({max_undos!r}); using {DEFAULT_MAX_UNDOS}")
        max_undos = DEFAULT_MAX_UNDOS

    created_at = raw.get("created_at")
    if not _is_text(created_at):
        issues.append("settings.created_at missing; stamping now")
        created_at = now

    return Settings(max_undos=max_undos, created_at=created_at)


def _day_from(raw: Any, today: str, max_undos: int, issues: List[str]) -> DayRecord:
    if not isinstance(raw, dict):
        issues.append("current_day missing or not an object; starting a fresh day")
        return default_day(today)

    date = raw.get("date")
    if not _is_text(date):
        issues.append(f"current_day.date invalid ({date!r}); using {today}")
        date = today

    counts: Dict[str, int] = {}
    for name in ("taken_count", "missed_count"):
        v = raw.get(name)
        if not _is_count(v):
            issues.append(f"current_day.{name} invalid ({v!r}); using 0")
            v = 0
        counts[name] = v

    history_in = raw.get("action_history")
    history: List[Action] = []
    if isinstance(history_in, list):
        for i, item in enumerate(history_in):
            action = _action_from(item)
            if action is None:
                issues.append(f"current_day.action_history[{i}] invalid; dropped")
                continue
            history.append(action)
    else:
        issues.append("current_day.action_history missing or not a list; using []")

    undo_count = raw.get("undo_count")
    if not _is_int(undo_count):
        issues.append(f"current_day.undo_count invalid ({undo_count!r}); using 0")
        undo_count = 0
    elif not 0 <= undo_count <= max_undos:
        issues.append(f"current_day.undo_count {undo_count} out of range; clamped")
        undo_count = min(max(undo_count, 0), max_undos)

    return DayRecord(
        date=date,
        taken_count=counts["taken_count"],
        missed_count=counts["missed_count"],
        undo_count=undo_count,
        action_history=history,
    )


def validate_state(raw: Any, today: str, now: str) -> Tuple[TrackerState, List[str]]:
    """Build a valid TrackerState from an upgraded payload.

    Each invalid or missing field falls back to its default independently;
    valid siblings are always kept. Returns (state, issues) where issues
    has one note per healed field.
    """
    issues: List[str] = []
    if not isinstance(raw, dict):
        issues.append(f"state is not an object ({type(raw).__name__}); using defaults")
        return default_state(today, now), issues

    settings = _settings_from(raw.get("settings"), now, issues)
    day = _day_from(raw.get("current_day"), today, settings.max_undos, issues)

    log_in = raw.get("log")
    log: List[LogEntry] = []
    if isinstance(log_in, list):
        for i, item in enumerate(log_in):
            entry = _log_entry_from(item)
            if entry is None:
                issues.append(f"log[{i}] invalid; dropped")
                continue
            log.append(entry)
    else:
        issues.append("log missing or not a list; using []")

    return TrackerState(schema_version=SCHEMA_VERSION, current_day=day, log=log, settings=settings), issues


def parse_state(text: str, today: str, now: str) -> Tuple[TrackerState, List[str]]:
    """Raw persisted text -> (valid TrackerState, issues). Never raises."""
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as e:
        return default_state(today, now), [f"state is not valid JSON ({e.msg}); using defaults"]

    try:
        upgraded = upgrade(raw)
    except SchemaError as e:
        return default_state(today, now), [f"{e}; using defaults"]

    return validate_state(upgraded, today, now)


def dumps_state(state: TrackerState) -> str:
    return json.dumps(state.to_dict(), indent=2, sort_keys=True, ensure_ascii=False) + "\n"


# --- Legacy (pre-versioned) two-key format -----------------------------------

def legacy_to_state(
    day_raw: Any, log_raw: Any, today: str, now: str
) -> Tuple[TrackerState, List[str]]:
    """Transcode the legacy day-counter record plus log array.

    Legacy day: {taken, missed, currentDate, undoCount, actionHistory}
    Legacy log: [{date, taken, missed, total, percentage}, ...]
    """
    day = day_raw if isinstance(day_raw, dict) else {}
    v1 = {
        "version": "1.0",
        "currentDay": {
            "taken": day.get("taken", 0),
            "missed": day.get("missed", 0),
            "date": day.get("currentDate") or today,
            "undoCount": day.get("undoCount", 0),
            "actionHistory": day.get("actionHistory", []),
        },
        "logs": log_raw if isinstance(log_raw, list) else [],
        "settings": {"maxUndos": DEFAULT_MAX_UNDOS, "createdAt": now},
    }
    return validate_state(upgrade(v1), today, now)


# --- Strict structural check for imports ----------------------------------------

def check_snapshot(raw: Any) -> List[str]:
    """Return structural errors for an import payload (empty list = acceptable).

    Accepts v1 (camelCase) and v2 (snake_case) naming. Unlike load-time
    validation this is strict: a snapshot that does not look like tracker
    state must be rejected, not healed into defaults.
    """
    if not isinstance(raw, dict):
        return [f"snapshot must be a JSON object; got {type(raw).__name__}"]

    errs: List[str] = []
    version = detect_version(raw)
    if version > SCHEMA_VERSION or version < 1:
        errs.append(f"unsupported schema_version {version}")

    v1 = version == 1
    day_key, log_key = ("currentDay", "logs") if v1 else ("current_day", "log")
    taken_key, missed_key = ("taken", "missed") if v1 else ("taken_count", "missed_count")

    if not isinstance(raw.get(day_key), dict):
        errs.append(f"{day_key} must be an object")

    log = raw.get(log_key)
    if not isinstance(log, list):
        errs.append(f"{log_key} must be a list")
        return errs

    for i, item in enumerate(log):
        if not isinstance(item, dict):
            errs.append(f"{log_key}[{i}] must be an object")
            continue
        if not _is_text(item.get("date")):
            errs.append(f"{log_key}[{i}].date must be a non-empty string")
        for k in (taken_key, missed_key):
            if not _is_count(item.get(k)):
                errs.append(f"{log_key}[{i}].{k} must be a non-negative integer")

    return errs


if __name__ == "__main__":
    raise SystemExit("opptracker.schema is a library module")

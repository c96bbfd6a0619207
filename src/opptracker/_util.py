"""Clock and date-key helpers shared by schema, tracker and cli."""

from __future__ import annotations

from datetime import date, datetime, timezone


def _now_local() -> datetime:
    return datetime.now().astimezone()


def _now_iso() -> str:
    return _now_local().isoformat(timespec="seconds")


def today_key() -> str:
    """Calendar-day identity of 'today' in local time (YYYY-MM-DD)."""
    return _now_local().date().isoformat()


def _fmt_time(dt: datetime) -> str:
    # %-I is not available on Windows
    try:
        return dt.strftime("%-I:%M %p")
    except ValueError:
        return dt.strftime("%I:%M %p").lstrip("0")


def _dt_from_iso(ts: str) -> datetime | None:
    try:
        dt = datetime.fromisoformat(ts)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=_now_local().tzinfo)
    return dt.astimezone()


def _iso_from_ms(ms: int | float) -> str | None:
    """Epoch milliseconds -> local ISO string."""
    try:
        dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError):
        return None
    return dt.astimezone().isoformat(timespec="seconds")


def _date_key_from_text(value: str) -> str:
    """
    Normalize a stored day label to YYYY-MM-DD when it is recognisable:
      - "2026-10-19" (already ISO)
      - "Mon Oct 19 2026" (JS Date.toDateString)
      - "10/19/2026" (en-US locale string)
    Anything else is returned unchanged so the day keeps its identity.
    """
    s = value.strip()
    try:
        return date.fromisoformat(s).isoformat()
    except ValueError:
        pass
    for fmt in ("%a %b %d %Y", "%m/%d/%Y"):
        try:
            return datetime.strptime(s, fmt).date().isoformat()
        except ValueError:
            continue
    return s

from __future__ import annotations

import logging

from .model import DEFAULT_MAX_UNDOS, Action, ActionKind, CloseReason, DayRecord, LogEntry, LogFilter, Statistics
from .schema import default_day
from .stats import insights
from .store import Store

logger = logging.getLogger(__name__)


class Tracker:
    """
    Applies user actions to the open day. Holds no state of its own:
    every call is a read-modify-write against the Store.

    A failed write is not retried; the attempted value is still returned and
    last_save_ok is set to False.
    """

    def __init__(self, store: Store) -> None:
        self.store = store
        self.last_save_ok = True

    def _persisted(self, ok: bool, what: str) -> None:
        self.last_save_ok = ok
        if not ok:
            logger.warning("%s was not persisted", what)

    # -------------------------
    # Actions
    # -------------------------

    def record_opportunity(self, kind: ActionKind | str) -> DayRecord:
        kind = ActionKind(kind)
        day = self.store.load().current_day

        day.action_history.append(Action(kind=kind, timestamp=self.store.now()))
        if kind is ActionKind.TAKEN:
            day.taken_count += 1
        else:
            day.missed_count += 1

        ok = self.store.update_current_day(
            taken_count=day.taken_count,
            missed_count=day.missed_count,
            action_history=day.action_history,
        )
        self._persisted(ok, f"{kind.value} opportunity")
        return day

    def undo(self) -> Action | None:
        """Reverse the most recent action. Returns it, or None when nothing was undone."""
        day = self.store.load().current_day

        if day.undo_count >= DEFAULT_MAX_UNDOS:
            logger.debug("undo ignored: %d/%d used today", day.undo_count, DEFAULT_MAX_UNDOS)
            return None
        if not day.action_history:
            logger.debug("undo ignored: no actions today")
            return None

        last = day.action_history.pop()
        if last.kind is ActionKind.TAKEN:
            day.taken_count = max(0, day.taken_count - 1)
        else:
            day.missed_count = max(0, day.missed_count - 1)
        day.undo_count += 1

        ok = self.store.update_current_day(
            taken_count=day.taken_count,
            missed_count=day.missed_count,
            undo_count=day.undo_count,
            action_history=day.action_history,
        )
        self._persisted(ok, "undo")
        return last

    def close_day(self, reason: CloseReason = CloseReason.EXPLICIT_RESET) -> LogEntry | None:
        """Settle the open day into the log (if anything happened) and open a fresh one."""
        state = self.store.load()
        day = state.current_day

        entry = None
        if day.total > 0:
            entry = LogEntry.from_day(day)
            state.log.insert(0, entry)

        state.current_day = default_day(self.store.today())
        self._persisted(self.store.save(state), f"closing {day.date}")

        if entry is not None:
            logger.info(
                "closed %s (%s): %d/%d = %d%%", day.date, reason.value, entry.taken_count, entry.total, entry.percentage
            )
        else:
            logger.info("closed %s (%s): no actions, nothing logged", day.date, reason.value)
        return entry

    def check_boundary(self) -> bool:
        """Close the stored day if it is not today. Returns True when a close happened."""
        today = self.store.today()
        stored = self.store.load().current_day.date
        if stored == today:
            return False
        logger.info("day boundary: stored %s, today %s", stored, today)
        self.close_day(CloseReason.BOUNDARY)
        return True

    # -------------------------
    # Reads
    # -------------------------

    def current_day(self) -> DayRecord:
        return self.store.load().current_day

    def undos_remaining(self) -> int:
        return max(0, DEFAULT_MAX_UNDOS - self.store.load().current_day.undo_count)

    def can_undo(self) -> bool:
        day = self.store.load().current_day
        return day.undo_count < DEFAULT_MAX_UNDOS and bool(day.action_history)

    def statistics(self) -> Statistics:
        return self.store.compute_statistics()

    def logs(self, flt: LogFilter | str = LogFilter.ALL) -> list[LogEntry]:
        return self.store.query_logs(flt)

    def insights(self) -> list[str]:
        log = self.store.query_logs(LogFilter.ALL)
        return insights(self.store.compute_statistics(), log)

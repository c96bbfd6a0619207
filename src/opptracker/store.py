"""Durable, schema-validated persistence of TrackerState on top of a KeyStore."""

from __future__ import annotations

import dataclasses
import json
import logging
import threading
from datetime import date
from typing import Any, Callable

from ._util import _now_iso, today_key
from .errors import InvalidBackupError, PersistenceError, SchemaError
from .model import LogEntry, LogFilter, Statistics, TrackerState
from .schema import (
    check_snapshot,
    default_state,
    dumps_state,
    legacy_to_state,
    parse_state,
    upgrade,
    validate_state,
)
from .stats import compute_statistics, filter_logs
from .storage import KeyStore

logger = logging.getLogger(__name__)

DATA_KEY = "opportunityTrackerData"
BACKUP_KEY = DATA_KEY + "_backup"
LEGACY_DAY_KEY = "opportunityTracker"
LEGACY_LOG_KEY = "opportunityTrackerLogs"


def snapshot_filename(day: date | None = None) -> str:
    d = day or date.today()
    return f"opportunity-tracker-backup-{d.isoformat()}.json"


class Store:
    """
    Owns the persisted TrackerState:
    - load(): never raises; malformed data heals to defaults field by field
    - save(): backup-on-write, restore-on-failure, deferred backup cleanup
    - one-time legacy migration on construction
    """

    def __init__(
        self,
        keys: KeyStore,
        *,
        today: Callable[[], str] | None = None,
        now: Callable[[], str] | None = None,
        backup_grace: float = 0.0,
    ) -> None:
        self.keys = keys
        self._today_fn = today or today_key
        self._now_fn = now or _now_iso
        self.backup_grace = backup_grace
        self._cleanup: threading.Timer | None = None
        self.migrate_legacy()

    # -------------------------
    # Clock
    # -------------------------

    def today(self) -> str:
        return self._today_fn()

    def now(self) -> str:
        return self._now_fn()

    # -------------------------
    # Load / save
    # -------------------------

    def load(self) -> TrackerState:
        try:
            txt = self.keys.get(DATA_KEY)
            if txt is None:
                txt = self.keys.get(BACKUP_KEY)
                if txt is None:
                    return default_state(self.today(), self.now())
                logger.warning("primary state missing; recovering from %s", BACKUP_KEY)
        except UnicodeDecodeError as e:
            logger.warning("stored state healed: not valid UTF-8 (%s); using defaults", e.reason)
            return default_state(self.today(), self.now())

        state, issues = parse_state(txt, self.today(), self.now())
        for issue in issues:
            logger.warning("stored state healed: %s", issue)
        return state

    def save(self, state: TrackerState) -> bool:
        self._cancel_cleanup()
        text = dumps_state(state)

        try:
            previous = self.keys.get(DATA_KEY)
        except UnicodeDecodeError:
            logger.warning("previous state is not valid UTF-8; overwriting without backup")
            previous = None

        backed_up = False
        try:
            if previous is not None:
                self.keys.set(BACKUP_KEY, previous)
                backed_up = True
            self.keys.set(DATA_KEY, text)
        except OSError as e:
            logger.error("saving state failed: %s", e)
            if backed_up:
                self._restore_from_backup()
            return False

        self._schedule_cleanup()
        return True

    def _restore_from_backup(self) -> None:
        backup = self.keys.get(BACKUP_KEY)
        if backup is None:
            return
        try:
            self.keys.set(DATA_KEY, backup)
            logger.warning("restored previous state from %s", BACKUP_KEY)
        except OSError as e:
            logger.error("restoring from backup failed: %s (backup kept in %s)", e, BACKUP_KEY)

    def _schedule_cleanup(self) -> None:
        if self.backup_grace <= 0:
            self._drop_backup()
            return
        timer = threading.Timer(self.backup_grace, self._drop_backup)
        timer.daemon = True
        self._cleanup = timer
        timer.start()

    def _cancel_cleanup(self) -> None:
        if self._cleanup is not None:
            self._cleanup.cancel()
            self._cleanup = None

    def _drop_backup(self) -> None:
        self.keys.remove(BACKUP_KEY)

    def close(self) -> None:
        """Cancel a pending cleanup and drop the backup slot now."""
        self._cancel_cleanup()
        self._drop_backup()

    # -------------------------
    # Partial updates
    # -------------------------

    def append_log_entry(self, entry: LogEntry) -> bool:
        state = self.load()
        state.log.insert(0, entry)
        return self.save(state)

    def update_current_day(self, **fields: Any) -> bool:
        """Shallow-merge fields into current_day. Unknown names raise TypeError."""
        state = self.load()
        state.current_day = dataclasses.replace(state.current_day, **fields)
        return self.save(state)

    # -------------------------
    # Queries
    # -------------------------

    def query_logs(self, flt: LogFilter | str = LogFilter.ALL) -> list[LogEntry]:
        return filter_logs(self.load().log, LogFilter(flt))

    def compute_statistics(self) -> Statistics:
        return compute_statistics(self.load().log)

    # -------------------------
    # Export / import / clear
    # -------------------------

    def export_snapshot(self) -> bytes:
        return dumps_state(self.load()).encode("utf-8")

    def import_snapshot(self, blob: bytes | str) -> list[str]:
        """
        Validate and install an external snapshot.
        Raises InvalidBackupError (nothing adopted) or PersistenceError.
        Returns the fields that had to be healed; empty means a clean import.
        """
        try:
            text = blob.decode("utf-8") if isinstance(blob, bytes) else blob
            raw = json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise InvalidBackupError(f"Invalid backup file: {e}") from e

        errs = check_snapshot(raw)
        if errs:
            raise InvalidBackupError("Invalid backup file: " + "; ".join(errs))

        try:
            upgraded = upgrade(raw)
        except SchemaError as e:
            raise InvalidBackupError(f"Invalid backup file: {e}") from e

        state, issues = validate_state(upgraded, self.today(), self.now())
        for issue in issues:
            logger.warning("imported snapshot healed: %s", issue)

        if not self.save(state):
            raise PersistenceError("Failed to save imported data")

        logger.info("imported snapshot (%d log entries)", len(state.log))
        return issues

    def clear_all(self) -> None:
        self._cancel_cleanup()
        self.keys.remove(DATA_KEY)
        self.keys.remove(BACKUP_KEY)
        logger.info("cleared all tracker data")

    # -------------------------
    # Legacy migration
    # -------------------------

    def migrate_legacy(self) -> bool:
        """Transcode the legacy two-key format once. Never overwrites current data."""
        if not self.keys.has(LEGACY_DAY_KEY) or self.keys.has(DATA_KEY):
            return False

        try:
            day_txt = self.keys.get(LEGACY_DAY_KEY)
            if day_txt is None:
                return False
            log_txt = self.keys.get(LEGACY_LOG_KEY)
            day_raw = json.loads(day_txt)
            log_raw = json.loads(log_txt) if log_txt else []
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("legacy data unreadable, left in place: %s", e)
            return False

        state, issues = legacy_to_state(day_raw, log_raw, self.today(), self.now())
        for issue in issues:
            logger.warning("legacy migration healed: %s", issue)

        if not self.save(state):
            logger.error("legacy migration could not be saved; legacy keys kept")
            return False

        self.keys.remove(LEGACY_DAY_KEY)
        self.keys.remove(LEGACY_LOG_KEY)
        logger.info("migrated legacy data (%d log entries)", len(state.log))
        return True

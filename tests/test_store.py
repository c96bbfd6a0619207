"""Tests for store.Store: load/save, backup slot, migration, import/export."""

from __future__ import annotations

import json
import logging

import pytest

from opptracker.errors import InvalidBackupError, PersistenceError
from opptracker.model import LogEntry, LogFilter
from opptracker.storage import KeyStore
from opptracker.store import (
    BACKUP_KEY,
    DATA_KEY,
    LEGACY_DAY_KEY,
    LEGACY_LOG_KEY,
    Store,
    snapshot_filename,
)


def _entry(date: str, taken: int, missed: int) -> LogEntry:
    total = taken + missed
    return LogEntry(date, taken, missed, total, round(taken / total * 100) if total else 0)


def _fail_next_data_write(monkeypatch, keys: KeyStore, times: int = 1) -> None:
    real_set = keys.set
    left = {"n": times}

    def flaky(key, text):
        if key == DATA_KEY and left["n"] > 0:
            left["n"] -= 1
            raise OSError(28, "No space left on device")
        return real_set(key, text)

    monkeypatch.setattr(keys, "set", flaky)


# ---- load ----


def test_load_absent_returns_defaults_without_writing(store, keys):
    state = store.load()
    assert state.current_day.date == "2026-10-19"
    assert state.current_day.total == 0
    assert state.log == []
    assert keys.get(DATA_KEY) is None


def test_load_corrupt_heals_and_logs(store, keys, caplog):
    keys.set(DATA_KEY, "not valid json {{{{")
    with caplog.at_level(logging.WARNING, logger="opptracker"):
        state = store.load()
    assert state.log == []
    assert "stored state healed" in caplog.text


def test_load_invalid_utf8_heals(store, keys, caplog):
    keys.directory.mkdir(parents=True, exist_ok=True)
    keys.path_for(DATA_KEY).write_bytes(b'{"schema_version": 2, "log": [\xff\xfe]}')
    with caplog.at_level(logging.WARNING, logger="opptracker"):
        state = store.load()
    assert state.log == []
    assert state.current_day.date == "2026-10-19"
    assert "not valid UTF-8" in caplog.text


def test_save_over_invalid_utf8_succeeds(store, keys):
    keys.directory.mkdir(parents=True, exist_ok=True)
    keys.path_for(DATA_KEY).write_bytes(b"\xff\xfe")
    state = store.load()
    state.current_day.taken_count = 1
    assert store.save(state) is True
    assert store.load().current_day.taken_count == 1


def test_load_keeps_valid_siblings(store, keys):
    keys.set(DATA_KEY, json.dumps({
        "schema_version": 2,
        "current_day": {"date": "2026-10-19", "taken_count": 5, "missed_count": "x"},
        "log": [{"date": "2026-10-18", "taken_count": 1, "missed_count": 1}],
    }))
    state = store.load()
    assert state.current_day.taken_count == 5
    assert state.current_day.missed_count == 0
    assert len(state.log) == 1


def test_load_recovers_from_backup_when_primary_missing(store, keys):
    keys.set(BACKUP_KEY, json.dumps({
        "schema_version": 2,
        "current_day": {"date": "2026-10-19", "taken_count": 2, "missed_count": 0,
                        "undo_count": 0, "action_history": []},
        "log": [],
        "settings": {"max_undos": 3, "created_at": "x"},
    }))
    assert store.load().current_day.taken_count == 2


# ---- save ----


def test_save_roundtrip(store):
    state = store.load()
    state.current_day.taken_count = 3
    assert store.save(state) is True
    assert store.load().current_day.taken_count == 3


def test_save_drops_backup_immediately_by_default(store, keys):
    store.save(store.load())
    store.save(store.load())
    assert keys.get(BACKUP_KEY) is None


def test_save_with_grace_keeps_backup_until_close(keys, clock):
    store = Store(keys, today=clock.today, now=clock.now, backup_grace=60.0)
    first = store.load()
    first.current_day.taken_count = 1
    store.save(first)
    previous = keys.get(DATA_KEY)

    second = store.load()
    second.current_day.taken_count = 2
    store.save(second)
    assert keys.get(BACKUP_KEY) == previous

    store.close()
    assert keys.get(BACKUP_KEY) is None


def test_save_failure_restores_previous_and_returns_false(store, keys, monkeypatch, caplog):
    state = store.load()
    state.current_day.taken_count = 1
    store.save(state)
    before = keys.get(DATA_KEY)

    _fail_next_data_write(monkeypatch, keys)
    state.current_day.taken_count = 99
    with caplog.at_level(logging.ERROR, logger="opptracker"):
        assert store.save(state) is False

    assert keys.get(DATA_KEY) == before
    assert store.load().current_day.taken_count == 1
    assert "saving state failed" in caplog.text


def test_save_failure_on_first_write_leaves_nothing(store, keys, monkeypatch):
    _fail_next_data_write(monkeypatch, keys)
    assert store.save(store.load()) is False
    assert keys.get(DATA_KEY) is None


# ---- partial updates + queries ----


def test_append_log_entry_prepends(store):
    store.append_log_entry(_entry("2026-10-17", 1, 1))
    store.append_log_entry(_entry("2026-10-18", 2, 0))
    assert [e.date for e in store.query_logs()] == ["2026-10-18", "2026-10-17"]


def test_update_current_day_merges(store):
    store.update_current_day(taken_count=4)
    store.update_current_day(missed_count=2)
    day = store.load().current_day
    assert (day.taken_count, day.missed_count) == (4, 2)
    assert day.date == "2026-10-19"


def test_update_current_day_rejects_unknown_field(store):
    with pytest.raises(TypeError):
        store.update_current_day(bogus=1)


def test_query_logs_filters(store):
    for e in [_entry("a", 9, 1), _entry("b", 6, 4), _entry("c", 1, 9)]:
        store.append_log_entry(e)
    assert [e.date for e in store.query_logs(LogFilter.EXCELLENT)] == ["a"]
    assert [e.date for e in store.query_logs("good")] == ["b"]
    assert [e.date for e in store.query_logs("poor")] == ["c"]
    assert len(store.query_logs()) == 3


def test_compute_statistics(store):
    store.append_log_entry(_entry("a", 0, 9))
    store.append_log_entry(_entry("b", 1, 0))
    s = store.compute_statistics()
    assert s.overall_score == 10
    assert s.average_score == 50
    assert s.current_streak == 1
    assert s.total_days == 2


# ---- export / import ----


def test_export_is_readable_json(store):
    store.append_log_entry(_entry("2026-10-18", 7, 3))
    blob = store.export_snapshot()
    data = json.loads(blob.decode("utf-8"))
    assert data["schema_version"] == 2
    assert data["log"][0]["percentage"] == 70


def test_import_roundtrip_between_stores(store, tmp_path, clock):
    store.append_log_entry(_entry("2026-10-18", 7, 3))
    store.update_current_day(taken_count=2)
    blob = store.export_snapshot()

    other = Store(KeyStore(tmp_path / "other"), today=clock.today, now=clock.now)
    assert other.import_snapshot(blob) == []
    assert other.load() == store.load()


@pytest.mark.parametrize(
    "blob",
    [
        b"not json at all",
        b"\xff\xfe\x00",
        b"[1, 2, 3]",
        b'{"hello": "world"}',
        b'{"schema_version": 2, "current_day": {}, "log": [{"date": "d", "taken_count": "7"}]}',
    ],
)
def test_import_invalid_leaves_state_unchanged(store, keys, blob):
    store.append_log_entry(_entry("2026-10-18", 1, 0))
    before = keys.get(DATA_KEY)
    with pytest.raises(InvalidBackupError):
        store.import_snapshot(blob)
    assert keys.get(DATA_KEY) == before


def test_import_v1_browser_export(store):
    v1 = {
        "version": "1.0",
        "currentDay": {"taken": 1, "missed": 0, "date": "Mon Oct 19 2026", "undoCount": 0, "actionHistory": []},
        "logs": [{"date": "Sun Oct 18 2026", "taken": 3, "missed": 1, "total": 4, "percentage": 75}],
        "settings": {"maxUndos": 3, "createdAt": "2026-01-01T00:00:00.000Z"},
    }
    assert store.import_snapshot(json.dumps(v1)) == []
    state = store.load()
    assert state.current_day.date == "2026-10-19"
    assert state.log == [LogEntry("2026-10-18", 3, 1, 4, 75)]


def test_import_partial_reports_healed_fields(store):
    blob = json.dumps({"schema_version": 2, "current_day": {"date": "2026-10-19"}, "log": []})
    issues = store.import_snapshot(blob)
    assert issues
    assert store.load().current_day.total == 0


def test_import_save_failure_raises(store, keys, monkeypatch):
    _fail_next_data_write(monkeypatch, keys)
    with pytest.raises(PersistenceError):
        store.import_snapshot(store.export_snapshot())


def test_snapshot_filename():
    from datetime import date

    assert snapshot_filename(date(2026, 10, 19)) == "opportunity-tracker-backup-2026-10-19.json"


# ---- clear ----


def test_clear_all(store, keys):
    store.append_log_entry(_entry("a", 1, 0))
    store.clear_all()
    assert keys.get(DATA_KEY) is None
    assert store.load().log == []


# ---- legacy migration ----


def _write_legacy(keys: KeyStore) -> None:
    keys.set(LEGACY_DAY_KEY, json.dumps({
        "taken": 2, "missed": 1, "currentDate": "Mon Oct 19 2026", "undoCount": 1,
        "actionHistory": [{"type": "taken", "timestamp": 1792400000000}],
    }))
    keys.set(LEGACY_LOG_KEY, json.dumps([
        {"date": "Sun Oct 18 2026", "taken": 1, "missed": 1, "total": 2, "percentage": 50},
    ]))


def test_legacy_migrated_on_construction(keys, clock):
    _write_legacy(keys)
    store = Store(keys, today=clock.today, now=clock.now)

    assert keys.get(LEGACY_DAY_KEY) is None
    assert keys.get(LEGACY_LOG_KEY) is None
    state = store.load()
    assert state.current_day.taken_count == 2
    assert state.current_day.undo_count == 1
    assert len(state.current_day.action_history) == 1
    assert state.log == [LogEntry("2026-10-18", 1, 1, 2, 50)]


def test_legacy_migration_is_idempotent(keys, clock):
    _write_legacy(keys)
    first = Store(keys, today=clock.today, now=clock.now)
    snapshot = keys.get(DATA_KEY)
    assert first.migrate_legacy() is False
    Store(keys, today=clock.today, now=clock.now)
    assert keys.get(DATA_KEY) == snapshot


def test_legacy_never_overwrites_current(store, keys, clock):
    store.update_current_day(taken_count=9)
    before = keys.get(DATA_KEY)
    _write_legacy(keys)

    again = Store(keys, today=clock.today, now=clock.now)
    assert keys.get(DATA_KEY) == before
    assert again.load().current_day.taken_count == 9
    assert keys.get(LEGACY_DAY_KEY) is not None


def test_legacy_corrupt_left_in_place(keys, clock):
    keys.set(LEGACY_DAY_KEY, "{ broken")
    Store(keys, today=clock.today, now=clock.now)
    assert keys.get(LEGACY_DAY_KEY) == "{ broken"
    assert keys.get(DATA_KEY) is None


def test_legacy_invalid_utf8_left_in_place(keys, clock):
    keys.directory.mkdir(parents=True, exist_ok=True)
    keys.path_for(LEGACY_DAY_KEY).write_bytes(b"\xff\xfe")
    store = Store(keys, today=clock.today, now=clock.now)
    assert keys.path_for(LEGACY_DAY_KEY).read_bytes() == b"\xff\xfe"
    assert keys.get(DATA_KEY) is None
    assert store.migrate_legacy() is False

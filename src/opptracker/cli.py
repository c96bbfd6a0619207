from __future__ import annotations

import argparse
import stat
from datetime import date
from pathlib import Path

from ._util import _dt_from_iso, _fmt_time
from .errors import InvalidBackupError, PersistenceError
from .logsetup import setup_logging
from .model import DEFAULT_MAX_UNDOS, ActionKind, DayRecord, LogFilter
from .paths import describe_source, resolve_data_dir
from .safety import assert_safe_data_dir
from .stats import chart_series, performance_label, streak_at
from .storage import KeyStore
from .store import BACKUP_KEY, DATA_KEY, LEGACY_DAY_KEY, LEGACY_LOG_KEY, Store, snapshot_filename
from .tracker import Tracker


# -------------------------
# Session helpers
# -------------------------

def _open_tracker(args: argparse.Namespace) -> Tracker:
    store = Store(KeyStore(args.data_dir))
    tracker = Tracker(store)
    if tracker.check_boundary():
        print(f"🌅 New day started ({store.today()}).")
    return tracker


def _warn_if_unsaved(tracker: Tracker) -> None:
    if not tracker.last_save_ok:
        print("⚠️ Could not save to disk; this change may be lost.")


# -------------------------
# Formatting helpers
# -------------------------

def _sparkline(values: list[float], vmin: float = 0.0, vmax: float = 100.0) -> str:
    if not values:
        return ""
    blocks = "▁▂▃▄▅▆▇█"
    span = max(1e-9, vmax - vmin)
    out = []
    for v in values:
        x = (v - vmin) / span
        idx = int(round(x * (len(blocks) - 1)))
        idx = max(0, min(len(blocks) - 1, idx))
        out.append(blocks[idx])
    return "".join(out)


def _fraction(day: DayRecord) -> str:
    return f"{day.taken_count}/{day.total} ({day.percentage}%)"


def _print_day_block(day: DayRecord, undos_left: int, max_undos: int) -> None:
    print("```")
    print("📒 Today")
    print(f"- 📅 Date: {day.date}")
    print(f"- ✅ Taken: {day.taken_count}")
    print(f"- ❌ Missed: {day.missed_count}")
    print(f"- 🎯 Score: {_fraction(day)}")
    print(f"- ↶ Undos left: {undos_left}/{max_undos}")
    if day.action_history:
        last = day.action_history[-1]
        dt = _dt_from_iso(last.timestamp)
        when = _fmt_time(dt) if dt else "unknown-time"
        print(f"- 🕒 Last action: {last.kind.value} @ {when}")
    print("```")


# -------------------------
# Action commands
# -------------------------

def cmd_record(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    day = tracker.record_opportunity(args.kind)
    icon = "✅" if args.kind is ActionKind.TAKEN else "❌"
    print(f"{icon} Logged {args.kind.value}. Today: {_fraction(day)}")
    _warn_if_unsaved(tracker)


def cmd_undo(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    undone = tracker.undo()
    if undone is None:
        if tracker.undos_remaining() == 0:
            print("↶ No undos left today.")
        else:
            print("↶ Nothing to undo.")
        return
    day = tracker.current_day()
    print(f"↶ Undid {undone.kind.value}. Today: {_fraction(day)} (undos left: {tracker.undos_remaining()})")
    _warn_if_unsaved(tracker)


def cmd_reset_day(args: argparse.Namespace) -> None:
    if not args.yes:
        raise SystemExit("Refusing to close today early without --yes.")
    tracker = _open_tracker(args)
    entry = tracker.close_day()
    if entry is None:
        print("🧹 Day reset (nothing recorded, no log entry).")
    else:
        print(f"📒 Logged {entry.date}: {entry.taken_count}/{entry.total} ({entry.percentage}%). New day started.")
    _warn_if_unsaved(tracker)


# -------------------------
# Read commands
# -------------------------

def cmd_today(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    day = tracker.current_day()
    left = tracker.undos_remaining()

    if args.format == "block":
        _print_day_block(day, left, DEFAULT_MAX_UNDOS)
        return

    print(f"{day.date}: {_fraction(day)} — undos left {left}/{DEFAULT_MAX_UNDOS}")


def cmd_stats(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    s = tracker.statistics()

    print("=== Opportunity Stats ===")
    print(f"- overall score: {s.overall_score}%")
    print(f"- average daily score: {s.average_score}%")
    print(f"- current streak: {s.current_streak} day(s)")
    print(f"- best streak: {s.best_streak} day(s)")
    print(f"- days logged: {s.total_days}")


def cmd_log(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    flt = LogFilter(args.filter)
    entries = tracker.logs(flt)

    if not entries:
        print("No logs found for this filter.")
        return

    print(f"=== Daily Log ({flt.value}, newest first) ===")
    for i, e in enumerate(entries[: args.limit]):
        streak = streak_at(entries, i)
        streak_txt = f" 🔥 {streak} day streak" if streak > 1 else ""
        print(f"{e.date}{streak_txt} — {e.taken_count}/{e.total} ({e.percentage}%) {performance_label(e.percentage)}")


def cmd_chart(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    points = chart_series(tracker.logs(), days=args.days)

    if not points:
        print("No data yet - start tracking opportunities!")
        return

    print(f"=== Last {len(points)} day(s) ===")
    print(f"- sparkline: {_sparkline([p.percentage for p in points])}")
    for p in points:
        bar = ("▇" if p.good else "░") * max(1, int(round(p.height * 30))) if p.percentage else ""
        print(f"{p.date}: {p.percentage:>3}% {bar}")


def cmd_insights(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    for line in tracker.insights():
        print(f"- {line}")


# -------------------------
# Backup commands
# -------------------------

def cmd_export(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    out_path = Path(args.out or snapshot_filename(date.today())).expanduser().resolve()
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_bytes(tracker.store.export_snapshot())
    print(f"📄 Exported tracker data → {out_path}")


def cmd_import(args: argparse.Namespace) -> None:
    tracker = _open_tracker(args)
    in_path = Path(args.path).expanduser().resolve()
    try:
        blob = in_path.read_bytes()
    except OSError as e:
        raise SystemExit(f"Failed to read file {in_path}: {e.strerror}") from e

    try:
        issues = tracker.store.import_snapshot(blob)
    except InvalidBackupError as e:
        print(f"🚫 {e}")
        raise SystemExit(2) from e
    except PersistenceError as e:
        raise SystemExit(f"🚫 {e}") from e

    if issues:
        print(f"⚠️ Imported with {len(issues)} field(s) reset to defaults:")
        for issue in issues:
            print(f"  - {issue}")
    else:
        print(f"✅ Imported {in_path}")
    # the imported day may be stale
    if tracker.check_boundary():
        print("🌅 Imported day was not today; it has been closed.")


def cmd_clear(args: argparse.Namespace) -> None:
    if not args.yes:
        raise SystemExit("Refusing to delete all data without --yes (this cannot be undone).")
    store = Store(KeyStore(args.data_dir))
    store.clear_all()
    print("🧹 All tracker data deleted.")


# -------------------------
# Core commands
# -------------------------

def cmd_where(args: argparse.Namespace) -> None:
    print(args.data_dir)
    print(f"↳ using {describe_source(args.data_arg, args.profile)}")


def cmd_doctor(args: argparse.Namespace) -> None:
    print("=== Opportunity Tracker Doctor ===")

    assert_safe_data_dir(args.data_dir, args.allow_repo_data_path)
    print("✅ Data path safety guard: OK")

    keys = KeyStore(args.data_dir)
    leftovers = [k for k in (LEGACY_DAY_KEY, LEGACY_LOG_KEY) if keys.has(k)]
    store = Store(keys)
    state = store.load()
    print(f"✅ State readable: {len(state.log)} log entries, current day {state.current_day.date}")

    path = keys.path_for(DATA_KEY)
    try:
        perms = stat.S_IMODE(path.stat().st_mode)
        print(f"🔐 File permissions: {oct(perms)} (target 0o600)")
    except FileNotFoundError:
        print("⚠️ No saved state yet (record something first)")

    if keys.has(BACKUP_KEY):
        print(f"⚠️ Leftover backup slot found: {keys.path_for(BACKUP_KEY)}")
    for k in leftovers:
        if keys.has(k):
            print(f"⚠️ Legacy key {k!r} still present (newer data exists, not migrated)")

    print("=== Done ===")


def main(argv=None) -> None:
    p = argparse.ArgumentParser(prog="ot", description="Opportunity taken/missed tracker")
    p.add_argument("--data", default=None, help="Data directory (overrides env/default)")
    p.add_argument("--profile", default=None, help="Profile name (e.g. work/test)")
    p.add_argument("--allow-repo-data-path", action="store_true", help="Override safety guard (not recommended)")
    p.add_argument("-v", "--verbose", action="count", default=0, help="More logging (-v info, -vv debug)")
    p.add_argument("--log-file", default=None, help="Also write logs to this file (rotated)")

    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("taken", help="Record an opportunity taken").set_defaults(func=cmd_record, kind=ActionKind.TAKEN)
    sub.add_parser("missed", help="Record an opportunity missed").set_defaults(func=cmd_record, kind=ActionKind.MISSED)
    sub.add_parser("undo", help="Undo the last action (max 3 per day)").set_defaults(func=cmd_undo)

    reset = sub.add_parser("reset-day", help="Close today now and start a new day (requires --yes)")
    reset.add_argument("--yes", action="store_true", help="Confirm closing the day early")
    reset.set_defaults(func=cmd_reset_day)

    today = sub.add_parser("today", help="Show today's counts")
    today.add_argument("--format", choices=["line", "block"], default="line")
    today.set_defaults(func=cmd_today)

    sub.add_parser("stats", help="Scores and streaks over the log").set_defaults(func=cmd_stats)

    log = sub.add_parser("log", help="List logged days (newest first)")
    log.add_argument("--filter", choices=[f.value for f in LogFilter], default=LogFilter.ALL.value,
                     help="all, excellent (>=90%%), good (50-89%%), poor (<50%%)")
    log.add_argument("--limit", type=int, default=50)
    log.set_defaults(func=cmd_log)

    chart = sub.add_parser("chart", help="Bar chart of recent days")
    chart.add_argument("--days", type=int, default=14, help="How many recent days to show")
    chart.set_defaults(func=cmd_chart)

    sub.add_parser("insights", help="Short insights from your history").set_defaults(func=cmd_insights)

    export = sub.add_parser("export", help="Write a JSON backup of all data")
    export.add_argument("--out", default=None, help="Output path (default: opportunity-tracker-backup-DATE.json)")
    export.set_defaults(func=cmd_export)

    imp = sub.add_parser("import", help="Replace all data with a JSON backup")
    imp.add_argument("path", help="Backup file to import")
    imp.set_defaults(func=cmd_import)

    clear = sub.add_parser("clear", help="Delete ALL data (requires --yes)")
    clear.add_argument("--yes", action="store_true", help="Confirm destructive reset")
    clear.set_defaults(func=cmd_clear)

    sub.add_parser("where", help="Show which data directory is active and why").set_defaults(func=cmd_where)
    sub.add_parser("doctor", help="Run safety + health checks").set_defaults(func=cmd_doctor)

    args = p.parse_args(argv)
    setup_logging(args.verbose, args.log_file)

    args.data_arg = args.data
    args.data_dir = resolve_data_dir(args.data, args.profile)

    assert_safe_data_dir(args.data_dir, args.allow_repo_data_path)

    args.func(args)

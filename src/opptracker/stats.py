from __future__ import annotations

import math
from typing import NamedTuple, Sequence

from .model import GOOD_DAY_THRESHOLD, LogEntry, LogFilter, Statistics


def _round(x: float) -> int:
    # half-up, not banker's rounding
    return int(math.floor(x + 0.5))


def is_good(percentage: int) -> bool:
    return percentage >= GOOD_DAY_THRESHOLD


def matches(entry: LogEntry, flt: LogFilter) -> bool:
    p = entry.percentage
    if flt is LogFilter.EXCELLENT:
        return p >= 90
    if flt is LogFilter.GOOD:
        return 50 <= p < 90
    if flt is LogFilter.POOR:
        return p < 50
    return True


def filter_logs(log: Sequence[LogEntry], flt: LogFilter = LogFilter.ALL) -> list[LogEntry]:
    """Entries matching flt, in stored (most-recent-first) order. Always a new list."""
    return [e for e in log if matches(e, flt)]


def compute_statistics(log: Sequence[LogEntry]) -> Statistics:
    """
    Over a most-recent-first log:
      - overall_score: global taken/total ratio
      - average_score: mean of per-day percentages
      - current_streak: good-day run starting at index 0
      - best_streak: longest good-day run anywhere
    """
    if not log:
        return Statistics(overall_score=0, current_streak=0, best_streak=0, total_days=0, average_score=0)

    taken = sum(e.taken_count for e in log)
    total = sum(e.total for e in log)
    overall = _round(taken / total * 100) if total > 0 else 0
    average = _round(sum(e.percentage for e in log) / len(log))

    current = 0
    for e in log:
        if not is_good(e.percentage):
            break
        current += 1

    best = 0
    run = 0
    for e in log:
        if is_good(e.percentage):
            run += 1
        else:
            best = max(best, run)
            run = 0
    best = max(best, run)

    return Statistics(
        overall_score=overall,
        current_streak=current,
        best_streak=best,
        total_days=len(log),
        average_score=average,
    )


def streak_at(entries: Sequence[LogEntry], index: int) -> int:
    """Display streak for entries[index]: consecutive good days from index
    toward older entries. Minimum 1."""
    streak = 0
    for e in entries[index:]:
        if not is_good(e.percentage):
            break
        streak += 1
    return max(1, streak)


def performance_label(percentage: int) -> str:
    if percentage >= 90:
        return "🌟 Excellent!"
    if percentage >= 80:
        return "🎯 Great job!"
    if percentage >= 70:
        return "👍 Good work!"
    if percentage >= 50:
        return "✅ On track"
    if percentage >= 30:
        return "⚠️ Needs improvement"
    return "❌ Tough day"


class ChartPoint(NamedTuple):
    date: str
    percentage: int
    height: float  # 0..1, relative to the best logged day
    good: bool


def chart_series(log: Sequence[LogEntry], days: int = 14) -> list[ChartPoint]:
    """Last `days` entries, oldest first, scaled against the best day in the whole log."""
    window = list(log[:days])
    if not window:
        return []
    top = max(e.percentage for e in log)
    out: list[ChartPoint] = []
    for e in reversed(window):
        height = (e.percentage / top) if top > 0 else 0.0
        out.append(ChartPoint(date=e.date, percentage=e.percentage, height=height, good=is_good(e.percentage)))
    return out


def recent_average(log: Sequence[LogEntry], n: int = 3) -> float | None:
    if len(log) < n:
        return None
    return sum(e.percentage for e in log[:n]) / n


def insights(stats: Statistics, log: Sequence[LogEntry]) -> list[str]:
    if not log:
        return ["Start tracking opportunities to see insights!"]

    out: list[str] = []

    if stats.overall_score >= 80:
        out.append("🎉 You're crushing it! Keep up the excellent work!")
    elif stats.overall_score >= 60:
        out.append("👍 You're doing well! Try to push for even better results.")
    elif stats.overall_score >= 40:
        out.append("📈 You're making progress! Focus on taking more opportunities.")
    else:
        out.append("💪 Every opportunity counts! Start small and build momentum.")

    if stats.current_streak >= 7:
        out.append(f"🔥 Amazing {stats.current_streak}-day streak! You're building great habits.")
    elif stats.current_streak >= 3:
        out.append(f"🔥 Nice {stats.current_streak}-day streak! Keep it going!")

    if stats.best_streak >= 10:
        out.append(f"🏆 Your best streak was {stats.best_streak} days! You know you can do it.")

    recent = recent_average(log, 3)
    if recent is not None:
        if recent >= 80:
            out.append("📈 Your recent performance has been excellent!")
        elif recent < 40:
            out.append("💡 Consider what's holding you back from taking opportunities.")

    return out

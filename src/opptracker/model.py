from __future__ import annotations

import math
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any

DEFAULT_MAX_UNDOS = 3
GOOD_DAY_THRESHOLD = 50


class ActionKind(str, Enum):
    TAKEN = "taken"
    MISSED = "missed"


class LogFilter(str, Enum):
    ALL = "all"
    EXCELLENT = "excellent"  # >= 90
    GOOD = "good"  # 50..89
    POOR = "poor"  # < 50


class CloseReason(str, Enum):
    EXPLICIT_RESET = "explicit-reset"
    BOUNDARY = "boundary-detected"


def percent(taken: int, total: int) -> int:
    """Half-up rounded percentage; 0 for an empty day."""
    if total <= 0:
        return 0
    return int(math.floor(taken / total * 100 + 0.5))


@dataclass(frozen=True)
class Action:
    kind: ActionKind
    timestamp: str

    def to_dict(self) -> dict[str, Any]:
        return {"kind": self.kind.value, "timestamp": self.timestamp}


@dataclass
class DayRecord:
    date: str
    taken_count: int = 0
    missed_count: int = 0
    undo_count: int = 0
    action_history: list[Action] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.taken_count + self.missed_count

    @property
    def percentage(self) -> int:
        return percent(self.taken_count, self.total)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date,
            "taken_count": self.taken_count,
            "missed_count": self.missed_count,
            "undo_count": self.undo_count,
            "action_history": [a.to_dict() for a in self.action_history],
        }


@dataclass(frozen=True)
class LogEntry:
    date: str
    taken_count: int
    missed_count: int
    total: int
    percentage: int

    @classmethod
    def from_day(cls, day: DayRecord) -> "LogEntry":
        return cls(
            date=day.date,
            taken_count=day.taken_count,
            missed_count=day.missed_count,
            total=day.total,
            percentage=day.percentage,
        )

    @property
    def is_good(self) -> bool:
        return self.percentage >= GOOD_DAY_THRESHOLD

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Settings:
    max_undos: int = DEFAULT_MAX_UNDOS
    created_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class TrackerState:
    schema_version: int
    current_day: DayRecord
    log: list[LogEntry] = field(default_factory=list)
    settings: Settings = field(default_factory=Settings)

    def to_dict(self) -> dict[str, Any]:
        return {
            "schema_version": self.schema_version,
            "current_day": self.current_day.to_dict(),
            "log": [e.to_dict() for e in self.log],
            "settings": self.settings.to_dict(),
        }


@dataclass(frozen=True)
class Statistics:
    overall_score: int
    current_streak: int
    best_streak: int
    total_days: int
    average_score: int


__all__ = [
    "DEFAULT_MAX_UNDOS",
    "GOOD_DAY_THRESHOLD",
    "ActionKind",
    "LogFilter",
    "CloseReason",
    "percent",
    "Action",
    "DayRecord",
    "LogEntry",
    "Settings",
    "TrackerState",
    "Statistics",
]

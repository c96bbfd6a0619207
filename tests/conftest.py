from __future__ import annotations

from pathlib import Path

import pytest

from opptracker.storage import KeyStore
from opptracker.store import Store
from opptracker.tracker import Tracker


class Clock:
    """Settable calendar day; timestamps tick one second per call."""

    def __init__(self, day: str = "2026-10-19") -> None:
        self.day = day
        self.ticks = 0

    def today(self) -> str:
        return self.day

    def now(self) -> str:
        self.ticks += 1
        return f"{self.day}T09:{self.ticks // 60:02d}:{self.ticks % 60:02d}+00:00"


@pytest.fixture()
def clock() -> Clock:
    return Clock()


@pytest.fixture()
def keys(tmp_path: Path) -> KeyStore:
    return KeyStore(tmp_path / "data")


@pytest.fixture()
def store(keys: KeyStore, clock: Clock) -> Store:
    return Store(keys, today=clock.today, now=clock.now)


@pytest.fixture()
def tracker(store: Store) -> Tracker:
    return Tracker(store)

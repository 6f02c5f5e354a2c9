"""Shared test helpers and stub classes.

Import from here instead of duplicating these classes in individual test files.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable


class FakeTimer:
    """Timer stand-in that only fires when the test says so."""

    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self.started = False
        self.cancelled = False

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class FakeTimerFactory:
    """Collects every timer the coordinator creates.

    Example:
        timers = FakeTimerFactory()
        coordinator = RefreshCoordinator(markers, timer_factory=timers)
        timers.live(5.0)[-1].fire()
    """

    def __init__(self) -> None:
        self.timers: list[FakeTimer] = []

    def __call__(self, interval: float, callback: Callable[[], None]) -> FakeTimer:
        timer = FakeTimer(interval, callback)
        self.timers.append(timer)
        return timer

    def live(self, interval: float) -> list[FakeTimer]:
        return [timer for timer in self.timers if timer.interval == interval and not timer.cancelled]


class ManualClock:
    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_project(root: Path, *, version: str = "2022.3.10f1") -> Path:
    """Create the minimal folder layout of a host project under ``root``."""

    (root / "Assets" / "Scripts").mkdir(parents=True)
    (root / "Temp").mkdir()
    (root / "Library").mkdir()
    settings = root / "ProjectSettings"
    settings.mkdir()
    (settings / "ProjectVersion.txt").write_text(
        f"m_EditorVersion: {version}\nm_EditorVersionWithRevision: {version} (abc123)\n",
        encoding="utf-8",
    )
    return root

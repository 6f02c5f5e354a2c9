"""Tests for the refresh coordinator and its marker files."""

from __future__ import annotations

from pathlib import Path

import pytest

from editorbridge.core.events import BatchFlushed, BatchStarted, EventBus, RefreshSignaled
from editorbridge.refresh import CoordinatorState, MarkerWriter, MutationKind, RefreshCoordinator, RefreshRequest
from editorbridge.refresh.markers import render_trigger

from tests.helpers import FakeTimerFactory

IDLE = 5.0
LOCK = 1.0


@pytest.fixture()
def timers() -> FakeTimerFactory:
    return FakeTimerFactory()


@pytest.fixture()
def bus() -> EventBus:
    return EventBus()


@pytest.fixture()
def coordinator(tmp_path: Path, timers: FakeTimerFactory, bus: EventBus) -> RefreshCoordinator:
    markers = MarkerWriter(tmp_path / "Temp", clock=lambda: 1_700_000_000.0)
    return RefreshCoordinator(markers, idle_timeout=IDLE, lock_expiry=LOCK, timer_factory=timers, bus=bus)


def _signals(bus: EventBus) -> list[RefreshRequest]:
    received: list[RefreshRequest] = []
    bus.subscribe(RefreshSignaled, lambda event: received.append(event.request))
    return received


class TestIdleState:
    def test_each_mutation_signals_immediately(self, coordinator: RefreshCoordinator, bus: EventBus) -> None:
        signals = _signals(bus)

        coordinator.notify(MutationKind.CREATED, "Assets/Scripts/A.cs")
        coordinator.notify("modified", "Assets/Art/B.png")

        assert coordinator.signal_count == 2
        assert [request.mutations[0].path for request in signals] == [
            "Assets/Scripts/A.cs",
            "Assets/Art/B.png",
        ]

    def test_script_changes_request_recompile(self, coordinator: RefreshCoordinator) -> None:
        script = coordinator.notify(MutationKind.MODIFIED, "Assets\\Scripts\\A.cs")
        texture = coordinator.notify(MutationKind.MODIFIED, "Assets/Art/B.png")

        assert script is not None and script.force_recompile and script.recompile_scripts
        assert script.folders == ("Assets/Scripts",)
        assert texture is not None and not texture.force_recompile

    def test_signal_writes_trigger_and_lock(self, coordinator: RefreshCoordinator) -> None:
        coordinator.notify(MutationKind.CREATED, "Assets/Scripts/A.cs")

        markers = coordinator.markers
        body = markers.trigger_path.read_text(encoding="utf-8")
        assert body.startswith("timestamp: 1700000000000\n")
        assert "forceRecompile: true" in body
        assert "folder: Assets/Scripts" in body
        assert markers.lock_path.read_text(encoding="utf-8") == "processing"
        assert coordinator.refresh_pending

    def test_lock_marker_expires(self, coordinator: RefreshCoordinator, timers: FakeTimerFactory) -> None:
        coordinator.notify(MutationKind.CREATED, "Assets/A.txt")

        timers.live(LOCK)[-1].fire()

        assert not coordinator.refresh_pending

    def test_pending_lock_does_not_suppress_signal(self, coordinator: RefreshCoordinator) -> None:
        coordinator.notify(MutationKind.CREATED, "Assets/A.txt")
        assert coordinator.refresh_pending

        coordinator.notify(MutationKind.CREATED, "Assets/B.txt")

        assert coordinator.signal_count == 2

    def test_explicit_refresh_without_options(self, coordinator: RefreshCoordinator) -> None:
        request = coordinator.request_refresh()

        assert not request.has_options
        assert coordinator.markers.trigger_path.read_text(encoding="utf-8").splitlines()[1] == "refresh"


class TestBatching:
    def test_idle_timeout_flushes_one_signal(
        self, coordinator: RefreshCoordinator, timers: FakeTimerFactory, bus: EventBus
    ) -> None:
        signals = _signals(bus)
        flushed: list[BatchFlushed] = []
        bus.subscribe(BatchFlushed, flushed.append)

        assert coordinator.start_batch()
        coordinator.notify(MutationKind.CREATED, "Assets/X.cs")
        coordinator.notify(MutationKind.MODIFIED, "Assets/Y.cs")
        assert coordinator.signal_count == 0

        idle_timers = timers.live(IDLE)
        assert len(idle_timers) == 1
        idle_timers[0].fire()

        assert coordinator.signal_count == 1
        assert len(signals) == 1
        assert [mutation.line() for mutation in signals[0].mutations] == [
            "created: Assets/X.cs",
            "modified: Assets/Y.cs",
        ]
        assert flushed[0].reason == "idle-timeout"
        assert coordinator.state is CoordinatorState.IDLE

    def test_each_mutation_rearms_the_idle_timer(
        self, coordinator: RefreshCoordinator, timers: FakeTimerFactory
    ) -> None:
        coordinator.start_batch()
        first = timers.live(IDLE)[0]

        coordinator.notify(MutationKind.CREATED, "Assets/X.cs")

        assert first.cancelled
        assert len(timers.live(IDLE)) == 1

    def test_stale_timer_callback_is_ignored(
        self, coordinator: RefreshCoordinator, timers: FakeTimerFactory
    ) -> None:
        coordinator.start_batch()
        stale = timers.live(IDLE)[0]
        coordinator.notify(MutationKind.CREATED, "Assets/X.cs")

        stale.fire()

        assert coordinator.batch_active
        assert coordinator.signal_count == 0

    def test_end_batch_flushes_and_writes_listing(self, coordinator: RefreshCoordinator) -> None:
        coordinator.start_batch()
        coordinator.notify(MutationKind.CREATED, "Assets/A.cs")
        coordinator.notify(MutationKind.DELETED, "Assets/Old")

        request = coordinator.end_batch()

        assert request is not None
        assert request.reason == "batch:explicit"
        assert request.folders == ("Assets",)
        listing = coordinator.markers.batch_path.read_text(encoding="utf-8")
        assert listing == "created: Assets/A.cs\ndeleted: Assets/Old\n"

    def test_empty_batch_sends_no_signal(self, coordinator: RefreshCoordinator, bus: EventBus) -> None:
        started: list[BatchStarted] = []
        bus.subscribe(BatchStarted, started.append)

        coordinator.start_batch()
        assert coordinator.end_batch() is None

        assert coordinator.signal_count == 0
        assert len(started) == 1

    def test_nested_start_is_ignored(self, coordinator: RefreshCoordinator) -> None:
        assert coordinator.start_batch()
        coordinator.notify(MutationKind.CREATED, "Assets/A.cs")

        assert not coordinator.start_batch()
        assert len(coordinator.queued) == 1

    def test_end_without_batch_is_a_no_op(self, coordinator: RefreshCoordinator) -> None:
        assert coordinator.end_batch() is None

    def test_explicit_refresh_bypasses_batch(self, coordinator: RefreshCoordinator) -> None:
        coordinator.start_batch()

        coordinator.request_refresh(save_assets=True, folders=["Assets/Scripts/"])

        assert coordinator.signal_count == 1
        assert coordinator.batch_active

    def test_close_flushes_open_batch(self, coordinator: RefreshCoordinator) -> None:
        coordinator.start_batch()
        coordinator.notify(MutationKind.CREATED, "Assets/A.cs")

        coordinator.close()

        assert coordinator.signal_count == 1
        assert not coordinator.refresh_pending


def test_render_trigger_lists_options() -> None:
    request = RefreshRequest(save_assets=True, folders=("Assets/A", "Assets/B"))

    assert render_trigger(request, 42) == "timestamp: 42\nsaveAssets: true\nfolder: Assets/A\nfolder: Assets/B\n"


def test_refresh_request_round_trips_through_wire_dict() -> None:
    coordinator_request = RefreshRequest.from_dict(
        {
            "forceRecompile": True,
            "folders": ["Assets"],
            "mutations": [{"kind": "created", "path": "Assets/A.cs"}, {"kind": "bogus", "path": "x"}],
            "reason": "mutation",
        }
    )

    assert coordinator_request.force_recompile
    assert len(coordinator_request.mutations) == 1
    assert RefreshRequest.from_dict(coordinator_request.to_dict()) == coordinator_request

"""Idle/Batching state machine that coalesces refresh signals for the host."""

from __future__ import annotations

import logging
import posixpath
import threading
from enum import Enum
from typing import Callable, Iterable, Protocol, Sequence

from ..core.events import BatchFlushed, BatchStarted, EventBus, RefreshSignaled
from .markers import MarkerWriter, Mutation, MutationKind, RefreshRequest

__all__ = [
    "CoordinatorState",
    "RefreshCoordinator",
    "RECOMPILE_EXTENSIONS",
]

LOGGER = logging.getLogger(__name__)

RECOMPILE_EXTENSIONS: frozenset[str] = frozenset({".cs", ".shader", ".cginc", ".hlsl", ".compute"})


class TimerHandle(Protocol):
    def start(self) -> None:
        ...

    def cancel(self) -> None:
        ...


TimerFactory = Callable[[float, Callable[[], None]], TimerHandle]


def _daemon_timer(interval: float, callback: Callable[[], None]) -> TimerHandle:
    timer = threading.Timer(interval, callback)
    timer.daemon = True
    return timer


class CoordinatorState(str, Enum):
    IDLE = "idle"
    BATCHING = "batching"


class RefreshCoordinator:
    """Decides when the host's reactive import pipeline gets poked.

    While idle every mutation produces its own refresh signal. Between
    :meth:`start_batch` and :meth:`end_batch` (or the idle timeout, whichever
    comes first) mutations are queued and flushed as a single signal. The host
    never acknowledges a signal, so every uncertain path signals anyway; a
    redundant refresh costs an extra import pass, a missing one leaves the
    project stale.
    """

    def __init__(
        self,
        markers: MarkerWriter,
        *,
        idle_timeout: float = 5.0,
        lock_expiry: float = 1.0,
        timer_factory: TimerFactory = _daemon_timer,
        bus: EventBus | None = None,
        recompile_extensions: Iterable[str] = RECOMPILE_EXTENSIONS,
    ) -> None:
        self._markers = markers
        self._idle_timeout = idle_timeout
        self._lock_expiry = lock_expiry
        self._timer_factory = timer_factory
        self._bus = bus
        self._recompile_extensions = frozenset(ext.lower() for ext in recompile_extensions)
        self._lock = threading.RLock()
        self._state = CoordinatorState.IDLE
        self._queued: list[Mutation] = []
        self._idle_timer: TimerHandle | None = None
        self._lock_timer: TimerHandle | None = None
        self._generation = 0
        self._signal_count = 0

    @property
    def markers(self) -> MarkerWriter:
        return self._markers

    @property
    def state(self) -> CoordinatorState:
        return self._state

    @property
    def batch_active(self) -> bool:
        return self._state is CoordinatorState.BATCHING

    @property
    def queued(self) -> tuple[Mutation, ...]:
        with self._lock:
            return tuple(self._queued)

    @property
    def signal_count(self) -> int:
        return self._signal_count

    @property
    def refresh_pending(self) -> bool:
        """True while the short-lived lock marker from the last signal exists."""
        return self._markers.lock_present()

    def notify(self, kind: MutationKind | str, path: str) -> RefreshRequest | None:
        """Record a project mutation; returns the request when one was signaled."""

        mutation = Mutation(kind=MutationKind(kind), path=_normalize_path(path))
        with self._lock:
            if self._state is CoordinatorState.BATCHING:
                self._queued.append(mutation)
                self._arm_idle_timer()
                LOGGER.debug("Queued %s (%d pending)", mutation.line(), len(self._queued))
                return None
            request = self._request_for([mutation], reason="mutation")
            self._signal(request)
        self._publish(RefreshSignaled(request=request))
        return request

    def start_batch(self) -> bool:
        """Enter Batching; returns False when a batch is already active."""

        with self._lock:
            if self._state is CoordinatorState.BATCHING:
                LOGGER.debug("Batch already active; ignoring start")
                return False
            self._state = CoordinatorState.BATCHING
            self._queued = []
            self._arm_idle_timer()
        LOGGER.info("Batch started (idle timeout %.1fs)", self._idle_timeout)
        self._publish(BatchStarted())
        return True

    def end_batch(self) -> RefreshRequest | None:
        """Leave Batching and flush the coalesced signal, if anything was queued."""

        return self._flush("explicit", generation=None)

    def request_refresh(
        self,
        *,
        force_recompile: bool = False,
        recompile_scripts: bool = False,
        save_assets: bool = False,
        folders: Sequence[str] = (),
        reason: str = "explicit",
    ) -> RefreshRequest:
        """Signal a refresh right away, regardless of batch state."""

        request = RefreshRequest(
            force_recompile=force_recompile,
            recompile_scripts=recompile_scripts,
            save_assets=save_assets,
            folders=tuple(_normalize_path(folder) for folder in folders),
            reason=reason,
        )
        with self._lock:
            self._signal(request)
        self._publish(RefreshSignaled(request=request))
        return request

    def close(self) -> None:
        """Flush an open batch and cancel pending timers."""

        if self._state is CoordinatorState.BATCHING:
            self._flush("close", generation=None)
        with self._lock:
            if self._lock_timer is not None:
                self._lock_timer.cancel()
                self._lock_timer = None
        self._safe_clear_lock()

    def _flush(self, reason: str, *, generation: int | None) -> RefreshRequest | None:
        with self._lock:
            if generation is not None and generation != self._generation:
                return None
            if self._state is not CoordinatorState.BATCHING:
                LOGGER.debug("No active batch to end (%s)", reason)
                return None
            self._cancel_idle_timer()
            queued = self._queued
            self._queued = []
            self._state = CoordinatorState.IDLE
            request = None
            if queued:
                try:
                    self._markers.write_batch_listing(queued)
                except OSError as exc:
                    LOGGER.warning("Unable to write batch listing: %s", exc)
                request = self._request_for(queued, reason=f"batch:{reason}")
                self._signal(request)
        LOGGER.info("Batch ended (%s) with %d mutation(s)", reason, len(queued))
        self._publish(BatchFlushed(count=len(queued), reason=reason))
        if request is not None:
            self._publish(RefreshSignaled(request=request))
        return request

    def _request_for(self, mutations: Sequence[Mutation], *, reason: str) -> RefreshRequest:
        recompile = any(self._needs_recompile(mutation.path) for mutation in mutations)
        folders: list[str] = []
        for mutation in mutations:
            folder = posixpath.dirname(mutation.path) or "."
            if folder not in folders:
                folders.append(folder)
        return RefreshRequest(
            force_recompile=recompile,
            recompile_scripts=recompile,
            folders=tuple(folders),
            mutations=tuple(mutations),
            reason=reason,
        )

    def _needs_recompile(self, path: str) -> bool:
        return posixpath.splitext(path)[1].lower() in self._recompile_extensions

    def _signal(self, request: RefreshRequest) -> None:
        if self._markers.lock_present():
            LOGGER.debug("Refresh already pending; signaling anyway")
        try:
            self._markers.write_trigger(request)
            self._markers.write_lock()
        except OSError as exc:
            LOGGER.warning("Unable to write refresh markers: %s", exc)
        else:
            self._arm_lock_expiry()
        self._signal_count += 1
        LOGGER.info(
            "Refresh signaled (%s, recompile=%s, folders=%s)",
            request.reason,
            request.force_recompile,
            list(request.folders),
        )

    def _arm_idle_timer(self) -> None:
        self._cancel_idle_timer()
        self._generation += 1
        generation = self._generation
        timer = self._timer_factory(
            self._idle_timeout, lambda: self._flush("idle-timeout", generation=generation)
        )
        self._idle_timer = timer
        timer.start()

    def _cancel_idle_timer(self) -> None:
        if self._idle_timer is not None:
            self._idle_timer.cancel()
            self._idle_timer = None

    def _arm_lock_expiry(self) -> None:
        if self._lock_timer is not None:
            self._lock_timer.cancel()
        timer = self._timer_factory(self._lock_expiry, self._safe_clear_lock)
        self._lock_timer = timer
        timer.start()

    def _safe_clear_lock(self) -> None:
        try:
            self._markers.clear_lock()
        except OSError as exc:
            LOGGER.debug("Unable to remove refresh lock: %s", exc)

    def _publish(self, event: object) -> None:
        if self._bus is not None:
            self._bus.publish(event)  # type: ignore[arg-type]


def _normalize_path(path: str) -> str:
    return str(path).replace("\\", "/").rstrip("/")

"""Single serial execution context standing in for the host's main loop."""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import Callable, TypeVar

__all__ = ["MainLoopExecutor", "ThreadedMainLoop"]

LOGGER = logging.getLogger(__name__)

TResult = TypeVar("TResult")


class MainLoopExecutor:
    """Queue of work that only the host's main loop may run.

    Worker threads call :meth:`submit` and wait on the returned future; the
    host calls :meth:`pump` from its own loop tick (an editor update callback,
    a timer) which runs queued items one after another. Because a single
    thread pumps, submitted work is serialized without any further locking.

    Submitted work cannot be cancelled once queued: a caller that stops
    waiting leaves the item in place and the host still runs it.
    """

    def __init__(self) -> None:
        self._queue: "queue.SimpleQueue[tuple[Callable[[], object], Future]]" = queue.SimpleQueue()
        self._owner: int | None = None

    def submit(self, func: Callable[[], TResult]) -> "Future[TResult]":
        future: Future = Future()
        self._queue.put((func, future))
        return future

    def pump(self, max_items: int | None = None) -> int:
        """Run queued work on the calling thread; returns how many items ran."""

        self._owner = threading.get_ident()
        executed = 0
        while max_items is None or executed < max_items:
            try:
                func, future = self._queue.get_nowait()
            except queue.Empty:
                break
            self._run(func, future)
            executed += 1
        return executed

    def pump_blocking(self, timeout: float) -> int:
        """Wait up to ``timeout`` seconds for one item, then drain the queue."""

        self._owner = threading.get_ident()
        try:
            func, future = self._queue.get(timeout=timeout)
        except queue.Empty:
            return 0
        self._run(func, future)
        return 1 + self.pump()

    def pending(self) -> int:
        return self._queue.qsize()

    def on_main_thread(self) -> bool:
        """True when called from the thread that last pumped this executor."""

        return self._owner == threading.get_ident()

    @staticmethod
    def _run(func: Callable[[], object], future: Future) -> None:
        if not future.set_running_or_notify_cancel():
            return
        try:
            result = func()
        except BaseException as exc:
            future.set_exception(exc)
            if not isinstance(exc, Exception):
                raise
        else:
            future.set_result(result)


class ThreadedMainLoop:
    """A dedicated thread that pumps a :class:`MainLoopExecutor`.

    Used by the command-line host and in tests where no real editor loop
    exists. :meth:`pause` stops pumping without dropping queued work, which
    simulates a busy or unfocused host.
    """

    def __init__(self, executor: MainLoopExecutor | None = None, *, tick: float = 0.05) -> None:
        self._executor = executor or MainLoopExecutor()
        self._tick = tick
        self._running = threading.Event()
        self._resumed = threading.Event()
        self._resumed.set()
        self._thread: threading.Thread | None = None

    @property
    def executor(self) -> MainLoopExecutor:
        return self._executor

    def start(self) -> None:
        if self._thread is not None:
            return
        self._running.set()
        self._thread = threading.Thread(target=self._loop, name="editorbridge-main", daemon=True)
        self._thread.start()
        LOGGER.debug("Main loop thread started")

    def stop(self, timeout: float | None = 2.0) -> None:
        self._running.clear()
        self._resumed.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        LOGGER.debug("Main loop thread stopped")

    def pause(self) -> None:
        self._resumed.clear()

    def resume(self) -> None:
        self._resumed.set()

    def _loop(self) -> None:
        while self._running.is_set():
            self._resumed.wait()
            if not self._running.is_set():
                break
            try:
                self._executor.pump_blocking(self._tick)
            except Exception:  # pragma: no cover - _run already captures handler errors
                LOGGER.exception("Main loop tick failed")

    def __enter__(self) -> "ThreadedMainLoop":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

"""Tests for the main-loop executor and the affinity-aware dispatcher."""

from __future__ import annotations

import threading
import time
from typing import Any

import pytest

from editorbridge.bridge import MainLoopExecutor, RequestDispatcher, ThreadedMainLoop
from editorbridge.bridge.catalog import MethodParams
from editorbridge.bridge.protocol import BridgeRequest
from editorbridge.core.errors import NotFoundError


class RecordingHandlers:
    """Handler table that records which thread ran each call."""

    def __init__(self) -> None:
        self.threads: dict[str, int] = {}

    def table(self) -> dict[str, Any]:
        return {
            "ping": self._record("ping", {"status": "ok"}),
            "script/read": self._record("script/read", {"content": "a\n"}),
            "script/create": self._record("script/create", {"created": True}),
            "script/delete": self._fail,
            "folder/list": self._boom,
        }

    def _record(self, name: str, result: dict[str, Any]):
        def handler(params: MethodParams) -> dict[str, Any]:
            self.threads[name] = threading.get_ident()
            return result

        return handler

    @staticmethod
    def _fail(params: MethodParams) -> None:
        raise NotFoundError.for_path("Assets/Gone.cs")

    @staticmethod
    def _boom(params: MethodParams) -> None:
        raise RuntimeError("kaboom")


class TestMainLoopExecutor:
    def test_pump_runs_queued_work_in_order(self) -> None:
        executor = MainLoopExecutor()
        seen: list[int] = []
        futures = [executor.submit(lambda value=value: seen.append(value) or value) for value in range(3)]

        assert executor.pending() == 3
        assert executor.pump() == 3
        assert seen == [0, 1, 2]
        assert [future.result() for future in futures] == [0, 1, 2]

    def test_pump_respects_max_items(self) -> None:
        executor = MainLoopExecutor()
        executor.submit(lambda: 1)
        executor.submit(lambda: 2)

        assert executor.pump(max_items=1) == 1
        assert executor.pending() == 1

    def test_exceptions_are_delivered_through_the_future(self) -> None:
        executor = MainLoopExecutor()

        def explode() -> None:
            raise ValueError("bad")

        future = executor.submit(explode)
        executor.pump()

        with pytest.raises(ValueError):
            future.result()

    def test_on_main_thread_tracks_pumping_thread(self) -> None:
        executor = MainLoopExecutor()
        assert not executor.on_main_thread()

        executor.pump()

        assert executor.on_main_thread()

    def test_threaded_loop_pause_keeps_work_queued(self) -> None:
        with ThreadedMainLoop(tick=0.01) as loop:
            loop.pause()
            time.sleep(0.05)
            future = loop.executor.submit(lambda: "done")
            time.sleep(0.05)
            assert not future.done()

            loop.resume()

            assert future.result(timeout=1.0) == "done"


class TestRequestDispatcher:
    def test_worker_methods_run_on_the_calling_thread(self) -> None:
        handlers = RecordingHandlers()
        dispatcher = RequestDispatcher(handlers.table(), MainLoopExecutor())

        response = dispatcher.dispatch(BridgeRequest(id=1, method="ping"))

        assert response.ok
        assert response.result == {"status": "ok"}
        assert handlers.threads["ping"] == threading.get_ident()

    def test_main_methods_run_on_the_main_loop(self) -> None:
        handlers = RecordingHandlers()
        with ThreadedMainLoop(tick=0.01) as loop:
            dispatcher = RequestDispatcher(handlers.table(), loop.executor, main_thread_timeout=2.0)

            response = dispatcher.dispatch(BridgeRequest(id=2, method="script/create", params={"path": "Assets/A.cs"}))

        assert response.ok
        assert handlers.threads["script/create"] != threading.get_ident()

    def test_unresponsive_host_times_out_then_reads_still_work(self) -> None:
        handlers = RecordingHandlers()
        executor = MainLoopExecutor()
        dispatcher = RequestDispatcher(handlers.table(), executor, main_thread_timeout=0.1)

        started = time.monotonic()
        response = dispatcher.dispatch(BridgeRequest(id=3, method="script/create", params={"path": "Assets/A.cs"}))
        elapsed = time.monotonic() - started

        assert not response.ok
        assert response.error is not None
        assert response.error["kind"] == "timeout"
        assert response.error["ambiguous"] is True
        assert 0.1 <= elapsed < 2.0
        # The abandoned call is still queued and runs once the host pumps again.
        assert executor.pending() == 1

        read = dispatcher.dispatch(BridgeRequest(id=4, method="script/read", params={"path": "Assets/A.cs"}))
        assert read.ok

        executor.pump()
        assert "script/create" in handlers.threads

    def test_submit_returns_before_the_host_runs_main_work(self) -> None:
        handlers = RecordingHandlers()
        executor = MainLoopExecutor()
        dispatcher = RequestDispatcher(handlers.table(), executor, main_thread_timeout=5.0)

        pending = dispatcher.submit(BridgeRequest(id=10, method="script/create", params={"path": "Assets/A.cs"}))

        assert not pending.done()
        assert executor.pending() == 1
        executor.pump()
        assert pending.result(timeout=1.0).result == {"created": True}

    def test_late_main_loop_result_does_not_replace_the_timeout(self) -> None:
        executor = MainLoopExecutor()
        dispatcher = RequestDispatcher(RecordingHandlers().table(), executor, main_thread_timeout=0.05)

        pending = dispatcher.submit(BridgeRequest(id=11, method="script/create", params={"path": "Assets/A.cs"}))
        response = pending.result(timeout=2.0)
        executor.pump()

        assert response.error is not None and response.error["kind"] == "timeout"
        assert pending.result().error == response.error

    def test_bridge_errors_become_error_responses(self) -> None:
        executor = MainLoopExecutor()
        executor.pump()
        dispatcher = RequestDispatcher(RecordingHandlers().table(), executor)

        response = dispatcher.dispatch(BridgeRequest(id=5, method="script/delete", params={"path": "Assets/Gone.cs"}))

        assert response.error is not None
        assert response.error["kind"] == "not_found"

    def test_unexpected_exceptions_become_internal_errors(self) -> None:
        dispatcher = RequestDispatcher(RecordingHandlers().table(), MainLoopExecutor())

        response = dispatcher.dispatch(BridgeRequest(id=6, method="folder/list"))

        assert response.error is not None
        assert response.error["kind"] == "internal_error"
        assert "kaboom" in response.error["message"]

    def test_invalid_params_are_rejected_before_scheduling(self) -> None:
        executor = MainLoopExecutor()
        dispatcher = RequestDispatcher(RecordingHandlers().table(), executor)

        response = dispatcher.dispatch(BridgeRequest(id=7, method="script/create", params={"bogus": 1}))

        assert response.error is not None
        assert response.error["kind"] == "invalid_parameter"
        assert executor.pending() == 0

    def test_unknown_and_unhandled_methods(self) -> None:
        dispatcher = RequestDispatcher(RecordingHandlers().table(), MainLoopExecutor())

        unknown = dispatcher.dispatch(BridgeRequest(id=8, method="nope"))
        unhandled = dispatcher.dispatch(BridgeRequest(id=9, method="diagnostics/status"))

        assert unknown.error is not None and unknown.error["kind"] == "method_not_found"
        assert unhandled.error is not None and unhandled.error["kind"] == "method_not_found"

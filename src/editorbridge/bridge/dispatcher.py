"""Routes decoded requests to handlers on the right thread."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, InvalidStateError
from typing import Any, Callable, Mapping

from ..core.errors import BridgeError, BridgeTimeoutError, InternalBridgeError, MethodNotFoundError
from .catalog import Affinity, MethodParams, get_method
from .executor import MainLoopExecutor
from .protocol import BridgeRequest, BridgeResponse

__all__ = ["Handler", "RequestDispatcher"]

LOGGER = logging.getLogger(__name__)

Handler = Callable[[MethodParams], Any]


class RequestDispatcher:
    """Runs each request according to its method's affinity.

    Worker-affine handlers run immediately on the calling thread. Main-affine
    handlers are queued on the main-loop executor and :meth:`submit` returns
    right away with a pending response; no thread waits on the host. The
    response completes when the host runs the work or ``main_thread_timeout``
    elapses, whichever comes first. A timeout only settles the response: the
    queued work stays queued and may still complete, so the error is flagged
    as ambiguous.
    """

    def __init__(
        self,
        handlers: Mapping[str, Handler],
        main_loop: MainLoopExecutor,
        *,
        main_thread_timeout: float = 30.0,
    ) -> None:
        self._handlers = dict(handlers)
        self._main_loop = main_loop
        self._main_thread_timeout = main_thread_timeout

    @property
    def main_thread_timeout(self) -> float:
        return self._main_thread_timeout

    def dispatch(self, request: BridgeRequest) -> BridgeResponse:
        """Run ``request`` and wait for its response."""

        return self.submit(request).result()

    def submit(self, request: BridgeRequest) -> "Future[BridgeResponse]":
        """Start ``request`` and return a future that resolves to its response."""

        started = time.perf_counter()
        response: "Future[BridgeResponse]" = Future()
        try:
            handler, params, on_main_loop = self._resolve(request)
            if not on_main_loop:
                self._settle(response, request, started, value=handler(params))
                return response
        except Exception as exc:
            self._settle(response, request, started, error=exc)
            return response

        work = self._main_loop.submit(lambda: handler(params))
        timer = threading.Timer(self._main_thread_timeout, self._expire, args=(response, request, started))
        timer.daemon = True

        def _finished(done: Future) -> None:
            timer.cancel()
            if done.cancelled():
                error: BaseException | None = InternalBridgeError(
                    message=f"{request.method} was cancelled before the host ran it",
                    details={"method": request.method},
                )
            else:
                error = done.exception()
            if error is not None:
                settled = self._settle(response, request, started, error=error)
            else:
                settled = self._settle(response, request, started, value=done.result())
            if not settled:
                LOGGER.info("%s #%s ran after its caller gave up", request.method, request.id)

        work.add_done_callback(_finished)
        if not work.done():
            timer.start()
        return response

    def _resolve(self, request: BridgeRequest) -> tuple[Handler, MethodParams, bool]:
        spec = get_method(request.method)
        handler = self._handlers.get(spec.name)
        if handler is None:
            raise MethodNotFoundError(
                message=f"Method {spec.name} has no handler on this host",
                details={"method": spec.name},
            )
        params = spec.params_type.parse(request.params)
        on_main_loop = spec.affinity is Affinity.MAIN and not self._main_loop.on_main_thread()
        return handler, params, on_main_loop

    def _expire(self, response: "Future[BridgeResponse]", request: BridgeRequest, started: float) -> None:
        error = BridgeTimeoutError(
            message=(
                f"{request.method} was not executed within {self._main_thread_timeout:.0f}s; "
                "the host may be busy or unfocused and may still apply it"
            ),
            details={"method": request.method, "timeout": self._main_thread_timeout},
        )
        if self._settle(response, request, started, error=error, log=False):
            LOGGER.warning(
                "%s #%s not run by the main loop within %.1fs; outcome unknown",
                request.method,
                request.id,
                self._main_thread_timeout,
            )

    def _settle(
        self,
        response: "Future[BridgeResponse]",
        request: BridgeRequest,
        started: float,
        *,
        value: Any = None,
        error: BaseException | None = None,
        log: bool = True,
    ) -> bool:
        """Resolve ``response`` once; returns False when it was already settled."""

        if response.done():
            return False
        if error is None:
            outcome = BridgeResponse.success(request.id, value)
            if log:
                LOGGER.debug(
                    "%s #%s completed in %.1fms",
                    request.method,
                    request.id,
                    (time.perf_counter() - started) * 1000,
                )
        elif isinstance(error, BridgeError):
            if log:
                LOGGER.info("%s #%s failed: %s", request.method, request.id, error)
            outcome = BridgeResponse.failure(request.id, error)
        else:
            if log:
                LOGGER.error("%s #%s raised an unexpected error", request.method, request.id, exc_info=error)
            outcome = BridgeResponse.failure(
                request.id,
                InternalBridgeError(
                    message=f"{type(error).__name__}: {error}",
                    details={"method": request.method},
                ),
            )
        try:
            response.set_result(outcome)
        except InvalidStateError:
            # The timer and the main loop raced; the first one already answered.
            return False
        return True

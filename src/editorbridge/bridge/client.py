"""Asyncio client for the host bridge."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any, Mapping

from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.errors import (
    BridgeConnectionError,
    BridgeTimeoutError,
    ConnectionClosedError,
    ProtocolError,
    error_from_payload,
)
from ..core.events import (
    BridgeConnected,
    BridgeDisconnected,
    CompileFinished,
    CompileStarted,
    Event,
    EventBus,
    HostNotification,
    ProjectChanged,
    RefreshSignaled,
)
from ..refresh.markers import RefreshRequest
from ..services.settings import BridgeSettings
from .catalog import parse_params
from .protocol import MAX_LINE_BYTES, BridgeEvent, BridgeRequest, BridgeResponse, decode_message, encode_message

__all__ = ["BridgeClient"]

LOGGER = logging.getLogger(__name__)


class BridgeClient:
    """One owned connection to the host bridge.

    Requests are correlated by a monotonically increasing id. A response for
    an id that is no longer pending (already answered, or abandoned after a
    timeout) is dropped. When the connection goes away every pending call
    fails with :class:`ConnectionClosedError`; calls are never retried
    individually because the host may already have applied them.
    """

    def __init__(
        self,
        settings: BridgeSettings | None = None,
        *,
        bus: EventBus | None = None,
        validate_params: bool = True,
    ) -> None:
        self._settings = settings or BridgeSettings()
        self._bus = bus or EventBus()
        self._validate_params = validate_params
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._write_lock = asyncio.Lock()
        self._pending: dict[int, asyncio.Future[BridgeResponse]] = {}
        self._next_id = 0

    @property
    def events(self) -> EventBus:
        return self._bus

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def connect(self) -> None:
        """Open the connection, retrying with exponential backoff."""

        if self.connected:
            return
        async for attempt in self._retrying():
            with attempt:
                await self._open()

    async def disconnect(self) -> None:
        writer = self._writer
        task = self._reader_task
        if writer is not None:
            writer.close()
            with contextlib.suppress(OSError, ConnectionError):
                await writer.wait_closed()
        if task is not None and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._fail_pending("client disconnected")
        self._writer = None
        self._reader = None
        self._reader_task = None

    async def call(self, method: str, params: Mapping[str, Any] | None = None, *, timeout: float | None = None) -> Any:
        """Invoke ``method`` on the host and return its result.

        Raises the :class:`~editorbridge.core.errors.BridgeError` subclass
        matching the host's error kind. :class:`BridgeTimeoutError` means the
        outcome is unknown: the host may still apply the call.
        """

        payload = dict(params or {})
        if self._validate_params:
            parse_params(method, payload)
        writer = self._writer
        if writer is None or writer.is_closing():
            raise BridgeConnectionError(message="Not connected to the host bridge")

        self._next_id += 1
        request_id = self._next_id
        future: asyncio.Future[BridgeResponse] = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        try:
            async with self._write_lock:
                writer.write(encode_message(BridgeRequest(id=request_id, method=method, params=payload)))
                await writer.drain()
        except (OSError, ConnectionError) as exc:
            self._pending.pop(request_id, None)
            raise ConnectionClosedError(
                message=f"Connection lost while sending {method}: {exc}",
                details={"method": method, "id": request_id},
            ) from exc

        deadline = timeout if timeout is not None else self._settings.client_timeout
        try:
            response = await asyncio.wait_for(future, timeout=deadline)
        except asyncio.TimeoutError:
            self._pending.pop(request_id, None)
            LOGGER.warning("%s #%d timed out after %.1fs; outcome unknown", method, request_id, deadline)
            raise BridgeTimeoutError(
                message=f"{method} did not complete within {deadline:.0f}s; the host may still apply it",
                details={"method": method, "id": request_id, "timeout": deadline},
            ) from None

        if response.error is not None:
            raise error_from_payload(response.error)
        return response.result

    async def __aenter__(self) -> "BridgeClient":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.connect_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(BridgeConnectionError),
        )

    async def _open(self) -> None:
        host, port = self._settings.host, self._settings.port
        try:
            reader, writer = await asyncio.wait_for(
                asyncio.open_connection(host, port, limit=MAX_LINE_BYTES),
                timeout=self._settings.connect_timeout,
            )
        except (OSError, asyncio.TimeoutError) as exc:
            LOGGER.debug("Connect to %s:%d failed: %s", host, port, exc)
            raise BridgeConnectionError(
                message=f"Unable to connect to {host}:{port}: {exc or 'timed out'}",
                details={"host": host, "port": port},
            ) from exc
        self._reader = reader
        self._writer = writer
        self._reader_task = asyncio.create_task(self._read_loop(reader), name="editorbridge-client-reader")
        LOGGER.info("Connected to host bridge at %s:%d", host, port)
        self._bus.publish(BridgeConnected(host=host, port=port))

    async def _read_loop(self, reader: asyncio.StreamReader) -> None:
        reason = "connection closed by host"
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                if not line.strip():
                    continue
                try:
                    message = decode_message(line)
                except ProtocolError as exc:
                    LOGGER.warning("Ignoring malformed message from host: %s", exc)
                    continue
                if isinstance(message, BridgeEvent):
                    self._emit_event(message)
                elif isinstance(message, BridgeResponse):
                    self._resolve(message)
                else:
                    LOGGER.debug("Ignoring request-shaped message from host: %s", message.method)
        except asyncio.CancelledError:
            reason = "client disconnected"
            raise
        except (OSError, ConnectionError, ValueError) as exc:
            reason = f"connection error: {exc}"
        finally:
            self._fail_pending(reason)
            if self._writer is not None and not self._writer.is_closing():
                self._writer.close()
            LOGGER.info("Host bridge connection ended (%s)", reason)
            self._bus.publish(BridgeDisconnected(reason=reason))

    def _resolve(self, response: BridgeResponse) -> None:
        future = self._pending.pop(response.id, None) if response.id is not None else None
        if future is None or future.done():
            if response.id is None and response.error is not None:
                LOGGER.warning("Host reported an uncorrelated error: %s", response.error.get("message"))
            else:
                LOGGER.debug("Discarding response for unknown or expired id %s", response.id)
            return
        future.set_result(response)

    def _fail_pending(self, reason: str) -> None:
        pending, self._pending = self._pending, {}
        for request_id, future in pending.items():
            if not future.done():
                future.set_exception(
                    ConnectionClosedError(
                        message=f"Connection closed before request {request_id} completed ({reason})",
                        details={"id": request_id},
                    )
                )

    def _emit_event(self, message: BridgeEvent) -> None:
        self._bus.publish(HostNotification(name=message.event, data=message.data))
        typed = _typed_event(message)
        if typed is not None:
            self._bus.publish(typed)


def _typed_event(message: BridgeEvent) -> Event | None:
    data = message.data
    if message.event == "compile-started":
        return CompileStarted(assemblies=tuple(str(item) for item in data.get("assemblies") or ()))
    if message.event == "compile-finished":
        return CompileFinished(
            success=bool(data.get("success", True)),
            error_count=int(data.get("errorCount", 0) or 0),
        )
    if message.event == "project-changed":
        return ProjectChanged(paths=tuple(str(item) for item in data.get("paths") or ()))
    if message.event == "refresh-signaled":
        return RefreshSignaled(request=RefreshRequest.from_dict(data))
    return None

"""Tests for :class:`editorbridge.bridge.client.BridgeClient` against a scripted host."""

from __future__ import annotations

import asyncio
import json
import socket
from typing import Any, Awaitable, Callable

import pytest

from editorbridge.bridge import BridgeClient
from editorbridge.core.errors import (
    BridgeConnectionError,
    BridgeTimeoutError,
    ConnectionClosedError,
    InvalidParameterError,
    MethodNotFoundError,
    NotFoundError,
)
from editorbridge.core.events import BridgeDisconnected, CompileFinished, EventBus, HostNotification, RefreshSignaled
from editorbridge.services.settings import BridgeSettings

Responder = Callable[[dict[str, Any], asyncio.StreamWriter], Awaitable[bool]]


class ScriptedHost:
    """Line-based fake host; ``responder`` returns False to drop the connection."""

    def __init__(self, responder: Responder) -> None:
        self._responder = responder
        self.requests: list[dict[str, Any]] = []
        self._writers: list[asyncio.StreamWriter] = []
        self._server: asyncio.AbstractServer | None = None
        self.port = 0

    async def __aenter__(self) -> "ScriptedHost":
        self._server = await asyncio.start_server(self._handle, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        for writer in self._writers:
            writer.close()
        assert self._server is not None
        self._server.close()
        await self._server.wait_closed()

    async def _handle(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        self._writers.append(writer)
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                request = json.loads(line)
                self.requests.append(request)
                if not await self._responder(request, writer):
                    break
        except ConnectionError:
            pass
        finally:
            writer.close()


def _send(writer: asyncio.StreamWriter, payload: dict[str, Any]) -> None:
    writer.write(json.dumps(payload).encode("utf-8") + b"\n")


async def _echo(request: dict[str, Any], writer: asyncio.StreamWriter) -> bool:
    _send(writer, {"id": request["id"], "result": {"method": request["method"], "params": request["params"]}})
    await writer.drain()
    return True


def _settings(port: int) -> BridgeSettings:
    return BridgeSettings(
        port=port,
        connect_timeout=1.0,
        connect_retries=2,
        retry_min_seconds=0.01,
        retry_max_seconds=0.02,
    )


@pytest.mark.asyncio
async def test_call_returns_result() -> None:
    async with ScriptedHost(_echo) as host:
        async with BridgeClient(_settings(host.port)) as client:
            result = await client.call("script/read", {"path": "Assets/A.cs"})

    assert result == {"method": "script/read", "params": {"path": "Assets/A.cs"}}
    assert host.requests[0]["id"] == 1


@pytest.mark.asyncio
async def test_ids_increase_per_call() -> None:
    async with ScriptedHost(_echo) as host:
        async with BridgeClient(_settings(host.port)) as client:
            await asyncio.gather(client.call("ping"), client.call("ping"), client.call("ping"))

    assert sorted(request["id"] for request in host.requests) == [1, 2, 3]


@pytest.mark.asyncio
async def test_error_response_raises_typed_error() -> None:
    async def fail(request: dict[str, Any], writer: asyncio.StreamWriter) -> bool:
        _send(writer, {"id": request["id"], "error": {"kind": "not_found", "message": "File not found: x"}})
        await writer.drain()
        return True

    async with ScriptedHost(fail) as host:
        async with BridgeClient(_settings(host.port)) as client:
            with pytest.raises(NotFoundError) as excinfo:
                await client.call("script/read", {"path": "x"})

    assert excinfo.value.message == "File not found: x"


@pytest.mark.asyncio
async def test_late_response_after_timeout_is_discarded() -> None:
    async def slow_first(request: dict[str, Any], writer: asyncio.StreamWriter) -> bool:
        if request["id"] == 1:
            await asyncio.sleep(0.2)
            _send(writer, {"id": 1, "result": "late"})
        _send(writer, {"id": request["id"], "result": request["id"]})
        await writer.drain()
        return True

    async with ScriptedHost(slow_first) as host:
        async with BridgeClient(_settings(host.port)) as client:
            with pytest.raises(BridgeTimeoutError) as excinfo:
                await client.call("script/create", {"path": "Assets/A.cs"}, timeout=0.05)
            assert excinfo.value.ambiguous
            assert client.pending_count == 0

            assert await client.call("ping") == 2


@pytest.mark.asyncio
async def test_dropped_connection_fails_pending_calls() -> None:
    bus = EventBus()
    disconnects: list[BridgeDisconnected] = []
    bus.subscribe(BridgeDisconnected, disconnects.append)

    async def hang_up(request: dict[str, Any], writer: asyncio.StreamWriter) -> bool:
        return False

    async with ScriptedHost(hang_up) as host:
        client = BridgeClient(_settings(host.port), bus=bus)
        await client.connect()
        with pytest.raises(ConnectionClosedError):
            await client.call("ping")
        await client.disconnect()

    assert not client.connected
    assert disconnects


@pytest.mark.asyncio
async def test_host_events_are_published() -> None:
    bus = EventBus()
    raw: list[HostNotification] = []
    compiles: list[CompileFinished] = []
    refreshes: list[RefreshSignaled] = []
    bus.subscribe(HostNotification, raw.append)
    bus.subscribe(CompileFinished, compiles.append)
    bus.subscribe(RefreshSignaled, refreshes.append)

    async def with_events(request: dict[str, Any], writer: asyncio.StreamWriter) -> bool:
        _send(writer, {"event": "compile-finished", "data": {"success": False, "errorCount": 3}})
        _send(writer, {"event": "refresh-signaled", "data": {"forceRecompile": True, "folders": ["Assets"]}})
        _send(writer, {"event": "something-else"})
        _send(writer, {"id": request["id"], "result": None})
        await writer.drain()
        return True

    async with ScriptedHost(with_events) as host:
        async with BridgeClient(_settings(host.port), bus=bus) as client:
            await client.call("ping")

    assert [event.name for event in raw] == ["compile-finished", "refresh-signaled", "something-else"]
    assert compiles == [CompileFinished(success=False, error_count=3)]
    assert refreshes[0].request.folders == ("Assets",)


@pytest.mark.asyncio
async def test_connect_gives_up_after_retries() -> None:
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    port = listener.getsockname()[1]
    listener.close()

    client = BridgeClient(_settings(port))

    with pytest.raises(BridgeConnectionError):
        await client.connect()
    assert not client.connected


@pytest.mark.asyncio
async def test_params_are_validated_before_sending() -> None:
    client = BridgeClient(_settings(1))

    with pytest.raises(InvalidParameterError):
        await client.call("script/read", {"file": "Assets/A.cs"})
    with pytest.raises(MethodNotFoundError):
        await client.call("script/explode")
    with pytest.raises(BridgeConnectionError):
        await client.call("ping")

"""Host-side TCP listener that feeds requests to the dispatcher."""

from __future__ import annotations

import logging
import socket
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from ..core.errors import ProtocolError
from ..core.events import EventBus, RefreshSignaled
from .dispatcher import RequestDispatcher
from .protocol import MAX_LINE_BYTES, BridgeEvent, BridgeRequest, BridgeResponse, Message, decode_message, encode_message

__all__ = ["BridgeServer"]

LOGGER = logging.getLogger(__name__)

_ACCEPT_POLL_SECONDS = 0.5


class _Connection:
    """One client socket; writes are serialized because pool threads reply concurrently."""

    def __init__(self, sock: socket.socket, address: Any) -> None:
        self.sock = sock
        self.address = address
        self._write_lock = threading.Lock()
        self._closed = False

    def send(self, message: Message) -> bool:
        data = encode_message(message)
        with self._write_lock:
            if self._closed:
                return False
            try:
                self.sock.sendall(data)
            except OSError as exc:
                LOGGER.debug("Send to %s failed: %s", self.address, exc)
                self._close_locked()
                return False
        return True

    def close(self) -> None:
        with self._write_lock:
            self._close_locked()

    def _close_locked(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass
        self.sock.close()


class BridgeServer:
    """Accepts bridge clients and dispatches their requests on a worker pool.

    A listener thread accepts connections and one reader thread per
    connection splits the stream into lines. Each line is handed to a shared
    thread pool, so requests on one connection may complete out of order;
    responses carry the request id for correlation. Pool threads never wait
    on the host main loop, so worker-affine reads stay responsive while the
    host is stalled.
    """

    def __init__(
        self,
        dispatcher: RequestDispatcher,
        *,
        host: str = "127.0.0.1",
        port: int = 0,
        worker_pool_size: int = 4,
        bus: EventBus | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._host = host
        self._port = port
        self._worker_pool_size = max(1, worker_pool_size)
        self._bus = bus
        self._sock: socket.socket | None = None
        self._pool: ThreadPoolExecutor | None = None
        self._listener: threading.Thread | None = None
        self._running = threading.Event()
        self._connections: set[_Connection] = set()
        self._connections_lock = threading.Lock()

    @property
    def address(self) -> tuple[str, int]:
        if self._sock is None:
            return (self._host, self._port)
        host, port = self._sock.getsockname()[:2]
        return (host, port)

    @property
    def running(self) -> bool:
        return self._running.is_set()

    def start(self) -> tuple[str, int]:
        if self._running.is_set():
            return self.address
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((self._host, self._port))
        sock.listen()
        sock.settimeout(_ACCEPT_POLL_SECONDS)
        self._sock = sock
        self._pool = ThreadPoolExecutor(
            max_workers=self._worker_pool_size, thread_name_prefix="editorbridge-worker"
        )
        self._running.set()
        self._listener = threading.Thread(target=self._accept_loop, name="editorbridge-listener", daemon=True)
        self._listener.start()
        if self._bus is not None:
            self._bus.subscribe(RefreshSignaled, self._on_refresh_signaled)
        LOGGER.info("Bridge listening on %s:%d", *self.address)
        return self.address

    def stop(self) -> None:
        if not self._running.is_set():
            return
        self._running.clear()
        if self._bus is not None:
            self._bus.unsubscribe(RefreshSignaled, self._on_refresh_signaled)
        if self._sock is not None:
            self._sock.close()
        with self._connections_lock:
            connections = list(self._connections)
            self._connections.clear()
        for connection in connections:
            connection.close()
        if self._listener is not None:
            self._listener.join(timeout=_ACCEPT_POLL_SECONDS * 4)
            self._listener = None
        if self._pool is not None:
            self._pool.shutdown(wait=False, cancel_futures=True)
            self._pool = None
        self._sock = None
        LOGGER.info("Bridge stopped")

    def publish_event(self, name: str, data: dict[str, Any] | None = None) -> int:
        """Send an unsolicited event to every connected client; returns how many got it."""

        event = BridgeEvent(event=name, data=dict(data or {}))
        with self._connections_lock:
            connections = list(self._connections)
        delivered = sum(1 for connection in connections if connection.send(event))
        LOGGER.debug("Event %s delivered to %d client(s)", name, delivered)
        return delivered

    def __enter__(self) -> "BridgeServer":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _accept_loop(self) -> None:
        assert self._sock is not None
        while self._running.is_set():
            try:
                conn, address = self._sock.accept()
            except socket.timeout:
                continue
            except OSError:
                if self._running.is_set():
                    LOGGER.exception("Listener socket failed")
                break
            conn.settimeout(None)
            connection = _Connection(conn, address)
            with self._connections_lock:
                self._connections.add(connection)
            LOGGER.info("Client connected from %s", address)
            threading.Thread(
                target=self._read_loop,
                args=(connection,),
                name=f"editorbridge-reader-{address[1]}",
                daemon=True,
            ).start()

    def _read_loop(self, connection: _Connection) -> None:
        try:
            with connection.sock.makefile("rb") as stream:
                while self._running.is_set():
                    line = stream.readline(MAX_LINE_BYTES + 1)
                    if not line:
                        break
                    if len(line) > MAX_LINE_BYTES:
                        connection.send(
                            BridgeResponse.failure(None, ProtocolError(message="Message exceeds size limit"))
                        )
                        break
                    if not line.strip():
                        continue
                    pool = self._pool
                    if pool is None:
                        break
                    pool.submit(self._handle_line, connection, line)
        except (OSError, ValueError, RuntimeError) as exc:
            # RuntimeError: the pool was shut down while a line was in flight.
            LOGGER.debug("Reader for %s stopped: %s", connection.address, exc)
        finally:
            with self._connections_lock:
                self._connections.discard(connection)
            connection.close()
            LOGGER.info("Client %s disconnected", connection.address)

    def _handle_line(self, connection: _Connection, line: bytes) -> None:
        try:
            message = decode_message(line)
        except ProtocolError as exc:
            LOGGER.warning("Rejected malformed message from %s: %s", connection.address, exc)
            connection.send(BridgeResponse.failure(None, exc))
            return
        if not isinstance(message, BridgeRequest):
            LOGGER.debug("Ignoring non-request message from %s", connection.address)
            return
        # Main-affine requests settle later, on the main loop or the timeout timer.
        pending = self._dispatcher.submit(message)
        pending.add_done_callback(lambda done: connection.send(done.result()))

    def _on_refresh_signaled(self, event: RefreshSignaled) -> None:
        self.publish_event("refresh-signaled", event.request.to_dict())

"""
client_hub.py

WebSocket server for the app clients.

Each connection is served on its own thread by the websockets threaded server.
Device output is queued for every open connection and written by that
connection's sender thread, so a client that stops reading only delays itself.
Text received from a client is trimmed and handed to the registered message
callbacks.
"""
import queue
import threading
from typing import Callable, Dict, List, Optional

from websockets.exceptions import ConnectionClosed, ConnectionClosedError
from websockets.protocol import State
from websockets.sync.server import serve

from config import WS_HOST, WS_PORT

_STOP = object()  # Sentinel that ends a sender thread


def peer_name(connection) -> str:
    """Return "host:port" of the remote end, for log lines."""
    address = getattr(connection, "remote_address", None)
    if not address:
        return "unknown"
    return f"{address[0]}:{address[1]}"


class Outbox:
    """
    Unbounded send queue plus writer thread for one connection.

    put() never blocks; a slow client grows its own queue instead of
    holding up the caller.
    """

    def __init__(self, connection, on_failure: Callable):
        self.connection = connection
        self._on_failure = on_failure
        self._queue = queue.Queue()
        self._thread = threading.Thread(
            target=self._run, name=f"ws-send-{peer_name(connection)}", daemon=True
        )
        self._thread.start()

    def put(self, line: str) -> None:
        self._queue.put(line)

    def close(self) -> None:
        self._queue.put(_STOP)

    def join(self) -> None:
        """Block until everything queued so far has been sent or dropped."""
        self._queue.join()

    def _run(self) -> None:
        while True:
            line = self._queue.get()
            try:
                if line is _STOP:
                    return
                self.connection.send(line)
            except Exception as e:
                self._on_failure(self.connection, e)
            finally:
                self._queue.task_done()


class ClientHub:
    """Tracks connected clients and fans device lines out to them."""

    def __init__(self, host: str = WS_HOST, port: int = WS_PORT):
        self.host = host
        self.port = port
        self._outboxes: Dict[object, Outbox] = {}
        self._lock = threading.Lock()  # Guards _outboxes
        self._server = None
        self._thread: Optional[threading.Thread] = None
        self._connect_callbacks: List[Callable] = []
        self._message_callbacks: List[Callable] = []
        self._disconnect_callbacks: List[Callable] = []
        self._error_callbacks: List[Callable] = []

    # Lifecycle hooks

    def on_connect(self, callback: Callable) -> None:
        self._connect_callbacks.append(callback)

    def on_message(self, callback: Callable) -> None:
        self._message_callbacks.append(callback)

    def on_disconnect(self, callback: Callable) -> None:
        self._disconnect_callbacks.append(callback)

    def on_error(self, callback: Callable) -> None:
        self._error_callbacks.append(callback)

    # Connection set

    def register(self, connection) -> None:
        with self._lock:
            if connection not in self._outboxes:
                self._outboxes[connection] = Outbox(connection, self._on_send_failure)

    def unregister(self, connection) -> None:
        with self._lock:
            outbox = self._outboxes.pop(connection, None)
        if outbox is not None:
            outbox.close()

    @property
    def connection_count(self) -> int:
        with self._lock:
            return len(self._outboxes)

    def broadcast(self, line: str) -> int:
        """
        Queue a line for every open connection.

        Connections that are closing or closed are skipped. Delivery happens
        on each connection's sender thread; a failed send is reported to the
        error callbacks and the connection is dropped from the set.

        Returns:
            int: The number of connections the line was queued for.
        """
        with self._lock:
            snapshot = list(self._outboxes.values())

        queued = 0
        for outbox in snapshot:
            if outbox.connection.protocol.state is not State.OPEN:
                continue
            outbox.put(line)
            queued += 1
        return queued

    def drain(self) -> None:
        """Wait until every registered connection has sent what was queued."""
        with self._lock:
            snapshot = list(self._outboxes.values())
        for outbox in snapshot:
            outbox.join()

    def handle(self, connection) -> None:
        """
        Serve one client connection until it closes.

        This is the handler given to the websockets server; it runs on the
        connection's own thread, so messages from one client arrive in order.
        """
        self.register(connection)
        self._fire(self._connect_callbacks, connection)
        try:
            for raw in connection:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="ignore")
                self._fire(self._message_callbacks, connection, raw.strip())
        except ConnectionClosedError as e:
            self._fire(self._error_callbacks, connection, e)
        finally:
            self.unregister(connection)
            self._fire(self._disconnect_callbacks, connection)

    def start(self) -> threading.Thread:
        """Bind the server and serve in a daemon thread."""
        self._server = serve(self.handle, self.host, self.port)
        # Port 0 asks the OS for a free port; report the one we got
        self.port = self._server.socket.getsockname()[1]
        self._thread = threading.Thread(target=self._server.serve_forever, name="ws-server", daemon=True)
        self._thread.start()
        print(f"🌐  WebSocket server running on ws://{self.host}:{self.port}")
        return self._thread

    def stop(self) -> None:
        if self._server is not None:
            self._server.shutdown()
            self._server = None
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        with self._lock:
            remaining = list(self._outboxes)
        for connection in remaining:
            self.unregister(connection)
            try:
                connection.close()
            except ConnectionClosed:
                pass  # Already closed by the peer

    def _on_send_failure(self, connection, error: Exception) -> None:
        self.unregister(connection)
        self._fire(self._error_callbacks, connection, error)

    @staticmethod
    def _fire(callbacks: List[Callable], *args) -> None:
        for callback in callbacks:
            try:
                callback(*args)
            except Exception as e:
                print(f"[WS-ERROR] Handler failed: {e}")

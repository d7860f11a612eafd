import threading
from typing import Any, Callable, Dict, Optional

from nvmmcp.client import EditorClient, attach_socket
from nvmmcp.config import CONNECT_TIMEOUT_MS, PROBE_TIMEOUT_MS, RPC_TIMEOUT_MS
from nvmmcp.errors import (
    CONNECT_ERROR, CONNECT_REFUSED, CONNECT_TIMEOUT, SOCKET_MISSING, RemoteCallTimeout,
)
from nvmmcp.timeout import CallResult, CallWorker, guarded_call, with_timeout
from nvmmcp.utils import (
    iso_now, json_line, log_error, socket_exists, socket_troubleshooting_guidance,
)

ABSENT = "absent"
CONNECTING = "connecting"
LIVE = "live"
STALE = "stale"


class _AttachAttempt:
    """Attach call whose session is closed if it arrives after the deadline."""

    def __init__(self, factory: Callable[[str], EditorClient], socket_path: str):
        self.factory = factory
        self.socket_path = socket_path
        self.lock = threading.Lock()
        self.abandoned = False
        self.client: Optional[EditorClient] = None

    def __call__(self) -> Optional[EditorClient]:
        client = self.factory(self.socket_path)
        with self.lock:
            if not self.abandoned:
                self.client = client
                return client
        log_error("Closing Neovim session that attached after the connect timeout")
        client.close()
        return None

    def abandon(self) -> Optional[EditorClient]:
        """Mark the attempt timed out; returns a session that already arrived, if any."""
        with self.lock:
            self.abandoned = True
            client, self.client = self.client, None
        return client


class NeovimConnection:
    """Owns the single editor handle and the worker thread its calls run on."""

    def __init__(
        self,
        socket_path: str,
        connect_timeout_ms: int = CONNECT_TIMEOUT_MS,
        probe_timeout_ms: int = PROBE_TIMEOUT_MS,
        rpc_timeout_ms: int = RPC_TIMEOUT_MS,
        client_factory: Callable[[str], EditorClient] = attach_socket,
        event_log_path: Optional[str] = None,
    ):
        self.socket_path = socket_path
        self.connect_timeout_ms = connect_timeout_ms
        self.probe_timeout_ms = probe_timeout_ms
        self.rpc_timeout_ms = rpc_timeout_ms
        self.client_factory = client_factory
        self.event_log_path = event_log_path

        self.state = ABSENT
        self.last_failure: Dict[str, str] = {}
        self.connect_count = 0

        self._client: Optional[EditorClient] = None
        self._worker: Optional[CallWorker] = None
        self.lock = threading.Lock()

    def _log_event(self, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        if not self.event_log_path:
            return
        data = {"ts": iso_now(), "event": event, "socket": self.socket_path}
        if payload:
            data.update(payload)
        json_line(self.event_log_path, data)

    def _fail(self, kind: str, message: str) -> bool:
        self.last_failure = {"kind": kind, "message": message}
        self._log_event("connect_failed", {"kind": kind, "error": message})
        return False

    def connect(self) -> bool:
        log_error(f"Connecting to Neovim via socket: {self.socket_path}")
        if not socket_exists(self.socket_path):
            log_error(f"Error: Socket file not found at {self.socket_path}")
            log_error(socket_troubleshooting_guidance(self.socket_path))
            return self._fail(SOCKET_MISSING, f"Socket file not found at {self.socket_path}")

        with self.lock:
            self._drop_locked()
            self.state = CONNECTING
            worker = CallWorker(name=f"nvim-rpc-{self.connect_count + 1}")
        attempt = _AttachAttempt(self.client_factory, self.socket_path)

        try:
            client = with_timeout(
                attempt,
                self.connect_timeout_ms,
                f"Timed out connecting to Neovim ({self.connect_timeout_ms}ms)",
                worker=worker,
            )
        except RemoteCallTimeout as exc:
            late = attempt.abandon()
            if late is not None:
                worker.submit_nowait(late.close)
            worker.close()
            with self.lock:
                self.state = ABSENT
            log_error(
                f"{exc.message}. The Neovim process is probably not running "
                "or not listening on this socket."
            )
            log_error(socket_troubleshooting_guidance(self.socket_path, timed_out=True))
            return self._fail(CONNECT_TIMEOUT, exc.message)
        except Exception as exc:
            worker.close()
            with self.lock:
                self.state = ABSENT
            kind = CONNECT_REFUSED if isinstance(exc, (ConnectionError, OSError)) else CONNECT_ERROR
            log_error(f"Failed to connect to Neovim: {exc}")
            log_error(socket_troubleshooting_guidance(self.socket_path))
            return self._fail(kind, f"Failed to connect to Neovim: {exc}")

        with self.lock:
            self._client = client
            self._worker = worker
            self.state = LIVE
            self.connect_count += 1
        self.last_failure = {}
        self._log_event("connect_ok", {"attempt": self.connect_count})
        log_error("Successfully connected to Neovim")
        return True

    def is_connected(self) -> bool:
        with self.lock:
            return self._client is not None

    def is_alive(self) -> bool:
        with self.lock:
            client = self._client
            worker = self._worker
        if client is None:
            return False
        result = guarded_call(
            client.api_info,
            self.probe_timeout_ms,
            "Timeout checking Neovim connection",
            worker=worker,
        )
        if not result.ok:
            log_error(f"Neovim connection check failed: {result.message}")
            self._log_event("probe_failed", {"kind": result.kind, "error": result.message})
            return False
        return True

    def mark_stale(self) -> None:
        with self.lock:
            if self._client is not None:
                self.state = STALE

    def reset(self) -> None:
        with self.lock:
            had_client = self._client is not None
            self._drop_locked()
            self.state = ABSENT
        if had_client:
            self._log_event("reset")

    def _drop_locked(self) -> None:
        client = self._client
        worker = self._worker
        self._client = None
        self._worker = None
        if worker is not None:
            if client is not None and not worker.is_blocked():
                # best effort; a wedged session is simply left behind
                worker.submit_nowait(client.close)
            worker.close()

    def get_handle(self) -> EditorClient:
        return self._client

    def call(self, operation: Callable[[EditorClient], Any], message: str, timeout_ms: Optional[int] = None) -> Any:
        with self.lock:
            client = self._client
            worker = self._worker
        return with_timeout(
            lambda: operation(client),
            self.rpc_timeout_ms if timeout_ms is None else timeout_ms,
            message,
            worker=worker,
        )

    def guarded(self, operation: Callable[[EditorClient], Any], message: str, timeout_ms: Optional[int] = None) -> CallResult:
        with self.lock:
            client = self._client
            worker = self._worker
        return guarded_call(
            lambda: operation(client),
            self.rpc_timeout_ms if timeout_ms is None else timeout_ms,
            message,
            worker=worker,
        )

    def info(self) -> Dict[str, Any]:
        return {
            "socket": self.socket_path,
            "state": self.state,
            "connected": self.is_connected(),
            "connect_count": self.connect_count,
            "last_failure": dict(self.last_failure),
        }

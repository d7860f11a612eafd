"""
Deadline guard for editor calls.

Every remote call goes through ``with_timeout`` (raising) or ``guarded_call``
(tagged result). A call that misses its deadline is abandoned, not cancelled:
it keeps running on its thread and writes only into its own ``_PendingCall``.
"""

import queue
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

from nvmmcp.config import RPC_TIMEOUT_MS
from nvmmcp.errors import BridgeError, RemoteCallTimeout, RemoteProtocolError

TIMEOUT = "timeout"
REMOTE = "remote"
ERROR = "error"


class _PendingCall:
    def __init__(self, operation: Callable[[], Any]):
        self.operation = operation
        self.done = threading.Event()
        self.value: Any = None
        self.error: Optional[Exception] = None

    def run(self) -> None:
        try:
            self.value = self.operation()
        except Exception as exc:
            self.error = exc
        finally:
            self.done.set()


class CallWorker:
    """Single daemon thread that runs the calls of one editor connection in order."""

    def __init__(self, name: str = "nvim-rpc"):
        self.name = name
        self._queue: "queue.Queue[Optional[_PendingCall]]" = queue.Queue()
        self._lock = threading.Lock()
        self._abandoned: Optional[_PendingCall] = None
        self._closed = False
        self._thread = threading.Thread(target=self._loop, name=name, daemon=True)
        self._thread.start()

    def _loop(self) -> None:
        while True:
            call = self._queue.get()
            if call is None:
                return
            call.run()

    def submit(self, call: _PendingCall) -> None:
        with self._lock:
            if self._closed:
                raise RuntimeError(f"call worker {self.name} is closed")
            self._queue.put(call)

    def submit_nowait(self, operation: Callable[[], Any]) -> None:
        self.submit(_PendingCall(operation))

    def mark_abandoned(self, call: _PendingCall) -> None:
        with self._lock:
            self._abandoned = call

    def is_blocked(self) -> bool:
        with self._lock:
            return self._abandoned is not None and not self._abandoned.done.is_set()

    def close(self) -> None:
        # the thread exits once any call it is stuck in returns
        with self._lock:
            if self._closed:
                return
            self._closed = True
            self._queue.put(None)


def with_timeout(
    operation: Callable[[], Any],
    timeout_ms: int = RPC_TIMEOUT_MS,
    message: str = "Operation timed out",
    worker: Optional[CallWorker] = None,
) -> Any:
    if worker is not None and worker.is_blocked():
        raise RemoteCallTimeout(f"{message} (connection still blocked on an earlier call)")

    call = _PendingCall(operation)
    if worker is None:
        threading.Thread(target=call.run, name="timed-call", daemon=True).start()
    else:
        worker.submit(call)

    if not call.done.wait(max(timeout_ms, 0) / 1000.0):
        if worker is not None:
            worker.mark_abandoned(call)
        raise RemoteCallTimeout(message)
    if call.error is not None:
        raise call.error
    return call.value


@dataclass
class CallResult:
    ok: bool
    value: Any = None
    kind: str = ""
    message: str = ""
    error: Optional[Exception] = None

    def or_else(self, fallback: Callable[[], "CallResult"]) -> "CallResult":
        if self.ok:
            return self
        return fallback()

    def value_or(self, default: Any) -> Any:
        return self.value if self.ok else default

    def unwrap(self) -> Any:
        if self.ok:
            return self.value
        if isinstance(self.error, BridgeError):
            raise self.error
        raise RemoteProtocolError(self.message)

    def diagnostic(self, what: str) -> str:
        return f"<{what} unavailable: {self.message}>"


def guarded_call(
    operation: Callable[[], Any],
    timeout_ms: int = RPC_TIMEOUT_MS,
    message: str = "Operation timed out",
    worker: Optional[CallWorker] = None,
) -> CallResult:
    try:
        return CallResult(ok=True, value=with_timeout(operation, timeout_ms, message, worker))
    except RemoteCallTimeout as exc:
        return CallResult(ok=False, kind=TIMEOUT, message=exc.message, error=exc)
    except RemoteProtocolError as exc:
        return CallResult(ok=False, kind=REMOTE, message=exc.message, error=exc)
    except Exception as exc:
        return CallResult(ok=False, kind=ERROR, message=str(exc) or exc.__class__.__name__, error=exc)

from typing import Any, Dict, Optional

SOCKET_MISSING = "socket_missing"
CONNECT_TIMEOUT = "connect_timeout"
CONNECT_REFUSED = "connect_refused"
CONNECT_ERROR = "connect_error"
STALE_CONNECTION = "stale_connection"
RPC_TIMEOUT = "rpc_timeout"
REMOTE_ERROR = "remote_error"
UNKNOWN_ACTION = "unknown_action"


class BridgeError(Exception):
    """Base class for every failure the dispatcher turns into an error payload."""

    kind = "error"

    def __init__(self, message: str, remediation: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.remediation = remediation

    def to_result(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"success": False, "kind": self.kind, "error": self.message}
        if self.remediation:
            result["remediation"] = self.remediation
        return result


class SocketMissing(BridgeError):
    kind = SOCKET_MISSING


class ConnectTimeout(BridgeError):
    kind = CONNECT_TIMEOUT


class ConnectRefused(BridgeError):
    kind = CONNECT_REFUSED


class StaleConnection(BridgeError):
    kind = STALE_CONNECTION


class RemoteCallTimeout(BridgeError):
    kind = RPC_TIMEOUT


class RemoteProtocolError(BridgeError):
    """The editor answered with a well-formed error (bad argument, unknown command...)."""

    kind = REMOTE_ERROR


class UnknownAction(BridgeError):
    kind = UNKNOWN_ACTION

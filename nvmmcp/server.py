import json
import threading
from typing import Any, Callable, Dict, Optional

from nvmmcp.config import (
    BUFFER_RESOURCE_URI, DEFAULT_CONTEXT_LINES, PROTOCOL_VERSION, SERVER_NAME,
    SERVER_VERSION, STATE_RESOURCE_URI,
)
from nvmmcp.connection import NeovimConnection
from nvmmcp.errors import (
    CONNECT_ERROR, CONNECT_TIMEOUT, STALE_CONNECTION, BridgeError, RemoteCallTimeout,
    UnknownAction,
)
from nvmmcp.report import assemble
from nvmmcp.state import StateReader
from nvmmcp.utils import iso_now, log_error, socket_troubleshooting_guidance

RESOURCE_NOT_FOUND = -32002
METHOD_NOT_FOUND = -32601
INTERNAL_ERROR = -32603


class Dispatcher:
    """Routes tool calls to the editor, connecting or reconnecting first."""

    def __init__(
        self,
        connection: NeovimConnection,
        context_lines: int = DEFAULT_CONTEXT_LINES,
        notifier: Optional[Callable[[str], None]] = None,
    ):
        self.connection = connection
        self.reader = StateReader(connection, context_lines)
        self.notifier = notifier
        self.subscriptions = set()
        self.lock = threading.Lock()
        self.last_tool_result: Optional[Dict[str, Any]] = None

    def _connection_error(self, failure: Dict[str, str], stale: bool = False) -> Dict[str, Any]:
        socket_path = self.connection.socket_path
        kind = failure.get("kind", CONNECT_ERROR)
        reason = failure.get("message") or "unknown error"
        result = {
            "success": False,
            "kind": STALE_CONNECTION if stale else kind,
            "error": f"Failed to connect to Neovim via socket: {socket_path} ({reason})",
            "remediation": socket_troubleshooting_guidance(socket_path, timed_out=kind == CONNECT_TIMEOUT),
        }
        if stale:
            result["error"] = f"Neovim connection went stale and reconnecting failed: {reason}"
            result["cause"] = kind
        return result

    def ensure_connection(self) -> Optional[Dict[str, Any]]:
        connection = self.connection
        if not connection.is_connected():
            if connection.connect():
                return None
            return self._connection_error(connection.last_failure)

        if connection.is_alive():
            return None

        log_error("Neovim connection is stale, reconnecting")
        connection.mark_stale()
        connection.reset()
        if connection.connect():
            return None
        return self._connection_error(connection.last_failure, stale=True)

    def _call_error(self, exc: BridgeError, action: str) -> Dict[str, Any]:
        if isinstance(exc, RemoteCallTimeout):
            log_error(f"Timeout error in {action}: {exc.message}")
            return {
                "success": False,
                "kind": exc.kind,
                "error": (
                    f"Neovim RPC operation timed out after {self.connection.rpc_timeout_ms}ms "
                    f"({exc.message}).\n"
                    "The Neovim process may have been closed or become unresponsive."
                ),
                "remediation": "Please check if Neovim is still running and listening.",
            }
        log_error(f"Error in {action}: {exc.message}")
        return {"success": False, "kind": exc.kind, "error": f"Error in {action}: {exc.message}"}

    def read_state(self) -> Dict[str, Any]:
        error = self.ensure_connection()
        if error:
            return error
        try:
            state = self.reader.read_state()
        except BridgeError as exc:
            return self._call_error(exc, "view_buffers")
        report = assemble(state)
        return {"success": True, "output": report.text, "report": report.structured}

    def send_keys(self, keys: Any) -> Dict[str, Any]:
        if not isinstance(keys, str):
            return {"success": False, "kind": "invalid_arguments", "error": "keys must be a string"}
        error = self.ensure_connection()
        if error:
            return error
        try:
            self.connection.call(
                lambda client: client.normal(keys),
                f"Timeout sending normal mode command: {keys}",
            )
        except BridgeError as exc:
            return self._call_error(exc, "send_normal_mode")
        self.notify_changed()
        return {"success": True, "message": f"Successfully sent normal mode keystrokes: {keys}"}

    def send_command(self, command: Any) -> Dict[str, Any]:
        if not isinstance(command, str):
            return {"success": False, "kind": "invalid_arguments", "error": "command must be a string"}
        error = self.ensure_connection()
        if error:
            return error
        try:
            output = self.connection.call(
                lambda client: client.command_output(command),
                f"Timeout executing command: {command}",
            )
        except BridgeError as exc:
            return self._call_error(exc, "send_command_mode")
        return {"success": True, "output": f"Command: {command}\nOutput:\n{output or ''}"}

    def notify_changed(self) -> None:
        if self.notifier is None:
            return
        with self.lock:
            targets = [u for u in (STATE_RESOURCE_URI, BUFFER_RESOURCE_URI) if u in self.subscriptions]
        for target in targets:
            try:
                self.notifier(target)
            except Exception as exc:
                log_error(f"state change notification failed ({target}): {exc}")

    def subscribe(self, uri: str) -> None:
        with self.lock:
            self.subscriptions.add(uri)

    def unsubscribe(self, uri: str) -> None:
        with self.lock:
            self.subscriptions.discard(uri)

    def call_tool(self, tool_name: str, args: Dict[str, Any]) -> Dict[str, Any]:
        if tool_name == "view_buffers":
            result = self.read_state()
        elif tool_name == "send_normal_mode":
            result = self.send_keys(args.get("keys"))
        elif tool_name == "send_command_mode":
            result = self.send_command(args.get("command"))
        elif tool_name == "last_command_details":
            return self.get_last_tool_result()
        else:
            raise UnknownAction(f"Unknown tool: {tool_name}")
        self.record_tool_result(tool_name, args, result)
        return result

    def record_tool_result(self, tool_name: str, args: Dict[str, Any], result: Dict[str, Any]) -> None:
        snapshot = {
            "timestamp": iso_now(),
            "tool": tool_name,
            "args": dict(args),
            "result": {k: v for k, v in result.items() if k != "report"},
            "connection": self.connection.info(),
        }
        with self.lock:
            self.last_tool_result = snapshot

    def get_last_tool_result(self) -> Dict[str, Any]:
        with self.lock:
            snapshot = dict(self.last_tool_result) if self.last_tool_result else None
        if snapshot is None:
            return {"success": False, "error": "No recorded command result yet. Run any tool first."}
        snapshot["success"] = True
        return snapshot


def result_text(result: Dict[str, Any]) -> str:
    if not result.get("success", False):
        text = f"Error: {result.get('error', 'unknown error')}"
        if result.get("remediation"):
            text += f"\n{result['remediation']}"
        return text
    if "output" in result:
        return result["output"]
    if "message" in result:
        return result["message"]
    return json.dumps(result, ensure_ascii=False, default=str)


def format_tool_result(result: Dict[str, Any], is_error: bool = False) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"content": [{"type": "text", "text": result_text(result)}]}
    if "report" in result:
        payload["structuredContent"] = result["report"]
    if is_error:
        payload["isError"] = True
    return payload


def make_response(req_id: Any, result: Dict[str, Any], is_error: bool = False) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "result": format_tool_result(result, is_error)}


def make_error(req_id: Any, code: int, message: str) -> Dict[str, Any]:
    return {"jsonrpc": "2.0", "id": req_id, "error": {"code": code, "message": message}}


def tools_list() -> Dict[str, Any]:
    tools = [
        {
            "name": "view_buffers",
            "description": (
                "View tabs, window layout, all open buffers, and the content of visible windows "
                "(about ±100 lines around the cursor) with line numbers and a cursor marker. "
                "The active buffer is the one normal-mode keystrokes and commands will affect."
            ),
            "inputSchema": {"type": "object", "properties": {}, "required": []},
        },
        {
            "name": "send_normal_mode",
            "description": "Send keystrokes to Neovim in normal mode (executed as `normal! <keys>`).",
            "inputSchema": {
                "type": "object",
                "properties": {"keys": {"type": "string", "description": "Normal mode keystrokes to send to Neovim"}},
                "required": ["keys"],
            },
        },
        {
            "name": "send_command_mode",
            "description": "Execute a command in Neovim's command mode and get the output.",
            "inputSchema": {
                "type": "object",
                "properties": {"command": {"type": "string", "description": "Command mode command to execute in Neovim"}},
                "required": ["command"],
            },
        },
        {
            "name": "last_command_details",
            "description": "Return the full result and connection details of the last tool call.",
            "inputSchema": {"type": "object", "properties": {}},
        },
    ]
    return {"tools": tools}


def resources_list() -> Dict[str, Any]:
    return {
        "resources": [
            {
                "uri": STATE_RESOURCE_URI,
                "name": "Neovim editor state",
                "description": "Tabs, windows, buffers and cursor position as JSON",
                "mimeType": "application/json",
            },
            {
                "uri": BUFFER_RESOURCE_URI,
                "name": "Neovim visible buffers",
                "description": "Visible windows with line numbers and cursor marker",
                "mimeType": "text/plain",
            },
        ]
    }


def read_resource(req_id: Any, uri: Any, dispatcher: Dispatcher) -> Dict[str, Any]:
    if uri not in (STATE_RESOURCE_URI, BUFFER_RESOURCE_URI):
        return make_error(req_id, RESOURCE_NOT_FOUND, f"Unknown resource: {uri}")
    result = dispatcher.read_state()
    if not result.get("success"):
        return make_error(req_id, INTERNAL_ERROR, result_text(result))
    if uri == STATE_RESOURCE_URI:
        text = json.dumps(result["report"], ensure_ascii=False, indent=2)
        mime_type = "application/json"
    else:
        text = result["output"]
        mime_type = "text/plain"
    return {
        "jsonrpc": "2.0", "id": req_id,
        "result": {"contents": [{"uri": uri, "mimeType": mime_type, "text": text}]},
    }


def handle_request(request: Dict[str, Any], dispatcher: Dispatcher) -> Optional[Dict[str, Any]]:
    method = request.get("method")
    params = request.get("params", {}) or {}
    req_id = request.get("id", 1)

    if method == "initialize":
        return {
            "jsonrpc": "2.0", "id": req_id,
            "result": {
                "protocolVersion": PROTOCOL_VERSION,
                "capabilities": {"tools": {}, "resources": {"subscribe": True, "listChanged": False}},
                "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
            },
        }

    if method is not None and method.startswith("notifications/"):
        return None
    if method == "ping":
        return {"jsonrpc": "2.0", "id": req_id, "result": {}}
    if method == "tools/list":
        return {"jsonrpc": "2.0", "id": req_id, "result": tools_list()}
    if method == "resources/list":
        return {"jsonrpc": "2.0", "id": req_id, "result": resources_list()}
    if method == "resources/read":
        return read_resource(req_id, params.get("uri"), dispatcher)
    if method in ("resources/subscribe", "resources/unsubscribe"):
        uri = params.get("uri")
        if uri not in (STATE_RESOURCE_URI, BUFFER_RESOURCE_URI):
            return make_error(req_id, RESOURCE_NOT_FOUND, f"Unknown resource: {uri}")
        if method == "resources/subscribe":
            dispatcher.subscribe(uri)
        else:
            dispatcher.unsubscribe(uri)
        return {"jsonrpc": "2.0", "id": req_id, "result": {}}

    if method == "tools/call":
        tool_name = params.get("name")
        args = params.get("arguments", {}) or {}
        log_error(f"Tool call: {tool_name}")
        try:
            result = dispatcher.call_tool(str(tool_name), args)
            return make_response(req_id, result, is_error=not result.get("success", False))
        except BridgeError as exc:
            log_error(f"tool error ({tool_name}): {exc.message}")
            return make_response(req_id, exc.to_result(), is_error=True)
        except Exception as exc:
            log_error(f"tool execution error ({tool_name}): {exc}")
            return make_response(req_id, {"success": False, "error": str(exc)}, is_error=True)

    return make_error(req_id, METHOD_NOT_FOUND, f"Unknown method: {method}")

import sys
import io
import json
import argparse
import threading
from nvmmcp.config import (
    config, MAX_CONTEXT_LINES, MAX_TIMEOUT_MS, MIN_TIMEOUT_MS,
)
from nvmmcp.connection import NeovimConnection
from nvmmcp.utils import clamp_int, log_error, normalize_socket_path
from nvmmcp.server import Dispatcher, handle_request

_stdout = None
_write_lock = threading.Lock()


def _write_response(response: dict) -> None:
    """Write one JSON-RPC message to stdout as UTF-8."""
    with _write_lock:
        try:
            _stdout.write(json.dumps(response, ensure_ascii=False) + "\n")
            _stdout.flush()
        except Exception as exc:
            log_error(f"response write error: {exc}")
            # Fallback: escape all non-ASCII to guarantee safe output
            try:
                _stdout.write(json.dumps(response, ensure_ascii=True) + "\n")
                _stdout.flush()
            except Exception as exc2:
                log_error(f"response write fallback error: {exc2}")


def _notify_resource_updated(uri: str) -> None:
    _write_response({
        "jsonrpc": "2.0",
        "method": "notifications/resources/updated",
        "params": {"uri": uri},
    })


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nvmmcp",
        description="Neovim MCP Server (view buffers, send normal mode keys and commands over stdio)",
    )
    parser.add_argument("socket", nargs="?", help="Path to the Neovim socket (overrides NVIM_SOCKET env)")
    parser.add_argument("--connect-timeout", type=int, help="Attach timeout in ms (overrides NVMMCP_CONNECT_TIMEOUT_MS env)")
    parser.add_argument("--rpc-timeout", type=int, help="Per-call RPC timeout in ms (overrides NVMMCP_RPC_TIMEOUT_MS env)")
    parser.add_argument("--probe-timeout", type=int, help="Liveness probe timeout in ms (overrides NVMMCP_PROBE_TIMEOUT_MS env)")
    parser.add_argument("--context-lines", type=int, help="Lines shown above and below the cursor (overrides NVMMCP_CONTEXT_LINES env)")
    parser.add_argument("--event-log", help="Append connection events as JSON lines to this file (overrides NVMMCP_EVENT_LOG env)")
    return parser


def main(argv=None) -> None:
    global _stdout
    parser = build_parser()

    # Pre-load from environment
    try:
        config.load_from_env()
    except ValueError as exc:
        parser.error(f"invalid environment configuration: {exc}")

    args = parser.parse_args(argv)

    # Apply args over env vars
    if args.socket: config.SOCKET_PATH = args.socket
    if args.connect_timeout is not None: config.CONNECT_TIMEOUT_MS = args.connect_timeout
    if args.rpc_timeout is not None: config.RPC_TIMEOUT_MS = args.rpc_timeout
    if args.probe_timeout is not None: config.PROBE_TIMEOUT_MS = args.probe_timeout
    if args.context_lines is not None: config.CONTEXT_LINES = args.context_lines
    if args.event_log: config.EVENT_LOG_PATH = args.event_log

    # Validation
    if not config.SOCKET_PATH:
        parser.error("Socket path is required (via argument or NVIM_SOCKET env). Usage: nvmmcp /path/to/nvim/socket")
    config.SOCKET_PATH = normalize_socket_path(config.SOCKET_PATH)
    config.CONNECT_TIMEOUT_MS = clamp_int(config.CONNECT_TIMEOUT_MS, 2000, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)
    config.RPC_TIMEOUT_MS = clamp_int(config.RPC_TIMEOUT_MS, 2000, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)
    config.PROBE_TIMEOUT_MS = clamp_int(config.PROBE_TIMEOUT_MS, 1000, MIN_TIMEOUT_MS, MAX_TIMEOUT_MS)
    config.CONTEXT_LINES = clamp_int(config.CONTEXT_LINES, 100, 0, MAX_CONTEXT_LINES)

    # Force UTF-8 I/O; buffer text can hold anything
    stdin = io.TextIOWrapper(sys.stdin.buffer, encoding="utf-8", errors="replace")
    _stdout = io.TextIOWrapper(sys.stdout.buffer, encoding="utf-8", line_buffering=True)

    connection = NeovimConnection(
        config.SOCKET_PATH,
        connect_timeout_ms=config.CONNECT_TIMEOUT_MS,
        probe_timeout_ms=config.PROBE_TIMEOUT_MS,
        rpc_timeout_ms=config.RPC_TIMEOUT_MS,
        event_log_path=config.EVENT_LOG_PATH,
    )
    dispatcher = Dispatcher(connection, context_lines=config.CONTEXT_LINES, notifier=_notify_resource_updated)

    # A missing editor is not fatal; every request retries the connection
    connection.connect()
    log_error(
        f"Neovim MCP Server running on stdio. socket={config.SOCKET_PATH} "
        f"rpc_timeout={config.RPC_TIMEOUT_MS}ms context_lines={config.CONTEXT_LINES}"
    )

    for line in stdin:
        line = line.strip()
        if not line:
            continue
        try:
            response = handle_request(json.loads(line), dispatcher)
            if response is not None:
                _write_response(response)
        except json.JSONDecodeError as exc:
            log_error(f"invalid json: {exc}")
        except Exception as exc:
            log_error(f"unexpected error: {exc}")
            # Attempt to send an error response back so the client doesn't hang
            req_id = None
            try:
                req_id = json.loads(line).get("id")
            except Exception as id_exc:
                log_error(f"could not recover request id: {id_exc}")
            _write_response({
                "jsonrpc": "2.0",
                "id": req_id,
                "error": {"code": -32603, "message": f"Internal error: {exc}"},
            })

    log_error("shutting down...")
    connection.reset()


if __name__ == "__main__":
    main()

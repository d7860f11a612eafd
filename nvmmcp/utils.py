import os
import sys
import json
from datetime import datetime
from typing import Any, Dict

def log_error(message: str) -> None:
    print(f"[NVIM-MCP] {message}", file=sys.stderr, flush=True)

def clamp_int(value: Any, default: int, min_value: int, max_value: int) -> int:
    try:
        numeric = int(value)
    except Exception:
        numeric = default
    if numeric < min_value:
        return min_value
    if numeric > max_value:
        return max_value
    return numeric

def iso_now() -> str:
    return datetime.now().isoformat(timespec="milliseconds")

def json_line(path: str, payload: Dict[str, Any]) -> None:
    try:
        with open(path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(payload, ensure_ascii=False) + "\n")
    except Exception as exc:
        log_error(f"log write failed ({path}): {exc}")

def normalize_socket_path(socket_path: str) -> str:
    if not socket_path or not socket_path.strip():
        raise ValueError("Socket path is required")
    expanded = os.path.expanduser(socket_path.strip())
    return os.path.abspath(expanded)

def socket_exists(socket_path: str) -> bool:
    return os.path.exists(socket_path)

def listen_invocation(socket_path: str) -> str:
    if " " in socket_path:
        return f'nvim --listen "{socket_path}"'
    return f"nvim --listen {socket_path}"

def socket_troubleshooting_guidance(socket_path: str, timed_out: bool = False) -> str:
    socket_dir = os.path.dirname(socket_path)
    lines = []
    if timed_out:
        lines.append(f"Socket exists at {socket_path} but Neovim did not answer in time.")
        lines.append("The Neovim process is probably not running or not listening on this socket.")
    elif not socket_exists(socket_path):
        lines.append(f"Socket not found at: {socket_path}")
        if socket_dir and not os.path.isdir(socket_dir):
            lines.append(f"Directory {socket_dir} does not exist. Create it or specify a different path.")
    lines.append(f"Start Neovim with: {listen_invocation(socket_path)}")
    if " " in socket_path:
        lines.append("Note: Your socket path contains spaces. Make sure to quote it properly.")
    lines.append("For temporary sockets, you can use: /tmp/nvim-socket")
    return "\n".join(lines)

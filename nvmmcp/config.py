import os
from typing import Optional

# ========= Static config =========
CONNECT_TIMEOUT_MS = 2000
RPC_TIMEOUT_MS = 2000
PROBE_TIMEOUT_MS = 1000
MIN_TIMEOUT_MS = 10
MAX_TIMEOUT_MS = 60000

DEFAULT_CONTEXT_LINES = 100
MAX_CONTEXT_LINES = 5000

CURSOR_MARKER = "\U0001F538"
ACTIVE_MARKER = "\U0001F7E2"
SEPARATOR_WIDTH = 80
LINE_NUMBER_WIDTH = 5

PROTOCOL_VERSION = "2024-11-05"
SERVER_NAME = "neovim-mcp-server"
SERVER_VERSION = "1.2.0"

STATE_RESOURCE_URI = "nvim://state"
BUFFER_RESOURCE_URI = "nvim://buffer/current"

# ========= Runtime Configuration =========
class ServerConfig:
    def __init__(self):
        self.SOCKET_PATH: Optional[str] = None
        self.CONNECT_TIMEOUT_MS: int = CONNECT_TIMEOUT_MS
        self.RPC_TIMEOUT_MS: int = RPC_TIMEOUT_MS
        self.PROBE_TIMEOUT_MS: int = PROBE_TIMEOUT_MS
        self.CONTEXT_LINES: int = DEFAULT_CONTEXT_LINES
        self.EVENT_LOG_PATH: Optional[str] = None

    def load_from_env(self):
        self.SOCKET_PATH = os.environ.get("NVIM_SOCKET", self.SOCKET_PATH)
        self.CONNECT_TIMEOUT_MS = int(os.environ.get("NVMMCP_CONNECT_TIMEOUT_MS", self.CONNECT_TIMEOUT_MS))
        self.RPC_TIMEOUT_MS = int(os.environ.get("NVMMCP_RPC_TIMEOUT_MS", self.RPC_TIMEOUT_MS))
        self.PROBE_TIMEOUT_MS = int(os.environ.get("NVMMCP_PROBE_TIMEOUT_MS", self.PROBE_TIMEOUT_MS))
        self.CONTEXT_LINES = int(os.environ.get("NVMMCP_CONTEXT_LINES", self.CONTEXT_LINES))
        self.EVENT_LOG_PATH = os.environ.get("NVMMCP_EVENT_LOG", self.EVENT_LOG_PATH)

# Global instance
config = ServerConfig()

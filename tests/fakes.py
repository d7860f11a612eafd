"""In-memory stand-ins for a Neovim instance, shaped like ``EditorClient``."""

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from nvmmcp.errors import RemoteProtocolError


class FakeBuffer:
    def __init__(self, number: int, name: str = "", lines: Optional[List[str]] = None,
                 loaded: bool = True, modified: bool = False):
        self.number = number
        self.handle = number
        self.name = name
        self.lines = list(lines) if lines is not None else [""]
        self.loaded = loaded
        self.modified = modified


class FakeWindow:
    def __init__(self, number: int, buffer: FakeBuffer, cursor: Tuple[int, int] = (1, 0),
                 position: Tuple[int, int] = (0, 0), size: Tuple[int, int] = (80, 24)):
        self.number = number
        self.buffer = buffer
        self.cursor = cursor
        self.position = position
        self.size = size


class FakeTabpage:
    def __init__(self, number: int, windows: List[FakeWindow]):
        self.number = number
        self.windows = windows


class FakeEditor:
    """Records every call; individual methods can be made to fail or hang."""

    def __init__(self, tabs: List[FakeTabpage], buffers: Optional[List[FakeBuffer]] = None,
                 current_tab: Optional[FakeTabpage] = None, current_window: Optional[FakeWindow] = None):
        self.tabs = tabs
        self.current_tab = current_tab or tabs[0]
        self.current_win = current_window or self.current_tab.windows[0]
        if buffers is None:
            buffers = []
            for tab in tabs:
                for window in tab.windows:
                    if window.buffer not in buffers:
                        buffers.append(window.buffer)
        self.buffers = buffers

        self.calls: List[Tuple[str, tuple]] = []
        self.failures: Dict[str, Tuple[Exception, Callable[..., bool]]] = {}
        self.hanging: Dict[str, Callable[..., bool]] = {}
        self.replies: Dict[str, Tuple[Any, Callable[..., bool]]] = {}
        self.release = threading.Event()
        self.keys: List[str] = []
        self.commands: List[str] = []
        self.command_results: Dict[str, str] = {}
        self.closed = False

    def fail(self, method: str, exc: Exception, when: Callable[..., bool] = lambda *args: True) -> None:
        self.failures[method] = (exc, when)

    def hang(self, method: str, when: Callable[..., bool] = lambda *args: True) -> None:
        self.hanging[method] = when

    def reply(self, method: str, value: Any, when: Callable[..., bool] = lambda *args: True) -> None:
        """Answer ``method`` with ``value`` verbatim, however malformed."""
        self.replies[method] = (value, when)

    def _canned(self, method: str, *args: Any) -> Tuple[bool, Any]:
        reply = self.replies.get(method)
        if reply is not None and reply[1](*args):
            return True, reply[0]
        return False, None

    def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, args))
        when = self.hanging.get(method)
        if when is not None and when(*args):
            self.release.wait()
        failure = self.failures.get(method)
        if failure is not None and failure[1](*args):
            raise failure[0]

    def called(self, method: str) -> List[tuple]:
        return [args for name, args in self.calls if name == method]

    def api_info(self) -> Any:
        self._enter("api_info")
        return [1, {"version": {"major": 0, "minor": 10}}]

    def list_windows(self) -> List[FakeWindow]:
        self._enter("list_windows")
        return [window for tab in self.tabs for window in tab.windows]

    def current_window(self) -> FakeWindow:
        self._enter("current_window")
        return self.current_win

    def window_number(self, window: FakeWindow) -> int:
        self._enter("window_number", window)
        return window.number

    def window_buffer(self, window: FakeWindow) -> FakeBuffer:
        self._enter("window_buffer", window)
        return window.buffer

    def window_cursor(self, window: FakeWindow) -> Tuple[int, int]:
        self._enter("window_cursor", window)
        return window.cursor

    def window_position(self, window: FakeWindow) -> Tuple[int, int]:
        self._enter("window_position", window)
        return window.position

    def window_size(self, window: FakeWindow) -> Tuple[int, int]:
        self._enter("window_size", window)
        return window.size

    def list_buffers(self) -> List[FakeBuffer]:
        self._enter("list_buffers")
        canned, value = self._canned("list_buffers")
        if canned:
            return value
        return list(self.buffers)

    def buffer_id(self, buffer: FakeBuffer) -> int:
        self._enter("buffer_id", buffer)
        return buffer.handle

    def buffer_name(self, buffer: FakeBuffer) -> str:
        self._enter("buffer_name", buffer)
        return buffer.name

    def buffer_number(self, buffer: FakeBuffer) -> int:
        self._enter("buffer_number", buffer)
        return buffer.number

    def buffer_line_count(self, buffer: FakeBuffer) -> int:
        self._enter("buffer_line_count", buffer)
        return len(buffer.lines)

    def buffer_get_lines(self, buffer: FakeBuffer, start: int, end: int) -> List[str]:
        self._enter("buffer_get_lines", buffer, start, end)
        return buffer.lines[start:end]

    def buffer_is_loaded(self, buffer: FakeBuffer) -> bool:
        self._enter("buffer_is_loaded", buffer)
        return buffer.loaded

    def buffer_is_modified(self, buffer: FakeBuffer) -> bool:
        self._enter("buffer_is_modified", buffer)
        return buffer.modified

    def list_tabpages(self) -> List[FakeTabpage]:
        self._enter("list_tabpages")
        canned, value = self._canned("list_tabpages")
        if canned:
            return value
        return list(self.tabs)

    def current_tabpage(self) -> FakeTabpage:
        self._enter("current_tabpage")
        return self.current_tab

    def tabpage_number(self, tabpage: FakeTabpage) -> int:
        self._enter("tabpage_number", tabpage)
        return tabpage.number

    def tabpage_windows(self, tabpage: FakeTabpage) -> List[FakeWindow]:
        self._enter("tabpage_windows", tabpage)
        canned, value = self._canned("tabpage_windows", tabpage)
        if canned:
            return value
        return list(tabpage.windows)

    def normal(self, keys: str) -> None:
        self._enter("normal", keys)
        self.keys.append(keys)

    def command_output(self, command: str) -> str:
        self._enter("command_output", command)
        self.commands.append(command)
        return self.command_results.get(command, "")

    def request(self, method: str, *args: Any) -> Any:
        self._enter("request", method, *args)
        if method == "nvim_buf_get_lines":
            buffer_id, start, end, _strict = args
            if not all(isinstance(value, int) for value in (buffer_id, start, end)):
                raise RemoteProtocolError("Wrong type for argument 2 when calling nvim_buf_get_lines")
            for buffer in self.buffers:
                if buffer.handle == buffer_id:
                    return buffer.lines[start:end]
            raise RemoteProtocolError("Invalid buffer id")
        raise RemoteProtocolError(f"Invalid method: {method}")

    def close(self) -> None:
        self.closed = True


def single_window_editor(lines: List[str], cursor: Tuple[int, int] = (1, 0), name: str = "/tmp/file.txt") -> FakeEditor:
    buffer = FakeBuffer(1, name, lines)
    window = FakeWindow(1000, buffer, cursor=cursor)
    window.number = 1
    return FakeEditor([FakeTabpage(1, [window])])


def split_editor() -> FakeEditor:
    """Two side-by-side windows in tab 1, one window in tab 2, plus a hidden buffer."""
    left = FakeBuffer(1, "/src/left.py", [f"left {i}" for i in range(1, 11)], modified=True)
    right = FakeBuffer(2, "/src/right.py", [f"right {i}" for i in range(1, 6)])
    other = FakeBuffer(4, "/src/other.py", ["other"])
    hidden = FakeBuffer(3, "/src/hidden.py", ["hidden"], loaded=False)

    left_window = FakeWindow(1, left, cursor=(3, 2), position=(0, 0), size=(40, 24))
    right_window = FakeWindow(2, right, cursor=(1, 0), position=(0, 41), size=(39, 24))
    other_window = FakeWindow(1, other, cursor=(1, 0), position=(0, 0), size=(80, 24))

    tab_one = FakeTabpage(1, [left_window, right_window])
    tab_two = FakeTabpage(2, [other_window])
    return FakeEditor(
        [tab_one, tab_two],
        buffers=[left, right, hidden, other],
        current_tab=tab_one,
        current_window=left_window,
    )

"""
Editor capability seam.

``EditorClient`` is the set of remote calls the bridge needs from Neovim.
``PynvimClient`` implements it over a pynvim session; tests implement it with
in-memory fakes. Window, buffer and tabpage handles are opaque to callers.
"""

import functools
from typing import Any, List, Protocol, Tuple

import pynvim
from pynvim.api import NvimError

from nvmmcp.errors import RemoteProtocolError


class EditorClient(Protocol):
    def api_info(self) -> Any: ...

    def list_windows(self) -> List[Any]: ...

    def current_window(self) -> Any: ...

    def window_number(self, window: Any) -> int: ...

    def window_buffer(self, window: Any) -> Any: ...

    def window_cursor(self, window: Any) -> Tuple[int, int]: ...

    def window_position(self, window: Any) -> Tuple[int, int]: ...

    def window_size(self, window: Any) -> Tuple[int, int]: ...

    def list_buffers(self) -> List[Any]: ...

    def buffer_id(self, buffer: Any) -> int: ...

    def buffer_name(self, buffer: Any) -> str: ...

    def buffer_number(self, buffer: Any) -> int: ...

    def buffer_line_count(self, buffer: Any) -> int: ...

    def buffer_get_lines(self, buffer: Any, start: int, end: int) -> List[str]: ...

    def buffer_is_loaded(self, buffer: Any) -> bool: ...

    def buffer_is_modified(self, buffer: Any) -> bool: ...

    def list_tabpages(self) -> List[Any]: ...

    def current_tabpage(self) -> Any: ...

    def tabpage_number(self, tabpage: Any) -> int: ...

    def tabpage_windows(self, tabpage: Any) -> List[Any]: ...

    def normal(self, keys: str) -> None: ...

    def command_output(self, command: str) -> str: ...

    def request(self, method: str, *args: Any) -> Any: ...

    def close(self) -> None: ...


def _remote(method):
    @functools.wraps(method)
    def wrapper(self, *args):
        try:
            return method(self, *args)
        except NvimError as exc:
            raise RemoteProtocolError(str(exc)) from exc
    return wrapper


class PynvimClient:
    def __init__(self, nvim: pynvim.Nvim):
        self._nvim = nvim

    @_remote
    def api_info(self) -> Any:
        return self._nvim.api.get_api_info()

    @_remote
    def list_windows(self) -> List[Any]:
        return list(self._nvim.windows)

    @_remote
    def current_window(self) -> Any:
        return self._nvim.current.window

    @_remote
    def window_number(self, window: Any) -> int:
        return window.number

    @_remote
    def window_buffer(self, window: Any) -> Any:
        return window.buffer

    @_remote
    def window_cursor(self, window: Any) -> Tuple[int, int]:
        row, col = window.cursor
        return row, col

    @_remote
    def window_position(self, window: Any) -> Tuple[int, int]:
        row, col = window.api.get_position()
        return row, col

    @_remote
    def window_size(self, window: Any) -> Tuple[int, int]:
        return window.width, window.height

    @_remote
    def list_buffers(self) -> List[Any]:
        return list(self._nvim.buffers)

    def buffer_id(self, buffer: Any) -> int:
        return buffer.handle

    @_remote
    def buffer_name(self, buffer: Any) -> str:
        return buffer.name

    @_remote
    def buffer_number(self, buffer: Any) -> int:
        return buffer.number

    @_remote
    def buffer_line_count(self, buffer: Any) -> int:
        return len(buffer)

    @_remote
    def buffer_get_lines(self, buffer: Any, start: int, end: int) -> List[str]:
        return buffer.api.get_lines(start, end, False)

    @_remote
    def buffer_is_loaded(self, buffer: Any) -> bool:
        return bool(self._nvim.api.buf_is_loaded(buffer))

    @_remote
    def buffer_is_modified(self, buffer: Any) -> bool:
        return bool(self._nvim.api.get_option_value("modified", {"buf": buffer.handle}))

    @_remote
    def list_tabpages(self) -> List[Any]:
        return list(self._nvim.tabpages)

    @_remote
    def current_tabpage(self) -> Any:
        return self._nvim.current.tabpage

    @_remote
    def tabpage_number(self, tabpage: Any) -> int:
        return tabpage.number

    @_remote
    def tabpage_windows(self, tabpage: Any) -> List[Any]:
        return list(tabpage.windows)

    @_remote
    def normal(self, keys: str) -> None:
        self._nvim.command(f"normal! {keys}")

    @_remote
    def command_output(self, command: str) -> str:
        result = self._nvim.api.exec2(command, {"output": True})
        return (result or {}).get("output", "")

    @_remote
    def request(self, method: str, *args: Any) -> Any:
        return self._nvim.request(method, *args)

    def close(self) -> None:
        self._nvim.close()


def attach_socket(socket_path: str) -> PynvimClient:
    return PynvimClient(pynvim.attach("socket", path=socket_path))


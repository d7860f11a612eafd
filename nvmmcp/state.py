"""
Remote state reader.

Enumerates windows, buffers and tabpages of the attached editor one remote
call at a time. Each call is guarded on its own: when a detail of one window
or buffer cannot be fetched, that entry carries a diagnostic string in place
of the missing value and enumeration moves on. Only a failure to list the
windows at all aborts the read.
"""

from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from nvmmcp.config import DEFAULT_CONTEXT_LINES
from nvmmcp.errors import RemoteProtocolError
from nvmmcp.timeout import ERROR, CallResult

SINGLE = "single"
HORIZONTAL = "horizontal"
VERTICAL = "vertical"
MIXED = "mixed"
COMPLEX = "complex"
EMPTY = "empty"
UNKNOWN = "unknown"

Geometry = Tuple[int, int, int, int]


@dataclass
class Layout:
    type: str
    description: str


@dataclass
class VisibleRange:
    start_line: int
    end_line: int
    context: int


@dataclass
class WindowSnapshot:
    window_number: Any
    is_current_window: bool
    is_active_buffer: bool
    buffer_number: Any
    buffer_name: str
    cursor: Optional[Tuple[int, int]]
    total_lines: Optional[int]
    visible_range: Optional[VisibleRange]
    content: List[str]
    errors: List[str] = field(default_factory=list)


@dataclass
class BufferSummary:
    number: Any
    name: str
    is_loaded: Any
    is_modified: Any = False


@dataclass
class WindowDescriptor:
    window_number: Any
    buffer_number: Any
    buffer_name: str
    is_current: bool
    is_modified: Any
    geometry: Optional[Geometry] = None
    errors: List[str] = field(default_factory=list)


@dataclass
class TabSummary:
    number: Any
    is_current: bool
    windows: List[WindowDescriptor]
    layout: Layout


@dataclass
class EditorState:
    windows: List[WindowSnapshot]
    all_buffers: List[BufferSummary]
    tabs: List[TabSummary]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def line_window(cursor_line: int, total_lines: int, radius: int = DEFAULT_CONTEXT_LINES) -> Tuple[int, int]:
    """0-based, end-exclusive line range around a 1-based cursor line.

    ``end`` is never below 1 so an empty buffer still yields a concrete range.
    """
    total = max(int(total_lines), 0)
    cursor = int(cursor_line) - 1
    start = max(0, cursor - radius)
    end = min(total, cursor + radius + 1)
    end = max(end, 1)
    start = min(start, end - 1)
    return start, end


def classify_layout(geometries: Optional[Sequence[Optional[Geometry]]]) -> Layout:
    """Guess a tab's split layout from the top-left corners of its windows."""
    if geometries is None:
        return Layout(UNKNOWN, "Layout could not be determined")
    count = len(geometries)
    if count == 0:
        return Layout(EMPTY, "No windows")
    if count == 1:
        return Layout(SINGLE, "Single window")
    if any(g is None for g in geometries):
        return Layout(COMPLEX, f"{count} windows, geometry unavailable for some")

    rows = {g[0] for g in geometries}
    cols = {g[1] for g in geometries}
    if len(rows) == 1 and len(cols) > 1:
        return Layout(HORIZONTAL, f"{count} windows side by side")
    if len(rows) > 1 and len(cols) == 1:
        return Layout(VERTICAL, f"{count} windows stacked")
    if len(rows) > 1 and len(cols) > 1:
        return Layout(MIXED, f"{count} windows in a mixed split ({len(rows)} rows, {len(cols)} columns)")
    return Layout(COMPLEX, f"{count} windows sharing one position")


class StateReader:
    def __init__(self, connection, context_lines: int = DEFAULT_CONTEXT_LINES):
        self.connection = connection
        self.context_lines = context_lines

    def _fetch(self, message: str, method: str, *args: Any) -> CallResult:
        return self.connection.guarded(lambda client: getattr(client, method)(*args), message)

    def read_state(self) -> EditorState:
        listing = self._fetch("Timeout getting Neovim windows", "list_windows").unwrap()
        try:
            windows = list(listing)
        except TypeError as exc:
            raise RemoteProtocolError(f"Unexpected window list from Neovim: {exc}") from exc
        current = self._fetch("Timeout getting current Neovim window", "current_window")
        current_window = current.value if current.ok else None

        snapshots = [self._read_window_safely(window, current_window) for window in windows]
        return EditorState(
            windows=snapshots,
            all_buffers=self.read_buffers(),
            tabs=self.read_tabs(current_window),
        )

    def _read_window_safely(self, window: Any, current_window: Any) -> WindowSnapshot:
        try:
            return self.read_window(window, current_window)
        except Exception as exc:
            message = f"Error processing window: {exc}"
            return WindowSnapshot(
                window_number="Error",
                is_current_window=False,
                is_active_buffer=False,
                buffer_number="Error",
                buffer_name="Error processing window",
                cursor=None,
                total_lines=None,
                visible_range=None,
                content=[message],
                errors=[message],
            )

    def read_window(self, window: Any, current_window: Any) -> WindowSnapshot:
        errors: List[str] = []

        number = self._fetch("Timeout getting window number", "window_number", window)
        window_number = number.value if number.ok else number.diagnostic("window number")
        if not number.ok:
            errors.append(number.message)
        is_current = current_window is not None and window == current_window

        buffer = self._fetch("Timeout getting buffer for window", "window_buffer", window)
        if not buffer.ok or buffer.value is None:
            message = buffer.message if not buffer.ok else "Buffer object is undefined"
            errors.append(message)
            return WindowSnapshot(
                window_number=window_number,
                is_current_window=is_current,
                is_active_buffer=is_current,
                buffer_number="Unknown",
                buffer_name=f"<buffer unavailable: {message}>",
                cursor=None,
                total_lines=None,
                visible_range=None,
                content=[f"Error: {message}"],
                errors=errors,
            )
        buf = buffer.value

        name = self._fetch("Timeout getting buffer name", "buffer_name", buf)
        buf_number = self._fetch("Timeout getting buffer number", "buffer_number", buf)
        cursor = self._fetch("Timeout getting cursor position", "window_cursor", window)
        length = self._fetch("Timeout getting buffer length", "buffer_line_count", buf)
        for result in (name, buf_number, cursor, length):
            if not result.ok:
                errors.append(result.message)

        snapshot = WindowSnapshot(
            window_number=window_number,
            is_current_window=is_current,
            # normal-mode keys go to the focused window's buffer
            is_active_buffer=is_current,
            buffer_number=buf_number.value if buf_number.ok else buf_number.diagnostic("buffer number"),
            buffer_name=(name.value or "Unnamed") if name.ok else name.diagnostic("buffer name"),
            cursor=None,
            total_lines=None,
            visible_range=None,
            content=[],
            errors=errors,
        )

        if not length.ok:
            snapshot.content = [f"Error getting buffer length: {length.message}"]
            if cursor.ok:
                snapshot.cursor = (int(cursor.value[0]), int(cursor.value[1]))
            return snapshot

        total_lines = int(length.value)
        snapshot.total_lines = total_lines
        if cursor.ok:
            row = min(max(int(cursor.value[0]), 1), max(total_lines, 1))
            snapshot.cursor = (row, int(cursor.value[1]))
            cursor_line = row
        else:
            cursor_line = 1

        start, end = line_window(cursor_line, total_lines, self.context_lines)
        snapshot.visible_range = VisibleRange(start_line=start + 1, end_line=end, context=self.context_lines)
        snapshot.content = self.read_lines(buf, start, end)
        return snapshot

    def read_lines(self, buffer: Any, start: int, end: int) -> List[str]:
        primary = self._fetch("Timeout getting buffer lines section", "buffer_get_lines", buffer, start, end)
        result = primary.or_else(lambda: self._raw_get_lines(buffer, start, end))
        if not result.ok:
            return [f"Error getting buffer content: {primary.message}; fallback: {result.message}"]
        return [str(line) for line in result.value]

    def _raw_get_lines(self, buffer: Any, start: int, end: int) -> CallResult:
        buffer_id = self._fetch("Timeout getting buffer ID", "buffer_id", buffer)
        if not buffer_id.ok:
            return buffer_id
        return self._fetch(
            "Timeout making direct nvim_buf_get_lines request",
            "request",
            "nvim_buf_get_lines",
            int(buffer_id.value),
            int(start),
            int(end),
            False,
        )

    def read_buffers(self) -> List[BufferSummary]:
        listing = self._fetch("Timeout listing buffers", "list_buffers")
        if listing.ok:
            try:
                buffers = list(listing.value)
            except TypeError as exc:
                listing = CallResult(ok=False, kind=ERROR, message=f"Unexpected buffer list: {exc}", error=exc)
        if not listing.ok:
            return [BufferSummary(number=None, name=listing.diagnostic("buffer list"), is_loaded=False)]

        summaries = []
        for buf in buffers:
            number = self._fetch("Timeout getting buffer number", "buffer_number", buf)
            name = self._fetch("Timeout getting buffer name", "buffer_name", buf)
            loaded = self._fetch("Timeout getting buffer loaded state", "buffer_is_loaded", buf)
            modified = self._fetch("Timeout getting buffer modified state", "buffer_is_modified", buf)
            summaries.append(BufferSummary(
                number=number.value if number.ok else number.diagnostic("number"),
                name=(name.value or "Unnamed") if name.ok else name.diagnostic("name"),
                is_loaded=bool(loaded.value) if loaded.ok else loaded.diagnostic("loaded state"),
                is_modified=bool(modified.value) if modified.ok else modified.diagnostic("modified state"),
            ))
        return summaries

    def read_tabs(self, current_window: Any = None) -> List[TabSummary]:
        listing = self._fetch("Timeout listing tabpages", "list_tabpages")
        if listing.ok:
            try:
                tabpages = list(listing.value)
            except TypeError as exc:
                listing = CallResult(ok=False, kind=ERROR, message=f"Unexpected tabpage list: {exc}", error=exc)
        if not listing.ok:
            return [TabSummary(
                number=listing.diagnostic("tabpage list"),
                is_current=False,
                windows=[],
                layout=classify_layout(None),
            )]
        current = self._fetch("Timeout getting current tabpage", "current_tabpage")
        current_tab = current.value if current.ok else None
        return [self._read_tab_safely(tab, current_tab, current_window) for tab in tabpages]

    def _read_tab_safely(self, tab: Any, current_tab: Any, current_window: Any) -> TabSummary:
        try:
            return self.read_tab(tab, current_tab, current_window)
        except Exception as exc:
            return TabSummary(
                number="Error",
                is_current=False,
                windows=[],
                layout=Layout(UNKNOWN, f"Error processing tab: {exc}"),
            )

    def read_tab(self, tab: Any, current_tab: Any, current_window: Any) -> TabSummary:
        number = self._fetch("Timeout getting tabpage number", "tabpage_number", tab)
        tab_number = number.value if number.ok else number.diagnostic("number")
        is_current = current_tab is not None and tab == current_tab
        windows = self._fetch("Timeout listing tabpage windows", "tabpage_windows", tab)
        if not windows.ok:
            return TabSummary(
                number=tab_number,
                is_current=is_current,
                windows=[],
                layout=Layout(UNKNOWN, windows.diagnostic("windows")),
            )
        descriptors = [
            self.describe_window(window, is_current and current_window is not None and window == current_window)
            for window in windows.value
        ]
        return TabSummary(
            number=tab_number,
            is_current=is_current,
            windows=descriptors,
            layout=classify_layout([d.geometry for d in descriptors]),
        )

    def read_geometry(self, window: Any, errors: List[str]) -> Optional[Geometry]:
        """(row, col, width, height) of a window, or None with the reason appended to ``errors``."""
        position = self._fetch("Timeout getting window position", "window_position", window)
        size = self._fetch("Timeout getting window size", "window_size", window)
        for result in (position, size):
            if not result.ok:
                errors.append(result.message)
        if not (position.ok and size.ok):
            return None
        try:
            row, col = position.value
            width, height = size.value
            return (int(row), int(col), int(width), int(height))
        except (TypeError, ValueError) as exc:
            errors.append(f"Unexpected window geometry {position.value!r} {size.value!r}: {exc}")
            return None

    def describe_window(self, window: Any, is_current: bool) -> WindowDescriptor:
        errors: List[str] = []
        number = self._fetch("Timeout getting window number", "window_number", window)
        descriptor = WindowDescriptor(
            window_number=number.value if number.ok else number.diagnostic("number"),
            buffer_number=None,
            buffer_name="",
            is_current=is_current,
            is_modified=False,
            geometry=self.read_geometry(window, errors),
            errors=errors,
        )
        buffer = self._fetch("Timeout getting buffer for window", "window_buffer", window)
        if not buffer.ok:
            descriptor.buffer_name = buffer.diagnostic("buffer")
            return descriptor
        buf_number = self._fetch("Timeout getting buffer number", "buffer_number", buffer.value)
        name = self._fetch("Timeout getting buffer name", "buffer_name", buffer.value)
        modified = self._fetch("Timeout getting buffer modified state", "buffer_is_modified", buffer.value)
        descriptor.buffer_number = buf_number.value if buf_number.ok else buf_number.diagnostic("number")
        descriptor.buffer_name = (name.value or "Unnamed") if name.ok else name.diagnostic("name")
        descriptor.is_modified = bool(modified.value) if modified.ok else modified.diagnostic("modified state")
        return descriptor

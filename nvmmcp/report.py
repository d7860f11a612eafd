"""
Report assembly.

``assemble`` turns an ``EditorState`` into a ``Report``. The structured form
is built first and the text form is rendered from it, so both always show
the same windows, buffers and tabs.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from nvmmcp.config import ACTIVE_MARKER, CURSOR_MARKER, LINE_NUMBER_WIDTH, SEPARATOR_WIDTH
from nvmmcp.state import (
    COMPLEX, EMPTY, HORIZONTAL, MIXED, SINGLE, UNKNOWN, VERTICAL,
    BufferSummary, EditorState, TabSummary, WindowSnapshot,
)

LAYOUT_SYMBOLS = {
    SINGLE: "▢",
    HORIZONTAL: "◫",
    VERTICAL: "⊟",
    MIXED: "⊞",
    COMPLEX: "⧉",
    EMPTY: "∅",
    UNKNOWN: "?",
}

SEPARATOR = "=" * SEPARATOR_WIDTH
ACTIVE_BUFFER_NOTE = f" {ACTIVE_MARKER} [ACTIVE BUFFER - Commands in normal mode will affect this buffer]"


@dataclass
class Report:
    structured: Dict[str, Any]
    text: str

    def to_json(self, indent: Optional[int] = 2) -> str:
        return json.dumps(self.structured, ensure_ascii=False, indent=indent)


def insert_cursor_marker(line: str, column: int, marker: str = CURSOR_MARKER) -> str:
    """Insert ``marker`` at byte column ``column`` of ``line``.

    Neovim reports cursor columns in bytes; the column is clamped to the line.
    """
    raw = line.encode("utf-8")
    column = max(0, min(int(column), len(raw)))
    before = raw[:column].decode("utf-8", errors="ignore")
    return f"{before}{marker}{line[len(before):]}"


def number_line(line_number: int, line: str, width: int = LINE_NUMBER_WIDTH) -> str:
    return f"{line_number:>{width}}: {line}"


def format_content(window: WindowSnapshot) -> List[str]:
    if window.visible_range is None:
        return list(window.content)
    cursor_line = window.cursor[0] if window.cursor else None
    formatted = []
    for index, line in enumerate(window.content):
        line_number = window.visible_range.start_line + index
        if window.is_current_window and cursor_line == line_number:
            line = insert_cursor_marker(line, window.cursor[1])
        formatted.append(number_line(line_number, line))
    return formatted


def _buffer_sort_key(buffer: BufferSummary):
    number = buffer.number
    if isinstance(number, int) and not isinstance(number, bool):
        return (0, number)
    return (1, 0)


def _window_dict(window: WindowSnapshot) -> Dict[str, Any]:
    visible = None
    if window.visible_range is not None:
        visible = {
            "startLine": window.visible_range.start_line,
            "endLine": window.visible_range.end_line,
            "context": window.visible_range.context,
        }
    return {
        "windowNumber": window.window_number,
        "isCurrentWindow": window.is_current_window,
        "isActiveBuffer": window.is_active_buffer,
        "bufferNumber": window.buffer_number,
        "bufferName": window.buffer_name,
        "cursor": list(window.cursor) if window.cursor is not None else None,
        "totalLines": window.total_lines,
        "visibleRange": visible,
        "content": format_content(window),
        "errors": list(window.errors),
    }


def _tab_dict(tab: TabSummary) -> Dict[str, Any]:
    windows = []
    for descriptor in tab.windows:
        geometry = descriptor.geometry
        windows.append({
            "windowNumber": descriptor.window_number,
            "bufferNumber": descriptor.buffer_number,
            "bufferName": descriptor.buffer_name,
            "isCurrent": descriptor.is_current,
            "isModified": descriptor.is_modified,
            "row": geometry[0] if geometry else None,
            "col": geometry[1] if geometry else None,
            "width": geometry[2] if geometry else None,
            "height": geometry[3] if geometry else None,
            "errors": list(descriptor.errors),
        })
    return {
        "number": tab.number,
        "isCurrent": tab.is_current,
        "layout": {"type": tab.layout.type, "description": tab.layout.description},
        "windows": windows,
    }


def build_structured(state: EditorState) -> Dict[str, Any]:
    buffers = sorted(state.all_buffers, key=_buffer_sort_key)
    return {
        "tabs": [_tab_dict(tab) for tab in state.tabs],
        "buffers": [
            {
                "number": buffer.number,
                "name": buffer.name,
                "isLoaded": buffer.is_loaded,
                "isModified": buffer.is_modified,
            }
            for buffer in buffers
        ],
        "windows": [_window_dict(window) for window in state.windows],
    }


def _flag(value: Any, label: str) -> str:
    if value is True:
        return f" [{label}]"
    if isinstance(value, str):
        return f" {value}"
    return ""


def render_tabs(tabs: List[Dict[str, Any]]) -> str:
    lines = ["Tabs and windows:"]
    if not tabs:
        lines.append("  No tabpages found")
    for tab in tabs:
        layout = tab["layout"]
        symbol = LAYOUT_SYMBOLS.get(layout["type"], "?")
        current = " (current)" if tab["isCurrent"] else ""
        lines.append(f"Tab {tab['number']}{current} {symbol} {layout['type']}: {layout['description']}")
        for window in tab["windows"]:
            modified = _flag(window["isModified"], "+")
            focus = " <current>" if window["isCurrent"] else ""
            lines.append(
                f"  Window {window['windowNumber']} - Buffer {window['bufferNumber']} "
                f"({window['bufferName'] or 'Unnamed'}){modified}{focus}"
            )
            for error in window["errors"]:
                lines.append(f"    ! {error}")
    return "\n".join(lines)


def render_buffers(buffers: List[Dict[str, Any]]) -> str:
    lines = ["Buffers:"]
    if not buffers:
        lines.append("  No buffers found")
    for buffer in buffers:
        if buffer["isLoaded"] is True:
            loaded = " [loaded]"
        elif buffer["isLoaded"] is False:
            loaded = " [unloaded]"
        else:
            loaded = f" {buffer['isLoaded']}"
        modified = _flag(buffer["isModified"], "modified")
        lines.append(f"  Buffer {buffer['number']}: {buffer['name'] or 'Unnamed'}{loaded}{modified}")
    return "\n".join(lines)


def render_window(window: Dict[str, Any]) -> str:
    header = f"Window {window['windowNumber']}"
    if window["isCurrentWindow"]:
        header += " (current)"
    if window["bufferNumber"] is not None:
        header += f" - Buffer {window['bufferNumber']}"
    header += f" ({window['bufferName'] or 'Unnamed'})"
    if window["isActiveBuffer"]:
        header += ACTIVE_BUFFER_NOTE

    cursor = window["cursor"]
    if cursor is not None:
        cursor_text = f"Cursor at line {cursor[0]}, column {cursor[1]} (marked with {CURSOR_MARKER})"
    else:
        cursor_text = "Cursor at line N/A, column N/A"

    visible = window["visibleRange"]
    if visible is not None:
        visibility = (
            f"Showing lines {visible['startLine']}-{visible['endLine']} of {window['totalLines']} "
            f"total lines (±{visible['context']} lines around cursor)"
        )
    else:
        visibility = "Content unavailable"

    content = "\n".join(window["content"]) or "No content available"
    return f"{header}\n{cursor_text}\n{visibility}\nContent:\n{content}\n{SEPARATOR}"


def render_text(structured: Dict[str, Any]) -> str:
    windows = structured["windows"]
    if windows:
        detail = "\n\n".join(render_window(window) for window in windows)
    else:
        detail = "No visible buffers found"
    return "\n\n".join([
        render_tabs(structured["tabs"]),
        render_buffers(structured["buffers"]),
        "Visible windows:\n" + detail,
    ])


def assemble(state: EditorState) -> Report:
    structured = build_structured(state)
    return Report(structured=structured, text=render_text(structured))

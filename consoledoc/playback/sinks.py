"""
Output sinks for the document player.

TerminalSink draws frames in the terminal's alternate screen, redrawing only
the lines that changed between frames. BufferSink records frames in memory.
"""

from __future__ import annotations

import sys
from abc import ABC, abstractmethod
from contextlib import ExitStack
from typing import TextIO

from blessed import Terminal

from ..ansi import (
    CLEAR_SCREEN,
    CURSOR_HOME,
    ESC,
    HIDE_CURSOR,
    RESET,
    SHOW_CURSOR,
    SYNC_END,
    SYNC_START,
    visible_length,
)

FULL_REDRAW_RATIO = 0.6  # Changed-line share above which a full redraw is cheaper


def cursor_to_line(line: int) -> str:
    """Move the cursor to the start of a 0-based line."""
    return f"{ESC}[{line + 1};1H"


def build_frame_update(content: str, previous: str | None) -> str:
    """Build the output that turns the previous frame into the new one.

    The first frame is drawn in full. Later frames only rewrite changed
    lines, padding with spaces where the new line is shorter than the old
    one. When most lines changed, the frame is drawn in full instead. The
    whole update is wrapped in synchronized output markers.

    :param content: New frame content
    :param previous: Previously drawn content, or None
    :return: Escape-sequence string to write
    """
    if previous is None:
        return f"{SYNC_START}{CURSOR_HOME}{content}{SYNC_END}"

    lines = content.split("\n")
    prev_lines = previous.split("\n")
    total = max(len(lines), len(prev_lines))
    threshold = int(total * FULL_REDRAW_RATIO) + 1

    parts: list[str] = []
    changed = 0
    for i in range(total):
        line = lines[i] if i < len(lines) else ""
        prev = prev_lines[i] if i < len(prev_lines) else ""
        if line == prev:
            continue
        changed += 1
        if changed >= threshold:
            return f"{SYNC_START}{CURSOR_HOME}{content}{SYNC_END}"
        parts.append(cursor_to_line(i))
        parts.append(line)
        padding = visible_length(prev) - visible_length(line)
        if padding > 0:
            parts.append(" " * padding)
        parts.append(RESET)

    return f"{SYNC_START}{''.join(parts)}{SYNC_END}"


class FrameSink(ABC):
    """Destination for played frames.

    The player calls open() once before the first frame and close() on every
    exit path, including errors.
    """

    def open(self) -> None:
        pass

    @abstractmethod
    def emit(self, content: str, overlay: str | None = None) -> None:
        """Show one frame, with optional overlay text below it."""

    def close(self) -> None:
        pass


class BufferSink(FrameSink):
    """Collects emitted frames in memory."""

    def __init__(self):
        self.frames: list[str] = []
        self.overlays: list[str | None] = []
        self.opened = False
        self.closed = False

    def open(self) -> None:
        self.opened = True

    def emit(self, content: str, overlay: str | None = None) -> None:
        self.frames.append(content)
        self.overlays.append(overlay)

    def close(self) -> None:
        self.closed = True


class TerminalSink(FrameSink):
    """Draw frames in the terminal.

    Uses blessed for the alternate screen and cursor handling. Frames are
    written with line-diff redraw; overlay text is drawn on the line below
    the frame and only rewritten when it changes.

    :param terminal: blessed Terminal (created if None)
    :param stream: Output stream (defaults to sys.stdout)
    """

    def __init__(self, terminal: Terminal | None = None, stream: TextIO | None = None):
        self._terminal = terminal
        self._stream = stream
        self._stack: ExitStack | None = None
        self._previous: str | None = None
        self._previous_overlay: str | None = None
        self._frame_height = 0

    @property
    def terminal(self) -> Terminal:
        if self._terminal is None:
            self._terminal = Terminal()
        return self._terminal

    @property
    def stream(self) -> TextIO:
        return self._stream if self._stream is not None else sys.stdout

    def open(self) -> None:
        self._stack = ExitStack()
        self._stack.enter_context(self.terminal.fullscreen())
        self._stack.enter_context(self.terminal.hidden_cursor())
        self.stream.write(CLEAR_SCREEN + HIDE_CURSOR)
        self.stream.flush()
        self._previous = None
        self._previous_overlay = None

    def emit(self, content: str, overlay: str | None = None) -> None:
        out = [build_frame_update(content, self._previous)]
        self._previous = content
        self._frame_height = max(self._frame_height, content.count("\n") + 1)

        if overlay != self._previous_overlay:
            out.append(cursor_to_line(self._frame_height))
            out.append(f"{ESC}[2K")  # Clear line
            if overlay:
                out.append(overlay.replace("\n", " "))
            self._previous_overlay = overlay

        self.stream.write("".join(out))
        self.stream.flush()

    def close(self) -> None:
        try:
            self.stream.write(RESET + SHOW_CURSOR)
            self.stream.flush()
        finally:
            if self._stack is not None:
                self._stack.close()
                self._stack = None

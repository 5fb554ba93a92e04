"""
ANSI style handling for rendered frames.

Frames arrive as fully styled terminal text. For compression the codec splits
that text into a plain character buffer and one *style key* per character,
and later rebuilds styled text from characters plus palette indices.

Style keys are compact strings:

- ``"FF8000"``         24-bit foreground
- ``"@196"``           256-color foreground (basic 16 colors map to @0-@15)
- ``"FF8000:101010"``  foreground and background
- ``":101010"``        background only
- ``""``               terminal default (palette index 0)

Example:
    chars, styles = parse_ansi("\\033[38;2;255;0;0mHi\\033[0m")
    # chars == "Hi", styles == ["FF0000", "FF0000"]
"""

from __future__ import annotations

import re
from typing import Sequence

# ANSI escape codes
ESC = "\033"
RESET = f"{ESC}[0m"
CLEAR_SCREEN = f"{ESC}[2J"
CURSOR_HOME = f"{ESC}[H"
HIDE_CURSOR = f"{ESC}[?25l"
SHOW_CURSOR = f"{ESC}[?25h"
SYNC_START = f"{ESC}[?2026h"  # Synchronized output (flicker-free frame swap)
SYNC_END = f"{ESC}[?2026l"

# CSI sequence: ESC [ parameters final-byte
CSI_PATTERN = re.compile(r"\x1b\[([0-9;:?]*)([@-~])")

NO_STYLE = ""


def strip_ansi(text: str) -> str:
    """Remove all CSI escape sequences from text."""
    return CSI_PATTERN.sub("", text)


def visible_length(text: str) -> int:
    """Number of printable characters in text, ignoring escape sequences."""
    return len(strip_ansi(text))


def _param(codes: list[str], i: int) -> int:
    try:
        return int(codes[i]) if codes[i] else 0
    except (ValueError, IndexError):
        return -1


def _apply_sgr(params: str, fg: str, bg: str) -> tuple[str, str]:
    """Apply one SGR parameter list to the current foreground/background."""
    codes = params.split(";") if params else ["0"]
    i = 0
    while i < len(codes):
        code = _param(codes, i)
        if code == 0:
            fg, bg = NO_STYLE, NO_STYLE
        elif code in (38, 48):
            mode = _param(codes, i + 1)
            if mode == 2 and i + 4 < len(codes):
                r, g, b = (max(0, min(255, _param(codes, i + k))) for k in (2, 3, 4))
                value = f"{r:02X}{g:02X}{b:02X}"
                i += 4
            elif mode == 5 and i + 2 < len(codes):
                value = f"@{max(0, min(255, _param(codes, i + 2)))}"
                i += 2
            else:
                break
            if code == 38:
                fg = value
            else:
                bg = value
        elif code == 39:
            fg = NO_STYLE
        elif code == 49:
            bg = NO_STYLE
        elif 30 <= code <= 37:
            fg = f"@{code - 30}"
        elif 90 <= code <= 97:
            fg = f"@{code - 90 + 8}"
        elif 40 <= code <= 47:
            bg = f"@{code - 40}"
        elif 100 <= code <= 107:
            bg = f"@{code - 100 + 8}"
        # Attributes such as bold or underline are not preserved
        i += 1
    return fg, bg


def make_style(fg: str = NO_STYLE, bg: str = NO_STYLE) -> str:
    """Combine foreground and background components into a style key."""
    if bg:
        return f"{fg}:{bg}"
    return fg


def split_style(style: str) -> tuple[str, str]:
    """Split a style key into (foreground, background) components."""
    fg, _, bg = style.partition(":")
    return fg, bg


def parse_ansi(content: str) -> tuple[str, list[str]]:
    """Split styled text into plain characters and per-character style keys.

    SGR color sequences update the current style; every other CSI sequence
    (cursor movement, mode switches) is dropped.

    :param content: Styled frame text
    :return: Tuple of (characters, style key per character)
    """
    chars: list[str] = []
    styles: list[str] = []
    fg, bg = NO_STYLE, NO_STYLE
    style = NO_STYLE
    pos = 0

    for match in CSI_PATTERN.finditer(content):
        if match.start() > pos:
            segment = content[pos:match.start()]
            chars.append(segment)
            styles.extend([style] * len(segment))
        if match.group(2) == "m":
            fg, bg = _apply_sgr(match.group(1), fg, bg)
            style = make_style(fg, bg)
        pos = match.end()

    if pos < len(content):
        segment = content[pos:]
        chars.append(segment)
        styles.extend([style] * len(segment))

    return "".join(chars), styles


def _component_sgr(base: int, value: str) -> str:
    if value.startswith("@"):
        return f"{ESC}[{base};5;{value[1:]}m"
    try:
        r, g, b = int(value[0:2], 16), int(value[2:4], 16), int(value[4:6], 16)
    except ValueError:
        return ""
    return f"{ESC}[{base};2;{r};{g};{b}m"


def style_transition(current: str, target: str) -> str:
    """Escape sequence switching from the current style to the target style."""
    if target == current:
        return ""
    if not target:
        return RESET

    cur_fg, cur_bg = split_style(current)
    new_fg, new_bg = split_style(target)
    parts = []

    # Dropping a component needs a reset first
    if (cur_fg and not new_fg) or (cur_bg and not new_bg):
        parts.append(RESET)
        cur_fg, cur_bg = NO_STYLE, NO_STYLE

    if new_fg and new_fg != cur_fg:
        parts.append(_component_sgr(38, new_fg))
    if new_bg and new_bg != cur_bg:
        parts.append(_component_sgr(48, new_bg))
    return "".join(parts)


def build_ansi(chars: str | Sequence[str], indices: Sequence[int], styles: Sequence[str]) -> str:
    """Rebuild styled text from characters and palette indices.

    Colors are reset before every newline so they never bleed into the
    margin, and once more at the end if any color is active. Index 0 and
    indices outside the palette render without color.

    :param chars: Plain characters (string or list of single characters)
    :param indices: Palette index per character
    :param styles: Palette style keys (index 0 is the no-color sentinel)
    :return: Styled text
    """
    out: list[str] = []
    current = NO_STYLE
    palette_size = len(styles)

    for ch, idx in zip(chars, indices):
        if ch == "\n":
            if current:
                out.append(RESET)
                current = NO_STYLE
            out.append(ch)
            continue

        style = styles[idx] if 0 < idx < palette_size else NO_STYLE
        if style != current:
            out.append(style_transition(current, style))
            current = style
        out.append(ch)

    if current:
        out.append(RESET)
    return "".join(out)

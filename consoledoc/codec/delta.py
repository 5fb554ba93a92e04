"""Inter-frame delta encoding.

A delta frame is stored as a list of positional edits against the previous
reconstructed frame. Wire form: entries joined by ``;``, each entry
``pos:chars,color[,count]`` with ``chars`` escaped so it never contains a
separator::

    "2:B,0"            position 2 becomes "B" with no color
    "10:abc,4,3"       positions 10-12 become "abc" in palette color 4
    "0:\\c\\m,1,2"     positions 0-1 become ":," in palette color 1
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable, MutableSequence, Sequence

import numpy as np

logger = logging.getLogger(__name__)

ENTRY_SEPARATOR = ";"
POSITION_SEPARATOR = ":"
FIELD_SEPARATOR = ","

_ESCAPES = {
    ":": "\\c",
    ",": "\\m",
    ";": "\\s",
    "\\": "\\\\",
    "\n": "\\n",
    "\r": "\\r",
}
_UNESCAPES = {
    "c": ":",
    "m": ",",
    "s": ";",
    "\\": "\\",
    "n": "\n",
    "r": "\r",
}


@dataclass(frozen=True)
class DeltaEdit:
    """Replace ``count`` characters starting at ``position``.

    :param position: Offset into the flat character buffer
    :param chars: Replacement characters (unescaped); padded with spaces
        when shorter than ``count``
    :param color: Palette index applied to every replaced position
    :param count: Number of positions covered by the edit
    """

    position: int
    chars: str
    color: int = 0
    count: int = 1


def escape(text: str) -> str:
    """Escape separator and line-break characters for the delta payload."""
    return "".join(_ESCAPES.get(ch, ch) for ch in text)


def unescape(text: str) -> str:
    """Exact inverse of :func:`escape`.

    A backslash followed by an unknown tag yields the tag character, and a
    trailing lone backslash is kept as is.
    """
    if "\\" not in text:
        return text
    out = []
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch == "\\" and i + 1 < n:
            tag = text[i + 1]
            out.append(_UNESCAPES.get(tag, tag))
            i += 2
        else:
            out.append(ch)
            i += 1
    return "".join(out)


def _code_points(text: str) -> np.ndarray:
    return np.frombuffer(text.encode("utf-32-le"), dtype=np.uint32)


def _fit(indices: Sequence[int] | np.ndarray, length: int) -> np.ndarray:
    arr = np.zeros(length, dtype=np.int64)
    src = np.asarray(indices, dtype=np.int64)[:length]
    arr[:src.size] = src
    return arr


def diff(
    prev_chars: str,
    prev_indices: Sequence[int] | np.ndarray,
    chars: str,
    indices: Sequence[int] | np.ndarray,
) -> list[DeltaEdit]:
    """Compute the edits turning the previous frame into the new one.

    Positions are compared by character and palette index. Positions past the
    end of the previous frame always count as changed. Adjacent changed
    positions sharing a color are coalesced into a single edit.

    Applying the result to the previous frame reproduces the new one only
    when both have the same length: apply_delta never grows or shrinks its
    buffers, so edits past the previous end are dropped. Encoders store a
    keyframe whenever the length changes.

    :param prev_chars: Characters of the previous reconstructed frame
    :param prev_indices: Palette indices of the previous frame
    :param chars: Characters of the new frame
    :param indices: Palette indices of the new frame
    :return: Ordered list of edits (empty if the frames are identical)
    """
    length = len(chars)
    if length == 0:
        return []

    shared = min(len(prev_chars), length)
    cur_idx = _fit(indices, length)
    prev_idx = _fit(prev_indices, shared)

    changed = np.ones(length, dtype=bool)
    if shared:
        cur_codes = _code_points(chars[:shared])
        prev_codes = _code_points(prev_chars[:shared])
        changed[:shared] = (cur_codes != prev_codes) | (cur_idx[:shared] != prev_idx)

    positions = np.flatnonzero(changed)
    if positions.size == 0:
        return []

    colors = cur_idx[positions]
    breaks = np.flatnonzero((np.diff(positions) != 1) | (np.diff(colors) != 0)) + 1
    starts = np.concatenate(([0], breaks))
    ends = np.append(breaks, positions.size)

    edits = []
    for s, e in zip(starts.tolist(), ends.tolist()):
        pos = int(positions[s])
        count = e - s
        edits.append(DeltaEdit(pos, chars[pos:pos + count], int(colors[s]), count))
    return edits


def encode_delta(edits: Iterable[DeltaEdit]) -> str:
    """Serialize edits to the delta wire form."""
    entries = []
    for edit in edits:
        entry = f"{edit.position}{POSITION_SEPARATOR}{escape(edit.chars)}{FIELD_SEPARATOR}{edit.color}"
        if edit.count > 1:
            entry += f"{FIELD_SEPARATOR}{edit.count}"
        entries.append(entry)
    return ENTRY_SEPARATOR.join(entries)


def _find_field_separator(text: str) -> int:
    i = 0
    while i < len(text):
        if text[i] == "\\":
            i += 2
            continue
        if text[i] == FIELD_SEPARATOR:
            return i
        i += 1
    return -1


def _parse_int(text: str, default: int) -> int:
    try:
        return int(text)
    except ValueError:
        return default


def decode_delta(encoded: str | None) -> list[DeltaEdit]:
    """Parse the delta wire form.

    Entries without a position separator or color field, or with an
    unparseable position, are skipped. A bad color becomes 0 and a bad or
    non-positive count becomes 1.
    """
    if not encoded:
        return []

    edits = []
    for entry in encoded.split(ENTRY_SEPARATOR):
        if not entry:
            continue
        pos_text, sep, rest = entry.partition(POSITION_SEPARATOR)
        if not sep:
            logger.debug("Skipping delta entry without position: %r", entry)
            continue
        try:
            position = int(pos_text)
        except ValueError:
            logger.debug("Skipping delta entry with bad position: %r", entry)
            continue

        comma = _find_field_separator(rest)
        if comma < 0:
            logger.debug("Skipping delta entry without color: %r", entry)
            continue

        chars = unescape(rest[:comma])
        color_text, has_count, count_text = rest[comma + 1:].partition(FIELD_SEPARATOR)
        color = _parse_int(color_text, 0)
        count = _parse_int(count_text, 1) if has_count else 1
        if count < 1:
            count = 1
        edits.append(DeltaEdit(position, chars, color, count))
    return edits


def apply_delta(
    chars: MutableSequence[str],
    indices: MutableSequence[int] | np.ndarray,
    edits: Iterable[DeltaEdit],
) -> None:
    """Apply edits to a character buffer and its palette indices in place.

    The buffers keep their length: writes past the end (or at negative
    positions) are dropped, so a delta recorded against a larger terminal
    never grows the frame.

    :param chars: Mutable list of single characters
    :param indices: Palette index per character, same length as ``chars``
    :param edits: Edits to apply in order
    """
    size = len(chars)
    for edit in edits:
        start = max(edit.position, 0)
        end = min(edit.position + edit.count, size)
        if start >= end:
            continue
        text = edit.chars
        for pos in range(start, end):
            offset = pos - edit.position
            chars[pos] = text[offset] if offset < len(text) else " "
        indices[start:end] = [edit.color] * (end - start)

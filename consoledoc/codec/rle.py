"""Run-length encoding for per-character palette indices.

Wire form: runs joined by ``;``, each run ``index`` or ``index,count``
(count omitted when it is 1)::

    [0, 0, 0, 3, 5, 5]  <->  "0,3;3;5,2"
"""

from __future__ import annotations

from typing import Sequence

import numpy as np

RUN_SEPARATOR = ";"
COUNT_SEPARATOR = ","


def _parse_int(text: str, default: int) -> int:
    try:
        return int(text)
    except ValueError:
        return default


def encode_rle(indices: Sequence[int] | np.ndarray) -> str:
    """Compress a color index sequence into run-length text.

    :param indices: Palette index per character
    :return: Encoded runs, empty string for empty input
    """
    arr = np.asarray(indices, dtype=np.int64)
    if arr.size == 0:
        return ""

    starts = np.concatenate(([0], np.flatnonzero(np.diff(arr)) + 1))
    counts = np.diff(np.append(starts, arr.size))

    runs = []
    for value, count in zip(arr[starts].tolist(), counts.tolist()):
        if count > 1:
            runs.append(f"{value}{COUNT_SEPARATOR}{count}")
        else:
            runs.append(str(value))
    return RUN_SEPARATOR.join(runs)


def iter_runs(encoded: str | None):
    """Yield (index, count) pairs from run-length text.

    Unparseable indices become 0 and unparseable or non-positive counts
    become 1, so a damaged run degrades to uncolored text instead of
    failing the frame.
    """
    if not encoded:
        return
    for run in encoded.split(RUN_SEPARATOR):
        if not run:
            continue
        value, sep, count = run.partition(COUNT_SEPARATOR)
        idx = _parse_int(value, 0)
        n = _parse_int(count, 1) if sep else 1
        yield idx, n if n > 0 else 1


def decode_rle(encoded: str | None) -> list[int]:
    """Expand run-length text back into a color index list."""
    result: list[int] = []
    for idx, count in iter_runs(encoded):
        result.extend([idx] * count)
    return result


def decode_rle_into(encoded: str | None, length: int) -> np.ndarray:
    """Expand runs into an index array of exactly ``length`` entries.

    Runs past the end are truncated; a short encoding leaves the remaining
    positions at index 0 (no color).
    """
    buffer = np.zeros(length, dtype=np.int32)
    pos = 0
    for idx, count in iter_runs(encoded):
        if pos >= length:
            break
        end = min(pos + count, length)
        buffer[pos:end] = idx
        pos = end
    return buffer

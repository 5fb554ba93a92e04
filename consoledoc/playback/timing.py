"""Timing helpers for document playback."""

from __future__ import annotations

import threading
from typing import Callable, Iterable, Iterator

from ..models import DocumentFrame

# (seconds, cancel_event) -> True if cancelled during the wait
Sleeper = Callable[[float, threading.Event], bool]


def event_sleeper(seconds: float, cancel: threading.Event) -> bool:
    """Default sleeper: wait on the cancel event so stop() interrupts the delay."""
    return cancel.wait(seconds)


def effective_delay_ms(delay_ms: float, speed: float, min_delay_ms: float = 1.0) -> float:
    """Stored delay scaled by the speed multiplier, never below ``min_delay_ms``."""
    if speed <= 0:
        speed = 1.0
    return max(min_delay_ms, delay_ms / speed)


def select_frames(
    frames: Iterable[DocumentFrame],
    start: int = 0,
    end: int | None = None,
    step: int = 1,
) -> Iterator[tuple[int, DocumentFrame, int]]:
    """Yield (index, frame, delay_ms) for the frames to show in one pass.

    Frames before ``start`` or after ``end`` (inclusive) are skipped. With
    ``step`` N only every Nth frame of the range is shown; the delays of the
    frames stepped over are added to the shown frame so a pass keeps its
    total duration.

    Reads at most one frame ahead of what it yields.
    """
    step = max(1, step)
    start = max(0, start)
    pending: tuple[int, DocumentFrame] | None = None
    pending_delay = 0
    position = 0

    for index, frame in enumerate(frames):
        if index < start:
            continue
        if end is not None and index > end:
            break
        if position % step == 0:
            if pending is not None:
                yield pending[0], pending[1], pending_delay
            pending = (index, frame)
            pending_delay = frame.delay_ms
        else:
            pending_delay += frame.delay_ms
        position += 1

    if pending is not None:
        yield pending[0], pending[1], pending_delay


def format_time(ms: float) -> str:
    """Format milliseconds as MM:SS.mmm or H:MM:SS.mmm."""
    if ms < 0:
        ms = 0
    ms = int(ms)
    hours = ms // 3_600_000
    minutes = (ms % 3_600_000) // 60_000
    secs = (ms % 60_000) // 1000
    millis = ms % 1000
    if hours > 0:
        return f"{hours}:{minutes:02d}:{secs:02d}.{millis:03d}"
    return f"{minutes:02d}:{secs:02d}.{millis:03d}"

"""
Subtitle tracks for overlay during playback.

Tracks are stored in documents as :class:`~consoledoc.models.SubtitleTrackData`
and inside archives as a WebVTT sidecar. :class:`SubtitleTrack` answers
"which text is active at time T" for the player.
"""

from __future__ import annotations

import bisect
import logging
import re
from typing import Protocol, runtime_checkable

from .models import SubtitleEntryData, SubtitleTrackData

logger = logging.getLogger(__name__)

VTT_HEADER = "WEBVTT"

# [hh:]mm:ss.mmm --> [hh:]mm:ss.mmm
_TIMECODE = re.compile(
    r"(?:(\d+):)?(\d{1,2}):(\d{2})[.,](\d{3})\s*-->\s*(?:(\d+):)?(\d{1,2}):(\d{2})[.,](\d{3})"
)


@runtime_checkable
class OverlaySource(Protocol):
    """Anything that can supply overlay text for a playback time offset."""

    def text_at(self, offset_ms: int) -> str | None:
        """Text active at ``offset_ms`` milliseconds into playback, or None."""
        ...


class SubtitleTrack:
    """Time-indexed subtitle cues.

    :param entries: Cues, in any order
    :param language: Optional language code
    :param source_file: Optional original subtitle file name
    """

    def __init__(
        self,
        entries: list[SubtitleEntryData] | None = None,
        language: str | None = None,
        source_file: str | None = None,
    ):
        self.entries = sorted(entries or [], key=lambda e: (e.start_ms, e.end_ms))
        self.language = language
        self.source_file = source_file
        self._starts = [e.start_ms for e in self.entries]
        self._longest = max((e.end_ms - e.start_ms for e in self.entries), default=0)

    def __len__(self) -> int:
        return len(self.entries)

    @property
    def has_entries(self) -> bool:
        return bool(self.entries)

    @property
    def duration_ms(self) -> int:
        return max((e.end_ms for e in self.entries), default=0)

    def text_at(self, offset_ms: int) -> str | None:
        """Return the cue text active at the given offset.

        Cues are half-open intervals ``[start, end)``. When cues overlap, the
        one that started last wins.
        """
        pos = bisect.bisect_right(self._starts, offset_ms)
        for i in range(pos - 1, -1, -1):
            entry = self.entries[i]
            if entry.start_ms <= offset_ms < entry.end_ms:
                return entry.text
            if offset_ms - entry.start_ms >= self._longest:
                break
        return None

    @classmethod
    def from_data(cls, data: SubtitleTrackData) -> 'SubtitleTrack':
        return cls(list(data.entries), data.language, data.source_file)

    def to_data(self) -> SubtitleTrackData:
        entries = [
            e.model_copy(update={'index': i + 1}) for i, e in enumerate(self.entries)
        ]
        return SubtitleTrackData(
            language=self.language, source_file=self.source_file, entries=entries
        )


def _format_timestamp(ms: int) -> str:
    ms = max(0, int(ms))
    hours, rest = divmod(ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}.{millis:03d}"


def to_vtt(track: SubtitleTrackData) -> str:
    """Serialize a subtitle track as WebVTT text."""
    lines = [VTT_HEADER, ""]
    for i, entry in enumerate(track.entries, start=1):
        lines.append(str(i))
        lines.append(f"{_format_timestamp(entry.start_ms)} --> {_format_timestamp(entry.end_ms)}")
        lines.append(entry.text)
        lines.append("")
    return "\n".join(lines) + "\n"


def _to_ms(hours: str | None, minutes: str, seconds: str, millis: str) -> int:
    return ((int(hours or 0) * 60 + int(minutes)) * 60 + int(seconds)) * 1000 + int(millis)


def parse_vtt(text: str, language: str | None = None, source_file: str | None = None) -> SubtitleTrackData:
    """Parse WebVTT text into track data.

    Header, NOTE, STYLE and REGION blocks and cue identifiers are skipped.
    Blocks without a timing line are ignored.
    """
    entries: list[SubtitleEntryData] = []
    blocks = re.split(r"\r?\n\s*\r?\n", text.lstrip("\ufeff"))

    for block in blocks:
        lines = [line.rstrip("\r") for line in block.strip("\r\n").split("\n")]
        if not lines or not lines[0].strip():
            continue
        first = lines[0].strip()
        if first.startswith((VTT_HEADER, "NOTE", "STYLE", "REGION")):
            continue

        for i, line in enumerate(lines):
            match = _TIMECODE.search(line)
            if match:
                g = match.groups()
                entries.append(SubtitleEntryData(
                    index=len(entries) + 1,
                    start_ms=_to_ms(*g[0:4]),
                    end_ms=_to_ms(*g[4:8]),
                    text="\n".join(lines[i + 1:]).strip(),
                ))
                break
        else:
            logger.debug("Skipping subtitle block without timing: %r", first)

    return SubtitleTrackData(language=language, source_file=source_file, entries=entries)

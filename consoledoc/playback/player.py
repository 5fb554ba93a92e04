"""Document player: replays decoded frames with timing, looping and speed control.

Example:
    from consoledoc import load_document
    from consoledoc.playback import DocumentPlayer, PlaybackOverrides, TerminalSink

    doc = load_document("clip.cidz")
    player = DocumentPlayer(doc, TerminalSink(), PlaybackOverrides(speed=2.0, loop_count=1))
    player.on_loop_complete(lambda loop: print(f"loop {loop} done"))
    player.play()

play() blocks until playback ends. pause(), resume(), stop(), set_speed() and
set_loop_count() may be called from another thread (or from callbacks)
while it runs.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, Iterator, Union

from ..formats.streaming import StreamedDocument
from ..models import Document, DocumentFrame, RenderSettings
from ..subtitles import OverlaySource, SubtitleTrack
from .sinks import FrameSink, TerminalSink
from .timing import Sleeper, effective_delay_ms, event_sleeper, format_time, select_frames

logger = logging.getLogger(__name__)

PlayerSource = Union[Document, StreamedDocument, Iterable[DocumentFrame]]


class PlaybackState(Enum):
    """Player state machine."""

    IDLE = "idle"
    PLAYING = "playing"
    PAUSED = "paused"
    STOPPED = "stopped"


@dataclass(frozen=True)
class PlaybackOverrides:
    """Playback-time overrides; the document's stored settings stay untouched.

    None means "use the document's setting". Speeds outside
    [PlaybackConfig.min_speed, PlaybackConfig.max_speed] (0.1 to 16 by
    default) are clamped to that range; pass a PlaybackConfig with wider
    bounds to allow more.
    """

    speed: float | None = None
    loop_count: int | None = None  # 0 = loop forever
    start_frame: int | None = None
    end_frame: int | None = None  # Inclusive
    frame_step: int = 1  # Show every Nth frame


@dataclass
class PlaybackConfig:
    """Configuration for the player's timing."""

    min_delay_ms: float = 1.0
    min_speed: float = 0.1
    max_speed: float = 16.0


class _FrameSource:
    """Uniform view over eager and lazy frame sources."""

    def __init__(self, source: PlayerSource):
        self.settings = getattr(source, 'settings', None) or RenderSettings()
        self.subtitles = getattr(source, 'subtitles', None)
        self._lazy: StreamedDocument | None = None
        self._frames: list[DocumentFrame] | None = None
        self._count: int | None = None

        if isinstance(source, Document):
            self._frames = source.frames
        elif isinstance(source, StreamedDocument):
            self._lazy = source
        else:
            self._frames = list(source)

    @property
    def frame_count(self) -> int:
        if self._frames is not None:
            return len(self._frames)
        if self._count is None:
            self._count = self._lazy.info().frame_count
        return self._count

    def __iter__(self) -> Iterator[DocumentFrame]:
        if self._frames is not None:
            return iter(self._frames)
        return iter(self._lazy)


class DocumentPlayer:
    """Replay a document's frames to a sink.

    States: IDLE -> PLAYING -> (PAUSED <-> PLAYING) -> STOPPED.

    :param source: Document, StreamedDocument or iterable of DocumentFrame
    :param sink: Output sink (TerminalSink if None)
    :param overrides: Speed/loop/frame-range overrides
    :param subtitles: Overlay source; defaults to the document's embedded track
    :param config: Timing configuration
    :param sleeper: Delay function ``(seconds, cancel_event) -> cancelled``;
        the only place the play loop waits
    """

    def __init__(
        self,
        source: PlayerSource,
        sink: FrameSink | None = None,
        overrides: PlaybackOverrides | None = None,
        subtitles: OverlaySource | None = None,
        config: PlaybackConfig | None = None,
        sleeper: Sleeper | None = None,
    ):
        self._source = _FrameSource(source)
        self.sink = sink if sink is not None else TerminalSink()
        self.overrides = overrides or PlaybackOverrides()
        self.config = config or PlaybackConfig()
        self._sleeper = sleeper or event_sleeper

        if subtitles is None and self._source.subtitles is not None and self._source.subtitles.entries:
            subtitles = SubtitleTrack.from_data(self._source.subtitles)
        self.subtitles = subtitles

        settings = self._source.settings
        speed = self.overrides.speed
        self._speed = self._clamp_speed(speed if speed is not None else settings.animation_speed_multiplier)
        loop_count = self.overrides.loop_count
        self._loop_count = max(0, loop_count if loop_count is not None else settings.loop_count)

        self._state = PlaybackState.IDLE
        self._cancel = threading.Event()
        self._resume = threading.Event()
        self._resume.set()

        self._frames_emitted = 0
        self._loops_completed = 0
        self._elapsed_ms = 0.0

        # Callbacks
        self._on_frame: list[Callable[[int, int], None]] = []
        self._on_loop_complete: list[Callable[[int], None]] = []
        self._on_state_change: list[Callable[[PlaybackState], None]] = []

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def state(self) -> PlaybackState:
        """Current playback state."""
        return self._state

    @property
    def speed(self) -> float:
        """Current speed multiplier."""
        return self._speed

    @property
    def loop_count(self) -> int:
        """Number of passes to play; 0 loops forever."""
        return self._loop_count

    @property
    def frames_emitted(self) -> int:
        """Frames sent to the sink so far."""
        return self._frames_emitted

    @property
    def loops_completed(self) -> int:
        return self._loops_completed

    @property
    def elapsed_ms(self) -> float:
        """Sum of the effective delays waited so far."""
        return self._elapsed_ms

    @property
    def frame_count(self) -> int:
        return self._source.frame_count

    # -------------------------------------------------------------------------
    # Control
    # -------------------------------------------------------------------------

    def _clamp_speed(self, multiplier: float) -> float:
        return max(self.config.min_speed, min(self.config.max_speed, multiplier))

    def set_speed(self, multiplier: float) -> None:
        """Set the speed multiplier; applies from the next frame on."""
        self._speed = self._clamp_speed(multiplier)

    def set_loop_count(self, loop_count: int) -> None:
        """Change the number of passes; checked at the end of each pass."""
        self._loop_count = max(0, loop_count)

    def pause(self) -> None:
        """Pause at the next delay point."""
        if self._state == PlaybackState.PLAYING:
            self._resume.clear()
            self._set_state(PlaybackState.PAUSED)

    def resume(self) -> None:
        """Resume after pause()."""
        if self._state == PlaybackState.PAUSED:
            self._set_state(PlaybackState.PLAYING)
            self._resume.set()

    def toggle(self) -> None:
        """Toggle between play and pause."""
        if self._state == PlaybackState.PLAYING:
            self.pause()
        elif self._state == PlaybackState.PAUSED:
            self.resume()

    def stop(self) -> None:
        """Cancel playback. The play loop exits before the next frame."""
        self._cancel.set()
        self._resume.set()
        if self._state == PlaybackState.IDLE:
            self._set_state(PlaybackState.STOPPED)

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    # -------------------------------------------------------------------------
    # Playback
    # -------------------------------------------------------------------------

    def play(self) -> None:
        """Play the document. Blocks until all loops finish or stop() is called.

        Errors from the sink or the frame source stop the player, restore the
        sink and propagate.
        """
        if self._state != PlaybackState.IDLE:
            raise RuntimeError(f"Player cannot start from state {self._state.value}")

        self._set_state(PlaybackState.PLAYING)
        try:
            self.sink.open()
            if self._source.frame_count <= 1:
                self._show_still()
            else:
                self._run()
        except KeyboardInterrupt:
            self._cancel.set()
        finally:
            try:
                self.sink.close()
            finally:
                self._set_state(PlaybackState.STOPPED)

    def _show_still(self) -> None:
        for frame in self._source:
            overlay = self._overlay(frame, 0)
            self.sink.emit(frame.content, overlay)
            self._frames_emitted += 1
            self._notify_frame(0, 1)
            break

    def _run(self) -> None:
        total = self._source.frame_count
        ov = self.overrides

        while not self._cancel.is_set():
            offset_ms = 0
            emitted = 0
            for index, frame, delay_ms in select_frames(
                self._source, ov.start_frame or 0, ov.end_frame, ov.frame_step
            ):
                if self._cancel.is_set():
                    return

                overlay = self._overlay(frame, offset_ms)
                self.sink.emit(frame.content, overlay)
                self._frames_emitted += 1
                emitted += 1
                self._notify_frame(index, total)
                offset_ms += delay_ms

                if self._wait(delay_ms):
                    return

            if emitted == 0:
                logger.warning("No frames in the selected range, stopping")
                return

            self._loops_completed += 1
            for callback in self._on_loop_complete:
                callback(self._loops_completed)
            if self._loop_count and self._loops_completed >= self._loop_count:
                return

    def _overlay(self, frame: DocumentFrame, offset_ms: int) -> str | None:
        if self.subtitles is not None:
            return self.subtitles.text_at(offset_ms)
        return frame.subtitle_text

    def _wait(self, delay_ms: int) -> bool:
        """Wait out a frame delay. Returns True if playback was cancelled."""
        if self._cancel.is_set():
            return True
        delay = effective_delay_ms(delay_ms, self._speed, self.config.min_delay_ms)
        if self._sleeper(delay / 1000.0, self._cancel):
            return True
        self._elapsed_ms += delay

        # Paused: park here until resume() or stop()
        self._resume.wait()
        return self._cancel.is_set()

    # -------------------------------------------------------------------------
    # Callbacks
    # -------------------------------------------------------------------------

    def on_frame(self, callback: Callable[[int, int], None]) -> None:
        """Register a callback ``(frame_index, frame_total)`` fired after each frame."""
        self._on_frame.append(callback)

    def on_loop_complete(self, callback: Callable[[int], None]) -> None:
        """Register a callback ``(loops_completed)`` fired after each full pass."""
        self._on_loop_complete.append(callback)

    def on_state_change(self, callback: Callable[[PlaybackState], None]) -> None:
        """Register a callback for state changes."""
        self._on_state_change.append(callback)

    def _notify_frame(self, index: int, total: int) -> None:
        for callback in self._on_frame:
            callback(index, total)

    def _set_state(self, state: PlaybackState) -> None:
        """Set state and notify callbacks."""
        old_state = self._state
        self._state = state
        if old_state != state:
            for callback in self._on_state_change:
                callback(state)


def describe(doc: Document | StreamedDocument, subtitles: SubtitleTrack | None = None) -> str:
    """Human-readable summary of a document."""
    if isinstance(doc, StreamedDocument):
        info = doc.info()
        frame_count, duration, version = info.frame_count, info.total_duration_ms, info.version
        type_name = "ConsoleImageDocument (stream)"
        created = doc.created
    else:
        frame_count, duration, version = doc.frame_count, doc.total_duration_ms, doc.version
        type_name = doc.type_name
        created = doc.created

    settings = doc.settings
    lines = [
        f"Type: {type_name}",
        f"Version: {version}",
        f"Created: {created.isoformat()}",
    ]
    if doc.source_file:
        lines.append(f"Source: {doc.source_file}")
    lines.append(f"Render Mode: {doc.render_mode}")
    lines.append(f"Frames: {frame_count}")
    if frame_count > 1:
        lines.append(f"Duration: {format_time(duration)}")
        lines.append(f"Speed: {settings.animation_speed_multiplier}x")
        loops = "infinite" if settings.loop_count == 0 else str(settings.loop_count)
        lines.append(f"Loop Count: {loops}")
    lines.append(f"Size: {settings.max_width}x{settings.max_height}")
    lines.append(f"Color: {'yes' if settings.use_color else 'no'}")
    lines.append(f"Gamma: {settings.gamma}")
    lines.append(f"Contrast: {settings.contrast_power}")
    if settings.subtitles_enabled:
        lines.append(f"Subtitles: yes (sidecar: {settings.subtitle_file or 'auto-detect'})")
        if settings.subtitle_language:
            lines.append(f"Subtitle Language: {settings.subtitle_language}")
    if subtitles is None and doc.subtitles is not None:
        subtitles = SubtitleTrack.from_data(doc.subtitles)
    if subtitles is not None and subtitles.has_entries:
        lines.append(f"Subtitle Track: {len(subtitles)} entries")
    return "\n".join(lines)

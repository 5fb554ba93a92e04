"""Document playback: player state machine, output sinks and timing helpers."""

from .player import (
    DocumentPlayer,
    PlaybackConfig,
    PlaybackOverrides,
    PlaybackState,
    describe,
)
from .sinks import BufferSink, FrameSink, TerminalSink, build_frame_update
from .timing import Sleeper, effective_delay_ms, event_sleeper, format_time, select_frames

__all__ = [
    'BufferSink',
    'DocumentPlayer',
    'FrameSink',
    'PlaybackConfig',
    'PlaybackOverrides',
    'PlaybackState',
    'Sleeper',
    'TerminalSink',
    'build_frame_update',
    'describe',
    'effective_delay_ms',
    'event_sleeper',
    'format_time',
    'select_frames',
]

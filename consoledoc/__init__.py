"""
ConsoleDoc - Storage and playback of rendered terminal animations
"""

from .config import CodecConfig
from .exceptions import (
    DocumentError,
    DocumentNotFoundError,
    MalformedContainerError,
    MalformedRecordError,
    WriterStateError,
)
from .models import (
    Document,
    DocumentFormat,
    DocumentFrame,
    DocumentInfo,
    EncodedFrame,
    LoadReport,
    OptimizedDocument,
    RenderMode,
    RenderSettings,
    SubtitleEntryData,
    SubtitleTrackData,
)
from .codec import FrameDecoder, FrameEncoder, Palette
from .subtitles import OverlaySource, SubtitleTrack
from .formats import (
    StreamedDocument,
    StreamingDocumentReader,
    StreamingDocumentWriter,
    detect_format,
    load_document,
    open_document,
    read_info,
    save_document,
)
from .playback import (
    BufferSink,
    DocumentPlayer,
    PlaybackOverrides,
    PlaybackState,
    TerminalSink,
)

__version__ = "0.1.0"

__all__ = [
    # Configuration
    "CodecConfig",
    # Errors
    "DocumentError",
    "DocumentNotFoundError",
    "MalformedContainerError",
    "MalformedRecordError",
    "WriterStateError",
    # Data model
    "Document",
    "DocumentFormat",
    "DocumentFrame",
    "DocumentInfo",
    "EncodedFrame",
    "LoadReport",
    "OptimizedDocument",
    "RenderMode",
    "RenderSettings",
    "SubtitleEntryData",
    "SubtitleTrackData",
    # Codec
    "FrameDecoder",
    "FrameEncoder",
    "Palette",
    # Subtitles
    "OverlaySource",
    "SubtitleTrack",
    # Containers
    "StreamedDocument",
    "StreamingDocumentReader",
    "StreamingDocumentWriter",
    "detect_format",
    "load_document",
    "open_document",
    "read_info",
    "save_document",
    # Playback
    "BufferSink",
    "DocumentPlayer",
    "PlaybackOverrides",
    "PlaybackState",
    "TerminalSink",
]

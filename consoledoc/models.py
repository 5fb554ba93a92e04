"""
Data model for console image documents.

A document is a sequence of rendered terminal frames plus the settings that
produced them. It is persisted in one of three physical encodings (see
:mod:`consoledoc.formats`) which all share these models.

JSON field names are camelCase; PascalCase names written by older tools are
accepted on input. Unknown fields are ignored.

Example:
    doc = Document(render_mode="ASCII", settings=RenderSettings(width=80))
    doc.add_frame("Hello", delay_ms=100)
    data = doc.model_dump(by_alias=True, mode='json')
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    AliasGenerator,
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel, to_pascal

from .ansi import strip_ansi, visible_length
from .exceptions import MalformedRecordError

logger = logging.getLogger(__name__)

SCHEMA_CONTEXT = "https://schema.org/"
DOCUMENT_TYPE = "ConsoleImageDocument"
OPTIMIZED_DOCUMENT_TYPE = "OptimizedConsoleImageDocument"
HEADER_TYPE = "ConsoleImageDocumentHeader"
FRAME_TYPE = "Frame"
FOOTER_TYPE = "ConsoleImageDocumentFooter"

DOCUMENT_VERSION = "2.0"
OPTIMIZED_VERSION = "3.1"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _validation_aliases(name: str) -> AliasChoices:
    return AliasChoices(to_camel(name), to_pascal(name), name)


class CamelModel(BaseModel):
    """Base model: camelCase on output, camelCase/PascalCase/snake_case on input."""

    model_config = ConfigDict(
        alias_generator=AliasGenerator(
            validation_alias=_validation_aliases,
            serialization_alias=to_camel,
        ),
        populate_by_name=True,
        extra='ignore',
    )


class RenderMode(str, Enum):
    """Well-known render mode tags. Documents may carry any other string."""

    ASCII = "ASCII"
    COLOR_BLOCKS = "ColorBlocks"
    BRAILLE = "Braille"
    MATRIX = "Matrix"


class DocumentFormat(str, Enum):
    """Physical encoding of a document file."""

    JSON = "json"  # Single document, decoded frames
    OPTIMIZED_JSON = "optimized-json"  # Single document, palette + encoded frames
    STREAM = "ndjson"  # Line-delimited records
    ARCHIVE = "cidz"  # CIDZ header + zstd payload
    LEGACY_ARCHIVE = "gzip"  # gzip payload


class RenderSettings(CamelModel):
    """Render-time settings stored with a document.

    Immutable. Playback changes speed and looping through
    :class:`consoledoc.playback.PlaybackOverrides` instead of editing these.
    """

    model_config = ConfigDict(frozen=True)

    width: Optional[int] = None
    height: Optional[int] = None
    max_width: int = 120
    max_height: int = 60
    character_aspect_ratio: float = 0.5
    contrast_power: float = 2.5
    gamma: float = 0.85
    use_color: bool = True
    invert: bool = True
    character_set_preset: Optional[str] = None
    animation_speed_multiplier: float = 1.0
    loop_count: int = 0  # 0 = loop forever
    enable_temporal_stability: bool = False
    color_stability_threshold: int = 15
    color_count: Optional[int] = None

    # Subtitle metadata
    subtitles_enabled: bool = False
    subtitle_source: Optional[str] = None
    subtitle_language: Optional[str] = None
    subtitle_file: Optional[str] = None

    def with_subtitle_metadata(
        self,
        *,
        source: Optional[str] = None,
        language: Optional[str] = None,
        file: Optional[str] = None,
        enabled: bool = True,
    ) -> 'RenderSettings':
        """Return a copy with subtitle metadata filled in."""
        return self.model_copy(update={
            'subtitles_enabled': enabled,
            'subtitle_source': source,
            'subtitle_language': language,
            'subtitle_file': file,
        })


class SubtitleEntryData(CamelModel):
    """One subtitle cue. Times are milliseconds from the start of playback."""

    index: int = 0
    start_ms: int = 0
    end_ms: int = 0
    text: str = ""


class SubtitleTrackData(CamelModel):
    """Subtitle track embedded in a document or stream header."""

    language: Optional[str] = None
    source_file: Optional[str] = None
    entries: list[SubtitleEntryData] = Field(default_factory=list)


def content_dimensions(content: str) -> tuple[int, int]:
    """Derive (width, height) from rendered content.

    Width is the visible length of the first line, height the number of lines.
    """
    if not content:
        return 0, 0
    lines = content.split("\n")
    return visible_length(lines[0].rstrip("\r")), len(lines)


class DocumentFrame(CamelModel):
    """A decoded frame: fully styled content plus timing and size."""

    content: str = ""
    delay_ms: int = 0
    width: int = 0
    height: int = 0
    subtitle_text: Optional[str] = None

    @field_validator('delay_ms', mode='before')
    @classmethod
    def _non_negative_delay(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and value < 0:
            return 0
        return value

    @classmethod
    def from_content(
        cls, content: str, delay_ms: int = 0, width: int = 0, height: int = 0
    ) -> 'DocumentFrame':
        """Create a frame, deriving dimensions from the content when not given."""
        if width <= 0 or height <= 0:
            derived_w, derived_h = content_dimensions(content)
            width = width if width > 0 else derived_w
            height = height if height > 0 else derived_h
        return cls(content=content, delay_ms=max(0, int(delay_ms)), width=width, height=height)

    @property
    def plain_text(self) -> str:
        """Content without escape sequences."""
        return strip_ansi(self.content)


class EncodedFrame(CamelModel):
    """A frame in optimized form: keyframe or delta against its predecessor.

    Keyframes carry ``characters`` and RLE ``color_indices``; delta frames
    carry ``delta``. ``ref_frame`` (read only) points at an identical earlier
    frame in documents written by tools that deduplicate frames.
    """

    is_keyframe: bool = True
    characters: Optional[str] = None
    color_indices: Optional[str] = None
    delta: Optional[str] = None
    ref_frame: Optional[int] = None
    width: int = 0
    height: int = 0
    delay_ms: int = 0
    subtitle_text: Optional[str] = None

    @field_validator('delay_ms', mode='before')
    @classmethod
    def _non_negative_delay(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and value < 0:
            return 0
        return value


@dataclass
class SkippedRecord:
    """A line of a stream that could not be used."""

    line: int
    reason: str


@dataclass
class LoadReport:
    """How a document was read.

    ``footer_seen`` and ``declared_complete`` only carry information for
    line-delimited streams; single documents always report both as True.
    """

    format: DocumentFormat = DocumentFormat.JSON
    footer_seen: bool = True
    declared_complete: bool = True
    skipped: list[SkippedRecord] = field(default_factory=list)
    sidecar: Optional[str] = None

    @property
    def recovered(self) -> bool:
        """True when the load had to work around truncation or bad records."""
        return bool(self.skipped) or not self.footer_seen or not self.declared_complete

    def skip(self, line: int, reason: str) -> None:
        self.skipped.append(SkippedRecord(line, reason))


class Document(CamelModel):
    """A console image document with decoded frames.

    Serialization format:
    {
        "@context": "https://schema.org/",
        "@type": "ConsoleImageDocument",
        "version": "2.0",
        "created": "2025-01-01T12:00:00Z",
        "sourceFile": "clip.gif",
        "renderMode": "ASCII",
        "settings": {...},
        "frames": [{"content": "...", "delayMs": 100, "width": 80, "height": 24}],
        "subtitles": null
    }
    """

    TYPE_NAME: ClassVar[str] = DOCUMENT_TYPE

    context: str = Field(default=SCHEMA_CONTEXT, alias='@context')
    type_name: Literal["ConsoleImageDocument"] = Field(default=DOCUMENT_TYPE, alias='@type')
    version: str = DOCUMENT_VERSION
    created: datetime = Field(default_factory=_utcnow)
    source_file: Optional[str] = None
    render_mode: str = RenderMode.ASCII.value
    settings: RenderSettings = Field(default_factory=RenderSettings)
    frames: list[DocumentFrame] = Field(default_factory=list)
    subtitles: Optional[SubtitleTrackData] = None

    load_report: Optional[LoadReport] = Field(default=None, exclude=True)

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def is_animated(self) -> bool:
        return len(self.frames) > 1

    @property
    def total_duration_ms(self) -> int:
        return sum(f.delay_ms for f in self.frames)

    def add_frame(self, content: str, delay_ms: int = 0, width: int = 0, height: int = 0) -> DocumentFrame:
        """Append a frame, deriving dimensions from content if needed."""
        frame = DocumentFrame.from_content(content, delay_ms, width, height)
        self.frames.append(frame)
        return frame

    @classmethod
    def migrate(cls, data: dict[str, Any]) -> dict[str, Any]:
        """
        Migrate serialized data from older versions.

        Args:
            data: Serialized document data

        Returns:
            Migrated data at current version
        """
        # Pre-versioned files carried neither a type tag nor a version
        data.setdefault('@type', DOCUMENT_TYPE)
        if 'version' not in data and 'Version' not in data:
            data['version'] = DOCUMENT_VERSION
        # Older writers stored frames as bare content strings
        frames = data.get('frames', data.get('Frames'))
        if isinstance(frames, list):
            data['frames'] = [
                {'content': f} if isinstance(f, str) else f for f in frames
            ]
            data.pop('Frames', None)
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> 'Document':
        return cls.model_validate(cls.migrate(data))

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode='json')


class OptimizedDocument(CamelModel):
    """A document stored with a global palette and keyframe/delta frames."""

    TYPE_NAME: ClassVar[str] = OPTIMIZED_DOCUMENT_TYPE

    type_name: Literal["OptimizedConsoleImageDocument"] = Field(
        default=OPTIMIZED_DOCUMENT_TYPE, alias='@type'
    )
    version: str = OPTIMIZED_VERSION
    created: datetime = Field(default_factory=_utcnow)
    source_file: Optional[str] = None
    render_mode: str = RenderMode.ASCII.value
    settings: RenderSettings = Field(default_factory=RenderSettings)
    palette: list[str] = Field(default_factory=lambda: [""])
    keyframe_interval: int = 30
    frames: list[EncodedFrame] = Field(default_factory=list)
    subtitles: Optional[SubtitleTrackData] = None

    @property
    def frame_count(self) -> int:
        return len(self.frames)

    @property
    def is_animated(self) -> bool:
        return len(self.frames) > 1

    @property
    def total_duration_ms(self) -> int:
        return sum(f.delay_ms for f in self.frames)

    @classmethod
    def from_document(
        cls,
        doc: Document,
        config=None,
        *,
        enable_stability: Optional[bool] = None,
        stability_threshold: Optional[int] = None,
    ) -> 'OptimizedDocument':
        """
        Encode a decoded document into palette + keyframe/delta form.

        Args:
            doc: Source document
            config: CodecConfig, defaults to a fresh instance
            enable_stability: Override the document's temporal stability setting
            stability_threshold: Override the per-channel color threshold

        Returns:
            OptimizedDocument with the same header fields
        """
        from .codec.optimizer import FrameEncoder

        if enable_stability is None:
            enable_stability = doc.settings.enable_temporal_stability
        if stability_threshold is None:
            stability_threshold = doc.settings.color_stability_threshold

        encoder = FrameEncoder(
            config=config,
            enable_stability=enable_stability,
            stability_threshold=stability_threshold,
        )
        frames = []
        for f in doc.frames:
            encoded = encoder.encode(f.content, f.delay_ms, f.width, f.height)
            encoded.subtitle_text = f.subtitle_text
            frames.append(encoded)
        return cls(
            created=doc.created,
            source_file=doc.source_file,
            render_mode=doc.render_mode,
            settings=doc.settings,
            palette=encoder.palette.styles,
            keyframe_interval=encoder.keyframe_interval,
            frames=frames,
            subtitles=doc.subtitles,
        )

    def to_document(self, loop_count: Optional[int] = None) -> Document:
        """
        Reconstruct decoded frames.

        Delta frames without a reconstructable predecessor are skipped.

        Args:
            loop_count: Replace the stored loop count in the returned settings

        Returns:
            Document with decoded frames
        """
        from .codec.optimizer import FrameDecoder
        from .codec.palette import Palette

        decoder = FrameDecoder(Palette(self.palette))
        contents: list[Optional[str]] = []
        frames: list[DocumentFrame] = []

        for i, encoded in enumerate(self.frames):
            ref = encoded.ref_frame
            if ref is not None and 0 <= ref < len(contents) and contents[ref] is not None:
                content = contents[ref]
            else:
                content = decoder.decode(encoded)
            contents.append(content)
            if content is None:
                logger.warning("Skipping frame %d: delta without a preceding keyframe", i)
                continue
            frames.append(DocumentFrame(
                content=content,
                delay_ms=encoded.delay_ms,
                width=encoded.width,
                height=encoded.height,
                subtitle_text=encoded.subtitle_text,
            ))

        settings = self.settings
        if loop_count is not None:
            settings = settings.model_copy(update={'loop_count': loop_count})

        return Document(
            created=self.created,
            source_file=self.source_file,
            render_mode=self.render_mode,
            settings=settings,
            frames=frames,
            subtitles=self.subtitles,
        )

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode='json', exclude_none=True)


# --- Line-delimited stream records ---


class HeaderRecord(CamelModel):
    """First line of a stream: document metadata."""

    context: str = Field(default=SCHEMA_CONTEXT, alias='@context')
    type_name: Literal["ConsoleImageDocumentHeader"] = Field(default=HEADER_TYPE, alias='@type')
    version: str = DOCUMENT_VERSION
    created: datetime = Field(default_factory=_utcnow)
    source_file: Optional[str] = None
    render_mode: str = RenderMode.ASCII.value
    settings: RenderSettings = Field(default_factory=RenderSettings)
    subtitles: Optional[SubtitleTrackData] = None
    optimized: bool = False
    keyframe_interval: Optional[int] = None


class FrameRecord(CamelModel):
    """One frame line, either decoded (``content``) or encoded.

    Encoded records list the palette entries they introduce in
    ``palette_additions``, stored at ``palette_start`` onwards.
    """

    type_name: Literal["Frame"] = Field(default=FRAME_TYPE, alias='@type')
    index: int = 0
    content: Optional[str] = None
    delay_ms: int = 0
    width: int = 0
    height: int = 0
    subtitle_text: Optional[str] = None

    is_keyframe: Optional[bool] = None
    characters: Optional[str] = None
    color_indices: Optional[str] = None
    delta: Optional[str] = None
    palette_start: Optional[int] = None
    palette_additions: Optional[list[str]] = None

    @field_validator('delay_ms', mode='before')
    @classmethod
    def _non_negative_delay(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and value < 0:
            return 0
        return value

    @property
    def is_encoded(self) -> bool:
        return self.content is None

    @classmethod
    def from_encoded(
        cls,
        index: int,
        frame: EncodedFrame,
        palette_start: Optional[int] = None,
        palette_additions: Optional[list[str]] = None,
    ) -> 'FrameRecord':
        return cls(
            index=index,
            delay_ms=frame.delay_ms,
            width=frame.width,
            height=frame.height,
            subtitle_text=frame.subtitle_text,
            is_keyframe=frame.is_keyframe,
            characters=frame.characters,
            color_indices=frame.color_indices,
            delta=frame.delta,
            palette_start=palette_start if palette_additions else None,
            palette_additions=palette_additions or None,
        )

    def to_encoded(self) -> EncodedFrame:
        return EncodedFrame(
            is_keyframe=bool(self.is_keyframe) if self.is_keyframe is not None else self.delta is None,
            characters=self.characters,
            color_indices=self.color_indices,
            delta=self.delta,
            width=self.width,
            height=self.height,
            delay_ms=self.delay_ms,
            subtitle_text=self.subtitle_text,
        )


class FooterRecord(CamelModel):
    """Last line of a gracefully finished stream."""

    type_name: Literal["ConsoleImageDocumentFooter"] = Field(default=FOOTER_TYPE, alias='@type')
    frame_count: int = 0
    total_duration_ms: int = 0
    completed: datetime = Field(default_factory=_utcnow)
    is_complete: bool = True


StreamRecord = Annotated[
    Union[HeaderRecord, FrameRecord, FooterRecord],
    Field(discriminator='type_name'),
]

_RECORD_ADAPTER: TypeAdapter = TypeAdapter(StreamRecord)


def parse_record(line: str | bytes) -> Union[HeaderRecord, FrameRecord, FooterRecord]:
    """
    Parse one stream line into its record type.

    Args:
        line: A single JSON object, with or without trailing newline

    Returns:
        HeaderRecord, FrameRecord or FooterRecord depending on ``@type``

    Raises:
        MalformedRecordError: If the line is not valid JSON or has an unknown type
    """
    try:
        return _RECORD_ADAPTER.validate_json(line)
    except ValidationError as e:
        raise MalformedRecordError(f"Invalid stream record: {e.errors()[0]['msg']}") from e


def dump_record(record: Union[HeaderRecord, FrameRecord, FooterRecord]) -> str:
    """Serialize a record to one compact JSON line (without newline)."""
    return record.model_dump_json(by_alias=True, exclude_none=True)


@dataclass
class DocumentInfo:
    """Document metadata, available without decoding frame content."""

    frame_count: int
    total_duration_ms: int
    render_mode: str
    settings: RenderSettings
    format: DocumentFormat
    version: str = DOCUMENT_VERSION
    source_file: Optional[str] = None
    is_complete: bool = True

    @property
    def is_animated(self) -> bool:
        return self.frame_count > 1

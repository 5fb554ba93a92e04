"""
Line-delimited stream encoding (NDJSON).

Layout, one JSON object per line:
- ConsoleImageDocumentHeader: metadata, written once before any frame
- Frame: one per frame, decoded content or keyframe/delta encoding
- ConsoleImageDocumentFooter: totals, written on finalize

Every line is flushed as soon as it is written and stands on its own, so a
writer killed mid-stream leaves a file that loads with all frames written so
far. A stream without a footer is treated as complete.

Example:
    with StreamingDocumentWriter('clip.ndjson', settings=settings) as writer:
        writer.write_header()
        for content, delay in frames:
            writer.write_frame(content, delay)

    doc = StreamingDocumentReader('clip.ndjson').load()
"""

import io
import logging
import os
import re
from pathlib import Path
from typing import IO, BinaryIO, Iterator, Optional, Union

from ..codec.optimizer import FrameDecoder, FrameEncoder, is_lossless
from ..codec.palette import Palette
from ..config import CodecConfig
from ..exceptions import (
    DocumentNotFoundError,
    MalformedContainerError,
    MalformedRecordError,
    WriterStateError,
)
from ..models import (
    DOCUMENT_VERSION,
    HEADER_TYPE,
    OPTIMIZED_VERSION,
    Document,
    DocumentFormat,
    DocumentFrame,
    DocumentInfo,
    FooterRecord,
    FrameRecord,
    HeaderRecord,
    LoadReport,
    RenderMode,
    RenderSettings,
    SubtitleTrackData,
    content_dimensions,
    dump_record,
    parse_record,
)

logger = logging.getLogger(__name__)

# Matches the key/value pair only; quotes inside JSON string values are escaped
HEADER_PATTERN = re.compile(rb'"@type"\s*:\s*"' + re.escape(HEADER_TYPE.encode('ascii')) + rb'"')


class StreamingDocumentWriter:
    """
    Crash-safe incremental writer for line-delimited documents.

    The file is opened on construction and closed on every exit path when
    used as a context manager. Leaving the block without calling
    finalize() writes a footer whose isComplete flag tells whether the
    block exited normally.

    In optimized mode frames are stored as keyframes/deltas. Each frame
    record carries the palette entries it introduced, so the writer holds
    only the previous frame and the palette. Frames the palette form cannot
    reproduce exactly are stored as plain content records instead.

    Args:
        target: Output path, or an open text stream (not closed by the writer)
        render_mode: Render mode tag stored in the header
        settings: Render settings stored in the header
        source_file: Original media file name
        optimized: Store keyframe/delta records instead of styled content
        config: Codec settings (keyframe interval, delta ratio)
    """

    def __init__(
        self,
        target: Union[str, Path, IO[str]],
        render_mode: str = RenderMode.ASCII.value,
        settings: Optional[RenderSettings] = None,
        source_file: Optional[str] = None,
        *,
        optimized: bool = False,
        config: Optional[CodecConfig] = None,
    ):
        self.config = config or CodecConfig()
        self.render_mode = render_mode
        self.settings = settings or RenderSettings()
        self.source_file = source_file
        self.optimized = optimized
        self.subtitles: Optional[SubtitleTrackData] = None

        if hasattr(target, 'write'):
            self.path = None
            self._file = target
            self._owns_file = False
        else:
            self.path = Path(target)
            self._file = open(self.path, 'w', encoding='utf-8', newline='\n')
            self._owns_file = True

        self._encoder: Optional[FrameEncoder] = None
        if optimized:
            self._encoder = FrameEncoder(
                config=self.config,
                enable_stability=self.settings.enable_temporal_stability,
                stability_threshold=self.settings.color_stability_threshold,
            )

        self._header_written = False
        self._finalized = False
        self._closed = False
        self._frame_count = 0
        self._total_duration_ms = 0

    @property
    def frame_count(self) -> int:
        return self._frame_count

    @property
    def total_duration_ms(self) -> int:
        return self._total_duration_ms

    @property
    def is_finalized(self) -> bool:
        return self._finalized

    def _check_open(self) -> None:
        if self._closed or self._finalized:
            raise WriterStateError('Stream writer is already finalized')

    def _write_line(self, line: str) -> None:
        self._file.write(line)
        self._file.write('\n')
        self._file.flush()

    def set_subtitles(self, subtitles: SubtitleTrackData) -> None:
        """Embed a subtitle track in the header. Must be called before write_header()."""
        if self._header_written:
            raise WriterStateError('Subtitles must be set before the header is written')
        self.subtitles = subtitles

    def set_subtitle_metadata(
        self,
        source: Optional[str] = None,
        language: Optional[str] = None,
        file: Optional[str] = None,
    ) -> None:
        """Record subtitle metadata in the settings. Must be called before write_header()."""
        if self._header_written:
            raise WriterStateError('Subtitle metadata must be set before the header is written')
        self.settings = self.settings.with_subtitle_metadata(
            source=source, language=language, file=file
        )

    def write_header(self) -> None:
        """
        Write the header line.

        Raises:
            WriterStateError: If the header was already written or the writer is closed
        """
        self._check_open()
        if self._header_written:
            raise WriterStateError('Header already written')

        header = HeaderRecord(
            version=OPTIMIZED_VERSION if self.optimized else DOCUMENT_VERSION,
            source_file=self.source_file,
            render_mode=self.render_mode,
            settings=self.settings,
            subtitles=self.subtitles,
            optimized=self.optimized,
            keyframe_interval=self._encoder.keyframe_interval if self._encoder else None,
        )
        self._write_line(dump_record(header))
        self._header_written = True

    def write_frame(
        self,
        content: str,
        delay_ms: int,
        width: int = 0,
        height: int = 0,
        subtitle_text: Optional[str] = None,
    ) -> None:
        """
        Append one frame line and flush it.

        Width and height are derived from the content when passed as 0.
        ``subtitle_text`` is stored with the frame as its fixed overlay.

        Raises:
            WriterStateError: If the header has not been written or the writer is finalized
        """
        self._check_open()
        if not self._header_written:
            raise WriterStateError('write_header() must be called before write_frame()')

        if width <= 0 or height <= 0:
            derived_w, derived_h = content_dimensions(content)
            width = width if width > 0 else derived_w
            height = height if height > 0 else derived_h
        delay_ms = max(0, int(delay_ms))
        index = self._frame_count

        if self._encoder is not None and not is_lossless(content):
            logger.debug('Frame %d does not survive palette encoding, storing content', index)
            record = FrameRecord(
                index=index, content=content, delay_ms=delay_ms, width=width, height=height,
                subtitle_text=subtitle_text,
            )
        elif self._encoder is not None:
            palette = self._encoder.palette
            start = len(palette)
            encoded = self._encoder.encode(content, delay_ms, width, height)
            encoded.subtitle_text = subtitle_text
            additions = palette.styles[start:]
            record = FrameRecord.from_encoded(index, encoded, start, additions)
        else:
            record = FrameRecord(
                index=index, content=content, delay_ms=delay_ms, width=width, height=height,
                subtitle_text=subtitle_text,
            )

        self._write_line(dump_record(record))
        self._frame_count += 1
        self._total_duration_ms += delay_ms

    def finalize(self, completed: bool = True) -> None:
        """
        Write the footer and mark the stream finished. Repeated calls are no-ops.

        Args:
            completed: Whether the producer finished normally
        """
        if self._finalized or self._closed:
            return
        if not self._header_written:
            self.write_header()

        footer = FooterRecord(
            frame_count=self._frame_count,
            total_duration_ms=self._total_duration_ms,
            is_complete=completed,
        )
        self._write_line(dump_record(footer))
        self._finalized = True
        logger.debug(
            'Finalized stream with %d frames (%d ms, complete=%s)',
            self._frame_count, self._total_duration_ms, completed,
        )

    def close(self) -> None:
        """Close the file without writing a footer."""
        if self._closed:
            return
        self._closed = True
        if self._owns_file:
            self._file.close()
        else:
            self._file.flush()

    def __enter__(self) -> 'StreamingDocumentWriter':
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        try:
            if not self._finalized and not self._closed:
                self.finalize(completed=exc_type is None)
        finally:
            self.close()


def write_stream(
    doc: Document,
    target: Union[str, Path, IO[str]],
    *,
    optimized: bool = False,
    config: Optional[CodecConfig] = None,
) -> None:
    """Write a whole document as a line-delimited stream."""
    with StreamingDocumentWriter(
        target,
        render_mode=doc.render_mode,
        settings=doc.settings,
        source_file=doc.source_file,
        optimized=optimized,
        config=config,
    ) as writer:
        if doc.subtitles is not None:
            writer.set_subtitles(doc.subtitles)
        writer.write_header()
        for frame in doc.frames:
            writer.write_frame(
                frame.content, frame.delay_ms, frame.width, frame.height, frame.subtitle_text
            )


def dumps_stream(doc: Document, *, optimized: bool = False, config: Optional[CodecConfig] = None) -> str:
    """Serialize a document to line-delimited text."""
    buffer = io.StringIO()
    write_stream(doc, buffer, optimized=optimized, config=config)
    return buffer.getvalue()


def looks_like_stream(first_line: bytes) -> bool:
    """Check whether a first line carries the stream header type."""
    return HEADER_PATTERN.search(first_line) is not None


class StreamingDocumentReader:
    """
    Reader for line-delimited documents.

    Frames are produced lazily, one record at a time. Each call to
    iter_frames() reopens the source, so iteration can be restarted.

    Malformed lines are skipped and logged. After a skipped line, delta
    frames are dropped until the next keyframe since their predecessor
    may be the lost line.

    Args:
        path: Stream file path
        data: In-memory stream bytes (used for archive payloads) instead of a path
        config: Codec settings
    """

    def __init__(
        self,
        path: Union[str, Path, None] = None,
        *,
        data: Optional[bytes] = None,
        config: Optional[CodecConfig] = None,
    ):
        if (path is None) == (data is None):
            raise ValueError('Pass exactly one of path or data')
        self.path = Path(path) if path is not None else None
        self._data = data
        self.config = config or CodecConfig()
        if self.path is not None and not self.path.is_file():
            raise DocumentNotFoundError(self.path)
        self._header: Optional[HeaderRecord] = None

    @classmethod
    def from_text(cls, text: str, config: Optional[CodecConfig] = None) -> 'StreamingDocumentReader':
        return cls(data=text.encode('utf-8'), config=config)

    def _open(self) -> BinaryIO:
        if self._data is not None:
            return io.BytesIO(self._data)
        return open(self.path, 'rb')

    def iter_records(self, report: Optional[LoadReport] = None) -> Iterator[tuple[int, object]]:
        """
        Yield (line number, record) for every parseable line.

        Unparseable lines are logged, added to the report and yielded as
        (line number, None) so callers can react to the gap.
        """
        with self._open() as stream:
            for line_no, raw in enumerate(stream, start=1):
                line = raw.strip()
                if not line:
                    continue
                try:
                    yield line_no, parse_record(line)
                except MalformedRecordError as e:
                    truncated = not raw.endswith(b'\n')
                    reason = 'truncated record' if truncated else str(e)
                    logger.warning('Skipping line %d of %s: %s', line_no, self.name, reason)
                    if report is not None:
                        report.skip(line_no, reason)
                    yield line_no, None

    @property
    def name(self) -> str:
        return str(self.path) if self.path is not None else '<memory>'

    def read_header(self) -> HeaderRecord:
        """
        Read the header record.

        Raises:
            MalformedContainerError: If the first record is not a valid header
        """
        if self._header is not None:
            return self._header
        with self._open() as stream:
            for line_no, raw in enumerate(stream, start=1):
                line = raw.strip()
                if not line:
                    continue
                try:
                    record = parse_record(line)
                except MalformedRecordError as e:
                    raise MalformedContainerError(
                        f'Invalid stream header in {self.name}: {e}', offset=0, record=line_no
                    ) from e
                if not isinstance(record, HeaderRecord):
                    raise MalformedContainerError(
                        f'Stream {self.name} does not start with a header', offset=0, record=line_no
                    )
                self._header = record
                return record
        raise MalformedContainerError(f'Empty stream: {self.name}', offset=0)

    def iter_frames(self, report: Optional[LoadReport] = None) -> Iterator[DocumentFrame]:
        """
        Lazily decode frames in order.

        Args:
            report: Optional LoadReport updated with skipped lines and footer state

        Yields:
            DocumentFrame for every reconstructable frame record
        """
        self.read_header()
        palette = Palette()
        decoder = FrameDecoder(palette)
        seen_header = False
        if report is not None:
            report.footer_seen = False
            report.declared_complete = True

        for line_no, record in self.iter_records(report):
            if record is None:
                decoder.reset()
                continue
            if isinstance(record, HeaderRecord):
                if seen_header:
                    logger.warning('Ignoring repeated header on line %d of %s', line_no, self.name)
                seen_header = True
                continue
            if isinstance(record, FooterRecord):
                if report is not None:
                    report.footer_seen = True
                    report.declared_complete = record.is_complete
                continue

            if not record.is_encoded:
                yield DocumentFrame(
                    content=record.content,
                    delay_ms=record.delay_ms,
                    width=record.width,
                    height=record.height,
                    subtitle_text=record.subtitle_text,
                )
                continue

            if record.palette_additions:
                palette.place(record.palette_start or len(palette), record.palette_additions)
            content = decoder.decode(record.to_encoded())
            if content is None:
                reason = 'delta frame without a preceding keyframe'
                logger.warning('Skipping frame %d on line %d of %s: %s',
                               record.index, line_no, self.name, reason)
                if report is not None:
                    report.skip(line_no, reason)
                continue
            yield DocumentFrame(
                content=content,
                delay_ms=record.delay_ms,
                width=record.width,
                height=record.height,
                subtitle_text=record.subtitle_text,
            )

    def load(self, report: Optional[LoadReport] = None) -> Document:
        """Read the whole stream into a Document."""
        header = self.read_header()
        report = report or LoadReport(format=DocumentFormat.STREAM)
        frames = list(self.iter_frames(report))

        if not report.footer_seen:
            logger.warning('Stream %s has no footer, loaded %d frames', self.name, len(frames))
        elif not report.declared_complete:
            logger.warning('Stream %s was interrupted while writing (%d frames)', self.name, len(frames))

        return Document(
            created=header.created,
            source_file=header.source_file,
            render_mode=header.render_mode,
            settings=header.settings,
            frames=frames,
            subtitles=header.subtitles,
            load_report=report,
        )

    def _read_footer(self) -> Optional[FooterRecord]:
        if self.path is not None:
            size = os.path.getsize(self.path)
            with open(self.path, 'rb') as f:
                f.seek(max(0, size - self.config.TAIL_READ_BYTES))
                tail = f.read()
        else:
            tail = self._data[-self.config.TAIL_READ_BYTES:]

        lines = [line for line in tail.splitlines() if line.strip()]
        if not lines:
            return None
        try:
            record = parse_record(lines[-1])
        except MalformedRecordError:
            return None
        return record if isinstance(record, FooterRecord) else None

    def read_info(self) -> DocumentInfo:
        """
        Read document metadata without reconstructing frame content.

        Uses the footer when present (only the file tail is read), otherwise
        scans the records.
        """
        header = self.read_header()
        footer = self._read_footer()

        if footer is not None:
            frame_count = footer.frame_count
            duration = footer.total_duration_ms
            complete = footer.is_complete
        else:
            frame_count = 0
            duration = 0
            complete = True
            has_predecessor = False
            for _, record in self.iter_records():
                if record is None:
                    has_predecessor = False
                    continue
                if not isinstance(record, FrameRecord):
                    continue
                if record.is_encoded and not record.to_encoded().is_keyframe and not has_predecessor:
                    continue
                has_predecessor = True
                frame_count += 1
                duration += record.delay_ms

        return DocumentInfo(
            frame_count=frame_count,
            total_duration_ms=duration,
            render_mode=header.render_mode,
            settings=header.settings,
            format=DocumentFormat.STREAM,
            version=header.version,
            source_file=header.source_file,
            is_complete=complete,
        )


class StreamedDocument:
    """
    A line-delimited document opened for lazy playback.

    Header fields are available immediately; frames are decoded on
    iteration, one at a time. Iterating again restarts from the first frame.
    """

    def __init__(self, reader: StreamingDocumentReader):
        self.reader = reader
        self.header = reader.read_header()
        self.load_report = LoadReport(format=DocumentFormat.STREAM)

    @property
    def render_mode(self) -> str:
        return self.header.render_mode

    @property
    def settings(self) -> RenderSettings:
        return self.header.settings

    @property
    def source_file(self) -> Optional[str]:
        return self.header.source_file

    @property
    def subtitles(self) -> Optional[SubtitleTrackData]:
        return self.header.subtitles

    @property
    def created(self):
        return self.header.created

    def __iter__(self) -> Iterator[DocumentFrame]:
        self.load_report = LoadReport(format=DocumentFormat.STREAM)
        return self.reader.iter_frames(self.load_report)

    def info(self) -> DocumentInfo:
        return self.reader.read_info()

    def load(self) -> Document:
        """Materialize all frames."""
        return self.reader.load()

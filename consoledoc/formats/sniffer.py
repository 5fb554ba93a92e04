"""
Format detection and the top-level load/save API.

Detection looks only at file content, never at the extension:

1. "CIDZ" magic -> CIDZ archive (zstd or Brotli payload)
2. 1F 8B -> legacy gzip archive
3. First line carries the stream header type -> line-delimited stream
4. Anything else -> single JSON document

Archive checks come first since compressed bytes can look like text.
Archive payloads go through steps 3-4 after decompression.
"""

import io
import logging
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from ..config import CodecConfig
from ..exceptions import DocumentNotFoundError, MalformedContainerError
from ..models import Document, DocumentFormat, DocumentInfo, LoadReport, OptimizedDocument
from ..subtitles import parse_vtt
from . import archive, json_document
from .streaming import StreamedDocument, StreamingDocumentReader, looks_like_stream, write_stream

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

STREAM_EXTENSIONS = ('.ndjson', '.jsonl')


def _check_exists(path: PathLike) -> Path:
    path = Path(path)
    if not path.is_file():
        raise DocumentNotFoundError(path)
    return path


def detect_payload(data: bytes) -> DocumentFormat:
    """Tell a line-delimited stream from a single JSON document."""
    first_line = io.BytesIO(data).readline()
    if looks_like_stream(first_line):
        return DocumentFormat.STREAM
    return DocumentFormat.JSON


def detect_format(path: PathLike, config: Optional[CodecConfig] = None) -> DocumentFormat:
    """
    Detect the physical encoding of a file from its leading bytes.

    Args:
        path: File to inspect
        config: Codec settings (prefix size)

    Returns:
        DocumentFormat of the outer container

    Raises:
        DocumentNotFoundError: If the file does not exist
        MalformedContainerError: If the file is empty
    """
    config = config or CodecConfig()
    path = _check_exists(path)
    with open(path, 'rb') as f:
        prefix = f.read(config.SNIFF_PREFIX_BYTES)
        if not prefix:
            raise MalformedContainerError(f'Empty file: {path}', offset=0)
        if archive.is_cidz(prefix):
            return DocumentFormat.ARCHIVE
        if archive.is_gzip(prefix):
            return DocumentFormat.LEGACY_ARCHIVE
        f.seek(0)
        if looks_like_stream(f.readline()):
            return DocumentFormat.STREAM
    return DocumentFormat.JSON


def _load_payload(text: bytes, config: CodecConfig) -> Document:
    if detect_payload(text) == DocumentFormat.STREAM:
        return StreamingDocumentReader(data=text, config=config).load()
    return json_document.loads(json_document.decode_text(text))


def _attach_sidecar(doc: Document, sidecar: Optional[str]) -> None:
    if not sidecar:
        return
    if doc.subtitles is None:
        track = parse_vtt(sidecar)
        if track.entries:
            doc.subtitles = track
    else:
        logger.debug('Document already embeds subtitles, keeping them over the sidecar')


def load_document(path: PathLike, config: Optional[CodecConfig] = None) -> Document:
    """
    Load a document of any encoding.

    Args:
        path: Document file
        config: Codec settings

    Returns:
        Document with all frames decoded and a LoadReport attached

    Raises:
        DocumentNotFoundError: If the file does not exist
        MalformedContainerError: If the container cannot be read
    """
    config = config or CodecConfig()
    fmt = detect_format(path, config)

    if fmt == DocumentFormat.STREAM:
        doc = StreamingDocumentReader(path, config=config).load()
    elif fmt == DocumentFormat.JSON:
        doc = json_document.load(path)
    else:
        payload = archive.read_archive(Path(path).read_bytes())
        doc = _load_payload(payload.text, config)
        _attach_sidecar(doc, payload.sidecar)
        doc.load_report.format = fmt
        doc.load_report.sidecar = payload.sidecar

    report = doc.load_report
    if report is not None and report.recovered:
        logger.warning('Recovered %s: %d frames, %d skipped records, footer=%s',
                       path, doc.frame_count, len(report.skipped), report.footer_seen)
    return doc


def open_document(
    path: PathLike, config: Optional[CodecConfig] = None
) -> Union[StreamedDocument, Document]:
    """
    Open a document for playback.

    Line-delimited streams (plain or inside an archive) are returned as a
    StreamedDocument that decodes frames lazily; other encodings are loaded
    fully.
    """
    config = config or CodecConfig()
    fmt = detect_format(path, config)

    if fmt == DocumentFormat.STREAM:
        return StreamedDocument(StreamingDocumentReader(path, config=config))
    if fmt in (DocumentFormat.ARCHIVE, DocumentFormat.LEGACY_ARCHIVE):
        payload = archive.read_archive(Path(path).read_bytes())
        if detect_payload(payload.text) == DocumentFormat.STREAM and not payload.sidecar:
            return StreamedDocument(StreamingDocumentReader(data=payload.text, config=config))
    return load_document(path, config)


def _info_from_json(data: dict, fmt: DocumentFormat) -> DocumentInfo:
    try:
        if json_document.is_optimized(data):
            data.setdefault('@type', OptimizedDocument.TYPE_NAME)
            doc = OptimizedDocument.model_validate(data)
            fmt = DocumentFormat.OPTIMIZED_JSON if fmt == DocumentFormat.JSON else fmt
        else:
            doc = Document.from_dict(data)
    except ValidationError as e:
        raise MalformedContainerError(f'Invalid document structure: {e.errors()[0]["msg"]}') from e

    return DocumentInfo(
        frame_count=doc.frame_count,
        total_duration_ms=doc.total_duration_ms,
        render_mode=doc.render_mode,
        settings=doc.settings,
        format=fmt,
        version=doc.version,
        source_file=doc.source_file,
    )


def read_info(path: PathLike, config: Optional[CodecConfig] = None) -> DocumentInfo:
    """
    Read frame count, duration, render mode and settings.

    Line-delimited streams are not materialized: the footer is used when
    present, otherwise records are scanned without rebuilding content.
    Optimized documents are counted without decoding frames.
    """
    config = config or CodecConfig()
    fmt = detect_format(path, config)

    if fmt == DocumentFormat.STREAM:
        return StreamingDocumentReader(path, config=config).read_info()

    if fmt == DocumentFormat.JSON:
        text = json_document.decode_text(Path(path).read_bytes())
        return _info_from_json(json_document.parse_json(text), fmt)

    payload = archive.read_archive(Path(path).read_bytes())
    if detect_payload(payload.text) == DocumentFormat.STREAM:
        info = StreamingDocumentReader(data=payload.text, config=config).read_info()
        info.format = fmt
        return info
    return _info_from_json(json_document.parse_json(json_document.decode_text(payload.text)), fmt)


def format_for_path(path: PathLike, config: Optional[CodecConfig] = None) -> DocumentFormat:
    """Pick an encoding from a file name when saving."""
    config = config or CodecConfig()
    name = Path(path).name.lower()
    if name.endswith(tuple(config.LEGACY_ARCHIVE_EXTENSIONS)):
        return DocumentFormat.LEGACY_ARCHIVE
    if name.endswith(tuple(config.ARCHIVE_EXTENSIONS)):
        return DocumentFormat.ARCHIVE
    if name.endswith(STREAM_EXTENSIONS):
        return DocumentFormat.STREAM
    return DocumentFormat.JSON


def save_document(
    doc: Document,
    path: PathLike,
    format: Optional[DocumentFormat] = None,
    *,
    optimized: bool = False,
    config: Optional[CodecConfig] = None,
) -> DocumentFormat:
    """
    Save a document in the requested encoding.

    Args:
        doc: Document to save
        path: Output file
        format: Encoding; chosen from the extension when None
        optimized: Use palette + keyframe/delta frames for JSON and stream
            encodings (archives are optimized unless a frame would not
            come back unchanged)
        config: Codec settings

    Returns:
        The encoding that was written
    """
    config = config or CodecConfig()
    fmt = format or format_for_path(path, config)

    if fmt == DocumentFormat.ARCHIVE:
        archive.write_archive(doc, path, config=config)
    elif fmt == DocumentFormat.LEGACY_ARCHIVE:
        archive.write_archive(doc, path, legacy=True, config=config)
    elif fmt == DocumentFormat.STREAM:
        write_stream(doc, path, optimized=optimized, config=config)
    elif fmt == DocumentFormat.OPTIMIZED_JSON:
        json_document.save(doc, path, optimized=True, config=config)
    else:
        json_document.save(doc, path, optimized=optimized, config=config)
    return fmt

"""Physical document encodings: single JSON, line-delimited stream, compressed archive."""

from .archive import read_archive, write_archive
from .json_document import dumps, loads
from .sniffer import (
    detect_format,
    format_for_path,
    load_document,
    open_document,
    read_info,
    save_document,
)
from .streaming import (
    StreamedDocument,
    StreamingDocumentReader,
    StreamingDocumentWriter,
    dumps_stream,
    write_stream,
)

__all__ = [
    'StreamedDocument',
    'StreamingDocumentReader',
    'StreamingDocumentWriter',
    'detect_format',
    'dumps',
    'dumps_stream',
    'format_for_path',
    'load_document',
    'loads',
    'open_document',
    'read_archive',
    'read_info',
    'save_document',
    'write_archive',
    'write_stream',
]

"""
Single JSON document encoding.

The whole document is one JSON object, either:
- ConsoleImageDocument: decoded frames with styled content
- OptimizedConsoleImageDocument: global palette + keyframe/delta frames

The two are told apart by their "@type" field.
"""

import json
import logging
from pathlib import Path
from typing import Any, Optional, Union

from pydantic import ValidationError

from ..config import CodecConfig
from ..exceptions import DocumentNotFoundError, MalformedContainerError
from ..models import (
    DOCUMENT_TYPE,
    OPTIMIZED_DOCUMENT_TYPE,
    Document,
    DocumentFormat,
    LoadReport,
    OptimizedDocument,
)

logger = logging.getLogger(__name__)


def _type_tag(data: dict[str, Any]) -> Optional[str]:
    return data.get('@type')


def is_optimized(data: dict[str, Any]) -> bool:
    """Check whether parsed JSON holds an optimized document."""
    if _type_tag(data) == OPTIMIZED_DOCUMENT_TYPE:
        return True
    # Untagged optimized documents still carry a palette
    return _type_tag(data) is None and ('palette' in data or 'Palette' in data)


def decode_text(data: bytes) -> str:
    """
    Decode UTF-8 document bytes.

    Raises:
        MalformedContainerError: At the offset of the first invalid byte
    """
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise MalformedContainerError('Document is not UTF-8 text', offset=e.start) from e


def parse_json(text: str) -> dict[str, Any]:
    """
    Parse document JSON text into a dictionary.

    Raises:
        MalformedContainerError: If the text is not a JSON object
    """
    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedContainerError(f'Invalid JSON document: {e.msg}', offset=e.pos) from e
    if not isinstance(data, dict):
        raise MalformedContainerError('Invalid JSON document: expected an object', offset=0)
    return data


def document_from_dict(data: dict[str, Any]) -> Document:
    """
    Build a Document from parsed JSON, decoding optimized frames if needed.

    Args:
        data: Parsed JSON object

    Returns:
        Document with decoded frames and a LoadReport attached

    Raises:
        MalformedContainerError: If the object does not match either schema
    """
    tag = _type_tag(data)
    if tag not in (None, DOCUMENT_TYPE, OPTIMIZED_DOCUMENT_TYPE):
        raise MalformedContainerError(f'Unknown document type: {tag!r}')

    try:
        if is_optimized(data):
            data.setdefault('@type', OPTIMIZED_DOCUMENT_TYPE)
            doc = OptimizedDocument.model_validate(data).to_document()
            fmt = DocumentFormat.OPTIMIZED_JSON
        else:
            doc = Document.from_dict(data)
            fmt = DocumentFormat.JSON
    except ValidationError as e:
        raise MalformedContainerError(f'Invalid document structure: {e.errors()[0]["msg"]}') from e

    doc.load_report = LoadReport(format=fmt)
    return doc


def loads(text: str) -> Document:
    """Load a document from JSON text."""
    return document_from_dict(parse_json(text))


def dumps(
    doc: Document,
    *,
    optimized: bool = False,
    config: Optional[CodecConfig] = None,
) -> str:
    """
    Serialize a document to compact JSON text.

    Args:
        doc: Document to serialize
        optimized: Store palette + keyframe/delta frames instead of styled content
        config: Codec settings for the optimized form

    Returns:
        JSON text
    """
    if optimized:
        data = OptimizedDocument.from_document(doc, config).to_dict()
    else:
        data = doc.to_dict()
    return json.dumps(data, ensure_ascii=False, separators=(',', ':'))


def load(path: Union[str, Path]) -> Document:
    """
    Load a single JSON document file.

    Args:
        path: Path to the .json file

    Returns:
        Document instance

    Raises:
        DocumentNotFoundError: If the file does not exist
        MalformedContainerError: If the file is not a valid document
    """
    path = Path(path)
    if not path.is_file():
        raise DocumentNotFoundError(path)
    return loads(decode_text(path.read_bytes()))


def save(
    doc: Document,
    path: Union[str, Path],
    *,
    optimized: bool = False,
    config: Optional[CodecConfig] = None,
) -> None:
    """Save a document as a single JSON file."""
    text = dumps(doc, optimized=optimized, config=config)
    Path(path).write_text(text, encoding='utf-8')
    logger.debug('Saved %d frames to %s', doc.frame_count, path)


def is_valid(path: Union[str, Path]) -> bool:
    """
    Check if a file is a loadable single JSON document.

    Args:
        path: Path to file

    Returns:
        True if the file parses as a document
    """
    try:
        load(path)
        return True
    except (OSError, MalformedContainerError):
        return False

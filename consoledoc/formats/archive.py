"""
Compressed archive encoding.

Three archive layouts are understood:

- CIDZ v3 (written by default):
    [b"CIDZ" 4B][version 1B][flags 1B][zstd(payload)]
- CIDZ v2 (read only): same header with a Brotli payload
- Legacy gzip: a plain gzip stream of the payload (starts with 1F 8B)

The payload is a single JSON document or a line-delimited stream as UTF-8,
optionally followed by a NUL byte and a WebVTT subtitle sidecar. Flag bit
0x01 marks a CIDZ payload that carries a sidecar. JSON never contains a raw
NUL byte, so the payload is split at the first one.
"""

import gzip
import logging
import zlib
from pathlib import Path
from typing import NamedTuple, Optional, Union

import brotli
import zstandard as zstd

from ..codec.optimizer import is_lossless
from ..config import CodecConfig
from ..exceptions import MalformedContainerError
from ..models import Document
from ..subtitles import to_vtt
from . import json_document
from .streaming import dumps_stream

logger = logging.getLogger(__name__)

CIDZ_MAGIC = b'CIDZ'
CIDZ_VERSION = 3  # zstd payload
CIDZ_BROTLI_VERSION = 2
CIDZ_HEADER_SIZE = 6
FLAG_HAS_SUBTITLES = 0x01
GZIP_MAGIC = b'\x1f\x8b'
SIDECAR_SEPARATOR = b'\x00'


class ArchivePayload(NamedTuple):
    """Decompressed archive contents."""

    text: bytes  # Primary JSON or NDJSON payload
    sidecar: Optional[str]  # WebVTT text, if present
    legacy: bool  # True for gzip archives


def is_cidz(prefix: bytes) -> bool:
    return prefix[:4] == CIDZ_MAGIC


def is_gzip(prefix: bytes) -> bool:
    return prefix[:2] == GZIP_MAGIC


def split_sidecar(payload: bytes) -> tuple[bytes, Optional[str]]:
    """Split a payload into primary text and sidecar at the first NUL byte."""
    primary, sep, sidecar = payload.partition(SIDECAR_SEPARATOR)
    if not sep:
        return payload, None
    return primary, sidecar.decode('utf-8', errors='replace')


def build_payload(
    doc: Document,
    *,
    stream: bool = False,
    optimized: bool = True,
    include_subtitles: bool = True,
    config: Optional[CodecConfig] = None,
) -> tuple[bytes, bool]:
    """
    Serialize a document into archive payload bytes.

    Args:
        doc: Document to serialize
        stream: Use the line-delimited encoding instead of a single JSON document
        optimized: Store palette + keyframe/delta frames
        include_subtitles: Append the document's subtitle track as a WebVTT sidecar
        config: Codec settings

    Returns:
        Tuple of (payload bytes, whether a sidecar was appended)

    A single document falls back to decoded frames when any frame would not
    come back unchanged from the optimized form. Streams make that choice per
    frame in the writer.
    """
    if optimized and not stream and not all(is_lossless(f.content) for f in doc.frames):
        logger.debug('Frame content does not survive palette encoding, storing decoded frames')
        optimized = False

    if stream:
        text = dumps_stream(doc, optimized=optimized, config=config)
    else:
        text = json_document.dumps(doc, optimized=optimized, config=config)
    payload = text.encode('utf-8')

    has_sidecar = bool(include_subtitles and doc.subtitles is not None and doc.subtitles.entries)
    if has_sidecar:
        payload += SIDECAR_SEPARATOR + to_vtt(doc.subtitles).encode('utf-8')
    return payload, has_sidecar


def write_archive(
    doc: Document,
    path: Union[str, Path],
    *,
    legacy: bool = False,
    stream: bool = False,
    optimized: bool = True,
    include_subtitles: bool = True,
    config: Optional[CodecConfig] = None,
) -> None:
    """
    Save a document as a compressed archive.

    Args:
        doc: Document to save
        path: Output path (.cidz, .cid.zst, or .cid.gz for legacy)
        legacy: Write a gzip archive instead of CIDZ/zstd
        stream: Use the line-delimited encoding as payload
        optimized: Store palette + keyframe/delta frames
        include_subtitles: Append the subtitle track as a WebVTT sidecar
        config: Codec settings (compression levels, keyframe interval)
    """
    config = config or CodecConfig()
    payload, has_sidecar = build_payload(
        doc, stream=stream, optimized=optimized,
        include_subtitles=include_subtitles, config=config,
    )

    if legacy:
        data = gzip.compress(payload, compresslevel=config.GZIP_LEVEL)
    else:
        compressor = zstd.ZstdCompressor(level=config.ZSTD_LEVEL)
        flags = FLAG_HAS_SUBTITLES if has_sidecar else 0
        data = CIDZ_MAGIC + bytes([CIDZ_VERSION, flags]) + compressor.compress(payload)

    Path(path).write_bytes(data)
    logger.debug('Wrote %s archive %s (%d -> %d bytes)',
                 'gzip' if legacy else 'CIDZ', path, len(payload), len(data))


def read_cidz(data: bytes) -> ArchivePayload:
    """
    Decompress a CIDZ archive.

    Raises:
        MalformedContainerError: On a truncated header, unknown version or corrupt payload
    """
    if len(data) < CIDZ_HEADER_SIZE:
        raise MalformedContainerError('Truncated CIDZ header', offset=len(data))
    version = data[4]
    flags = data[5]

    if version == CIDZ_VERSION:
        try:
            payload = zstd.ZstdDecompressor().decompressobj().decompress(data[CIDZ_HEADER_SIZE:])
        except zstd.ZstdError as e:
            raise MalformedContainerError(f'Corrupt CIDZ payload: {e}', offset=CIDZ_HEADER_SIZE) from e
    elif version == CIDZ_BROTLI_VERSION:
        try:
            payload = brotli.decompress(data[CIDZ_HEADER_SIZE:])
        except brotli.error as e:
            raise MalformedContainerError(f'Corrupt CIDZ payload: {e}', offset=CIDZ_HEADER_SIZE) from e
    else:
        raise MalformedContainerError(f'Unsupported CIDZ version {version}', offset=4)

    if flags & FLAG_HAS_SUBTITLES:
        text, sidecar = split_sidecar(payload)
    else:
        text, sidecar = payload, None
    return ArchivePayload(text, sidecar, legacy=False)


def read_gzip(data: bytes) -> ArchivePayload:
    """
    Decompress a legacy gzip archive.

    Raises:
        MalformedContainerError: If the gzip stream is corrupt
    """
    try:
        payload = gzip.decompress(data)
    except (OSError, EOFError, zlib.error) as e:
        raise MalformedContainerError(f'Corrupt gzip archive: {e}', offset=0) from e
    text, sidecar = split_sidecar(payload)
    return ArchivePayload(text, sidecar, legacy=True)


def read_archive(data: bytes) -> ArchivePayload:
    """
    Decompress archive bytes of either family.

    Raises:
        MalformedContainerError: If the bytes are not an archive
    """
    if is_cidz(data):
        return read_cidz(data)
    if is_gzip(data):
        return read_gzip(data)
    raise MalformedContainerError('Not a CIDZ or gzip archive', offset=0)

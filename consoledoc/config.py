"""Codec configuration."""

from pydantic_settings import BaseSettings


class CodecConfig(BaseSettings):
    """Settings for encoding, archiving and reading documents.

    Values can be overridden with ``CONSOLEDOC_*`` environment variables,
    e.g. ``CONSOLEDOC_KEYFRAME_INTERVAL=60``.
    """

    # Frame optimization
    KEYFRAME_INTERVAL: int = 30  # Full frame every N frames
    DELTA_KEYFRAME_RATIO: float = 0.6  # Delta larger than this share of a keyframe -> keyframe

    # Archive settings
    ZSTD_LEVEL: int = 3
    GZIP_LEVEL: int = 6
    ARCHIVE_EXTENSIONS: tuple[str, ...] = (".cidz", ".cid.zst")
    LEGACY_ARCHIVE_EXTENSIONS: tuple[str, ...] = (".cid.gz",)

    # Reading
    SNIFF_PREFIX_BYTES: int = 6
    TAIL_READ_BYTES: int = 4096  # Bytes read from the end of a stream to find the footer

    model_config = {"env_prefix": "CONSOLEDOC_"}

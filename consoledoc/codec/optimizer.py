"""
Frame optimizer: converts styled frames to keyframe/delta form and back.

FrameEncoder keeps only the previous frame and the palette, so encoding is
O(1) in the number of frames and can feed a streaming writer directly.
FrameDecoder mirrors it for readers.
"""

from __future__ import annotations

import logging
from typing import Sequence

import numpy as np

from ..ansi import build_ansi, parse_ansi
from ..config import CodecConfig
from ..models import EncodedFrame
from .delta import apply_delta, decode_delta, diff, encode_delta
from .palette import Palette
from .rle import decode_rle_into, encode_rle

logger = logging.getLogger(__name__)


def _hex_rgb(style: str) -> tuple[int, int, int] | None:
    if len(style) != 6:
        return None
    try:
        return int(style[0:2], 16), int(style[2:4], 16), int(style[4:6], 16)
    except ValueError:
        return None


def stabilize_colors(styles: list[str], previous: Sequence[str], threshold: int) -> list[str]:
    """Reuse previous colors that differ from the new ones only slightly.

    A position keeps its previous 24-bit color when every channel differs by
    at most ``threshold``. Empty, 256-color and background styles are left
    untouched. This removes color jitter that would otherwise defeat delta
    encoding.
    """
    result = list(styles)
    for i, (cur, prev) in enumerate(zip(styles, previous)):
        if cur == prev or not cur or not prev:
            continue
        a = _hex_rgb(cur)
        b = _hex_rgb(prev)
        if a is None or b is None:
            continue
        if all(abs(x - y) <= threshold for x, y in zip(a, b)):
            result[i] = prev
    return result


def is_lossless(content: str) -> bool:
    """Check whether the palette form rebuilds ``content`` exactly.

    Only content written with truecolor or 256-color SGR codes, resets before
    newlines and a single trailing reset survives encoding unchanged. Bold,
    16-color codes, cursor sequences or redundant resets do not.
    """
    chars, styles = parse_ansi(content)
    palette = Palette()
    indices = palette.indices_for(styles)
    return build_ansi(chars, indices, palette.styles) == content


class FrameEncoder:
    """Stateful encoder producing keyframes and deltas.

    A frame becomes a keyframe when it is the first frame, when its index is
    a multiple of the keyframe interval, when its character count differs from
    the previous frame, or when its delta would exceed
    ``DELTA_KEYFRAME_RATIO`` of the keyframe payload.

    Example:
        encoder = FrameEncoder()
        first = encoder.encode("AAA", 100)    # keyframe
        second = encoder.encode("AAB", 100)   # keyframe or delta
        encoder.palette.styles                # palette grown so far
    """

    def __init__(
        self,
        palette: Palette | None = None,
        config: CodecConfig | None = None,
        *,
        enable_stability: bool = False,
        stability_threshold: int = 15,
    ):
        self.config = config or CodecConfig()
        self.palette = palette if palette is not None else Palette()
        self.enable_stability = enable_stability
        self.stability_threshold = stability_threshold

        self._frame_number = 0
        self._prev_chars: str | None = None
        self._prev_indices: np.ndarray | None = None
        self._prev_styles: list[str] | None = None

    @property
    def keyframe_interval(self) -> int:
        return max(1, self.config.KEYFRAME_INTERVAL)

    @property
    def frame_number(self) -> int:
        """Number of frames encoded so far."""
        return self._frame_number

    def encode(self, content: str, delay_ms: int, width: int = 0, height: int = 0) -> EncodedFrame:
        """Encode the next frame of the sequence."""
        chars, styles = parse_ansi(content)

        if (
            self.enable_stability
            and self._prev_styles is not None
            and len(styles) == len(self._prev_styles)
        ):
            styles = stabilize_colors(styles, self._prev_styles, self.stability_threshold)

        indices = np.asarray(self.palette.indices_for(styles), dtype=np.int64)

        number = self._frame_number
        self._frame_number += 1

        is_keyframe = (
            self._prev_chars is None
            or number % self.keyframe_interval == 0
            or len(chars) != len(self._prev_chars)
        )

        frame = None
        if not is_keyframe:
            delta = encode_delta(diff(self._prev_chars, self._prev_indices, chars, indices))
            full_size = len(chars) + len(indices)
            if len(delta) > full_size * self.config.DELTA_KEYFRAME_RATIO:
                logger.debug("Frame %d: delta of %d chars too large, storing keyframe", number, len(delta))
            else:
                frame = EncodedFrame(
                    is_keyframe=False,
                    delta=delta,
                    width=width,
                    height=height,
                    delay_ms=delay_ms,
                )

        if frame is None:
            frame = EncodedFrame(
                is_keyframe=True,
                characters=chars,
                color_indices=encode_rle(indices),
                width=width,
                height=height,
                delay_ms=delay_ms,
            )

        self._prev_chars = chars
        self._prev_indices = indices
        self._prev_styles = styles
        return frame


class FrameDecoder:
    """Stateful decoder reconstructing styled content from encoded frames.

    Holds the previous frame's character and index buffers. A delta arriving
    with no reconstructed predecessor cannot be decoded and yields None.
    """

    def __init__(self, palette: Palette | None = None):
        self.palette = palette if palette is not None else Palette()
        self._chars: list[str] | None = None
        self._indices: np.ndarray | None = None

    @property
    def has_predecessor(self) -> bool:
        return self._chars is not None

    def reset(self) -> None:
        """Forget the previous frame, e.g. after a record was lost."""
        self._chars = None
        self._indices = None

    def decode(self, frame: EncodedFrame) -> str | None:
        """Decode one frame, returning styled content or None if undecodable."""
        if frame.is_keyframe:
            chars = frame.characters or ""
            self._chars = list(chars)
            self._indices = decode_rle_into(frame.color_indices, len(chars))
        elif self._chars is not None:
            apply_delta(self._chars, self._indices, decode_delta(frame.delta))
        else:
            logger.debug("Delta frame without predecessor")
            return None

        return build_ansi(self._chars, self._indices.tolist(), self.palette.styles)

"""Palette, run-length and delta codecs for frame compression."""

from .delta import DeltaEdit, apply_delta, decode_delta, diff, encode_delta, escape, unescape
from .optimizer import FrameDecoder, FrameEncoder, is_lossless, stabilize_colors
from .palette import NO_COLOR_INDEX, Palette
from .rle import decode_rle, decode_rle_into, encode_rle

__all__ = [
    'DeltaEdit',
    'FrameDecoder',
    'FrameEncoder',
    'NO_COLOR_INDEX',
    'Palette',
    'apply_delta',
    'decode_delta',
    'decode_rle',
    'decode_rle_into',
    'diff',
    'encode_delta',
    'encode_rle',
    'escape',
    'is_lossless',
    'stabilize_colors',
    'unescape',
]

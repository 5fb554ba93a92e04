"""Global color palette with a reserved "no color" slot at index 0."""

from __future__ import annotations

from typing import Iterable, Sequence

from ..ansi import NO_STYLE

NO_COLOR_INDEX = 0


class Palette:
    """Ordered table of style keys referenced by small integer indices.

    Index 0 is always the empty style (terminal default). Lookups outside the
    table resolve to the empty style instead of failing, so frames read from a
    truncated stream still render, just without color.

    Example:
        palette = Palette()
        red = palette.index_of("FF0000")   # 1
        palette.style_at(red)              # "FF0000"
        palette.style_at(99)               # ""
    """

    def __init__(self, styles: Iterable[str] | None = None):
        self._styles: list[str] = [NO_STYLE]
        self._lookup: dict[str, int] = {NO_STYLE: NO_COLOR_INDEX}
        if styles is not None:
            styles = list(styles)
            # Index 0 from a stored palette is the sentinel, whatever it holds
            for style in styles[1:]:
                self._styles.append(style)
                self._lookup.setdefault(style, len(self._styles) - 1)

    def __len__(self) -> int:
        return len(self._styles)

    def __iter__(self):
        return iter(self._styles)

    def __eq__(self, other) -> bool:
        if not isinstance(other, Palette):
            return NotImplemented
        return self._styles == other._styles

    @property
    def styles(self) -> list[str]:
        """All style keys, index 0 included."""
        return list(self._styles)

    def index_of(self, style: str) -> int:
        """Get the index for a style, appending it if it is new."""
        idx = self._lookup.get(style)
        if idx is None:
            idx = len(self._styles)
            self._styles.append(style)
            self._lookup[style] = idx
        return idx

    def indices_for(self, styles: Sequence[str]) -> list[int]:
        """Map a per-character style list to palette indices."""
        return [self.index_of(style) for style in styles]

    def style_at(self, index: int) -> str:
        """Resolve an index; zero and out-of-range indices mean no color."""
        if 0 < index < len(self._styles):
            return self._styles[index]
        return NO_STYLE

    def place(self, start: int, styles: Sequence[str]) -> None:
        """Store styles at absolute positions starting at ``start``.

        Used when reading streams where each frame carries the palette entries
        it introduced. Gaps left by lost records are padded with the empty
        style so later indices keep their meaning.
        """
        if start < 1:
            styles = styles[1 - start:]
            start = 1
        end = start + len(styles)
        while len(self._styles) < end:
            self._styles.append(NO_STYLE)
        for offset, style in enumerate(styles):
            self._styles[start + offset] = style
            self._lookup.setdefault(style, start + offset)

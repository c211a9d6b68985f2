"""Offset conversions for coverage unit keys: lines and UTF-16 code units."""

from __future__ import annotations

import bisect


def line_number_of(text: str, offset: int) -> int:
    """Return the 1-based line containing *offset* in *text*.

    Counts the newlines in ``text[:offset]``.  Returns 1 for empty
    text or a non-positive offset.
    """
    if not text or offset <= 0:
        return 1
    return 1 + text.count("\n", 0, offset)


class LineIndex:
    """Precomputed newline positions for repeated lookups on one text."""

    def __init__(self, text: str) -> None:
        self._text = text
        self._newlines = [i for i, ch in enumerate(text) if ch == "\n"]

    @property
    def text(self) -> str:
        return self._text

    def line_of(self, offset: int) -> int:
        """Same result as :func:`line_number_of` for this text."""
        if not self._text or offset <= 0:
            return 1
        return 1 + bisect.bisect_left(self._newlines, offset)


class Utf16Index:
    """Maps browser UTF-16 code-unit offsets onto indexes of a ``str``.

    Characters outside the Basic Multilingual Plane take two code
    units but one ``str`` index.  An offset that lands between the
    two halves of a surrogate pair maps to the index after that
    character.
    """

    def __init__(self, text: str) -> None:
        # Code-unit position of the low surrogate of each astral character.
        self._low_surrogates: list[int] = []
        for i, ch in enumerate(text):
            if ord(ch) > 0xFFFF:
                self._low_surrogates.append(i + len(self._low_surrogates) + 1)

    @property
    def has_astral(self) -> bool:
        return bool(self._low_surrogates)

    def to_index(self, offset: int) -> int:
        return offset - bisect.bisect_left(self._low_surrogates, offset)

"""
Best-effort CSS rule extraction.

Scans raw stylesheet text for ``selector { ... }`` blocks and reports
each style rule's selector with its byte span in the raw text.  This
is a heuristic scanner, not a CSS parser: its output drives coverage
attribution hints, so it may miss or over-count rules on unusual
minified input.

Comments are blanked with spaces instead of removed so that every
offset still points into the text the coverage ranges index.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

# At-rules whose bodies hold ordinary style rules.
_GROUP_AT_RULES = frozenset({
    "media",
    "supports",
    "layer",
    "container",
    "document",
    "-moz-document",
    "scope",
})

_COMMENT_RE = re.compile(r"/\*.*?(?:\*/|\Z)", re.DOTALL)
_AT_NAME_RE = re.compile(r"@([-\w]+)")

# Tokens that legitimately contain ':' inside a selector.
_ESCAPE_RE = re.compile(r"\\.")
_ATTRIBUTE_RE = re.compile(r"\[[^\]]*\]")
_PSEUDO_RE = re.compile(r"::?-?[a-zA-Z][\w-]*(?:\([^()]*(?:\([^()]*\))?[^()]*\))?")


@dataclass(frozen=True)
class CssRule:
    """A style rule and its ``[start, end)`` span in the raw text."""

    selector: str
    start: int
    end: int


def blank_comments(text: str) -> str:
    """Replace every comment with the same number of spaces.

    Newlines inside comments are kept so line numbers stay valid.
    """
    return _COMMENT_RE.sub(lambda m: re.sub(r"[^\n]", " ", m.group(0)), text)


def is_valid_selector(selector: str) -> bool:
    """Reject empty selectors, bare braces, at-rules and declarations.

    A ``:`` that survives after removing escapes, attribute
    selectors and pseudo-classes/elements marks a ``prop: value``
    fragment, as does any ``;``.
    """
    if not selector or selector in ("{", "}"):
        return False
    if selector.startswith("@"):
        return False
    if "{" in selector or "}" in selector or ";" in selector:
        return False
    remainder = _ESCAPE_RE.sub("", selector)
    remainder = _ATTRIBUTE_RE.sub("", remainder)
    remainder = _PSEUDO_RE.sub("", remainder)
    return ":" not in remainder


def _skip_string(text: str, i: int, end: int) -> int:
    """Return the index just past the quoted string starting at *i*."""
    quote = text[i]
    i += 1
    while i < end:
        ch = text[i]
        if ch == "\\":
            i += 2
            continue
        if ch == quote:
            return i + 1
        i += 1
    return end


def _matching_brace(text: str, i: int, end: int) -> int:
    """Return the index of the ``}`` closing the ``{`` at *i*, or *end*."""
    depth = 0
    while i < end:
        ch = text[i]
        if ch in "\"'":
            i = _skip_string(text, i, end)
            continue
        if ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
        i += 1
    return end


def _scan(text: str, start: int, end: int, rules: list[CssRule]) -> None:
    i = start
    prelude_start = start
    while i < end:
        ch = text[i]
        if ch in "\"'":
            i = _skip_string(text, i, end)
            continue
        if ch in ";}":
            # Statement at-rule (@import ...;) or stray fragment.
            i += 1
            prelude_start = i
            continue
        if ch != "{":
            i += 1
            continue

        close = _matching_brace(text, i, end)
        prelude = text[prelude_start:i]
        stripped = prelude.strip()
        if stripped.startswith("@"):
            name = _AT_NAME_RE.match(stripped)
            if name and name.group(1).lower() in _GROUP_AT_RULES:
                _scan(text, i + 1, close, rules)
        else:
            selector = " ".join(stripped.split())
            if is_valid_selector(selector):
                lead = len(prelude) - len(prelude.lstrip())
                rules.append(CssRule(selector, prelude_start + lead, min(close + 1, end)))
        i = close + 1
        prelude_start = i


def extract_rules(css_text: str) -> list[CssRule]:
    """Extract every style rule of *css_text* in source order.

    Rules nested in conditional group at-rules (``@media``,
    ``@supports``, ``@layer`` ...) are included; ``@keyframes``,
    ``@font-face`` and other at-rules contribute nothing.
    """
    if not css_text:
        return []
    cleaned = blank_comments(css_text)
    rules: list[CssRule] = []
    _scan(cleaned, 0, len(cleaned), rules)
    return rules

"""
Character-level helpers for scanning Compact source without a grammar.

Everything here is pure: the same input always yields the same output, and
offsets into a masked copy are valid offsets into the original text.
"""

from __future__ import annotations

import re
from bisect import bisect_right
from dataclasses import dataclass
from typing import Optional

QUOTES = ('"', "'", "`")
PAIRS = {"{": "}", "(": ")", "[": "]"}


@dataclass(frozen=True)
class Block:
    """A balanced delimiter block. `open`/`close` are offsets of the delimiters."""
    open: int
    close: int
    body: str


class LineIndex:
    """Maps character offsets to 1-based line numbers."""

    def __init__(self, text: str):
        self._starts = [0] + [m.end() for m in re.finditer("\n", text)]

    def line_of(self, offset: int) -> int:
        return bisect_right(self._starts, offset)

    @property
    def line_count(self) -> int:
        return len(self._starts)


def _string_end(source: str, start: int) -> tuple[int, bool]:
    """
    Return (index just past the literal, closed) for the string literal whose
    opening quote is at `start`. Backslash escapes are honoured.
    """
    quote = source[start]
    i = start + 1
    n = len(source)
    while i < n:
        c = source[i]
        if c == "\\":
            i += 2
            continue
        if c == quote:
            return i + 1, True
        i += 1
    return n, False


def _comment_end(source: str, start: int) -> Optional[int]:
    """Index just past the comment starting at `start`, or None if there is none."""
    nxt = source[start + 1] if start + 1 < len(source) else ""
    if nxt == "/":
        end = source.find("\n", start)
        return len(source) if end == -1 else end
    if nxt == "*":
        end = source.find("*/", start + 2)
        return len(source) if end == -1 else end + 2
    return None


def _blank(chars: list[str], start: int, end: int) -> None:
    for k in range(start, end):
        if chars[k] != "\n":
            chars[k] = " "


def mask_source(source: str, strings: bool = True) -> str:
    """
    Blank out comments (and, if `strings`, string literal contents) with spaces.

    Newlines and quote characters are kept, so line numbers and offsets in the
    result match the original exactly.
    """
    chars = list(source)
    i = 0
    n = len(source)
    while i < n:
        ch = source[i]
        if ch == "/":
            end = _comment_end(source, i)
            if end is not None:
                _blank(chars, i, end)
                i = end
                continue
        elif ch in QUOTES:
            end, closed = _string_end(source, i)
            if strings:
                _blank(chars, i + 1, end - 1 if closed else end)
            i = end
            continue
        i += 1
    return "".join(chars)


def strip_comments(source: str) -> str:
    return mask_source(source, strings=False)


def extract_balanced(source: str, start: int) -> Optional[Block]:
    """
    Extract the block opened by the delimiter at `start` ('{', '(' or '[').

    Nested delimiters of the same kind are counted; string/template literals and
    // and /* */ comments are skipped, so delimiters inside them are ignored.
    Returns None if `start` is not an opener or the block never closes.
    """
    if start >= len(source) or source[start] not in PAIRS:
        return None
    opener = source[start]
    closer = PAIRS[opener]
    depth = 1
    i = start + 1
    n = len(source)
    while i < n:
        ch = source[i]
        if ch in QUOTES:
            i, _ = _string_end(source, i)
            continue
        if ch == "/":
            end = _comment_end(source, i)
            if end is not None:
                i = end
                continue
        if ch == opener:
            depth += 1
        elif ch == closer:
            depth -= 1
            if depth == 0:
                return Block(open=start, close=i, body=source[start + 1:i])
        i += 1
    return None


def split_top_level(text: str, separator: str = ",") -> list[str]:
    """
    Split on `separator` only at nesting depth zero.

    Tracks <>, [] and () depth (so `Map<K, V>`, `[Field, Boolean]` and
    `(a: Field, b: Field) => Boolean` stay whole) and is separator-blind inside
    quoted strings (`Opaque<"a, b">`). The '>' of an '=>' arrow is not a closer.
    Empty items are dropped and items are stripped.
    """
    result: list[str] = []
    current: list[str] = []
    angle = square = paren = 0
    in_string = False
    string_char = ""

    for i, ch in enumerate(text):
        if ch in ('"', "'") and (i == 0 or text[i - 1] != "\\"):
            if not in_string:
                in_string = True
                string_char = ch
            elif ch == string_char:
                in_string = False
                string_char = ""

        if not in_string:
            if ch == "<":
                angle += 1
            elif ch == ">" and not (i > 0 and text[i - 1] == "="):
                angle = max(0, angle - 1)
            elif ch == "[":
                square += 1
            elif ch == "]":
                square = max(0, square - 1)
            elif ch == "(":
                paren += 1
            elif ch == ")":
                paren = max(0, paren - 1)

        if ch == separator and not in_string and angle == 0 and square == 0 and paren == 0:
            item = "".join(current).strip()
            if item:
                result.append(item)
            current = []
        else:
            current.append(ch)

    item = "".join(current).strip()
    if item:
        result.append(item)
    return result


def brace_spans(masked: str) -> list[tuple[int, int]]:
    """
    Top-level `{ ... }` regions of already-masked source as (open, close) offsets.
    An unterminated block extends to the end of the text.
    """
    spans: list[tuple[int, int]] = []
    depth = 0
    open_at = 0
    for i, ch in enumerate(masked):
        if ch == "{":
            if depth == 0:
                open_at = i
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0:
                spans.append((open_at, i))
    if depth > 0:
        spans.append((open_at, len(masked)))
    return spans


def in_spans(offset: int, spans: list[tuple[int, int]]) -> bool:
    """True if `offset` falls strictly inside one of the sorted (open, close) spans."""
    k = bisect_right(spans, (offset, float("inf"))) - 1
    if k < 0:
        return False
    open_at, close_at = spans[k]
    return open_at < offset < close_at

"""Filter expressions: regex, inverted regex and fuzzy matching with highlighting.

Expression syntax:
    -f <term>     fuzzy: the term's characters appear in order in the line
    !<pattern>    inverted: the line does NOT contain a match for the regex
    <pattern>     unanchored regular expression search (plain text included)
"""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable

from logtail.models import LogLine

logger = logging.getLogger(__name__)

FUZZY_RX = re.compile(r"^-f(?:\s+|$)")
INVERSE_PREFIX = "!"

# ANSI SGR color 209 wrapped around each matched character.
HIGHLIGHT_START = "\x1b[38;5;209m"
HIGHLIGHT_END = "\x1b[0m"


class MatchMode(Enum):
    REGEX = "regex"
    INVERSE = "inverse"
    FUZZY = "fuzzy"


class FilterError(ValueError):
    """Raised when a filter expression cannot be compiled."""

    def __init__(self, expression: str, reason: str):
        super().__init__(f"invalid filter {expression!r}: {reason}")
        self.expression = expression
        self.reason = reason


@dataclass(frozen=True)
class FilterSpec:
    expression: str
    mode: MatchMode
    term: str                           # expression with its mode marker removed
    pattern: re.Pattern | None = None   # compiled term, None in fuzzy mode


def parse_filter(expression: str) -> FilterSpec | None:
    """Classify and compile a filter expression.

    Returns None when the expression selects no filter. Raises FilterError if
    the regular expression does not compile.
    """
    expr = expression.strip()
    if not expr:
        return None

    m = FUZZY_RX.match(expr)
    if m:
        term = expr[m.end():]
        return FilterSpec(expr, MatchMode.FUZZY, term) if term else None

    mode = MatchMode.REGEX
    term = expr
    if expr.startswith(INVERSE_PREFIX):
        mode = MatchMode.INVERSE
        term = expr[len(INVERSE_PREFIX):].strip()
        if not term:
            return None

    try:
        pattern = re.compile(term)
    except re.error as e:
        raise FilterError(expression, str(e)) from e
    return FilterSpec(expr, mode, term, pattern)


def fuzzy_indexes(term: str, text: str) -> list[int] | None:
    """Greedy leftmost subsequence match, case-insensitive.

    Returns the positions in `text` of each character of `term`, or None if
    `term` is not a subsequence of `text`.
    """
    indexes = []
    chars = iter(enumerate(text))
    for want in term:
        want = want.lower()
        for i, ch in chars:
            if ch.lower() == want:
                indexes.append(i)
                break
        else:
            return None
    return indexes


def match_indexes(spec: FilterSpec, text: str) -> list[int] | None:
    """Return the highlighted character positions if `text` matches, else None.

    An inverted match has nothing to highlight and yields an empty list.
    """
    if spec.mode is MatchMode.FUZZY:
        return fuzzy_indexes(spec.term, text)

    if spec.mode is MatchMode.INVERSE:
        return None if spec.pattern.search(text) else []

    indexes = []
    found = False
    for m in spec.pattern.finditer(text):
        found = True
        indexes.extend(range(m.start(), m.end()))
    return indexes if found else None


def colorize(text: str, indexes: Iterable[int]) -> str:
    """Wrap every character at `indexes` in its own color escape pair."""
    marked = set(indexes)
    if not marked:
        return text
    return "".join(
        f"{HIGHLIGHT_START}{ch}{HIGHLIGHT_END}" if i in marked else ch
        for i, ch in enumerate(text)
    )


def _decode(line: bytes) -> str:
    # surrogateescape round-trips bytes that are not valid UTF-8.
    return line.decode("utf-8", errors="surrogateescape")


def _select(spec: FilterSpec, line: bytes) -> bytes | None:
    """Return the highlighted line if it matches `spec`, else None."""
    text = _decode(line)
    indexes = match_indexes(spec, text)
    if indexes is None:
        return None
    if not indexes:
        return line
    return colorize(text, indexes).encode("utf-8", errors="surrogateescape")


def highlight(line: bytes, spec: FilterSpec) -> bytes:
    """Return `line` with its matched characters colorized.

    Lines that do not match are returned unchanged.
    """
    selected = _select(spec, line)
    return line if selected is None else selected


def apply(
    spec: FilterSpec | None,
    lines: Iterable[LogLine],
    show_timestamp: bool = False,
    show_source: bool = False,
) -> list[bytes]:
    """Render `lines` and keep those selected by `spec`, highlighted.

    With no active filter every line is returned unhighlighted.
    """
    rendered = (line.render(show_timestamp, show_source) for line in lines)
    if spec is None:
        return list(rendered)

    out = []
    for raw in rendered:
        selected = _select(spec, raw)
        if selected is not None:
            out.append(selected)
    logger.debug("Filter %r kept %d line(s)", spec.expression, len(out))
    return out

"""
Response Matcher - Extract values from device reply lines.

A ResponsePattern wraps a compiled regular expression with an optional named
capture group called ``Value``. Patterns are compiled when they are created,
so a typo in a pattern is reported while the driver is being configured and
never shows up later as a confusing timeout.

Machine configuration files commonly use the ``(?<Value>...)`` group syntax;
it is accepted alongside Python's ``(?P<Value>...)``.
"""

import re
from dataclasses import dataclass

from gcode_driver.core.utils import InvalidPatternError

VALUE_GROUP = "Value"

# Escapes and character classes are matched first so that "(?<" inside them
# is kept literally. Lookbehinds "(?<=" and "(?<!" are not group openers.
NAMED_GROUP_RE = re.compile(r"\\.|\[\^?\]?(?:\\.|[^\]\\])*\]|\(\?<(?=[A-Za-z_])")


def _translate_group(m: re.Match[str]) -> str:
    token = m.group(0)
    return "(?P<" if token.startswith("(?<") else token


@dataclass(frozen=True)
class MatchResult:
    """
    Outcome of matching one reply line.

    Attributes:
        matched: Whether the pattern matched the line.
        value: Text captured by the ``Value`` group, or None when the pattern
            has no such group or the group did not participate in the match.
    """

    matched: bool
    value: str | None = None

    @property
    def has_value(self) -> bool:
        return self.matched and self.value is not None


NO_MATCH = MatchResult(matched=False)


def compile_pattern(text: str) -> re.Pattern[str]:
    """
    Compile response pattern text.

    Args:
        text: The pattern text as configured.

    Returns:
        The compiled pattern.

    Raises:
        InvalidPatternError: If the text is empty or fails to compile.
    """
    if not text:
        raise InvalidPatternError(text, "pattern is empty")

    try:
        return re.compile(NAMED_GROUP_RE.sub(_translate_group, text))
    except re.error as e:
        raise InvalidPatternError(text, str(e)) from e


class ResponsePattern:
    """A compiled response pattern with an optional ``Value`` capture."""

    def __init__(self, text: str):
        self.text = text
        self.regex = compile_pattern(text)

    @property
    def has_value_group(self) -> bool:
        return VALUE_GROUP in self.regex.groupindex

    def match(self, line: str) -> MatchResult:
        """
        Match the pattern anywhere in the line.

        The engine does not anchor the pattern; use ``^`` and ``$`` in the
        pattern text to require a whole-line match.
        """
        m = self.regex.search(line)
        if not m:
            return NO_MATCH

        if self.has_value_group:
            return MatchResult(matched=True, value=m.group(VALUE_GROUP))

        return MatchResult(matched=True)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResponsePattern):
            return NotImplemented
        return self.text == other.text

    def __hash__(self) -> int:
        return hash(self.text)

    def __repr__(self) -> str:
        return f"ResponsePattern({self.text!r})"


def match(line: str, pattern: ResponsePattern | str) -> MatchResult:
    """
    Evaluate a pattern against a single reply line.

    Args:
        line: One normalized reply line.
        pattern: A ResponsePattern, or pattern text to compile on the fly.

    Returns:
        NO_MATCH, a match without a value, or a match carrying the value.
    """
    if isinstance(pattern, str):
        pattern = ResponsePattern(pattern)
    return pattern.match(line)

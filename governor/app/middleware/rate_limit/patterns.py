"""Endpoint patterns for per-endpoint rate limit overrides."""

import re
from dataclasses import dataclass
from typing import Pattern, Union


@dataclass(frozen=True)
class LiteralPattern:
    """Matches when the text occurs anywhere in the URL."""
    text: str

    @property
    def bucket_key(self) -> str:
        return f"endpoint:{self.text}"


@dataclass(frozen=True)
class RegexPattern:
    """Matches when the regular expression is found in the URL."""
    regex: Pattern[str]

    @property
    def bucket_key(self) -> str:
        return f"endpoint:/{self.regex.pattern}/"


EndpointPattern = Union[LiteralPattern, RegexPattern]


def as_pattern(value: Union[str, Pattern[str], LiteralPattern, RegexPattern]) -> EndpointPattern:
    """Normalize configuration input into a tagged pattern.

    Plain strings become literal patterns; compiled expressions become
    regex patterns. Use ``RegexPattern(re.compile(...))`` explicitly for a
    regex given as text.
    """
    if isinstance(value, (LiteralPattern, RegexPattern)):
        return value
    if isinstance(value, re.Pattern):
        return RegexPattern(value)
    if isinstance(value, str):
        return LiteralPattern(value)
    raise TypeError(f"Unsupported endpoint pattern: {value!r}")


def match_pattern(pattern: EndpointPattern, url: str) -> bool:
    """Check a URL against a pattern, dispatching on the pattern type."""
    if isinstance(pattern, LiteralPattern):
        return pattern.text in url
    if isinstance(pattern, RegexPattern):
        return pattern.regex.search(url) is not None
    raise TypeError(f"Unsupported endpoint pattern: {pattern!r}")

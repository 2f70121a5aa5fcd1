"""Tests for endpoint override patterns."""

import re

import pytest

from governor.app.middleware.rate_limit.patterns import (
    LiteralPattern,
    RegexPattern,
    as_pattern,
    match_pattern,
)


class TestMatchPattern:

    def test_literal_substring(self):
        pattern = LiteralPattern("/search")

        assert match_pattern(pattern, "https://api.example.com/search?q=1")
        assert not match_pattern(pattern, "https://api.example.com/cards")

    def test_literal_is_not_a_regex(self):
        pattern = LiteralPattern("cards/.*")
        assert not match_pattern(pattern, "https://api.example.com/cards/42")

    def test_regex_search(self):
        pattern = RegexPattern(re.compile(r"/cards/\d+$"))

        assert match_pattern(pattern, "https://api.example.com/cards/42")
        assert not match_pattern(pattern, "https://api.example.com/cards/search")

    def test_unsupported_pattern(self):
        with pytest.raises(TypeError):
            match_pattern("/search", "https://api.example.com/search")


class TestAsPattern:

    def test_string_becomes_literal(self):
        assert as_pattern("/search") == LiteralPattern("/search")

    def test_compiled_becomes_regex(self):
        compiled = re.compile(r"cards/\d+")
        assert as_pattern(compiled) == RegexPattern(compiled)

    def test_pattern_passthrough(self):
        pattern = LiteralPattern("x")
        assert as_pattern(pattern) is pattern

    def test_rejects_other_types(self):
        with pytest.raises(TypeError):
            as_pattern(42)


class TestBucketKey:

    def test_literal_key(self):
        assert LiteralPattern("/search").bucket_key == "endpoint:/search"

    def test_regex_key(self):
        assert RegexPattern(re.compile(r"cards/\d+")).bucket_key == r"endpoint:/cards/\d+/"

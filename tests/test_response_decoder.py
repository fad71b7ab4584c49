"""
Tests for the multi-strategy ResponseDecoder.

Verifies strategy ordering through the attempt log, salvage of truncated
output and the completeness estimate.
"""

import pytest

from jobwaterfall.parsers.response_decoder import (
    JOB_LISTING_SHAPE,
    DecodeFailure,
    DecodeSuccess,
    ResponseDecoder,
)
from jobwaterfall.utils.exceptions import DecodeError


@pytest.fixture
def decoder():
    return ResponseDecoder(preview_chars=40)


class TestStrategyOrdering:
    """Test which strategy wins for common response styles."""

    def test_well_formed_json_uses_direct_parse_only(self, decoder):
        """Test valid JSON succeeds on the first strategy with no later attempts."""
        result = decoder.parse('[{"title": "Sales Rep", "company": "Acme"}]')

        assert isinstance(result, DecodeSuccess)
        assert result.ok is True
        assert result.strategy == "direct_parse"
        assert result.attempts == ("direct_parse",)
        assert result.value[0]["company"] == "Acme"

    def test_fenced_json_with_prose(self, decoder):
        """Test fenced JSON surrounded by prose is recovered by strategy 2 or 3."""
        text = 'Here are the jobs I found:\n```json\n[{"title": "A", "company": "X"}]\n```\nGood luck!'
        result = decoder.parse(text)

        assert result.ok
        assert result.strategy in ("strip_markdown", "balanced_extract")
        assert result.value == [{"title": "A", "company": "X"}]

    def test_fence_only(self, decoder):
        """Test a bare fenced block is handled by strip_markdown."""
        result = decoder.parse('```json\n{"title": "A"}\n```')
        assert result.strategy == "strip_markdown"
        assert result.value == {"title": "A"}

    def test_later_code_block(self, decoder):
        """Test a valid second code block is used when the first is broken."""
        text = 'First:\n```\n{"title": "A",\n```\nSecond:\n```json\n{"title": "B"}\n```'
        result = decoder.parse(text)

        assert result.strategy == "code_block_1"
        assert result.value == {"title": "B"}
        assert "code_block_0" in result.attempts

    def test_brackets_inside_strings_ignored(self, decoder):
        """Test bracket characters in string literals do not confuse scanning."""
        text = 'Result: {"title": "Rep [remote] {urgent}", "company": "Acme"} end'
        result = decoder.parse(text)

        assert result.strategy == "balanced_extract"
        assert result.value["title"] == "Rep [remote] {urgent}"

    def test_stray_brace_in_prose_skipped(self, decoder):
        """Test an unclosed brace in prose does not hide a later balanced value."""
        text = 'Note: use the {placeholder syntax. Result: [{"title": "A", "company": "B"}]'
        result = decoder.parse(text)

        assert result.strategy == "balanced_extract"
        assert result.value == [{"title": "A", "company": "B"}]

    def test_aggressive_cleanup(self, decoder):
        """Test JavaScript-style objects are repaired by the last strategy."""
        result = decoder.parse("{title: 'Sales Lead', company: 'Acme', remote: True,}")

        assert result.strategy == "aggressive_cleanup"
        assert result.value == {"title": "Sales Lead", "company": "Acme", "remote": True}


class TestSalvage:
    """Test recovery of truncated and malformed output."""

    def test_truncated_array_returns_complete_prefix(self, decoder):
        """Test a truncated array yields its complete leading objects."""
        text = '[{"title": "A", "company": "X"}, {"title": "B", "company": "Y"}, {"title": "C", "comp'
        result = decoder.parse(text, allow_partial=True)

        assert result.ok
        assert result.strategy == "partial_salvage"
        assert result.salvaged is True
        assert [item["title"] for item in result.value] == ["A", "B"]

    def test_truncated_wrapper_object(self, decoder):
        """Test a truncated object wrapping a list keeps the finished items."""
        text = '{"jobs": [{"title": "A"}, {"title": "B'
        result = decoder.parse(text, allow_partial=True)

        assert result.strategy == "partial_salvage"
        assert decoder.ensure_list(result.value) == [{"title": "A"}]

    def test_truncated_without_partial_does_not_return_fragment(self, decoder):
        """Test balanced extraction never returns a fragment of a truncated value."""
        text = '[{"title": "A"}, {"title": "B'
        result = decoder.parse(text)

        assert isinstance(result, DecodeFailure)
        assert "partial_salvage" not in result.attempts

    def test_line_reconstruction(self, decoder):
        """Test field lines are assembled into records when a shape is given."""
        text = (
            "Job 1\n"
            '"title": "Sales Rep",\n'
            '"company": "Acme",\n'
            '"skillMatchPercent": 85\n'
            "Job 2\n"
            '"title": "Account Manager",\n'
            '"company": "Globex"\n'
        )
        result = decoder.parse(text, shape=JOB_LISTING_SHAPE)

        assert result.strategy == "line_reconstruction"
        assert result.value == [
            {"title": "Sales Rep", "company": "Acme", "skillMatchPercent": 85},
            {"title": "Account Manager", "company": "Globex"},
        ]

    def test_pattern_extract(self, decoder):
        """Test flat single-quoted objects with the leading field are collected."""
        text = "{'title': 'A', 'company': 'X'} and {'title': 'B', 'company': 'Y'} plus {'other': 1}"
        result = decoder.parse(text, shape=JOB_LISTING_SHAPE)

        assert result.strategy == "pattern_extract"
        assert [item["title"] for item in result.value] == ["A", "B"]


class TestFailure:
    """Test failure reporting."""

    def test_failure_lists_attempts_and_preview(self, decoder):
        """Test total failure returns every attempted strategy and a bounded preview."""
        text = "I could not find any job postings matching your request, sorry about that."
        result = decoder.parse(text, allow_partial=True)

        assert isinstance(result, DecodeFailure)
        assert result.ok is False
        assert result.attempts == (
            "direct_parse",
            "strip_markdown",
            "balanced_extract",
            "partial_salvage",
            "aggressive_cleanup",
        )
        assert result.raw_preview == text[:40]

    def test_empty_text(self, decoder):
        """Test empty and None input fail cleanly."""
        assert decoder.parse("").ok is False
        assert decoder.parse(None).ok is False

    def test_parse_or_raise(self, decoder):
        """Test parse_or_raise raises DecodeError with diagnostics."""
        with pytest.raises(DecodeError) as exc_info:
            decoder.parse_or_raise("nothing here")

        assert exc_info.value.attempts[0] == "direct_parse"
        assert exc_info.value.raw_preview == "nothing here"

    def test_statistics(self, decoder):
        """Test per-strategy success counters."""
        decoder.parse("[]")
        decoder.parse("nope")

        stats = decoder.get_statistics()
        assert stats["successes"] == 1
        assert stats["failures"] == 1
        assert stats["direct_parse"] == 1


class TestHelpers:
    """Test completeness and ensure_list."""

    @pytest.mark.parametrize(
        "text,expected",
        [
            ('[{"a": 1}]', 1.0),
            ("plain text", 1.0),
            ("", 0.0),
            ('[{"a": 1}, {"b": 2', 0.25),
            ('{"note": "unbalanced ] in string"}', 1.0),
        ],
    )
    def test_completeness(self, text, expected):
        """Test completeness averages closer/opener ratios outside strings."""
        assert ResponseDecoder.completeness(text) == expected

    def test_ensure_list(self):
        """Test wrapped, single and scalar values normalize to lists."""
        assert ResponseDecoder.ensure_list([1, 2]) == [1, 2]
        assert ResponseDecoder.ensure_list({"results": [{"a": 1}]}) == [{"a": 1}]
        assert ResponseDecoder.ensure_list({"title": "A"}) == [{"title": "A"}]
        assert ResponseDecoder.ensure_list("text") == []

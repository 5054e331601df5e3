"""Tests for response pattern compilation and matching."""

import pytest

from gcode_driver.core.utils import InvalidPatternError
from gcode_driver.protocol.matcher import NO_MATCH, ResponsePattern, compile_pattern, match


class TestCompilePattern:
    """Tests for compile_pattern()."""

    def test_angle_bracket_group_is_accepted(self):
        """Test that (?<Value>...) compiles to a named group."""
        regex = compile_pattern(r"read:a1:(?<Value>-?\d+)")
        assert "Value" in regex.groupindex

    def test_python_group_syntax_is_accepted(self):
        """Test that (?P<Value>...) still works."""
        regex = compile_pattern(r"T:(?P<Value>\d+\.\d+)")
        assert "Value" in regex.groupindex

    def test_lookbehind_is_left_alone(self):
        """Test that lookbehind assertions are not mistaken for named groups."""
        regex = compile_pattern(r"(?<=T:)\d+(?<!0)")
        assert regex.search("T:25") is not None

    def test_group_after_escaped_backslash(self):
        """Test that a group following a literal backslash is still translated."""
        regex = compile_pattern(r"a\\(?<Value>\d+)")
        assert regex.search("a\\12").group("Value") == "12"

    def test_escaped_paren_is_literal(self):
        regex = compile_pattern(r"\(?<Value>")
        assert regex.groupindex == {}
        assert regex.search("<Value>") is not None

    def test_character_class_is_left_alone(self):
        regex = compile_pattern(r"[(?<x]+")
        assert regex.pattern == r"[(?<x]+"
        assert regex.search("<") is not None
        assert regex.search("P") is None

    def test_empty_pattern_is_invalid(self):
        """Test that an empty pattern raises InvalidPatternError."""
        with pytest.raises(InvalidPatternError):
            compile_pattern("")

    def test_broken_pattern_is_invalid(self):
        """Test that a pattern that does not compile raises InvalidPatternError."""
        with pytest.raises(InvalidPatternError) as exc_info:
            compile_pattern(r"read:(?<Value>\d+")
        assert exc_info.value.pattern == r"read:(?<Value>\d+"


class TestResponsePattern:
    """Tests for ResponsePattern matching."""

    def test_value_is_extracted(self):
        """Test that the Value group is captured."""
        pattern = ResponsePattern(r"read:a1:(?<Value>-?\d+)")
        result = pattern.match("read:a1:497")

        assert result.matched
        assert result.value == "497"
        assert result.has_value

    def test_negative_value(self):
        pattern = ResponsePattern(r"read:a1:(?<Value>-?\d+)")
        assert pattern.match("read:a1:-12").value == "-12"

    def test_no_match(self):
        """Test that a non-matching line returns NO_MATCH."""
        pattern = ResponsePattern(r"read:a1:(?<Value>-?\d+)")
        assert pattern.match("ok") is NO_MATCH

    def test_partial_match_within_line(self):
        """Test that the pattern may match anywhere in the line."""
        pattern = ResponsePattern(r"T:(?<Value>\d+)")
        assert pattern.match("ok T:210 B:60").value == "210"

    def test_anchored_pattern(self):
        """Test that anchors require a whole-line match."""
        pattern = ResponsePattern(r"^T:(?<Value>\d+)$")
        assert not pattern.match("ok T:210").matched

    def test_match_is_case_sensitive(self):
        pattern = ResponsePattern(r"read:(?<Value>\d+)")
        assert not pattern.match("READ:5").matched

    def test_match_without_value_group(self):
        """Test that a pattern without Value matches but carries no value."""
        pattern = ResponsePattern(r"^Endstop hit")
        result = pattern.match("Endstop hit X")

        assert result.matched
        assert result.value is None
        assert not result.has_value
        assert not pattern.has_value_group

    def test_optional_value_group_not_participating(self):
        pattern = ResponsePattern(r"state(:(?<Value>\w+))?")
        result = pattern.match("state")

        assert result.matched
        assert result.value is None

    def test_equality_by_text(self):
        assert ResponsePattern("a(b)") == ResponsePattern("a(b)")
        assert ResponsePattern("a") != ResponsePattern("b")
        assert len({ResponsePattern("x"), ResponsePattern("x")}) == 1


class TestMatchFunction:
    """Tests for the module-level match() helper."""

    def test_match_with_text_pattern(self):
        assert match("read:a1:497", r"read:a1:(?<Value>\d+)").value == "497"

    def test_match_with_invalid_text_pattern(self):
        with pytest.raises(InvalidPatternError):
            match("anything", "(")

"""Tests for text sanitization."""

from valuation_mcp.utils.sanitize import sanitize_text


class TestSanitizeText:
    """Tests for sanitize_text."""

    def test_none_and_nan(self) -> None:
        """Test None and NaN become None."""
        assert sanitize_text(None) is None
        assert sanitize_text(float("nan")) is None

    def test_control_characters_become_spaces(self) -> None:
        """Test control characters are replaced."""
        assert sanitize_text("Apple\x00Inc.\r\nCupertino") == "Apple Inc. Cupertino"
        assert sanitize_text("A\x7fB\x9fC") == "A B C"

    def test_whitespace_collapsed(self) -> None:
        """Test whitespace runs collapse."""
        assert sanitize_text("  BERKSHIRE   HATHAWAY\tINC  ") == "BERKSHIRE HATHAWAY INC"

    def test_blank_is_none(self) -> None:
        """Test blank text becomes None."""
        assert sanitize_text("   ") is None
        assert sanitize_text("\x00\x01") is None

    def test_non_string_scalars(self) -> None:
        """Test scalars are stringified."""
        assert sanitize_text(164000) == "164000"

    def test_truncation(self) -> None:
        """Test long text is truncated."""
        result = sanitize_text("word " * 100, max_length=20)
        assert result.endswith("...")
        assert len(result) <= 23

"""Tests for name sanitization."""

import pytest

from otel_utils.exceptions import InvalidNameError
from otel_utils.naming import DEFAULT_MAX_NAME_LENGTH, NameSanitizer, sanitize


class TestNameSanitizer:
    """Tests for NameSanitizer."""

    def test_valid_name_unchanged(self):
        """Test that a valid name passes through."""
        assert sanitize("http.server.duration") == "http.server.duration"
        assert sanitize("db-query_v2") == "db-query_v2"

    def test_invalid_characters_replaced(self):
        """Test replacing characters outside the allowed set."""
        assert sanitize("request id!") == "request_id_"
        assert sanitize("a/b:c") == "a_b_c"

    def test_surrounding_whitespace_trimmed(self):
        """Test that surrounding whitespace is removed before replacement."""
        assert sanitize("  db.query  ") == "db.query"

    def test_non_ascii_replaced(self):
        """Test that non-ASCII characters are replaced."""
        assert sanitize("café") == "caf_"

    def test_idempotent(self):
        """Test sanitize(sanitize(x)) == sanitize(x)."""
        for raw in ("request id!", "  spaced out  ", "ok.name", "x" * 400, "ümlaut name"):
            once = sanitize(raw)
            assert sanitize(once) == once

    def test_truncated_to_max_length(self):
        """Test that long names are truncated."""
        result = sanitize("x" * 400)
        assert len(result) == DEFAULT_MAX_NAME_LENGTH

    def test_custom_max_length(self):
        """Test a custom length cap."""
        sanitizer = NameSanitizer(max_length=5)
        assert sanitizer.sanitize("abcdefgh") == "abcde"
        assert sanitizer.max_length == 5

    def test_custom_replacement(self):
        """Test a custom replacement character."""
        assert NameSanitizer(replacement="-").sanitize("a b") == "a-b"

    @pytest.mark.parametrize("raw", ["", "   ", "\t\n"])
    def test_blank_name_rejected(self, raw):
        """Test that blank names raise InvalidNameError."""
        with pytest.raises(InvalidNameError) as exc_info:
            sanitize(raw)
        assert exc_info.value.raw == raw

    def test_non_string_rejected(self):
        """Test that non-string names raise InvalidNameError."""
        with pytest.raises(InvalidNameError):
            sanitize(None)  # type: ignore[arg-type]
        with pytest.raises(InvalidNameError):
            sanitize(42)  # type: ignore[arg-type]

    def test_callable(self):
        """Test that a sanitizer can be called directly."""
        assert NameSanitizer()("a b") == "a_b"

    def test_invalid_construction(self):
        """Test rejecting invalid sanitizer settings."""
        with pytest.raises(ValueError):
            NameSanitizer(max_length=0)
        with pytest.raises(ValueError):
            NameSanitizer(replacement="!")
        with pytest.raises(ValueError):
            NameSanitizer(replacement="__")

"""
Unit tests for utils/normalize.py

Tests the caller-parameter normalization functions to ensure:
- Correct type conversion
- Proper None/empty string handling
- Clear ValidationError messages carrying the offending field
"""

import pytest

from utils.normalize import (
    ValidationError,
    to_choice,
    to_district,
    to_int,
    to_range,
    to_str,
    to_year,
)


class TestToInt:
    """Tests for to_int()"""

    def test_valid_int_string(self):
        assert to_int("123") == 123
        assert to_int("-456") == -456
        assert to_int(7) == 7

    def test_none_and_empty(self):
        assert to_int(None) is None
        assert to_int("") is None
        assert to_int(None, default=50) == 50

    def test_invalid_string_raises(self):
        with pytest.raises(ValidationError) as exc:
            to_int("abc")
        assert "Expected int" in str(exc.value)
        assert exc.value.received_value == "abc"

    def test_float_string_raises(self):
        with pytest.raises(ValidationError):
            to_int("3.14")

    def test_bool_rejected(self):
        with pytest.raises(ValidationError):
            to_int(True)

    def test_bounds(self):
        assert to_int("500", minimum=1, maximum=500) == 500
        with pytest.raises(ValidationError) as exc:
            to_int("501", maximum=500, field="limit")
        assert exc.value.field == "limit"
        with pytest.raises(ValidationError):
            to_int("0", minimum=1, field="page")


class TestToStr:
    """Tests for to_str()"""

    def test_strips_whitespace(self):
        assert to_str("  orchard  ") == "orchard"

    def test_empty_returns_default(self):
        assert to_str("   ") is None
        assert to_str(None, default="x") == "x"

    def test_truncates(self):
        assert to_str("a" * 300, max_length=200) == "a" * 200


class TestToYear:
    """Tests for to_year()"""

    def test_valid(self):
        assert to_year("2024") == "2024"
        assert to_year(2024) == "2024"

    def test_empty(self):
        assert to_year(None) is None
        assert to_year("") is None

    @pytest.mark.parametrize("value", ["24", "20245", "abcd", "2024-01"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError) as exc:
            to_year(value, field="year")
        assert exc.value.field == "year"


class TestToChoice:
    """Tests for to_choice()"""

    def test_canonical_spelling(self):
        assert to_choice("ccr", ["CCR", "RCR", "OCR"]) == "CCR"
        assert to_choice(" RCR ", ["CCR", "RCR", "OCR"]) == "RCR"

    def test_case_sensitive(self):
        with pytest.raises(ValidationError):
            to_choice("ccr", ["CCR"], case_insensitive=False)

    def test_invalid_lists_choices(self):
        with pytest.raises(ValidationError) as exc:
            to_choice("XYZ", ["CCR", "RCR"], field="segment")
        assert "Valid" in str(exc.value)
        assert exc.value.field == "segment"

    def test_empty(self):
        assert to_choice("", ["CCR"]) is None


class TestToDistrict:
    """Tests for to_district()"""

    @pytest.mark.parametrize("value", ["9", "09", "D9", "d09", " D09 "])
    def test_spellings(self, value):
        assert to_district(value) == "D09"

    @pytest.mark.parametrize("value", ["0", "29", "D", "Dxx", "central"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            to_district(value)

    def test_empty(self):
        assert to_district(None) is None


class TestToRange:
    """Tests for to_range()"""

    def test_valid(self):
        assert to_range("500-1000") == (500.0, 1000.0)

    @pytest.mark.parametrize("value", ["500", "1000-500", "a-b", "1-2-3"])
    def test_invalid(self, value):
        with pytest.raises(ValidationError):
            to_range(value)

    def test_empty(self):
        assert to_range("") is None

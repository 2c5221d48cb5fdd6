"""Tests for date parsing utilities."""

from datetime import date

import pytest

from statement_importer.utils.date_utils import normalize_date, parse_ofx_date, parse_qif_date


class TestNormalizeDate:
    """Tests for normalize_date."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("2024-01-15", date(2024, 1, 15)),
            ("  2024-01-15 ", date(2024, 1, 15)),
            ("20240115", date(2024, 1, 15)),
            ("20240115120000", date(2024, 1, 15)),
            ("03/04/2024", date(2024, 3, 4)),
            ("30/12/2024", date(2024, 12, 30)),
            ("15.01.2024", date(2024, 1, 15)),
            ("2024/01/15", date(2024, 1, 15)),
            ("Jan 15, 2024", date(2024, 1, 15)),
        ],
    )
    def test_formats(self, raw: str, expected: date) -> None:
        """Test the supported date formats."""
        assert normalize_date(raw) == expected

    def test_ambiguous_date_is_month_first(self) -> None:
        """Test that 03/04/2024 is read as March 4th."""
        assert normalize_date("03/04/2024").month == 3

    @pytest.mark.parametrize("raw", ["2023-02-29", "2024-13-01", "20241301"])
    def test_invalid_calendar_dates(self, raw: str) -> None:
        """Test that impossible dates fail instead of rolling over."""
        with pytest.raises(ValueError, match="Invalid calendar date"):
            normalize_date(raw)

    @pytest.mark.parametrize("raw", ["", "   "])
    def test_empty(self, raw: str) -> None:
        """Test that empty input is rejected."""
        with pytest.raises(ValueError, match="Empty date"):
            normalize_date(raw)

    def test_garbage(self) -> None:
        """Test that unparseable text is rejected."""
        with pytest.raises(ValueError, match="Cannot parse date"):
            normalize_date("not a date")


class TestParseOfxDate:
    """Tests for parse_ofx_date."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("20240115", "2024-01-15"),
            ("20240115120000", "2024-01-15"),
            ("20240115120000.000[-5:EST]", "2024-01-15"),
            ("20240115[0:GMT]", "2024-01-15"),
        ],
    )
    def test_formats(self, raw: str, expected: str) -> None:
        """Test OFX date variants."""
        assert parse_ofx_date(raw) == expected

    def test_short_value_returned_unchanged(self) -> None:
        """Test that too few digits are passed through for the normalizer to reject."""
        assert parse_ofx_date(" 2024 ") == "2024"


class TestParseQifDate:
    """Tests for parse_qif_date."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("12/30/2025", "2025-12-30"),
            ("12/30/25", "2025-12-30"),
            ("12/30'25", "2025-12-30"),
            ("1/5' 99", "1999-01-05"),
            ("30/12/2025", "2025-12-30"),
            ("30.12.2025", "2025-12-30"),
            ("2025-12-30", "2025-12-30"),
        ],
    )
    def test_formats(self, raw: str, expected: str) -> None:
        """Test Quicken date variants and the two-digit year pivot."""
        assert parse_qif_date(raw) == expected

    def test_pivot_boundary(self) -> None:
        """Test that 69 is 2069 and 70 is 1970."""
        assert parse_qif_date("1/1/69") == "2069-01-01"
        assert parse_qif_date("1/1/70") == "1970-01-01"

    def test_unparseable_returned_verbatim(self) -> None:
        """Test that unknown text is passed through trimmed."""
        assert parse_qif_date("  someday ") == "someday"

"""Date parsing and normalization utilities."""

import re
from datetime import date, datetime

from dateutil import parser as dateutil_parser

# Explicit formats tried after ISO and compact OFX dates.
#
# IMPORTANT - Date Format Ambiguity:
# "03/04/2024" matches %m/%d/%Y first and is read as March 4th. The day-first
# variant only wins when the month-first reading is impossible (e.g. 30/12/2024).
NORMALIZE_FORMATS = [
    "%m/%d/%Y",
    "%d/%m/%Y",
    "%m-%d-%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%d.%m.%Y",
    "%m.%d.%Y",
]

ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
COMPACT_DATE_PATTERN = re.compile(r"^(\d{4})(\d{2})(\d{2})")

# OFX timezone suffix: 20240115120000[-5:EST]
OFX_TZ_PATTERN = re.compile(r"\[.*?\]")

# QIF numeric dates: 12/30/2025, 1/5/25, 30.12.2025
QIF_DATE_PATTERN = re.compile(r"^(\d{1,2})[/\-.](\d{1,2})[/\-.](\d{2,4})$")

# Two-digit QIF years below this value belong to the 2000s
QIF_YEAR_PIVOT = 70

QIF_FALLBACK_FORMATS = ["%Y-%m-%d", "%m-%d-%Y", "%d-%m-%Y"]


def normalize_date(raw_date: str) -> date:
    """Parse a date as found in a statement into a calendar date.

    Tried in order:
    - ISO: 2024-01-15 (validated, so 2024-02-30 fails)
    - Compact OFX: 20240115, 20240115120000
    - Explicit formats: see NORMALIZE_FORMATS
    - dateutil's permissive parser as a last resort

    Args:
        raw_date: The raw date string to parse.

    Returns:
        Parsed date object.

    Raises:
        ValueError: If the date cannot be parsed.
    """
    if not raw_date:
        raise ValueError("Empty date string")

    date_str = raw_date.strip()
    if not date_str:
        raise ValueError("Empty date string after stripping whitespace")

    if ISO_DATE_PATTERN.match(date_str):
        try:
            return date.fromisoformat(date_str)
        except ValueError as e:
            raise ValueError(f"Invalid calendar date: '{raw_date}'") from e

    compact = COMPACT_DATE_PATTERN.match(date_str)
    if compact:
        year, month, day = (int(part) for part in compact.groups())
        try:
            return date(year, month, day)
        except ValueError as e:
            raise ValueError(f"Invalid calendar date: '{raw_date}'") from e

    for fmt in NORMALIZE_FORMATS:
        try:
            return datetime.strptime(date_str, fmt).date()
        except ValueError:
            continue

    try:
        return dateutil_parser.parse(date_str).date()
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Cannot parse date: '{raw_date}'") from e


def parse_ofx_date(raw_date: str) -> str:
    """Convert an OFX DTPOSTED/DTASOF value to YYYY-MM-DD.

    The bracketed timezone suffix is dropped and only the first eight digits
    are used. Values with fewer than eight digits are returned unchanged so
    that normalization reports them.

    Args:
        raw_date: Tag value such as "20240115120000[-5:EST]".

    Returns:
        ISO date string, or the input if it is too short.
    """
    text = OFX_TZ_PATTERN.sub("", raw_date).strip()
    digits = re.sub(r"\D", "", text)[:8]
    if len(digits) < 8:
        return raw_date.strip()
    return f"{digits[0:4]}-{digits[4:6]}-{digits[6:8]}"


def parse_qif_date(raw_date: str) -> str:
    """Convert a QIF date field to YYYY-MM-DD.

    Quicken writes dates as 12/30/2025, 12/30/25 or 12/30'25. Two-digit
    years below 70 are placed in the 2000s. When the first component is
    above 12 the date is read day-first; otherwise month-first.

    Args:
        raw_date: Text after the D field code.

    Returns:
        ISO date string, or the trimmed input when nothing matches.
    """
    text = raw_date.strip().replace("'", "/").replace(" ", "")

    match = QIF_DATE_PATTERN.match(text)
    if match:
        first, second, year = (int(part) for part in match.groups())
        if len(match.group(3)) <= 2:
            year += 2000 if year < QIF_YEAR_PIVOT else 1900

        if first > 12:
            day, month = first, second
        else:
            month, day = first, second

        try:
            return date(year, month, day).isoformat()
        except ValueError:
            pass

    for fmt in QIF_FALLBACK_FORMATS:
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue

    try:
        return dateutil_parser.parse(raw_date.strip()).date().isoformat()
    except (ValueError, OverflowError):
        return raw_date.strip()

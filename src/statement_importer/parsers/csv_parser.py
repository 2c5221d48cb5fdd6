"""CSV parser producing header-keyed records."""

import csv
import io
from typing import Iterator, Optional

from statement_importer.models.transaction import RawParsedTransaction
from statement_importer.models.upload import FileFormat
from statement_importer.parsers.base import BaseParser, ParseError, ScanItem
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

# Maximum number of rows to prevent memory exhaustion from many small rows
MAX_CSV_ROWS = 500_000

# Candidate delimiters, in order of preference on ties
DELIMITERS = [",", ";", "\t", "|"]


class CsvParser(BaseParser):
    """Parser for delimited statement exports.

    The first non-blank row is the header; every later non-blank row becomes
    a record keyed by header name. Columns are not interpreted here, the
    normalizer applies the column mapping.
    """

    def __init__(self, delimiter: Optional[str] = None, max_rows: int = MAX_CSV_ROWS):
        """Initialize CSV parser.

        Args:
            delimiter: Force a delimiter instead of sniffing it.
            max_rows: Maximum number of data rows accepted.
        """
        self.delimiter = delimiter
        self.max_rows = max_rows

    @property
    def file_format(self) -> FileFormat:
        """Return the format this parser reads."""
        return FileFormat.CSV

    def _scan(self, content: str) -> Iterator[ScanItem]:
        delimiter = self.delimiter or self.detect_delimiter(content)
        reader = csv.reader(io.StringIO(content), delimiter=delimiter)

        headers: Optional[list[str]] = None
        index = 0
        for row in reader:
            if not row or all(cell.strip() == "" for cell in row):
                continue

            if headers is None:
                headers = [cell.strip().lstrip("\ufeff") for cell in row]
                logger.debug(f"CSV header ({delimiter!r}): {headers}")
                continue

            if index >= self.max_rows:
                raise ParseError(
                    f"File exceeds maximum row limit ({self.max_rows:,} rows). "
                    f"Split file into smaller chunks."
                )

            yield RawParsedTransaction(
                source_format=FileFormat.CSV,
                index=index,
                row=self._build_record(headers, row),
            )
            index += 1

    def headers(self, content: str) -> list[str]:
        """Return the header row of the file.

        Args:
            content: Decoded file content.

        Returns:
            Column names, empty if the file has no non-blank row.
        """
        delimiter = self.delimiter or self.detect_delimiter(content)
        for row in csv.reader(io.StringIO(content), delimiter=delimiter):
            if row and any(cell.strip() for cell in row):
                return [cell.strip().lstrip("\ufeff") for cell in row]
        return []

    def _build_record(self, headers: list[str], row: list[str]) -> dict[str, str]:
        """Key a row by header, padding short rows and dropping extra cells."""
        padded = row + [""] * (len(headers) - len(row))
        return {header: padded[i].strip() for i, header in enumerate(headers)}

    def detect_delimiter(self, content: str) -> str:
        """Detect CSV delimiter from content.

        Args:
            content: Decoded file content.

        Returns:
            Detected delimiter character.
        """
        lines = [line for line in content.splitlines() if line.strip()][:10]
        if not lines:
            return ","

        # First try Python's csv.Sniffer which handles quoted fields correctly
        sample = "\n".join(lines)
        try:
            dialect = csv.Sniffer().sniff(sample, delimiters="".join(DELIMITERS))
            return dialect.delimiter
        except csv.Error:
            pass

        # Fallback to simple counting (less accurate with quoted fields)
        best_delimiter = ","
        best_score = 0.0

        for d in DELIMITERS:
            counts = [line.count(d) for line in lines]
            non_zero = [c for c in counts if c > 0]
            if not non_zero:
                continue

            avg = sum(non_zero) / len(non_zero)
            if avg > best_score and len(non_zero) > len(counts) / 2:
                best_score = avg
                best_delimiter = d

        return best_delimiter

    def count_rows(self, content: str) -> int:
        """Count data rows without building records.

        Counts non-blank lines minus the header line. Quoted fields that
        span lines are counted once per physical line.

        Args:
            content: Decoded file content.

        Returns:
            Number of data rows, never negative.
        """
        non_blank = sum(1 for line in content.splitlines() if line.strip())
        return max(0, non_blank - 1)

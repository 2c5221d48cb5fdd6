"""File format detection and parser construction."""

from pathlib import PurePath
from typing import Optional

from statement_importer.models.transaction import RawParsedTransaction
from statement_importer.models.upload import FileFormat
from statement_importer.parsers.base import BaseParser, ParsedStatement
from statement_importer.parsers.csv_parser import CsvParser
from statement_importer.parsers.ofx_parser import OfxParser
from statement_importer.parsers.qif_parser import QifParser
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

EXTENSION_FORMATS = {
    "csv": FileFormat.CSV,
    "txt": FileFormat.CSV,
    "ofx": FileFormat.OFX,
    "qfx": FileFormat.OFX,
    "qif": FileFormat.QIF,
}


def detect_format(filename: str) -> FileFormat:
    """Determine the file format from the file name.

    Unknown extensions are read as CSV; the validator is responsible for
    rejecting extensions that are not supported at all.

    Args:
        filename: Original file name.

    Returns:
        Detected FileFormat.
    """
    extension = PurePath(filename).suffix.lower().lstrip(".")
    fmt = EXTENSION_FORMATS.get(extension)
    if fmt is None:
        logger.debug(f"Unknown extension {extension!r} for {filename}, reading as CSV")
        return FileFormat.CSV
    return fmt


class ParserFactory:
    """Creates a fresh parser for each import.

    Parsers keep no state between files, but a new instance per call keeps
    concurrent imports fully independent.
    """

    def __init__(self, csv_delimiter: Optional[str] = None):
        """Initialize the factory.

        Args:
            csv_delimiter: Delimiter forced on CSV parsers (None = sniff).
        """
        self.csv_delimiter = csv_delimiter

    def create(self, fmt: FileFormat) -> BaseParser:
        """Construct a parser for the given format.

        Args:
            fmt: File format.

        Returns:
            A new parser instance.
        """
        if fmt == FileFormat.OFX:
            return OfxParser()
        if fmt == FileFormat.QIF:
            return QifParser()
        return CsvParser(delimiter=self.csv_delimiter)

    def parse(
        self,
        content: str,
        fmt: FileFormat,
        limit: Optional[int] = None,
    ) -> list[RawParsedTransaction]:
        """Parse content into a flat list of transactions.

        Args:
            content: Decoded file content.
            fmt: File format.
            limit: Stop after this many transactions.

        Returns:
            Transactions in file order.

        Raises:
            ParseError: If the content has no recognizable structure.
        """
        return self.create(fmt).parse_to_flat_list(content, limit)

    def parse_full(self, content: str, fmt: FileFormat) -> ParsedStatement:
        """Parse content keeping the account grouping.

        Raises:
            ParseError: If the content has no recognizable structure.
        """
        return self.create(fmt).parse(content)

    def count_records(self, content: str, fmt: FileFormat) -> int:
        """Count records for preview purposes.

        CSV rows are counted by lines without building records; OFX and QIF
        need a structural parse to count transactions.

        Args:
            content: Decoded file content.
            fmt: File format.

        Returns:
            Number of records.

        Raises:
            ParseError: If the content has no recognizable structure.
        """
        parser = self.create(fmt)
        if isinstance(parser, CsvParser):
            return parser.count_rows(content)
        return sum(1 for _ in parser.iter_transactions(content))

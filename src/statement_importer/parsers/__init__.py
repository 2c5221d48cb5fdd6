"""Upload validation and parsers for CSV, OFX, and QIF statement files."""

from statement_importer.parsers.base import BaseParser, ParsedAccount, ParsedStatement, ParseError
from statement_importer.parsers.csv_parser import CsvParser
from statement_importer.parsers.detector import ParserFactory, detect_format
from statement_importer.parsers.file_validator import FileValidator, ValidationError, sniff_mime_type
from statement_importer.parsers.ofx_parser import OfxParser, extract_tag_value
from statement_importer.parsers.qif_parser import QifParser, QifState, next_state, parse_category

__all__ = [
    "BaseParser",
    "ParsedAccount",
    "ParsedStatement",
    "ParseError",
    "CsvParser",
    "OfxParser",
    "QifParser",
    "QifState",
    "next_state",
    "parse_category",
    "extract_tag_value",
    "ParserFactory",
    "detect_format",
    "FileValidator",
    "ValidationError",
    "sniff_mime_type",
]

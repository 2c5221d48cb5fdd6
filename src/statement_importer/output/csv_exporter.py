"""CSV export of import results for review in a spreadsheet."""

import csv
from pathlib import Path
from typing import Optional

from statement_importer.config import OutputConfig
from statement_importer.models.transaction import DuplicateVerdict
from statement_importer.processing.pipeline import ImportResult
from statement_importer.utils.decimal_utils import format_currency
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

# Leading characters that make a spreadsheet evaluate the cell (| covers DDE)
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r", "\n", "|")

TRANSACTION_HEADERS = [
    "Date", "Direction", "Amount", "Description", "Vendor", "Memo", "Reference",
    "Account", "Source Category", "Cleared", "Category", "Rule", "Import Key", "Duplicate",
]

ERROR_HEADERS = ["Record", "Error"]


def escape_cell(value: Optional[str]) -> str:
    """Make a text value safe to open in a spreadsheet.

    Statement descriptions, memos and payees come from the bank or the
    user and may start with a formula character. Such values get a
    leading single quote so they are shown as text.

    Args:
        value: Cell text, or None.

    Returns:
        The escaped text, empty string for None.
    """
    if not value:
        return ""
    if value.startswith(FORMULA_PREFIXES):
        return "'" + value
    return value


class CSVExporter:
    """Writes an ImportResult to CSV.

    Creates the transactions file at the given path and, when records
    failed to normalize, a sibling <name>_errors.csv.
    """

    def __init__(self, output_config: Optional[OutputConfig] = None):
        """Initialize CSV exporter.

        Args:
            output_config: Date and number formatting options.
        """
        self.output_config = output_config or OutputConfig()

    def export(self, output_path: Path, result: ImportResult) -> list[Path]:
        """Export transactions and errors.

        Args:
            output_path: Path of the transactions CSV.
            result: Import result to write.

        Returns:
            List of paths to created CSV files.
        """
        output_path.parent.mkdir(parents=True, exist_ok=True)

        created_files = [self.export_transactions(output_path, result.verdicts)]
        if result.errors:
            errors_path = output_path.with_name(f"{output_path.stem}_errors.csv")
            created_files.append(self.export_errors(errors_path, result))

        logger.info(f"Exported {len(created_files)} CSV files")
        return created_files

    def export_transactions(self, output_path: Path, verdicts: list[DuplicateVerdict]) -> Path:
        """Export transactions with their duplicate flag, in file order.

        Args:
            output_path: Destination file.
            verdicts: Transactions to write.

        Returns:
            Path to created file.
        """
        with open(output_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(TRANSACTION_HEADERS)

            for verdict in verdicts:
                txn = verdict.transaction
                writer.writerow([
                    txn.date.strftime(self.output_config.date_format),
                    txn.direction.value,
                    format_currency(txn.amount, self.output_config.decimal_places),
                    escape_cell(txn.description),
                    escape_cell(txn.vendor),
                    escape_cell(txn.memo),
                    escape_cell(txn.reference),
                    escape_cell(verdict.account_id),
                    escape_cell(txn.source_category.full_name) if txn.source_category else "",
                    txn.cleared.value if txn.cleared else "",
                    escape_cell(txn.category_id),
                    escape_cell(txn.applied_rule.name) if txn.applied_rule else "",
                    escape_cell(txn.import_key),
                    "Yes" if verdict.is_duplicate else "",
                ])

        logger.info(f"Exported {len(verdicts)} transactions to {output_path}")
        return output_path

    def export_errors(self, output_path: Path, result: ImportResult) -> Path:
        """Export records that failed normalization.

        Args:
            output_path: Destination file.
            result: Import result holding the errors.

        Returns:
            Path to created file.
        """
        with open(output_path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(ERROR_HEADERS)
            for error in result.errors:
                writer.writerow([
                    "" if error.index is None else error.index,
                    escape_cell(error.message),
                ])

        logger.info(f"Exported {len(result.errors)} record errors to {output_path}")
        return output_path


def export_result(
    output_path: Path,
    result: ImportResult,
    output_config: Optional[OutputConfig] = None,
) -> list[Path]:
    """Convenience function to export an import result.

    Args:
        output_path: Path of the transactions CSV.
        result: Import result to write.
        output_config: Date and number formatting options.

    Returns:
        List of paths to created CSV files.
    """
    return CSVExporter(output_config).export(output_path, result)

"""Transaction normalizer for converting parsed records to the canonical format."""

import hashlib
import re
from dataclasses import dataclass, field, fields
from decimal import Decimal
from typing import Iterable, Optional

from statement_importer.models.transaction import (
    NormalizationError,
    NormalizedTransaction,
    RawParsedTransaction,
    TransactionType,
)
from statement_importer.models.upload import FileFormat
from statement_importer.utils.date_utils import normalize_date
from statement_importer.utils.decimal_utils import amount_key, parse_signed_amount
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

_WHITESPACE_RUN = re.compile(r"\s+")

# Header names recognized when no column mapping is supplied (lowercase)
HEADER_ALIASES = {
    "date": ["date", "transaction date", "trans. date", "posting date", "post date", "posted date", "booking date"],
    "amount": ["amount", "transaction amount", "amount (usd)"],
    "description": ["description", "original description", "payee", "details", "narrative", "name"],
    "memo": ["memo", "notes", "note"],
    "reference": ["reference", "ref", "check number", "check #", "check", "num"],
    "debit": ["debit", "withdrawal", "withdrawals", "money out"],
    "credit": ["credit", "deposit", "deposits", "money in"],
}


class MissingFieldError(NormalizationError):
    """Exception raised when a record lacks its date or amount."""


class ColumnMappingError(NormalizationError):
    """Exception raised when a column mapping names columns the file does not have."""


@dataclass
class ColumnMapping:
    """Mapping of transaction fields to CSV header names.

    Either amount or at least one of debit/credit must be mapped. With
    separate columns, debit values are treated as money out regardless of
    their sign.
    """

    date: str
    description: Optional[str] = None
    amount: Optional[str] = None
    vendor: Optional[str] = None
    memo: Optional[str] = None
    reference: Optional[str] = None
    debit: Optional[str] = None
    credit: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.date:
            raise ValueError("Column mapping needs a date column")
        if not self.amount and not (self.debit or self.credit):
            raise ValueError("Column mapping needs an amount column or debit/credit columns")

    @classmethod
    def field_names(cls) -> list[str]:
        """Return the mappable transaction field names."""
        return [f.name for f in fields(cls)]

    def missing_columns(self, headers: Iterable[str]) -> list[str]:
        """Return the mapped column names absent from a header row."""
        present = set(headers)
        mapped = (getattr(self, name) for name in self.field_names())
        return [column for column in mapped if column and column not in present]

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "ColumnMapping":
        """Create a ColumnMapping from a field -> column dictionary.

        Args:
            data: Dictionary such as {"date": "Date", "amount": "Amount"}.

        Returns:
            A new ColumnMapping instance.

        Raises:
            ValueError: If a field name is unknown or required columns are missing.
        """
        known = set(cls.field_names())
        unknown = set(data) - known
        if unknown:
            raise ValueError(f"Unknown mapping field(s): {', '.join(sorted(unknown))}")
        values = {k: str(v) for k, v in data.items() if v not in (None, "")}
        if "date" not in values:
            raise ValueError("Column mapping needs a date column")
        return cls(**values)

    @classmethod
    def detect(cls, headers: Iterable[str]) -> Optional["ColumnMapping"]:
        """Guess a mapping from common bank header names.

        Args:
            headers: CSV header row.

        Returns:
            A ColumnMapping, or None if no date or amount column was recognized.
        """
        by_lower = {h.strip().lower(): h for h in headers}
        found: dict[str, str] = {}
        for field_name, aliases in HEADER_ALIASES.items():
            for alias in aliases:
                if alias in by_lower:
                    found[field_name] = by_lower[alias]
                    break

        if "date" not in found or not ({"amount", "debit", "credit"} & set(found)):
            return None
        if "amount" in found:
            found.pop("debit", None)
            found.pop("credit", None)
        return cls(**found)


@dataclass
class RecordError:
    """A record that failed normalization."""

    index: Optional[int]
    message: str


@dataclass
class NormalizationBatch:
    """Result of normalizing all records of a file."""

    transactions: list[NormalizedTransaction] = field(default_factory=list)
    skipped: int = 0
    errors: list[RecordError] = field(default_factory=list)


@dataclass
class _Extracted:
    """Format-independent field values of one record."""

    date: Optional[str]
    signed_amount: Decimal
    description: str
    memo: Optional[str] = None
    vendor: Optional[str] = None
    reference: Optional[str] = None


def normalize_description(value: Optional[str]) -> str:
    """Trim a description and collapse internal whitespace.

    Args:
        value: Raw description.

    Returns:
        Cleaned description, empty string for None.
    """
    if not value:
        return ""
    return _WHITESPACE_RUN.sub(" ", value).strip()


def normalize_vendor(value: Optional[str]) -> Optional[str]:
    """Clean a vendor name.

    Args:
        value: Raw vendor name.

    Returns:
        Cleaned vendor, or None when nothing is left.
    """
    cleaned = normalize_description(value)
    return cleaned or None


def _optional_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None


class TransactionNormalizer:
    """Normalizes parsed records into NormalizedTransaction objects.

    The normalizer:
    - Applies the CSV column mapping
    - Parses dates and amounts into typed values
    - Derives direction from the amount sign (zero counts as credit)
    - Generates the import key used for duplicate detection
    """

    def __init__(
        self,
        file_id: str,
        column_mapping: Optional[ColumnMapping] = None,
        amount_locale: str = "US",
    ):
        """Initialize normalizer.

        Args:
            file_id: Identifier of the source file, part of fallback import keys.
            column_mapping: CSV column mapping. Detected from headers when None.
            amount_locale: Locale hint for ambiguous CSV amounts ("US" or "EU").
        """
        if not file_id:
            raise ValueError("file_id must not be empty")
        self.file_id = file_id
        self.column_mapping = column_mapping
        self.amount_locale = amount_locale
        self._columns_checked = False

    def normalize(
        self,
        raw: RawParsedTransaction,
        index: Optional[int] = None,
    ) -> NormalizedTransaction:
        """Normalize a single parsed record.

        Args:
            raw: Parsed record.
            index: Record position; defaults to the index the parser assigned.

        Returns:
            The normalized transaction.

        Raises:
            MissingFieldError: If the date or amount is absent.
            ColumnMappingError: If the column mapping does not fit the CSV headers.
            NormalizationError: If the date or amount cannot be parsed.
        """
        if index is None:
            index = raw.index

        if raw.source_format == FileFormat.CSV:
            extracted = self._extract_csv(raw, index)
        else:
            extracted = self._extract_statement(raw, index)

        if not extracted.date or not extracted.date.strip():
            raise MissingFieldError("Date is required", index)

        try:
            txn_date = normalize_date(extracted.date)
        except ValueError as e:
            raise NormalizationError(f"Record {index}: {e}", index) from e

        signed = extracted.signed_amount
        amount = abs(signed)
        direction = TransactionType.CREDIT if signed >= 0 else TransactionType.DEBIT
        description = normalize_description(extracted.description)

        import_key = self.generate_import_key(raw, index, txn_date.isoformat(), signed, description)

        return NormalizedTransaction(
            date=txn_date,
            amount=amount,
            direction=direction,
            description=description,
            import_key=import_key,
            memo=_optional_text(extracted.memo),
            vendor=normalize_vendor(extracted.vendor),
            reference=_optional_text(extracted.reference),
            account=raw.account,
            splits=tuple(raw.splits),
            source_format=raw.source_format,
            source_index=index,
            source_id=raw.source_id,
            source_category=raw.category,
            cleared=raw.cleared,
        )

    def normalize_all(
        self,
        raws: Iterable[RawParsedTransaction],
        strict: bool = False,
    ) -> NormalizationBatch:
        """Normalize every record, collecting per-record failures.

        Records without a date or amount are counted as skipped. Records
        whose date or amount cannot be parsed are reported as errors.

        Args:
            raws: Parsed records.
            strict: If True, raise on the first unparseable record.

        Returns:
            NormalizationBatch with transactions, skip count, and errors.

        Raises:
            ColumnMappingError: If the column mapping does not fit the file headers.
            NormalizationError: In strict mode, for the first unparseable record.
        """
        batch = NormalizationBatch()
        total = 0

        for raw in raws:
            total += 1
            try:
                batch.transactions.append(self.normalize(raw))
            except MissingFieldError as e:
                batch.skipped += 1
                logger.debug(f"Skipping record {e.index}: {e}")
            except ColumnMappingError:
                raise
            except NormalizationError as e:
                if strict:
                    raise
                batch.errors.append(RecordError(index=e.index, message=str(e)))
                logger.warning(f"Could not normalize record {e.index}: {e}")

        logger.info(
            f"Normalized {len(batch.transactions)}/{total} records "
            f"({batch.skipped} skipped, {len(batch.errors)} errors)"
        )
        return batch

    def generate_import_key(
        self,
        raw: RawParsedTransaction,
        index: int,
        iso_date: str,
        signed_amount: Decimal,
        description: str,
    ) -> str:
        """Build the duplicate-detection key of a record.

        Bank-assigned ids (OFX FITID) give "ofx_<account>_<fitid>", or
        "ofx_<fitid>" without an account id. Everything else gets a hash
        of the file id, record index, date, amount, and description, so
        identical rows in one file still get distinct keys.

        Args:
            raw: Parsed record.
            index: Record position.
            iso_date: Normalized date.
            signed_amount: Signed amount.
            description: Cleaned description.

        Returns:
            The import key.
        """
        fitid = (raw.fitid or "").strip()
        if fitid:
            account_id = raw.account.external_account_id if raw.account else None
            if account_id:
                return f"ofx_{account_id}_{fitid}"
            return f"ofx_{fitid}"

        content = f"{iso_date}|{amount_key(signed_amount)}|{description}"
        digest = hashlib.sha256(content.encode("utf-8")).hexdigest()[:32]
        return f"{self.file_id}_{index}_{digest}"

    def _extract_statement(self, raw: RawParsedTransaction, index: int) -> _Extracted:
        """Read the fields of an OFX or QIF record."""
        if raw.amount is None or not raw.amount.strip():
            raise MissingFieldError("Amount is required", index)
        if raw.signed_amount is None:
            raise NormalizationError(f"Record {index}: cannot parse amount {raw.amount!r}", index)

        if raw.source_format == FileFormat.OFX:
            return _Extracted(
                date=raw.date,
                signed_amount=raw.signed_amount,
                description=raw.description or raw.memo or "",
                memo=raw.memo,
                vendor=raw.description,
                reference=raw.reference or raw.fitid,
            )

        return _Extracted(
            date=raw.date,
            signed_amount=raw.signed_amount,
            description=raw.description or raw.memo or "",
            memo=raw.memo,
            vendor=raw.description,
            reference=raw.reference,
        )

    def _extract_csv(self, raw: RawParsedTransaction, index: int) -> _Extracted:
        """Apply the column mapping to a CSV record."""
        row = raw.row or {}
        mapping = self.column_mapping
        if mapping is None:
            mapping = ColumnMapping.detect(row.keys())
            if mapping is None:
                raise NormalizationError(
                    f"Record {index}: no column mapping given and none could be "
                    f"detected from headers {list(row.keys())}",
                    index,
                )
            logger.info(f"Detected CSV column mapping: {mapping}")
            self.column_mapping = mapping

        if not self._columns_checked:
            missing = mapping.missing_columns(row.keys())
            if missing:
                raise ColumnMappingError(
                    f"Column mapping refers to missing column(s) {missing}; "
                    f"file headers are {list(row.keys())}",
                    index,
                )
            self._columns_checked = True

        def cell(column: Optional[str]) -> Optional[str]:
            if not column:
                return None
            value = row.get(column)
            return value.strip() if value and value.strip() else None

        return _Extracted(
            date=cell(mapping.date),
            signed_amount=self._csv_amount(mapping, cell, index),
            description=cell(mapping.description) or "",
            memo=cell(mapping.memo),
            vendor=cell(mapping.vendor),
            reference=cell(mapping.reference),
        )

    def _csv_amount(self, mapping: ColumnMapping, cell, index: int) -> Decimal:
        """Read the signed amount from the amount or debit/credit columns."""
        try:
            amount_text = cell(mapping.amount)
            if amount_text is not None:
                return parse_signed_amount(amount_text, self.amount_locale)

            debit_text = cell(mapping.debit)
            if debit_text is not None:
                return -abs(parse_signed_amount(debit_text, self.amount_locale))

            credit_text = cell(mapping.credit)
            if credit_text is not None:
                return abs(parse_signed_amount(credit_text, self.amount_locale))
        except ValueError as e:
            raise NormalizationError(f"Record {index}: {e}", index) from e

        raise MissingFieldError("Amount is required", index)

"""Transaction data models for imported statement records."""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional

from statement_importer.models.account import AccountContext
from statement_importer.models.upload import FileFormat


class NormalizationError(Exception):
    """Exception raised when a record cannot be converted to canonical form."""

    def __init__(self, message: str, index: Optional[int] = None):
        """Initialize NormalizationError.

        Args:
            message: Error message.
            index: Position of the offending record within the file.
        """
        self.index = index
        super().__init__(message)


class TransactionType(Enum):
    """Type of transaction (credit or debit)."""

    CREDIT = "credit"  # Money in (positive)
    DEBIT = "debit"  # Money out (negative)


class ClearedStatus(Enum):
    """QIF cleared flag."""

    UNCLEARED = "uncleared"
    CLEARED = "cleared"
    RECONCILED = "reconciled"


@dataclass(frozen=True)
class CategoryPath:
    """Category reference parsed from a QIF L or S line.

    Attributes:
        name: Top-level category name.
        subcategory: Part after the first colon, if any.
        class_name: Part after the first slash, if any.
        is_transfer: True when the category was a bracketed account name.
        transfer_account: Target account of a transfer.
    """

    name: Optional[str] = None
    subcategory: Optional[str] = None
    class_name: Optional[str] = None
    is_transfer: bool = False
    transfer_account: Optional[str] = None

    @property
    def full_name(self) -> str:
        """Category rendered as Category:Subcategory or [Account]."""
        if self.is_transfer:
            return f"[{self.transfer_account}]"
        if self.subcategory:
            return f"{self.name}:{self.subcategory}"
        return self.name or ""


@dataclass
class Split:
    """One allocation line of a split transaction.

    Split amounts are informational and are not required to add up to the
    parent transaction amount.
    """

    category: Optional[CategoryPath] = None
    amount: Optional[Decimal] = None
    memo: Optional[str] = None
    percentage: Optional[Decimal] = None


@dataclass
class RawParsedTransaction:
    """Transaction fields as extracted verbatim from a statement file.

    This intermediate representation captures what the parser extracts
    from the source file, ready for normalization into a NormalizedTransaction.
    Values are kept as text so the normalizer can report exactly what it
    could not understand.

    Attributes:
        source_format: Format of the file the record came from.
        index: Zero-based position of the record within the file.
        date: Date text (OFX and QIF dates are already YYYY-MM-DD when valid).
        amount: Amount text exactly as found in the file.
        signed_amount: Parsed signed amount, None if the text was unparseable.
        description: Payee or OFX NAME.
        memo: Memo text.
        reference: Check/reference number (QIF N, OFX REFNUM).
        fitid: Bank-assigned transaction id (OFX FITID).
        check_number: OFX CHECKNUM.
        transaction_type: OFX TRNTYPE code, e.g. DEBIT or POS.
        cleared: QIF cleared status.
        category: QIF category.
        splits: QIF split lines.
        address: QIF address lines joined with newlines.
        security: Investment security name.
        price: Investment price text.
        quantity: Investment share quantity text.
        commission: Investment commission text.
        source_id: Content-derived id assigned by the parser (QIF).
        row: CSV record keyed by header.
        account: Account the record belongs to.
    """

    source_format: FileFormat
    index: int = 0
    date: Optional[str] = None
    amount: Optional[str] = None
    signed_amount: Optional[Decimal] = None
    description: Optional[str] = None
    memo: Optional[str] = None
    reference: Optional[str] = None
    fitid: Optional[str] = None
    check_number: Optional[str] = None
    transaction_type: Optional[str] = None
    cleared: Optional[ClearedStatus] = None
    category: Optional[CategoryPath] = None
    splits: list[Split] = field(default_factory=list)
    address: Optional[str] = None
    security: Optional[str] = None
    price: Optional[str] = None
    quantity: Optional[str] = None
    commission: Optional[str] = None
    source_id: Optional[str] = None
    row: Optional[dict[str, str]] = None
    account: Optional[AccountContext] = None

    @property
    def absolute_amount(self) -> Optional[Decimal]:
        """Unsigned amount, or None when the amount could not be parsed."""
        if self.signed_amount is None:
            return None
        return abs(self.signed_amount)


@dataclass(frozen=True)
class AppliedRule:
    """Which import rule categorized a transaction."""

    id: str
    name: str


@dataclass(frozen=True)
class NormalizedTransaction:
    """Canonical transaction record produced by the import pipeline.

    Attributes:
        date: Transaction date.
        amount: Unsigned amount.
        direction: Credit (money in) or debit (money out).
        description: Cleaned description.
        import_key: Deterministic key used for duplicate detection.
        memo: Memo text.
        vendor: Cleaned vendor name, None when empty.
        reference: Check or reference number.
        account: Account the record was parsed under (OFX/QIF only).
        splits: Split lines carried over from QIF.
        category_id: Category assigned by an import rule.
        applied_rule: Rule that assigned category/vendor.
        source_format: Format of the source file.
        source_index: Position of the record within the source file.
        source_id: Parser-assigned content id, if any.
        source_category: Category found in the file (QIF L line), including transfers.
        cleared: Cleared status found in the file (QIF C line).

    Raises:
        NormalizationError: If the import key is empty or the amount is negative.
    """

    date: date
    amount: Decimal
    direction: TransactionType
    description: str
    import_key: str
    memo: Optional[str] = None
    vendor: Optional[str] = None
    reference: Optional[str] = None
    account: Optional[AccountContext] = None
    splits: tuple[Split, ...] = ()
    category_id: Optional[str] = None
    applied_rule: Optional[AppliedRule] = None
    source_format: Optional[FileFormat] = None
    source_index: int = 0
    source_id: Optional[str] = None
    source_category: Optional[CategoryPath] = None
    cleared: Optional[ClearedStatus] = None

    def __post_init__(self) -> None:
        if not self.import_key:
            raise NormalizationError(f"Record {self.source_index}: import key is empty", self.source_index)
        if self.amount < 0:
            raise NormalizationError(
                f"Record {self.source_index}: amount must not be negative, got {self.amount}",
                self.source_index,
            )

    @property
    def signed_amount(self) -> Decimal:
        """Return the amount with its sign restored.

        Returns:
            Negative for debits, positive for credits.
        """
        return -self.amount if self.direction == TransactionType.DEBIT else self.amount

    def __repr__(self) -> str:
        return (
            f"NormalizedTransaction(date={self.date}, "
            f"description={self.description[:30]!r}, "
            f"amount={self.signed_amount}, "
            f"key={self.import_key!r})"
        )


@dataclass(frozen=True)
class DuplicateVerdict:
    """A normalized transaction paired with its duplicate flag."""

    transaction: NormalizedTransaction
    is_duplicate: bool
    account_id: Optional[str] = None

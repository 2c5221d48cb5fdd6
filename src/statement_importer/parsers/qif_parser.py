"""QIF (Quicken Interchange Format) parser.

QIF is line oriented: every line starts with a one-character field code,
records end with a line holding only '^', and '!Type:' headers open account
sections. The parser is an explicit state machine; next_state() holds all
transitions, including the two readings of the N field.
"""

import hashlib
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Iterator, Optional

from statement_importer.models.account import AccountContext, AccountType
from statement_importer.models.transaction import (
    CategoryPath,
    ClearedStatus,
    RawParsedTransaction,
    Split,
)
from statement_importer.models.upload import FileFormat
from statement_importer.parsers.base import BaseParser, ParseError, ScanItem
from statement_importer.utils.date_utils import parse_qif_date
from statement_importer.utils.decimal_utils import parse_qif_amount
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

ACCOUNT_TYPE_CODES = {
    "bank": AccountType.BANK,
    "cash": AccountType.CASH,
    "ccard": AccountType.CREDIT_CARD,
    "invst": AccountType.INVESTMENT,
    "oth a": AccountType.ASSET,
    "oth l": AccountType.LIABILITY,
}

CLEARED_CODES = {
    "x": ClearedStatus.CLEARED,
    "c": ClearedStatus.CLEARED,
    "*": ClearedStatus.RECONCILED,
    "r": ClearedStatus.RECONCILED,
}

# Structural headers that carry nothing this parser needs
IGNORED_HEADERS = {"!account", "!option:autoswitch", "!clear:autoswitch"}

TRANSACTION_CODES = set("DTUCNPMAL")
SPLIT_CODES = set("SE$%")
INVESTMENT_CODES = set("YIQO")
KNOWN_CODES = TRANSACTION_CODES | SPLIT_CODES | INVESTMENT_CODES | {"^"}


class QifState(Enum):
    """Position of the reader within the QIF structure."""

    NO_ACCOUNT = "no_account"
    IN_ACCOUNT = "in_account"
    IN_TRANSACTION = "in_transaction"
    IN_SPLIT = "in_split"


def next_state(state: QifState, code: str, account_has_transactions: bool) -> QifState:
    """Compute the state after reading a line with the given field code.

    The N field names the account while the account has no recorded
    transactions and no transaction is open; anywhere else it is the
    transaction's reference number. In the first case the state stays at
    IN_ACCOUNT, which is how callers tell the two apart.

    Args:
        state: Current state.
        code: Leading character of the line ('!' for any header).
        account_has_transactions: Whether the current account already
            recorded at least one transaction.

    Returns:
        The new state.
    """
    if code == "!":
        return QifState.IN_ACCOUNT
    if code == "^":
        return QifState.IN_ACCOUNT
    if code == "N" and state in (QifState.NO_ACCOUNT, QifState.IN_ACCOUNT):
        if not account_has_transactions:
            return QifState.IN_ACCOUNT
        return QifState.IN_TRANSACTION
    if code == "S":
        return QifState.IN_SPLIT
    if state == QifState.IN_SPLIT:
        return QifState.IN_SPLIT
    return QifState.IN_TRANSACTION


def parse_account_type(code: str) -> AccountType:
    """Map a !Type: code to an account type, defaulting to bank."""
    return ACCOUNT_TYPE_CODES.get(code.strip().lower(), AccountType.BANK)


def parse_cleared_status(value: str) -> ClearedStatus:
    """Map a C field value to a cleared status."""
    return CLEARED_CODES.get(value.strip().lower(), ClearedStatus.UNCLEARED)


def parse_category(value: str) -> Optional[CategoryPath]:
    """Parse a QIF category field.

    Grammar: "Category:Subcategory/Class", or "[Account]" for transfers.
    The class is stripped before the colon split, and a transfer may also
    carry a class ("[Savings]/Household").

    Args:
        value: Text after the L or S field code.

    Returns:
        CategoryPath, or None for an empty field.
    """
    text = value.strip()
    if not text:
        return None

    if text.startswith("[") and text.endswith("]"):
        return CategoryPath(is_transfer=True, transfer_account=text[1:-1])

    class_name = None
    if "/" in text:
        text, class_name = text.split("/", 1)

    if text.startswith("[") and text.endswith("]"):
        return CategoryPath(
            class_name=class_name, is_transfer=True, transfer_account=text[1:-1]
        )

    subcategory = None
    if ":" in text:
        text, subcategory = text.split(":", 1)

    return CategoryPath(name=text or None, subcategory=subcategory, class_name=class_name)


@dataclass
class _AccountSection:
    """Account section being read."""

    account_type: AccountType
    name: Optional[str] = None
    implicit: bool = False
    transaction_count: int = 0
    context: Optional[AccountContext] = None

    def build(self) -> AccountContext:
        if self.context is None:
            self.context = AccountContext(account_type=self.account_type, name=self.name)
        return self.context


@dataclass
class _TransactionFields:
    """Field values of the transaction being read."""

    date: Optional[str] = None
    amount: Optional[str] = None
    cleared: Optional[ClearedStatus] = None
    reference: Optional[str] = None
    payee: Optional[str] = None
    memo: Optional[str] = None
    address: list[str] = field(default_factory=list)
    category: Optional[CategoryPath] = None
    splits: list[Split] = field(default_factory=list)
    split: Optional[Split] = None
    security: Optional[str] = None
    price: Optional[str] = None
    quantity: Optional[str] = None
    commission: Optional[str] = None

    def flush_split(self) -> None:
        if self.split is not None:
            self.splits.append(self.split)
            self.split = None


class _QifReader:
    """Per-file state of the QIF state machine."""

    def __init__(self) -> None:
        self.state = QifState.NO_ACCOUNT
        self.account: Optional[_AccountSection] = None
        self.fields = _TransactionFields()
        self.index = 0
        self.structure_seen = False

    def feed(self, line: str) -> Iterator[ScanItem]:
        """Consume one stripped, non-empty line."""
        code = line[0]
        value = line[1:]

        if code == "!":
            yield from self._header(line)
            return

        if code not in KNOWN_CODES:
            logger.debug(f"Ignoring unknown QIF field code {code!r}")
            return

        self.structure_seen = True
        if self.account is None:
            self.account = _AccountSection(account_type=AccountType.BANK, implicit=True)

        new_state = next_state(self.state, code, self.account.transaction_count > 0)

        if code == "^":
            yield from self._finish_transaction()
        elif code == "N" and new_state == QifState.IN_ACCOUNT:
            self.account.name = value.strip()
        elif code in SPLIT_CODES:
            self._split_field(code, value)
        elif code in INVESTMENT_CODES:
            self._investment_field(code, value)
        else:
            self._transaction_field(code, value)

        self.state = new_state

    def close(self) -> Iterator[ScanItem]:
        """Flush whatever is pending at end of input."""
        if self.state in (QifState.IN_TRANSACTION, QifState.IN_SPLIT):
            yield from self._finish_transaction()
        yield from self._finish_account()

    def _header(self, line: str) -> Iterator[ScanItem]:
        header = line.strip().lower()
        if header in IGNORED_HEADERS:
            return
        if not header.startswith("!type:"):
            logger.debug(f"Ignoring QIF header {line!r}")
            return

        self.structure_seen = True
        if self.state in (QifState.IN_TRANSACTION, QifState.IN_SPLIT):
            yield from self._finish_transaction()

        # A name given before the first header belongs to this section
        carried_name = None
        if self.account is not None and self.account.implicit and not self.account.transaction_count:
            carried_name = self.account.name
            self.account = None
        yield from self._finish_account()

        self.account = _AccountSection(
            account_type=parse_account_type(line[len("!type:"):]), name=carried_name
        )
        self.state = next_state(self.state, "!", False)

    def _transaction_field(self, code: str, value: str) -> None:
        f = self.fields
        if code == "D":
            f.date = value.strip()
        elif code == "T":
            f.amount = value.strip()
        elif code == "U":
            if f.amount is None:
                f.amount = value.strip()
        elif code == "C":
            f.cleared = parse_cleared_status(value)
        elif code == "N":
            f.reference = value.strip()
        elif code == "P":
            f.payee = value.strip()
        elif code == "M":
            f.memo = value.strip()
        elif code == "A":
            f.address.append(value.strip())
        elif code == "L":
            f.category = parse_category(value)

    def _split_field(self, code: str, value: str) -> None:
        f = self.fields
        if code == "S":
            f.flush_split()
            f.split = Split(category=parse_category(value))
            return
        if f.split is None:
            logger.debug(f"Ignoring QIF split field {code!r} outside a split")
            return
        if code == "E":
            f.split.memo = value.strip()
        elif code == "$":
            try:
                f.split.amount = parse_qif_amount(value)
            except ValueError:
                logger.debug(f"Ignoring unparseable split amount {value!r}")
        elif code == "%":
            try:
                f.split.percentage = Decimal(value.strip().rstrip("%"))
            except InvalidOperation:
                logger.debug(f"Ignoring unparseable split percentage {value!r}")

    def _investment_field(self, code: str, value: str) -> None:
        f = self.fields
        text = value.strip()
        if code == "Y":
            f.security = text
        elif code == "I":
            f.price = text
        elif code == "Q":
            f.quantity = text
        elif code == "O":
            f.commission = text

    def _finish_transaction(self) -> Iterator[ScanItem]:
        f = self.fields
        self.fields = _TransactionFields()
        f.flush_split()

        if not f.date or f.amount is None:
            if f.date or f.amount is not None or f.payee:
                logger.debug("Skipping QIF record without date or amount")
            return

        if self.account is None:
            self.account = _AccountSection(account_type=AccountType.BANK, implicit=True)
        first = self.account.context is None
        context = self.account.build()
        if first:
            yield context

        yield self._build_transaction(f, context)
        self.account.transaction_count += 1
        self.index += 1

    def _finish_account(self) -> Iterator[ScanItem]:
        account = self.account
        self.account = None
        if account is None or account.context is not None:
            return
        if account.implicit and account.name is None:
            return
        # Account section without transactions
        yield account.build()

    def _build_transaction(
        self,
        f: _TransactionFields,
        context: AccountContext,
    ) -> RawParsedTransaction:
        date = parse_qif_date(f.date or "")
        try:
            signed_amount: Optional[Decimal] = parse_qif_amount(f.amount or "")
        except ValueError:
            signed_amount = None

        is_investment = context.account_type == AccountType.INVESTMENT
        description = f.payee or ""
        digest = hashlib.md5(
            f"{date}{f.amount}{description}{f.reference or ''}{f.memo or ''}".encode("utf-8")
        ).hexdigest()

        return RawParsedTransaction(
            source_format=FileFormat.QIF,
            index=self.index,
            date=date,
            amount=f.amount,
            signed_amount=signed_amount,
            description=description,
            memo=f.memo,
            reference=f.reference,
            cleared=f.cleared or ClearedStatus.UNCLEARED,
            category=f.category,
            splits=f.splits,
            address="\n".join(f.address) if f.address else None,
            security=f.security if is_investment else None,
            price=f.price if is_investment else None,
            quantity=f.quantity if is_investment else None,
            commission=f.commission if is_investment else None,
            source_id=f"qif_{digest}",
            account=context,
        )


class QifParser(BaseParser):
    """Parser for QIF exports with one or more account sections."""

    @property
    def file_format(self) -> FileFormat:
        """Return the format this parser reads."""
        return FileFormat.QIF

    def _scan(self, content: str) -> Iterator[ScanItem]:
        reader = _QifReader()
        text = content.replace("\r\n", "\n").replace("\r", "\n")

        for line in text.split("\n"):
            line = line.strip()
            if not line:
                continue
            yield from reader.feed(line)

        if not reader.structure_seen:
            raise ParseError("Not a valid QIF file: no headers, fields, or record markers found")

        yield from reader.close()

"""OFX/QFX file parser for SGML (1.x) and XML (2.x) statements.

Both dialects are read with the same tag-extraction routine: closing tags
are used when present, otherwise a value runs up to the next tag or line
break. Aggregates with missing closing tags are bounded by the next
sibling or section end.
"""

import re
from datetime import date
from decimal import Decimal
from functools import lru_cache
from typing import Iterator, Optional

from statement_importer.models.account import AccountContext, AccountType
from statement_importer.models.transaction import RawParsedTransaction
from statement_importer.models.upload import FileFormat
from statement_importer.parsers.base import BaseParser, ParseError, ScanItem
from statement_importer.utils.date_utils import parse_ofx_date
from statement_importer.utils.decimal_utils import parse_ofx_amount
from statement_importer.utils.logging_config import get_logger, mask_account_id

logger = get_logger(__name__)

_FLAGS = re.IGNORECASE | re.DOTALL

_OFX_START = re.compile(r"<OFX>", re.IGNORECASE)
_DOCTYPE = re.compile(r"<!DOCTYPE[^>]*>", re.IGNORECASE)
_INTER_TAG_WHITESPACE = re.compile(r">\s+<")

_BANK_STATEMENT_CLOSED = re.compile(r"<STMTRS>(.*?)</STMTRS>", _FLAGS)
_BANK_STATEMENT_OPEN = re.compile(
    r"<STMTRS>(.*?)(?=</STMTRS>|<STMTTRNRS>|</BANKMSGSRSV1>|$)", _FLAGS
)
_CARD_STATEMENT_CLOSED = re.compile(r"<CCSTMTRS>(.*?)</CCSTMTRS>", _FLAGS)
_CARD_STATEMENT_OPEN = re.compile(
    r"<CCSTMTRS>(.*?)(?=</CCSTMTRS>|<CCSTMTTRNRS>|</CREDITCARDMSGSRSV1>|$)", _FLAGS
)

_TRANSACTION_LIST = re.compile(r"<BANKTRANLIST>(.*?)(?:</BANKTRANLIST>|$)", _FLAGS)
_TRANSACTION = re.compile(r"<STMTTRN>(.*?)(?=<STMTTRN>|</BANKTRANLIST>|</STMTTRN>|$)", _FLAGS)


@lru_cache(maxsize=64)
def _tag_patterns(tag: str) -> tuple[re.Pattern[str], re.Pattern[str]]:
    """Compiled (closed, open) patterns for a tag name."""
    name = re.escape(tag)
    closed = re.compile(rf"<{name}>(.*?)</{name}>", _FLAGS)
    open_ = re.compile(rf"<{name}>([^<\r\n]+)", re.IGNORECASE)
    return closed, open_


def extract_tag_value(text: str, tag: str) -> Optional[str]:
    """Extract the value of a tag in either OFX dialect.

    Tries the XML form <TAG>value</TAG> first, then the SGML form where the
    value ends at the next '<' or line break.

    Args:
        text: OFX text to search.
        tag: Tag name without brackets.

    Returns:
        The stripped value, or None if the tag is absent.
    """
    closed, open_ = _tag_patterns(tag)
    match = closed.search(text)
    if match:
        return match.group(1).strip()
    match = open_.search(text)
    if match:
        return match.group(1).strip()
    return None


def extract_tag(text: str, tag: str, parent: Optional[str] = None) -> Optional[str]:
    """Extract a tag value, optionally scoped to a parent aggregate.

    Args:
        text: OFX text to search.
        tag: Tag name.
        parent: Aggregate the tag must appear in (e.g. BANKACCTFROM).

    Returns:
        The value, or None if the tag (or its parent) is absent.
    """
    if parent is None:
        return extract_tag_value(text, tag)

    closed, _ = _tag_patterns(parent)
    match = closed.search(text)
    if match:
        return extract_tag_value(match.group(1), tag)

    start = re.search(rf"<{re.escape(parent)}>", text, re.IGNORECASE)
    if start is None:
        return None
    return extract_tag_value(text[start.end():], tag)


def normalize_ofx_content(content: str) -> str:
    """Prepare OFX content for tag extraction.

    Drops DOCTYPE declarations and the header preamble before <OFX>,
    normalizes line endings, and removes whitespace between tags.

    Args:
        content: Raw file content.

    Returns:
        Normalized content starting at the <OFX> tag.

    Raises:
        ParseError: If there is no <OFX> tag.
    """
    content = _DOCTYPE.sub("", content)
    start = _OFX_START.search(content)
    if start is None:
        raise ParseError("Not a valid OFX file: missing <OFX> tag")

    content = content[start.start():]
    content = content.replace("\r\n", "\n").replace("\r", "\n")
    return _INTER_TAG_WHITESPACE.sub("><", content)


class OfxParser(BaseParser):
    """Parser for OFX/QFX bank and credit card statements."""

    @property
    def file_format(self) -> FileFormat:
        """Return the format this parser reads."""
        return FileFormat.OFX

    def _scan(self, content: str) -> Iterator[ScanItem]:
        normalized = normalize_ofx_content(content)
        index = 0

        # Bank and card statements in file order
        found = [(start, block, False) for start, block in self._find_blocks(
            normalized, _BANK_STATEMENT_CLOSED, _BANK_STATEMENT_OPEN
        )]
        found += [(start, block, True) for start, block in self._find_blocks(
            normalized, _CARD_STATEMENT_CLOSED, _CARD_STATEMENT_OPEN
        )]
        statements = [(block, is_card) for _, block, is_card in sorted(found, key=lambda s: s[0])]

        if not statements:
            logger.warning("OFX file contains no bank or credit card statements")

        for block, is_card in statements:
            account = self._parse_account(block, is_card)
            if account is None:
                logger.warning("Skipping OFX statement without ACCTID")
                continue

            logger.debug(f"OFX statement for account {mask_account_id(account.external_account_id)}")
            yield account

            for txn in self._parse_transactions(block, account, index):
                index = txn.index + 1
                yield txn

    def _find_blocks(
        self,
        content: str,
        closed: re.Pattern[str],
        open_: re.Pattern[str],
    ) -> list[tuple[int, str]]:
        """Find statement blocks, falling back to unterminated blocks.

        Returns:
            (offset, block body) pairs.
        """
        blocks = [(m.start(), m.group(1)) for m in closed.finditer(content)]
        if not blocks:
            blocks = [(m.start(), m.group(1)) for m in open_.finditer(content)]
        return blocks

    def _parse_account(self, block: str, is_card: bool) -> Optional[AccountContext]:
        """Build the account context of one statement block.

        Returns:
            AccountContext, or None if the statement has no account id.
        """
        if is_card:
            account_id = extract_tag(block, "ACCTID", "CCACCTFROM")
            bank_id = None
            account_type = AccountType.CREDIT_CARD
        else:
            account_id = extract_tag(block, "ACCTID", "BANKACCTFROM")
            bank_id = extract_tag(block, "BANKID", "BANKACCTFROM")
            account_type = AccountType.from_code(
                extract_tag(block, "ACCTTYPE", "BANKACCTFROM"), AccountType.CHECKING
            )

        if not account_id:
            return None

        balance_date = self._extract_balance_field(block, "LEDGERBAL", "DTASOF")
        return AccountContext(
            external_account_id=account_id,
            bank_id=bank_id,
            account_type=account_type,
            currency=(extract_tag_value(block, "CURDEF") or "USD").upper(),
            ledger_balance=self._extract_balance(block, "LEDGERBAL"),
            available_balance=self._extract_balance(block, "AVAILBAL"),
            balance_as_of=self._to_date(balance_date) if balance_date else None,
        )

    def _extract_balance_field(self, block: str, balance_tag: str, tag: str) -> Optional[str]:
        """Read a field from a LEDGERBAL/AVAILBAL aggregate."""
        match = re.search(
            rf"<{balance_tag}>(.*?)(?:</{balance_tag}>|<[A-Z]+BAL>|</STMTRS>|</CCSTMTRS>|$)",
            block,
            _FLAGS,
        )
        if match is None:
            return None
        return extract_tag_value(match.group(1), tag)

    def _extract_balance(self, block: str, balance_tag: str) -> Optional[Decimal]:
        """Read the BALAMT of a balance aggregate."""
        raw = self._extract_balance_field(block, balance_tag, "BALAMT")
        if raw is None:
            return None
        try:
            return parse_ofx_amount(raw)
        except ValueError:
            logger.warning(f"Ignoring unparseable {balance_tag} amount: {raw!r}")
            return None

    def _to_date(self, raw: str) -> Optional[date]:
        """Convert an OFX date to a date, None if it is malformed."""
        try:
            return date.fromisoformat(parse_ofx_date(raw))
        except ValueError:
            logger.warning(f"Ignoring unparseable OFX balance date: {raw!r}")
            return None

    def _parse_transactions(
        self,
        block: str,
        account: AccountContext,
        start_index: int,
    ) -> Iterator[RawParsedTransaction]:
        """Yield the STMTTRN records of a statement block."""
        list_match = _TRANSACTION_LIST.search(block)
        if list_match is None:
            return

        index = start_index
        for match in _TRANSACTION.finditer(list_match.group(1)):
            txn = self._parse_transaction(match.group(1), account, index)
            if txn is None:
                continue
            index += 1
            yield txn

    def _parse_transaction(
        self,
        content: str,
        account: AccountContext,
        index: int,
    ) -> Optional[RawParsedTransaction]:
        """Parse one STMTTRN block.

        Returns:
            RawParsedTransaction, or None if TRNAMT or DTPOSTED is missing.
        """
        amount = extract_tag_value(content, "TRNAMT")
        posted = extract_tag_value(content, "DTPOSTED")
        if not amount or not posted:
            logger.debug("Skipping OFX transaction without TRNAMT or DTPOSTED")
            return None

        try:
            signed_amount: Optional[Decimal] = parse_ofx_amount(amount)
        except ValueError:
            signed_amount = None

        return RawParsedTransaction(
            source_format=FileFormat.OFX,
            index=index,
            date=parse_ofx_date(posted),
            amount=amount,
            signed_amount=signed_amount,
            description=extract_tag_value(content, "NAME"),
            memo=extract_tag_value(content, "MEMO"),
            reference=extract_tag_value(content, "REFNUM"),
            fitid=extract_tag_value(content, "FITID"),
            check_number=extract_tag_value(content, "CHECKNUM"),
            transaction_type=extract_tag_value(content, "TRNTYPE"),
            account=account,
        )

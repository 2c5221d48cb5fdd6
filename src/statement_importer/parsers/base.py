"""Abstract base class for statement parsers."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from itertools import islice
from typing import Iterator, Optional, Union

from statement_importer.models.account import AccountContext
from statement_importer.models.transaction import RawParsedTransaction
from statement_importer.models.upload import FileFormat
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

# Items produced while scanning a file: an account header or a transaction
ScanItem = Union[AccountContext, RawParsedTransaction]


class ParseError(Exception):
    """Exception raised when a file has no recognizable statement structure."""

    def __init__(self, message: str, filename: Optional[str] = None):
        """Initialize ParseError.

        Args:
            message: Error message.
            filename: Optional name of the file that failed to parse.
        """
        self.filename = filename
        super().__init__(message)


@dataclass
class ParsedAccount:
    """One account section of a statement and its transactions."""

    context: Optional[AccountContext]
    transactions: list[RawParsedTransaction] = field(default_factory=list)


@dataclass
class ParsedStatement:
    """Result of parsing a whole file."""

    accounts: list[ParsedAccount] = field(default_factory=list)

    @property
    def transaction_count(self) -> int:
        """Total number of transactions across all accounts."""
        return sum(len(account.transactions) for account in self.accounts)


class BaseParser(ABC):
    """Abstract base class for all statement parsers.

    Subclasses implement _scan(), a generator that walks the file once and
    yields an AccountContext whenever an account section starts, followed
    by that account's transactions. parse() and parse_to_flat_list() are
    both built on it, so a limited parse stops reading as soon as enough
    records have been produced.

    Parsers hold no per-file state; construct one per import.
    """

    @property
    @abstractmethod
    def file_format(self) -> FileFormat:
        """Return the format this parser reads."""
        pass

    @property
    def name(self) -> str:
        """Return parser name for logging.

        Returns:
            Parser name string.
        """
        return self.__class__.__name__

    @abstractmethod
    def _scan(self, content: str) -> Iterator[ScanItem]:
        """Walk the file content and yield accounts and transactions in order.

        Args:
            content: Decoded file content.

        Yields:
            AccountContext before the transactions of each account, then
            RawParsedTransaction records.

        Raises:
            ParseError: If the content has no recognizable structure.
        """
        pass

    def iter_transactions(self, content: str) -> Iterator[RawParsedTransaction]:
        """Lazily yield every transaction in the file.

        Args:
            content: Decoded file content.

        Yields:
            RawParsedTransaction records tagged with their account.
        """
        for item in self._scan(content):
            if isinstance(item, RawParsedTransaction):
                yield item

    def parse(self, content: str) -> ParsedStatement:
        """Parse the whole file, grouping transactions by account.

        Args:
            content: Decoded file content.

        Returns:
            ParsedStatement with one ParsedAccount per account section.

        Raises:
            ParseError: If the content has no recognizable structure.
        """
        statement = ParsedStatement()
        current: Optional[ParsedAccount] = None

        for item in self._scan(content):
            if isinstance(item, AccountContext):
                current = ParsedAccount(context=item)
                statement.accounts.append(current)
                continue
            if current is None:
                current = ParsedAccount(context=None)
                statement.accounts.append(current)
            current.transactions.append(item)

        logger.debug(
            f"{self.name} parsed {statement.transaction_count} transactions "
            f"in {len(statement.accounts)} account(s)"
        )
        return statement

    def parse_to_flat_list(
        self,
        content: str,
        limit: Optional[int] = None,
    ) -> list[RawParsedTransaction]:
        """Parse the file into a single list of transactions.

        Args:
            content: Decoded file content.
            limit: Stop after this many transactions. None means no limit.

        Returns:
            Transactions of all accounts in file order.

        Raises:
            ParseError: If the content has no recognizable structure.
            ValueError: If limit is negative.
        """
        if limit is not None and limit < 0:
            raise ValueError(f"limit must be non-negative, got {limit}")
        return list(islice(self.iter_transactions(content), limit))

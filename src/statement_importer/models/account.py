"""Account context attached to parsed statement transactions."""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Optional


class AccountType(Enum):
    """Type of financial account as reported by the statement."""

    CHECKING = "checking"
    SAVINGS = "savings"
    MONEY_MARKET = "moneymrkt"
    CREDIT_LINE = "creditline"
    CREDIT_CARD = "credit_card"
    BANK = "bank"
    CASH = "cash"
    INVESTMENT = "investment"
    ASSET = "asset"
    LIABILITY = "liability"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: Optional[str], default: "AccountType") -> "AccountType":
        """Look up an account type by its lowercase code.

        Args:
            code: Raw type code from the file (e.g. OFX ACCTTYPE).
            default: Type to use when the code is missing.

        Returns:
            Matching AccountType, OTHER for unknown codes, or default when empty.
        """
        if not code:
            return default
        try:
            return cls(code.strip().lower())
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True)
class AccountContext:
    """Account a group of parsed transactions belongs to.

    Produced by the OFX and QIF parsers and shared by every transaction of
    that account. Never mutated after creation.

    Attributes:
        external_account_id: Account number as found in the file (OFX ACCTID).
        bank_id: Routing/bank identifier (OFX BANKID), bank statements only.
        account_type: Type of account.
        currency: ISO currency code (OFX CURDEF), defaults to USD.
        ledger_balance: Ledger balance reported with the statement.
        available_balance: Available balance reported with the statement.
        balance_as_of: Date the ledger balance was computed.
        name: Account name (QIF N line in the account header).
    """

    external_account_id: Optional[str] = None
    bank_id: Optional[str] = None
    account_type: AccountType = AccountType.CHECKING
    currency: str = "USD"
    ledger_balance: Optional[Decimal] = None
    available_balance: Optional[Decimal] = None
    balance_as_of: Optional[date] = None
    name: Optional[str] = None

    @property
    def key(self) -> Optional[str]:
        """Identifier used to route this account to a destination account.

        Returns:
            The external account id, else the account name, else None.
        """
        return self.external_account_id or self.name

    def __repr__(self) -> str:
        masked = "****" + self.external_account_id[-4:] if self.external_account_id else None
        return (
            f"AccountContext(account={masked!r}, name={self.name!r}, "
            f"type={self.account_type.value}, currency={self.currency})"
        )

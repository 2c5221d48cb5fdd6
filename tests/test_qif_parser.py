"""Tests for the QIF parser."""

from decimal import Decimal

import pytest

from statement_importer.models.account import AccountType
from statement_importer.models.transaction import ClearedStatus
from statement_importer.parsers.base import ParseError
from statement_importer.parsers.qif_parser import (
    QifParser,
    QifState,
    next_state,
    parse_account_type,
    parse_category,
    parse_cleared_status,
)

BANK_QIF = """!Type:Bank
D12/30/25
T-45.67
CX
N1001
PGrocery Store
MWeekly groceries
LFood:Groceries
^
D12/31'25
T1,500.00
PACME Payroll
LSalary
^
"""

CREDIT_CARD_QIF = """!Type:CCard
D01/05/2026
T-89.99
C*
POnline Shop
AOnline Shop Inc.
A123 Main St
LShopping/Personal
^
"""

SPLIT_QIF = """!Type:Bank
D3/4/2025
T-100.00
PSupermarket
LFood
SFood:Groceries
EGroceries part
$-60.00
SHousehold
$-40.00
%40
^
"""

MULTI_ACCOUNT_QIF = """!Account
NEveryday Checking
TBank
^
!Type:Bank
D01/02/2025
T-10.00
PCoffee
^
!Type:CCard
NMy Visa
D01/03/2025
T-20.00
PBooks
^
!Type:Invst
D01/04/2025
T-500.00
YACME Corp
I50.00
Q10
O4.95
^
"""


class TestNextState:
    """Tests for the state transition function."""

    def test_headers_and_record_end_return_to_account(self) -> None:
        """Test that '!' and '^' always lead to IN_ACCOUNT."""
        for state in QifState:
            assert next_state(state, "!", True) == QifState.IN_ACCOUNT
            assert next_state(state, "^", True) == QifState.IN_ACCOUNT

    def test_n_is_account_name_before_transactions(self) -> None:
        """Test that N keeps the reader in the account before any transaction."""
        assert next_state(QifState.IN_ACCOUNT, "N", False) == QifState.IN_ACCOUNT
        assert next_state(QifState.NO_ACCOUNT, "N", False) == QifState.IN_ACCOUNT

    def test_n_is_reference_after_transactions(self) -> None:
        """Test that N opens a transaction once the account has records."""
        assert next_state(QifState.IN_ACCOUNT, "N", True) == QifState.IN_TRANSACTION

    def test_n_inside_transaction(self) -> None:
        """Test that N inside an open transaction stays a transaction field."""
        assert next_state(QifState.IN_TRANSACTION, "N", False) == QifState.IN_TRANSACTION

    def test_split_states(self) -> None:
        """Test entering and staying in a split."""
        assert next_state(QifState.IN_TRANSACTION, "S", False) == QifState.IN_SPLIT
        assert next_state(QifState.IN_SPLIT, "$", False) == QifState.IN_SPLIT
        assert next_state(QifState.IN_SPLIT, "E", False) == QifState.IN_SPLIT

    def test_field_opens_transaction(self) -> None:
        """Test that an ordinary field starts a transaction."""
        assert next_state(QifState.IN_ACCOUNT, "D", False) == QifState.IN_TRANSACTION


class TestFieldHelpers:
    """Tests for account type, cleared status and category parsing."""

    def test_account_types(self) -> None:
        """Test the type-code map and its default."""
        assert parse_account_type("Bank") == AccountType.BANK
        assert parse_account_type("CCard") == AccountType.CREDIT_CARD
        assert parse_account_type("Invst") == AccountType.INVESTMENT
        assert parse_account_type("Oth A") == AccountType.ASSET
        assert parse_account_type("Oth L") == AccountType.LIABILITY
        assert parse_account_type("Cash") == AccountType.CASH
        assert parse_account_type("Memorized") == AccountType.BANK

    def test_cleared_status(self) -> None:
        """Test cleared flag codes."""
        assert parse_cleared_status("X") == ClearedStatus.CLEARED
        assert parse_cleared_status("c") == ClearedStatus.CLEARED
        assert parse_cleared_status("*") == ClearedStatus.RECONCILED
        assert parse_cleared_status("R") == ClearedStatus.RECONCILED
        assert parse_cleared_status("") == ClearedStatus.UNCLEARED

    def test_category_with_subcategory(self) -> None:
        """Test Category:Subcategory."""
        category = parse_category("Food:Groceries")
        assert category is not None
        assert category.name == "Food"
        assert category.subcategory == "Groceries"
        assert category.full_name == "Food:Groceries"
        assert not category.is_transfer

    def test_category_with_class(self) -> None:
        """Test that the class is split off before the subcategory."""
        category = parse_category("Auto:Fuel/Business")
        assert category is not None
        assert (category.name, category.subcategory, category.class_name) == (
            "Auto",
            "Fuel",
            "Business",
        )

    def test_transfer(self) -> None:
        """Test a bracketed transfer account."""
        category = parse_category("[Savings]")
        assert category is not None
        assert category.is_transfer
        assert category.transfer_account == "Savings"
        assert category.full_name == "[Savings]"

    def test_transfer_with_class(self) -> None:
        """Test a transfer followed by a class."""
        category = parse_category("[Savings]/Household")
        assert category is not None
        assert category.is_transfer
        assert category.transfer_account == "Savings"
        assert category.class_name == "Household"

    def test_empty_category(self) -> None:
        """Test that an empty L field gives no category."""
        assert parse_category("  ") is None


class TestQifParser:
    """Tests for QifParser."""

    @pytest.fixture
    def parser(self) -> QifParser:
        """Create a QIF parser."""
        return QifParser()

    def test_bank_transactions(self, parser: QifParser) -> None:
        """Test a bank export with two records."""
        first, second = parser.parse_to_flat_list(BANK_QIF)

        assert first.date == "2025-12-30"
        assert first.amount == "-45.67"
        assert first.signed_amount == Decimal("-45.67")
        assert first.cleared == ClearedStatus.CLEARED
        assert first.reference == "1001"
        assert first.description == "Grocery Store"
        assert first.memo == "Weekly groceries"
        assert first.category is not None
        assert first.category.full_name == "Food:Groceries"
        assert first.source_id is not None and first.source_id.startswith("qif_")

        assert second.date == "2025-12-31"
        assert second.signed_amount == Decimal("1500.00")
        assert second.cleared == ClearedStatus.UNCLEARED
        assert second.reference is None
        assert second.index == 1

    def test_account_context(self, parser: QifParser) -> None:
        """Test the account context of a single-section file."""
        statement = parser.parse(BANK_QIF)

        assert len(statement.accounts) == 1
        context = statement.accounts[0].context
        assert context is not None
        assert context.account_type == AccountType.BANK
        assert context.external_account_id is None
        assert len(statement.accounts[0].transactions) == 2

    def test_credit_card_with_address(self, parser: QifParser) -> None:
        """Test a card record with cleared flag, address lines and class."""
        (txn,) = parser.parse_to_flat_list(CREDIT_CARD_QIF)

        assert txn.account is not None
        assert txn.account.account_type == AccountType.CREDIT_CARD
        assert txn.date == "2026-01-05"
        assert txn.cleared == ClearedStatus.RECONCILED
        assert txn.address == "Online Shop Inc.\n123 Main St"
        assert txn.category is not None
        assert txn.category.name == "Shopping"
        assert txn.category.class_name == "Personal"

    def test_splits(self, parser: QifParser) -> None:
        """Test split lines; their amounts need not add up to the total."""
        (txn,) = parser.parse_to_flat_list(SPLIT_QIF)

        assert txn.date == "2025-03-04"
        assert txn.signed_amount == Decimal("-100.00")
        assert len(txn.splits) == 2

        groceries, household = txn.splits
        assert groceries.category is not None
        assert groceries.category.subcategory == "Groceries"
        assert groceries.memo == "Groceries part"
        assert groceries.amount == Decimal("-60.00")
        assert household.amount == Decimal("-40.00")
        assert household.percentage == Decimal("40")

    def test_multiple_accounts(self, parser: QifParser) -> None:
        """Test !Account blocks, account names and investment fields."""
        statement = parser.parse(MULTI_ACCOUNT_QIF)

        contexts = [a.context for a in statement.accounts]
        assert [c.account_type for c in contexts] == [
            AccountType.BANK,
            AccountType.CREDIT_CARD,
            AccountType.INVESTMENT,
        ]
        assert contexts[0].name == "Everyday Checking"
        assert contexts[1].name == "My Visa"

        txns = parser.parse_to_flat_list(MULTI_ACCOUNT_QIF)
        assert [t.description for t in txns] == ["Coffee", "Books", ""]
        assert [t.index for t in txns] == [0, 1, 2]

        investment = txns[2]
        assert investment.security == "ACME Corp"
        assert investment.price == "50.00"
        assert investment.quantity == "10"
        assert investment.commission == "4.95"

    def test_investment_fields_ignored_for_bank(self, parser: QifParser) -> None:
        """Test that Y/I/Q/O lines are dropped outside investment accounts."""
        content = "!Type:Bank\nD01/01/2025\nT-5.00\nYACME\nQ3\n^\n"
        (txn,) = parser.parse_to_flat_list(content)
        assert txn.security is None
        assert txn.quantity is None

    def test_n_after_first_transaction_is_reference(self, parser: QifParser) -> None:
        """Test that a leading N in a later record is a reference, not a name."""
        content = (
            "!Type:Bank\nD01/01/2025\nT-5.00\nPFirst\n^\n"
            "N2002\nD01/02/2025\nT-6.00\nPSecond\n^\n"
        )
        first, second = parser.parse_to_flat_list(content)
        assert second.reference == "2002"
        assert first.account is not None and first.account.name is None

    def test_implicit_account(self, parser: QifParser) -> None:
        """Test records before any !Type: header go to an implicit bank account."""
        content = "D01/01/2025\nT-5.00\nPNo Header\n^\n"
        statement = parser.parse(content)

        assert len(statement.accounts) == 1
        context = statement.accounts[0].context
        assert context is not None
        assert context.account_type == AccountType.BANK
        assert statement.accounts[0].transactions[0].description == "No Header"

    def test_record_missing_amount_skipped(self, parser: QifParser) -> None:
        """Test that records without date or amount are dropped."""
        content = "!Type:Bank\nD01/01/2025\nPNo Amount\n^\nT-5.00\nPNo Date\n^\nD01/02/2025\nT1\n^\n"
        txns = parser.parse_to_flat_list(content)
        assert len(txns) == 1
        assert txns[0].date == "2025-01-02"

    def test_unterminated_last_record(self, parser: QifParser) -> None:
        """Test that a record without a closing ^ is still emitted."""
        content = "!Type:Bank\nD01/01/2025\nT-5.00\nPLast"
        (txn,) = parser.parse_to_flat_list(content)
        assert txn.description == "Last"

    def test_header_closes_open_record(self, parser: QifParser) -> None:
        """Test that a new !Type: header finishes the open record."""
        content = "!Type:Bank\nD01/01/2025\nT-5.00\nPOpen\n!Type:CCard\nD01/02/2025\nT-1\n^\n"
        txns = parser.parse_to_flat_list(content)
        assert [t.description for t in txns] == ["Open", ""]
        assert txns[1].account is not None
        assert txns[1].account.account_type == AccountType.CREDIT_CARD

    def test_u_amount_used_when_t_missing(self, parser: QifParser) -> None:
        """Test the U amount fallback."""
        content = "!Type:Bank\nD01/01/2025\nU-7.25\n^\n"
        (txn,) = parser.parse_to_flat_list(content)
        assert txn.signed_amount == Decimal("-7.25")

    def test_european_amount(self, parser: QifParser) -> None:
        """Test European digit grouping in T fields."""
        content = "!Type:Bank\nD01/01/2025\nT-1.234,56\n^\n"
        (txn,) = parser.parse_to_flat_list(content)
        assert txn.signed_amount == Decimal("-1234.56")

    def test_garbage_amount_kept_unparsed(self, parser: QifParser) -> None:
        """Test that an unparseable amount reaches normalization as None."""
        content = "!Type:Bank\nD01/01/2025\nTabc\n^\n"
        (txn,) = parser.parse_to_flat_list(content)
        assert txn.amount == "abc"
        assert txn.signed_amount is None

    def test_source_id_is_stable(self, parser: QifParser) -> None:
        """Test that the content id depends only on record content."""
        first = parser.parse_to_flat_list(BANK_QIF)
        second = QifParser().parse_to_flat_list(BANK_QIF)
        assert [t.source_id for t in first] == [t.source_id for t in second]
        assert first[0].source_id != first[1].source_id

    @pytest.mark.parametrize(
        "raw_date,expected",
        [
            ("12/30/25", "2025-12-30"),
            ("12/30'25", "2025-12-30"),
            ("30/12/2025", "2025-12-30"),
            ("3/4/2025", "2025-03-04"),
            ("25/12/2025", "2025-12-25"),
            ("1/2/99", "1999-01-02"),
        ],
    )
    def test_dates(self, parser: QifParser, raw_date: str, expected: str) -> None:
        """Test QIF date forms."""
        (txn,) = parser.parse_to_flat_list(f"!Type:Bank\nD{raw_date}\nT1.00\n^\n")
        assert txn.date == expected

    def test_limit(self, parser: QifParser) -> None:
        """Test that parsing stops at the limit."""
        txns = parser.parse_to_flat_list(MULTI_ACCOUNT_QIF, limit=1)
        assert [t.description for t in txns] == ["Coffee"]

    def test_crlf_line_endings(self, parser: QifParser) -> None:
        """Test Windows line endings."""
        txns = parser.parse_to_flat_list(BANK_QIF.replace("\n", "\r\n"))
        assert len(txns) == 2

    def test_not_qif(self, parser: QifParser) -> None:
        """Test that content with no QIF structure raises ParseError."""
        with pytest.raises(ParseError):
            parser.parse("hello world\nsecond line\n")

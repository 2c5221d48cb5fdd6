"""Tests for the OFX parser."""

from datetime import date
from decimal import Decimal

import pytest

from statement_importer.models.account import AccountType
from statement_importer.models.upload import FileFormat
from statement_importer.parsers.base import ParseError
from statement_importer.parsers.ofx_parser import (
    OfxParser,
    extract_tag,
    extract_tag_value,
    normalize_ofx_content,
)

SGML_BANK = """OFXHEADER:100
DATA:OFXSGML
VERSION:102
SECURITY:NONE
ENCODING:USASCII

<OFX>
<SIGNONMSGSRSV1>
<SONRS>
<STATUS><CODE>0<SEVERITY>INFO</STATUS>
<DTSERVER>20240131120000
</SONRS>
</SIGNONMSGSRSV1>
<BANKMSGSRSV1>
<STMTTRNRS>
<TRNUID>1
<STMTRS>
<CURDEF>USD
<BANKACCTFROM>
<BANKID>021000021
<ACCTID>123456789
<ACCTTYPE>SAVINGS
</BANKACCTFROM>
<BANKTRANLIST>
<DTSTART>20240101
<DTEND>20240131
<STMTTRN>
<TRNTYPE>DEBIT
<DTPOSTED>20240115120000[-5:EST]
<TRNAMT>-50.00
<FITID>FIT001
<NAME>GROCERY STORE
<MEMO>Weekly shopping
</STMTTRN>
<STMTTRN>
<TRNTYPE>CREDIT
<DTPOSTED>20240120
<TRNAMT>1500.00
<FITID>FIT002
<NAME>ACME PAYROLL
<REFNUM>REF-77
</STMTTRN>
<STMTTRN>
<TRNTYPE>CHECK
<DTPOSTED>20240125
<TRNAMT>-120.00
<FITID>FIT003
<CHECKNUM>1042
<NAME>CHECK 1042
</STMTTRN>
</BANKTRANLIST>
<LEDGERBAL>
<BALAMT>2500.75
<DTASOF>20240131
</LEDGERBAL>
<AVAILBAL>
<BALAMT>2400.00
<DTASOF>20240131
</AVAILBAL>
</STMTRS>
</STMTTRNRS>
</BANKMSGSRSV1>
</OFX>
"""

XML_CARD = """<?xml version="1.0" encoding="UTF-8"?>
<?OFX OFXHEADER="200" VERSION="220" SECURITY="NONE"?>
<OFX>
  <CREDITCARDMSGSRSV1>
    <CCSTMTTRNRS>
      <CCSTMTRS>
        <CURDEF>eur</CURDEF>
        <CCACCTFROM>
          <ACCTID>4111111111111111</ACCTID>
        </CCACCTFROM>
        <BANKTRANLIST>
          <STMTTRN>
            <TRNTYPE>POS</TRNTYPE>
            <DTPOSTED>20240203</DTPOSTED>
            <TRNAMT>-12.34</TRNAMT>
            <FITID>CC-1</FITID>
            <NAME>COFFEE BAR</NAME>
          </STMTTRN>
        </BANKTRANLIST>
        <LEDGERBAL>
          <BALAMT>-512.10</BALAMT>
          <DTASOF>20240229</DTASOF>
        </LEDGERBAL>
      </CCSTMTRS>
    </CCSTMTTRNRS>
  </CREDITCARDMSGSRSV1>
</OFX>
"""


class TestTagExtraction:
    """Tests for extract_tag_value and extract_tag."""

    def test_closed_tag(self) -> None:
        """Test the XML form."""
        assert extract_tag_value("<NAME>COFFEE</NAME>", "NAME") == "COFFEE"

    def test_open_tag_ends_at_next_tag(self) -> None:
        """Test the SGML form terminated by the next tag."""
        assert extract_tag_value("<TRNAMT>-5.00<FITID>1", "TRNAMT") == "-5.00"

    def test_open_tag_ends_at_line_break(self) -> None:
        """Test the SGML form terminated by a line break."""
        assert extract_tag_value("<NAME>Coffee Shop \n<MEMO>x", "NAME") == "Coffee Shop"

    def test_case_insensitive(self) -> None:
        """Test lowercase tags."""
        assert extract_tag_value("<name>coffee</name>", "NAME") == "coffee"

    def test_missing_tag(self) -> None:
        """Test that an absent tag gives None."""
        assert extract_tag_value("<NAME>x</NAME>", "MEMO") is None

    def test_scoped_to_parent(self) -> None:
        """Test that a parent aggregate limits the search."""
        text = "<ACCTID>outer<BANKACCTFROM><ACCTID>inner</BANKACCTFROM>"
        assert extract_tag(text, "ACCTID", "BANKACCTFROM") == "inner"
        assert extract_tag(text, "ACCTID", "CCACCTFROM") is None


class TestNormalizeOfxContent:
    """Tests for normalize_ofx_content."""

    def test_drops_preamble_and_whitespace(self) -> None:
        """Test that everything before <OFX> and between tags is removed."""
        result = normalize_ofx_content("HEADER:1\r\n\r\n<OFX>\r\n  <A>1</A>\r\n</OFX>")
        assert result == "<OFX><A>1</A></OFX>"

    def test_drops_doctype(self) -> None:
        """Test that DOCTYPE declarations are removed."""
        result = normalize_ofx_content('<!DOCTYPE OFX SYSTEM "ofx.dtd"><OFX></OFX>')
        assert result == "<OFX></OFX>"

    def test_missing_ofx_tag(self) -> None:
        """Test that content without <OFX> is a parse error."""
        with pytest.raises(ParseError, match="missing <OFX> tag"):
            normalize_ofx_content("OFXHEADER:100\n<BANKMSGSRSV1>")


class TestOfxParser:
    """Tests for OfxParser."""

    @pytest.fixture
    def parser(self) -> OfxParser:
        """Create an OFX parser."""
        return OfxParser()

    def test_sgml_bank_statement(self, parser: OfxParser) -> None:
        """Test account context and transactions of an OFX 1.x bank statement."""
        statement = parser.parse(SGML_BANK)

        assert len(statement.accounts) == 1
        account = statement.accounts[0].context
        assert account is not None
        assert account.external_account_id == "123456789"
        assert account.bank_id == "021000021"
        assert account.account_type == AccountType.SAVINGS
        assert account.currency == "USD"
        assert account.ledger_balance == Decimal("2500.75")
        assert account.available_balance == Decimal("2400.00")
        assert account.balance_as_of == date(2024, 1, 31)

        txns = statement.accounts[0].transactions
        assert [t.fitid for t in txns] == ["FIT001", "FIT002", "FIT003"]
        assert [t.index for t in txns] == [0, 1, 2]

    def test_transaction_fields(self, parser: OfxParser) -> None:
        """Test the fields kept from each STMTTRN."""
        first, second, third = parser.parse_to_flat_list(SGML_BANK)

        assert first.source_format == FileFormat.OFX
        assert first.date == "2024-01-15"
        assert first.amount == "-50.00"
        assert first.signed_amount == Decimal("-50.00")
        assert first.absolute_amount == Decimal("50.00")
        assert first.description == "GROCERY STORE"
        assert first.memo == "Weekly shopping"
        assert first.transaction_type == "DEBIT"
        assert first.account is not None
        assert first.account.external_account_id == "123456789"

        assert second.reference == "REF-77"
        assert second.signed_amount == Decimal("1500.00")
        assert third.check_number == "1042"

    def test_xml_credit_card_statement(self, parser: OfxParser) -> None:
        """Test an OFX 2.x credit card statement with closing tags."""
        statement = parser.parse(XML_CARD)

        account = statement.accounts[0].context
        assert account is not None
        assert account.external_account_id == "4111111111111111"
        assert account.bank_id is None
        assert account.account_type == AccountType.CREDIT_CARD
        assert account.currency == "EUR"
        assert account.ledger_balance == Decimal("-512.10")
        assert account.balance_as_of == date(2024, 2, 29)

        (txn,) = statement.accounts[0].transactions
        assert txn.date == "2024-02-03"
        assert txn.description == "COFFEE BAR"
        assert txn.fitid == "CC-1"

    def test_missing_closing_tags(self, parser: OfxParser) -> None:
        """Test a statement whose aggregates are never closed."""
        content = (
            "<OFX><BANKMSGSRSV1><STMTTRNRS><STMTRS>"
            "<BANKACCTFROM><ACCTID>999"
            "<BANKTRANLIST>"
            "<STMTTRN><DTPOSTED>20240301<TRNAMT>-1.00<FITID>A"
            "<STMTTRN><DTPOSTED>20240302<TRNAMT>-2.00<FITID>B"
        )
        txns = parser.parse_to_flat_list(content)

        assert [t.fitid for t in txns] == ["A", "B"]
        assert txns[0].account is not None
        assert txns[0].account.external_account_id == "999"
        assert txns[0].account.account_type == AccountType.CHECKING

    def test_transaction_without_amount_or_date_skipped(self, parser: OfxParser) -> None:
        """Test that STMTTRN records lacking TRNAMT or DTPOSTED are dropped."""
        content = (
            "<OFX><STMTRS><BANKACCTFROM><ACCTID>1</BANKACCTFROM><BANKTRANLIST>"
            "<STMTTRN><DTPOSTED>20240301<FITID>NOAMT</STMTTRN>"
            "<STMTTRN><TRNAMT>5.00<FITID>NODATE</STMTTRN>"
            "<STMTTRN><DTPOSTED>20240303<TRNAMT>5.00<FITID>OK</STMTTRN>"
            "</BANKTRANLIST></STMTRS></OFX>"
        )
        txns = parser.parse_to_flat_list(content)

        assert [t.fitid for t in txns] == ["OK"]
        assert txns[0].index == 0

    def test_statement_without_acctid_skipped(self, parser: OfxParser) -> None:
        """Test that a statement with no account id yields nothing."""
        content = (
            "<OFX><STMTRS><BANKACCTFROM><BANKID>1</BANKACCTFROM><BANKTRANLIST>"
            "<STMTTRN><DTPOSTED>20240301<TRNAMT>5.00<FITID>X</STMTTRN>"
            "</BANKTRANLIST></STMTRS></OFX>"
        )
        assert parser.parse(content).accounts == []

    def test_garbage_amount_kept_unparsed(self, parser: OfxParser) -> None:
        """Test that an unparseable TRNAMT is passed on for normalization to report."""
        content = (
            "<OFX><STMTRS><BANKACCTFROM><ACCTID>1</BANKACCTFROM><BANKTRANLIST>"
            "<STMTTRN><DTPOSTED>20240301<TRNAMT>abc<FITID>X</STMTTRN>"
            "</BANKTRANLIST></STMTRS></OFX>"
        )
        (txn,) = parser.parse_to_flat_list(content)
        assert txn.amount == "abc"
        assert txn.signed_amount is None

    def test_bank_and_card_in_one_file(self, parser: OfxParser) -> None:
        """Test that statements keep file order and share a running index."""
        bank = SGML_BANK[SGML_BANK.index("<BANKMSGSRSV1>"):SGML_BANK.index("</OFX>")]
        card = XML_CARD[XML_CARD.index("<CREDITCARDMSGSRSV1>"):XML_CARD.index("</OFX>")]
        content = f"<OFX>{card}{bank}</OFX>"

        statement = parser.parse(content)

        assert [a.context.account_type for a in statement.accounts] == [
            AccountType.CREDIT_CARD,
            AccountType.SAVINGS,
        ]
        assert [t.index for t in parser.parse_to_flat_list(content)] == [0, 1, 2, 3]

    def test_limit(self, parser: OfxParser) -> None:
        """Test that parse_to_flat_list stops at the limit."""
        txns = parser.parse_to_flat_list(SGML_BANK, limit=2)
        assert [t.fitid for t in txns] == ["FIT001", "FIT002"]

    def test_negative_limit(self, parser: OfxParser) -> None:
        """Test that a negative limit is rejected."""
        with pytest.raises(ValueError):
            parser.parse_to_flat_list(SGML_BANK, limit=-1)

    def test_no_statements(self, parser: OfxParser) -> None:
        """Test an OFX file without statements."""
        assert parser.parse("<OFX><SIGNONMSGSRSV1></SIGNONMSGSRSV1></OFX>").accounts == []

    def test_not_ofx(self, parser: OfxParser) -> None:
        """Test that content without an <OFX> tag raises ParseError."""
        with pytest.raises(ParseError):
            parser.parse("Date,Amount\n2024-01-01,5\n")

"""Tests for the XML statement parsers (ISO 20022 camt and NBS IzvodBanke)."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from bankrecon.engine.errors import ParseError
from bankrecon.parsers.iso20022_parser import ISO20022Parser, namespace_of
from bankrecon.parsers.nbs_parser import NBSParser
from bankrecon.parsers.records import ISO20022, NBS_XML


FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def camt():
    return ISO20022Parser().parse((FIXTURES_DIR / "camt053.xml").read_text())


@pytest.fixture
def izvod():
    return NBSParser().parse((FIXTURES_DIR / "izvod.xml").read_text())


class TestISO20022Parser:
    """Test camt.053 parsing."""

    def test_header(self, camt):
        assert camt.source_format == ISO20022
        assert camt.account_number == "RS35265100000012345678"
        assert camt.bank_name == "AIKBRS22"
        assert camt.statement_number == "STMT-2024-045"
        assert camt.currency == "EUR"

    def test_balances_and_period(self, camt):
        assert camt.opening_balance == Decimal("1000.00")
        assert camt.closing_balance == Decimal("2150.00")
        assert camt.period_from == date(2024, 3, 15)
        assert camt.period_to == date(2024, 3, 16)
        assert camt.statement_date == date(2024, 3, 16)

    def test_credit_entry_uses_debtor(self, camt):
        entry = camt.entries[0]
        assert entry.indicator == "CRDT"
        assert entry.amount == Decimal("1250.00")
        assert entry.reference == "2024-0123"
        assert entry.counterpart_name == "ABC d.o.o."
        assert entry.counterpart_account == "RS35160000000000000001"
        assert entry.entry_reference == "E1"

    def test_debit_entry_uses_creditor(self, camt):
        entry = camt.entries[1]
        assert entry.indicator == "DBIT"
        assert entry.counterpart_name == "Telekom Srbija"
        assert entry.reference == "E2E-77"
        assert entry.description == "Internet mart"
        assert entry.value_date == date(2024, 3, 16)

    def test_reversal_flag(self):
        text = (FIXTURES_DIR / "camt053.xml").read_text().replace(
            "<NtryRef>E2</NtryRef>", "<NtryRef>E2</NtryRef><RvslInd>true</RvslInd>"
        )
        parsed = ISO20022Parser().parse(text)
        assert parsed.entries[1].reversal is True
        assert parsed.entries[0].reversal is False

    def test_malformed_xml(self):
        with pytest.raises(ParseError, match="Malformed XML") as exc:
            ISO20022Parser().parse("<Document><Stmt></Document>")
        assert exc.value.line == 1

    def test_wrong_namespace(self):
        with pytest.raises(ParseError, match="Not an ISO 20022"):
            ISO20022Parser().parse('<Document xmlns="urn:example"/>')

    def test_missing_closing_balance(self):
        text = (FIXTURES_DIR / "camt053.xml").read_text().replace("CLBD", "XXXX")
        with pytest.raises(ParseError, match="Missing balance CLBD"):
            ISO20022Parser().parse(text)

    def test_invalid_indicator(self):
        text = (FIXTURES_DIR / "camt053.xml").read_text().replace(
            "<CdtDbtInd>DBIT</CdtDbtInd>\n        <BookgDt>", "<CdtDbtInd>XXXX</CdtDbtInd>\n        <BookgDt>"
        )
        with pytest.raises(ParseError, match="credit/debit indicator"):
            ISO20022Parser().parse(text)

    def test_namespace_of(self):
        assert namespace_of("{urn:a}Document") == "urn:a"
        assert namespace_of("Document") == ""


class TestNBSParser:
    """Test NBS IzvodBanke parsing."""

    def test_header(self, izvod):
        assert izvod.source_format == NBS_XML
        assert izvod.account_number == "160-0000000012345-67"
        assert izvod.bank_name == "Banca Intesa"
        assert izvod.statement_number == "12"
        assert izvod.currency == "RSD"
        assert izvod.statement_date == date(2024, 3, 15)
        assert izvod.period_from == izvod.period_to == date(2024, 3, 15)

    def test_balances(self, izvod):
        assert izvod.opening_balance == Decimal("50000.00")
        assert izvod.closing_balance == Decimal("72500.00")

    def test_entries(self, izvod):
        credit, debit = izvod.entries
        assert credit.credit == Decimal("25000.00")
        assert credit.debit == Decimal("0")
        assert credit.reference == "97 2024-0123"
        assert credit.counterpart_name == "ABC d.o.o."
        assert debit.debit == Decimal("2500.00")
        assert debit.counterpart_name == ""

    def test_missing_header(self):
        with pytest.raises(ParseError, match="missing header"):
            NBSParser().parse("<IzvodBanke><StavkeIzvoda/></IzvodBanke>")

    def test_wrong_root(self):
        with pytest.raises(ParseError, match="IzvodBanke"):
            NBSParser().parse("<Statement/>")

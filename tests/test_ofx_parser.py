"""Tests for the OFX parser."""

from datetime import date
from decimal import Decimal
from pathlib import Path

import pytest

from bankrecon.engine.errors import ParseError
from bankrecon.parsers.ofx_parser import OFXParser
from bankrecon.parsers.records import OFX, OfxEntry


FIXTURES_DIR = Path(__file__).parent / "fixtures"


@pytest.fixture
def statement():
    return OFXParser().parse((FIXTURES_DIR / "sample.ofx").read_bytes())


class TestOFXParser:
    """Test OFX/QFX parsing functionality."""

    def test_parse_sample_ofx(self, statement):
        assert statement.source_format == OFX
        assert len(statement.entries) == 3
        assert all(isinstance(e, OfxEntry) for e in statement.entries)

    def test_transaction_amounts(self, statement):
        """Amounts keep the TRNAMT sign and are Decimal."""
        amounts = sorted(e.amount for e in statement.entries)
        assert amounts == [Decimal("-200.00"), Decimal("500.00"), Decimal("1500.00")]

    def test_transaction_dates(self, statement):
        dates = sorted(e.transaction_date for e in statement.entries)
        assert dates == [date(2025, 1, 10), date(2025, 1, 15), date(2025, 1, 20)]

    def test_descriptions_and_payees(self, statement):
        descriptions = [e.description for e in statement.entries]
        assert any("Test deposit" in d for d in descriptions)
        assert any("Test withdrawal" in d for d in descriptions)
        assert "ACME Corp" in [e.counterpart_name for e in statement.entries]

    def test_check_numbers_as_references(self, statement):
        refs = [e.reference for e in statement.entries if e.reference]
        assert refs == ["CHK001", "CHK003"]

    def test_fit_ids(self, statement):
        assert [e.fit_id for e in statement.entries] == ["FIX001", "FIX002", "FIX003"]

    def test_header(self, statement):
        assert statement.account_number == "987654321"
        assert statement.currency == "EUR"
        assert statement.period_from == date(2025, 1, 1)
        assert statement.period_to == date(2025, 1, 31)
        assert statement.statement_number == "20250101-20250131"

    def test_opening_balance_derived_from_ledger_balance(self, statement):
        assert statement.closing_balance == Decimal("1800.00")
        assert statement.opening_balance == Decimal("0")

    def test_invalid_ofx_content(self):
        with pytest.raises(ParseError, match="Failed to parse"):
            OFXParser().parse(b"this is not valid OFX content")

    def test_parse_error_is_value_error(self):
        with pytest.raises(ValueError):
            OFXParser().parse(b"<OFX></OFX>")

"""Tests for statement normalization."""

from datetime import date
from decimal import Decimal

import pytest

from bankrecon.engine.config import ReconciliationConfig
from bankrecon.engine.errors import ParseError
from bankrecon.engine.models import TransactionType
from bankrecon.engine.normalizer import (
    BALANCE_MISMATCH,
    DUPLICATE_TRANSACTION,
    Normalizer,
    normalize,
    signed_amount,
    stable_id,
)
from bankrecon.parsers.records import CSV, CamtEntry, CsvEntry, Mt940Entry, NbsEntry, OfxEntry, ParsedStatement


def common(day: int = 15, ref: str = "", line: int = 2) -> dict:
    d = date(2024, 3, day)
    return dict(
        line=line,
        transaction_date=d,
        value_date=d,
        currency="RSD",
        reference=ref,
        description="",
        counterpart_name="",
        counterpart_account="",
    )


def make_entry(amount: str, day: int = 15, ref: str = "", line: int = 2) -> CsvEntry:
    """Helper to create a signed-amount CSV row."""
    return CsvEntry(amount=Decimal(amount), debit=None, credit=None, type_indicator=None,
                    **common(day, ref, line))


def make_statement(entries, opening="0", closing=None, number="S-1") -> ParsedStatement:
    if closing is None:
        closing = Decimal(opening) + sum((signed_amount(e) for e in entries), Decimal("0"))
    return ParsedStatement(
        source_format=CSV,
        account_number="265-1",
        bank_name="Test Bank",
        statement_number=number,
        statement_date=date(2024, 3, 31),
        period_from=date(2024, 3, 1),
        period_to=date(2024, 3, 31),
        opening_balance=Decimal(opening),
        closing_balance=Decimal(closing),
        currency="RSD",
        entries=tuple(entries),
    )


class TestSignedAmount:
    """Each row variant maps to one canonical sign."""

    @pytest.mark.parametrize("mark, expected", [
        ("C", "10"), ("D", "-10"), ("RC", "-10"), ("RD", "10"),
    ])
    def test_mt940_marks(self, mark, expected):
        entry = Mt940Entry(mark=mark, amount=Decimal("10"), transaction_code="NTRF",
                           bank_reference="", **common())
        assert signed_amount(entry) == Decimal(expected)

    @pytest.mark.parametrize("indicator, reversal, expected", [
        ("CRDT", False, "10"), ("DBIT", False, "-10"), ("CRDT", True, "-10"), ("DBIT", True, "10"),
    ])
    def test_camt_indicator_and_reversal(self, indicator, reversal, expected):
        entry = CamtEntry(amount=Decimal("10"), indicator=indicator, reversal=reversal,
                          entry_reference="", **common())
        assert signed_amount(entry) == Decimal(expected)

    def test_ofx_keeps_sign(self):
        entry = OfxEntry(fit_id="F1", amount=Decimal("-7.50"), trn_type="debit", **common())
        assert signed_amount(entry) == Decimal("-7.50")

    def test_nbs_debit_credit(self):
        credit = NbsEntry(debit=Decimal("0"), credit=Decimal("25"), **common())
        debit = NbsEntry(debit=Decimal("25"), credit=Decimal("0"), **common())
        assert signed_amount(credit) == Decimal("25")
        assert signed_amount(debit) == Decimal("-25")

    def test_csv_type_indicator_overrides_sign(self):
        entry = CsvEntry(amount=Decimal("-5"), debit=None, credit=None, type_indicator="C", **common())
        assert signed_amount(entry) == Decimal("5")


class TestNormalizer:
    """Test ids, types and validation warnings."""

    def test_transactions_are_typed(self):
        normalized, warnings = normalize(make_statement([make_entry("100"), make_entry("-40", day=16)]))

        credit, debit = normalized.transactions
        assert credit.type == TransactionType.CREDIT
        assert debit.type == TransactionType.DEBIT
        assert debit.amount == Decimal("-40")
        assert normalized.statement.total_credit == Decimal("100")
        assert normalized.statement.total_debit == Decimal("40")
        assert warnings == []

    def test_balance_mismatch_is_a_warning(self):
        """Opening 100000 + 50000 - 20000 is 130000, not the declared 129000."""
        parsed = make_statement(
            [make_entry("50000"), make_entry("-20000", day=16)],
            opening="100000",
            closing="129000",
        )
        normalized, warnings = normalize(parsed)

        assert len(normalized.transactions) == 2
        assert [w.code for w in warnings] == [BALANCE_MISMATCH]
        assert "1000" in warnings[0].message

    def test_balance_within_epsilon(self):
        parsed = make_statement([make_entry("10")], opening="0", closing="10.01")
        _, warnings = normalize(parsed)
        assert warnings == []

    def test_balance_epsilon_is_configurable(self):
        parsed = make_statement([make_entry("10")], opening="0", closing="10.01")
        config = ReconciliationConfig(balance_epsilon=Decimal("0"))
        _, warnings = Normalizer(config).normalize(parsed)
        assert [w.code for w in warnings] == [BALANCE_MISMATCH]

    def test_duplicates_flagged_not_dropped(self):
        first = make_entry("100", ref="INV 2024/1", line=2)
        second = make_entry("100", ref="inv-2024-1", line=3)
        normalized, warnings = normalize(make_statement([first, second]))

        a, b = normalized.transactions
        assert len(normalized.transactions) == 2
        assert a.duplicate_of is None
        assert b.duplicate_of == a.id
        assert b.is_duplicate
        assert warnings[0].code == DUPLICATE_TRANSACTION
        assert warnings[0].line == 3

    def test_zero_amount_rejected(self):
        with pytest.raises(ParseError) as exc:
            normalize(make_statement([make_entry("0", line=7)]))
        assert exc.value.line == 7

    def test_ids_are_deterministic(self):
        parsed = make_statement([make_entry("100"), make_entry("-40", day=16)])
        a, _ = normalize(parsed)
        b, _ = normalize(parsed)

        assert a.statement.id == b.statement.id
        assert [t.id for t in a.transactions] == [t.id for t in b.transactions]

    def test_ids_depend_on_company_and_content(self):
        parsed = make_statement([make_entry("100")])
        a, _ = normalize(parsed, company_id="one")
        b, _ = normalize(parsed, company_id="two")
        c, _ = normalize(make_statement([make_entry("101")]), company_id="one")

        assert a.statement.id != b.statement.id
        assert a.transactions[0].id != c.transactions[0].id

    def test_identical_rows_get_distinct_ids(self):
        normalized, _ = normalize(make_statement([make_entry("5"), make_entry("5")]))
        a, b = normalized.transactions
        assert a.id != b.id
        assert (a.position, b.position) == (0, 1)

    def test_stable_id(self):
        assert stable_id("a", 1) == stable_id("a", 1)
        assert stable_id("a", 1) != stable_id("a1")
        assert len(stable_id("x")) == 20

"""Tests for candidate generation."""

from datetime import date
from decimal import Decimal

from bankrecon.engine.candidates import (
    TAG_DATE_WINDOW,
    TAG_PARTNER_EXACT,
    TAG_PARTNER_FUZZY,
    TAG_REFERENCE,
    CandidateGenerator,
)
from bankrecon.engine.config import ReconciliationConfig
from bankrecon.engine.text import normalize_account
from tests.factories import make_target, make_txn


def tags_by_target(candidates):
    return {c.target_id: set(c.tags) for c in candidates}


class TestReferenceRule:

    def test_reference_equality_ignores_punctuation_and_case(self):
        gen = CandidateGenerator().index([make_target("INV-1", "999", ref="2024 0123")])
        candidates = gen.generate_candidates(make_txn("125000", ref="2024-0123"))

        assert TAG_REFERENCE in tags_by_target(candidates)["INV-1"]

    def test_different_reference_does_not_qualify(self):
        gen = CandidateGenerator().index([make_target("INV-1", "999", ref="2024-0124")])
        assert gen.generate_candidates(make_txn("125000", ref="2024-0123")) == []


class TestAmountRule:

    def test_tight_band(self):
        gen = CandidateGenerator().index([make_target("INV-1", "125000")])
        candidate = gen.generate_candidates(make_txn("124500"))[0]

        assert "amount:tight" in candidate.tags
        assert "amount:loose" not in candidate.tags
        assert candidate.amount_difference == Decimal("500")

    def test_loose_band(self):
        gen = CandidateGenerator().index([make_target("INV-1", "125000")])
        candidate = gen.generate_candidates(make_txn("120000"))[0]
        assert "amount:loose" in candidate.tags

    def test_outside_bands(self):
        gen = CandidateGenerator().index([make_target("INV-1", "125000")])
        assert gen.generate_candidates(make_txn("100000")) == []

    def test_debits_compare_by_absolute_amount(self):
        gen = CandidateGenerator().index([make_target("BILL-1", "300")])
        assert gen.generate_candidates(make_txn("-300"))[0].target_id == "BILL-1"

    def test_custom_bands(self):
        config = ReconciliationConfig.from_dict({
            "amount_tolerance_bands": [{"name": "exact", "ratio": "0", "weight": 40}],
        })
        gen = CandidateGenerator(config).index([make_target("A", "100"), make_target("B", "101")])
        candidates = gen.generate_candidates(make_txn("100"))

        assert [c.target_id for c in candidates] == ["A"]
        assert "amount:exact" in candidates[0].tags


class TestPartnerRule:

    def test_exact_after_normalization(self):
        gen = CandidateGenerator().index([make_target("INV-1", "1", partner="ABC DOO")])
        candidates = gen.generate_candidates(make_txn("500", counterpart="ABC d.o.o."))

        assert TAG_PARTNER_EXACT in tags_by_target(candidates)["INV-1"]

    def test_fuzzy(self):
        gen = CandidateGenerator().index([make_target("INV-1", "1", partner="ABC Trading Company")])
        candidates = gen.generate_candidates(make_txn("500", counterpart="ABC Trading"))

        tags = tags_by_target(candidates)["INV-1"]
        assert TAG_PARTNER_FUZZY in tags
        assert TAG_PARTNER_EXACT not in tags

    def test_alias(self):
        target = make_target("INV-1", "1", partner="Alpha Holding", aliases=("Alpha Retail",))
        gen = CandidateGenerator().index([target])
        candidates = gen.generate_candidates(make_txn("500", counterpart="ALPHA RETAIL"))

        assert TAG_PARTNER_EXACT in tags_by_target(candidates)["INV-1"]

    def test_unrelated_name(self):
        gen = CandidateGenerator().index([make_target("INV-1", "1", partner="Omega Print")])
        assert gen.generate_candidates(make_txn("500", counterpart="ABC d.o.o.")) == []


class TestAccountRule:

    def test_known_account_is_an_exact_partner_hit(self):
        target = make_target("INV-1", "1", partner="Omega Print", accounts=("160-0000000012345-67",))
        gen = CandidateGenerator().index([target])
        candidates = gen.generate_candidates(make_txn("500", counterpart="Unknown payer", account="160-12345-67"))

        assert tags_by_target(candidates) == {"INV-1": {TAG_PARTNER_EXACT, TAG_DATE_WINDOW}}

    def test_short_and_long_forms_compare_equal(self):
        assert normalize_account("160-12345-67") == normalize_account("160 0000000012345 67") == "160000000001234567"
        assert normalize_account("rs35 2651 0000 0012 3456 78") == "RS35265100000012345678"
        assert normalize_account(None) == ""

    def test_unknown_account(self):
        target = make_target("INV-1", "1", partner="Omega Print", accounts=("160-12345-67",))
        gen = CandidateGenerator().index([target])
        assert gen.generate_candidates(make_txn("500", account="170-12345-67")) == []


class TestFiltering:

    def test_date_window_only_annotates(self):
        gen = CandidateGenerator().index([make_target("INV-1", "999")])
        assert gen.generate_candidates(make_txn("5")) == []

    def test_date_window_tag(self):
        gen = CandidateGenerator().index([
            make_target("IN", "100"),
            make_target("LATE", "100", issue=date(2024, 1, 1), due=date(2024, 1, 31)),
        ])
        tags = tags_by_target(gen.generate_candidates(make_txn("100")))

        assert TAG_DATE_WINDOW in tags["IN"]
        assert TAG_DATE_WINDOW not in tags["LATE"]

    def test_grace_days_extend_window(self):
        target = make_target("INV-1", "100", issue=date(2024, 2, 1), due=date(2024, 3, 5))
        candidates = CandidateGenerator().index([target]).generate_candidates(make_txn("100"))
        assert TAG_DATE_WINDOW in candidates[0].tags

    def test_currency_must_match(self):
        gen = CandidateGenerator().index([make_target("INV-1", "100", currency="EUR")])
        assert gen.generate_candidates(make_txn("100", currency="RSD")) == []

    def test_settled_targets_excluded(self):
        gen = CandidateGenerator().index([make_target("INV-1", "0", ref="R1")])
        assert gen.generate_candidates(make_txn("100", ref="R1")) == []

    def test_ordered_by_target_id(self):
        gen = CandidateGenerator().index([make_target("C", "100"), make_target("A", "100"), make_target("B", "100")])
        assert [c.target_id for c in gen.generate_candidates(make_txn("100"))] == ["A", "B", "C"]

    def test_cap_keeps_strongest(self):
        config = ReconciliationConfig(max_candidates=2)
        gen = CandidateGenerator(config).index([
            make_target("A", "100"),
            make_target("B", "100"),
            make_target("C", "100", ref="R-9"),
        ])
        ids = [c.target_id for c in gen.generate_candidates(make_txn("100", ref="R-9"))]
        assert ids == ["A", "C"]

    def test_open_targets_argument_reindexes(self):
        gen = CandidateGenerator().index([make_target("OLD", "100")])
        candidates = gen.generate_candidates(make_txn("100"), open_targets=[make_target("NEW", "100")])
        assert [c.target_id for c in candidates] == ["NEW"]

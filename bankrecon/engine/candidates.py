"""Candidate generation: indexed rule lookups over open targets."""

import bisect
from collections import defaultdict
from datetime import timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from rapidfuzz import fuzz

from bankrecon.engine.config import AmountBand, ReconciliationConfig
from bankrecon.engine.models import BankTransaction, MatchCandidate, Target
from bankrecon.engine.text import name_tokens, normalize_account, normalize_name, normalize_reference

TAG_REFERENCE = "reference"
TAG_PARTNER_EXACT = "partner:exact"
TAG_PARTNER_FUZZY = "partner:fuzzy"
TAG_DATE_WINDOW = "date_window"
AMOUNT_TAG_PREFIX = "amount:"


def amount_tag(band: AmountBand) -> str:
    return f"{AMOUNT_TAG_PREFIX}{band.name}"


class CandidateGenerator:
    """
    Find plausible targets for a transaction.

    A target qualifies through any of four indexed rules: exact reference,
    amount within a tolerance band, partner name, or the counterpart account
    being one of the partner's known accounts (an exact partner hit). The
    date window only adds a tag to targets that already qualified.
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None):
        self.config = config or ReconciliationConfig()
        self._targets: Dict[str, Target] = {}
        self._by_reference: Dict[str, List[str]] = defaultdict(list)
        self._by_token: Dict[str, Set[str]] = defaultdict(set)
        self._by_account: Dict[str, Set[str]] = defaultdict(set)
        self._names: Dict[str, List[str]] = {}
        self._amounts: List[Tuple[Decimal, str]] = []
        self._amount_keys: List[Decimal] = []

    def index(self, targets: Iterable[Target]) -> "CandidateGenerator":
        """Build lookup structures once per batch."""
        self._targets = {}
        self._by_reference = defaultdict(list)
        self._by_token = defaultdict(set)
        self._by_account = defaultdict(set)
        self._names = {}

        for target in targets:
            if target.remaining_amount <= 0:
                continue
            self._targets[target.id] = target
            ref = normalize_reference(target.reference)
            if ref:
                self._by_reference[ref].append(target.id)
            names = [normalize_name(n) for n in (target.partner_name, *target.partner_aliases)]
            self._names[target.id] = [n for n in names if n]
            for name in (target.partner_name, *target.partner_aliases):
                for token in name_tokens(name):
                    self._by_token[token].add(target.id)
            for account in filter(None, map(normalize_account, target.partner_accounts)):
                self._by_account[account].add(target.id)

        self._amounts = sorted((t.remaining_amount, t.id) for t in self._targets.values())
        self._amount_keys = [a for a, _ in self._amounts]
        return self

    def generate_candidates(
        self,
        transaction: BankTransaction,
        open_targets: Optional[Iterable[Target]] = None,
    ) -> List[MatchCandidate]:
        """
        Return candidates for one transaction, ordered by target id.

        Args:
            transaction: The bank transaction to match.
            open_targets: When given, the index is rebuilt from these first.
        """
        if open_targets is not None:
            self.index(open_targets)

        hits: Dict[str, Set[str]] = defaultdict(set)
        ref = normalize_reference(transaction.reference)
        if ref:
            for target_id in self._by_reference.get(ref, []):
                hits[target_id].add(TAG_REFERENCE)

        for target_id, tag in self._amount_hits(transaction.abs_amount):
            hits[target_id].add(tag)

        for target_id, tag in self._partner_hits(transaction.counterpart_name):
            hits[target_id].add(tag)

        account = normalize_account(transaction.counterpart_account)
        if account:
            for target_id in self._by_account.get(account, ()):
                hits[target_id].add(TAG_PARTNER_EXACT)

        candidates = []
        for target_id, tags in hits.items():
            target = self._targets[target_id]
            if target.currency != transaction.currency:
                continue
            if self._in_date_window(transaction, target):
                tags.add(TAG_DATE_WINDOW)
            candidates.append(MatchCandidate(
                transaction_id=transaction.id,
                target_type=target.type,
                target_id=target.id,
                tags=tuple(sorted(tags)),
                amount_difference=abs(transaction.abs_amount - target.remaining_amount),
                due_date=target.due_date,
            ))

        if len(candidates) > self.config.max_candidates:
            candidates.sort(key=lambda c: (-self._strength(c), c.target_id))
            candidates = candidates[: self.config.max_candidates]
        return sorted(candidates, key=lambda c: c.target_id)

    def _amount_hits(self, amount: Decimal) -> List[Tuple[str, str]]:
        """Targets whose remaining amount lies within a band of the transaction amount."""
        bands = self.config.amount_tolerance_bands
        widest = bands[-1].ratio
        # |amount - r| <= ratio * r  <=>  amount / (1 + ratio) <= r <= amount / (1 - ratio)
        low = amount / (1 + widest)
        high = amount / (1 - widest)
        start = bisect.bisect_left(self._amount_keys, low)
        stop = bisect.bisect_right(self._amount_keys, high)

        hits = []
        for remaining, target_id in self._amounts[start:stop]:
            diff = abs(amount - remaining)
            for band in bands:
                if diff <= band.ratio * remaining:
                    hits.append((target_id, amount_tag(band)))
                    break
        return hits

    def _partner_hits(self, counterpart: str) -> List[Tuple[str, str]]:
        name = normalize_name(counterpart)
        if not name:
            return []
        pool: Set[str] = set()
        for token in name.split():
            pool |= self._by_token.get(token, set())

        hits = []
        for target_id in sorted(pool):
            names = self._names.get(target_id, [])
            if name in names:
                hits.append((target_id, TAG_PARTNER_EXACT))
            elif any(
                fuzz.token_set_ratio(name, other) >= self.config.partner_fuzzy_threshold
                for other in names
            ):
                hits.append((target_id, TAG_PARTNER_FUZZY))
        return hits

    def _in_date_window(self, transaction: BankTransaction, target: Target) -> bool:
        end = target.due_date or target.issue_date
        grace = timedelta(days=self.config.date_grace_days)
        return target.issue_date <= transaction.transaction_date <= end + grace

    def _strength(self, candidate: MatchCandidate) -> int:
        """Rough rule strength used only to choose which candidates survive the cap."""
        weights = {
            TAG_REFERENCE: self.config.exact_reference_weight,
            TAG_PARTNER_EXACT: self.config.partner_exact_weight,
            TAG_PARTNER_FUZZY: self.config.partner_fuzzy_weight,
            TAG_DATE_WINDOW: self.config.date_window_weight,
        }
        weights.update({amount_tag(b): b.weight for b in self.config.amount_tolerance_bands})
        return sum(weights.get(tag, 0) for tag in candidate.tags)

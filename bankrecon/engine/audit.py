"""Append-only match/audit log; the source of truth for match state."""

import threading
from collections import defaultdict
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterator, List, Tuple

from bankrecon.engine.models import MatchAction, MatchEntry, MatchStatus, TransactionState


def apply(state: TransactionState, entry: MatchEntry) -> TransactionState:
    """Fold step: the state after one log entry."""
    if entry.action == MatchAction.UNMATCH:
        return TransactionState()
    if entry.action == MatchAction.IGNORE:
        return TransactionState(status=MatchStatus.IGNORED)
    return replace(
        state,
        status=entry.to_status,
        target_type=entry.target_type,
        target_id=entry.target_id,
        confidence=entry.confidence,
        payment_id=entry.payment_id,
        allocated_amount=entry.allocated_amount,
        surplus_amount=entry.surplus_amount,
    )


class AuditLog:
    """
    Append-only log of MatchEntry records.

    Entries are immutable and never removed; unmatching appends an UNMATCH
    entry. Sequence numbers are assigned on append.
    """

    def __init__(self):
        self._entries: List[MatchEntry] = []
        self._by_transaction: Dict[str, List[MatchEntry]] = defaultdict(list)
        self._lock = threading.Lock()

    def append(self, entry: MatchEntry) -> MatchEntry:
        with self._lock:
            entry = replace(entry, sequence=len(self._entries) + 1)
            self._entries.append(entry)
            self._by_transaction[entry.transaction_id].append(entry)
            return entry

    def entries(self) -> Tuple[MatchEntry, ...]:
        with self._lock:
            return tuple(self._entries)

    def entries_for(self, transaction_id: str) -> Tuple[MatchEntry, ...]:
        with self._lock:
            return tuple(self._by_transaction.get(transaction_id, ()))

    def fold(self, transaction_id: str) -> TransactionState:
        state = TransactionState()
        for entry in self.entries_for(transaction_id):
            state = apply(state, entry)
        return state

    def allocated_to(self, target_id: str) -> Decimal:
        """Sum of non-cancelled allocations against a target."""
        total = Decimal("0")
        with self._lock:
            transaction_ids = list(self._by_transaction)
        for transaction_id in transaction_ids:
            state = self.fold(transaction_id)
            if state.target_id == target_id:
                total += state.allocated_amount
        return total

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[MatchEntry]:
        return iter(self.entries())

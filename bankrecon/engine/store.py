"""In-process persistence: statements, transactions, the audit log and target balances."""

import logging
import threading
from dataclasses import replace
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from bankrecon.engine.audit import AuditLog
from bankrecon.engine.errors import ConflictError, NotFoundError
from bankrecon.engine.models import (
    DEFAULT_COMPANY,
    BankStatement,
    BankTransaction,
    MatchEntry,
    MatchStatus,
    NormalizedStatement,
    StatementStatus,
    Target,
)

logger = logging.getLogger(__name__)


class ReconciliationStore:
    """
    Statements, transactions and the append-only audit log.

    Transaction match fields are a projection of the log; ``append_entry``
    refreshes them and ``rebuild_projection`` recomputes all of them.
    """

    def __init__(self, audit_log: Optional[AuditLog] = None):
        self.audit_log = audit_log or AuditLog()
        self._statements: Dict[str, BankStatement] = {}
        self._transactions: Dict[str, BankTransaction] = {}
        self._by_statement: Dict[str, List[str]] = {}
        self._lock = threading.RLock()

    # Statements

    def add_statement(self, normalized: NormalizedStatement) -> BankStatement:
        with self._lock:
            statement = normalized.statement
            self._statements[statement.id] = statement
            self._by_statement[statement.id] = [t.id for t in normalized.transactions]
            for txn in normalized.transactions:
                self._transactions[txn.id] = txn
            return statement

    def has_statement(self, statement_id: str) -> bool:
        return statement_id in self._statements

    def get_statement(self, statement_id: str) -> BankStatement:
        try:
            return self._statements[statement_id]
        except KeyError:
            raise NotFoundError(f"Statement not found: {statement_id}")

    def find_statement(
        self, company_id: str, account_number: str, statement_number: str
    ) -> Optional[BankStatement]:
        for statement in self._statements.values():
            if (
                statement.company_id == company_id
                and statement.account_number == account_number
                and statement.statement_number == statement_number
            ):
                return statement
        return None

    def set_statement_status(self, statement_id: str, status: StatementStatus) -> None:
        with self._lock:
            statement = self.get_statement(statement_id)
            if statement.status != status:
                logger.info("Statement %s: %s -> %s", statement_id, statement.status.value, status.value)
                statement.status = status

    def list_statements(
        self,
        company_id: Optional[str] = None,
        account_number: Optional[str] = None,
        status: Optional[StatementStatus] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        page: int = 1,
        limit: int = 20,
    ) -> Tuple[List[BankStatement], int]:
        """Filtered statements, newest statement date first, with the unpaged total."""
        rows = [
            s for s in self._statements.values()
            if (company_id is None or s.company_id == company_id)
            and (account_number is None or s.account_number == account_number)
            and (status is None or s.status == status)
            and (start_date is None or s.statement_date >= start_date)
            and (end_date is None or s.statement_date <= end_date)
        ]
        rows.sort(key=lambda s: (s.statement_date, s.id), reverse=True)
        offset = (max(page, 1) - 1) * limit
        return rows[offset: offset + limit], len(rows)

    # Transactions

    def get_transaction(self, transaction_id: str) -> BankTransaction:
        try:
            return self._transactions[transaction_id]
        except KeyError:
            raise NotFoundError(f"Transaction not found: {transaction_id}")

    def transactions_for(self, statement_id: str) -> List[BankTransaction]:
        self.get_statement(statement_id)
        return [self._transactions[tid] for tid in self._by_statement.get(statement_id, [])]

    def unmatched_transactions(
        self, company_id: Optional[str] = None, limit: int = 50
    ) -> List[BankTransaction]:
        """Unmatched transactions across statements, most recent first."""
        rows = [
            t for t in self._transactions.values()
            if t.match_status == MatchStatus.UNMATCHED
            and (company_id is None or self._statements[t.statement_id].company_id == company_id)
        ]
        rows.sort(key=lambda t: (t.transaction_date, t.id), reverse=True)
        return rows[:limit]

    # Audit log and projection

    def append_entry(self, entry: MatchEntry) -> MatchEntry:
        """Append to the log and refresh the transaction's cached state in one step."""
        with self._lock:
            self.get_transaction(entry.transaction_id)
            stored = self.audit_log.append(entry)
            self.refresh_projection(entry.transaction_id)
            return stored

    def refresh_projection(self, transaction_id: str) -> BankTransaction:
        with self._lock:
            txn = self.get_transaction(transaction_id)
            state = self.audit_log.fold(transaction_id)
            txn.match_status = state.status
            txn.matched_target_id = state.target_id
            txn.match_confidence = state.confidence
            txn.surplus_amount = state.surplus_amount
            return txn

    def rebuild_projection(self) -> None:
        with self._lock:
            for transaction_id in self._transactions:
                self.refresh_projection(transaction_id)


class TargetBook:
    """
    Remaining amounts of targets with optimistic version tokens.

    Targets are keyed by company, so two companies never see each other's
    invoices even when ids collide. Writers read ``get`` (remaining +
    version), compute, then call ``allocate`` with the version they read;
    a stale version or an allocation above the remaining amount raises
    ConflictError.
    """

    def __init__(self):
        self._targets: Dict[Tuple[str, str], Target] = {}
        self._original: Dict[Tuple[str, str], Decimal] = {}
        self._lock = threading.Lock()

    def load(self, targets: Iterable[Target], company_id: str = DEFAULT_COMPANY) -> List[Target]:
        """
        Merge a fresh listing from the receivables source.

        Unknown targets are registered as given. For known targets the
        source wins when it reports less remaining than the book, e.g. an
        invoice settled outside reconciliation; the book version is bumped
        so in-flight allocations against the old figure fail. The book
        never raises a remaining amount from the source, since the source
        may not yet reflect payments made here.

        Returns:
            Current book state of every listed target, in listing order.
        """
        listed = []
        with self._lock:
            for target in targets:
                key = (company_id, target.id)
                current = self._targets.get(key)
                if current is None:
                    self._targets[key] = target
                    self._original[key] = target.remaining_amount
                elif target.remaining_amount < current.remaining_amount:
                    refreshed = max(target.remaining_amount, Decimal("0"))
                    logger.info(
                        "Target %s/%s settled elsewhere: remaining %s -> %s",
                        company_id, target.id, current.remaining_amount, refreshed,
                    )
                    self._original[key] -= current.remaining_amount - refreshed
                    self._targets[key] = replace(current, remaining_amount=refreshed, version=current.version + 1)
                listed.append(self._targets[key])
        return listed

    def get(self, target_id: str, company_id: str = DEFAULT_COMPANY) -> Target:
        with self._lock:
            try:
                return self._targets[(company_id, target_id)]
            except KeyError:
                raise NotFoundError(f"Target not found: {target_id}")

    def open_targets(self, company_id: str = DEFAULT_COMPANY) -> List[Target]:
        with self._lock:
            return [
                t for (company, _), t in self._targets.items()
                if company == company_id and t.remaining_amount > 0
            ]

    def original_remaining(self, target_id: str, company_id: str = DEFAULT_COMPANY) -> Decimal:
        """Remaining amount with every allocation made here given back."""
        return self._original[(company_id, target_id)]

    def allocate(
        self, target_id: str, amount: Decimal, expected_version: int, company_id: str = DEFAULT_COMPANY
    ) -> Target:
        """Compare-and-swap: reduce the remaining amount if the version still matches."""
        with self._lock:
            current = self._targets.get((company_id, target_id))
            if current is None:
                raise NotFoundError(f"Target not found: {target_id}")
            if current.version != expected_version:
                raise ConflictError(
                    f"Target {target_id} changed (version {expected_version} -> {current.version})"
                )
            if amount <= 0 or amount > current.remaining_amount:
                raise ConflictError(
                    f"Target {target_id} has {current.remaining_amount} remaining, cannot allocate {amount}"
                )
            updated = replace(
                current,
                remaining_amount=current.remaining_amount - amount,
                version=current.version + 1,
            )
            self._targets[(company_id, target_id)] = updated
            return updated

    def release(self, target_id: str, amount: Decimal, company_id: str = DEFAULT_COMPANY) -> Target:
        """Give an allocation back."""
        with self._lock:
            current = self._targets.get((company_id, target_id))
            if current is None:
                raise NotFoundError(f"Target not found: {target_id}")
            updated = replace(
                current,
                remaining_amount=current.remaining_amount + amount,
                version=current.version + 1,
            )
            self._targets[(company_id, target_id)] = updated
            return updated

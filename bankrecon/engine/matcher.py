"""Core reconciliation engine: matching state machine over bank transactions."""

import logging
import threading
from collections import defaultdict
from concurrent.futures import ThreadPoolExecutor
from datetime import date, datetime, timezone
from typing import Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from bankrecon.engine.candidates import CandidateGenerator
from bankrecon.engine.collaborators import InMemoryPaymentLedger, PaymentLedger, ReceivablesProvider
from bankrecon.engine.config import ReconciliationConfig
from bankrecon.engine.errors import (
    CollaboratorError,
    ConflictError,
    DuplicateStatementError,
    InvalidTransitionError,
    LockedError,
    NotFoundError,
    ReconciliationError,
)
from bankrecon.engine.models import (
    DEFAULT_COMPANY,
    SYSTEM_ACTOR,
    AutoMatchSummary,
    BankStatement,
    BankTransaction,
    MatchAction,
    MatchConfidence,
    MatchEntry,
    MatchStatus,
    Outcome,
    ScoredCandidate,
    StatementReport,
    StatementStatus,
    Target,
    TransactionOutcome,
    ValidationWarning,
)
from bankrecon.engine.normalizer import Normalizer
from bankrecon.engine.scorer import Scorer
from bankrecon.engine.store import ReconciliationStore, TargetBook
from bankrecon.parsers.detect import AUTO, parse

logger = logging.getLogger(__name__)

ALREADY_IMPORTED = "ALREADY_IMPORTED"

# (transaction, ranked candidates) planned for commit against the same target
Plan = Tuple[BankTransaction, List[ScoredCandidate]]

# Action that re-establishes a state when an unmatch has to be rolled back
_RESTORE_ACTIONS = {
    MatchStatus.MATCHED: MatchAction.MATCH,
    MatchStatus.PARTIAL: MatchAction.PARTIAL,
    MatchStatus.IGNORED: MatchAction.IGNORE,
}


class Reconciler:
    """
    Reconciliation engine that matches bank transactions to open targets.

    Transaction state machine:
        UNMATCHED -> MATCHED | PARTIAL | IGNORED   (auto_match, manual_match, ignore)
        MATCHED | PARTIAL | IGNORED -> UNMATCHED   (unmatch, not once POSTED)

    Every transition appends one MatchEntry to the audit log; transaction
    status fields are refreshed from the log.
    """

    def __init__(
        self,
        store: Optional[ReconciliationStore] = None,
        receivables: Optional[ReceivablesProvider] = None,
        ledger: Optional[PaymentLedger] = None,
        config: Optional[ReconciliationConfig] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the reconciler.

        Args:
            store: Statement/transaction/audit persistence.
            receivables: Source of open targets. Required for matching.
            ledger: Payment ledger; defaults to an in-memory ledger.
            config: Weights, thresholds and limits.
            clock: Timestamp source for log entries.
        """
        self.store = store or ReconciliationStore()
        self.receivables = receivables
        self.ledger = ledger or InMemoryPaymentLedger()
        self.config = config or ReconciliationConfig()
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.book = TargetBook()
        self.scorer = Scorer(self.config)
        self.normalizer = Normalizer(self.config)
        self._txn_locks: Dict[str, threading.Lock] = defaultdict(threading.Lock)
        self._locks_guard = threading.Lock()

    # Import

    def import_statement(
        self,
        data: bytes,
        fmt: str = AUTO,
        company_id: str = DEFAULT_COMPANY,
        **csv_options,
    ) -> Tuple[BankStatement, List[ValidationWarning]]:
        """
        Parse, normalize and store a statement file.

        Re-importing identical content returns the stored statement with an
        ALREADY_IMPORTED warning.

        Raises:
            ParseError: Malformed file; nothing is stored.
            DuplicateStatementError: Same account and statement number with
                different content.
        """
        parsed = parse(data, fmt, **csv_options)
        normalized, warnings = self.normalizer.normalize(parsed, company_id=company_id)
        statement = normalized.statement

        if self.store.has_statement(statement.id):
            stored_ids = [t.id for t in self.store.transactions_for(statement.id)]
            if stored_ids == [t.id for t in normalized.transactions]:
                warnings.append(ValidationWarning(
                    code=ALREADY_IMPORTED,
                    message=f"Statement {statement.statement_number} was already imported",
                ))
                logger.info("Statement %s already imported", statement.id)
                return self.store.get_statement(statement.id), warnings
            raise DuplicateStatementError(
                f"Statement {statement.statement_number} for account "
                f"{statement.account_number} already exists with different content"
            )

        existing = self.store.find_statement(company_id, statement.account_number, statement.statement_number)
        if existing is not None:
            raise DuplicateStatementError(
                f"Statement {statement.statement_number} for account "
                f"{statement.account_number} already exists"
            )

        self.store.add_statement(normalized)
        logger.info(
            "Imported %s statement %s (%s): %d transactions, %d warnings",
            statement.source_format,
            statement.statement_number,
            statement.account_number,
            len(normalized.transactions),
            len(warnings),
        )
        return statement, warnings

    # Matching

    def auto_match(
        self,
        statement_id: str,
        threshold: Optional[int] = None,
        ambiguity_margin: Optional[int] = None,
    ) -> AutoMatchSummary:
        """
        Match every UNMATCHED transaction whose best candidate is unambiguous.

        A transaction is committed when its best score reaches ``threshold``
        and no other candidate scores within ``ambiguity_margin`` of it.
        Passes repeat until one commits nothing, so running again on an
        unchanged statement commits nothing.

        Returns:
            Summary with one outcome per transaction of the statement.

        Raises:
            NotFoundError: Unknown statement.
            LockedError: Statement is POSTED.
            CollaboratorError: Open targets could not be loaded.
        """
        threshold = self.config.auto_match_threshold if threshold is None else threshold
        margin = self.config.ambiguity_margin if ambiguity_margin is None else ambiguity_margin

        statement = self.store.get_statement(statement_id)
        self._check_not_posted(statement)
        target_ids = [t.id for t in self._load_targets(statement)]
        self.store.set_statement_status(statement_id, StatementStatus.PROCESSING)

        transactions = self.store.transactions_for(statement_id)
        final: Dict[str, TransactionOutcome] = {}
        pending: List[BankTransaction] = []
        for txn in transactions:
            if txn.match_status != MatchStatus.UNMATCHED:
                final[txn.id] = TransactionOutcome(txn.id, Outcome.SKIPPED, message=f"already {txn.match_status.value}")
            elif txn.is_duplicate:
                final[txn.id] = TransactionOutcome(txn.id, Outcome.SKIPPED, message=f"duplicate of {txn.duplicate_of}")
            else:
                pending.append(txn)

        while pending:
            outcomes = self._run_pass(pending, statement.company_id, target_ids, threshold, margin)
            committed = [o for o in outcomes.values() if o.outcome == Outcome.MATCHED]
            final.update(outcomes)
            if not committed:
                break
            pending = [t for t in pending if outcomes[t.id].outcome != Outcome.MATCHED]

        summary = AutoMatchSummary()
        for txn in transactions:
            summary.record(final[txn.id])

        self._refresh_statement_status(statement_id)
        logger.info(
            "Auto-match %s: matched=%d ambiguous=%d errors=%d skipped=%d",
            statement_id,
            summary.matched_count,
            summary.ambiguous_count,
            summary.error_count,
            summary.skipped_count,
        )
        return summary

    def _run_pass(
        self,
        pending: List[BankTransaction],
        company_id: str,
        target_ids: List[str],
        threshold: int,
        margin: int,
    ) -> Dict[str, TransactionOutcome]:
        """Plan against one snapshot of open targets, then commit per target group."""
        outcomes: Dict[str, TransactionOutcome] = {}
        generator = CandidateGenerator(self.config).index(self._open_targets(company_id, target_ids))
        groups: Dict[str, List[Plan]] = defaultdict(list)

        for txn in pending:
            try:
                ranked = self.scorer.rank(generator.generate_candidates(txn))
            except Exception as e:
                logger.exception("Scoring failed for transaction %s", txn.id)
                outcomes[txn.id] = TransactionOutcome(txn.id, Outcome.ERROR, message=str(e))
                continue
            verdict = self._ambiguity(ranked, threshold, margin)
            if verdict:
                best = ranked[0] if ranked else None
                outcomes[txn.id] = TransactionOutcome(
                    txn.id,
                    Outcome.AMBIGUOUS,
                    target_id=best.target_id if best else None,
                    confidence=best.confidence if best else None,
                    message=verdict,
                )
            else:
                groups[ranked[0].target_id].append((txn, ranked))

        # Same target: ascending transaction date. Different targets: in parallel.
        ordered = [
            sorted(plans, key=lambda p: (p[0].transaction_date, p[0].id))
            for _, plans in sorted(groups.items())
        ]
        if ordered:
            workers = min(self.config.max_workers, len(ordered))
            with ThreadPoolExecutor(max_workers=workers) as pool:
                for group_outcomes in pool.map(lambda g: self._commit_group(g, company_id, threshold, margin), ordered):
                    outcomes.update(group_outcomes)
        return outcomes

    def _commit_group(
        self, plans: List[Plan], company_id: str, threshold: int, margin: int
    ) -> Dict[str, TransactionOutcome]:
        outcomes = {}
        for txn, ranked in plans:
            try:
                outcomes[txn.id] = self._commit_planned(txn, ranked, company_id, threshold, margin)
            except ReconciliationError as e:
                logger.warning("Auto-match of %s failed: %s", txn.id, e)
                outcomes[txn.id] = TransactionOutcome(txn.id, Outcome.ERROR, ranked[0].target_id, message=str(e))
            except Exception as e:
                logger.exception("Unexpected error matching transaction %s", txn.id)
                outcomes[txn.id] = TransactionOutcome(txn.id, Outcome.ERROR, ranked[0].target_id, message=str(e))
        return outcomes

    def _commit_planned(
        self,
        txn: BankTransaction,
        ranked: List[ScoredCandidate],
        company_id: str,
        threshold: int,
        margin: int,
    ) -> TransactionOutcome:
        """Commit the planned best target, re-validating against fresh target state."""
        best, runner_up = ranked[0], (ranked[1] if len(ranked) > 1 else None)
        last_error = ""
        for attempt in range(self.config.max_commit_retries + 1):
            with self._transaction_lock(txn.id):
                if self.store.get_transaction(txn.id).match_status != MatchStatus.UNMATCHED:
                    return TransactionOutcome(txn.id, Outcome.SKIPPED, message="matched concurrently")

                target = self.book.get(best.target_id, company_id)
                rescored = self._score_pair(txn, target)
                if rescored is None or rescored.confidence < threshold:
                    return TransactionOutcome(
                        txn.id, Outcome.AMBIGUOUS, best.target_id,
                        rescored.confidence if rescored else None,
                        message="target no longer qualifies",
                    )
                if runner_up is not None and rescored.confidence - runner_up.confidence < margin:
                    return TransactionOutcome(
                        txn.id, Outcome.AMBIGUOUS, best.target_id, rescored.confidence,
                        message=f"runner-up {runner_up.target_id} within {margin} points",
                    )
                try:
                    self._commit(txn, company_id, target, rescored.confidence, rescored.reasons, SYSTEM_ACTOR)
                    return TransactionOutcome(txn.id, Outcome.MATCHED, target.id, rescored.confidence)
                except ConflictError as e:
                    last_error = str(e)
                    logger.warning(
                        "Conflict committing %s -> %s (attempt %d): %s",
                        txn.id, target.id, attempt + 1, e,
                    )
        return TransactionOutcome(
            txn.id, Outcome.AMBIGUOUS, best.target_id, best.confidence,
            message=f"gave up after {self.config.max_commit_retries + 1} conflicts: {last_error}",
        )

    def _ambiguity(self, ranked: List[ScoredCandidate], threshold: int, margin: int) -> str:
        """Why the ranking cannot be auto-committed; empty string when it can."""
        if not ranked:
            return "no candidates"
        if ranked[0].confidence < threshold:
            return f"best score {ranked[0].confidence} below threshold {threshold}"
        if len(ranked) > 1 and ranked[0].confidence - ranked[1].confidence < margin:
            return f"{ranked[1].target_id} within {margin} points of {ranked[0].target_id}"
        return ""

    def manual_match(self, transaction_id: str, target_id: str, user_id: str) -> MatchEntry:
        """
        Match a transaction to a target chosen by a user, regardless of score.

        Raises:
            NotFoundError: Unknown transaction, or a target the source does
                not list as open for the statement's company.
            LockedError: Statement is POSTED.
            InvalidTransitionError: Transaction is not UNMATCHED.
            CollaboratorError: Open targets could not be loaded.
            ConflictError: Target has nothing left to allocate or changed
                concurrently.
        """
        with self._transaction_lock(transaction_id):
            txn = self.store.get_transaction(transaction_id)
            statement = self.store.get_statement(txn.statement_id)
            self._check_not_posted(statement)
            self._require_status(txn, MatchStatus.UNMATCHED, "match")

            target = self._target(statement, target_id)
            scored = self._score_pair(txn, target)
            confidence = scored.confidence if scored else 0
            reasons = scored.reasons if scored else ()
            entry = self._commit(txn, statement.company_id, target, confidence, reasons, user_id)

        self._refresh_statement_status(txn.statement_id)
        logger.info("%s manually matched %s to %s", user_id, transaction_id, target_id)
        return entry

    def ignore(self, transaction_id: str, user_id: str, reason: str = "") -> MatchEntry:
        """Mark a transaction IGNORED; it is excluded from candidate generation until unmatched."""
        with self._transaction_lock(transaction_id):
            txn = self.store.get_transaction(transaction_id)
            self._check_not_posted(self.store.get_statement(txn.statement_id))
            self._require_status(txn, MatchStatus.UNMATCHED, "ignore")
            entry = self.store.append_entry(self._entry(
                txn, MatchAction.IGNORE, MatchStatus.IGNORED, user_id, reason=reason,
            ))
        self._refresh_statement_status(txn.statement_id)
        logger.info("%s ignored %s: %s", user_id, transaction_id, reason)
        return entry

    def unmatch(self, transaction_id: str, user_id: str = SYSTEM_ACTOR) -> MatchEntry:
        """
        Revert a transaction to UNMATCHED.

        The UNMATCH entry is logged first, then the payment created by the
        match is cancelled and the allocation given back to the target. If
        the ledger refuses the cancellation, a compensating entry restores
        the previous state and the target keeps its allocation.

        Raises:
            LockedError: Statement is POSTED.
            InvalidTransitionError: Transaction is already UNMATCHED.
            CollaboratorError: The payment could not be cancelled.
        """
        with self._transaction_lock(transaction_id):
            txn = self.store.get_transaction(transaction_id)
            statement = self.store.get_statement(txn.statement_id)
            self._check_not_posted(statement)
            state = self.store.audit_log.fold(transaction_id)
            if state.status == MatchStatus.UNMATCHED:
                raise InvalidTransitionError(f"Transaction {transaction_id} is not matched")

            entry = self.store.append_entry(self._entry(
                txn, MatchAction.UNMATCH, MatchStatus.UNMATCHED, user_id,
                from_status=state.status,
                target_type=state.target_type,
                target_id=state.target_id,
                allocated_amount=state.allocated_amount,
                payment_id=state.payment_id,
            ))

            if state.payment_id:
                try:
                    self.ledger.cancel_payment(state.payment_id)
                except Exception as e:
                    logger.error("Cancelling payment %s failed; restoring %s", state.payment_id, transaction_id)
                    self.store.append_entry(self._entry(
                        txn, _RESTORE_ACTIONS[state.status], state.status, user_id,
                        from_status=MatchStatus.UNMATCHED,
                        target_type=state.target_type,
                        target_id=state.target_id,
                        confidence=state.confidence,
                        allocated_amount=state.allocated_amount,
                        surplus_amount=state.surplus_amount,
                        payment_id=state.payment_id,
                        reason=f"unmatch rolled back: {e}",
                    ))
                    raise CollaboratorError(f"Could not cancel payment {state.payment_id}: {e}") from e
            if state.target_id and state.allocated_amount > 0:
                self.book.release(state.target_id, state.allocated_amount, statement.company_id)

        self._refresh_statement_status(txn.statement_id)
        logger.info("%s unmatched %s (was %s)", user_id, transaction_id, state.status.value)
        return entry

    def post_statement(self, statement_id: str, user_id: str) -> BankStatement:
        """
        Post a statement; its reconciliation state becomes immutable.

        Raises:
            LockedError: Already posted.
            InvalidTransitionError: Some transactions are still UNMATCHED.
        """
        statement = self.store.get_statement(statement_id)
        self._check_not_posted(statement)
        unmatched = [
            t.id for t in self.store.transactions_for(statement_id)
            if t.match_status == MatchStatus.UNMATCHED
        ]
        if unmatched:
            raise InvalidTransitionError(
                f"Statement {statement_id} has {len(unmatched)} unmatched transactions"
            )
        self.store.set_statement_status(statement_id, StatementStatus.POSTED)
        logger.info("%s posted statement %s", user_id, statement_id)
        return statement

    # Queries

    def suggestions(self, transaction_id: str, include_low: bool = False) -> List[ScoredCandidate]:
        """Ranked candidates; low-confidence ones only on explicit request."""
        txn = self.store.get_transaction(transaction_id)
        if txn.match_status == MatchStatus.IGNORED:
            return []
        statement = self.store.get_statement(txn.statement_id)
        target_ids = [t.id for t in self._load_targets(statement)]
        generator = CandidateGenerator(self.config).index(self._open_targets(statement.company_id, target_ids))
        ranked = self.scorer.rank(generator.generate_candidates(txn))
        if include_low:
            return ranked
        return [s for s in ranked if s.band != MatchConfidence.LOW]

    def statement_report(self, statement_id: str) -> StatementReport:
        report = StatementReport(statement_id=statement_id)
        for txn in self.store.transactions_for(statement_id):
            report.total_transactions += 1
            if txn.match_status in (MatchStatus.MATCHED, MatchStatus.PARTIAL):
                report.matched_transactions += 1
            elif txn.match_status == MatchStatus.IGNORED:
                report.ignored_transactions += 1
            else:
                report.unmatched_transactions += 1
            if txn.amount > 0:
                report.total_credits += txn.amount
            else:
                report.total_debits += -txn.amount
        return report

    def list_statements(self, **filters):
        """See ReconciliationStore.list_statements."""
        return self.store.list_statements(**filters)

    def unmatched_transactions(self, company_id: Optional[str] = None, limit: int = 50) -> List[BankTransaction]:
        return self.store.unmatched_transactions(company_id=company_id, limit=limit)

    # Internals

    def _commit(
        self,
        txn: BankTransaction,
        company_id: str,
        target: Target,
        confidence: int,
        tags: Tuple[str, ...],
        actor: str,
    ) -> MatchEntry:
        """
        Allocate, create the payment and log the match as one unit.

        ``target`` must be the version just read from the book; the
        allocation is a compare-and-swap against it. Any failure after the
        allocation undoes the earlier steps.
        """
        if target.currency != txn.currency:
            raise InvalidTransitionError(
                f"Currency mismatch: transaction {txn.currency}, target {target.currency}"
            )
        if target.remaining_amount <= 0:
            raise ConflictError(f"Target {target.id} has no remaining amount")

        amount = txn.abs_amount
        allocation = min(amount, target.remaining_amount)
        surplus = amount - allocation
        partial = amount < target.remaining_amount
        status = MatchStatus.PARTIAL if partial else MatchStatus.MATCHED

        self.book.allocate(target.id, allocation, target.version, company_id)
        try:
            payment_id = self.ledger.create_payment(target.id, allocation, txn.currency, txn.id)
        except Exception as e:
            self.book.release(target.id, allocation, company_id)
            raise CollaboratorError(f"Payment ledger failed for {txn.id} -> {target.id}: {e}") from e

        entry = self._entry(
            txn,
            MatchAction.PARTIAL if partial else MatchAction.MATCH,
            status,
            actor,
            target_type=target.type,
            target_id=target.id,
            confidence=confidence,
            tags=tuple(tags),
            allocated_amount=allocation,
            surplus_amount=surplus,
            payment_id=payment_id,
        )
        try:
            stored = self.store.append_entry(entry)
        except Exception:
            logger.error("Log write failed for %s; rolling back payment %s", txn.id, payment_id)
            try:
                self.ledger.cancel_payment(payment_id)
            finally:
                self.book.release(target.id, allocation, company_id)
            raise

        if surplus > 0:
            logger.warning(
                "Transaction %s overpays %s by %s; surplus needs manual allocation",
                txn.id, target.id, surplus,
            )
        return stored

    def _entry(self, txn: BankTransaction, action: MatchAction, to_status: MatchStatus, actor: str, **fields) -> MatchEntry:
        fields.setdefault("from_status", txn.match_status)
        return MatchEntry(
            id=uuid4().hex,
            sequence=0,
            transaction_id=txn.id,
            action=action,
            to_status=to_status,
            actor=actor,
            timestamp=self.clock(),
            **fields,
        )

    def _score_pair(self, txn: BankTransaction, target: Target) -> Optional[ScoredCandidate]:
        """Score one transaction against one target; None if the target does not qualify."""
        candidates = CandidateGenerator(self.config).index([target]).generate_candidates(txn)
        return self.scorer.score(candidates[0]) if candidates else None

    def _load_targets(self, statement: BankStatement) -> List[Target]:
        """
        Fetch the company's open targets from the source and merge them into the book.

        Returns the book state of the listed targets; targets the source no
        longer lists are not offered. An unreachable source fails the call.
        """
        if self.receivables is None:
            raise CollaboratorError("No receivables source configured")
        as_of: date = statement.period.to_date
        try:
            targets = self.receivables.list_open_receivables(statement.company_id, as_of)
        except ReconciliationError:
            raise
        except Exception as e:
            raise CollaboratorError(f"Receivables source unavailable: {e}") from e
        return self.book.load(targets, statement.company_id)

    def _open_targets(self, company_id: str, target_ids: List[str]) -> List[Target]:
        """Current book state of the listed targets that still have something left."""
        targets = (self.book.get(target_id, company_id) for target_id in target_ids)
        return [t for t in targets if t.remaining_amount > 0]

    def _target(self, statement: BankStatement, target_id: str) -> Target:
        """A target the source currently lists for the statement's company."""
        for target in self._load_targets(statement):
            if target.id == target_id:
                return target
        raise NotFoundError(f"Target not found: {target_id}")

    def _refresh_statement_status(self, statement_id: str) -> None:
        statement = self.store.get_statement(statement_id)
        if statement.is_posted:
            return
        transactions = self.store.transactions_for(statement_id)
        if any(t.match_status == MatchStatus.UNMATCHED for t in transactions):
            if statement.status != StatementStatus.IMPORTED:
                self.store.set_statement_status(statement_id, StatementStatus.PROCESSING)
        else:
            self.store.set_statement_status(statement_id, StatementStatus.MATCHED)

    def _check_not_posted(self, statement: BankStatement) -> None:
        if statement.is_posted:
            raise LockedError(f"Statement {statement.id} is posted")

    def _require_status(self, txn: BankTransaction, status: MatchStatus, action: str) -> None:
        if txn.match_status != status:
            raise InvalidTransitionError(
                f"Cannot {action} transaction {txn.id}: status is {txn.match_status.value}"
            )

    def _transaction_lock(self, transaction_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._txn_locks[transaction_id]

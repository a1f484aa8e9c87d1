"""Data models for the reconciliation engine."""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Tuple


class StatementStatus(Enum):
    """Lifecycle of an imported bank statement."""
    IMPORTED = "imported"
    PROCESSING = "processing"
    MATCHED = "matched"
    POSTED = "posted"      # Terminal, immutable


class TransactionType(Enum):
    """Transaction type classification."""
    CREDIT = "credit"
    DEBIT = "debit"


class MatchStatus(Enum):
    """Reconciliation status of a bank transaction."""
    UNMATCHED = "unmatched"
    MATCHED = "matched"
    PARTIAL = "partial"
    IGNORED = "ignored"


class TargetType(Enum):
    """Kind of record a transaction can be matched to."""
    INVOICE = "invoice"
    PAYMENT = "payment"


class MatchAction(Enum):
    """Action recorded in the match log."""
    MATCH = "match"
    PARTIAL = "partial"
    UNMATCH = "unmatch"
    IGNORE = "ignore"


class MatchConfidence(Enum):
    """Confidence band of a scored candidate."""
    HIGH = "high"        # Auto-match eligible
    MEDIUM = "medium"    # Suggested only
    LOW = "low"          # Visible on explicit search


class Outcome(Enum):
    """Terminal outcome of one transaction in an auto-match run."""
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    ERROR = "error"
    SKIPPED = "skipped"


SYSTEM_ACTOR = "system"
DEFAULT_COMPANY = "default"


@dataclass(frozen=True)
class StatementPeriod:
    """Date range covered by a statement."""
    from_date: date
    to_date: date


@dataclass
class BankStatement:
    """An imported bank statement."""
    id: str
    company_id: str
    account_number: str
    bank_name: str
    statement_number: str
    statement_date: date
    period: StatementPeriod
    opening_balance: Decimal
    closing_balance: Decimal
    total_debit: Decimal
    total_credit: Decimal
    currency: str
    source_format: str
    status: StatementStatus = StatementStatus.IMPORTED

    @property
    def is_posted(self) -> bool:
        return self.status == StatementStatus.POSTED


@dataclass
class BankTransaction:
    """A single normalized bank transaction.

    ``amount`` is signed: credits are positive, debits negative. The
    ``match_*`` fields and ``surplus_amount`` are a cache of the audit log.
    """
    id: str
    statement_id: str
    position: int
    transaction_date: date
    value_date: date
    amount: Decimal
    currency: str
    type: TransactionType
    counterpart_name: str = ""
    counterpart_account: str = ""
    reference: str = ""
    description: str = ""
    duplicate_of: Optional[str] = None
    match_status: MatchStatus = MatchStatus.UNMATCHED
    matched_target_id: Optional[str] = None
    match_confidence: Optional[int] = None
    surplus_amount: Decimal = Decimal("0")

    @property
    def abs_amount(self) -> Decimal:
        """Return absolute value of transaction amount."""
        return abs(self.amount)

    @property
    def is_duplicate(self) -> bool:
        return self.duplicate_of is not None

    @property
    def requires_manual_allocation(self) -> bool:
        """True when an overpayment left a surplus nobody has allocated."""
        return self.surplus_amount > 0

    def __repr__(self) -> str:
        return (
            f"BankTransaction(id={self.id!r}, date={self.transaction_date.isoformat()}, "
            f"amount={self.amount}, ref={self.reference!r}, status={self.match_status.value})"
        )


@dataclass(frozen=True)
class Target:
    """Read-only projection of an open invoice or payment."""
    id: str
    type: TargetType
    reference: str
    partner_id: str
    partner_name: str
    remaining_amount: Decimal
    currency: str
    issue_date: date
    due_date: Optional[date]
    version: int = 0
    partner_aliases: Tuple[str, ...] = ()
    partner_accounts: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MatchCandidate:
    """A target that qualified for a transaction, with the rules it hit."""
    transaction_id: str
    target_type: TargetType
    target_id: str
    tags: Tuple[str, ...]
    amount_difference: Decimal = Decimal("0")
    due_date: Optional[date] = None


@dataclass(frozen=True)
class ScoredCandidate:
    """A candidate with its deterministic confidence score."""
    candidate: MatchCandidate
    confidence: int
    reasons: Tuple[str, ...]
    band: MatchConfidence

    @property
    def target_id(self) -> str:
        return self.candidate.target_id

    @property
    def sort_key(self) -> tuple:
        """Strict total order: best first."""
        due = self.candidate.due_date or date.max
        return (-self.confidence, self.candidate.amount_difference, due, self.candidate.target_id)


@dataclass(frozen=True)
class MatchEntry:
    """One append-only match/audit log record."""
    id: str
    sequence: int
    transaction_id: str
    action: MatchAction
    from_status: MatchStatus
    to_status: MatchStatus
    actor: str
    timestamp: datetime
    target_type: Optional[TargetType] = None
    target_id: Optional[str] = None
    confidence: Optional[int] = None
    tags: Tuple[str, ...] = ()
    allocated_amount: Decimal = Decimal("0")
    surplus_amount: Decimal = Decimal("0")
    payment_id: Optional[str] = None
    reason: str = ""

    @property
    def matched_by(self) -> str:
        return self.actor


@dataclass(frozen=True)
class TransactionState:
    """Match state of one transaction, derived by folding the audit log."""
    status: MatchStatus = MatchStatus.UNMATCHED
    target_type: Optional[TargetType] = None
    target_id: Optional[str] = None
    confidence: Optional[int] = None
    payment_id: Optional[str] = None
    allocated_amount: Decimal = Decimal("0")
    surplus_amount: Decimal = Decimal("0")


@dataclass(frozen=True)
class ValidationWarning:
    """Soft problem found during import; the import still proceeds."""
    code: str
    message: str
    line: Optional[int] = None


@dataclass
class NormalizedStatement:
    """A statement and its canonical transactions, ready to persist."""
    statement: BankStatement
    transactions: List[BankTransaction] = field(default_factory=list)


@dataclass(frozen=True)
class TransactionOutcome:
    """How an auto-match run ended for one transaction."""
    transaction_id: str
    outcome: Outcome
    target_id: Optional[str] = None
    confidence: Optional[int] = None
    message: str = ""


@dataclass
class AutoMatchSummary:
    """Result of an auto-match run over a statement."""
    matched_count: int = 0
    ambiguous_count: int = 0
    error_count: int = 0
    skipped_count: int = 0
    outcomes: Dict[str, TransactionOutcome] = field(default_factory=dict)

    def record(self, outcome: TransactionOutcome) -> None:
        self.outcomes[outcome.transaction_id] = outcome
        if outcome.outcome == Outcome.MATCHED:
            self.matched_count += 1
        elif outcome.outcome == Outcome.AMBIGUOUS:
            self.ambiguous_count += 1
        elif outcome.outcome == Outcome.ERROR:
            self.error_count += 1
        else:
            self.skipped_count += 1

    @property
    def total(self) -> int:
        return len(self.outcomes)


@dataclass
class StatementReport:
    """Summary statistics for one statement."""
    statement_id: str
    total_transactions: int = 0
    matched_transactions: int = 0
    unmatched_transactions: int = 0
    ignored_transactions: int = 0
    total_credits: Decimal = Decimal("0")
    total_debits: Decimal = Decimal("0")

    @property
    def match_rate(self) -> float:
        """Calculate match rate as percentage."""
        total = self.total_transactions
        if total == 0:
            return 0.0
        return (self.matched_transactions / total) * 100

"""Turn parsed statements into canonical transactions."""

import hashlib
import logging
from dataclasses import astuple
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from bankrecon.engine.config import ReconciliationConfig
from bankrecon.engine.errors import ParseError
from bankrecon.engine.models import (
    DEFAULT_COMPANY,
    BankStatement,
    BankTransaction,
    NormalizedStatement,
    StatementPeriod,
    TransactionType,
    ValidationWarning,
)
from bankrecon.engine.text import normalize_reference
from bankrecon.parsers.records import (
    CamtEntry,
    CsvEntry,
    Mt940Entry,
    NbsEntry,
    OfxEntry,
    ParsedStatement,
    RawEntry,
)

logger = logging.getLogger(__name__)

BALANCE_MISMATCH = "BALANCE_MISMATCH"
DUPLICATE_TRANSACTION = "DUPLICATE_TRANSACTION"


def stable_id(*parts) -> str:
    """Deterministic short id from the given parts."""
    payload = "\x1f".join(str(p) for p in parts)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:20]


def signed_amount(entry: RawEntry) -> Decimal:
    """
    Canonical signed amount of a row: credits positive, debits negative.

    This is the only place that knows each format's sign convention.
    """
    if isinstance(entry, Mt940Entry):
        # RC reverses a credit (money out), RD reverses a debit (money in)
        negative = entry.mark in ("D", "RC")
        return -entry.amount if negative else entry.amount
    if isinstance(entry, CamtEntry):
        negative = (entry.indicator == "DBIT") != entry.reversal
        return -entry.amount if negative else entry.amount
    if isinstance(entry, OfxEntry):
        return entry.amount
    if isinstance(entry, NbsEntry):
        return entry.credit if entry.credit > 0 else -entry.debit
    if isinstance(entry, CsvEntry):
        if entry.amount is None:
            return (entry.credit or Decimal("0")) - (entry.debit or Decimal("0"))
        if entry.type_indicator == "D":
            return -abs(entry.amount)
        if entry.type_indicator == "C":
            return abs(entry.amount)
        return entry.amount
    raise TypeError(f"Unknown entry type: {type(entry).__name__}")


class Normalizer:
    """
    Normalize a ParsedStatement.

    - assigns deterministic statement and transaction ids
    - converts every row to one signed representation
    - flags (never drops) duplicate (date, amount, reference) rows
    - checks opening + credits - debits against the closing balance
    """

    def __init__(self, config: Optional[ReconciliationConfig] = None):
        self.config = config or ReconciliationConfig()

    def normalize(
        self,
        parsed: ParsedStatement,
        company_id: str = DEFAULT_COMPANY,
    ) -> Tuple[NormalizedStatement, List[ValidationWarning]]:
        warnings: List[ValidationWarning] = []
        statement_id = stable_id(
            company_id,
            parsed.account_number,
            parsed.statement_number,
            parsed.period_from,
            parsed.period_to,
            parsed.currency,
        )

        transactions: List[BankTransaction] = []
        seen: Dict[tuple, str] = {}
        for position, entry in enumerate(parsed.entries):
            amount = signed_amount(entry)
            if amount == 0:
                raise ParseError("Transaction amount must not be zero", line=entry.line, field="amount")

            txn = BankTransaction(
                id=stable_id(statement_id, position, *astuple(entry)),
                statement_id=statement_id,
                position=position,
                transaction_date=entry.transaction_date,
                value_date=entry.value_date,
                amount=amount,
                currency=(entry.currency or parsed.currency).upper(),
                type=TransactionType.CREDIT if amount > 0 else TransactionType.DEBIT,
                counterpart_name=entry.counterpart_name,
                counterpart_account=entry.counterpart_account,
                reference=entry.reference,
                description=entry.description,
            )

            key = (txn.transaction_date, txn.amount, normalize_reference(txn.reference))
            if key in seen:
                txn.duplicate_of = seen[key]
                warnings.append(ValidationWarning(
                    code=DUPLICATE_TRANSACTION,
                    message=(
                        f"Transaction at position {position} duplicates {seen[key]} "
                        f"({txn.transaction_date}, {txn.amount}, {txn.reference!r})"
                    ),
                    line=entry.line,
                ))
            else:
                seen[key] = txn.id
            transactions.append(txn)

        total_credit = sum((t.amount for t in transactions if t.amount > 0), Decimal("0"))
        total_debit = sum((-t.amount for t in transactions if t.amount < 0), Decimal("0"))

        expected = parsed.opening_balance + total_credit - total_debit
        difference = expected - parsed.closing_balance
        if abs(difference) > self.config.balance_epsilon:
            warnings.append(ValidationWarning(
                code=BALANCE_MISMATCH,
                message=(
                    f"Opening {parsed.opening_balance} + credits {total_credit} - debits "
                    f"{total_debit} = {expected}, but closing balance is "
                    f"{parsed.closing_balance} (difference {difference})"
                ),
            ))

        for warning in warnings:
            logger.warning("%s: %s", warning.code, warning.message)

        statement = BankStatement(
            id=statement_id,
            company_id=company_id,
            account_number=parsed.account_number,
            bank_name=parsed.bank_name,
            statement_number=parsed.statement_number,
            statement_date=parsed.statement_date,
            period=StatementPeriod(parsed.period_from, parsed.period_to),
            opening_balance=parsed.opening_balance,
            closing_balance=parsed.closing_balance,
            total_debit=total_debit,
            total_credit=total_credit,
            currency=parsed.currency.upper(),
            source_format=parsed.source_format,
        )
        return NormalizedStatement(statement=statement, transactions=transactions), warnings


def normalize(
    parsed: ParsedStatement,
    company_id: str = DEFAULT_COMPANY,
    config: Optional[ReconciliationConfig] = None,
) -> Tuple[NormalizedStatement, List[ValidationWarning]]:
    """Module-level shortcut for Normalizer(config).normalize(parsed)."""
    return Normalizer(config).normalize(parsed, company_id=company_id)

"""Shared builders for the test suite."""

from datetime import date
from decimal import Decimal
from typing import Iterable, Tuple

from bankrecon.engine.collaborators import InMemoryPaymentLedger, StaticReceivablesProvider
from bankrecon.engine.config import ReconciliationConfig
from bankrecon.engine.matcher import Reconciler
from bankrecon.engine.models import BankTransaction, Target, TargetType, TransactionType


def make_txn(
    amount: str,
    ref: str = "",
    counterpart: str = "",
    day: date = date(2024, 3, 15),
    currency: str = "RSD",
    account: str = "",
) -> BankTransaction:
    """Helper to create test transactions."""
    amt = Decimal(amount)
    return BankTransaction(
        id="T1",
        statement_id="S1",
        position=0,
        transaction_date=day,
        value_date=day,
        amount=amt,
        currency=currency,
        type=TransactionType.CREDIT if amt > 0 else TransactionType.DEBIT,
        counterpart_name=counterpart,
        counterpart_account=account,
        reference=ref,
    )


def make_target(
    id: str,
    remaining: str,
    ref: str = "",
    partner: str = "",
    currency: str = "RSD",
    issue: date = date(2024, 3, 1),
    due: date = date(2024, 3, 31),
    aliases: tuple = (),
    accounts: tuple = (),
) -> Target:
    """Helper to create open invoices."""
    return Target(
        id=id,
        type=TargetType.INVOICE,
        reference=ref or id,
        partner_id=f"P-{partner}",
        partner_name=partner,
        remaining_amount=Decimal(remaining),
        currency=currency,
        issue_date=issue,
        due_date=due,
        partner_aliases=aliases,
        partner_accounts=accounts,
    )


def csv_statement(rows: Iterable[Tuple[str, str, str, str]], opening: str = "0") -> bytes:
    """
    CSV statement bytes from (date, amount, reference, partner) rows.

    A running balance column is included so the statement balances.
    """
    balance = Decimal(opening)
    lines = ["date,amount,reference,partner,balance"]
    for day, amount, ref, partner in rows:
        balance += Decimal(amount)
        lines.append(f"{day},{amount},{ref},{partner},{balance}")
    return ("\n".join(lines) + "\n").encode("utf-8")


def make_reconciler(targets, ledger=None, **config) -> Reconciler:
    return Reconciler(
        receivables=StaticReceivablesProvider(targets),
        ledger=ledger or InMemoryPaymentLedger(),
        config=ReconciliationConfig(**config),
    )

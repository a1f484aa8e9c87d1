"""Interfaces to the invoice/payment side, plus in-process implementations."""

import itertools
import logging
import threading
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from bankrecon.engine.errors import CollaboratorError
from bankrecon.engine.models import Target

logger = logging.getLogger(__name__)


class ReceivablesProvider(Protocol):
    """Read-only source of open invoices and payments."""

    def list_open_receivables(self, company_id: str, as_of: date) -> List[Target]:
        ...


class PaymentLedger(Protocol):
    """Creates and cancels payments against targets."""

    def create_payment(
        self, target_id: str, amount: Decimal, currency: str, source_transaction_id: str
    ) -> str:
        ...

    def cancel_payment(self, payment_id: str) -> None:
        ...


class StaticReceivablesProvider:
    """Serves a fixed list of targets, e.g. loaded from a file."""

    def __init__(self, targets: List[Target], company_id: Optional[str] = None):
        self.targets = list(targets)
        self.company_id = company_id

    def list_open_receivables(self, company_id: str, as_of: date) -> List[Target]:
        if self.company_id is not None and company_id != self.company_id:
            return []
        return [
            t for t in self.targets
            if t.remaining_amount > 0 and t.issue_date <= as_of
        ]


@dataclass
class Payment:
    """A payment recorded by the in-memory ledger."""
    id: str
    target_id: str
    amount: Decimal
    currency: str
    source_transaction_id: str
    cancelled: bool = False


class InMemoryPaymentLedger:
    """PaymentLedger keeping payments in a dict."""

    def __init__(self):
        self.payments: Dict[str, Payment] = {}
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create_payment(
        self, target_id: str, amount: Decimal, currency: str, source_transaction_id: str
    ) -> str:
        if amount <= 0:
            raise CollaboratorError(f"Payment amount must be positive (got {amount})")
        with self._lock:
            payment_id = f"PAY-{next(self._ids):06d}"
            self.payments[payment_id] = Payment(
                id=payment_id,
                target_id=target_id,
                amount=amount,
                currency=currency,
                source_transaction_id=source_transaction_id,
            )
        logger.debug("Created payment %s: %s %s -> %s", payment_id, amount, currency, target_id)
        return payment_id

    def cancel_payment(self, payment_id: str) -> None:
        with self._lock:
            payment = self.payments.get(payment_id)
            if payment is None:
                raise CollaboratorError(f"Unknown payment: {payment_id}")
            payment.cancelled = True
        logger.debug("Cancelled payment %s", payment_id)

    def active_total(self, target_id: str) -> Decimal:
        """Sum of non-cancelled payments against a target."""
        with self._lock:
            return sum(
                (p.amount for p in self.payments.values() if p.target_id == target_id and not p.cancelled),
                Decimal("0"),
            )

"""Exception hierarchy for the reconciliation engine."""

from typing import Optional


class ReconciliationError(Exception):
    """Base exception for bankrecon."""


class ParseError(ReconciliationError, ValueError):
    """A statement file is malformed; the whole import is rejected."""

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        field: Optional[str] = None,
    ):
        self.message = message
        self.line = line
        self.field = field
        super().__init__(self._format())

    def _format(self) -> str:
        context = []
        if self.line is not None:
            context.append(f"line {self.line}")
        if self.field:
            context.append(f"field {self.field!r}")
        if context:
            return f"{self.message} ({', '.join(context)})"
        return self.message


class ConflictError(ReconciliationError):
    """Optimistic-lock loss or insufficient remaining amount. Retryable."""


class LockedError(ReconciliationError):
    """Mutation attempted on a POSTED statement."""


class NotFoundError(ReconciliationError):
    """Unknown statement, transaction or target."""


class InvalidTransitionError(ReconciliationError):
    """The requested action is not allowed from the current status."""


class DuplicateStatementError(ReconciliationError):
    """A different statement with the same account and number already exists."""


class CollaboratorError(ReconciliationError):
    """The receivables source or the payment ledger failed."""


class ConfigError(ReconciliationError, ValueError):
    """Invalid reconciliation configuration."""


class ConfigFileError(ReconciliationError):
    """Configuration file missing or not valid JSON."""

"""OFX bank statement parser."""

import io
from datetime import date, datetime
from decimal import Decimal

from ofxparse import OfxParser as OfxLib

from bankrecon.engine.errors import ParseError
from bankrecon.parsers.fields import clean
from bankrecon.parsers.records import OFX, OfxEntry, ParsedStatement


class OFXParser:
    """Parse OFX/QFX bank statements into a ParsedStatement (first account only)."""

    def parse(self, data: bytes) -> ParsedStatement:
        """
        Parse OFX content.

        Args:
            data: Raw file bytes.

        Raises:
            ParseError: If the file cannot be parsed or has no statement.
        """
        try:
            ofx = OfxLib.parse(io.BytesIO(data))
        except Exception as e:
            raise ParseError(f"Failed to parse OFX file: {e}") from e

        account = self._get_account(ofx)
        statement = getattr(account, "statement", None)
        if statement is None:
            raise ParseError("No statement found in OFX file", field="STMTRS")

        currency = (getattr(statement, "currency", "") or "").upper()
        entries = tuple(
            self._convert_transaction(stmt_txn, currency)
            for stmt_txn in statement.transactions
        )

        closing = getattr(statement, "balance", None)
        if closing is None:
            raise ParseError("Missing ledger balance", field="LEDGERBAL")
        closing = Decimal(str(closing))
        opening = closing - sum((e.amount for e in entries), Decimal("0"))

        start = self._as_date(getattr(statement, "start_date", None))
        end = self._as_date(getattr(statement, "end_date", None))
        dates = [e.transaction_date for e in entries]
        period_from = start or (min(dates) if dates else None)
        period_to = end or (max(dates) if dates else None)
        if period_from is None or period_to is None:
            raise ParseError("Missing statement period", field="BANKTRANLIST")

        institution = getattr(account, "institution", None)
        bank_name = getattr(institution, "organization", "") if institution else ""

        return ParsedStatement(
            source_format=OFX,
            account_number=getattr(account, "account_id", "") or "",
            bank_name=bank_name or getattr(account, "routing_number", "") or "OFX Import",
            statement_number=f"{period_from:%Y%m%d}-{period_to:%Y%m%d}",
            statement_date=self._as_date(getattr(statement, "balance_date", None)) or period_to,
            period_from=period_from,
            period_to=period_to,
            opening_balance=opening,
            closing_balance=closing,
            currency=currency,
            entries=entries,
        )

    def _get_account(self, ofx):
        """Extract the first account from parsed OFX data."""
        accounts = getattr(ofx, "accounts", None)
        if accounts:
            return accounts[0]
        account = getattr(ofx, "account", None)
        if account is not None:
            return account
        raise ParseError("No accounts found in OFX file", field="BANKACCTFROM")

    def _convert_transaction(self, stmt_txn, currency: str) -> OfxEntry:
        """Convert an OFX statement transaction to an OfxEntry."""
        posted = self._as_date(stmt_txn.date)
        if posted is None:
            raise ParseError("Transaction without posting date", field="DTPOSTED")
        user_date = self._as_date(getattr(stmt_txn, "user_date", None))
        checknum = getattr(stmt_txn, "checknum", "") or ""
        memo = getattr(stmt_txn, "memo", "") or ""

        return OfxEntry(
            line=None,
            transaction_date=user_date or posted,
            value_date=posted,
            currency=currency,
            reference=clean(checknum),
            description=clean(memo),
            counterpart_name=clean(getattr(stmt_txn, "payee", "")),
            counterpart_account="",
            fit_id=getattr(stmt_txn, "id", "") or "",
            amount=Decimal(str(stmt_txn.amount)),
            trn_type=(getattr(stmt_txn, "type", "") or "").lower(),
        )

    def _as_date(self, value):
        if isinstance(value, datetime):
            return value.date()
        if isinstance(value, date):
            return value
        if isinstance(value, str) and len(value) >= 8:
            return datetime.strptime(value[:8], "%Y%m%d").date()
        return None

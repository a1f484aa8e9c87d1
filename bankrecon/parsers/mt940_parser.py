"""SWIFT MT940 bank statement parser."""

import logging
import re
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from bankrecon.engine.errors import ParseError
from bankrecon.parsers.fields import clean, parse_amount, parse_yymmdd
from bankrecon.parsers.records import MT940, Mt940Entry, ParsedStatement

logger = logging.getLogger(__name__)

TAG_LINE = re.compile(r"^:(?P<tag>\d{2}[A-Z]?):(?P<value>.*)$")
BALANCE = re.compile(
    r"^(?P<mark>[CD])(?P<date>\d{6})(?P<currency>[A-Z]{3})(?P<amount>\d+(?:,\d*)?)$"
)
STATEMENT_LINE = re.compile(
    r"^(?P<value_date>\d{6})(?P<entry_date>\d{4})?"
    r"(?P<mark>R?[CD])(?P<funds>[A-Z])?"
    r"(?P<amount>\d+,\d*)"
    r"(?P<code>[NFS][A-Z0-9]{3})"
    r"(?P<customer_ref>.*?)"
    r"(?://(?P<bank_ref>.*))?$"
)
STRUCTURED_SUBFIELD = re.compile(r"\?(\d{2})")
SWIFT_CODE = re.compile(r"/(ORDP|BENM|NAME|ACCT|IBAN|REMI|EREF|ROC|PREF)/")

NO_REFERENCE = "NONREF"


class MT940Parser:
    """Parse MT940 statements into a ParsedStatement."""

    def parse(self, text: str) -> ParsedStatement:
        """
        Parse MT940 content.

        Args:
            text: Decoded file content.

        Returns:
            ParsedStatement with Mt940Entry rows.

        Raises:
            ParseError: On missing mandatory tags or malformed fields.
        """
        fields = self._split_fields(text)
        if not fields:
            raise ParseError("No MT940 tags found", line=1)

        account = ""
        statement_number = ""
        transaction_ref = ""
        opening: Optional[Tuple[Decimal, date, str]] = None
        closing: Optional[Tuple[Decimal, date, str]] = None
        pending: List[dict] = []

        for tag, value, line in fields:
            if tag == "20":
                transaction_ref = clean(value)
            elif tag == "25":
                account = clean(value)
            elif tag == "28C":
                statement_number = clean(value)
            elif tag in ("60F", "60M"):
                if opening is None:
                    opening = self._parse_balance(value, line, tag)
            elif tag in ("62F", "62M"):
                closing = self._parse_balance(value, line, tag)
            elif tag == "61":
                pending.append({"line": line, "statement_line": value, "details": ""})
            elif tag == "86":
                if pending and not pending[-1]["details"]:
                    pending[-1]["details"] = value

        if not account:
            raise ParseError("Missing account identification", field=":25:")
        if opening is None:
            raise ParseError("Missing opening balance", field=":60F:")
        if closing is None:
            raise ParseError("Missing closing balance", field=":62F:")

        opening_balance, opening_date, currency = opening
        closing_balance, closing_date, _ = closing

        entries = tuple(
            self._parse_entry(p["statement_line"], p["details"], p["line"], currency)
            for p in pending
        )

        bank_name, account_number = self._split_account(account)
        logger.debug("Parsed MT940 statement %s with %d entries", account_number, len(entries))

        return ParsedStatement(
            source_format=MT940,
            account_number=account_number,
            bank_name=bank_name,
            statement_number=statement_number or transaction_ref,
            statement_date=closing_date,
            period_from=opening_date,
            period_to=closing_date,
            opening_balance=opening_balance,
            closing_balance=closing_balance,
            currency=currency,
            entries=entries,
        )

    def _split_fields(self, text: str) -> List[Tuple[str, str, int]]:
        """Group lines into (tag, value, line_number); continuation lines are appended."""
        fields: List[Tuple[str, str, int]] = []
        for line_no, raw in enumerate(text.splitlines(), start=1):
            line = raw.rstrip()
            # SWIFT envelope: {1:...}{2:...}{4: and the closing -}
            if line.startswith("{"):
                line = re.sub(r"^(\{\d:[^{}]*\})*\{4:", "", line)
                if line.startswith("{"):
                    continue
            if line in ("-}", "-"):
                continue
            if not line:
                continue

            match = TAG_LINE.match(line)
            if match:
                fields.append((match.group("tag"), match.group("value"), line_no))
            elif fields:
                tag, value, start = fields[-1]
                fields[-1] = (tag, f"{value}\n{line}", start)
            else:
                raise ParseError(f"Unexpected content before first tag: {line[:30]!r}", line=line_no)
        return fields

    def _parse_balance(self, value: str, line: int, tag: str) -> Tuple[Decimal, date, str]:
        match = BALANCE.match(value.strip())
        if not match:
            raise ParseError(f"Malformed balance {value!r}", line=line, field=f":{tag}:")
        amount = parse_amount(match.group("amount"), line=line, field=f":{tag}:")
        if match.group("mark") == "D":
            amount = -amount
        return amount, parse_yymmdd(match.group("date"), line=line, field=f":{tag}:"), match.group("currency")

    def _parse_entry(self, value: str, details: str, line: int, currency: str) -> Mt940Entry:
        first, _, supplementary = value.partition("\n")
        match = STATEMENT_LINE.match(first.strip())
        if not match:
            raise ParseError(f"Malformed statement line {first!r}", line=line, field=":61:")

        value_date = parse_yymmdd(match.group("value_date"), line=line, field=":61:")
        entry_date = value_date
        if match.group("entry_date"):
            entry_date = self._entry_date(value_date, match.group("entry_date"), line)

        info = self._parse_details(details)
        customer_ref = match.group("customer_ref").strip()
        reference = customer_ref if customer_ref and customer_ref != NO_REFERENCE else info.get("reference", "")

        return Mt940Entry(
            line=line,
            transaction_date=entry_date,
            value_date=value_date,
            currency=currency,
            reference=clean(reference),
            description=clean(info.get("description") or supplementary),
            counterpart_name=clean(info.get("name")),
            counterpart_account=clean(info.get("account")),
            mark=match.group("mark"),
            amount=parse_amount(match.group("amount"), line=line, field=":61:"),
            transaction_code=match.group("code"),
            bank_reference=clean(match.group("bank_ref")),
        )

    def _entry_date(self, value_date: date, mmdd: str, line: int) -> date:
        """Booking date has no year; take the value date's, across a year end if needed."""
        try:
            month, day = int(mmdd[:2]), int(mmdd[2:])
            year = value_date.year
            if month == 12 and value_date.month == 1:
                year -= 1
            elif month == 1 and value_date.month == 12:
                year += 1
            return date(year, month, day)
        except ValueError:
            raise ParseError(f"Malformed entry date {mmdd!r}", line=line, field=":61:")

    def _parse_details(self, details: str) -> Dict[str, str]:
        """Extract name, account, reference and remittance text from :86:."""
        text = details.replace("\n", "")
        if not text:
            return {}

        if STRUCTURED_SUBFIELD.search(text):
            parts = STRUCTURED_SUBFIELD.split(text)
            sub: Dict[int, str] = {}
            for code, content in zip(parts[1::2], parts[2::2]):
                sub[int(code)] = sub.get(int(code), "") + content
            purpose = "".join(sub.get(i, "") for i in list(range(20, 30)) + list(range(60, 64)))
            reference = ""
            eref = re.search(r"EREF\+(\S+)", purpose)
            if eref:
                reference = eref.group(1)
            return {
                "name": sub.get(32, "") + sub.get(33, ""),
                "account": sub.get(31, ""),
                "description": purpose,
                "reference": reference,
            }

        if SWIFT_CODE.search(text):
            parts = SWIFT_CODE.split(text)
            codes = dict(zip(parts[1::2], (p.strip("/ ") for p in parts[2::2])))
            return {
                "name": codes.get("ORDP") or codes.get("BENM") or codes.get("NAME", ""),
                "account": codes.get("IBAN") or codes.get("ACCT", ""),
                "description": codes.get("REMI", text),
                "reference": codes.get("EREF") or codes.get("ROC") or codes.get("PREF", ""),
            }

        return {"description": details.replace("\n", " ")}

    def _split_account(self, value: str) -> Tuple[str, str]:
        """":25:BANKBIC/ACCOUNT" carries the bank identifier in front."""
        if "/" in value:
            bank, _, account = value.partition("/")
            return bank, account
        return "MT940 Import", value

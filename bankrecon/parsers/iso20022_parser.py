"""ISO 20022 camt.052/053/054 statement parser."""

import logging
import xml.etree.ElementTree as ET
from datetime import date
from decimal import Decimal
from typing import List, Optional

from bankrecon.engine.errors import ParseError
from bankrecon.parsers.fields import clean, parse_amount, parse_date
from bankrecon.parsers.records import ISO20022, CamtEntry, ParsedStatement

logger = logging.getLogger(__name__)

CAMT_NAMESPACE_PREFIX = "urn:iso:std:iso:20022:tech:xsd:camt.05"

# Report container per message type
CONTAINERS = ("Stmt", "Rpt", "Ntfctn")


def namespace_of(tag: str) -> str:
    """"{urn:...}Document" -> "urn:..."."""
    if tag.startswith("{"):
        return tag[1:].split("}", 1)[0]
    return ""


def parse_xml(text: str) -> ET.Element:
    """Parse XML, turning markup errors into ParseError with the position."""
    try:
        return ET.fromstring(text)
    except ET.ParseError as e:
        line = e.position[0] if getattr(e, "position", None) else None
        raise ParseError(f"Malformed XML: {e}", line=line)


class ISO20022Parser:
    """Parse camt.05x XML into a ParsedStatement (first statement only)."""

    def parse(self, text: str) -> ParsedStatement:
        root = parse_xml(text)
        ns = namespace_of(root.tag)
        if not ns.startswith(CAMT_NAMESPACE_PREFIX):
            raise ParseError(f"Not an ISO 20022 camt document (namespace {ns!r})", line=1)
        self.ns = {"c": ns}

        stmt = None
        for container in CONTAINERS:
            stmt = root.find(f"./*/c:{container}", self.ns)
            if stmt is not None:
                break
        if stmt is None:
            raise ParseError("Missing statement element", field="Stmt")

        statement_id = self._text(stmt, "c:Id")
        account = self._text(stmt, "c:Acct/c:Id/c:IBAN") or self._text(stmt, "c:Acct/c:Id/c:Othr/c:Id")
        if not account:
            raise ParseError("Missing account identification", field="Acct/Id")
        currency = self._text(stmt, "c:Acct/c:Ccy")
        bank_name = (
            self._text(stmt, "c:Acct/c:Svcr/c:FinInstnId/c:Nm")
            or self._text(stmt, "c:Acct/c:Svcr/c:FinInstnId/c:BICFI")
            or self._text(stmt, "c:Acct/c:Svcr/c:FinInstnId/c:BIC")
        )

        opening, opening_date, opening_ccy = self._balance(stmt, ("OPBD", "PRCD"))
        closing, closing_date, _ = self._balance(stmt, ("CLBD",))
        currency = currency or opening_ccy

        entries = [self._entry(ntry, currency) for ntry in stmt.findall("c:Ntry", self.ns)]

        created = self._text(stmt, "c:CreDtTm")
        period_from = self._date_at(stmt, "c:FrToDt/c:FrDtTm") or opening_date
        period_to = self._date_at(stmt, "c:FrToDt/c:ToDtTm") or closing_date
        statement_date = parse_date(created, field="CreDtTm") if created else closing_date

        logger.debug("Parsed camt statement %s with %d entries", statement_id, len(entries))

        return ParsedStatement(
            source_format=ISO20022,
            account_number=account,
            bank_name=bank_name or "ISO 20022 Import",
            statement_number=statement_id or self._text(stmt, "c:ElctrncSeqNb"),
            statement_date=statement_date,
            period_from=period_from,
            period_to=period_to,
            opening_balance=opening,
            closing_balance=closing,
            currency=currency,
            entries=tuple(entries),
        )

    def _text(self, elem: ET.Element, path: str) -> str:
        found = elem.find(path, self.ns)
        if found is None or found.text is None:
            return ""
        return found.text.strip()

    def _date_at(self, elem: ET.Element, path: str) -> Optional[date]:
        value = self._text(elem, path)
        return parse_date(value, field=path.replace("c:", "")) if value else None

    def _balance(self, stmt: ET.Element, codes) -> tuple:
        for bal in stmt.findall("c:Bal", self.ns):
            code = self._text(bal, "c:Tp/c:CdOrPrtry/c:Cd")
            if code not in codes:
                continue
            amt = bal.find("c:Amt", self.ns)
            if amt is None or not (amt.text or "").strip():
                raise ParseError(f"Balance {code} without amount", field="Bal/Amt")
            amount = parse_amount(amt.text, field="Bal/Amt")
            if self._text(bal, "c:CdtDbtInd") == "DBIT":
                amount = -amount
            when = self._text(bal, "c:Dt/c:Dt") or self._text(bal, "c:Dt/c:DtTm")
            if not when:
                raise ParseError(f"Balance {code} without date", field="Bal/Dt")
            return amount, parse_date(when, field="Bal/Dt"), amt.get("Ccy", "")
        raise ParseError(f"Missing balance {'/'.join(codes)}", field="Bal")

    def _entry(self, ntry: ET.Element, currency: str) -> CamtEntry:
        amt = ntry.find("c:Amt", self.ns)
        if amt is None or not (amt.text or "").strip():
            raise ParseError("Entry without amount", field="Ntry/Amt")
        indicator = self._text(ntry, "c:CdtDbtInd")
        if indicator not in ("CRDT", "DBIT"):
            raise ParseError(f"Invalid credit/debit indicator {indicator!r}", field="Ntry/CdtDbtInd")

        booking = self._text(ntry, "c:BookgDt/c:Dt") or self._text(ntry, "c:BookgDt/c:DtTm")
        if not booking:
            raise ParseError("Entry without booking date", field="Ntry/BookgDt")
        booking_date = parse_date(booking, field="Ntry/BookgDt")
        value = self._text(ntry, "c:ValDt/c:Dt") or self._text(ntry, "c:ValDt/c:DtTm")

        tx = ntry.find("c:NtryDtls/c:TxDtls", self.ns)
        reference = name = account = ""
        remittance: List[str] = []
        if tx is not None:
            reference = (
                self._text(tx, "c:RmtInf/c:Strd/c:CdtrRefInf/c:Ref")
                or self._text(tx, "c:Refs/c:EndToEndId")
            )
            if reference == "NOTPROVIDED":
                reference = ""
            # The counterpart is the debtor on credits and the creditor on debits
            party = "Dbtr" if indicator == "CRDT" else "Cdtr"
            name = self._text(tx, f"c:RltdPties/c:{party}/c:Nm") or self._text(
                tx, f"c:RltdPties/c:{party}/c:Pty/c:Nm"
            )
            account = (
                self._text(tx, f"c:RltdPties/c:{party}Acct/c:Id/c:IBAN")
                or self._text(tx, f"c:RltdPties/c:{party}Acct/c:Id/c:Othr/c:Id")
            )
            remittance = [
                u.text.strip() for u in tx.findall("c:RmtInf/c:Ustrd", self.ns) if u.text
            ]

        return CamtEntry(
            line=None,
            transaction_date=booking_date,
            value_date=parse_date(value, field="Ntry/ValDt") if value else booking_date,
            currency=amt.get("Ccy", currency) or currency,
            reference=clean(reference),
            description=clean(" ".join(remittance) or self._text(ntry, "c:AddtlNtryInf")),
            counterpart_name=clean(name),
            counterpart_account=clean(account),
            amount=parse_amount(amt.text, field="Ntry/Amt"),
            indicator=indicator,
            reversal=self._text(ntry, "c:RvslInd").lower() == "true",
            entry_reference=self._text(ntry, "c:NtryRef") or self._text(ntry, "c:AcctSvcrRef"),
        )

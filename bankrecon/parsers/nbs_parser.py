"""Serbian NBS bank statement XML (IzvodBanke) parser."""

import xml.etree.ElementTree as ET
from decimal import Decimal

from bankrecon.engine.errors import ParseError
from bankrecon.parsers.fields import clean, parse_amount, parse_date
from bankrecon.parsers.iso20022_parser import parse_xml
from bankrecon.parsers.records import NBS_XML, NbsEntry, ParsedStatement

ROOT_TAG = "IzvodBanke"


class NBSParser:
    """Parse IzvodBanke XML: header in ZaglavljeIzvoda, rows in StavkeIzvoda/Stavka."""

    def parse(self, text: str) -> ParsedStatement:
        root = parse_xml(text)
        if root.tag != ROOT_TAG:
            raise ParseError(f"Expected <{ROOT_TAG}> root, found <{root.tag}>", line=1)

        header = root.find("ZaglavljeIzvoda")
        if header is None:
            raise ParseError("Invalid XML format - missing header", field="ZaglavljeIzvoda")

        account = _text(header, "BrojRacuna")
        if not account:
            raise ParseError("Missing account number", field="BrojRacuna")
        currency = _text(header, "Valuta") or "RSD"

        entries = tuple(
            self._entry(item, currency) for item in root.findall("StavkeIzvoda/Stavka")
        )

        statement_date = _date(header, "DatumIzvoda")
        return ParsedStatement(
            source_format=NBS_XML,
            account_number=account,
            bank_name=_text(header, "NazivBanke"),
            statement_number=_text(header, "BrojIzvoda"),
            statement_date=statement_date,
            period_from=_date(header, "DatumOd", default=statement_date),
            period_to=_date(header, "DatumDo", default=statement_date),
            opening_balance=_amount(header, "PocetnoStanje"),
            closing_balance=_amount(header, "KrajnjeStanje"),
            currency=currency,
            entries=entries,
        )

    def _entry(self, item: ET.Element, currency: str) -> NbsEntry:
        txn_date = _date(item, "DatumTransakcije")
        return NbsEntry(
            line=None,
            transaction_date=txn_date,
            value_date=_date(item, "DatumValute", default=txn_date),
            currency=currency,
            reference=clean(_text(item, "Poziv")),
            description=clean(_text(item, "Opis")),
            counterpart_name=clean(_text(item, "NazivPartnera")),
            counterpart_account=clean(_text(item, "RacunPartnera")),
            debit=_amount(item, "Duguje"),
            credit=_amount(item, "Potrazuje"),
        )


def _text(elem: ET.Element, tag: str) -> str:
    found = elem.find(tag)
    if found is None or found.text is None:
        return ""
    return found.text.strip()


def _amount(elem: ET.Element, tag: str) -> Decimal:
    value = _text(elem, tag)
    return parse_amount(value, field=tag) if value else Decimal("0")


def _date(elem: ET.Element, tag: str, default=None):
    value = _text(elem, tag)
    if not value:
        if default is None:
            raise ParseError("Missing date", field=tag)
        return default
    return parse_date(value, field=tag)

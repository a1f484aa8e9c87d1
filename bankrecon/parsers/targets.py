"""Loader for open invoices/payments exported as CSV or Excel."""

import io
import logging
from pathlib import Path
from typing import Dict, List, Optional, Union

import pandas as pd

from bankrecon.engine.errors import ParseError
from bankrecon.engine.models import Target, TargetType
from bankrecon.parsers.csv_parser import sniff_delimiter
from bankrecon.parsers.fields import clean, parse_amount, parse_date

logger = logging.getLogger(__name__)


class TargetCSVLoader:
    """
    Load open receivables into Target records.

    Expected columns (case-insensitive, aliases accepted): id, reference,
    partner_name, remaining_amount, issue_date. Optional: type, partner_id,
    currency, due_date, aliases ("|"-separated alternate partner names),
    accounts ("|"-separated partner bank accounts).
    """

    COLUMN_ALIASES: Dict[str, List[str]] = {
        "id": ["id", "target_id", "invoice_id"],
        "type": ["type", "target_type"],
        "reference": ["reference", "number", "invoice_number", "broj"],
        "partner_id": ["partner_id", "customer_id", "pib"],
        "partner_name": ["partner_name", "partner", "customer", "kupac", "name"],
        "remaining_amount": ["remaining_amount", "remaining", "open_amount", "amount", "iznos"],
        "currency": ["currency", "valuta"],
        "issue_date": ["issue_date", "date", "datum"],
        "due_date": ["due_date", "valuta_placanja", "due"],
        "aliases": ["aliases", "partner_aliases"],
        "accounts": ["partner_accounts", "bank_accounts", "accounts", "racun_partnera"],
    }
    REQUIRED = ("reference", "partner_name", "remaining_amount", "issue_date")

    def __init__(self, default_currency: str = "RSD", column_mapping: Optional[Dict[str, str]] = None):
        self.default_currency = default_currency
        self.column_mapping = {k: v.strip().lower() for k, v in (column_mapping or {}).items()}

    def load(self, path: Union[str, Path]) -> List[Target]:
        """Load targets from a .csv or .xlsx file."""
        path = Path(path)
        if path.suffix.lower() in (".xlsx", ".xls"):
            df = pd.read_excel(path, dtype=str, keep_default_na=False)
            return self._convert(df)
        return self.parse(path.read_bytes().decode("utf-8-sig"))

    def parse(self, text: str) -> List[Target]:
        lines = [line for line in text.splitlines() if line.strip()]
        if not lines:
            raise ParseError("Empty targets file", line=1)
        delimiter = sniff_delimiter(lines[0]) or ","
        df = pd.read_csv(io.StringIO(text), sep=delimiter, dtype=str, keep_default_na=False, skipinitialspace=True)
        return self._convert(df)

    def _convert(self, df: pd.DataFrame) -> List[Target]:
        df.columns = [str(c).strip().lower() for c in df.columns]
        columns = self._resolve_columns(df)

        targets = []
        for idx, row in df.iterrows():
            line = int(idx) + 2

            def get(name: str) -> str:
                col = columns.get(name)
                return clean(row[col]) if col else ""

            reference = get("reference")
            type_raw = get("type").lower() or TargetType.INVOICE.value
            try:
                target_type = TargetType(type_raw)
            except ValueError:
                raise ParseError(f"Unknown target type {type_raw!r}", line=line, field=columns.get("type"))
            due_raw = get("due_date")
            targets.append(Target(
                id=get("id") or reference,
                type=target_type,
                reference=reference,
                partner_id=get("partner_id"),
                partner_name=get("partner_name"),
                remaining_amount=parse_amount(get("remaining_amount"), line=line, field=columns["remaining_amount"]),
                currency=(get("currency") or self.default_currency).upper(),
                issue_date=parse_date(get("issue_date"), line=line, field=columns["issue_date"]),
                due_date=parse_date(due_raw, line=line, field=columns["due_date"]) if due_raw else None,
                partner_aliases=tuple(a.strip() for a in get("aliases").split("|") if a.strip()),
                partner_accounts=tuple(a.strip() for a in get("accounts").split("|") if a.strip()),
            ))

        logger.info("Loaded %d targets", len(targets))
        return targets

    def _resolve_columns(self, df: pd.DataFrame) -> Dict[str, str]:
        available = set(df.columns)
        columns: Dict[str, str] = {}
        for field_name, aliases in self.COLUMN_ALIASES.items():
            explicit = self.column_mapping.get(field_name)
            for name in ([explicit] if explicit else aliases):
                if name in available:
                    columns[field_name] = name
                    break

        missing = [f for f in self.REQUIRED if f not in columns]
        if missing:
            raise ParseError(
                f"Missing required columns: {', '.join(missing)}. "
                f"Available columns: {', '.join(df.columns)}",
                line=1,
                field=missing[0],
            )
        return columns

"""CSV bank statement parser."""

import hashlib
import io
import logging
from decimal import Decimal
from typing import Dict, List, Optional

import pandas as pd

from bankrecon.engine.errors import ParseError
from bankrecon.parsers.fields import clean, parse_amount, parse_date
from bankrecon.parsers.records import CSV, CsvEntry, ParsedStatement

logger = logging.getLogger(__name__)

DELIMITERS = (",", ";", "\t")


def sniff_delimiter(header_line: str) -> Optional[str]:
    """Return the delimiter occurring most often in the header line."""
    counts = {d: header_line.count(d) for d in DELIMITERS}
    best = max(DELIMITERS, key=lambda d: counts[d])
    return best if counts[best] > 0 else None


class CSVParser:
    """Parse CSV bank exports into a ParsedStatement."""

    # Our field name -> accepted (lowercased) header names, English and Serbian
    COLUMN_ALIASES: Dict[str, List[str]] = {
        "date": ["date", "datum", "transaction date", "booking date", "datum transakcije"],
        "value_date": ["value date", "valuedate", "datumvalute", "datum valute"],
        "amount": ["amount", "iznos"],
        "debit": ["debit", "duguje"],
        "credit": ["credit", "potrazuje"],
        "type": ["type", "tip", "dc"],
        "reference": ["reference", "ref", "poziv", "poziv na broj"],
        "description": ["description", "opis", "memo", "svrha"],
        "counterpart_name": ["partner", "naziv", "counterpart", "payee", "name"],
        "counterpart_account": ["account", "racun", "counterpart account", "iban"],
        "currency": ["currency", "valuta"],
        "balance": ["balance", "saldo", "stanje"],
    }

    CREDIT_WORDS = {"credit", "cr", "c", "uplata", "potrazuje", "in"}
    DEBIT_WORDS = {"debit", "dr", "d", "isplata", "duguje", "out"}

    def __init__(
        self,
        column_mapping: Optional[Dict[str, str]] = None,
        default_currency: str = "RSD",
        account_number: str = "CSV-IMPORT",
        bank_name: str = "CSV Import",
    ):
        """
        Initialize parser.

        Args:
            column_mapping: Explicit field -> header name overrides.
                          Example: {"date": "Buchungstag", "amount": "Betrag"}
            default_currency: Currency used when the file has no currency column.
            account_number: Account number to record, CSV exports rarely carry one.
            bank_name: Bank name to record.
        """
        self.column_mapping = {k: v.strip().lower() for k, v in (column_mapping or {}).items()}
        self.default_currency = default_currency
        self.account_number = account_number
        self.bank_name = bank_name

    def parse(self, text: str) -> ParsedStatement:
        """
        Parse CSV content.

        Raises:
            ParseError: If the file is empty, required columns are missing
                or a row holds a malformed value.
        """
        lines = [line for line in text.splitlines() if line.strip()]
        if len(lines) < 2:
            raise ParseError("Empty or invalid CSV file", line=1)

        delimiter = sniff_delimiter(lines[0])
        if delimiter is None:
            raise ParseError("Could not detect CSV delimiter", line=1)

        df = self._read(text, delimiter)
        columns = self._resolve_columns(df)
        entries = self._convert_dataframe(df, columns)

        credits = sum((e.credit or Decimal("0")) for e in entries)
        debits = sum((e.debit or Decimal("0")) for e in entries)
        signed = sum(self._signed_hint(e) for e in entries)
        opening, closing = Decimal("0"), credits - debits + signed
        if "balance" in columns and entries:
            opening, closing = self._balances(df, columns["balance"], entries)

        dates = [e.transaction_date for e in entries]
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:12]
        currency = entries[0].currency if entries else self.default_currency

        return ParsedStatement(
            source_format=CSV,
            account_number=self.account_number,
            bank_name=self.bank_name,
            statement_number=f"CSV-{digest}",
            statement_date=max(dates),
            period_from=min(dates),
            period_to=max(dates),
            opening_balance=opening,
            closing_balance=closing,
            currency=currency,
            entries=tuple(entries),
        )

    def _read(self, text: str, delimiter: str) -> pd.DataFrame:
        try:
            df = pd.read_csv(
                io.StringIO(text),
                sep=delimiter,
                dtype=str,
                keep_default_na=False,
                skip_blank_lines=True,
                skipinitialspace=True,
            )
        except pd.errors.EmptyDataError:
            raise ParseError("Empty or invalid CSV file", line=1)
        except pd.errors.ParserError as e:
            raise ParseError(f"Malformed CSV: {e}")
        df.columns = [str(c).strip().lower() for c in df.columns]
        return df

    def _resolve_columns(self, df: pd.DataFrame) -> Dict[str, str]:
        """
        Map our field names onto the file's headers.

        Raises:
            ParseError: If the date column or every amount source is missing.
        """
        available = set(df.columns)
        columns: Dict[str, str] = {}
        for field_name, aliases in self.COLUMN_ALIASES.items():
            explicit = self.column_mapping.get(field_name)
            candidates = [explicit] if explicit else aliases
            for name in candidates:
                if name in available:
                    columns[field_name] = name
                    break

        if "date" not in columns:
            raise ParseError(
                f"Missing required date column. Available columns: {', '.join(df.columns)}",
                line=1,
                field="date",
            )
        has_split = "debit" in columns or "credit" in columns
        if "amount" not in columns and not has_split:
            raise ParseError(
                f"Missing amount or debit/credit columns. Available columns: {', '.join(df.columns)}",
                line=1,
                field="amount",
            )
        return columns

    def _convert_dataframe(self, df: pd.DataFrame, columns: Dict[str, str]) -> List[CsvEntry]:
        """Convert rows; the first malformed row rejects the whole file."""
        entries: List[CsvEntry] = []
        for idx, row in df.iterrows():
            # Header is line 1
            entries.append(self._convert_row(row, int(idx) + 2, columns))
        if not entries:
            raise ParseError("CSV file has a header but no transactions", line=2)
        return entries

    def _convert_row(self, row: pd.Series, line: int, columns: Dict[str, str]) -> CsvEntry:
        def get(field_name: str) -> str:
            col = columns.get(field_name)
            return clean(row[col]) if col else ""

        txn_date = parse_date(get("date"), line=line, field=columns["date"])
        value_raw = get("value_date")
        value_date = parse_date(value_raw, line=line, field=columns.get("value_date")) if value_raw else txn_date

        amount = debit = credit = None
        type_indicator = None
        debit_raw, credit_raw = get("debit"), get("credit")

        if debit_raw or credit_raw:
            debit = parse_amount(debit_raw, line=line, field=columns.get("debit")) if debit_raw else Decimal("0")
            credit = parse_amount(credit_raw, line=line, field=columns.get("credit")) if credit_raw else Decimal("0")
            if debit and credit:
                raise ParseError("Both debit and credit are set", line=line, field=columns.get("debit"))
        else:
            amount_raw = get("amount")
            if not amount_raw:
                raise ParseError("Missing amount", line=line, field=columns.get("amount", "amount"))
            amount = parse_amount(amount_raw, line=line, field=columns.get("amount"))
            type_raw = get("type")
            if type_raw:
                type_indicator = self._parse_type(type_raw, line, columns["type"])

        return CsvEntry(
            line=line,
            transaction_date=txn_date,
            value_date=value_date,
            currency=(get("currency") or self.default_currency).upper(),
            reference=get("reference"),
            description=get("description"),
            counterpart_name=get("counterpart_name"),
            counterpart_account=get("counterpart_account"),
            amount=amount,
            debit=debit,
            credit=credit,
            type_indicator=type_indicator,
        )

    def _parse_type(self, value: str, line: int, column: str) -> str:
        """Parse transaction type into "C" or "D"."""
        normalized = value.lower().strip()
        if normalized in self.CREDIT_WORDS:
            return "C"
        if normalized in self.DEBIT_WORDS:
            return "D"
        raise ParseError(f"Unknown transaction type {value!r}", line=line, field=column)

    def _signed_hint(self, entry: CsvEntry) -> Decimal:
        """Net effect of a single-amount row, used only for the derived closing balance."""
        if entry.amount is None:
            return Decimal("0")
        if entry.type_indicator == "D":
            return -abs(entry.amount)
        if entry.type_indicator == "C":
            return abs(entry.amount)
        return entry.amount

    def _balances(self, df: pd.DataFrame, column: str, entries: List[CsvEntry]):
        """Opening and closing balance from a running-balance column."""
        first_line = entries[0].line
        first_balance = parse_amount(clean(df[column].iloc[0]), line=first_line, field=column)
        last_balance = parse_amount(clean(df[column].iloc[-1]), line=entries[-1].line, field=column)
        first = entries[0]
        if first.amount is not None:
            first_effect = self._signed_hint(first)
        else:
            first_effect = (first.credit or Decimal("0")) - (first.debit or Decimal("0"))
        return first_balance - first_effect, last_balance

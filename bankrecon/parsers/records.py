"""Format-specific statement rows produced by the parsers.

Each wire format keeps its own sign convention in its own row type. Only the
normalizer turns these into canonical ``BankTransaction`` objects.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple

MT940 = "MT940"
CSV = "CSV"
ISO20022 = "ISO20022-XML"
OFX = "OFX"
NBS_XML = "NBS-XML"

FORMATS = (MT940, CSV, ISO20022, OFX, NBS_XML)


@dataclass(frozen=True)
class RawEntry:
    """Fields every format provides for a statement line."""
    line: Optional[int]
    transaction_date: date
    value_date: date
    currency: str
    reference: str
    description: str
    counterpart_name: str
    counterpart_account: str


@dataclass(frozen=True)
class Mt940Entry(RawEntry):
    """A :61: statement line plus its :86: details."""
    mark: str                # C, D, RC (reversal of credit) or RD
    amount: Decimal          # Unsigned
    transaction_code: str
    bank_reference: str


@dataclass(frozen=True)
class CsvEntry(RawEntry):
    """A CSV row; exactly one sign source is populated."""
    amount: Optional[Decimal]         # Signed, or unsigned when type_indicator is set
    debit: Optional[Decimal]
    credit: Optional[Decimal]
    type_indicator: Optional[str]


@dataclass(frozen=True)
class CamtEntry(RawEntry):
    """An ISO 20022 camt.05x <Ntry>."""
    amount: Decimal          # Unsigned
    indicator: str           # CRDT or DBIT
    reversal: bool
    entry_reference: str


@dataclass(frozen=True)
class OfxEntry(RawEntry):
    """An OFX <STMTTRN>."""
    fit_id: str
    amount: Decimal          # Signed TRNAMT
    trn_type: str


@dataclass(frozen=True)
class NbsEntry(RawEntry):
    """A Serbian NBS <Stavka> with separate debit/credit elements."""
    debit: Decimal
    credit: Decimal


@dataclass(frozen=True)
class ParsedStatement:
    """Statement header and rows exactly as found in the file."""
    source_format: str
    account_number: str
    bank_name: str
    statement_number: str
    statement_date: date
    period_from: date
    period_to: date
    opening_balance: Decimal
    closing_balance: Decimal
    currency: str
    entries: Tuple[RawEntry, ...] = field(default_factory=tuple)

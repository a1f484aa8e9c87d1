"""Field-level parsing shared by the statement parsers."""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Iterable, Optional

from bankrecon.engine.errors import ParseError

# Common date formats to try
DATE_FORMATS = [
    "%Y-%m-%d",
    "%d.%m.%Y",
    "%d/%m/%Y",
    "%d-%m-%Y",
    "%Y/%m/%d",
    "%Y%m%d",
    "%d.%m.%y",
]

_CURRENCY_MARKS = re.compile(r"[^\d,.\-+]")


def parse_amount(value: str, line: Optional[int] = None, field: Optional[str] = None) -> Decimal:
    """
    Parse a decimal amount from a statement field.

    Handles "1234.56", "1.234,56", "1,234.56" and "1234,56". Never goes
    through float.

    Raises:
        ParseError: If the value is not a number.
    """
    str_value = str(value).strip()
    negative = str_value.startswith("(") and str_value.endswith(")")
    str_value = _CURRENCY_MARKS.sub("", str_value)

    if "," in str_value and "." in str_value:
        if str_value.rindex(",") > str_value.rindex("."):
            # European: 1.234,56
            str_value = str_value.replace(".", "").replace(",", ".")
        else:
            # English: 1,234.56
            str_value = str_value.replace(",", "")
    elif "," in str_value:
        str_value = str_value.replace(",", ".")

    if str_value.endswith("."):
        str_value += "0"

    try:
        amount = Decimal(str_value)
    except InvalidOperation:
        raise ParseError(f"Malformed amount {value!r}", line=line, field=field)
    if not amount.is_finite():
        raise ParseError(f"Malformed amount {value!r}", line=line, field=field)
    return -amount if negative else amount


def parse_date(
    value: str,
    line: Optional[int] = None,
    field: Optional[str] = None,
    formats: Iterable[str] = DATE_FORMATS,
) -> date:
    """Parse a date trying each known format in order."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    str_value = str(value).strip()
    # ISO timestamps: keep the date part
    if len(str_value) > 10 and str_value[4:5] == "-" and str_value[10:11] in ("T", " "):
        str_value = str_value[:10]

    for fmt in formats:
        try:
            return datetime.strptime(str_value, fmt).date()
        except ValueError:
            continue

    raise ParseError(f"Could not parse date {value!r}", line=line, field=field)


def parse_yymmdd(value: str, line: Optional[int] = None, field: Optional[str] = None) -> date:
    """Parse the SWIFT YYMMDD date format."""
    return parse_date(value, line=line, field=field, formats=("%y%m%d",))


def clean(value: Optional[str]) -> str:
    """Collapse whitespace; None becomes an empty string."""
    if value is None:
        return ""
    return " ".join(str(value).split())

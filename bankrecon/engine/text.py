"""Text normalization for references and partner names."""

import re
import unicodedata
from typing import List, Optional

# Letters that do not decompose under NFKD
_TRANSLITERATE = str.maketrans({"đ": "dj", "Đ": "Dj", "ß": "ss", "ø": "o", "Ø": "O", "ł": "l", "Ł": "L"})

LEGAL_FORMS = frozenset({
    "doo", "ad", "od", "szr", "pr",            # Serbian
    "ltd", "llc", "inc", "plc", "corp", "co",
    "gmbh", "ag", "kg", "sa", "srl", "bv", "nv", "sro",
})


def _remove_diacritics(s: str) -> str:
    nfkd = unicodedata.normalize("NFKD", s.translate(_TRANSLITERATE))
    return "".join(c for c in nfkd if unicodedata.category(c) != "Mn")


def normalize_reference(value: Optional[str]) -> str:
    """Keep only letters and digits, casefolded: "INV 2024/0123" -> "inv20240123"."""
    if not value:
        return ""
    return "".join(c for c in _remove_diacritics(value).casefold() if c.isalnum())


_SHORT_ACCOUNT = re.compile(r"^(\d{3})-(\d{1,13})-(\d{2})$")


def normalize_account(value: Optional[str]) -> str:
    """
    Canonical bank account number: letters and digits only, uppercased.

    Serbian short form "160-12345-67" is expanded to the 18-digit form
    "160000000001234567" so both spellings compare equal.
    """
    if not value:
        return ""
    value = value.strip().replace(" ", "")
    short = _SHORT_ACCOUNT.match(value)
    if short:
        bank, number, check = short.groups()
        return f"{bank}{number.zfill(13)}{check}"
    return "".join(c for c in value.upper() if c.isalnum())


def normalize_name(value: Optional[str]) -> str:
    """
    Normalize a company or person name for comparison.

    Lowercases, strips diacritics and punctuation, collapses whitespace and
    drops legal-form suffixes such as "d.o.o." or "GmbH".
    """
    return " ".join(name_tokens(value))


def name_tokens(value: Optional[str]) -> List[str]:
    """Split a name into normalized tokens without legal-form suffixes."""
    if not value:
        return []
    text = _remove_diacritics(value).casefold()
    # "d.o.o." -> "doo" before punctuation becomes whitespace
    text = re.sub(r"(?<=\w)\.(?=\w)", "", text)
    text = re.sub(r"[^\w]+", " ", text)
    return [t for t in text.split() if t not in LEGAL_FORMS]

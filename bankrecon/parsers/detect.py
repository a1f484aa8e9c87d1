"""Format detection and the single parse entry point."""

import logging
import re

from bankrecon.engine.errors import ParseError
from bankrecon.parsers.csv_parser import CSVParser, sniff_delimiter
from bankrecon.parsers.iso20022_parser import CAMT_NAMESPACE_PREFIX, ISO20022Parser
from bankrecon.parsers.mt940_parser import MT940Parser
from bankrecon.parsers.nbs_parser import ROOT_TAG as NBS_ROOT_TAG
from bankrecon.parsers.nbs_parser import NBSParser
from bankrecon.parsers.ofx_parser import OFXParser
from bankrecon.parsers.records import CSV, FORMATS, ISO20022, MT940, NBS_XML, OFX, ParsedStatement

logger = logging.getLogger(__name__)

AUTO = "auto"

_MT940_TAG = re.compile(r"^:(20|25|28C|60[FM]|61|62[FM]):", re.MULTILINE)
_XML_ROOT = re.compile(r"<(?!\?|!)(?:[\w.-]+:)?([\w.-]+)[\s>/]")


def decode(data: bytes) -> str:
    """Decode file bytes: UTF-8 (with or without BOM), else Windows-1250."""
    if data.startswith(b"\xef\xbb\xbf"):
        data = data[3:]
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        return data.decode("cp1250", errors="replace")


def detect_format(data: bytes) -> str:
    """
    Sniff the statement format from its content.

    Raises:
        ParseError: If no known signature is found.
    """
    text = decode(data)
    head = text.lstrip()[:4096]

    if head.startswith("{1:") or len(set(_MT940_TAG.findall(head))) >= 2:
        return MT940
    if head.startswith("OFXHEADER") or "<OFX>" in head.upper():
        return OFX
    if head.startswith("<"):
        if CAMT_NAMESPACE_PREFIX in head:
            return ISO20022
        root = _XML_ROOT.search(head)
        if root and root.group(1) == NBS_ROOT_TAG:
            return NBS_XML
        raise ParseError("Unrecognized XML statement format", line=1)

    first_line = head.splitlines()[0] if head else ""
    if first_line and sniff_delimiter(first_line):
        return CSV
    raise ParseError("Unable to detect statement format", line=1)


def parse(data: bytes, fmt: str = AUTO, **csv_options) -> ParsedStatement:
    """
    Parse raw statement bytes.

    Args:
        data: Raw file content.
        fmt: One of MT940, CSV, ISO20022-XML, OFX, NBS-XML, or "auto".
        **csv_options: Passed to CSVParser (column_mapping, default_currency, ...).

    Returns:
        ParsedStatement with format-specific entries.

    Raises:
        ParseError: On unknown format or malformed content; nothing is
            returned for a partially valid file.
    """
    if not data or not data.strip():
        raise ParseError("Empty statement file", line=1)

    if fmt == AUTO:
        fmt = detect_format(data)
        logger.info("Detected statement format %s", fmt)
    elif fmt not in FORMATS:
        raise ParseError(f"Unsupported format {fmt!r}. Use one of: {', '.join(FORMATS)}")

    if fmt == OFX:
        return OFXParser().parse(data)

    text = decode(data)
    if fmt == MT940:
        return MT940Parser().parse(text)
    if fmt == ISO20022:
        return ISO20022Parser().parse(text)
    if fmt == NBS_XML:
        return NBSParser().parse(text)
    return CSVParser(**csv_options).parse(text)

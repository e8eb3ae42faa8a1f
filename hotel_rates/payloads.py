"""Helpers for the loosely typed payloads browser extractors hand back."""

from __future__ import annotations

import base64
import gzip
import json
import re
from typing import Any, Dict, Iterable, Iterator, List, Optional

ENVELOPE_KEY = "ndjson_gz_base64"

# Digit groups may only be split by a comma or a (narrow) no-break space, so
# "$450 3 nights" reads as 450 rather than 4503.
_NUMBER_RE = re.compile(r"\d{1,3}(?:[,\u00a0\u202f]\d{3})+(?!\d)(?:\.\d+)?|\d+(?:\.\d+)?|\.\d+")
# Accounting negatives wrap the amount itself: "(45.00)", "($45.00)".
_PAREN_NEGATIVE_RE = re.compile(r"^\(\s*[^\d()]*\d[\d.,\u00a0\u202f]*\s*\)$")


def parse_price(value: Any) -> Optional[float]:
    """Parse a price from a number or display text such as ``"$1,234.50"``.

    The sign is kept so that negative amounts reach validation instead of
    being silently flipped.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return None
    match = _NUMBER_RE.search(text)
    if not match:
        return None
    digits = re.sub(r"[,\u00a0\u202f]", "", match.group())
    try:
        amount = float(digits)
    except ValueError:
        return None
    negative = (
        text.startswith("-")
        or text[: match.start()].rstrip().endswith("-")
        or bool(_PAREN_NEGATIVE_RE.match(text))
    )
    return -amount if negative else amount


def parse_float(value: Any) -> Optional[float]:
    if value is None or value == "" or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return parse_price(value)


def parse_int(value: Any) -> Optional[int]:
    number = parse_float(value)
    return int(number) if number is not None else None


def currency_from_text(value: Any) -> Optional[str]:
    """Best-effort currency code from display text."""

    if not value:
        return None
    text = str(value)
    code = re.search(r"\b([A-Z]{3})\b", text)
    if code:
        return code.group(1)
    symbols = {"$": "USD", "€": "EUR", "£": "GBP", "¥": "JPY"}
    for symbol, iso in symbols.items():
        if symbol in text:
            return iso
    return None


def gunzip_ndjson(payload_b64: str) -> List[Dict[str, Any]]:
    """Decode a base64 gzip blob of newline-delimited JSON rows."""

    text = gzip.decompress(base64.b64decode(payload_b64)).decode("utf-8")
    return [json.loads(line) for line in text.splitlines() if line.strip()]


def expand_rows(items: Iterable[Any]) -> Iterator[Dict[str, Any]]:
    """Yield raw rows, unpacking compressed NDJSON envelopes in place."""

    for item in items:
        if isinstance(item, dict) and ENVELOPE_KEY in item:
            yield from gunzip_ndjson(item[ENVELOPE_KEY])
        else:
            yield item


__all__ = [
    "ENVELOPE_KEY",
    "parse_price",
    "parse_float",
    "parse_int",
    "currency_from_text",
    "gunzip_ndjson",
    "expand_rows",
]

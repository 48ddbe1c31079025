from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union


@dataclass
class ParseResult:
    value: Any
    ok: bool
    error: Optional[str] = None
    meta: Optional[Dict[str, Any]] = None


_AMOUNT_RX = re.compile(r"\d[\d,\.]*")
_THOUSANDS_RX = re.compile(r"(\d+(?:\.\d+)?)\s*k\b", re.IGNORECASE)


def parse_amount(text: Union[str, int, float, None]) -> ParseResult:
    """Parse a handwritten money amount: '$2,500', 'SGD 1,200.50', '2.5k', '800'.

    Commas are thousands separators; a final '.' followed by one or two digits
    is the decimal part. Negative signs are rejected.
    """
    if text is None or (isinstance(text, str) and not text.strip()):
        return ParseResult(value=None, ok=False, error="EMPTY")
    if isinstance(text, bool):
        return ParseResult(value=None, ok=False, error="BAD_NUMBER", meta={"text": text})
    if isinstance(text, (int, float)):
        if text < 0:
            return ParseResult(value=None, ok=False, error="NEGATIVE", meta={"text": text})
        return ParseResult(value=float(text), ok=True)

    s = text.strip()
    if re.search(r"-\s*\d", s):
        return ParseResult(value=None, ok=False, error="NEGATIVE", meta={"text": text})

    k = _THOUSANDS_RX.search(s)
    if k:
        return ParseResult(value=round(float(k.group(1)) * 1000, 2), ok=True, meta={"k_suffix": True})

    m = _AMOUNT_RX.search(s)
    if not m:
        return ParseResult(value=None, ok=False, error="NO_MATCH", meta={"text": text})
    token = m.group(0).rstrip(".,")

    frac = ""
    dm = re.search(r"\.(\d{1,2})$", token)
    if dm:
        frac = dm.group(1)
        token = token[: dm.start()]
    int_part = re.sub(r"[\.,]", "", token)
    if not int_part.isdigit():
        return ParseResult(value=None, ok=False, error="BAD_NUMBER", meta={"text": text})
    try:
        return ParseResult(value=float(f"{int_part}.{frac or '0'}"), ok=True)
    except ValueError:
        return ParseResult(value=None, ok=False, error="BAD_NUMBER", meta={"text": text})


def coerce_amount(value: Any) -> Any:
    """Float when the value parses as an amount, else the value unchanged."""
    if value is None or isinstance(value, bool):
        return value
    r = parse_amount(value)
    return r.value if r.ok else value

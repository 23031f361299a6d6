from __future__ import annotations
import re
from typing import Iterable, Optional

from .types import OcrLine

# Pump displays: gallons always carry 3 decimals, money 2
GALLONS_RE = re.compile(r"\b(\d{1,2}\.\d{3})\b")
MONEY_RE = re.compile(r"(?<![\d.])\$?\s*(\d{1,3}\.\d{2})\b")
# Digit runs that lost their decimal point
GALLONS_DIGITS_RE = re.compile(r"(?<![\d.])(\d{4,5})(?!\d|\.\d)")
TOTAL_DIGITS_RE = re.compile(r"(?<![\d.])(\d{4})(?!\d|\.\d)")
# Odometer: a 5-6 digit integer that is not the integer part of a decimal
MILES_RE = re.compile(r"(?<![\d.])(\d{5,6})(?!\d)(?!\.\d)")
DIGIT_RUN_RE = re.compile(r"\d{5,6}")

KEYS_PUMP = ("gallon", "gal", "sale", "$", "price")
KEYS_ODOMETER = ("odometer", "odo")

# LCD segment gaps read as '|' (or a blank) inside a 3-decimal gallons reading: 9.8 | 1, 9.81 1
_GALLONS_CONTEXT_RE = re.compile(r"GALLONS?", re.IGNORECASE)
_SPLIT_DECIMAL_RE = re.compile(r"(?<![\d.$])(\d{1,2})\.(\d{1,2})([ \t]*\|[ \t]*|[ \t]+)(\d)(?![\d.])")
_SPLIT_DECIMAL_SPACE_RE = re.compile(r"(?<![\d.$])(\d{1,2})\.(\d{2})( )(\d)(?![\d.])")
_SPLIT_DECIMAL_BAR_RE = re.compile(r"(?<![\d.$])(\d{1,2})\.(\d{1,2})([ \t]*\|[ \t]*)(\d)(?![\d.])")
_SPACED_CENTS_RE = re.compile(r"(?<![\d.])(\d{1,3})\.[ \t]+(\d{2})(?!\d)")


def _join_split_decimal(m: re.Match) -> str:
    """Fold the isolated trailing digit back into the fraction; a bar counts as a '1'
    only when that is what it takes to reach three decimals."""
    whole, frac, sep, tail = m.group(1), m.group(2), m.group(3), m.group(4)
    if "|" in sep and len(frac) + 1 < 3:
        frac += "1"
    frac += tail
    if len(frac) != 3:
        return m.group(0)
    return f"{whole}.{frac}"


def clean_ocr_text(text: str) -> str:
    """Repair known display artifacts before any pattern matching."""
    s = text or ""
    ctx = _GALLONS_CONTEXT_RE.search(s)
    if ctx:
        head, tail = s[:ctx.end()], s[ctx.end():]
        s = head + _SPLIT_DECIMAL_RE.sub(_join_split_decimal, tail)
    s = _SPLIT_DECIMAL_SPACE_RE.sub(_join_split_decimal, s)
    s = _SPLIT_DECIMAL_BAR_RE.sub(_join_split_decimal, s)
    s = _SPACED_CENTS_RE.sub(r"\1.\2", s)
    return s.replace("|", "1")


def has_pump_cues(text: str) -> bool:
    low = (text or "").lower()
    return any(k in low for k in KEYS_PUMP)


def has_odometer_cues(text: str) -> bool:
    low = (text or "").lower()
    return any(k in low for k in KEYS_ODOMETER) or bool(DIGIT_RUN_RE.search(low))


def line_confidence(lines: Iterable[OcrLine], needle: str, default: float) -> float:
    """Confidence of the first OCR line containing `needle`.

    The needle must stand as a whole number on the line, so `12345` does not
    match inside `9.12345`. Falls back to `default` when no line carries the
    text or the line is unscored (0).
    """
    if not needle:
        return default
    token = re.compile(rf"(?<![\d.]){re.escape(needle)}(?!\d)")
    found: Optional[OcrLine] = next((ln for ln in lines if token.search(ln.text or "")), None)
    if found is None or found.confidence <= 0:
        return default
    return min(100.0, float(found.confidence))

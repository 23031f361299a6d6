from __future__ import annotations

from fuel_agent.config import settings
from . import filters
from .types import MileageValue, OcrResult, OdometerData


def parse_odometer_data(ocr: OcrResult) -> OdometerData:
    """Pick the largest 5-6 digit integer in the text.

    Dashboards also show trip meters, speed and a clock; the biggest plausible
    integer is the odometer far more often than not. Equal values keep the first.
    """
    tokens = [m.group(1) for m in filters.MILES_RE.finditer(ocr.text or "")]
    if not tokens:
        return OdometerData()
    best = max(tokens, key=int)
    conf = filters.line_confidence(ocr.lines, best, settings.DEFAULT_LINE_CONFIDENCE)
    return OdometerData(miles=MileageValue(value=int(best), confidence=conf))

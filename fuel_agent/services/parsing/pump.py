from __future__ import annotations

import logging
from typing import Optional, Set, Tuple

from fuel_agent.config import settings
from . import filters, rules
from .types import FieldValue, OcrResult, PumpData

logger = logging.getLogger(__name__)


def _field(ocr: OcrResult, hit: Optional[rules.RuleHit]) -> FieldValue:
    if hit is None:
        return FieldValue()
    conf = filters.line_confidence(ocr.lines, hit.candidate.source, settings.DEFAULT_LINE_CONFIDENCE)
    return FieldValue(value=hit.candidate.value, confidence=conf)


def reconcile_price(pump: PumpData) -> PumpData:
    """Derive price per gallon from total and gallons.

    The derived value carries the weaker of its two source confidences. Gallons and
    total are never back-filled: both are matched with their own range checks.
    """
    if pump.price_per_gallon.found or not (pump.total.found and pump.gallons.found):
        return pump
    if not pump.gallons.value:
        return pump
    price = FieldValue(
        value=pump.total.value / pump.gallons.value,
        confidence=min(pump.total.confidence, pump.gallons.confidence),
    )
    return pump.model_copy(update={"price_per_gallon": price})


def parse_pump_data(ocr: OcrResult) -> PumpData:
    text = filters.clean_ocr_text(ocr.text)

    gallons_hit = rules.first_match(rules.GALLONS_RULES, text)
    consumed: Set[Tuple[int, int]] = set()
    if gallons_hit is not None and gallons_hit.rule.reconstructed:
        consumed.add(gallons_hit.candidate.span)

    total_hit = rules.first_match(rules.TOTAL_RULES, text, skip_spans=consumed)

    for label, hit in (("gallons", gallons_hit), ("total", total_hit)):
        if hit is not None:
            logger.debug("%s=%s via %s (token %r)", label, hit.candidate.value, hit.rule.name, hit.candidate.source)

    pump = PumpData(gallons=_field(ocr, gallons_hit), total=_field(ocr, total_hit))
    return reconcile_price(pump)

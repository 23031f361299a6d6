from __future__ import annotations

import logging
from typing import Optional, Sequence

from . import filters
from .odometer import parse_odometer_data
from .pump import parse_pump_data
from .types import Classification, OcrResult, OdometerData, PumpData

logger = logging.getLogger(__name__)


def classify(results: Sequence[OcrResult]) -> Classification:
    """Decide which photo is the pump reading and which the odometer.

    Photos arrive unlabeled. A lexical pass parses each photo for whichever role its
    text hints at, and a parse only counts when it produced the role's primary value
    (gallons or miles); later photos overwrite earlier ones. If that yields nothing
    for either role, every photo is parsed both ways and the first success per role
    is taken. The same photo may end up filling both roles, and a role with no
    usable photo comes back empty rather than raising.
    """
    pump: Optional[PumpData] = None
    odometer: Optional[OdometerData] = None

    for i, res in enumerate(results):
        if filters.has_pump_cues(res.text):
            parsed = parse_pump_data(res)
            if parsed.gallons.found:
                pump = parsed
                logger.debug("photo %d: pump by keywords", i)
        if filters.has_odometer_cues(res.text):
            parsed_odo = parse_odometer_data(res)
            if parsed_odo.miles.found:
                odometer = parsed_odo
                logger.debug("photo %d: odometer by keywords", i)

    if pump is None and odometer is None:
        logger.debug("keyword pass found nothing; parsing every photo both ways")
        for i, res in enumerate(results):
            if pump is None:
                parsed = parse_pump_data(res)
                if parsed.gallons.found:
                    pump = parsed
                    logger.debug("photo %d: pump by fallback", i)
            if odometer is None:
                parsed_odo = parse_odometer_data(res)
                if parsed_odo.miles.found:
                    odometer = parsed_odo
                    logger.debug("photo %d: odometer by fallback", i)

    return Classification(pump=pump or PumpData(), odometer=odometer or OdometerData())

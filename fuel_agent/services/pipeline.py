from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from pydantic import BaseModel, Field

from fuel_agent.config import settings
from fuel_agent.services.errors import ExtractionError
from fuel_agent.services.image_preproc import preprocess_bytes
from fuel_agent.services.ocr import OcrSession
from fuel_agent.services.parsing import classify
from fuel_agent.services.parsing.types import OcrResult, OdometerData, PumpData

logger = logging.getLogger(__name__)


@dataclass
class Photo:
    data: bytes
    filename: str = ""


class PhotoFailure(BaseModel):
    index: int
    filename: str = ""
    code: str
    message: str = ""


class ExtractionResult(BaseModel):
    pump: PumpData = Field(default_factory=PumpData)
    odometer: OdometerData = Field(default_factory=OdometerData)
    failures: List[PhotoFailure] = Field(default_factory=list)

    @property
    def status(self) -> str:
        """complete: both required readings found; failed: nothing usable at all."""
        fields = [self.pump.gallons, self.pump.price_per_gallon, self.pump.total, self.odometer.miles]
        if not any(f.found for f in fields):
            return "failed"
        if self.pump.gallons.found and self.odometer.miles.found:
            return "complete"
        return "partial"


async def _read_photo(session: OcrSession, index: int, photo: Photo) -> Tuple[Optional[OcrResult], Optional[PhotoFailure]]:
    try:
        image = await asyncio.to_thread(preprocess_bytes, photo.data)
        logger.info("Photo %d (%s): preprocessed to %dx%d", index, photo.filename or "-", image.width, image.height)
        result = await session.recognize(image)
        logger.debug("Photo %d OCR text: %r", index, result.text[:200])
        return result, None
    except ExtractionError as e:
        logger.warning("Photo %d (%s) failed: %s: %s", index, photo.filename or "-", type(e).__name__, e)
        return None, PhotoFailure(index=index, filename=photo.filename, code=e.code, message=str(e))


async def extract_readings(photos: Sequence[Photo], session: OcrSession, concurrent: Optional[bool] = None) -> ExtractionResult:
    """Preprocess and OCR every photo, then classify the complete set once."""
    run_concurrently = settings.OCR_CONCURRENT if concurrent is None else concurrent
    if run_concurrently:
        outcomes = await asyncio.gather(*(_read_photo(session, i, p) for i, p in enumerate(photos)))
    else:
        outcomes = [await _read_photo(session, i, p) for i, p in enumerate(photos)]

    results = [r for r, _ in outcomes if r is not None]
    failures = [f for _, f in outcomes if f is not None]
    roles = classify(results)
    out = ExtractionResult(pump=roles.pump, odometer=roles.odometer, failures=failures)
    logger.info(
        "Extraction %s: gallons=%s total=%s miles=%s (%d/%d photos read)",
        out.status, out.pump.gallons.value, out.pump.total.value, out.odometer.miles.value,
        len(results), len(photos),
    )
    return out

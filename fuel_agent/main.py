# --- Imports ---
from typing import Any, Dict, List, Optional, Union
from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile
from pydantic import BaseModel, Field

from fuel_agent.config import settings
import logging
from fuel_agent.services.ocr import OcrSession
from fuel_agent.services.pipeline import ExtractionResult, Photo, extract_readings
from fuel_agent.services.parsing import classify
from fuel_agent.services.parsing.confidence import confidence_level, fields_of, section_confidence
from fuel_agent.services.parsing.types import FieldValue, OcrResult, OdometerData, PumpData
from fuel_agent.utils import MessageError, compose_fillup_message, sms_link

app = FastAPI(title="Fuel Agent")

# Module logger
logger = logging.getLogger(__name__)
if settings.DEBUG:
    logger.setLevel(logging.DEBUG)
else:
    logger.setLevel(logging.INFO)


class ParseRequest(BaseModel):
    results: List[OcrResult] = Field(default_factory=list)


class MessageRequest(BaseModel):
    miles: Union[int, float, str, None] = None
    price: Union[int, float, str, None] = None
    gallons: Union[int, float, str, None] = None


# --- Lifecycle: one OCR session per process, built lazily on first request ---
@app.on_event("startup")
async def _startup() -> None:
    app.state.ocr_session = OcrSession()
    logger.info("OCR backend configured: %s", app.state.ocr_session.kind)


@app.on_event("shutdown")
async def _shutdown() -> None:
    session: Optional[OcrSession] = getattr(app.state, "ocr_session", None)
    if session is not None:
        session.close()


def get_ocr_session(request: Request) -> OcrSession:
    session = getattr(request.app.state, "ocr_session", None)
    if session is None:
        session = request.app.state.ocr_session = OcrSession()
    return session


# Field value with its presentation band
def _field_json(f: FieldValue) -> Dict[str, Any]:
    return {
        "value": f.value,
        "confidence": round(f.confidence, 1),
        "level": confidence_level(f.confidence) if f.found else None,
    }


def _readings_json(pump: PumpData, odometer: OdometerData) -> Dict[str, Any]:
    return {
        "pump": {
            "gallons": _field_json(pump.gallons),
            "price_per_gallon": _field_json(pump.price_per_gallon),
            "total": _field_json(pump.total),
            "confidence": round(section_confidence(fields_of(pump)), 1),
        },
        "odometer": {
            "miles": _field_json(odometer.miles),
            "confidence": round(section_confidence(fields_of(odometer)), 1),
        },
    }


# --- Health ---
@app.get("/healthz")
async def healthz(session: OcrSession = Depends(get_ocr_session)):
    return {"ok": True, "backend": session.kind}


# --- Extraction ---
@app.post("/extract")
# Accept 1..MAX_PHOTOS unlabeled photos, read them all, return pump + odometer readings
async def extract(files: List[UploadFile] = File(...), session: OcrSession = Depends(get_ocr_session)):
    if not files:
        raise HTTPException(status_code=400, detail="at least one photo is required")
    if len(files) > settings.MAX_PHOTOS:
        raise HTTPException(status_code=400, detail=f"at most {settings.MAX_PHOTOS} photos per request")
    photos: List[Photo] = []
    for f in files:
        content = await f.read()
        if len(content) > settings.MAX_UPLOAD_BYTES:
            raise HTTPException(
                status_code=413,
                detail=f"{f.filename or 'photo'} exceeds {settings.MAX_UPLOAD_BYTES // (1024 * 1024)}MB limit",
            )
        photos.append(Photo(data=content, filename=f.filename or ""))

    result: ExtractionResult = await extract_readings(photos, session)
    body = _readings_json(result.pump, result.odometer)
    body["status"] = result.status
    body["failures"] = [fl.model_dump() for fl in result.failures]
    if result.status == "failed":
        body["message"] = "Could not read any values. Please try with clearer photos."
    return body


# --- Parsing only (caller ran OCR itself) ---
@app.post("/parse")
async def parse(req: ParseRequest):
    if not req.results:
        raise HTTPException(status_code=400, detail="results must contain at least one OCR result")
    roles = classify(req.results)
    return _readings_json(roles.pump, roles.odometer)


# --- Outbound message ---
@app.post("/message")
async def message(req: MessageRequest):
    try:
        body = compose_fillup_message(req.miles, req.price, req.gallons)
    except MessageError as e:
        raise HTTPException(status_code=422, detail=str(e))
    return {"body": body, "sms_url": sms_link(settings.SMS_RECIPIENT, body)}

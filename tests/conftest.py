from typing import Callable, Dict, List, Optional

import cv2
import numpy as np
import pytest

from fuel_agent.config import settings
from fuel_agent.services.image_preproc import PreprocessedImage
from fuel_agent.services.parsing.types import OcrLine, OcrResult


class FakeBackend:
    """Scripted OCR backend: pops outcomes in order, or looks them up by image height."""

    name = "fake"

    def __init__(self, outcomes: Optional[List[object]] = None, by_height: Optional[Dict[int, object]] = None):
        self.outcomes = list(outcomes or [])
        self.by_height = by_height or {}
        self.calls: List[PreprocessedImage] = []
        self.closed = False

    async def recognize(self, image: PreprocessedImage) -> OcrResult:
        self.calls.append(image)
        out = self.by_height[image.height] if self.by_height else self.outcomes.pop(0)
        if isinstance(out, BaseException):
            raise out
        return out

    def close(self) -> None:
        self.closed = True


@pytest.fixture(autouse=True)
def no_retry_sleep(monkeypatch):
    monkeypatch.setattr(settings, "OCR_RETRY_BASE_DELAY", 0.0)


@pytest.fixture
def make_ocr() -> Callable[..., OcrResult]:
    def _make(text: str, *lines) -> OcrResult:
        return OcrResult(text=text, lines=[OcrLine(text=t, confidence=c) for t, c in lines])
    return _make


@pytest.fixture
def pump_ocr(make_ocr) -> OcrResult:
    return make_ocr("GALLONS\n9.811\nSALE $35.51", ("9.811", 90), ("$35.51", 88))


@pytest.fixture
def odometer_ocr(make_ocr) -> OcrResult:
    return make_ocr("168237", ("168237", 93))


@pytest.fixture
def make_image() -> Callable[..., bytes]:
    """Encode a white BGR image with a dark bar; PNG unless another extension is given."""
    def _make(width: int = 200, height: int = 100, ext: str = ".png", channels: int = 3) -> bytes:
        img = np.full((height, width, channels), 255, dtype=np.uint8)
        img[height // 3: 2 * height // 3, width // 4: 3 * width // 4, :3] = 20
        ok, buf = cv2.imencode(ext, img)
        assert ok
        return buf.tobytes()
    return _make


@pytest.fixture
def fake_backend_cls():
    return FakeBackend

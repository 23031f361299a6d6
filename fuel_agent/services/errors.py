from __future__ import annotations


class ExtractionError(Exception):
    """Base for I/O-level failures while turning one photo into OCR text."""

    code = "EXTRACTION_FAILED"


class ImageDecodeError(ExtractionError):
    code = "IMAGE_DECODE_FAILED"


class OcrError(ExtractionError):
    code = "OCR_FAILED"


class BackendUnavailable(OcrError):
    code = "OCR_UNAVAILABLE"


class BackendTimeout(OcrError):
    code = "OCR_TIMEOUT"


class InvalidInput(OcrError):
    """The backend rejected the image itself; retrying the same buffer is pointless."""

    code = "OCR_INVALID_INPUT"


class RateLimited(OcrError):
    code = "OCR_RATE_LIMITED"

    def __init__(self, message: str = "rate limit exceeded", retry_after: float = 0.0) -> None:
        super().__init__(message)
        self.retry_after = max(0.0, float(retry_after or 0.0))

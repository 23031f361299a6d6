from __future__ import annotations

import asyncio
import io
import logging
import random
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Protocol

import numpy as np
import pytesseract
import requests
from PIL import Image, UnidentifiedImageError

from fuel_agent.config import settings
from fuel_agent.services.errors import (
    BackendTimeout,
    BackendUnavailable,
    InvalidInput,
    OcrError,
    RateLimited,
)
from fuel_agent.services.image_preproc import PreprocessedImage
from fuel_agent.services.parsing.types import OcrLine, OcrResult

# Module logger
logger = logging.getLogger(__name__)
if settings.DEBUG:
    logger.setLevel(logging.DEBUG)
else:
    logger.setLevel(logging.INFO)


class OcrBackend(Protocol):
    name: str

    async def recognize(self, image: PreprocessedImage) -> OcrResult: ...

    def close(self) -> None: ...


# ---- Tesseract ----

# Group OCR word boxes into lines by vertical proximity; line confidence is the mean word confidence.
def _cluster_lines_by_y(words: List[Dict[str, Any]]) -> List[OcrLine]:
    """Given a flat list of word dicts with coords and conf, build visual lines.

    Words are clustered by vertical center (tolerance scales with the median word
    height), then each line is ordered left to right.
    """
    if not words:
        return []

    heights = [max(1, int(w.get("height", 0) or 0)) for w in words]
    med_h = float(np.median(heights)) if heights else 12.0
    y_tol = max(float(settings.OCR_Y_CLUSTER_MIN_PX), med_h * float(settings.OCR_Y_CLUSTER_TOL_FRAC))

    y_mids = [float(w["top"]) + float(w["height"]) / 2.0 for w in words]
    idxs = sorted(range(len(words)), key=lambda i: (y_mids[i], float(words[i]["left"])))

    clusters: List[List[int]] = []
    cluster_ys: List[float] = []    # running mean y per cluster
    for i in idxs:
        y = y_mids[i]
        if clusters and abs(y - cluster_ys[-1]) <= y_tol:
            clusters[-1].append(i)
            cluster_ys[-1] = (cluster_ys[-1] * (len(clusters[-1]) - 1) + y) / float(len(clusters[-1]))
        else:
            clusters.append([i])
            cluster_ys.append(y)

    lines: List[OcrLine] = []
    for inds in clusters:
        inds_sorted = sorted(inds, key=lambda k: float(words[k]["left"]))
        tokens = [str(words[k]["text"]).strip() for k in inds_sorted]
        confs = [float(words[k]["conf"]) for k in inds_sorted]
        text = " ".join(t for t in tokens if t)
        if text:
            lines.append(OcrLine(text=text, confidence=sum(confs) / len(confs)))
    return lines


class TesseractBackend:
    """Local Tesseract engine; blocking calls run in a worker thread."""

    name = "tesseract"

    def __init__(self, lang: Optional[str] = None, psms: Optional[List[int]] = None) -> None:
        self.lang = lang or settings.TESSERACT_LANG
        self.psms = psms or [int(p.strip()) for p in settings.OCR_PSMS.split(",") if p.strip().isdigit()] or [6]
        try:
            self.version = str(pytesseract.get_tesseract_version())
        except pytesseract.TesseractNotFoundError as e:
            raise BackendUnavailable("tesseract binary not found") from e
        logger.info("Tesseract %s ready (lang=%s, psms=%s)", self.version, self.lang, self.psms)

    def _config(self, psm: int) -> str:
        spaces_flag = "-c preserve_interword_spaces=1" if settings.OCR_PRESERVE_SPACES else ""
        return f"--oem {settings.OCR_OEM} --psm {psm} {spaces_flag}".strip()

    def _run_psm(self, pil_img: Image.Image, psm: int) -> List[Dict[str, Any]]:
        data = pytesseract.image_to_data(pil_img, lang=self.lang, output_type=pytesseract.Output.DICT, config=self._config(psm))
        words: List[Dict[str, Any]] = []
        for i in range(len(data.get("text", []))):
            txt = (data["text"][i] or "").strip()
            if not txt:
                continue
            try:
                conf = float(data["conf"][i])
            except (TypeError, ValueError):
                conf = -1.0
            if conf < settings.OCR_CONF_THRESHOLD:
                continue
            words.append({
                "text": txt,
                "conf": max(0.0, conf),
                "left": int(data["left"][i]),
                "top": int(data["top"][i]),
                "width": int(data["width"][i]),
                "height": int(data["height"][i]),
            })
        return words

    def _recognize_sync(self, image: PreprocessedImage) -> OcrResult:
        try:
            pil_img = Image.open(io.BytesIO(image.data))
            pil_img.load()
        except (UnidentifiedImageError, OSError) as e:
            raise InvalidInput(f"tesseract could not open image: {e}") from e

        best: Optional[List[OcrLine]] = None
        best_score = -1e9
        for psm in self.psms:
            try:
                words = self._run_psm(pil_img, psm)
            except pytesseract.TesseractNotFoundError as e:
                raise BackendUnavailable("tesseract binary not found") from e
            except (pytesseract.TesseractError, RuntimeError) as e:
                logger.warning("Tesseract psm=%d failed: %s", psm, e)
                continue
            lines = _cluster_lines_by_y(words)
            score = float(len(words)) + settings.OCR_SCORE_LINES_WEIGHT * float(len(lines))
            logger.debug("Tesseract psm=%d words=%d lines=%d score=%.2f", psm, len(words), len(lines), score)
            if best is None or score > best_score:
                best, best_score = lines, score
        if best is None:
            raise BackendUnavailable("tesseract failed for every page segmentation mode")
        return OcrResult(text="\n".join(ln.text for ln in best), lines=best)

    async def recognize(self, image: PreprocessedImage) -> OcrResult:
        return await asyncio.to_thread(self._recognize_sync, image)

    def close(self) -> None:
        return None


# ---- HTTP backends ----

def _raise_for_status(r: requests.Response) -> None:
    if r.status_code == 429:
        try:
            retry_after = float(r.headers.get("Retry-After", "0") or 0)
        except ValueError:
            retry_after = 0.0
        raise RateLimited("OCR backend rate limited (HTTP 429)", retry_after=retry_after)
    if r.status_code in (400, 413, 415, 422):
        raise InvalidInput(f"OCR backend rejected image (HTTP {r.status_code}): {r.text[:200]}")
    if r.status_code >= 400:
        raise BackendUnavailable(f"OCR backend error (HTTP {r.status_code})")


# Shapes a malformed JSON reply fails with; pydantic's ValidationError is a ValueError.
_MALFORMED = (ValueError, TypeError, AttributeError, LookupError)


class _HttpBackend(ABC):
    name = "http"

    def __init__(self, timeout: Optional[float] = None) -> None:
        self.timeout = timeout or settings.OCR_TIMEOUT
        self._session = requests.Session()

    def _post(self, url: str, payload: dict) -> dict:
        try:
            r = self._session.post(url, json=payload, timeout=self.timeout)
        except requests.Timeout as e:
            raise BackendTimeout(f"OCR request timed out after {self.timeout}s") from e
        except requests.ConnectionError as e:
            raise BackendUnavailable(f"OCR backend unreachable: {e}") from e
        _raise_for_status(r)
        try:
            return r.json()
        except ValueError as e:
            raise BackendUnavailable("OCR backend returned non-JSON body") from e

    @abstractmethod
    def _recognize_sync(self, image: PreprocessedImage) -> OcrResult:
        """Blocking request/response round trip for one image."""

    async def recognize(self, image: PreprocessedImage) -> OcrResult:
        return await asyncio.to_thread(self._recognize_sync, image)

    def close(self) -> None:
        self._session.close()


_BREAK_TEXT = {"SPACE": " ", "SURE_SPACE": " ", "EOL_SURE_SPACE": "\n", "LINE_BREAK": "\n", "HYPHEN": "-\n"}


# Rebuild text lines from Vision's page/block/paragraph/word/symbol tree using detected breaks.
def parse_vision_response(resp: Dict[str, Any]) -> OcrResult:
    full = resp.get("fullTextAnnotation") or {}
    text = str(full.get("text", "") or "")
    lines: List[OcrLine] = []
    cur_text: List[str] = []
    cur_confs: List[float] = []

    def flush() -> None:
        s = "".join(cur_text).strip()
        if s:
            lines.append(OcrLine(text=s, confidence=(sum(cur_confs) / len(cur_confs)) if cur_confs else 0.0))
        cur_text.clear()
        cur_confs.clear()

    for page in full.get("pages", []) or []:
        for block in page.get("blocks", []) or []:
            for para in block.get("paragraphs", []) or []:
                for word in para.get("words", []) or []:
                    cur_confs.append(float(word.get("confidence", 0.0) or 0.0) * 100.0)
                    for sym in word.get("symbols", []) or []:
                        cur_text.append(str(sym.get("text", "")))
                        brk = (((sym.get("property") or {}).get("detectedBreak") or {}).get("type")) or ""
                        sep = _BREAK_TEXT.get(brk, "")
                        if "\n" in sep:
                            flush()
                        elif sep:
                            cur_text.append(sep)
                flush()
    if not text:
        text = "\n".join(ln.text for ln in lines)
    return OcrResult(text=text, lines=lines)


class VisionBackend(_HttpBackend):
    """Google Cloud Vision images:annotate with DOCUMENT_TEXT_DETECTION."""

    name = "vision"

    def __init__(self, api_key: Optional[str] = None, base_url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        super().__init__(timeout)
        self.api_key = api_key or settings.VISION_API_KEY or ""
        if not self.api_key:
            raise BackendUnavailable("VISION_API_KEY is not configured")
        self.base = (base_url or settings.VISION_API_BASE).rstrip("/")

    def _recognize_sync(self, image: PreprocessedImage) -> OcrResult:
        payload = {
            "requests": [{
                "image": {"content": image.b64()},
                "features": [{"type": "DOCUMENT_TEXT_DETECTION"}],
            }]
        }
        data = self._post(f"{self.base}/images:annotate?key={self.api_key}", payload)
        try:
            first = (data.get("responses") or [{}])[0] or {}
            err = first.get("error")
            code = int(err.get("code", 0) or 0) if err else 0
            message = str(err.get("message", "")) if err else ""
            result = None if err else parse_vision_response(first)
        except _MALFORMED as e:
            raise BackendUnavailable("vision returned malformed OCR payload") from e
        if err:
            # google.rpc.Code 3 = INVALID_ARGUMENT
            if code == 3:
                raise InvalidInput(message or "invalid image")
            raise BackendUnavailable(message or "vision error")
        return result


class ProxyBackend(_HttpBackend):
    """Relay that holds the cloud credentials; answers {success, data: {text, lines}}."""

    name = "proxy"

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None) -> None:
        super().__init__(timeout)
        self.url = url or settings.OCR_PROXY_URL or ""
        if not self.url:
            raise BackendUnavailable("OCR_PROXY_URL is not configured")

    def _recognize_sync(self, image: PreprocessedImage) -> OcrResult:
        body = self._post(self.url, {"image": image.data_url()})
        if not isinstance(body, dict):
            raise BackendUnavailable("proxy returned malformed OCR payload")
        if not body.get("success", True):
            raise BackendUnavailable(str(body.get("error") or "proxy reported failure"))
        inner = body.get("data") if isinstance(body.get("data"), dict) else body
        try:
            return OcrResult.model_validate({"text": inner.get("text", "") or "", "lines": inner.get("lines") or []})
        except _MALFORMED as e:
            raise BackendUnavailable("proxy returned malformed OCR payload") from e


def build_backend(kind: Optional[str] = None) -> OcrBackend:
    kind = (kind or settings.OCR_BACKEND).lower()
    if kind == "tesseract":
        return TesseractBackend()
    if kind == "vision":
        return VisionBackend()
    if kind == "proxy":
        return ProxyBackend()
    raise ValueError(f"unknown OCR_BACKEND: {kind!r}")


class OcrSession:
    """Owns one OCR backend: built on first use, released by close() / async with."""

    def __init__(self, kind: Optional[str] = None, backend: Optional[OcrBackend] = None) -> None:
        self.kind = (kind or settings.OCR_BACKEND).lower() if backend is None else backend.name
        self._backend = backend
        self._lock = asyncio.Lock()

    async def backend(self) -> OcrBackend:
        if self._backend is None:
            async with self._lock:
                if self._backend is None:
                    self._backend = await asyncio.to_thread(build_backend, self.kind)
        return self._backend

    async def recognize(self, image: PreprocessedImage) -> OcrResult:
        backend = await self.backend()
        return await recognize_with_retry(backend, image)

    def close(self) -> None:
        if self._backend is not None:
            self._backend.close()
            self._backend = None

    async def __aenter__(self) -> "OcrSession":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.close()


# ---- retry policy ----

def _backoff_delay(attempt: int, base: float, maximum: float, jitter_ratio: float = 0.15) -> float:
    delay = min(maximum, base * (2 ** (attempt - 1)))
    jitter = delay * jitter_ratio
    return max(0.0, random.uniform(delay - jitter, delay + jitter))


async def recognize_with_retry(
    backend: OcrBackend,
    image: PreprocessedImage,
    *,
    max_attempts: Optional[int] = None,
    timeout: Optional[float] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
) -> OcrResult:
    """Call the backend with a per-call timeout, retrying transient failures.

    Every attempt reuses the same preprocessed buffer. InvalidInput is final, and a
    rate-limit hint longer than `max_delay` ends retrying at once.
    """
    attempts = max(1, max_attempts if max_attempts is not None else settings.OCR_MAX_ATTEMPTS)
    timeout = timeout if timeout is not None else settings.OCR_TIMEOUT
    base = base_delay if base_delay is not None else settings.OCR_RETRY_BASE_DELAY
    cap = max_delay if max_delay is not None else settings.OCR_RETRY_MAX_DELAY

    last: Optional[OcrError] = None
    for attempt in range(1, attempts + 1):
        try:
            try:
                return await asyncio.wait_for(backend.recognize(image), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise BackendTimeout(f"OCR call exceeded {timeout}s") from e
        except InvalidInput:
            raise
        except OcrError as e:
            last = e
            delay = _backoff_delay(attempt, base, cap)
            if isinstance(e, RateLimited):
                if e.retry_after > cap:
                    logger.error("[OCR retry] %s: retry-after %.0fs exceeds %.0fs; giving up", backend.name, e.retry_after, cap)
                    raise
                delay = max(delay, e.retry_after)
            if attempt >= attempts:
                logger.error("[OCR retry] %s attempt=%d/%d error=%s: %s", backend.name, attempt, attempts, type(e).__name__, e)
                break
            logger.warning("[OCR retry] %s attempt=%d/%d error=%s: %s; sleeping %.2fs", backend.name, attempt, attempts, type(e).__name__, e, delay)
            await asyncio.sleep(delay)
    if last is None:
        raise BackendUnavailable(f"{backend.name}: no OCR attempt was made")
    raise last

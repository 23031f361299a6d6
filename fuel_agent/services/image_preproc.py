"""
Image preprocessing for OCR of pump displays and dashboards.

Photos are reduced to a single luminance channel, upscaled to a fixed width
when narrower, contrast-stretched around midtone 128, unsharp-masked after
the resize, and encoded as a high-quality JPEG.
"""
from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Callable, Optional

import cv2
import numpy as np

from fuel_agent.config import settings
from fuel_agent.services.errors import ImageDecodeError

logger = logging.getLogger(__name__)

# ITU-R BT.601 luma weights, in OpenCV's BGR channel order
_LUMA_BGR = np.array([0.114, 0.587, 0.299], dtype=np.float32)


@dataclass(frozen=True)
class RawImage:
    # uint8 array: HxW, HxWx3 (BGR) or HxWx4 (BGRA)
    pixels: np.ndarray

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True)
class PreprocessedImage:
    data: bytes
    width: int
    height: int
    mime_type: str = "image/jpeg"

    def b64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")

    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.b64()}"


def decode_image(data: bytes) -> RawImage:
    """Decode an uploaded file (JPEG, PNG, WebP, ...) into pixels."""
    if not data:
        raise ImageDecodeError("empty image payload")
    img = cv2.imdecode(np.frombuffer(data, dtype=np.uint8), cv2.IMREAD_UNCHANGED)
    if img is None or img.size == 0:
        raise ImageDecodeError("unsupported or corrupt image data")
    if img.dtype == np.uint16:
        img = (img >> 8).astype(np.uint8)
    elif img.dtype != np.uint8:
        raise ImageDecodeError(f"unsupported pixel depth: {img.dtype}")
    return RawImage(pixels=img)


def to_grayscale(pixels: np.ndarray) -> np.ndarray:
    if pixels.ndim == 2:
        return pixels
    if pixels.shape[2] < 3:
        return np.ascontiguousarray(pixels[:, :, 0])
    gray = pixels[:, :, :3].astype(np.float32) @ _LUMA_BGR
    return np.clip(np.rint(gray), 0, 255).astype(np.uint8)


def upscale_to_width(gray: np.ndarray, target_width: int) -> np.ndarray:
    h, w = gray.shape[:2]
    if w >= target_width:
        return gray
    scale = float(target_width) / float(w)
    new_h = max(1, int(round(h * scale)))
    return cv2.resize(gray, (target_width, new_h), interpolation=cv2.INTER_LANCZOS4)


def stretch_contrast(gray: np.ndarray, gain: float) -> np.ndarray:
    """out = clamp(gain * in + offset) with 128 mapped onto itself."""
    offset = 128.0 * (1.0 - gain)
    out = gray.astype(np.float32) * gain + offset
    return np.clip(out, 0, 255).astype(np.uint8)


def unsharp_mask(gray: np.ndarray, sigma: float, amount: float) -> np.ndarray:
    if sigma <= 0 or amount <= 0:
        return gray
    blurred = cv2.GaussianBlur(gray, (0, 0), sigma)
    return cv2.addWeighted(gray, 1.0 + amount, blurred, -amount, 0)


def encode_jpeg(gray: np.ndarray, quality: int) -> bytes:
    ok, buf = cv2.imencode(".jpg", gray, [int(cv2.IMWRITE_JPEG_QUALITY), int(quality)])
    if not ok:
        raise ImageDecodeError("failed to encode preprocessed image")
    return buf.tobytes()


def preprocess(image: RawImage, progress: Optional[Callable[[str], None]] = None) -> PreprocessedImage:
    def step(msg: str) -> None:
        if progress is not None:
            progress(msg)

    step("grayscale")
    gray = to_grayscale(image.pixels)
    step("upscale")
    gray = upscale_to_width(gray, settings.PREPROC_TARGET_WIDTH)
    step("contrast")
    gray = stretch_contrast(gray, settings.PREPROC_CONTRAST_GAIN)
    step("sharpen")
    gray = unsharp_mask(gray, settings.PREPROC_SHARPEN_SIGMA, settings.PREPROC_SHARPEN_AMOUNT)
    step("encode")
    data = encode_jpeg(gray, settings.PREPROC_JPEG_QUALITY)
    h, w = gray.shape[:2]
    logger.debug("Preprocessed %dx%d -> %dx%d (%d bytes)", image.width, image.height, w, h, len(data))
    return PreprocessedImage(data=data, width=w, height=h)


def preprocess_bytes(data: bytes, progress: Optional[Callable[[str], None]] = None) -> PreprocessedImage:
    return preprocess(decode_image(data), progress=progress)

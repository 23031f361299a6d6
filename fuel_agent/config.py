import os
from pathlib import Path


# Load env vars from local files without overriding existing variables
def _load_env_from_files() -> None:
    """Load key=value lines from optional local files into os.environ if not already set.
    Priority: repo/.env, ENV_FILE path, data/secrets.env.
    Comments (#) and blank lines are ignored. Does not override existing env vars.
    """
    repo_root = Path(__file__).resolve().parents[1]
    candidates = [
        repo_root / ".env",
        Path(os.getenv("ENV_FILE", "")) if os.getenv("ENV_FILE") else None,
        repo_root / "data" / "secrets.env",
    ]
    for p in [c for c in candidates if c]:
        if not (p.exists() and p.is_file()):
            continue
        try:
            content = p.read_text()
        except OSError:
            continue
        for line in content.splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                continue
            k, v = line.split("=", 1)
            k = k.strip()
            v = v.strip().strip('"').strip("'")
            if k and (k not in os.environ):
                os.environ[k] = v


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).lower() in {"1", "true", "yes"}


# Load local env before reading values into Settings
_load_env_from_files()


class Settings:
    # Networking
    APP_HOST: str = os.getenv("APP_HOST", "0.0.0.0")
    APP_PORT: int = int(os.getenv("APP_PORT", "8000"))

    # Paths
    _REPO_ROOT: Path = Path(__file__).resolve().parents[1] # Anchor default to repo root: <repo>/data
    DATA_DIR: Path = Path(os.getenv("DATA_DIR", str(_REPO_ROOT / "data")))

    # Debugging
    DEBUG: bool = _env_bool("DEBUG", "false")

    # OCR backend: 'tesseract' (local engine), 'vision' (Google Vision REST) or 'proxy'
    # (a relay that holds the Vision key and answers {success, data: {text, lines}})
    OCR_BACKEND: str = os.getenv("OCR_BACKEND", "tesseract").strip().lower()

    # Tesseract
    TESSERACT_LANG: str = os.getenv("TESSERACT_LANG", "eng")
    # OCR engine mode: 1=LSTM only, 3=default
    OCR_OEM: int = int(os.getenv("OCR_OEM", "3"))
    # Comma-separated PSMs to try in order; we keep the result with the best score
    OCR_PSMS: str = os.getenv("OCR_PSMS", "6,11,4")
    # Score = words + (OCR_SCORE_LINES_WEIGHT * lines)
    OCR_SCORE_LINES_WEIGHT: float = float(os.getenv("OCR_SCORE_LINES_WEIGHT", "0.8"))
    OCR_PRESERVE_SPACES: bool = _env_bool("OCR_PRESERVE_SPACES", "true")
    # Words below this Tesseract confidence are dropped (-1 marks non-word boxes)
    OCR_CONF_THRESHOLD: int = int(os.getenv("OCR_CONF_THRESHOLD", "0"))
    # y tolerance = max(OCR_Y_CLUSTER_MIN_PX, median_word_height * OCR_Y_CLUSTER_TOL_FRAC)
    OCR_Y_CLUSTER_TOL_FRAC: float = float(os.getenv("OCR_Y_CLUSTER_TOL_FRAC", "0.60"))
    OCR_Y_CLUSTER_MIN_PX: int = int(os.getenv("OCR_Y_CLUSTER_MIN_PX", "6"))

    # Google Vision (direct) and proxy mode
    VISION_API_KEY: str | None = os.getenv("VISION_API_KEY")
    VISION_API_BASE: str = os.getenv("VISION_API_BASE", "https://vision.googleapis.com/v1")
    OCR_PROXY_URL: str | None = os.getenv("OCR_PROXY_URL")

    # OCR call policy
    OCR_TIMEOUT: float = float(os.getenv("OCR_TIMEOUT", "30"))  # seconds, per call
    OCR_MAX_ATTEMPTS: int = int(os.getenv("OCR_MAX_ATTEMPTS", "3"))
    OCR_RETRY_BASE_DELAY: float = float(os.getenv("OCR_RETRY_BASE_DELAY", "1.0"))
    # Rate-limit hints longer than this are not waited out
    OCR_RETRY_MAX_DELAY: float = float(os.getenv("OCR_RETRY_MAX_DELAY", "12"))
    # Run OCR for all photos of a request at once; disable for backends sensitive to bursts
    OCR_CONCURRENT: bool = _env_bool("OCR_CONCURRENT", "true")

    # Preprocessing knobs
    # Images narrower than this are upscaled (Lanczos) to exactly this width
    PREPROC_TARGET_WIDTH: int = int(os.getenv("PREPROC_TARGET_WIDTH", "2000"))
    # Linear contrast stretch around midtone 128
    PREPROC_CONTRAST_GAIN: float = float(os.getenv("PREPROC_CONTRAST_GAIN", "1.5"))
    # Unsharp mask: gaussian sigma (px) and boost amount
    PREPROC_SHARPEN_SIGMA: float = float(os.getenv("PREPROC_SHARPEN_SIGMA", "1.0"))
    PREPROC_SHARPEN_AMOUNT: float = float(os.getenv("PREPROC_SHARPEN_AMOUNT", "1.0"))
    PREPROC_JPEG_QUALITY: int = int(os.getenv("PREPROC_JPEG_QUALITY", "95"))

    # Parsing: confidence for a matched value whose text is not on any scored OCR line
    DEFAULT_LINE_CONFIDENCE: float = float(os.getenv("DEFAULT_LINE_CONFIDENCE", "70"))

    # Upload limits
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(10 * 1024 * 1024)))
    MAX_PHOTOS: int = int(os.getenv("MAX_PHOTOS", "6"))

    # Outbound message
    SMS_RECIPIENT: str = os.getenv("SMS_RECIPIENT", "")


settings = Settings()

import argparse
import logging
import logging.config
from pathlib import Path
from fuel_agent.config import settings
import uvicorn

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def build_log_config(level_name: str, log_file: str) -> dict:
    """Uvicorn-compatible logging: service and server logs to stdout plus a rotating file."""
    app_logger = {"level": level_name, "handlers": ["default", "file"], "propagate": False}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "default": {"()": "uvicorn.logging.DefaultFormatter", "fmt": LOG_FORMAT, "datefmt": DATE_FORMAT},
            "access": {
                "()": "uvicorn.logging.AccessFormatter",
                "fmt": "%(asctime)s | %(levelname)s | %(client_addr)s - \"%(request_line)s\" %(status_code)s",
                "datefmt": DATE_FORMAT,
            },
        },
        "handlers": {
            "default": {"class": "logging.StreamHandler", "formatter": "default", "stream": "ext://sys.stdout"},
            "access": {"class": "logging.StreamHandler", "formatter": "access", "stream": "ext://sys.stdout"},
            "file": {
                "class": "logging.handlers.RotatingFileHandler",
                "formatter": "default",
                "filename": log_file,
                "maxBytes": 5_000_000,
                "backupCount": 5,
                "encoding": "utf-8",
            },
        },
        "loggers": {
            "uvicorn": dict(app_logger),
            "uvicorn.error": dict(app_logger),
            "uvicorn.access": {"level": "INFO", "handlers": ["access", "file"], "propagate": False},
            "fuel_agent": dict(app_logger),
        },
        "root": {"level": level_name, "handlers": ["default", "file"]},
    }


def main() -> None:
    parser = argparse.ArgumentParser(description="Serve the fuel photo reader API.")
    parser.add_argument("--host", default=settings.APP_HOST)
    parser.add_argument("--port", type=int, default=settings.APP_PORT)
    parser.add_argument("--reload", action="store_true", help="Restart on code changes (development)")
    args = parser.parse_args()

    level_name = "DEBUG" if settings.DEBUG else "INFO"
    logs_dir = Path(settings.DATA_DIR) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_config = build_log_config(level_name, str(logs_dir / "app.log"))
    logging.config.dictConfig(log_config)
    logging.getLogger("fuel_agent").info(
        "Starting on %s:%d with OCR backend %s", args.host, args.port, settings.OCR_BACKEND
    )
    # Import string keeps app import after logging setup (and is required for --reload).
    uvicorn.run(
        "fuel_agent.main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_config=log_config,
        log_level=level_name.lower(),
    )


if __name__ == "__main__":
    main()

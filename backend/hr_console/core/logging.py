"""Logging setup: JSON lines in production, plain text for local work."""
import logging
import sys
from pythonjsonlogger import jsonlogger
from hr_console.core.config import settings

QUIET_LOGGERS = ("httpx", "httpcore", "python_multipart")


def _use_json() -> bool:
    if settings.LOG_FORMAT:
        return settings.LOG_FORMAT.lower() == "json"
    return settings.APP_ENV == "production"


def setup_logging() -> None:
    """Configure root logging once per process from LOG_LEVEL / LOG_FORMAT."""
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    if not isinstance(level, int):
        level = logging.INFO

    if _use_json():
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": "hr-console", "env": settings.APP_ENV},
        ))
        logging.root.handlers = [handler]
        logging.root.setLevel(level)
    else:
        logging.basicConfig(level=level, format="%(asctime)s %(name)s %(levelname)s %(message)s")

    # HTTP stack loggers stay at WARNING or above
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

"""
logging_config.py — Loguru setup for the capture and attribution pipeline

Every module logs through `logging.getLogger(__name__)`; those records are
routed into Loguru here, so store, dispatcher, destination and capture logs
share one sink and one format.

Business Rules:
- All logs go through Loguru (no print())
- APP_ENV=production → one JSON object per line; anything else → colored
  lines that show the request id bound by the HTTP middleware
- Swallowed destination/store failures are logged at WARNING or above
- Raw email addresses are masked with mask_email() before they are logged
- Outbound HTTP clients and the SQL engine only log warnings

Called by: storefront_intel/main.py (lifespan startup)
Depends on: environment (LOG_LEVEL, APP_ENV)
"""

import logging
import os
import sys

from loguru import logger

QUIET_LOGGERS = ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine")

_DEV_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[rid]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "{message}\n{exception}"
)


def _dev_format(record) -> str:
    record["extra"]["rid"] = record["extra"].get("request_id", "-")
    return _DEV_FORMAT


def setup_logging() -> None:
    """Install the Loguru sink and take over stdlib logging. Safe to call again."""
    level = os.getenv("LOG_LEVEL", "INFO").upper()
    production = os.getenv("APP_ENV", "").lower() == "production"

    logger.remove()
    if production:
        logger.add(sys.stdout, level=level, format="{message}", serialize=True)
    else:
        logger.add(sys.stdout, level=level, format=_dev_format, colorize=True)

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logger.info("Logging configured", level=level, production=production)


def mask_email(email: str | None) -> str:
    """'jane.doe@example.com' -> 'ja***@example.com'. Empty input -> ''."""
    if not email:
        return ""
    local, _, domain = email.partition("@")
    if not domain:
        return local[:2] + "***"
    return f"{local[:2]}***@{domain}"


class _InterceptHandler(logging.Handler):
    """Forward stdlib records to Loguru, attributed to the original caller."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

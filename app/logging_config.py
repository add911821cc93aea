"""
logging_config.py — Centralized Logging Configuration

Sets up Loguru as the single logging backend. Intercepts Python's stdlib
logging module so every getLogger("fleet.*") call routes through Loguru
with the same formatting.

Business Rules:
- All logs go through Loguru (no direct print() or stdlib handlers)
- JSON format in production for machine parsing
- Human-readable format in development
- Production means APP_URL points somewhere other than localhost
- LOG_FILE, when set, adds a rotated file sink (50MB, 7 days)

Called by: app/main.py (on startup)
Depends on: environment (LOG_LEVEL, APP_URL, LOG_FILE)
"""

import logging
import os
import sys

from loguru import logger

_LOCAL_HOSTS = ("localhost", "127.0.0.1", "0.0.0.0", "testserver")


def is_production() -> bool:
    app_url = os.getenv("APP_URL", "")
    return bool(app_url) and not any(h in app_url for h in _LOCAL_HOSTS)


def setup_logging() -> None:
    """Configure Loguru and intercept stdlib logging.

    Call once at app startup, before anything else logs.
    """
    logger.remove()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    production = is_production()

    if production:
        logger.add(
            sys.stdout,
            level=log_level,
            format="{message}",
            serialize=True,
        )
    else:
        logger.add(
            sys.stdout,
            level=log_level,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "{message}"
            ),
            colorize=True,
        )

    log_file = os.getenv("LOG_FILE")
    if log_file:
        logger.add(
            log_file,
            level=log_level,
            rotation="50 MB",
            retention="7 days",
            compression="gz",
            serialize=production,
        )

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for noisy in ("httpx", "httpcore", "uvicorn.access", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured", level=log_level, production=production)


class _InterceptHandler(logging.Handler):
    """Route stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip frames from stdlib logging internals
        frame, depth = logging.currentframe(), 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, record.getMessage()
        )

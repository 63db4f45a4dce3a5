"""
logging_config.py — Centralized logging for the renewal engine

Sets up Loguru as the single logging backend and intercepts Python's
stdlib logging so SQLAlchemy, httpx and alembic records land in the same
stream.

Business Rules:
- All logs go through Loguru (no print() in services)
- JSON lines in production for machine parsing
- Human-readable, colored format in development
- Production is detected from APP_ENV=production

Called by: scheduler.py, scripts/run_renewals.py (on startup)
"""

import logging
import os
import sys

from loguru import logger


def setup_logging() -> None:
    """Configure Loguru and intercept stdlib logging.

    Call once at process startup.
    """
    logger.remove()

    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    is_production = os.getenv("APP_ENV", "").lower() == "production"

    if is_production:
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

    logging.basicConfig(handlers=[_InterceptHandler()], level=0, force=True)

    for noisy in ("httpx", "httpcore", "sqlalchemy.engine", "alembic.runtime"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logger.info("Logging configured level={} production={}", log_level, is_production)


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

"""
logging_config.py — Centralized logging configuration.

Call `setup_logging()` once at application entry points (cli.py, app.py, ingest.py).
All modules should use: logger = logging.getLogger(__name__)
"""

import logging
import logging.handlers
import sys

from insight_copilot.config import LOG_FILE


LOG_FORMAT = "[%(asctime)s] [%(levelname)-8s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    """
    Configure root logger with:
      - Console handler (stdout)
      - Rotating file handler → logs/copilot.log (10 MB × 5 backups)

    Calling it again only adjusts the level.

    Args:
        level: Logging level string — "DEBUG", "INFO" or "WARNING"
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(numeric_level)

    if root.handlers:
        for handler in root.handlers:
            handler.setLevel(numeric_level)
        return

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    # ── Console handler ────────────────────────────────────────────────────────
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root.addHandler(console_handler)

    # ── Rotating file handler ─────────────────────────────────────────────────
    file_handler = logging.handlers.RotatingFileHandler(
        filename=LOG_FILE,
        maxBytes=10 * 1024 * 1024,   # 10 MB
        backupCount=5,
        encoding="utf-8",
    )
    file_handler.setLevel(numeric_level)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    # Suppress noisy third-party loggers
    for name in ("httpx", "httpcore", "urllib3", "botocore", "boto3", "qdrant_client"):
        logging.getLogger(name).setLevel(logging.WARNING)

    root.info("Logging initialised — level=%s, file=%s", level, LOG_FILE)

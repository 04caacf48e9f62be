"""Logging configuration for tfstack-migrate with console output and optional JSON log file."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

import structlog

TRUTHY_VALUES = {"1", "true", "yes", "on"}
LOG_FILE_NAME = "tfstack_migrate.log"


def is_file_logging_enabled() -> bool:
    """Check TF_MIGRATE_ENABLE_LOG for a truthy value."""
    return os.getenv("TF_MIGRATE_ENABLE_LOG", "").strip().lower() in TRUTHY_VALUES


def setup_logging(
    log_dir: Path | str | None = None,
    log_level: str | None = None,
    enable_file_log: bool | None = None,
    max_file_size_mb: int = 10,
) -> None:
    """Setup console logging and, when enabled, a truncating JSON log file.

    Args:
        log_dir: Directory for the log file (defaults to TF_MIGRATE_LOG_DIR or ./logs)
        log_level: Log level (defaults to TF_MIGRATE_LOG_LEVEL env var or INFO)
        enable_file_log: Write tfstack_migrate.log (defaults to TF_MIGRATE_ENABLE_LOG)
        max_file_size_mb: Max file size before truncation (no backup files kept)
    """
    if log_level is None:
        log_level = os.getenv("TF_MIGRATE_LOG_LEVEL", "INFO")
    if enable_file_log is None:
        enable_file_log = is_file_logging_enabled()

    log_level_num = getattr(logging, log_level.upper(), logging.INFO)

    # Clear any existing handlers to prevent duplicates
    logging.getLogger().handlers.clear()

    from structlog.stdlib import BoundLogger, LoggerFactory, ProcessorFormatter

    renderer = (
        structlog.dev.ConsoleRenderer()
        if sys.stdout.isatty()
        else structlog.processors.JSONRenderer()
    )

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level_num)
    console_handler.setFormatter(ProcessorFormatter(processor=renderer))

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level_num)
    root_logger.addHandler(console_handler)

    log_file: Path | None = None
    if enable_file_log:
        log_dir = Path(log_dir or os.getenv("TF_MIGRATE_LOG_DIR", "logs"))
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / LOG_FILE_NAME

        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=max_file_size_mb * 1024 * 1024,
            backupCount=0,  # Don't keep old files, just truncate
            encoding="utf-8",
        )
        file_handler.setLevel(log_level_num)
        file_handler.setFormatter(
            ProcessorFormatter(processor=structlog.processors.JSONRenderer())
        )
        root_logger.addHandler(file_handler)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=LoggerFactory(),
        wrapper_class=BoundLogger,
        cache_logger_on_first_use=True,
    )

    logger = structlog.get_logger("tfstack_migrate")
    logger.debug(
        "Logging system initialized",
        log_level=log_level,
        log_file=str(log_file) if log_file else None,
    )


def get_cli_logger() -> Any:
    """Get logger for command line operations."""
    return structlog.get_logger("tfstack_migrate")

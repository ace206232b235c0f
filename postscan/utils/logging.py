"""Logging configuration using structlog."""

import os
import sys
import logging
from pathlib import Path
from typing import Optional
import structlog


def setup_logging(log_level: str = None, log_dir: Optional[Path] = None, stream=None):
    """Configure structured logging. Records go to stdout unless another stream is given."""

    # Get log level from env or parameter
    level = log_level or os.environ.get("LOG_LEVEL", "INFO")
    level = getattr(logging, level.upper(), logging.INFO)

    handlers = [logging.StreamHandler(stream or sys.stdout)]
    if log_dir is not None:
        log_dir = Path(log_dir)
        log_dir.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_dir / "postscan.log"))

    # Configure standard logging
    logging.basicConfig(
        format="%(message)s",
        level=level,
        handlers=handlers,
    )

    # Reduce noise from libraries
    logging.getLogger("apscheduler").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.dev.ConsoleRenderer() if os.environ.get("DEV_MODE") else structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

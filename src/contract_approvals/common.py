"""Shared service plumbing: logging setup and standard response bodies."""

from __future__ import annotations

import logging
import sys

import structlog
from pydantic import BaseModel


class HealthResponse(BaseModel):
    """Body returned by the ``/health`` endpoint."""

    status: str
    service: str
    version: str


class ErrorResponse(BaseModel):
    """Body returned for unhandled errors."""

    error: str
    detail: str = ""
    status_code: int = 500


def setup_logging(level: str = "INFO", json_output: bool = False) -> None:
    """Configure structlog on top of the stdlib root logger.

    Args:
        level: Root log level name (``"DEBUG"``, ``"INFO"`` ...).
        json_output: Render JSON lines instead of the console renderer.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
        force=True,
    )

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

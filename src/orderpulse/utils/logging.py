"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Iterator

import structlog


def setup_logging(log_level: str = "INFO", *, json_output: bool = True):
    """Configure structlog for the pipeline processes.

    Output is JSON to stdout unless *json_output* is False (local runs use the
    console renderer).  Should be called once at process startup.
    """
    renderer = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer()
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
    )


@contextmanager
def bound_message_context(message_id: str, **extra) -> Iterator[None]:
    """Attach ``message_id`` (and *extra*) to every log line in the block."""
    tokens = structlog.contextvars.bind_contextvars(message_id=message_id, **extra)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)

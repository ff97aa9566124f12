"""Logging setup driven by ``settings.logging``.

Modules log through stdlib ``logging.getLogger(__name__)``; in JSON mode the
records are rendered by structlog's ``ProcessorFormatter``.
"""
from __future__ import annotations

import logging

import structlog

from .config import settings

TEXT_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def build_formatter(fmt: str) -> logging.Formatter:
    """``json`` gives one JSON object per line; anything else is plain text."""
    if fmt != "json":
        return logging.Formatter(TEXT_FORMAT)
    return structlog.stdlib.ProcessorFormatter(
        processor=structlog.processors.JSONRenderer(ensure_ascii=False),
        foreign_pre_chain=[
            structlog.processors.TimeStamper(fmt="iso", utc=True, key="ts"),
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.format_exc_info,
            structlog.processors.EventRenamer("message"),
        ],
    )


def setup_logging(level: str | None = None) -> None:
    """Configure the root logger once (idempotent)."""
    root = logging.getLogger()
    if getattr(root, "_corpus_configured", False):
        return

    formatter = build_formatter(settings.logging.format)

    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if settings.logging.file:
        handlers.append(logging.FileHandler(settings.logging.file, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel((level or settings.logging.level).upper())
    # SQL echo is controlled by DB_ECHO, not by the root level
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    root._corpus_configured = True

"""Application logging configuration helpers."""

from __future__ import annotations

import logging
from contextvars import ContextVar
from sys import stdout
from typing import Any

from loguru import logger

from wastage_service.core.config import settings

request_id_ctx_var: ContextVar[str] = ContextVar("request_id", default="-")

_TEXT_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[request_id]} | "
    "{name}:{function} - {message} | {extra}"
)


def _patch_record(record: dict[str, Any]) -> None:
    record["extra"].setdefault("request_id", request_id_ctx_var.get())


def setup_logging() -> None:
    """Configure the standard logging module and Loguru sinks."""

    logging.basicConfig(level=settings.LOG_LEVEL)
    # Access lines come from RequestContextLogMiddleware; the notifier logs its own calls.
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logger.remove()
    logger.configure(patcher=_patch_record)
    if settings.LOG_JSON:
        logger.add(
            stdout,
            level=settings.LOG_LEVEL,
            enqueue=True,
            backtrace=False,
            diagnose=False,
            serialize=True,
        )
    else:
        logger.add(
            stdout,
            level=settings.LOG_LEVEL,
            enqueue=True,
            backtrace=False,
            diagnose=False,
            format=_TEXT_FORMAT,
        )

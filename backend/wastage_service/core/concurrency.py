"""Concurrency helpers for controlling background thread usage."""

from __future__ import annotations

from typing import Any, Callable

import anyio

from wastage_service.core.config import settings

_attachment_io_sem = anyio.Semaphore(settings.ATTACHMENT_IO_MAX_CONCURRENCY)


async def run_in_thread_limited(func: Callable[..., Any], *args: Any):
    """Run a sync callable in a worker thread with bounded concurrency."""

    async with _attachment_io_sem:
        return await anyio.to_thread.run_sync(func, *args)

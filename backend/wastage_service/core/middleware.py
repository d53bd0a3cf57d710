"""Custom ASGI middleware used by the FastAPI app."""

from __future__ import annotations

import time
import uuid

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware

from wastage_service.core.config import settings
from wastage_service.core.logging import request_id_ctx_var


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Tags each request with an ID, logs its outcome and echoes ``X-Request-ID``.

    Exceptions that escape the route are logged with the request context and
    turned into a generic 500 so no internal detail reaches the client.
    """

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_ctx_var.set(request_id)
        start = time.perf_counter()
        log = logger.bind(
            method=request.method,
            path=str(request.url.path),
            client=request.client.host if request.client else None,
        )
        try:
            try:
                response: Response = await call_next(request)
            except Exception:
                log.exception("request_failed")
                response = JSONResponse(
                    status_code=500,
                    content={"detail": "An error occurred while processing your request"},
                )
            duration_ms = (time.perf_counter() - start) * 1000
            log.bind(status=response.status_code, duration_ms=round(duration_ms, 2)).info(
                "request_completed"
            )
            response.headers.setdefault("X-Request-ID", request_id)
            return response
        finally:
            request_id_ctx_var.reset(token)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject uploads whose declared body exceeds ``MAX_REQUEST_BYTES``."""

    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.method not in ("POST", "PUT", "PATCH"):
            return await call_next(request)

        content_length = request.headers.get("content-length")
        if content_length is not None and content_length.isdigit():
            if int(content_length) > settings.MAX_REQUEST_BYTES:
                max_size_mb = settings.MAX_REQUEST_BYTES / (1024 * 1024)
                logger.bind(content_length=int(content_length)).warning("request_too_large")
                return JSONResponse(
                    status_code=413,
                    content={"detail": f"Request too large. Max allowed size is {max_size_mb:.0f} MB."},
                )

        return await call_next(request)

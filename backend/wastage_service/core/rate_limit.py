"""Rate limiting for the upload endpoint using SlowAPI."""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from wastage_service.core.config import settings

limiter = Limiter(key_func=get_remote_address)


def wastage_upload_rate() -> str:
    """Resolve the submission limit at request time so it follows settings."""

    return settings.WASTAGE_UPLOAD_RATE


def init_rate_limiter(app: FastAPI) -> None:
    """Attach the rate limiter and exception handler to the FastAPI app."""

    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)

    async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
        logger.bind(
            path=str(request.url.path),
            client=get_remote_address(request),
            limit=str(exc.detail),
        ).warning("rate_limit_exceeded")
        return JSONResponse(
            status_code=429,
            content={"detail": "Too many submissions. Please retry shortly."},
            headers={"Retry-After": "60"},
        )

    app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

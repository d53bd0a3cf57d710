"""Application entry point for the wastage upload API service."""

from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.staticfiles import StaticFiles
from loguru import logger
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from wastage_service.api.routes.wastage import router as wastage_router
from wastage_service.core.config import settings
from wastage_service.core.db import engine, get_session
from wastage_service.core.logging import setup_logging
from wastage_service.core.middleware import BodySizeLimitMiddleware, RequestContextLogMiddleware
from wastage_service.core.rate_limit import init_rate_limiter
from wastage_service.models import Base
from wastage_service.services.attachment_store import AttachmentStore
from wastage_service.services.challan_notifier import InwardChallanNotifier

setup_logging()


@asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("db_tables_verified")
    except (SQLAlchemyError, OSError) as exc:
        # The API still starts; /api/readyz reports the database as unreachable.
        logger.bind(error=str(exc)).warning("db_table_check_failed")
    yield
    await app.state.challan_notifier.aclose()
    await engine.dispose()


app = FastAPI(title=settings.APP_NAME, debug=settings.DEBUG, lifespan=lifespan)

app.state.attachment_store = AttachmentStore.from_settings(settings)
app.state.challan_notifier = InwardChallanNotifier.from_settings(settings)

init_rate_limiter(app)

app.add_middleware(RequestContextLogMiddleware)


def _cors_origins() -> list[str]:
    if settings.ENV == "prod":
        if not settings.CORS_ALLOWED_ORIGINS:
            raise RuntimeError("CORS_ALLOWED_ORIGINS must be configured for prod")
        return settings.CORS_ALLOWED_ORIGINS
    return settings.CORS_ALLOWED_ORIGINS or ["http://localhost:3000"]


app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "X-Request-ID"],
)

app.add_middleware(BodySizeLimitMiddleware)
app.add_middleware(GZipMiddleware, minimum_size=1000)


@app.get("/api/healthz", tags=["system"], summary="Liveness probe")
def healthz() -> dict[str, str]:
    """Simple liveness probe that load balancers and monitors can call."""

    return {"status": "ok"}


@app.get("/api/readyz", tags=["system"], summary="Readiness probe")
async def readyz(session: AsyncSession = Depends(get_session)):
    try:
        await session.execute(text("SELECT 1"))
        return {"ready": True}
    except (SQLAlchemyError, OSError):
        raise HTTPException(status_code=503, detail="Database not reachable")


app.include_router(wastage_router, prefix="/api")

# Uploaded images are served straight from disk at the URLs stored on each entry.
_uploads_dir = Path(settings.UPLOAD_ROOT) / "uploads"
app.mount("/uploads", StaticFiles(directory=str(_uploads_dir), check_dir=False), name="uploads")

"""Application configuration loaded from environment variables."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed settings exposed via dependency injection throughout the app."""

    # Read .env with BOM tolerance; case-sensitive keys
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8-sig",
        case_sensitive=True,
    )

    APP_NAME: str = "Wastage Upload Service API"
    ENV: str = "dev"  # dev | staging | prod
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"
    # JSON lines for log shipping; plain text is easier to read locally.
    LOG_JSON: bool = True

    # CORS
    CORS_ALLOWED_ORIGINS: list[str] = Field(default_factory=list)

    # DB (wastage)
    DB_HOST: str = "127.0.0.1"
    DB_PORT: int = 3306
    DB_USER: str = "appadmin"
    DB_PASSWORD: str = ""  # set via env/.env
    DB_NAME: str = "wastage"
    DATABASE_URL_OVERRIDE: str | None = None
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 3600
    DB_RETRY_ATTEMPTS: int = 4
    DB_RETRY_BASE_DELAY: float = 0.05
    DB_RETRY_JITTER: float = 0.025

    # Attachments. Files land in UPLOAD_ROOT/uploads/wastage/<challan id>/ and
    # UPLOAD_ROOT/uploads is mounted read-only at /uploads.
    UPLOAD_ROOT: str = "wwwroot"
    MAX_IMAGE_BYTES: int = 10 * 1024 * 1024  # 10 MB
    ALLOWED_IMAGE_EXTENSIONS: list[str] = Field(
        default_factory=lambda: [".jpg", ".jpeg", ".png", ".gif"]
    )
    # Upper bound for a whole multipart request (several images per submission).
    MAX_REQUEST_BYTES: int = 100 * 1024 * 1024
    # Disk writes run in worker threads; keep the pool small on shared hosts.
    ATTACHMENT_IO_MAX_CONCURRENCY: int = 4
    # Rate limit for the create/update endpoint. See wastage_service.core.rate_limit.limiter.
    WASTAGE_UPLOAD_RATE: str = "30/minute"

    # Inward challan service (receives the MOU average)
    INWARD_CHALLAN_API_URL: str = "http://localhost:8000"
    INWARD_CHALLAN_UPDATE_PATH: str = "/api/inward-challan/update-mou-from-wastage"
    INWARD_CHALLAN_API_KEY: str | None = Field(
        default=None, description="Sent as X-API-Key when configured"
    )
    NOTIFY_MAX_ATTEMPTS: int = 3
    NOTIFY_BASE_DELAY_SEC: float = 1.0
    NOTIFY_TIMEOUT_SEC: float = 10.0

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        return (
            f"mysql+aiomysql://{self.DB_USER}:{self.DB_PASSWORD}"
            f"@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}?charset=utf8mb4"
        )


settings = Settings()

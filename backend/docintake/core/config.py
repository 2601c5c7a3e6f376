"""
Pydantic Settings — centralized configuration loaded from environment variables.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── Database ──────────────────────────────
    POSTGRES_USER: str = "docintake_user"
    POSTGRES_PASSWORD: str = "docintake_pass"
    POSTGRES_SERVER: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "docintake_db"

    @property
    def DATABASE_URL(self) -> str:
        """Async URL for app runtime (asyncpg)."""
        return f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    @property
    def DATABASE_URL_SYNC(self) -> str:
        """Sync URL for Alembic migrations (psycopg2)."""
        return f"postgresql://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}@{self.POSTGRES_SERVER}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"

    # ── Redis / Celery ────────────────────────
    CELERY_BROKER_URL: str = "redis://localhost:6379/0"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/1"

    # Task consumed by the external extraction worker
    EXTRACTION_TASK_NAME: str = "extraction.parse_upload"
    EXTRACTION_QUEUE: str = "extraction"

    # ── Uploads ───────────────────────────────
    STORAGE_BUCKET_NAME: str = "uploads"
    UPLOAD_DIRECTORY: str = "cv"
    MAX_UPLOAD_SIZE_BYTES: int = 5 * 1024 * 1024
    SIGNED_URL_TTL_SECONDS: int = 15
    UPLOAD_GRACE_PERIOD_SECONDS: int = 60
    DEDUP_ENABLED: bool = True

    @property
    def UPLOAD_TIMEOUT_SECONDS(self) -> int:
        """Age after which a still-pending upload is considered abandoned."""
        return self.SIGNED_URL_TTL_SECONDS + self.UPLOAD_GRACE_PERIOD_SECONDS

    # ── Background jobs ───────────────────────
    OUTBOX_SCAN_INTERVAL_SECONDS: float = 5.0
    OUTBOX_BATCH_LIMIT: int = 10
    PENDING_UPLOAD_SCAN_INTERVAL_SECONDS: float = 30.0
    PENDING_UPLOAD_BATCH_LIMIT: int = 20

    # ── Worker credential ─────────────────────
    WORKER_API_TOKEN: str = "change-this-in-production"

    # ── Application ───────────────────────────
    APP_ENV: str = "development"

    @property
    def dedup_active(self) -> bool:
        """Deduplication can only be switched off outside production."""
        return self.DEDUP_ENABLED or self.APP_ENV == "production"

    model_config = {"env_file": ["../.env", ".env"], "extra": "ignore"}


settings = Settings()

"""
Order Tracking — Configuration
All settings are read from environment variables (or .env file).
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # ── Service ──────────────────────────────────────────────
    SERVICE_NAME: str = "order-tracking"
    SERVICE_VERSION: str = "1.0.0"
    DEBUG: bool = False
    HOST: str = "0.0.0.0"
    PORT: int = 8006
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # ── JWT (shared secret with the identity service) ────────
    JWT_SECRET_KEY: str = "CHANGE_ME_IN_PRODUCTION"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    # ── PostgreSQL ────────────────────────────────────────────
    POSTGRES_HOST: str = "tracking-db"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "tracking_db"
    POSTGRES_USER: str = "tracking_user"
    POSTGRES_PASSWORD: str = "tracking_pass"
    DATABASE_URL: str | None = None

    DB_POOL_SIZE: int = 20
    DB_MAX_OVERFLOW: int = 30
    DB_POOL_RECYCLE: int = 300
    DB_STATEMENT_TIMEOUT_MS: int = 5000
    DB_CREATE_TABLES: bool = True

    @property
    def database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    # ── Redis (realtime relay) ────────────────────────────────
    REDIS_HOST: str = "redis"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: str = ""

    @property
    def redis_url(self) -> str:
        if self.REDIS_PASSWORD:
            return f"redis://:{self.REDIS_PASSWORD}@{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"
        return f"redis://{self.REDIS_HOST}:{self.REDIS_PORT}/{self.REDIS_DB}"

    # ── Realtime ──────────────────────────────────────────────
    REALTIME_PATH: str = "/realtime"
    REALTIME_SEND_QUEUE_SIZE: int = 100
    REALTIME_RELAY_ENABLED: bool = False
    REALTIME_RELAY_CHANNEL: str = "order-tracking:events"
    REALTIME_RELAY_RETRY_DELAY: float = 0.5
    REALTIME_RELAY_MAX_RETRY_DELAY: float = 30.0
    WS_PING_INTERVAL: float = 20.0
    WS_PING_TIMEOUT: float = 20.0

    # ── Observability ─────────────────────────────────────────
    METRICS_ENABLED: bool = True
    HEALTH_CHECK_TIMEOUT: float = 5.0


@lru_cache()
def get_settings() -> Settings:
    return Settings()

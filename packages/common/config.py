from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Strongly-typed settings model loaded from env / .env.

    Notes:
        - The DSN and the token verification key must be provided via environment variables.
        - Tunables default to the values the quiz completion pipeline was designed around.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        protected_namespaces=()
    )

    ENV: str = Field(..., description="Deployment environment, e.g. dev/staging/prod")
    SERVICE_NAME: str = Field(default="quiz-completion", description="Service name")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_JSON: bool = Field(default=True, description="Emit one JSON object per log line")

    POSTGRES_DSN: str = Field(..., description="SQLAlchemy async DSN, e.g. postgresql+asyncpg://...")

    JWT_PUBLIC_KEY: str = Field(..., description="Key used to verify bearer tokens (must be provided)")
    JWT_ALGORITHM: str = Field(default="RS256", description="Token signature algorithm")
    OIDC_AUDIENCE: str | None = Field(default=None, description="Expected token audience; unchecked when unset")

    QUIZ_CACHE_TTL_S: float = Field(default=120.0, description="TTL of cached quiz-by-slug lookups")
    COURSE_LINK_CACHE_TTL_S: float = Field(default=1800.0, description="TTL of cached quiz->course associations")
    CACHE_SWEEP_INTERVAL_S: float = Field(default=600.0, description="Interval of the proactive cache sweep")
    CACHE_MAX_ENTRIES: int = Field(default=10_000, description="Upper bound on cached entries")

    TX_ISOLATION_LEVEL: str = Field(default="READ COMMITTED", description="Isolation of the attempt transaction")
    TX_MAX_WAIT_S: float = Field(default=10.0, description="Max wait for a pooled connection")
    TX_TIMEOUT_S: float = Field(default=20.0, description="Attempt transaction timeout")
    TX_RETRY_ATTEMPTS: int = Field(default=3, description="Total attempts on transient conflicts")
    TX_RETRY_BASE_DELAY_S: float = Field(default=0.1, description="Linear backoff step between attempts")

    COURSE_PROGRESS_TIMEOUT_S: float = Field(default=8.0, description="Course progress transaction timeout")
    SIDE_EFFECT_WORKERS: int = Field(default=4, description="Side-effect worker pool size")
    SIDE_EFFECT_QUEUE_SIZE: int = Field(default=1000, description="Pending side effects before dropping")
    SIDE_EFFECT_TIMEOUT_S: float = Field(default=15.0, description="Default per-effect timeout")
    SIDE_EFFECT_DRAIN_TIMEOUT_S: float = Field(default=10.0, description="Shutdown drain budget")

    STREAK_TIMEZONE: str = Field(default="UTC", description="Timezone whose midnight splits streak days")
    STREAK_SWEEP_INTERVAL_S: float = Field(default=3600.0, description="Interval of the expired-streak sweep")

    @property
    def is_development(self) -> bool:
        """True for local/dev environments where error details may include stack traces."""
        return self.ENV.lower() in {"dev", "development", "local", "test"}


@lru_cache()
def get_settings() -> Settings:
    """Return a cached singleton `Settings` instance."""
    return Settings()

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # App
    APP_ENV: str = "development"
    CORS_ORIGINS: str = "http://localhost:5173"

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = ""  # "json" | "text"; empty picks json in production

    # Remote HR API
    HR_API_BASE_URL: str = "http://localhost:8001"
    HR_API_TIMEOUT_SECONDS: float = 10.0

    # Bulk import
    IMPORT_TIMEOUT_SECONDS: float = 120.0
    IMPORT_MAX_FILE_SIZE_BYTES: int = 50 * 1024 * 1024  # 50 MiB
    IMPORT_SESSION_TTL_SECONDS: int = 3600
    IMPORT_SESSION_MAX: int = 1024
    RATE_LIMIT_IMPORTS: str = "30/minute"

    # List cache
    LIST_CACHE_TTL_SECONDS: int = 300
    LIST_CACHE_MAX_ITEMS: int = 64

    # Usernames
    USERNAME_MAX_PROBES: int = 10_000

    # Monitoring
    SENTRY_DSN: str = ""
    SENTRY_TRACES_SAMPLE_RATE: float = 0.0

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",")]


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache


class Settings(BaseSettings):
    # Database
    DATABASE_URL: str = "sqlite+aiosqlite:///./codesprout.db"

    # Backend
    BACKEND_HOST: str = "0.0.0.0"
    BACKEND_PORT: int = 8000
    APP_DEBUG: bool = True
    CORS_ORIGINS: list[str] = ["http://localhost:3000"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = False  # True for production (structured JSON), False for dev (colored)
    LOG_SQL: bool = False   # Enable SQLAlchemy query logging

    # Progression rules
    LOCAL_TIMEZONE: str = "UTC"  # Calendar rules (early bird, streaks, weekends) use this zone
    STREAK_WINDOW_DAYS: int = 7
    SEED_ACHIEVEMENTS_ON_STARTUP: bool = True

    # Code execution collaborator
    EXECUTION_TIMEOUT_SECONDS: float = 10.0
    EXECUTION_MAX_OUTPUT_BYTES: int = 1024 * 1024
    PYTHON_EXECUTABLE: str = "python3"
    NODE_EXECUTABLE: str = "node"

    @property
    def is_production(self) -> bool:
        return not self.APP_DEBUG

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()

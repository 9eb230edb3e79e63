from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional
from pydantic import field_validator


def _parse_bool(v):
    if isinstance(v, str):
        return v.lower().strip('"').strip("'") in ("true", "1", "yes", "on")
    return bool(v)


class Settings(BaseSettings):
    # Database settings
    POSTGRES_USER: str = 'cashdesk_user'
    POSTGRES_PASSWORD: str = 'cashdesk_pass'
    POSTGRES_DB: str = 'cashdesk_db'
    POSTGRES_HOST: str = 'postgres'
    POSTGRES_PORT: int = 5432
    DATABASE_URL: Optional[str] = None  # Overrides the POSTGRES_* settings

    # Demo mode keeps every collection in memory (no database)
    DEMO_MODE: bool = False

    # Cash register
    CASH_REGISTER_AUTO_CLOSE_TIME: str = '22:00'
    AUTO_CLOSE_ENABLED: bool = True
    AUTO_CLOSE_INTERVAL_SECONDS: float = 60.0
    DEFAULT_OPERATOR_LABEL: str = 'Operator'

    # Notifications kept for GET /notifications
    NOTIFICATION_HISTORY_SIZE: int = 50

    # Environment
    ENVIRONMENT: str = "development"
    DEBUG: bool = False

    @property
    def async_database_url(self) -> str:
        if self.DATABASE_URL:
            return self.DATABASE_URL
        return (
            f"postgresql+asyncpg://{self.POSTGRES_USER}:{self.POSTGRES_PASSWORD}"
            f"@{self.POSTGRES_HOST}:{self.POSTGRES_PORT}/{self.POSTGRES_DB}"
        )

    model_config = SettingsConfigDict(
        extra="allow",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    @field_validator("DEBUG", mode="before")
    @classmethod
    def parse_debug(cls, v):
        return _parse_bool(v)

    @field_validator("DEMO_MODE", mode="before")
    @classmethod
    def parse_demo_mode(cls, v):
        return _parse_bool(v)

    @field_validator("AUTO_CLOSE_ENABLED", mode="before")
    @classmethod
    def parse_auto_close_enabled(cls, v):
        return _parse_bool(v)

    @field_validator("AUTO_CLOSE_INTERVAL_SECONDS")
    @classmethod
    def validate_interval(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("AUTO_CLOSE_INTERVAL_SECONDS must be positive")
        return v

settings = Settings()

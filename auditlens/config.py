"""Application configuration using Pydantic Settings."""

from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Application
    app_env: str = "development"
    app_debug: bool = False
    log_level: str = "INFO"

    # Analysis
    reentrancy_window: int = 3  # statements after an external call
    call_safety_lookback: int = 3  # statements before an external call
    max_source_bytes: int = 1_000_000

    # Reporting
    empty_summary: str = "No vulnerabilities found"

    # CORS
    cors_origins: List[str] = ["http://localhost:3000"]

    @field_validator("reentrancy_window", "call_safety_lookback", mode="after")
    @classmethod
    def validate_window(cls, v: int, info) -> int:
        """Windows must cover at least one statement."""
        if v < 1:
            raise ValueError(f"{info.field_name} must be at least 1")
        return v

    @field_validator("log_level", mode="after")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"log_level must be a standard logging level, got {v!r}")
        return level

    @property
    def is_production(self) -> bool:
        return self.app_env == "production"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

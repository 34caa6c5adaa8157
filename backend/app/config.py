"""
Application settings loaded from the environment (and a local .env file).
"""
from decimal import Decimal
from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()


class Settings(BaseSettings):
    """
    Runtime configuration for statement analysis.

    Every field maps to an upper-case environment variable of the same name.
    """
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Candidate validation (LLM)
    openai_api_key: Optional[str] = None
    subscription_validation_enabled: bool = True
    subscription_validation_model: str = "gpt-4o-mini"
    validation_batch_size: int = 10
    validation_batch_delay_seconds: float = 20.0
    validation_timeout_seconds: float = 30.0
    validation_seed: int = 42

    # Currency handling. The multiplier is a static approximation, not a live rate.
    reporting_currency: str = "RON"
    foreign_currency_multiplier: Decimal = Decimal("5")

    # Upload limits
    max_upload_bytes: int = 10 * 1024 * 1024

    # Detection thresholds per input kind
    statement_min_confidence: int = 40
    csv_min_confidence: int = 50

    # Background jobs
    redis_url: str = "redis://localhost:6379/0"
    analysis_event_ttl_seconds: int = 300

    # HTTP surface
    cors_allow_origins: Optional[str] = None  # comma-separated
    frontend_url: Optional[str] = None
    app_url: Optional[str] = None
    api_docs_enabled: bool = False

    @property
    def validation_available(self) -> bool:
        return bool(self.subscription_validation_enabled and self.openai_api_key)

    @property
    def cors_origins(self) -> List[str]:
        """
        Allowed CORS origins.

        If CORS_ALLOW_ORIGINS is not set, FRONTEND_URL/APP_URL is used.
        """
        if self.cors_allow_origins:
            origins = [o.strip() for o in self.cors_allow_origins.split(",") if o.strip()]
            if origins:
                return origins
        fallback = self.frontend_url or self.app_url
        return [fallback] if fallback else ["http://localhost:3000"]


@lru_cache
def get_settings() -> Settings:
    return Settings()


def reset_settings_cache() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    get_settings.cache_clear()

from pathlib import Path
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PLACEHOLDER_KEY = "demo_key_for_testing"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="POSTAL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Persistence
    cache_db_path: Optional[Path] = None

    # Providers
    google_maps_api_key: Optional[str] = None
    enable_google: bool = False
    gemini_api_key: Optional[str] = None
    enable_gemini: bool = False
    gemini_model: str = "gemini-1.5-flash"
    nominatim_url: str = "https://nominatim.openstreetmap.org"
    nominatim_user_agent: str = "PostalResolver/1.0 (batch-processing)"
    country_code: str = "co"
    country_name: str = "Colombia"

    # Timeouts and backoff
    provider_timeout_s: float = 6.0
    record_timeout_s: float = 8.0
    quota_pause_s: float = 30.0
    max_rate_limit_retries: int = 5
    rate_limit_base_delay_s: float = 1.0

    # Confidence thresholds for the free provider
    min_importance_precise: float = 0.7
    min_importance_coarse: float = 0.5

    # Batch scheduling
    concurrency: Optional[int] = Field(default=None, ge=1, le=16)
    progress_interval_s: float = 0.5
    prefer_municipal_index: bool = True

    @model_validator(mode="after")
    def _check_timeouts(self) -> "Settings":
        if self.provider_timeout_s >= self.record_timeout_s:
            raise ValueError(
                f"provider_timeout_s ({self.provider_timeout_s}) must be shorter than "
                f"record_timeout_s ({self.record_timeout_s})"
            )
        return self

    @staticmethod
    def _usable_key(key: Optional[str]) -> bool:
        return bool(key and key.strip() and key.strip() != PLACEHOLDER_KEY)

    @property
    def google_configured(self) -> bool:
        return self.enable_google and self._usable_key(self.google_maps_api_key)

    @property
    def gemini_configured(self) -> bool:
        return self.enable_gemini and self._usable_key(self.gemini_api_key)

    def schedule_profile(self) -> tuple[int, float]:
        """Return (concurrency, minimum inter-request delay in seconds).

        A paid provider allows parallel workers and a short delay; relying on
        the free provider alone forces a single worker and a long delay.
        """
        if self.google_configured:
            return (self.concurrency or 2), 0.15
        if self.gemini_configured:
            return 1, 0.4
        return 1, 1.2


settings = Settings()

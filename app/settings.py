"""Application settings and configuration (Pydantic v2)."""
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    """Application settings."""

    # Storage
    database_url: str = Field(
        default="sqlite:///./checkin.db",
        description="SQLAlchemy DSN",
    )
    storage_backend: str = Field(default="sql", description="sql | memory")

    # Geofence
    default_geofence_radius_m: float = Field(default=50.0, gt=0)
    checkin_tolerance: float = Field(default=1.0, gt=0)
    monitor_tolerance: float = Field(default=3.0, gt=0)

    # Location / monitoring
    location_timeout_s: float = Field(default=10.0, gt=0)
    location_max_age_s: float = Field(default=120.0, gt=0)
    monitor_interval_s: float = Field(default=60.0, gt=0)
    realtime_poll_interval_s: float = Field(default=5.0, gt=0)
    stream_interval_s: float = Field(default=5.0, gt=0)

    # Matching
    free_daily_likes: int = Field(default=10, ge=0)
    min_profile_age: int = Field(default=18, ge=0)
    demo_match_mode: bool = False
    demo_match_probability: float = Field(default=0.3, ge=0, le=1)

    # HMAC for mobile ingestion
    hmac_required: bool = False
    api_key_app: Optional[str] = None
    signing_secret: Optional[str] = None

    log_level: str = "INFO"

    # Pydantic v2 settings
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        env_prefix="",                 # no prefix
    )

    # ---- Backwards-compat properties (UPPERCASE) ----
    @property
    def API_KEY_APP(self) -> Optional[str]:
        return self.api_key_app

    @property
    def SIGNING_SECRET(self) -> Optional[str]:
        return self.signing_secret


# Global settings instance
settings = Settings()

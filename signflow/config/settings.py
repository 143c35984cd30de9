"""Application configuration settings."""

import os
from dataclasses import dataclass, field
from functools import lru_cache
from typing import List, Optional


@dataclass
class PaginationSettings:
    """Pagination configuration."""

    default_page_size: int = 20
    max_page_size: int = 100
    min_page_size: int = 1


@dataclass
class SigningSettings:
    """Signature capture and workflow configuration."""

    # Rendered signature bounds
    signature_max_width: int = 400
    signature_max_height: int = 200
    signature_jpeg_quality: int = 70
    signature_stroke_width: int = 3

    # Field limits
    text_max_length: int = 10000

    # Requests without an explicit expiry get this many days (None = never expire)
    default_expiry_days: Optional[int] = None

    # Reminder cadence for pending recipients
    reminder_interval_hours: int = 72

    # Events retained per request by the change feed
    change_feed_history: int = 500


@dataclass
class CORSSettings:
    """CORS configuration."""

    allow_origins: List[str] = field(default_factory=lambda: ["*"])


@dataclass
class Settings:
    """Main application settings."""

    # Application info
    app_name: str = "SignFlow API"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False

    # Base URL used to build recipient signing links
    public_base_url: str = "http://localhost:3000"

    # Pagination
    pagination: PaginationSettings = field(default_factory=PaginationSettings)

    # Signing
    signing: SigningSettings = field(default_factory=SigningSettings)

    # CORS
    cors: CORSSettings = field(default_factory=CORSSettings)

    @classmethod
    def from_env(cls) -> "Settings":
        """Create settings from environment variables."""
        expiry_days = os.getenv("SIGNING_DEFAULT_EXPIRY_DAYS")
        origins = os.getenv("CORS_ALLOW_ORIGINS", "*")
        return cls(
            app_name=os.getenv("APP_NAME", "SignFlow API"),
            app_version=os.getenv("APP_VERSION", "1.0.0"),
            environment=os.getenv("ENVIRONMENT", "development"),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            public_base_url=os.getenv("PUBLIC_BASE_URL", "http://localhost:3000").rstrip("/"),
            pagination=PaginationSettings(
                default_page_size=int(os.getenv("PAGINATION_DEFAULT_SIZE", "20")),
                max_page_size=int(os.getenv("PAGINATION_MAX_SIZE", "100")),
            ),
            signing=SigningSettings(
                signature_max_width=int(os.getenv("SIGNATURE_MAX_WIDTH", "400")),
                signature_max_height=int(os.getenv("SIGNATURE_MAX_HEIGHT", "200")),
                signature_jpeg_quality=int(os.getenv("SIGNATURE_JPEG_QUALITY", "70")),
                signature_stroke_width=int(os.getenv("SIGNATURE_STROKE_WIDTH", "3")),
                text_max_length=int(os.getenv("SIGNING_TEXT_MAX_LENGTH", "10000")),
                default_expiry_days=int(expiry_days) if expiry_days else None,
                reminder_interval_hours=int(os.getenv("SIGNING_REMINDER_INTERVAL_HOURS", "72")),
                change_feed_history=int(os.getenv("CHANGE_FEED_HISTORY", "500")),
            ),
            cors=CORSSettings(
                allow_origins=[o.strip() for o in origins.split(",") if o.strip()],
            ),
        )


# Singleton settings instance
_settings: Optional[Settings] = None


@lru_cache()
def get_settings() -> Settings:
    """Get application settings (cached)."""
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings


def reset_settings() -> None:
    """Reset settings (for testing)."""
    global _settings
    _settings = None
    get_settings.cache_clear()

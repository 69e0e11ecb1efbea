"""Application configuration using pydantic-settings.

All environment variables should be accessed through the settings object
rather than using os.getenv() directly. Pricing multipliers that are part
of the persisted reason vocabulary live in ``app.services.pricing``; the
values here are the operational knobs (fees, windows, gateway credentials).
"""

from functools import lru_cache
from typing import List, Literal, Optional

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",  # Ignore extra env vars
    )

    # Database
    database_url: str = "sqlite:///./data/nightlife.db"

    # Redis - optional, used for cart locks and checkout sessions in multi-instance deployments
    redis_url: Optional[str] = None

    # Security
    secret_key: str = "change-me-in-production"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 240  # 4 hours

    # CORS - comma-separated origins or "*" for development only
    cors_origins: str = "http://localhost:3000,http://localhost:8000"

    # ==========================================================================
    # Venue clock
    # ==========================================================================
    venue_utc_offset_hours: int = -5  # Bogota, no DST

    # ==========================================================================
    # Dynamic pricing
    # ==========================================================================
    event_grace_period_hours: int = 3
    event_grace_multiplier: float = 1.3

    # ==========================================================================
    # Fees (amounts in COP)
    # ==========================================================================
    platform_fee_ticket_general: float = 0.05
    platform_fee_ticket_event: float = 0.10
    platform_fee_menu: float = 0.025
    gateway_fixed_fee: float = 700
    gateway_variable_rate: float = 0.0265
    gateway_tax_rate: float = 0.19
    min_transaction_total: float = 1500

    # ==========================================================================
    # Cart & checkout
    # ==========================================================================
    cart_lock_ttl_minutes: int = 10
    cart_lock_sweep_interval_seconds: int = 300
    cart_max_age_minutes: int = 30
    general_ticket_booking_window_days: int = 21
    checkout_poll_interval_seconds: float = 5
    checkout_poll_max_attempts: int = 60
    checkout_session_ttl_minutes: int = 30

    # ==========================================================================
    # Payment gateway (Wompi REST API)
    # ==========================================================================
    gateway_base_url: str = "https://sandbox.wompi.co/v1"
    gateway_public_key: str = ""
    gateway_private_key: str = ""
    gateway_integrity_secret: str = ""
    gateway_events_secret: str = ""
    gateway_currency: str = "COP"
    gateway_timeout_seconds: float = 15

    # QR payload encryption
    qr_encryption_key: str = "change-me-qr-key"

    # ==========================================================================
    # Email/SMTP Configuration
    # ==========================================================================
    smtp_host: str = "smtp.gmail.com"
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from_email: str = ""
    smtp_from_name: str = "Nightlife Tickets"
    smtp_use_tls: bool = True

    # Server
    debug: bool = True
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # API
    api_v1_prefix: str = "/api/v1"

    # Rate limiting
    rate_limit_enabled: bool = True
    checkout_rate_limit: str = "10/minute"

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str) -> str:
        if v == "change-me-in-production" or len(v) < 32:
            import warnings
            warnings.warn(
                "SECRET_KEY should be set and at least 32 characters for security.",
                UserWarning,
                stacklevel=2,
            )
        return v

    @field_validator("event_grace_multiplier")
    @classmethod
    def validate_grace_multiplier(cls, v: float) -> float:
        if v < 1:
            raise ValueError("event_grace_multiplier is a surcharge and must be >= 1")
        return v

    @model_validator(mode="after")
    def validate_production_settings(self) -> "Settings":
        """Validate settings for production safety."""
        if not self.debug:
            if self.secret_key == "change-me-in-production":
                raise ValueError(
                    "FATAL: Cannot start in production mode with default SECRET_KEY. "
                    "Set a secure SECRET_KEY environment variable (minimum 32 characters)."
                )
            if self.qr_encryption_key == "change-me-qr-key":
                raise ValueError(
                    "FATAL: Cannot start in production mode with default QR_ENCRYPTION_KEY."
                )
        return self

    @property
    def cors_origins_list(self) -> List[str]:
        """Parse CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()

"""Configuration management for the marksheet dispatch service.

This module uses Pydantic Settings to load configuration from environment
variables. All settings are validated at startup to catch configuration
errors early.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Database credentials and the delivery signing key must be provided via
    environment variables or .env file.
    """

    # Supabase Configuration
    supabase_url: str = Field(
        ...,
        description="Supabase project URL"
    )
    supabase_key: str = Field(
        ...,
        description="Supabase anonymous/service role key"
    )
    supabase_service_role_key: Optional[str] = Field(
        default=None,
        description="Service role key; bypasses RLS for the scheduled dispatch job"
    )

    # External delivery (messaging integration)
    delivery_endpoint_url: Optional[str] = Field(
        default=None,
        description="HTTPS endpoint that delivers a marksheet to the parent"
    )
    delivery_signing_key: str = Field(
        default="",
        description="Secret used to sign delivery payloads (HMAC-SHA256)"
    )
    delivery_max_retries: int = Field(
        default=3,
        ge=1,
        description="Delivery attempts before reporting a delivery failure"
    )
    delivery_timeout_seconds: int = Field(
        default=30,
        ge=1,
        description="Timeout for a single delivery request"
    )

    # Bulk operations
    bulk_concurrency_limit: int = Field(
        default=0,
        ge=0,
        description="Max in-flight transitions per bulk action (0 = unbounded fan-out)"
    )

    # Scheduled dispatch
    scheduled_dispatch_interval_seconds: int = Field(
        default=300,
        ge=1,
        description="Interval between scheduled dispatch passes"
    )
    upcoming_dispatch_window_minutes: int = Field(
        default=60,
        ge=1,
        description="How far ahead an approved dispatch counts as upcoming"
    )

    # HTTP
    trusted_proxies: str = Field(
        default="",
        description="Comma-separated proxy IPs allowed to set X-Forwarded-For"
    )
    log_level: str = Field(default="INFO")

    # Model configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @field_validator("supabase_url")
    @classmethod
    def validate_supabase_url(cls, v: str) -> str:
        """Validate that Supabase URL is present and properly formatted."""
        if not v or not v.strip():
            raise ValueError("SUPABASE_URL must be set in environment variables")

        url = v.strip()
        if not url.startswith("https://"):
            raise ValueError(
                "SUPABASE_URL must start with https:// "
                f"(got: {url[:20]}...)"
            )

        return url

    @field_validator("supabase_key")
    @classmethod
    def validate_supabase_key(cls, v: str) -> str:
        """Validate that Supabase key is present and non-empty."""
        if not v or not v.strip():
            raise ValueError("SUPABASE_KEY must be set in environment variables")
        return v.strip()

    @field_validator("delivery_endpoint_url")
    @classmethod
    def validate_delivery_endpoint_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        url = v.strip()
        if not url.startswith("https://"):
            raise ValueError("DELIVERY_ENDPOINT_URL must use HTTPS")
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached Settings instance.

    Returns:
        Settings: Validated application settings

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    return Settings()

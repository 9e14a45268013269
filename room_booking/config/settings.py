"""
Settings and configuration management for the room booking core.

Provides environment-based configuration using Pydantic settings for the
REST backend, pricing rates, payment checkout and logging.
"""

from decimal import Decimal

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """
    Configuration settings for the room booking core.

    Uses environment variables with ROOM_BOOKING_ prefix for configuration.
    """

    # API Configuration
    api_base_url: str = Field(
        "http://localhost:5001/api", description="Base URL for the booking REST API"
    )
    request_timeout: int = Field(
        10, description="HTTP request timeout in seconds", ge=1, le=300
    )
    max_retries: int = Field(
        2, description="Maximum number of retry attempts", ge=0, le=10
    )
    retry_backoff: float = Field(
        0.5, description="Base retry backoff time in seconds", ge=0.0, le=60.0
    )
    enable_http2: bool = Field(True, description="Negotiate HTTP/2 when available")

    # Security headers
    csrf_header: str = Field("X-CSRF-Token", description="CSRF token header name")
    idempotency_header: str = Field(
        "X-Idempotency-Key", description="Idempotency key header name"
    )
    idempotent_path_prefixes: tuple[str, ...] = Field(
        ("/bookings", "/payments"),
        description="Endpoint prefixes that receive an idempotency key",
    )
    login_path: str = Field("/login", description="Where expired sessions go")

    # Pricing Configuration
    currency: str = Field("INR", description="Checkout currency code")
    currency_minor_units: int = Field(
        100, description="Minor units per whole currency unit", ge=1
    )
    platform_fee_rate: Decimal = Field(
        Decimal("0.05"), description="Platform fee as a fraction of rent", ge=0
    )
    tax_rate: Decimal = Field(
        Decimal("0.18"), description="Tax as a fraction of the platform fee", ge=0
    )
    max_duration_months: int = Field(
        12, description="Longest bookable duration in months", ge=1
    )
    special_requests_max_length: int = Field(
        500, description="Maximum length of the special requests note", ge=0
    )

    # Checkout Configuration
    checkout_script_url: str = Field(
        "https://checkout.razorpay.com/v1/checkout.js",
        description="URL of the payment checkout script",
    )
    merchant_name: str = Field("MESS WALLAH", description="Name shown in checkout")
    theme_color: str = Field("#F97316", description="Checkout theme color")

    # Logging Configuration
    log_level: str = Field(
        "INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_format: str = Field(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        description="Logging format string",
    )
    enable_structured_logging: bool = Field(
        False, description="Enable structured logging with JSON format"
    )

    model_config = ConfigDict(
        env_file=".env", env_prefix="ROOM_BOOKING_", case_sensitive=False, extra="ignore"
    )

    def get_client_config(self) -> dict[str, int | float | str]:
        """
        Get HTTP client configuration dictionary.

        Returns:
            Dictionary containing client configuration
        """
        return {
            "base_url": self.api_base_url,
            "timeout": self.request_timeout,
            "max_retries": self.max_retries,
            "retry_backoff": self.retry_backoff,
        }

    def get_checkout_config(self) -> dict[str, str | int]:
        """
        Get payment checkout configuration dictionary.

        Returns:
            Dictionary containing checkout configuration
        """
        return {
            "script_url": self.checkout_script_url,
            "merchant_name": self.merchant_name,
            "theme_color": self.theme_color,
            "currency": self.currency,
            "currency_minor_units": self.currency_minor_units,
        }

    def validate_required_settings(self) -> list[str]:
        """
        Validate that all required settings are present.

        Returns:
            List of missing settings (empty if all present)
        """
        missing = []

        if not self.api_base_url:
            missing.append("ROOM_BOOKING_API_BASE_URL")

        if not self.checkout_script_url:
            missing.append("ROOM_BOOKING_CHECKOUT_SCRIPT_URL")

        if not self.currency:
            missing.append("ROOM_BOOKING_CURRENCY")

        return missing


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """
    Get the global settings instance.

    Returns:
        Settings instance
    """
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings

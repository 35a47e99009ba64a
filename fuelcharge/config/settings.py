"""
Configuration Management for FuelCharge

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import EmailStr, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """Relational ledger store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="DATABASE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    url: str = Field(
        default="sqlite:///./fuelcharge.db",
        description="SQLAlchemy database URL"
    )
    pool_size: int = Field(
        default=5,
        ge=1,
        description="Persistent connections (ignored for SQLite)"
    )
    max_overflow: int = Field(
        default=10,
        ge=0,
        description="Temporary connections above pool_size"
    )
    pool_recycle_seconds: int = Field(
        default=3600,
        description="Recycle connections after this many seconds"
    )
    echo: bool = Field(
        default=False,
        description="Log every SQL statement"
    )


class FirestoreSettings(BaseSettings):
    """Document ledger store configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FIRESTORE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    project_id: str = Field(
        ...,
        description="Google Cloud project hosting the Firestore database"
    )
    credentials_path: Optional[str] = Field(
        default=None,
        description="Path to service account credentials JSON (ADC if unset)"
    )
    collection_prefix: str = Field(
        default="",
        description="Prefix for collection names (e.g. 'staging_')"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: Optional[str]) -> Optional[str]:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if v and not Path(v).exists():
            import warnings
            warnings.warn(
                f"Firestore credentials file not found at {v}. "
                "Make sure it exists before running the application."
            )
        return v


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration (receipt scanning)."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    api_key: str = Field(
        ...,
        description="Gemini API key"
    )
    model_name: str = Field(
        default="gemini-1.5-flash",
        description="Gemini model to use"
    )
    max_tokens: int = Field(
        default=2048,
        ge=100,
        le=8192,
        description="Maximum tokens in response"
    )
    temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class StationSettings(BaseSettings):
    """
    Station identity, billing defaults and SMTP relay.

    These values are what the invoice emails and the invoice
    generator read. They are validated here, at the boundary,
    instead of travelling around as loose dicts.
    """

    model_config = SettingsConfigDict(
        env_prefix="STATION_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    station_name: str = Field(
        default="Ruthton Express",
        min_length=1,
        description="Name printed on invoices"
    )
    station_id: str = Field(
        default="RE-XPRS",
        description="Short station identifier"
    )
    support_email: EmailStr = Field(
        default="billing@ruthtonexpress.com",
        description="Sender address for invoice emails"
    )
    auto_generate: bool = Field(
        default=False,
        description="Generate invoices automatically at period end"
    )
    payment_terms: int = Field(
        default=15,
        ge=0,
        le=365,
        description="Days between invoice date and due date"
    )
    tax_rate: Decimal = Field(
        default=Decimal("7.25"),
        ge=0,
        le=100,
        description="Sales tax in percent"
    )

    # SMTP relay
    smtp_host: Optional[str] = None
    smtp_port: int = Field(default=587, ge=1, le=65535)
    smtp_user: Optional[str] = None
    smtp_pass: Optional[str] = None
    smtp_timeout_seconds: float = Field(default=10.0, gt=0)

    @property
    def smtp_configured(self) -> bool:
        return bool(self.smtp_host)


class AppSettings(BaseSettings):
    """
    Main application settings.

    Loads configuration from environment variables and .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Environment
    app_environment: str = Field(
        default="development",
        description="Application environment"
    )
    debug_mode: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    # Ledger store
    ledger_backend: Literal["sql", "document"] = Field(
        default="sql",
        description="Which ledger store adapter to construct"
    )
    store_max_attempts: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Attempts for a compare-and-set commit before giving up"
    )

    # Dashboard risk thresholds
    risk_overdue_amount_threshold: Decimal = Field(
        default=Decimal("500"),
        ge=0,
        description="Overdue total above which the risk alert is raised"
    )
    risk_overdue_count_threshold: int = Field(
        default=3,
        ge=0,
        description="Overdue invoice count above which the risk alert is raised"
    )

    # Receipt uploads
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum receipt image size in MB"
    )
    supported_image_formats: str = Field(
        default="image/jpeg,image/png,image/webp",
        description="Comma-separated list of accepted receipt MIME types"
    )

    @property
    def supported_formats_list(self) -> list[str]:
        """Get supported formats as a list."""
        return [fmt.strip().lower() for fmt in self.supported_image_formats.split(",")]

    @property
    def max_upload_size_bytes(self) -> int:
        """Get max upload size in bytes."""
        return self.max_upload_size_mb * 1024 * 1024


class Settings(BaseSettings):
    """
    Root settings container.

    Aggregates all sub-settings for easy access.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Sub-settings are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def firestore(self) -> FirestoreSettings:
        return FirestoreSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def station(self) -> StationSettings:
        return StationSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}.
    Useful for startup checks.
    """
    results = {}
    settings = get_settings()

    for name in ("database", "firestore", "gemini", "station", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

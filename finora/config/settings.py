"""
Configuration Management for Finora

Uses pydantic-settings for type-safe configuration from environment variables.

DESIGN DECISION: All configuration is centralized here.
This makes it easy to see what external dependencies exist and
ensures all required configuration is validated at startup.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    """SQLite ledger database configuration."""

    model_config = SettingsConfigDict(
        env_prefix="FINORA_DB_",
        extra="ignore"
    )

    path: str = Field(
        default="data/finora.db",
        description="Path to the SQLite database file"
    )
    busy_timeout_ms: int = Field(
        default=30000,
        ge=0,
        description="How long a writer waits for a locked database"
    )

    @property
    def db_path(self) -> Path:
        return Path(self.path)


class GeminiSettings(BaseSettings):
    """Gemini LLM configuration."""

    model_config = SettingsConfigDict(
        env_prefix="GEMINI_",
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
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Model temperature (lower = more deterministic)"
    )


class EmailSettings(BaseSettings):
    """Outbound SMTP configuration for alerts and reports."""

    model_config = SettingsConfigDict(
        env_prefix="SMTP_",
        extra="ignore"
    )

    host: str = Field(
        ...,
        description="SMTP server host"
    )
    port: int = Field(
        default=587,
        ge=1,
        le=65535,
    )
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = Field(
        default=True,
        description="Upgrade the connection with STARTTLS"
    )
    sender: str = Field(
        default="Finora <noreply@finora.app>",
        description="From header for outgoing mail"
    )
    timeout_seconds: float = Field(
        default=10.0,
        gt=0,
    )


class GoogleSheetsSettings(BaseSettings):
    """Google Sheets access, used as a spreadsheet import source."""

    model_config = SettingsConfigDict(
        env_prefix="GOOGLE_SHEETS_",
        extra="ignore"
    )

    credentials_path: str = Field(
        ...,
        description="Path to Google service account credentials JSON"
    )

    @field_validator('credentials_path')
    @classmethod
    def validate_credentials_path(cls, v: str) -> str:
        """Warn if credentials file doesn't exist (but don't fail - might be mounted later)."""
        if not Path(v).exists():
            import warnings
            warnings.warn(
                f"Google credentials file not found at {v}. "
                "Make sure it exists before importing from Google Sheets."
            )
        return v


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

    debug_mode: bool = Field(
        default=False,
        description="Log at DEBUG level when running the CLI"
    )

    default_currency: str = Field(
        default="INR",
        pattern="^[A-Z]{3}$",
        description="Currency for new accounts when none is given"
    )

    # Budget alerts
    budget_alert_threshold: float = Field(
        default=80.0,
        gt=0.0,
        le=100.0,
        description="Percentage of the budget that triggers an alert"
    )

    # Background jobs
    job_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Attempts per job run before giving up"
    )
    job_retry_base_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="First retry delay; doubles on each retry"
    )

    # Receipt uploads
    max_upload_size_mb: int = Field(
        default=10,
        ge=1,
        le=50,
        description="Maximum receipt upload size in MB"
    )
    supported_image_formats: str = Field(
        default="jpg,jpeg,png,webp",
        description="Comma-separated list of supported image formats"
    )

    # Spreadsheet import
    import_sample_rows: int = Field(
        default=5,
        ge=1,
        le=50,
        description="Rows sent to the AI when inferring import columns"
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

    # Note: These are loaded lazily to allow partial configuration

    @property
    def database(self) -> DatabaseSettings:
        return DatabaseSettings()

    @property
    def gemini(self) -> GeminiSettings:
        return GeminiSettings()

    @property
    def email(self) -> EmailSettings:
        return EmailSettings()

    @property
    def google_sheets(self) -> GoogleSheetsSettings:
        return GoogleSheetsSettings()

    @property
    def app(self) -> AppSettings:
        return AppSettings()


@lru_cache()
def get_settings() -> Settings:
    """
    Get application settings (cached).

    Uses LRU cache to ensure settings are only loaded once.
    Call get_settings.cache_clear() to reload if needed.
    """
    return Settings()


def validate_all_settings() -> dict[str, bool]:
    """
    Validate all settings are properly configured.

    Returns a dict of {setting_name: is_valid}, plus a
    `<name>_error` entry for every section that failed.
    Useful for startup checks.
    """
    results = {}

    settings = get_settings()

    for name in ("database", "gemini", "email", "google_sheets", "app"):
        try:
            getattr(settings, name)
            results[name] = True
        except Exception as e:
            results[name] = False
            results[f"{name}_error"] = str(e)

    return results

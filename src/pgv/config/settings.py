"""Application configuration schema and validation."""

from typing import Literal

from pydantic import Field, PostgresDsn, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    env: Literal["dev", "staging", "prod"] = Field(
        ...,
        description="Application environment",
    )
    db_dsn: PostgresDsn = Field(
        ...,
        description="PostgreSQL database connection string",
    )
    db_pool_min: int = Field(
        default=1,
        ge=1,
        description="Minimum database connection pool size",
    )
    db_pool_max: int = Field(
        default=5,
        ge=1,
        description="Maximum database connection pool size",
    )
    stripe_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret API key",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret of the Stripe webhook endpoint",
    )
    stripe_price_tiers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra price_id -> tier entries (JSON object), checked before the built-in table",
    )
    client_url: str = Field(
        default="http://localhost:5173",
        description="Front-end base URL used when a request carries no return URL",
    )
    webhook_server_host: str = Field(
        default="0.0.0.0",
        description="Interface the billing HTTP server binds to",
    )
    webhook_server_port: int = Field(
        default=3001,
        ge=1,
        le=65535,
        description="Port the billing HTTP server listens on",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )

    @field_validator("db_pool_max")
    @classmethod
    def validate_pool_max(cls, v: int, info) -> int:
        """Ensure pool_max >= pool_min."""
        if "db_pool_min" in info.data and v < info.data["db_pool_min"]:
            raise ValueError("db_pool_max must be >= db_pool_min")
        return v

    @field_validator("client_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


_config: AppConfig | None = None


def get_config() -> AppConfig:
    """Get or create the singleton AppConfig instance."""
    global _config
    if _config is None:
        _config = AppConfig()
    return _config

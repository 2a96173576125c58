"""Application configuration via pydantic settings."""

from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from typing import Any

from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration."""

    app_env: str = Field("local", alias="APP_ENV")
    app_name: str = "Fiesta Marketplace API"
    api_v1_prefix: str = "/api/v1"

    database_url: str = Field(..., alias="DATABASE_URL")
    sync_database_url: str | None = Field(default=None, alias="SYNC_DATABASE_URL")

    secret_key: str = Field(default="", alias="SECRET_KEY")
    jwt_secret_key: str = Field(default="", alias="JWT_SECRET_KEY")
    jwt_algorithm: str = Field("HS256", alias="JWT_ALGORITHM")
    access_token_expire_minutes: int = Field(60, alias="ACCESS_TOKEN_EXPIRE_MINUTES")
    internal_api_token: str | None = Field(default=None, alias="INTERNAL_API_TOKEN")

    redis_url: str | None = Field(default=None, alias="REDIS_URL")

    smtp_host: str | None = Field(default=None, alias="SMTP_HOST")
    smtp_port: int | None = Field(default=None, alias="SMTP_PORT")
    smtp_username: str | None = Field(default=None, alias="SMTP_USER")
    smtp_password: str | None = Field(default=None, alias="SMTP_PASSWORD")
    smtp_from: str | None = Field(default=None, alias="SMTP_FROM")

    default_admin_email: str | None = Field(default=None, alias="DEFAULT_ADMIN_EMAIL")
    default_admin_password: str | None = Field(
        default=None, alias="DEFAULT_ADMIN_PASSWORD"
    )

    # Wallet
    currency: str = Field("EUR", alias="WALLET_CURRENCY")
    platform_fee: Decimal = Field(Decimal("1.50"), alias="PLATFORM_FEE")
    min_top_up: Decimal = Field(Decimal("4.50"), alias="MIN_TOP_UP")
    transactions_page_size: int = Field(20, alias="TRANSACTIONS_PAGE_SIZE")

    # Matches and cancellations
    pending_match_ttl_hours: int = Field(48, alias="PENDING_MATCH_TTL_HOURS")
    host_cancellation_refund_percentage: int = Field(
        100, ge=0, le=100, alias="HOST_CANCELLATION_REFUND_PERCENTAGE"
    )
    requester_cancellation_host_refund_percentage: int = Field(
        100, ge=0, le=100, alias="REQUESTER_CANCELLATION_HOST_REFUND_PERCENTAGE"
    )

    # Disputes and trust
    dispute_window_days: int = Field(14, alias="DISPUTE_WINDOW_DAYS")
    max_strikes: int = Field(3, ge=1, alias="MAX_STRIKES")

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: [
            "http://localhost:5173",
            "http://localhost:3000",
        ],
        alias="CORS_ALLOW_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=False, alias="CORS_ALLOW_CREDENTIALS")
    cors_allowlist: list[str] = Field(
        default_factory=lambda: ["http://localhost:5173"], alias="CORS_ALLOWLIST"
    )

    rate_limit_default: str = Field("100/minute", alias="RATE_LIMIT_DEFAULT")
    rate_limit_login: str = Field("10/minute", alias="RATE_LIMIT_LOGIN")

    model_config = SettingsConfigDict(
        env_file=Path(__file__).resolve().parents[2] / ".env",
        case_sensitive=False,
        extra="ignore",
    )

    def model_post_init(self, __context: Any) -> None:
        """Populate JWT secret from the generic secret when not provided."""

        if not self.jwt_secret_key:
            object.__setattr__(self, "jwt_secret_key", self.secret_key)

    @field_validator("cors_allow_origins", "cors_allowlist", mode="before")
    @classmethod
    def _split_origins(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()  # type: ignore[call-arg]

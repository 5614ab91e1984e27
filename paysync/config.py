from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration read from environment variables."""

    # General
    api_bearer_token: str = "testtoken"

    # NOWPayments (crypto) IPN
    nowpayments_ipn_secret: str = ""

    # Paystack (card) webhooks are signed with the secret key
    paystack_secret_key: str = ""

    # Split/payout API
    payout_api_url: str = ""
    payout_api_token: str = ""

    # Notification webhook (admin/vendor alerts)
    notify_webhook_url: str = ""

    # Bounded waits for external calls (seconds)
    http_timeout_seconds: float = 10.0
    side_effect_timeout_seconds: float = 15.0

    # Database (PostgreSQL)
    db_host: str = ""
    db_port: int = 5432
    db_user: str = ""
    db_password: str = ""
    db_name: str = ""
    db_schema: str = "public"
    db_pool_max: int = 10

    @property
    def db_enabled(self) -> bool:
        return bool(self.db_host and self.db_user and self.db_name)

    @property
    def db_dsn(self) -> str:
        if not self.db_enabled:
            return ""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def payout_enabled(self) -> bool:
        return bool(self.payout_api_url)

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

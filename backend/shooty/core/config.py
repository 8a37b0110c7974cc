# backend/shooty/core/config.py
import logging
from decimal import Decimal
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development", description="Deployment environment name"
    )

    # Database
    database_url: str = Field(
        default="sqlite:///./shooty.db",
        description="SQLAlchemy URL for the booking database",
    )
    database_echo: bool = Field(default=False, description="Log every SQL statement")

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Signing secret for the Stripe webhook endpoint",
    )
    stripe_currency: str = Field(default="eur", description="Default currency for payments")
    stripe_timeout_seconds: int = Field(default=8, description="Per-request Stripe timeout")
    stripe_max_network_retries: int = Field(
        default=1, description="Network-level retries the Stripe client makes per request"
    )

    checkout_success_url: str = Field(
        default="http://localhost:3000/client/payment/success?session_id={CHECKOUT_SESSION_ID}",
        description="Where Stripe Checkout redirects after payment",
    )
    checkout_cancel_url: str = Field(
        default="http://localhost:3000/client/reservations",
        description="Where Stripe Checkout redirects when the client backs out",
    )

    # Money split (15 means 15%, not 0.15)
    stripe_platform_fee_percentage: float = Field(
        default=15, description="Platform fee percentage taken on each collected leg"
    )
    deposit_percentage: float = Field(
        default=30, description="Share of the reservation total collected as deposit"
    )

    # Processor retry policy for transient failures
    processor_max_attempts: int = Field(
        default=3, description="Attempts for transient payment processor failures"
    )
    processor_backoff_base: float = Field(
        default=0.5, description="Base delay in seconds for exponential backoff"
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("stripe_platform_fee_percentage", "deposit_percentage")
    @classmethod
    def _percentage_in_range(cls, value: float) -> float:
        if not 0 <= value <= 100:
            raise ValueError("percentage must be between 0 and 100")
        return value

    @property
    def deposit_rate(self) -> Decimal:
        return Decimal(str(self.deposit_percentage)) / Decimal("100")

    @property
    def platform_fee_rate(self) -> Decimal:
        return Decimal(str(self.stripe_platform_fee_percentage)) / Decimal("100")

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())


settings = Settings()
logger.info(
    "[CONFIG] environment=%s deposit=%s%% platform_fee=%s%% stripe_configured=%s",
    settings.environment,
    settings.deposit_percentage,
    settings.stripe_platform_fee_percentage,
    settings.stripe_configured,
)

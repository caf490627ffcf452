"""Application settings and configuration."""

from decimal import Decimal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Incentive ledger configuration."""

    model_config = SettingsConfigDict(
        env_prefix="LEDGER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "incentive-ledger"
    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # console | json
    allowed_origins: list[str] = Field(default_factory=lambda: ["*"])

    # Subscriptions
    subscription_duration_days: int = 30

    # Referral commissions
    commission_rate: Decimal = Decimal("0.10")
    commission_levels: int = 2
    commission_on_task_rewards: bool = False  # Pay commission on task rewards too

    # Spins
    invites_per_bonus_spin: int = 3

    # Referral codes
    referral_code_length: int = 8
    referral_code_max_attempts: int = 10

    # Optimistic concurrency
    max_commit_retries: int = 5

    # Reward table override, e.g. {"VIP": {"2": "7", "3": "14", "6": "35"}}
    reward_table: dict[str, dict[int, Decimal]] | None = None


# Global settings instance
settings = Settings()

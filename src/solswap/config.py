"""Application configuration using pydantic-settings.

Endpoints, retry and polling policy for the swap pipeline. The pipeline never
reads settings from a global; they travel inside the ServiceContext.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SOLSWAP_",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug mode")
    log_level: str = Field(default="INFO", description="Root log level")

    # ======================
    # Endpoints
    # ======================
    solana_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana JSON-RPC URL"
    )
    raydium_api_url: str = Field(
        default="https://api-v3.raydium.io", description="Raydium API (priority fees)"
    )
    raydium_trade_api_url: str = Field(
        default="https://transaction-v1.raydium.io",
        description="Raydium trade API (quotes and transaction building)",
    )
    api_key: Optional[str] = Field(
        default=None, description="Optional x-api-key header for the trade API"
    )

    # ======================
    # HTTP
    # ======================
    http_timeout_seconds: float = Field(
        default=15.0, description="Per-request HTTP timeout"
    )
    api_calls_per_minute: Optional[int] = Field(
        default=None, description="Sliding-window cap on outbound API calls (None = unlimited)"
    )

    # ======================
    # Pipeline policy
    # ======================
    priority_fee_tier: str = Field(
        default="high", description="Priority fee tier: medium, high or very_high"
    )
    compute_unit_limit: int = Field(
        default=400_000, description="Compute unit limit assumed when estimating fees"
    )
    commitment: str = Field(
        default="confirmed", description="Commitment required to call a trade confirmed"
    )
    poll_interval_seconds: float = Field(
        default=1.0, description="Delay between signature status polls"
    )
    poll_max_attempts: int = Field(
        default=60, description="Maximum number of signature status polls"
    )
    broadcast_max_retries: int = Field(
        default=2, description="Extra submissions of the same blob on ambiguous failures"
    )
    broadcast_retry_backoff_seconds: float = Field(
        default=0.5, description="Initial backoff between broadcast retries (doubles)"
    )
    default_budget_seconds: float = Field(
        default=90.0, description="Time budget for a trade when the caller gives none"
    )
    quote_ttl_seconds: int = Field(
        default=30, description="Seconds a quote stays usable"
    )

    # ======================
    # Safety Guards
    # ======================
    dry_run: bool = Field(
        default=True, description="Simulate the ledger (no real transactions are sent)"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment.lower() == "production"

    def get_safe_dict(self) -> dict:
        """Return settings dict with sensitive values masked."""
        data = self.model_dump()
        if data.get("api_key"):
            data["api_key"] = "***"
        return data


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()

"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
handoff trader, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


class HeliusSettings(BaseSettings):
    """Helius websocket and enhanced-transaction API settings."""

    model_config = SettingsConfigDict(env_prefix="HELIUS_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="API_KEY",
        description="Helius API key (used by both the websocket and the detail API)",
    )
    ws_url: str = Field(
        default="wss://mainnet.helius-rpc.com",
        alias="HELIUS_WS_URL",
        description="Helius websocket endpoint for logsSubscribe",
    )
    api_url: str = Field(
        default="https://api.helius.xyz",
        alias="HELIUS_API_URL",
        description="Helius enhanced-transaction API host",
    )
    ping_interval_seconds: int = Field(
        default=25,
        alias="HELIUS_PING_INTERVAL_SECONDS",
        ge=5,
        le=300,
        description="Keepalive ping interval on the logs websocket",
    )
    max_reconnect_delay_seconds: int = Field(
        default=60,
        alias="HELIUS_MAX_RECONNECT_DELAY_SECONDS",
        ge=1,
        le=3600,
        description="Upper bound of the exponential reconnect backoff",
    )

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        if not v.startswith(("ws://", "wss://")):
            raise ValueError("WebSocket URL must start with ws:// or wss://")
        return v.rstrip("/")

    @field_validator("api_url")
    @classmethod
    def validate_api_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("HELIUS_API_URL must be an HTTP(S) endpoint")
        return v.rstrip("/")


class SolanaSettings(BaseSettings):
    """Solana JSON-RPC settings."""

    model_config = SettingsConfigDict(env_prefix="SOLANA_", extra="ignore")

    rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com",
        alias="SOLANA_RPC_URL",
        description="Solana RPC endpoint used for balances, mint info and submission",
    )
    confirm_timeout_seconds: float = Field(
        default=120.0,
        alias="SOLANA_CONFIRM_TIMEOUT_SECONDS",
        ge=1.0,
        le=600.0,
        description="Maximum time to wait for a submitted transaction to confirm",
    )

    @field_validator("rpc_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate RPC URL format."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("RPC URL must be an HTTP(S) endpoint")
        return v


class JupiterSettings(BaseSettings):
    """Jupiter swap aggregator settings."""

    model_config = SettingsConfigDict(env_prefix="JUPITER_", extra="ignore")

    api_url: str = Field(
        default="https://quote-api.jup.ag/v6",
        alias="JUPITER_API_URL",
        description="Jupiter quote/swap API base URL",
    )
    price_url: str = Field(
        default="https://price.jup.ag/v6/price",
        alias="JUPITER_PRICE_URL",
        description="Jupiter price API endpoint",
    )
    timeout_seconds: float = Field(
        default=10.0,
        alias="JUPITER_TIMEOUT_SECONDS",
        ge=1.0,
        le=120.0,
        description="HTTP timeout for Jupiter requests",
    )

    @field_validator("api_url", "price_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("Jupiter URLs must be HTTP(S) endpoints")
        return v.rstrip("/")


class WalletSettings(BaseSettings):
    """Watched roles and the bot's own signing wallet."""

    model_config = SettingsConfigDict(env_prefix="WALLET_", extra="ignore")

    seller: str | None = Field(
        default=None,
        alias="WALLET_SELLER",
        description="Address of the SELLER role",
    )
    distrib: str | None = Field(
        default=None,
        alias="WALLET_DISTRIB",
        description="Address of the DISTRIB role",
    )
    private_key: SecretStr | None = Field(
        default=None,
        alias="PRIVATE_KEY",
        description="Bot signing key (base58 string or JSON byte array)",
    )
    profit_address: str | None = Field(
        default=None,
        alias="WALLET_PROFIT_ADDRESS",
        description="Optional address that receives swept surplus after a sell",
    )


class StrategySettings(BaseSettings):
    """Pattern detection thresholds."""

    model_config = SettingsConfigDict(env_prefix="STRATEGY_", extra="ignore")

    seed_target_sol: Decimal = Field(
        default=Decimal("150"),
        alias="STRATEGY_SEED_TARGET_SOL",
        description="Native input size of a qualifying seed swap",
    )
    seed_tolerance_sol: Decimal = Field(
        default=Decimal("0.5"),
        alias="STRATEGY_SEED_TOLERANCE_SOL",
        description="Half-width of the accepted seed size band",
    )
    buy_delay_min_seconds: float = Field(
        default=30.0,
        alias="STRATEGY_BUY_DELAY_MIN_SECONDS",
        ge=0.0,
        le=3600.0,
        description="Lower bound of the randomized delay before buying",
    )
    buy_delay_max_seconds: float = Field(
        default=50.0,
        alias="STRATEGY_BUY_DELAY_MAX_SECONDS",
        ge=0.0,
        le=3600.0,
        description="Upper bound of the randomized delay before buying",
    )
    sell_after_receipts: int = Field(
        default=2,
        alias="STRATEGY_SELL_AFTER_RECEIPTS",
        ge=1,
        le=100,
        description="Transfers of the candidate into SELLER that trigger the sell",
    )
    discovery_amount_sol: Decimal | None = Field(
        default=Decimal("105"),
        alias="STRATEGY_DISCOVERY_AMOUNT_SOL",
        description="Native transfer size that marks a new wallet to watch (unset disables)",
    )

    @field_validator("seed_target_sol", "seed_tolerance_sol")
    @classmethod
    def validate_positive(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("seed size settings must be >= 0")
        return v

    @model_validator(mode="after")
    def validate_delay_window(self) -> StrategySettings:
        if self.buy_delay_max_seconds < self.buy_delay_min_seconds:
            raise ValueError("STRATEGY_BUY_DELAY_MAX_SECONDS must be >= STRATEGY_BUY_DELAY_MIN_SECONDS")
        return self


class TradeSettings(BaseSettings):
    """Trade sizing and execution policy."""

    model_config = SettingsConfigDict(env_prefix="TRADE_", extra="ignore")

    buy_pct: Decimal = Field(
        default=Decimal("100"),
        alias="TRADE_BUY_PCT",
        gt=0,
        le=100,
        description="Percentage of spendable SOL used for a buy",
    )
    sell_pct: Decimal = Field(
        default=Decimal("100"),
        alias="TRADE_SELL_PCT",
        gt=0,
        le=100,
        description="Percentage of the held token balance sold",
    )
    slippage_bps: int = Field(
        default=500,
        alias="TRADE_SLIPPAGE_BPS",
        ge=1,
        le=10_000,
        description="Slippage tolerance passed to Jupiter",
    )
    fee_reserve_sol: Decimal = Field(
        default=Decimal("0.01"),
        alias="TRADE_FEE_RESERVE_SOL",
        ge=0,
        description="SOL kept back from buys to pay network fees",
    )
    max_attempts: int = Field(
        default=3,
        alias="TRADE_MAX_ATTEMPTS",
        ge=1,
        le=20,
        description="Attempts per trade before giving up",
    )
    retry_delay_seconds: float = Field(
        default=5.0,
        alias="TRADE_RETRY_DELAY_SECONDS",
        ge=0.0,
        le=300.0,
        description="Fixed delay between trade attempts",
    )
    sweep_reserve_sol: Decimal | None = Field(
        default=None,
        alias="TRADE_SWEEP_RESERVE_SOL",
        description="Balance kept after a sell; the surplus is swept (unset disables)",
    )


class RateLimitSettings(BaseSettings):
    """Outbound call budgets."""

    model_config = SettingsConfigDict(env_prefix="RATE_LIMIT_", extra="ignore")

    detail_per_second: float = Field(
        default=2.0,
        alias="RATE_LIMIT_DETAIL_PER_SECOND",
        gt=0,
        le=1000,
        description="Transaction-detail API calls per second",
    )
    rpc_per_second: float = Field(
        default=10.0,
        alias="RATE_LIMIT_RPC_PER_SECOND",
        gt=0,
        le=1000,
        description="Solana RPC calls per second",
    )
    normalize_concurrency: int = Field(
        default=5,
        alias="RATE_LIMIT_NORMALIZE_CONCURRENCY",
        ge=1,
        le=100,
        description="Concurrent normalization workers",
    )


class DedupSettings(BaseSettings):
    """Notification deduplication window."""

    model_config = SettingsConfigDict(env_prefix="DEDUP_", extra="ignore")

    retention_seconds: float = Field(
        default=60.0,
        alias="DEDUP_RETENTION_SECONDS",
        gt=0,
        le=86_400,
        description="How long a seen signature is suppressed",
    )


class RedisSettings(BaseSettings):
    """Optional Redis cache for token-info lookups."""

    model_config = SettingsConfigDict(env_prefix="", extra="ignore")

    url: str | None = Field(
        default=None,
        alias="REDIS_URL",
        description="Redis connection string (unset disables caching)",
    )
    token_info_ttl_seconds: int = Field(
        default=3600,
        alias="REDIS_TOKEN_INFO_TTL_SECONDS",
        ge=1,
        le=7 * 24 * 3600,
        description="TTL for cached freeze-authority lookups",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str | None) -> str | None:
        """Validate Redis URL format."""
        if v is None:
            return v
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class AuditSettings(BaseSettings):
    """Append-only audit trail files."""

    model_config = SettingsConfigDict(env_prefix="AUDIT_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="AUDIT_ENABLED",
        description="Write raw notifications and detail records to disk",
    )
    transactions_path: Path = Field(
        default=Path("transactions.log"),
        alias="AUDIT_TRANSACTIONS_PATH",
        description="JSON-lines file for raw notifications",
    )
    detailed_info_path: Path = Field(
        default=Path("detailed_info.log"),
        alias="AUDIT_DETAILED_INFO_PATH",
        description="JSON-lines file for transaction detail records",
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from handoff_trader.config import get_settings

        settings = get_settings()
        print(settings.wallets.seller)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    # NOTE: Each nested BaseSettings must be given the same env_file, otherwise it
    # will only read from the process environment (and ignore `.env`).
    helius: HeliusSettings = Field(
        default_factory=lambda: HeliusSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    solana: SolanaSettings = Field(
        default_factory=lambda: SolanaSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    jupiter: JupiterSettings = Field(
        default_factory=lambda: JupiterSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    wallets: WalletSettings = Field(
        default_factory=lambda: WalletSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    strategy: StrategySettings = Field(
        default_factory=lambda: StrategySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    trade: TradeSettings = Field(
        default_factory=lambda: TradeSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    rate_limit: RateLimitSettings = Field(
        default_factory=lambda: RateLimitSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    dedup: DedupSettings = Field(
        default_factory=lambda: DedupSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    audit: AuditSettings = Field(
        default_factory=lambda: AuditSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )

    # Application settings
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO",
        alias="LOG_LEVEL",
        description="Logging level",
    )
    webhook_host: str = Field(
        default="0.0.0.0",
        alias="WEBHOOK_HOST",
        description="Bind address for the webhook server",
    )
    webhook_port: int = Field(
        default=3000,
        alias="WEBHOOK_PORT",
        description="HTTP port for the webhook server",
        ge=1,
        le=65535,
    )
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Quote trades but never sign or submit them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "helius": {
                "ws_url": self.helius.ws_url,
                "api_url": self.helius.api_url,
                "api_key": "(set)" if self.helius.api_key else "(not set)",
            },
            "solana_rpc_url": self.solana.rpc_url,
            "jupiter_api_url": self.jupiter.api_url,
            "wallets": {
                "seller": self.wallets.seller or "(not set)",
                "distrib": self.wallets.distrib or "(not set)",
                "private_key": "(set)" if self.wallets.private_key else "(not set)",
                "profit_address": self.wallets.profit_address or "(not set)",
            },
            "strategy": {
                "seed_target_sol": str(self.strategy.seed_target_sol),
                "seed_tolerance_sol": str(self.strategy.seed_tolerance_sol),
                "buy_delay_seconds": f"{self.strategy.buy_delay_min_seconds}-{self.strategy.buy_delay_max_seconds}",
                "sell_after_receipts": str(self.strategy.sell_after_receipts),
            },
            "trade": {
                "buy_pct": str(self.trade.buy_pct),
                "sell_pct": str(self.trade.sell_pct),
                "slippage_bps": str(self.trade.slippage_bps),
                "max_attempts": str(self.trade.max_attempts),
            },
            "redis_url": self._redact_url(self.redis.url) if self.redis.url else "(not set)",
            "log_level": self.log_level,
            "webhook_port": str(self.webhook_port),
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run", "webhook"]) -> None:
        """Validate command-specific requirements.

        Missing credentials are a startup failure; nothing downstream
        tries to recover from them at runtime.
        """
        if not self.wallets.seller or not self.wallets.distrib:
            raise ValueError("WALLET_SELLER and WALLET_DISTRIB are required")
        if command == "run" and not self.helius.api_key:
            raise ValueError("API_KEY is required for the Helius logs stream")
        if not self.dry_run and not self.wallets.private_key:
            raise ValueError("PRIVATE_KEY is required unless DRY_RUN is enabled")

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact password from URL if present."""
        if "@" in url and "://" in url:
            protocol_end = url.index("://") + 3
            at_pos = url.index("@")
            creds_part = url[protocol_end:at_pos]
            if ":" in creds_part:
                username = creds_part.split(":")[0]
                return f"{url[:protocol_end]}{username}:***@{url[at_pos + 1 :]}"
        return url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the application settings singleton.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If required environment variables are missing
            or have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()

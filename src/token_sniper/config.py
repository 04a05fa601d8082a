"""Configuration management service with Pydantic Settings.

This module provides centralized configuration management for the
token sniper, loading and validating environment variables at startup.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

_ENV_FILE = ".env"
_ENV_FILE_ENCODING = "utf-8"


def _validate_ws_url(v: str) -> str:
    if not v.startswith(("ws://", "wss://")):
        raise ValueError("WebSocket URL must start with ws:// or wss://")
    return v


def _validate_http_url(v: str) -> str:
    if not v.startswith(("http://", "https://")):
        raise ValueError("URL must be an HTTP(S) endpoint")
    return v.rstrip("/")


class RedisSettings(BaseSettings):
    """Redis connection settings (metadata cache and config store)."""

    model_config = SettingsConfigDict(env_prefix="REDIS_", extra="ignore")

    enabled: bool = Field(
        default=False,
        alias="REDIS_ENABLED",
        description="Use Redis for the metadata cache and the config store",
    )
    url: str = Field(
        default="redis://localhost:6379",
        alias="REDIS_URL",
        description="Redis connection string",
    )
    config_key: str = Field(
        default="token_sniper:configs",
        alias="REDIS_CONFIG_KEY",
        description="Hash key holding serialized sniper configs",
    )
    config_channel: str = Field(
        default="token_sniper:configs:changed",
        alias="REDIS_CONFIG_CHANNEL",
        description="Pub/sub channel announcing config changes",
    )

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate Redis URL format."""
        if not v.startswith(("redis://", "rediss://")):
            raise ValueError("REDIS_URL must start with redis:// or rediss://")
        return v


class PumpPortalSettings(BaseSettings):
    """PumpPortal stream and Lightning trade settings."""

    model_config = SettingsConfigDict(env_prefix="PUMPPORTAL_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="PUMPPORTAL_ENABLED",
        description="Subscribe to the PumpPortal new-token stream",
    )
    ws_url: str = Field(
        default="wss://pumpportal.fun/api/data",
        alias="PUMPPORTAL_WS_URL",
        description="PumpPortal data WebSocket URL",
    )
    trade_url: str = Field(
        default="https://pumpportal.fun/api/lightning",
        alias="PUMPPORTAL_TRADE_URL",
        description="PumpPortal Lightning trade endpoint",
    )
    api_key: SecretStr | None = Field(
        default=None,
        alias="PUMPPORTAL_API_KEY",
        description="Optional Lightning API key",
    )
    heartbeat_interval_seconds: int = Field(
        default=30,
        alias="PUMPPORTAL_HEARTBEAT_INTERVAL_SECONDS",
        ge=1,
        le=600,
        description="Seconds between heartbeat pings while connected",
    )

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        return _validate_ws_url(v)

    @field_validator("trade_url")
    @classmethod
    def validate_trade_url(cls, v: str) -> str:
        return _validate_http_url(v)


class HeliusSettings(BaseSettings):
    """Helius stream, DAS and sender settings."""

    model_config = SettingsConfigDict(env_prefix="HELIUS_", extra="ignore")

    api_key: SecretStr | None = Field(
        default=None,
        alias="HELIUS_API_KEY",
        description="Helius API key (stream, DAS and sender)",
    )
    stream_enabled: bool = Field(
        default=True,
        alias="HELIUS_STREAM_ENABLED",
        description="Subscribe to Helius transaction notifications",
    )
    das_enabled: bool = Field(
        default=True,
        alias="HELIUS_DAS_ENABLED",
        description="Poll Helius DAS for newly created fungible assets",
    )
    ws_url: str = Field(
        default="wss://atlas-mainnet.helius-rpc.com",
        alias="HELIUS_WS_URL",
        description="Helius enhanced WebSocket URL",
    )
    rpc_url: str = Field(
        default="https://mainnet.helius-rpc.com",
        alias="HELIUS_RPC_URL",
        description="Helius JSON-RPC URL used for DAS calls",
    )
    sender_url: str = Field(
        default="https://ewr-sender.helius-rpc.com/fast",
        alias="HELIUS_SENDER_URL",
        description="Low-latency transaction relay",
    )
    heartbeat_interval_seconds: int = Field(
        default=30,
        alias="HELIUS_HEARTBEAT_INTERVAL_SECONDS",
        ge=1,
        le=600,
    )
    das_poll_interval_seconds: int = Field(
        default=30,
        alias="HELIUS_DAS_POLL_INTERVAL_SECONDS",
        ge=5,
        le=3600,
        description="Seconds between DAS polls",
    )
    das_page_size: int = Field(
        default=20,
        alias="HELIUS_DAS_PAGE_SIZE",
        ge=1,
        le=1000,
    )

    @field_validator("ws_url")
    @classmethod
    def validate_ws_url(cls, v: str) -> str:
        """Validate WebSocket URL format."""
        return _validate_ws_url(v)

    @field_validator("rpc_url", "sender_url")
    @classmethod
    def validate_http_url(cls, v: str) -> str:
        """Validate HTTP URL format."""
        return _validate_http_url(v)

    @property
    def enabled(self) -> bool:
        """Check if any Helius-backed feature can run."""
        return self.api_key is not None


class DexScreenerSettings(BaseSettings):
    """DexScreener polling settings."""

    model_config = SettingsConfigDict(env_prefix="DEXSCREENER_", extra="ignore")

    enabled: bool = Field(
        default=True,
        alias="DEXSCREENER_ENABLED",
        description="Poll DexScreener for newly created Solana pairs",
    )
    base_url: str = Field(
        default="https://api.dexscreener.com",
        alias="DEXSCREENER_BASE_URL",
    )
    poll_interval_seconds: int = Field(
        default=30,
        alias="DEXSCREENER_POLL_INTERVAL_SECONDS",
        ge=5,
        le=3600,
    )

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        return _validate_http_url(v)


class IngestSettings(BaseSettings):
    """Normalization and deduplication settings."""

    model_config = SettingsConfigDict(env_prefix="INGEST_", extra="ignore")

    sol_usd_price: Decimal = Field(
        default=Decimal("100"),
        alias="INGEST_SOL_USD_PRICE",
        gt=0,
        description="SOL/USD rate used to convert bonding-curve amounts",
    )
    dedup_max_entries: int = Field(
        default=1000,
        alias="INGEST_DEDUP_MAX_ENTRIES",
        ge=10,
        le=1_000_000,
        description="Seen-set size that triggers a trim",
    )
    dedup_trim_to: int = Field(
        default=500,
        alias="INGEST_DEDUP_TRIM_TO",
        ge=1,
        le=1_000_000,
        description="Number of most-recent ids kept after a trim",
    )
    event_queue_size: int = Field(
        default=10_000,
        alias="INGEST_EVENT_QUEUE_SIZE",
        ge=10,
        le=1_000_000,
    )


class EnrichmentSettings(BaseSettings):
    """Off-chain metadata enrichment settings."""

    model_config = SettingsConfigDict(env_prefix="ENRICHMENT_", extra="ignore")

    enabled: bool = Field(default=True, alias="ENRICHMENT_ENABLED")
    timeout_seconds: float = Field(
        default=5.0,
        alias="ENRICHMENT_TIMEOUT_SECONDS",
        gt=0,
        le=60,
        description="Per-request timeout for metadata fetches",
    )
    max_concurrency: int = Field(
        default=4,
        alias="ENRICHMENT_MAX_CONCURRENCY",
        ge=1,
        le=64,
        description="Maximum concurrent metadata fetches",
    )
    request_delay_ms: int = Field(
        default=500,
        alias="ENRICHMENT_REQUEST_DELAY_MS",
        ge=0,
        le=60_000,
        description="Delay each worker observes between fetches",
    )
    queue_size: int = Field(
        default=1000,
        alias="ENRICHMENT_QUEUE_SIZE",
        ge=1,
        le=100_000,
        description="Pending enrichment jobs before new jobs are skipped",
    )
    ipfs_gateways: Annotated[tuple[str, ...], NoDecode] = Field(
        default=("https://ipfs.io/ipfs/", "https://gateway.ipfs.io/ipfs/"),
        alias="ENRICHMENT_IPFS_GATEWAYS",
        description="IPFS gateways tried in order",
    )
    cache_ttl_seconds: int = Field(
        default=24 * 3600,
        alias="ENRICHMENT_CACHE_TTL_SECONDS",
        ge=60,
        le=30 * 24 * 3600,
        description="Redis TTL for cached metadata documents",
    )

    @field_validator("ipfs_gateways", mode="before")
    @classmethod
    def _parse_gateways(cls, v: object) -> tuple[str, ...]:
        if isinstance(v, str):
            parts = [p.strip() for p in v.split(",") if p.strip()]
        elif isinstance(v, (list, tuple)):
            parts = [str(x) for x in v]
        else:
            raise TypeError("Invalid ENRICHMENT_IPFS_GATEWAYS type")
        if not parts:
            raise ValueError("ENRICHMENT_IPFS_GATEWAYS must name at least one gateway")
        return tuple(p if p.endswith("/") else f"{p}/" for p in parts)


class RepositorySettings(BaseSettings):
    """Pair repository and match history settings."""

    model_config = SettingsConfigDict(env_prefix="REPOSITORY_", extra="ignore")

    capacity: int = Field(
        default=200,
        alias="REPOSITORY_CAPACITY",
        ge=1,
        le=10_000,
        description="Maximum pairs held before FIFO eviction",
    )
    match_history_size: int = Field(
        default=50,
        alias="REPOSITORY_MATCH_HISTORY_SIZE",
        ge=1,
        le=10_000,
    )


class ExecutionSettings(BaseSettings):
    """Trade execution settings."""

    model_config = SettingsConfigDict(env_prefix="EXECUTION_", extra="ignore")

    provider: Literal["direct", "routed"] = Field(
        default="direct",
        alias="EXECUTION_PROVIDER",
        description="Active execution provider",
    )
    jupiter_url: str = Field(
        default="https://quote-api.jup.ag/v6",
        alias="EXECUTION_JUPITER_URL",
        description="Route aggregator base URL",
    )
    signing_service_url: str | None = Field(
        default=None,
        alias="EXECUTION_SIGNING_SERVICE_URL",
        description="External signing service base URL",
    )
    signing_service_token: SecretStr | None = Field(
        default=None,
        alias="EXECUTION_SIGNING_SERVICE_TOKEN",
    )
    jito_tip_sol: Decimal = Field(
        default=Decimal("0.001"),
        alias="EXECUTION_JITO_TIP_SOL",
        ge=Decimal("0.001"),
        description="Tip attached to relayed transactions",
    )
    request_timeout_seconds: float = Field(
        default=10.0,
        alias="EXECUTION_REQUEST_TIMEOUT_SECONDS",
        gt=0,
        le=120,
    )
    history_size: int = Field(
        default=500,
        alias="EXECUTION_HISTORY_SIZE",
        ge=1,
        le=100_000,
        description="Transaction results retained for statistics",
    )
    wallets: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict,
        alias="EXECUTION_WALLETS",
        description="Wallet id to public key, as id:pubkey pairs separated by commas",
    )

    @field_validator("wallets", mode="before")
    @classmethod
    def _parse_wallets(cls, v: object) -> dict[str, str]:
        if v is None or v == "":
            return {}
        if isinstance(v, dict):
            return {str(k): str(val) for k, val in v.items()}
        if isinstance(v, str):
            wallets: dict[str, str] = {}
            for item in v.split(","):
                item = item.strip()
                if not item:
                    continue
                wallet_id, sep, public_key = item.partition(":")
                if not sep or not wallet_id.strip() or not public_key.strip():
                    raise ValueError(f"Invalid wallet entry: {item!r} (expected id:pubkey)")
                wallets[wallet_id.strip()] = public_key.strip()
            return wallets
        raise ValueError("EXECUTION_WALLETS must be a comma-separated string")

    @field_validator("jupiter_url")
    @classmethod
    def validate_jupiter_url(cls, v: str) -> str:
        return _validate_http_url(v)

    @field_validator("signing_service_url")
    @classmethod
    def validate_signing_url(cls, v: str | None) -> str | None:
        if v is None:
            return v
        return _validate_http_url(v)


class SafetySettings(BaseSettings):
    """Manual confirmation settings."""

    model_config = SettingsConfigDict(env_prefix="SAFETY_", extra="ignore")

    confirmation_timeout_seconds: int = Field(
        default=120,
        alias="SAFETY_CONFIRMATION_TIMEOUT",
        ge=1,
        le=24 * 3600,
        description="Seconds a match waits for approval before it is withdrawn",
    )
    max_pending: int = Field(
        default=50,
        alias="SAFETY_MAX_PENDING",
        ge=1,
        le=10_000,
    )


class Settings(BaseSettings):
    """Main application settings.

    Loads configuration from environment variables with support for
    .env files via python-dotenv.

    Example:
        ```python
        from token_sniper.config import get_settings

        settings = get_settings()
        print(settings.execution.provider)
        print(settings.log_level)
        ```
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding=_ENV_FILE_ENCODING,
        extra="ignore",
    )

    redis: RedisSettings = Field(
        default_factory=lambda: RedisSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    pumpportal: PumpPortalSettings = Field(
        default_factory=lambda: PumpPortalSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    helius: HeliusSettings = Field(
        default_factory=lambda: HeliusSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    dexscreener: DexScreenerSettings = Field(
        default_factory=lambda: DexScreenerSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    ingest: IngestSettings = Field(
        default_factory=lambda: IngestSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    enrichment: EnrichmentSettings = Field(
        default_factory=lambda: EnrichmentSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    repository: RepositorySettings = Field(
        default_factory=lambda: RepositorySettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    execution: ExecutionSettings = Field(
        default_factory=lambda: ExecutionSettings(
            _env_file=_ENV_FILE,
            _env_file_encoding=_ENV_FILE_ENCODING,
        )
    )
    safety: SafetySettings = Field(
        default_factory=lambda: SafetySettings(
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
    dry_run: bool = Field(
        default=False,
        alias="DRY_RUN",
        description="Authorize and log trades without submitting them",
    )

    def get_logging_level(self) -> int:
        """Get the numeric logging level."""
        level: int = getattr(logging, self.log_level)
        return level

    def enabled_sources(self) -> list[str]:
        """Names of the source connectors that can run with current settings."""
        sources: list[str] = []
        if self.pumpportal.enabled:
            sources.append("pumpportal")
        if self.helius.enabled and self.helius.stream_enabled:
            sources.append("helius")
        if self.helius.enabled and self.helius.das_enabled:
            sources.append("helius_das")
        if self.dexscreener.enabled:
            sources.append("dexscreener")
        return sources

    def redacted_summary(self) -> dict[str, str | dict[str, str]]:
        """Get a summary of settings with secrets redacted.

        Returns:
            Dictionary of settings with sensitive values masked.
        """
        return {
            "redis_url": self._redact_url(self.redis.url) if self.redis.enabled else "(disabled)",
            "pumpportal": {
                "enabled": str(self.pumpportal.enabled),
                "ws_url": self.pumpportal.ws_url,
                "api_key": "(set)" if self.pumpportal.api_key else "(not set)",
            },
            "helius": {
                "api_key": "(set)" if self.helius.api_key else "(not set)",
                "stream_enabled": str(self.helius.stream_enabled),
                "das_enabled": str(self.helius.das_enabled),
            },
            "dexscreener": {
                "enabled": str(self.dexscreener.enabled),
                "poll_interval_seconds": str(self.dexscreener.poll_interval_seconds),
            },
            "enrichment": {
                "timeout_seconds": str(self.enrichment.timeout_seconds),
                "max_concurrency": str(self.enrichment.max_concurrency),
            },
            "repository": {
                "capacity": str(self.repository.capacity),
            },
            "execution": {
                "provider": self.execution.provider,
                "signing_service_url": self.execution.signing_service_url or "(not set)",
                "signing_service_token": "(set)" if self.execution.signing_service_token else "(not set)",
                "jito_tip_sol": str(self.execution.jito_tip_sol),
            },
            "sources": ", ".join(self.enabled_sources()) or "(none)",
            "log_level": self.log_level,
            "dry_run": str(self.dry_run),
        }

    def validate_requirements(self, *, command: Literal["run", "check-config"]) -> None:
        """Validate command-specific requirements.

        Missing execution credentials only disable the affected provider;
        running with no source at all is refused.
        """
        if command == "run" and not self.enabled_sources():
            raise ValueError("No source connector is enabled (set PUMPPORTAL_ENABLED or HELIUS_API_KEY)")
        if self.ingest.dedup_trim_to >= self.ingest.dedup_max_entries:
            raise ValueError("INGEST_DEDUP_TRIM_TO must be smaller than INGEST_DEDUP_MAX_ENTRIES")

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

    Uses LRU cache to ensure settings are loaded only once and
    reused across the application.

    Returns:
        The Settings instance.

    Raises:
        ValidationError: If environment variables have invalid values.
    """
    return Settings()


def clear_settings_cache() -> None:
    """Clear the settings cache.

    Useful for testing when you need to reload settings with
    different environment variables.
    """
    get_settings.cache_clear()

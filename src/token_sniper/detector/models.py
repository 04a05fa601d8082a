"""Data models for the detector module."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from token_sniper.ingestor.models import TradingPair

DEFAULT_BUY_AMOUNT = Decimal("0.1")
DEFAULT_SLIPPAGE = Decimal("10")
DEFAULT_MAX_GAS = Decimal("0.0005")
DEFAULT_MAX_DAILY_SPEND = Decimal("1")
DEFAULT_MAX_SUPPLY = Decimal("1000000000")
DEFAULT_COOLDOWN_SECONDS = 300

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off"})


def _utcnow() -> datetime:
    return datetime.now(UTC)


def _decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _amount(value: Any, default: Decimal) -> Decimal:
    parsed = _decimal(value)
    return default if parsed is None else parsed


def _flag(value: Any, default: bool) -> bool:
    """Parse a stored boolean; strings such as "false" or "0" are False."""
    if value is None or value == "":
        return default
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(f"not a boolean: {value!r}")
    return bool(value)


def _strings(value: Any) -> tuple[str, ...]:
    """Accept a list or a comma-separated string; drop blanks."""
    if value is None:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(s.strip() for s in value if isinstance(s, str) and s.strip())


def _datetime(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=UTC)
    return datetime.fromisoformat(str(value))


@dataclass(frozen=True)
class SniperConfig:
    """A user-defined rule set for automated purchases.

    Amounts (``buy_amount``, ``max_gas``, ``max_daily_spend``) are in SOL and
    ``slippage`` is a percentage. ``min_liquidity`` is in USD, the unit every
    pair's liquidity is normalized to; bonding-curve SOL reserves are
    converted at ``INGEST_SOL_USD_PRICE``.

    ``last_trade_timestamp`` and ``cumulative_spend_today`` are the
    persisted safety state; the safety controller seeds itself from them.
    """

    id: str
    name: str
    enabled: bool = True
    keywords: tuple[str, ...] = ()
    blacklist: tuple[str, ...] = ()
    twitter_accounts: tuple[str, ...] = ()
    min_liquidity: Decimal = Decimal("0")
    max_supply: Decimal | None = DEFAULT_MAX_SUPPLY
    creator_address: str | None = None

    buy_amount: Decimal = DEFAULT_BUY_AMOUNT
    slippage: Decimal = DEFAULT_SLIPPAGE
    max_gas: Decimal = DEFAULT_MAX_GAS
    stagger_delay_ms: int = 0
    trading_pool: str = "pump"
    selected_wallets: tuple[str, ...] = ()

    max_daily_spend: Decimal = DEFAULT_MAX_DAILY_SPEND
    cooldown_period: int = DEFAULT_COOLDOWN_SECONDS
    require_confirmation: bool = False

    last_trade_timestamp: datetime | None = None
    cumulative_spend_today: Decimal = Decimal("0")
    last_updated: datetime = field(default_factory=_utcnow)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SniperConfig:
        """Create a SniperConfig from its stored dictionary form.

        Raises:
            ValueError: If ``id`` is missing or a numeric or boolean field is
                malformed.
        """
        config_id = data.get("id")
        if not config_id:
            raise ValueError("config id is required")
        try:
            return cls(
                id=str(config_id),
                name=str(data.get("name") or config_id),
                enabled=_flag(data.get("enabled"), True),
                keywords=_strings(data.get("keywords")),
                blacklist=_strings(data.get("blacklist")),
                twitter_accounts=_strings(data.get("twitter_accounts")),
                min_liquidity=_amount(data.get("min_liquidity"), Decimal("0")),
                max_supply=_decimal(data["max_supply"]) if "max_supply" in data else DEFAULT_MAX_SUPPLY,
                creator_address=data.get("creator_address") or None,
                buy_amount=_amount(data.get("buy_amount"), DEFAULT_BUY_AMOUNT),
                slippage=_amount(data.get("slippage"), DEFAULT_SLIPPAGE),
                max_gas=_amount(data.get("max_gas"), DEFAULT_MAX_GAS),
                stagger_delay_ms=int(data.get("stagger_delay_ms") or 0),
                trading_pool=str(data.get("trading_pool") or "pump"),
                selected_wallets=_strings(data.get("selected_wallets")),
                max_daily_spend=_amount(data.get("max_daily_spend"), DEFAULT_MAX_DAILY_SPEND),
                cooldown_period=int(data.get("cooldown_period", DEFAULT_COOLDOWN_SECONDS)),
                require_confirmation=_flag(data.get("require_confirmation"), False),
                last_trade_timestamp=_datetime(data.get("last_trade_timestamp")),
                cumulative_spend_today=_amount(data.get("cumulative_spend_today"), Decimal("0")),
                last_updated=_datetime(data.get("last_updated")) or _utcnow(),
            )
        except (ArithmeticError, TypeError) as e:
            raise ValueError(f"Malformed config {config_id}: {e}") from e

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "enabled": self.enabled,
            "keywords": list(self.keywords),
            "blacklist": list(self.blacklist),
            "twitter_accounts": list(self.twitter_accounts),
            "min_liquidity": str(self.min_liquidity),
            "max_supply": str(self.max_supply) if self.max_supply is not None else None,
            "creator_address": self.creator_address,
            "buy_amount": str(self.buy_amount),
            "slippage": str(self.slippage),
            "max_gas": str(self.max_gas),
            "stagger_delay_ms": self.stagger_delay_ms,
            "trading_pool": self.trading_pool,
            "selected_wallets": list(self.selected_wallets),
            "max_daily_spend": str(self.max_daily_spend),
            "cooldown_period": self.cooldown_period,
            "require_confirmation": self.require_confirmation,
            "last_trade_timestamp": (
                self.last_trade_timestamp.isoformat() if self.last_trade_timestamp else None
            ),
            "cumulative_spend_today": str(self.cumulative_spend_today),
            "last_updated": self.last_updated.isoformat(),
        }


@dataclass(frozen=True)
class TokenMatch:
    """A pair that satisfied every required condition of a configuration.

    Attributes:
        config: The configuration that matched, as evaluated.
        pair: The pair that matched.
        score: Sum of the contributing signal weights.
        reasons: Human-readable description of each contributing signal.
            Never empty.
        timestamp: When the match was produced.
    """

    config: SniperConfig
    pair: TradingPair
    score: int
    reasons: tuple[str, ...]
    timestamp: datetime = field(default_factory=_utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    def __post_init__(self) -> None:
        if not self.reasons:
            raise ValueError("a TokenMatch requires at least one reason")

    @property
    def config_id(self) -> str:
        return self.config.id

    @property
    def pair_id(self) -> str:
        return self.pair.id

    def to_dict(self) -> dict[str, object]:
        """Serialize for sinks."""
        return {
            "id": self.id,
            "config_id": self.config.id,
            "config_name": self.config.name,
            "pair_id": self.pair.id,
            "symbol": self.pair.symbol,
            "name": self.pair.name,
            "score": self.score,
            "reasons": list(self.reasons),
            "timestamp": self.timestamp.isoformat(),
        }

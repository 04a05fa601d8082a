"""Data models for the ingestor module."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

WRAPPED_SOL_MINT = "So11111111111111111111111111111111111111112"


def _utcnow() -> datetime:
    return datetime.now(UTC)


class MigrationStatus(str, Enum):
    """Lifecycle stage of a token's liquidity."""

    PRE_MIGRATION = "preMigration"
    MIGRATING = "migrating"
    MIGRATED = "migrated"
    FAILED = "failed"


@dataclass(frozen=True)
class RawEvent:
    """A provider-specific payload as received from a source connector."""

    source: str
    payload: dict[str, Any]
    received_at: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class TokenEvent:
    """Canonical description of a token sighting.

    Financial fields keep the unit the source reported them in: the
    ``*_sol`` fields come from bonding-curve sources, the ``*_usd`` fields
    from market aggregators. ``None`` means the source did not carry it.
    """

    mint: str
    name: str
    symbol: str
    source: str
    created_at: datetime
    description: str | None = None
    image: str | None = None
    creator: str | None = None
    metadata_uri: str | None = None
    social_links: tuple[str, ...] = ()

    liquidity_sol: Decimal | None = None
    market_cap_sol: Decimal | None = None
    volume_sol: Decimal | None = None
    total_supply: Decimal | None = None

    liquidity_usd: Decimal | None = None
    market_cap_usd: Decimal | None = None
    volume_24h_usd: Decimal | None = None
    price_change_24h: Decimal | None = None

    dex: str | None = None
    pair_address: str | None = None
    quote_mint: str | None = None
    quote_symbol: str | None = None
    migrated: bool | None = None


@dataclass(frozen=True)
class TokenInfo:
    """One side of a trading pair."""

    address: str
    name: str
    symbol: str

    def to_dict(self) -> dict[str, str]:
        return {"address": self.address, "name": self.name, "symbol": self.symbol}


SOL_TOKEN = TokenInfo(address=WRAPPED_SOL_MINT, name="Wrapped SOL", symbol="SOL")


@dataclass(frozen=True)
class EnrichedMetadata:
    """Off-chain descriptive metadata resolved for a token."""

    description: str
    verified: bool
    resolved_image_url: str | None = None
    name: str | None = None
    social_links: tuple[str, ...] = ()
    tags: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "description": self.description,
            "verified": self.verified,
            "resolved_image_url": self.resolved_image_url,
            "name": self.name,
            "social_links": list(self.social_links),
            "tags": list(self.tags),
        }


@dataclass(frozen=True)
class TradingPair:
    """A tradeable token paired with its quote asset on one venue.

    ``id`` is the base token mint. Liquidity, volume and market cap are in
    USD and ``None`` when the source did not report them.
    """

    id: str
    base_token: TokenInfo
    quote_token: TokenInfo
    dex: str
    created_at: datetime
    migration_status: MigrationStatus
    risk_score: int
    source: str
    liquidity: Decimal | None = None
    volume_24h: Decimal | None = None
    price_change_24h: Decimal | None = None
    market_cap: Decimal | None = None
    total_supply: Decimal | None = None
    description: str | None = None
    image_url: str | None = None
    creator: str | None = None
    metadata_uri: str | None = None
    social_links: tuple[str, ...] = ()
    pair_address: str | None = None
    enriched_metadata: EnrichedMetadata | None = None

    @property
    def name(self) -> str:
        return self.base_token.name

    @property
    def symbol(self) -> str:
        return self.base_token.symbol

    @property
    def effective_description(self) -> str:
        """Description from enrichment when available, otherwise the inline one."""
        if self.enriched_metadata and self.enriched_metadata.description:
            return self.enriched_metadata.description
        return self.description or ""

    @property
    def all_social_links(self) -> tuple[str, ...]:
        """Inline and enriched social links, deduplicated in first-seen order."""
        links = list(self.social_links)
        if self.enriched_metadata:
            links.extend(self.enriched_metadata.social_links)
        return tuple(dict.fromkeys(links))

    def age_seconds(self, now: datetime | None = None) -> float:
        now = now or _utcnow()
        return (now - self.created_at).total_seconds()

    def with_enrichment(self, metadata: EnrichedMetadata, *, risk_score: int | None = None) -> TradingPair:
        """Return a copy carrying ``metadata`` (and an adjusted risk score)."""
        base_token = self.base_token
        if metadata.name:
            base_token = replace(base_token, name=metadata.name)
        return replace(
            self,
            base_token=base_token,
            enriched_metadata=metadata,
            risk_score=self.risk_score if risk_score is None else risk_score,
        )

    def with_market_data(self, other: TradingPair) -> TradingPair:
        """Return a copy updated with the known market fields of ``other``.

        Identity, descriptive fields and enrichment are kept; a migration
        reported by ``other`` is adopted.
        """

        def pick(new: Decimal | None, old: Decimal | None) -> Decimal | None:
            return new if new is not None else old

        status = self.migration_status
        if other.migration_status in (MigrationStatus.MIGRATED, MigrationStatus.FAILED):
            status = other.migration_status
        return replace(
            self,
            liquidity=pick(other.liquidity, self.liquidity),
            volume_24h=pick(other.volume_24h, self.volume_24h),
            price_change_24h=pick(other.price_change_24h, self.price_change_24h),
            market_cap=pick(other.market_cap, self.market_cap),
            total_supply=pick(other.total_supply, self.total_supply),
            pair_address=other.pair_address or self.pair_address,
            migration_status=status,
        )

    def to_dict(self) -> dict[str, Any]:
        def _dec(value: Decimal | None) -> str | None:
            return str(value) if value is not None else None

        return {
            "id": self.id,
            "base_token": self.base_token.to_dict(),
            "quote_token": self.quote_token.to_dict(),
            "dex": self.dex,
            "created_at": self.created_at.isoformat(),
            "migration_status": self.migration_status.value,
            "risk_score": self.risk_score,
            "source": self.source,
            "liquidity": _dec(self.liquidity),
            "volume_24h": _dec(self.volume_24h),
            "price_change_24h": _dec(self.price_change_24h),
            "market_cap": _dec(self.market_cap),
            "total_supply": _dec(self.total_supply),
            "social_links": list(self.social_links),
            "enriched_metadata": self.enriched_metadata.to_dict() if self.enriched_metadata else None,
        }

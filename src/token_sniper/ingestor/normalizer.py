"""Normalize provider payloads into TokenEvent and TradingPair values.

A payload missing its identity (mint, name, symbol) raises
:class:`ParseError`. Any optional field that is absent or garbled is left
as ``None`` instead of being estimated.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from token_sniper.ingestor.links import dedupe_links, inline_links
from token_sniper.ingestor.models import (
    SOL_TOKEN,
    WRAPPED_SOL_MINT,
    MigrationStatus,
    RawEvent,
    TokenEvent,
    TokenInfo,
    TradingPair,
)

logger = logging.getLogger(__name__)

MAX_LIQUIDITY_USD = Decimal("1000000")
MAX_MARKET_CAP_USD = Decimal("10000000")
MAX_EVENT_VOLUME_USD = Decimal("50000")
DEFAULT_SOL_USD_PRICE = Decimal("100")

PUMP_DEX = "pump.fun"
MARKET_SOURCES = frozenset({"dexscreener"})
RISKY_NAME_WORDS = ("moon", "rocket", "100x", "gem", "diamond")

_IMAGE_FIELDS = ("image", "imageUri", "imageUrl", "logoUri", "logoUrl")
_METADATA_URI_FIELDS = ("metadataUri", "metadataUrl", "tokenUri", "uri")
_MINT_INSTRUCTIONS = frozenset({"initializeMint", "initializeMint2"})


class ParseError(ValueError):
    """Raised when a provider payload cannot be turned into a token event."""


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return None


def _first_text(data: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = _text(data.get(key))
        if value:
            return value
    return None


def _decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    if not result.is_finite():
        return None
    return result


def _timestamp_ms(value: Any, fallback: datetime) -> datetime:
    ms = _decimal(value)
    if ms is None or ms <= 0:
        return fallback
    try:
        return datetime.fromtimestamp(float(ms) / 1000, tz=UTC)
    except (OverflowError, OSError, ValueError):
        return fallback


def _require(value: str | None, field_name: str, source: str) -> str:
    if not value:
        raise ParseError(f"{source} payload missing {field_name}")
    return value


def clamp_amount(value: Decimal | None, ceiling: Decimal) -> Decimal | None:
    """Clamp a financial magnitude into ``[0, ceiling]``; ``None`` stays unknown."""
    if value is None:
        return None
    return max(Decimal(0), min(value, ceiling))


def parse_pumpportal(payload: Mapping[str, Any], received_at: datetime) -> TokenEvent:
    """Parse a PumpPortal ``subscribeNewToken`` frame."""
    source = "pumpportal"
    mint = _require(_text(payload.get("mint")), "mint", source)
    name = _require(_text(payload.get("name")), "name", source)
    symbol = _require(_text(payload.get("symbol")), "symbol", source)

    sol_amount = _decimal(payload.get("solAmount"))
    if sol_amount is None:
        sol_amount = _decimal(payload.get("initialBuy"))

    migrated = bool(payload.get("complete")) or bool(_text(payload.get("raydiumPool")))

    return TokenEvent(
        mint=mint,
        name=name,
        symbol=symbol,
        source=source,
        created_at=_timestamp_ms(payload.get("createdTimestamp"), received_at),
        description=_text(payload.get("description")),
        image=_first_text(payload, _IMAGE_FIELDS),
        creator=_text(payload.get("creator")) or _text(payload.get("traderPublicKey")),
        metadata_uri=_first_text(payload, _METADATA_URI_FIELDS),
        social_links=inline_links(payload),
        liquidity_sol=_decimal(payload.get("vSolInBondingCurve")),
        market_cap_sol=_decimal(payload.get("marketCapSol")),
        volume_sol=abs(sol_amount) if sol_amount is not None else None,
        total_supply=_decimal(payload.get("vTokensInBondingCurve")),
        dex=PUMP_DEX,
        pair_address=_text(payload.get("bondingCurveKey")) or _text(payload.get("raydiumPool")),
        migrated=migrated,
    )


def map_dex_id(dex_id: str | None) -> str:
    """Map a DexScreener dexId onto the venue name used across the system."""
    if not dex_id:
        return "unknown"
    lowered = dex_id.lower()
    if lowered in ("pump", "pumpfun", "pumpswap", "pump.fun"):
        return PUMP_DEX
    return lowered


def parse_dexscreener(payload: Mapping[str, Any], received_at: datetime) -> TokenEvent:
    """Parse one entry of DexScreener's ``pairs`` list."""
    source = "dexscreener"
    base = payload.get("baseToken") or {}
    quote = payload.get("quoteToken") or {}
    if not isinstance(base, Mapping) or not isinstance(quote, Mapping):
        raise ParseError("dexscreener payload has malformed token sections")
    mint = _require(_text(base.get("address")), "baseToken.address", source)
    name = _require(_text(base.get("name")), "baseToken.name", source)
    symbol = _require(_text(base.get("symbol")), "baseToken.symbol", source)

    def section(key: str) -> Mapping[str, Any]:
        value = payload.get(key)
        return value if isinstance(value, Mapping) else {}

    info = section("info")
    links: list[str] = []
    for site in info.get("websites") or []:
        if isinstance(site, Mapping) and _text(site.get("url")):
            links.append(site["url"])
    for social in info.get("socials") or []:
        if isinstance(social, Mapping) and _text(social.get("url")):
            links.append(social["url"])

    dex = map_dex_id(_text(payload.get("dexId")))

    return TokenEvent(
        mint=mint,
        name=name,
        symbol=symbol,
        source=source,
        created_at=_timestamp_ms(payload.get("pairCreatedAt"), received_at),
        image=_text(info.get("imageUrl")),
        social_links=dedupe_links(links),
        liquidity_usd=_decimal(section("liquidity").get("usd")),
        market_cap_usd=_decimal(payload.get("marketCap")),
        volume_24h_usd=_decimal(section("volume").get("h24")),
        price_change_24h=_decimal(section("priceChange").get("h24")),
        dex=dex,
        pair_address=_text(payload.get("pairAddress")),
        quote_mint=_text(quote.get("address")),
        quote_symbol=_text(quote.get("symbol")),
        migrated=dex != PUMP_DEX,
    )


def parse_helius_asset(payload: Mapping[str, Any], received_at: datetime) -> TokenEvent:
    """Parse one DAS ``searchAssets`` item."""
    source = "helius_das"
    content = payload.get("content") or {}
    metadata = content.get("metadata") or {} if isinstance(content, Mapping) else {}
    links = content.get("links") or {} if isinstance(content, Mapping) else {}
    if not isinstance(metadata, Mapping) or not isinstance(links, Mapping):
        raise ParseError("helius_das payload has malformed content")

    mint = _require(_text(payload.get("id")), "id", source)
    name = _require(_text(metadata.get("name")), "content.metadata.name", source)
    symbol = _require(_text(metadata.get("symbol")), "content.metadata.symbol", source)

    supply: Decimal | None = None
    token_info = payload.get("token_info")
    if isinstance(token_info, Mapping):
        raw_supply = _decimal(token_info.get("supply"))
        decimals = _decimal(token_info.get("decimals"))
        if raw_supply is not None and decimals is not None and 0 <= decimals <= 18:
            supply = raw_supply / (Decimal(10) ** int(decimals))

    creator = None
    creators = payload.get("creators")
    if isinstance(creators, list) and creators and isinstance(creators[0], Mapping):
        creator = _text(creators[0].get("address"))

    return TokenEvent(
        mint=mint,
        name=name,
        symbol=symbol,
        source=source,
        created_at=received_at,
        description=_text(metadata.get("description")),
        image=_text(links.get("image")),
        creator=creator,
        metadata_uri=_text(content.get("json_uri")) if isinstance(content, Mapping) else None,
        social_links=dedupe_links(v for k, v in links.items() if k != "image" and isinstance(v, str)),
        total_supply=supply,
        migrated=False,
    )


def _account_key(entry: Any) -> str | None:
    if isinstance(entry, Mapping):
        return _text(entry.get("pubkey"))
    return _text(entry)


def _mint_from_instructions(transaction: Mapping[str, Any]) -> str | None:
    message = (transaction.get("transaction") or {}).get("message") or {}
    instructions = list(message.get("instructions") or [])
    for inner in (transaction.get("meta") or {}).get("innerInstructions") or []:
        if isinstance(inner, Mapping):
            instructions.extend(inner.get("instructions") or [])
    for ix in instructions:
        parsed = ix.get("parsed") if isinstance(ix, Mapping) else None
        if isinstance(parsed, Mapping) and parsed.get("type") in _MINT_INSTRUCTIONS:
            mint = _text((parsed.get("info") or {}).get("mint"))
            if mint:
                return mint
    return None


def _mint_from_balances(transaction: Mapping[str, Any]) -> str | None:
    meta = transaction.get("meta") or {}
    before = {b.get("mint") for b in meta.get("preTokenBalances") or [] if isinstance(b, Mapping)}
    after = [b.get("mint") for b in meta.get("postTokenBalances") or [] if isinstance(b, Mapping)]
    fresh = [m for m in after if isinstance(m, str) and m != WRAPPED_SOL_MINT and m not in before]
    if fresh:
        return fresh[0]
    others = [m for m in after if isinstance(m, str) and m != WRAPPED_SOL_MINT]
    return others[0] if others else None


def parse_helius_transaction(payload: Mapping[str, Any], received_at: datetime) -> TokenEvent:
    """Parse a pool-creation or mint notification forwarded by the stream connector."""
    source = "helius"
    transaction = payload.get("transaction")
    if not isinstance(transaction, Mapping):
        raise ParseError("helius payload missing transaction")
    kind = payload.get("kind")

    mint = _mint_from_instructions(transaction) if kind == "mint" else None
    mint = _require(mint or _mint_from_balances(transaction), "mint", source)

    message = (transaction.get("transaction") or {}).get("message") or {}
    keys = message.get("accountKeys") or []
    creator = _account_key(keys[0]) if keys else None

    block_time = _decimal(transaction.get("blockTime"))
    created_at = received_at
    if block_time is not None and block_time > 0:
        created_at = datetime.fromtimestamp(float(block_time), tz=UTC)

    label = mint[:8]
    return TokenEvent(
        mint=mint,
        name=label,
        symbol=label.upper(),
        source=source,
        created_at=created_at,
        creator=creator,
        dex="raydium" if kind == "pool" else None,
        migrated=kind == "pool",
    )


PARSERS: dict[str, Callable[[Mapping[str, Any], datetime], TokenEvent]] = {
    "pumpportal": parse_pumpportal,
    "dexscreener": parse_dexscreener,
    "helius_das": parse_helius_asset,
    "helius": parse_helius_transaction,
}


def bonding_curve_risk(
    *,
    name: str,
    description: str | None,
    liquidity: Decimal | None,
) -> int:
    """Risk score for fresh bonding-curve tokens (USD liquidity)."""
    score = 30
    if liquidity is None:
        score += 15
    else:
        if liquidity < 100:
            score += 20
        if liquidity > 1000:
            score -= 10
        if liquidity > 5000:
            score -= 10
    if len(description or "") < 20:
        score += 10
    lowered = name.lower()
    if any(word in lowered for word in RISKY_NAME_WORDS):
        score += 15
    return max(0, min(100, score))


def market_risk(
    *,
    liquidity: Decimal | None,
    volume_24h: Decimal | None,
    price_change_24h: Decimal | None,
    age_seconds: float | None,
) -> int:
    """Risk score for pairs reported by market aggregators."""
    score = 50
    if liquidity is not None:
        if liquidity < 1000:
            score += 30
        elif liquidity < 10000:
            score += 20
        elif liquidity > 100000:
            score -= 20
    if volume_24h is not None:
        if volume_24h < 1000:
            score += 20
        elif volume_24h > 50000:
            score -= 15
    if age_seconds is not None:
        if age_seconds < 3600:
            score += 25
        elif age_seconds < 86400:
            score += 10
    if price_change_24h is not None and abs(price_change_24h) > 100:
        score += 15
    return max(0, min(100, score))


class Normalizer:
    """Turn raw connector payloads into canonical trading pairs.

    Args:
        sol_usd_price: Rate used to express bonding-curve SOL amounts in USD.
        clock: Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        *,
        sol_usd_price: Decimal = DEFAULT_SOL_USD_PRICE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._sol_usd_price = sol_usd_price
        self._clock = clock or (lambda: datetime.now(UTC))

    def parse(self, raw: RawEvent) -> TokenEvent:
        """Parse a raw payload into a TokenEvent.

        Raises:
            ParseError: If the source is unknown or the payload is malformed.
        """
        parser = PARSERS.get(raw.source)
        if parser is None:
            raise ParseError(f"no parser for source {raw.source!r}")
        if not isinstance(raw.payload, Mapping):
            raise ParseError(f"{raw.source} payload is not an object")
        try:
            return parser(raw.payload, raw.received_at)
        except ParseError:
            raise
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ParseError(f"malformed {raw.source} payload: {e}") from e

    def _usd(self, sol: Decimal | None) -> Decimal | None:
        return sol * self._sol_usd_price if sol is not None else None

    def to_pair(self, event: TokenEvent) -> TradingPair:
        """Build the canonical TradingPair for a TokenEvent."""
        liquidity = event.liquidity_usd if event.liquidity_usd is not None else self._usd(event.liquidity_sol)
        market_cap = event.market_cap_usd if event.market_cap_usd is not None else self._usd(event.market_cap_sol)
        volume = event.volume_24h_usd if event.volume_24h_usd is not None else self._usd(event.volume_sol)

        liquidity = clamp_amount(liquidity, MAX_LIQUIDITY_USD)
        market_cap = clamp_amount(market_cap, MAX_MARKET_CAP_USD)
        volume = clamp_amount(volume, MAX_EVENT_VOLUME_USD)

        if event.source in MARKET_SOURCES:
            risk = market_risk(
                liquidity=liquidity,
                volume_24h=volume,
                price_change_24h=event.price_change_24h,
                age_seconds=(self._clock() - event.created_at).total_seconds(),
            )
        else:
            risk = bonding_curve_risk(name=event.name, description=event.description, liquidity=liquidity)

        if event.quote_mint and event.quote_mint != WRAPPED_SOL_MINT:
            quote = TokenInfo(
                address=event.quote_mint,
                name=event.quote_symbol or event.quote_mint[:8],
                symbol=event.quote_symbol or event.quote_mint[:8],
            )
        else:
            quote = SOL_TOKEN

        return TradingPair(
            id=event.mint,
            base_token=TokenInfo(address=event.mint, name=event.name, symbol=event.symbol),
            quote_token=quote,
            dex=event.dex or "unknown",
            created_at=event.created_at,
            migration_status=MigrationStatus.MIGRATED if event.migrated else MigrationStatus.PRE_MIGRATION,
            risk_score=risk,
            source=event.source,
            liquidity=liquidity,
            volume_24h=volume,
            price_change_24h=event.price_change_24h,
            market_cap=market_cap,
            total_supply=event.total_supply,
            description=event.description,
            image_url=event.image,
            creator=event.creator,
            metadata_uri=event.metadata_uri,
            social_links=event.social_links,
            pair_address=event.pair_address,
        )

    def normalize(self, raw: RawEvent) -> TradingPair:
        """Parse and convert in one step. Raises ParseError like :meth:`parse`."""
        return self.to_pair(self.parse(raw))

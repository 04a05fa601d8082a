"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import pytest

from token_sniper.detector.models import SniperConfig
from token_sniper.ingestor.models import SOL_TOKEN, MigrationStatus, TokenInfo, TradingPair

SAMPLE_MINT = "7GCihgDB8fe6KNjn2MYtkzZcRjQy3t9GHdC8uHYmW2hr"
SAMPLE_CREATOR = "9WzDXwBbmkg8ZTbNMqUxvQRAyrZzDsGYdLVL9zYtAWWM"


def build_pair(**overrides: Any) -> TradingPair:
    """Build a TradingPair with sensible defaults."""
    mint = overrides.pop("id", SAMPLE_MINT)
    name = overrides.pop("name", "Doge Rocket")
    symbol = overrides.pop("symbol", "DROCK")
    values: dict[str, Any] = {
        "id": mint,
        "base_token": TokenInfo(address=mint, name=name, symbol=symbol),
        "quote_token": SOL_TOKEN,
        "dex": "pump.fun",
        "created_at": datetime(2026, 3, 1, 12, 0, tzinfo=UTC),
        "migration_status": MigrationStatus.PRE_MIGRATION,
        "risk_score": 40,
        "source": "pumpportal",
        "liquidity": Decimal("4200"),
        "total_supply": Decimal("800000000"),
        "creator": SAMPLE_CREATOR,
        "description": "A community meme token",
    }
    values.update(overrides)
    return TradingPair(**values)


def build_config(**overrides: Any) -> SniperConfig:
    """Build a SniperConfig with sensible defaults."""
    values: dict[str, Any] = {
        "id": "cfg-1",
        "name": "Doge hunter",
        "keywords": ("doge",),
        "selected_wallets": ("w1",),
        "cooldown_period": 0,
        "last_updated": datetime(2026, 3, 1, tzinfo=UTC),
    }
    values.update(overrides)
    return SniperConfig(**values)


@pytest.fixture
def make_pair() -> Callable[..., TradingPair]:
    """Factory for trading pairs."""
    return build_pair


@pytest.fixture
def make_config() -> Callable[..., SniperConfig]:
    """Factory for sniper configs."""
    return build_config


@pytest.fixture
def sample_pair() -> TradingPair:
    return build_pair()


@pytest.fixture
def sample_config() -> SniperConfig:
    return build_config()


@pytest.fixture
def pumpportal_payload() -> dict[str, Any]:
    """A PumpPortal new-token frame."""
    return {
        "signature": "5Kx...sig",
        "mint": SAMPLE_MINT,
        "traderPublicKey": SAMPLE_CREATOR,
        "txType": "create",
        "initialBuy": 65000000,
        "solAmount": 2.5,
        "bondingCurveKey": "Bc1...curve",
        "vTokensInBondingCurve": 1007000000,
        "vSolInBondingCurve": 32.5,
        "marketCapSol": 31.2,
        "name": "Doge Rocket",
        "symbol": "DROCK",
        "uri": "https://ipfs.io/ipfs/QmTestHash",
        "twitter": "https://x.com/dogerocket",
    }

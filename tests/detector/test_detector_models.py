"""Tests for detector data models."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from token_sniper.detector.models import DEFAULT_MAX_SUPPLY, SniperConfig, TokenMatch


class TestSniperConfig:
    def test_from_dict_full(self) -> None:
        data = {
            "id": "cfg-7",
            "name": "AI hunter",
            "keywords": "ai, agent,,",
            "blacklist": ["scam", "rug"],
            "twitter_accounts": ["@aidev"],
            "min_liquidity": "5.5",
            "max_supply": None,
            "buy_amount": "0.25",
            "slippage": 15,
            "stagger_delay_ms": 250,
            "selected_wallets": ["w1", "w2"],
            "max_daily_spend": "2",
            "cooldown_period": 0,
            "require_confirmation": True,
            "last_trade_timestamp": "2026-03-01T10:00:00+00:00",
            "cumulative_spend_today": "0.5",
        }

        config = SniperConfig.from_dict(data)

        assert config.keywords == ("ai", "agent")
        assert config.blacklist == ("scam", "rug")
        assert config.min_liquidity == Decimal("5.5")
        assert config.max_supply is None
        assert config.buy_amount == Decimal("0.25")
        assert config.slippage == Decimal("15")
        assert config.stagger_delay_ms == 250
        assert config.selected_wallets == ("w1", "w2")
        assert config.cooldown_period == 0
        assert config.require_confirmation is True
        assert config.last_trade_timestamp == datetime(2026, 3, 1, 10, 0, tzinfo=UTC)
        assert config.cumulative_spend_today == Decimal("0.5")

    def test_from_dict_defaults(self) -> None:
        config = SniperConfig.from_dict({"id": "cfg-1"})

        assert config.name == "cfg-1"
        assert config.enabled is True
        assert config.max_supply == DEFAULT_MAX_SUPPLY
        assert config.buy_amount == Decimal("0.1")
        assert config.cooldown_period == 300
        assert config.trading_pool == "pump"

    def test_zero_amounts_are_kept(self) -> None:
        config = SniperConfig.from_dict({"id": "cfg-1", "min_liquidity": 0, "max_gas": "0"})
        assert config.min_liquidity == Decimal("0")
        assert config.max_gas == Decimal("0")

    def test_missing_id(self) -> None:
        with pytest.raises(ValueError, match="id"):
            SniperConfig.from_dict({"name": "no id"})

    def test_malformed_amount(self) -> None:
        with pytest.raises(ValueError, match="Malformed"):
            SniperConfig.from_dict({"id": "cfg-1", "buy_amount": "lots"})

    @pytest.mark.parametrize(
        ("stored", "expected"),
        [("false", False), ("False", False), ("0", False), ("no", False), ("true", True), ("1", True), (0, False)],
    )
    def test_string_flags(self, stored, expected) -> None:
        config = SniperConfig.from_dict({"id": "cfg-1", "enabled": stored, "require_confirmation": stored})

        assert config.enabled is expected
        assert config.require_confirmation is expected

    def test_malformed_flag(self) -> None:
        with pytest.raises(ValueError, match="boolean"):
            SniperConfig.from_dict({"id": "cfg-1", "enabled": "maybe"})

    def test_frozen(self, sample_config) -> None:
        with pytest.raises(AttributeError):
            sample_config.buy_amount = Decimal("1")  # type: ignore[misc]


class TestTokenMatch:
    def test_requires_reasons(self, sample_config, sample_pair) -> None:
        with pytest.raises(ValueError):
            TokenMatch(config=sample_config, pair=sample_pair, score=0, reasons=())

    def test_to_dict(self, sample_config, sample_pair) -> None:
        match = TokenMatch(config=sample_config, pair=sample_pair, score=15, reasons=("Symbol keyword: doge",))
        data = match.to_dict()

        assert data["config_id"] == sample_config.id
        assert data["pair_id"] == sample_pair.id
        assert data["symbol"] == "DROCK"
        assert data["reasons"] == ["Symbol keyword: doge"]
        assert match.config_id == "cfg-1"

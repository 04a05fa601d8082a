"""Tests for the matching engine."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from token_sniper.detector.matcher import (
    CREATOR_WEIGHT,
    DESCRIPTION_KEYWORD_WEIGHT,
    LIQUIDITY_WEIGHT,
    MIN_MATCH_SCORE,
    SUPPLY_WEIGHT,
    SYMBOL_KEYWORD_WEIGHT,
    TWITTER_WEIGHT,
    MatchingEngine,
)
from token_sniper.ingestor.models import EnrichedMetadata

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def engine() -> MatchingEngine:
    return MatchingEngine(history_size=3)


class TestBlacklist:
    def test_blacklisted_name_rejected_despite_keywords(self, engine, make_pair, make_config) -> None:
        pair = make_pair(name="ScamCoin", symbol="SCAM", description="doge to the moon")
        config = make_config(keywords=("doge", "scam"), blacklist=("scam",))

        result = engine.evaluate(pair, config)

        assert result.passed is False
        assert "blacklisted" in result.rejection
        assert engine.match(pair, [config], now=NOW) == []
        assert engine.recent_matches() == []

    def test_blacklist_checks_description(self, engine, make_pair, make_config) -> None:
        pair = make_pair(description="Totally not a rug pull")
        config = make_config(blacklist=("rug",))
        assert engine.evaluate(pair, config).passed is False


class TestThresholds:
    def test_liquidity_below_minimum(self, engine, make_pair, make_config) -> None:
        pair = make_pair(name="Doge Rocket", liquidity=Decimal("3.0"))
        config = make_config(keywords=("doge",), min_liquidity=Decimal("5.0"))

        result = engine.evaluate(pair, config)

        assert result.passed is False
        assert "liquidity" in result.rejection

    def test_liquidity_at_minimum_passes(self, engine, make_pair, make_config) -> None:
        pair = make_pair(liquidity=Decimal("5.0"))
        config = make_config(min_liquidity=Decimal("5.0"))
        assert engine.evaluate(pair, config).passed is True

    def test_supply_above_maximum(self, engine, make_pair, make_config) -> None:
        pair = make_pair(total_supply=Decimal("2000000000"))
        config = make_config(max_supply=Decimal("1000000000"))
        assert engine.evaluate(pair, config).passed is False

    def test_unknown_values_skip_checks(self, engine, make_pair, make_config) -> None:
        pair = make_pair(liquidity=None, total_supply=None)
        config = make_config(min_liquidity=Decimal("1000"))

        result = engine.evaluate(pair, config)

        assert result.passed is True
        assert result.reasons == ("Symbol keyword: doge",)


class TestScoring:
    def test_full_score_and_reasons(self, engine, make_pair, make_config) -> None:
        pair = make_pair(
            name="Doge Rocket",
            symbol="DROCK",
            description="The inu of the future",
            liquidity=Decimal("4200"),
            total_supply=Decimal("800000000"),
            social_links=("https://x.com/DogeRocket?s=20",),
        )
        config = make_config(
            keywords=("doge", "inu", "cat"),
            twitter_accounts=("@dogerocket",),
            creator_address=pair.creator,
        )

        result = engine.evaluate(pair, config)

        assert result.passed is True
        assert result.reasons == (
            "Creator match",
            "Liquidity: 4200.00",
            "Supply: 800000000",
            "Twitter: @dogerocket",
            "Symbol keyword: doge",
            "Description keyword: inu",
        )
        assert result.score == (
            CREATOR_WEIGHT
            + LIQUIDITY_WEIGHT
            + SUPPLY_WEIGHT
            + TWITTER_WEIGHT
            + SYMBOL_KEYWORD_WEIGHT
            + DESCRIPTION_KEYWORD_WEIGHT
        )

    def test_creator_mismatch(self, engine, make_pair, make_config) -> None:
        config = make_config(creator_address="SomeoneElse111")
        assert engine.evaluate(make_pair(), config).passed is False

    def test_twitter_required_when_configured(self, engine, make_pair, make_config) -> None:
        pair = make_pair(social_links=("https://t.me/dogerocket",))
        config = make_config(twitter_accounts=("dogerocket",))
        assert engine.evaluate(pair, config).passed is False

    def test_twitter_from_enriched_links(self, engine, make_pair, make_config) -> None:
        metadata = EnrichedMetadata(
            description="",
            verified=False,
            social_links=("https://twitter.com/dogerocket",),
        )
        pair = make_pair(enriched_metadata=metadata)
        config = make_config(twitter_accounts=("DogeRocket",))

        assert engine.evaluate(pair, config).passed is True

    def test_no_keyword_hit_rejects(self, engine, make_pair, make_config) -> None:
        config = make_config(keywords=("pepe",))
        assert engine.evaluate(make_pair(), config).passed is False

    def test_short_keywords_ignored(self, engine, make_pair, make_config) -> None:
        pair = make_pair(liquidity=None, total_supply=None)
        config = make_config(keywords=("d", " "))

        result = engine.evaluate(pair, config)

        assert result.passed is False
        assert result.rejection == "no contributing signal"

    def test_rule_less_config_does_not_match_on_liquidity(self, engine, make_pair, make_config) -> None:
        pair = make_pair(liquidity=Decimal("1"), total_supply=None)
        config = make_config(keywords=())

        result = engine.evaluate(pair, config)

        assert result.passed is False
        assert result.rejection == f"score {LIQUIDITY_WEIGHT} not above {MIN_MATCH_SCORE}"
        assert engine.match(pair, [config], now=NOW) == []

    def test_score_must_exceed_minimum(self, engine, make_pair, make_config) -> None:
        metadata = EnrichedMetadata(description="Powered by an AI agent", verified=False)
        pair = make_pair(liquidity=None, total_supply=None, enriched_metadata=metadata)
        config = make_config(keywords=("agent",))

        assert DESCRIPTION_KEYWORD_WEIGHT == MIN_MATCH_SCORE
        assert engine.evaluate(pair, config).passed is False
        assert engine.evaluate(pair.with_market_data(make_pair(liquidity=Decimal("10"))), config).passed is True

    def test_enriched_description_used(self, engine, make_pair, make_config) -> None:
        metadata = EnrichedMetadata(description="Powered by an AI agent", verified=True)
        pair = make_pair(description="short", enriched_metadata=metadata)
        config = make_config(keywords=("agent",))

        result = engine.evaluate(pair, config)

        assert result.passed is True
        assert "Description keyword: agent" in result.reasons

    def test_deterministic(self, engine, make_pair, make_config) -> None:
        pair = make_pair(social_links=("https://x.com/dogerocket",))
        config = make_config(keywords=("doge", "rocket"), twitter_accounts=("dogerocket",))

        results = {engine.evaluate(pair, config) for _ in range(20)}

        assert len(results) == 1


class TestMatch:
    def test_disabled_configs_skipped(self, engine, make_pair, make_config) -> None:
        configs = [make_config(id="on"), make_config(id="off", enabled=False)]

        matches = engine.match(make_pair(), configs, now=NOW)

        assert [m.config_id for m in matches] == ["on"]
        assert matches[0].timestamp == NOW
        assert matches[0].reasons

    def test_history_is_bounded_and_newest_first(self, engine, make_pair, make_config) -> None:
        config = make_config()
        for i in range(5):
            engine.match(make_pair(id=f"mint{i}"), [config], now=NOW)

        assert [m.pair_id for m in engine.recent_matches()] == ["mint4", "mint3", "mint2"]
        assert engine.matches_today(NOW) == 5

    def test_failing_config_does_not_affect_others(self, engine, make_pair, make_config, monkeypatch) -> None:
        good = make_config(id="good")
        bad = make_config(id="bad")
        original = engine.evaluate

        def evaluate(pair, config):
            if config.id == "bad":
                raise RuntimeError("boom")
            return original(pair, config)

        monkeypatch.setattr(engine, "evaluate", evaluate)

        matches = engine.match(make_pair(), [bad, good], now=NOW)

        assert [m.config_id for m in matches] == ["good"]

"""Rule evaluation of trading pairs against sniper configurations.

Evaluation is a pure function of (pair, config): it never suspends and
never reads the clock, so identical inputs always give identical scores
and reasons.
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import UTC, date, datetime

from token_sniper.detector.models import SniperConfig, TokenMatch
from token_sniper.ingestor.links import twitter_link_matches
from token_sniper.ingestor.models import TradingPair

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_SIZE = 50
MIN_KEYWORD_LENGTH = 2
# Scores at or below this never match.
MIN_MATCH_SCORE = 10

# Signal weights
CREATOR_WEIGHT = 20
LIQUIDITY_WEIGHT = 5
SUPPLY_WEIGHT = 5
TWITTER_WEIGHT = 25
SYMBOL_KEYWORD_WEIGHT = 15
DESCRIPTION_KEYWORD_WEIGHT = 10


@dataclass(frozen=True)
class MatchResult:
    """Outcome of evaluating one pair against one configuration.

    Attributes:
        passed: True if every required condition held and the score is
            above ``MIN_MATCH_SCORE``.
        score: Sum of contributing signal weights.
        reasons: One entry per contributing signal, in evaluation order.
        rejection: Why the pair was rejected, when it was.
    """

    passed: bool
    score: int
    reasons: tuple[str, ...]
    rejection: str | None = None

    @classmethod
    def rejected(cls, rejection: str) -> MatchResult:
        return cls(passed=False, score=0, reasons=(), rejection=rejection)


@dataclass
class MatcherStats:
    evaluated: int = 0
    matched: int = 0
    rejected_blacklist: int = 0
    rejected_other: int = 0


class MatchingEngine:
    """Evaluate pairs against every enabled configuration.

    Conditions are checked in a fixed order: blacklist, creator,
    liquidity/supply thresholds, Twitter correlation, then keyword scoring.
    The first failing required condition rejects the pair.

    Example:
        ```python
        engine = MatchingEngine()
        for match in engine.match(pair, configs):
            decision = safety.authorize(match.config)
        ```
    """

    def __init__(self, *, history_size: int = DEFAULT_HISTORY_SIZE) -> None:
        self._history: deque[TokenMatch] = deque(maxlen=history_size)
        self._daily_counts: dict[date, int] = {}
        self._stats = MatcherStats()

    @property
    def stats(self) -> MatcherStats:
        return self._stats

    def recent_matches(self) -> list[TokenMatch]:
        """Recent matches, most recent first."""
        return list(self._history)

    def matches_today(self, now: datetime | None = None) -> int:
        today = (now or datetime.now(UTC)).date()
        return self._daily_counts.get(today, 0)

    def match(
        self,
        pair: TradingPair,
        configs: Iterable[SniperConfig],
        *,
        now: datetime | None = None,
    ) -> list[TokenMatch]:
        """Evaluate ``pair`` against each enabled config and record matches.

        A failure while evaluating one config is logged and does not affect
        the others.
        """
        now = now or datetime.now(UTC)
        matches: list[TokenMatch] = []
        for config in configs:
            if not config.enabled:
                continue
            try:
                result = self.evaluate(pair, config)
            except Exception:
                logger.exception("Failed to evaluate %s against config %s", pair.id, config.id)
                continue
            if not result.passed:
                logger.debug("Pair %s rejected by %s: %s", pair.symbol, config.name, result.rejection)
                continue

            match = TokenMatch(config=config, pair=pair, score=result.score, reasons=result.reasons, timestamp=now)
            self._record(match)
            matches.append(match)
            logger.info(
                "Match: pair=%s (%s), config=%s, score=%d, reasons=%s",
                pair.symbol,
                pair.id[:8],
                config.name,
                result.score,
                "; ".join(result.reasons),
            )
        return matches

    def _record(self, match: TokenMatch) -> None:
        self._history.appendleft(match)
        day = match.timestamp.date()
        if day not in self._daily_counts:
            # Only the current day is ever queried.
            self._daily_counts = {}
        self._daily_counts[day] = self._daily_counts.get(day, 0) + 1
        self._stats.matched += 1

    def evaluate(self, pair: TradingPair, config: SniperConfig) -> MatchResult:
        """Evaluate one pair against one configuration; only counters are touched."""
        self._stats.evaluated += 1
        name_text = f"{pair.name} {pair.symbol}".lower()
        description = pair.effective_description.lower()

        # 1. Blacklist
        for term in config.blacklist:
            lowered = term.strip().lower()
            if lowered and (lowered in name_text or lowered in description):
                self._stats.rejected_blacklist += 1
                return MatchResult.rejected(f"blacklisted term '{term}'")

        score = 0
        reasons: list[str] = []

        # 2. Creator
        if config.creator_address:
            if pair.creator != config.creator_address:
                return self._reject("creator mismatch")
            score += CREATOR_WEIGHT
            reasons.append("Creator match")

        # 3. Thresholds; unknown values are not checked
        if pair.liquidity is not None:
            if pair.liquidity < config.min_liquidity:
                return self._reject(f"liquidity {pair.liquidity} below {config.min_liquidity}")
            score += LIQUIDITY_WEIGHT
            reasons.append(f"Liquidity: {pair.liquidity:.2f}")
        if pair.total_supply is not None:
            if config.max_supply is not None and pair.total_supply > config.max_supply:
                return self._reject(f"supply {pair.total_supply} above {config.max_supply}")
            score += SUPPLY_WEIGHT
            reasons.append(f"Supply: {pair.total_supply:.0f}")

        # 4. Twitter correlation
        if config.twitter_accounts:
            links = pair.all_social_links
            handles = [
                handle
                for handle in config.twitter_accounts
                if any(twitter_link_matches(link, handle) for link in links)
            ]
            if not handles:
                return self._reject("no configured Twitter account referenced")
            score += TWITTER_WEIGHT
            reasons.append(f"Twitter: {', '.join(handles)}")

        # 5. Keywords
        keywords = [k.strip() for k in config.keywords if len(k.strip()) >= MIN_KEYWORD_LENGTH]
        if keywords:
            keyword_hits = 0
            for keyword in keywords:
                lowered = keyword.lower()
                if lowered in name_text:
                    score += SYMBOL_KEYWORD_WEIGHT
                    reasons.append(f"Symbol keyword: {keyword}")
                    keyword_hits += 1
                elif lowered in description:
                    score += DESCRIPTION_KEYWORD_WEIGHT
                    reasons.append(f"Description keyword: {keyword}")
                    keyword_hits += 1
            if not keyword_hits:
                return self._reject("no keyword matched")

        if not reasons:
            return self._reject("no contributing signal")
        if score <= MIN_MATCH_SCORE:
            return self._reject(f"score {score} not above {MIN_MATCH_SCORE}")
        return MatchResult(passed=True, score=score, reasons=tuple(reasons))

    def _reject(self, rejection: str) -> MatchResult:
        self._stats.rejected_other += 1
        return MatchResult.rejected(rejection)

"""Aggregate statistics over recent transaction results."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime
from decimal import Decimal

from token_sniper.executor.models import TransactionResult

DEFAULT_HISTORY_SIZE = 500


@dataclass(frozen=True)
class StatisticsSnapshot:
    total: int
    successes: int
    success_rate: float
    average_latency_ms: float
    trades_today: int
    spend_today: Decimal
    total_spend: Decimal
    last_trade_time: datetime | None

    def to_dict(self) -> dict[str, object]:
        return {
            "total": self.total,
            "successes": self.successes,
            "success_rate": round(self.success_rate, 4),
            "average_latency_ms": round(self.average_latency_ms, 2),
            "trades_today": self.trades_today,
            "spend_today": str(self.spend_today),
            "total_spend": str(self.total_spend),
            "last_trade_time": self.last_trade_time.isoformat() if self.last_trade_time else None,
        }


class TradeStatistics:
    """Bounded result history with daily counters.

    Success rate and average latency are computed over the retained
    history. ``trades_today`` and ``spend_today`` count successful trades
    and reset at UTC midnight; ``total_spend`` is the sum over successful
    trades in the history.
    """

    def __init__(
        self,
        *,
        history_size: int = DEFAULT_HISTORY_SIZE,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._history: deque[TransactionResult] = deque(maxlen=history_size)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._day: date = self._clock().date()
        self._trades_today = 0
        self._spend_today = Decimal("0")

    def _roll_day(self) -> None:
        today = self._clock().date()
        if today != self._day:
            self._day = today
            self._trades_today = 0
            self._spend_today = Decimal("0")

    def record(self, result: TransactionResult) -> None:
        self._roll_day()
        self._history.append(result)
        if result.success:
            self._trades_today += 1
            self._spend_today += result.amount

    def recent(self) -> list[TransactionResult]:
        """Recent results, most recent first."""
        return list(reversed(self._history))

    def snapshot(self) -> StatisticsSnapshot:
        self._roll_day()
        total = len(self._history)
        successes = [r for r in self._history if r.success]
        average_latency = sum(r.latency_ms for r in self._history) / total if total else 0.0
        return StatisticsSnapshot(
            total=total,
            successes=len(successes),
            success_rate=len(successes) / total if total else 0.0,
            average_latency_ms=average_latency,
            trades_today=self._trades_today,
            spend_today=self._spend_today,
            total_spend=sum((r.amount for r in successes), Decimal("0")),
            last_trade_time=successes[-1].timestamp if successes else None,
        )

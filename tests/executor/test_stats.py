"""Tests for trade statistics."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

from token_sniper.executor.models import (
    ErrorKind,
    ProviderKind,
    TradeAction,
    TransactionParams,
    TransactionResult,
    WalletRef,
)
from token_sniper.executor.stats import TradeStatistics


def result(success: bool, amount: str = "0.1", latency: float = 100.0) -> TransactionResult:
    params = TransactionParams(
        action=TradeAction.BUY,
        mint="Mint111",
        amount=Decimal(amount),
        slippage=Decimal("10"),
        wallet=WalletRef(id="w1", public_key="Pub111"),
    )
    if success:
        return TransactionResult.ok(params, provider=ProviderKind.DIRECT, signature="sig", latency_ms=latency)
    return TransactionResult.failed(
        params, provider=ProviderKind.DIRECT, error="no", error_kind=ErrorKind.REJECTED, latency_ms=latency
    )


class FakeClock:
    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class TestTradeStatistics:
    def test_empty(self) -> None:
        snapshot = TradeStatistics().snapshot()

        assert snapshot.total == 0
        assert snapshot.success_rate == 0.0
        assert snapshot.average_latency_ms == 0.0
        assert snapshot.last_trade_time is None

    def test_aggregates(self) -> None:
        stats = TradeStatistics()
        stats.record(result(True, "0.1", 100.0))
        stats.record(result(False, "0.1", 300.0))
        stats.record(result(True, "0.2", 200.0))
        stats.record(result(True, "0.3", 400.0))

        snapshot = stats.snapshot()

        assert snapshot.total == 4
        assert snapshot.successes == 3
        assert snapshot.success_rate == 0.75
        assert snapshot.average_latency_ms == 250.0
        assert snapshot.trades_today == 3
        assert snapshot.spend_today == Decimal("0.6")
        assert snapshot.total_spend == Decimal("0.6")
        assert stats.recent()[0].amount == Decimal("0.3")

    def test_history_is_bounded(self) -> None:
        stats = TradeStatistics(history_size=3)
        for _ in range(5):
            stats.record(result(True))

        snapshot = stats.snapshot()
        assert snapshot.total == 3
        assert snapshot.trades_today == 5

    def test_daily_counters_reset(self) -> None:
        clock = FakeClock(datetime(2026, 3, 1, 23, 59, tzinfo=UTC))
        stats = TradeStatistics(clock=clock)
        stats.record(result(True, "0.5"))

        clock.now += timedelta(minutes=2)
        snapshot = stats.snapshot()

        assert snapshot.trades_today == 0
        assert snapshot.spend_today == Decimal("0")
        assert snapshot.total_spend == Decimal("0.5")

    def test_to_dict(self) -> None:
        stats = TradeStatistics()
        stats.record(result(True))
        data = stats.snapshot().to_dict()

        assert data["total"] == 1
        assert data["success_rate"] == 1.0
        assert data["spend_today"] == "0.1"
        assert data["last_trade_time"] is not None

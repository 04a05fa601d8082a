"""Tests for executor models and error classification."""

from decimal import Decimal

import pytest

from token_sniper.executor.models import (
    ErrorKind,
    ExecutionError,
    ProviderKind,
    TradeAction,
    TransactionParams,
    TransactionResult,
    WalletRef,
    classify_error,
    sol_to_lamports,
)


@pytest.fixture
def params() -> TransactionParams:
    return TransactionParams(
        action=TradeAction.BUY,
        mint="Mint111",
        amount=Decimal("0.25"),
        slippage=Decimal("10"),
        wallet=WalletRef(id="w1", public_key="Pub111"),
        config_id="cfg-1",
    )


class TestClassifyError:
    @pytest.mark.parametrize(
        ("message", "status", "expected"),
        [
            ("Insufficient funds for fee", None, ErrorKind.INSUFFICIENT_FUNDS),
            ("insufficient lamports", 400, ErrorKind.INSUFFICIENT_FUNDS),
            ("Slippage tolerance exceeded", None, ErrorKind.SLIPPAGE_EXCEEDED),
            ("bad mint", 400, ErrorKind.INVALID_PARAMETERS),
            ("internal error", 500, ErrorKind.REJECTED),
            ("blockhash not found", None, ErrorKind.REJECTED),
        ],
    )
    def test_classify(self, message, status, expected) -> None:
        assert classify_error(message, status_code=status) == expected

    def test_execution_error_keeps_message(self) -> None:
        error = ExecutionError(ErrorKind.REJECTED, "Provider said no")
        assert error.kind == ErrorKind.REJECTED
        assert str(error) == "Provider said no"


class TestConversions:
    def test_sol_to_lamports(self) -> None:
        assert sol_to_lamports(Decimal("1")) == 1_000_000_000
        assert sol_to_lamports(Decimal("0.001")) == 1_000_000
        assert sol_to_lamports(Decimal("0.0000000015")) == 1


class TestTransactionResult:
    def test_ok(self, params) -> None:
        result = TransactionResult.ok(params, provider=ProviderKind.DIRECT, signature="sig", latency_ms=12.345)

        assert result.success is True
        assert result.wallet_id == "w1"
        assert result.amount == Decimal("0.25")
        assert result.config_id == "cfg-1"
        assert result.error_kind is None

    def test_failed_to_dict(self, params) -> None:
        result = TransactionResult.failed(
            params,
            provider=ProviderKind.ROUTED,
            error="Slippage exceeded",
            error_kind=ErrorKind.SLIPPAGE_EXCEEDED,
            latency_ms=40.5,
        )
        data = result.to_dict()

        assert data["success"] is False
        assert data["provider"] == "routed"
        assert data["error_kind"] == "slippage_exceeded"
        assert data["latency_ms"] == 40.5
        assert data["signature"] is None
        assert data["amount"] == "0.25"

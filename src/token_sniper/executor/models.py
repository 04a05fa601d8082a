"""Data models and errors for trade execution."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum

LAMPORTS_PER_SOL = 1_000_000_000


def _utcnow() -> datetime:
    return datetime.now(UTC)


def sol_to_lamports(amount: Decimal) -> int:
    return int(amount * LAMPORTS_PER_SOL)


class TradeAction(str, Enum):
    BUY = "buy"
    SELL = "sell"


class ProviderKind(str, Enum):
    """Execution provider variants, selected at runtime."""

    DIRECT = "direct"
    ROUTED = "routed"


class ErrorKind(str, Enum):
    INVALID_PARAMETERS = "invalid_parameters"
    NETWORK = "network"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    SLIPPAGE_EXCEEDED = "slippage_exceeded"
    REJECTED = "rejected"
    CONFIGURATION = "configuration"


class ExecutionError(Exception):
    """A provider failed to execute a transaction.

    Attributes:
        kind: Failure category.
        message: Provider error text, verbatim.
    """

    def __init__(self, kind: ErrorKind, message: str) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message


class ConfigurationError(Exception):
    """A provider lacks a credential or endpoint it needs."""


def classify_error(message: str, *, status_code: int | None = None) -> ErrorKind:
    """Map provider error text (and HTTP status) to an :class:`ErrorKind`.

    Message content wins over the status code, so a 400 that reports
    insufficient funds is classified as such.
    """
    lowered = message.lower()
    if "insufficient" in lowered:
        return ErrorKind.INSUFFICIENT_FUNDS
    if "slippage" in lowered:
        return ErrorKind.SLIPPAGE_EXCEEDED
    if status_code == 400:
        return ErrorKind.INVALID_PARAMETERS
    return ErrorKind.REJECTED


@dataclass(frozen=True)
class WalletRef:
    """Reference to a trading wallet; signing stays with the signing service."""

    id: str
    public_key: str


@dataclass(frozen=True)
class TransactionParams:
    """Parameters of one trade submission.

    ``amount`` is in SOL for buys and in raw token units for sells.
    ``slippage`` is a percentage; ``priority_fee`` is in SOL.
    """

    action: TradeAction
    mint: str
    amount: Decimal
    slippage: Decimal
    wallet: WalletRef
    priority_fee: Decimal = Decimal("0")
    pool: str = "pump"
    config_id: str | None = None
    match_id: str | None = None


@dataclass(frozen=True)
class TransactionResult:
    """Outcome of one submission, successful or not."""

    success: bool
    provider: ProviderKind
    latency_ms: float
    wallet_id: str
    mint: str
    amount: Decimal
    action: TradeAction = TradeAction.BUY
    signature: str | None = None
    error: str | None = None
    error_kind: ErrorKind | None = None
    config_id: str | None = None
    timestamp: datetime = field(default_factory=_utcnow)

    @classmethod
    def ok(
        cls, params: TransactionParams, *, provider: ProviderKind, signature: str, latency_ms: float
    ) -> TransactionResult:
        return cls(
            success=True,
            provider=provider,
            latency_ms=latency_ms,
            wallet_id=params.wallet.id,
            mint=params.mint,
            amount=params.amount,
            action=params.action,
            signature=signature,
            config_id=params.config_id,
        )

    @classmethod
    def failed(
        cls,
        params: TransactionParams,
        *,
        provider: ProviderKind,
        error: str,
        error_kind: ErrorKind,
        latency_ms: float,
    ) -> TransactionResult:
        return cls(
            success=False,
            provider=provider,
            latency_ms=latency_ms,
            wallet_id=params.wallet.id,
            mint=params.mint,
            amount=params.amount,
            action=params.action,
            error=error,
            error_kind=error_kind,
            config_id=params.config_id,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "provider": self.provider.value,
            "latency_ms": round(self.latency_ms, 2),
            "wallet_id": self.wallet_id,
            "mint": self.mint,
            "amount": str(self.amount),
            "action": self.action.value,
            "signature": self.signature,
            "error": self.error,
            "error_kind": self.error_kind.value if self.error_kind else None,
            "config_id": self.config_id,
            "timestamp": self.timestamp.isoformat(),
        }

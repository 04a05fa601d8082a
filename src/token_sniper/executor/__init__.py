"""Trade execution layer - Safety gating and provider dispatch."""

from token_sniper.executor.direct import DirectProvider
from token_sniper.executor.dispatcher import ExecutionDispatcher
from token_sniper.executor.models import (
    ConfigurationError,
    ErrorKind,
    ExecutionError,
    ProviderKind,
    TradeAction,
    TransactionParams,
    TransactionResult,
    WalletRef,
)
from token_sniper.executor.provider import TradeProvider
from token_sniper.executor.routed import RoutedProvider
from token_sniper.executor.safety import (
    PendingConfirmation,
    Reservation,
    SafetyController,
    SafetyRejection,
)
from token_sniper.executor.signing import SigningServiceClient, WalletDirectory, WalletResolver
from token_sniper.executor.stats import TradeStatistics

__all__ = [
    "ConfigurationError",
    "DirectProvider",
    "ErrorKind",
    "ExecutionDispatcher",
    "ExecutionError",
    "PendingConfirmation",
    "ProviderKind",
    "Reservation",
    "RoutedProvider",
    "SafetyController",
    "SafetyRejection",
    "SigningServiceClient",
    "TradeAction",
    "TradeProvider",
    "TradeStatistics",
    "TransactionParams",
    "TransactionResult",
    "WalletDirectory",
    "WalletRef",
    "WalletResolver",
]

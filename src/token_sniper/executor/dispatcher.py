"""Runtime-selected execution provider with result statistics."""

from __future__ import annotations

import logging

import httpx

from token_sniper.config import Settings
from token_sniper.executor.direct import DirectProvider
from token_sniper.executor.models import (
    ConfigurationError,
    ErrorKind,
    ProviderKind,
    TransactionParams,
    TransactionResult,
)
from token_sniper.executor.provider import TradeProvider
from token_sniper.executor.routed import RoutedProvider
from token_sniper.executor.signing import SigningServiceClient
from token_sniper.executor.stats import DEFAULT_HISTORY_SIZE, TradeStatistics

logger = logging.getLogger(__name__)


class ExecutionDispatcher:
    """Route every submission to the currently selected provider.

    Providers failing :meth:`TradeProvider.validate` are disabled at
    construction; the rest stay usable. Selection can change at runtime
    with :meth:`select` but never per call. Results are recorded in
    :attr:`statistics`. Nothing is retried.

    Example:
        ```python
        dispatcher = ExecutionDispatcher(
            {ProviderKind.DIRECT: direct, ProviderKind.ROUTED: routed},
            selected=ProviderKind.DIRECT,
        )
        result = await dispatcher.execute(params)
        ```
    """

    def __init__(
        self,
        providers: dict[ProviderKind, TradeProvider],
        *,
        selected: ProviderKind,
        history_size: int = DEFAULT_HISTORY_SIZE,
    ) -> None:
        self._providers: dict[ProviderKind, TradeProvider] = {}
        self._disabled: dict[ProviderKind, str] = {}
        for kind, provider in providers.items():
            try:
                provider.validate()
            except ConfigurationError as e:
                self._disabled[kind] = str(e)
                logger.warning("Execution provider %s disabled: %s", kind.value, e)
            else:
                self._providers[kind] = provider
        self._all = dict(providers)
        self._selected = selected
        self.statistics = TradeStatistics(history_size=history_size)

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        client: httpx.AsyncClient | None = None,
        signer: SigningServiceClient | None = None,
    ) -> ExecutionDispatcher:
        execution = settings.execution
        timeout = execution.request_timeout_seconds
        pump_key = settings.pumpportal.api_key.get_secret_value() if settings.pumpportal.api_key else None
        helius_key = settings.helius.api_key.get_secret_value() if settings.helius.api_key else None
        providers: dict[ProviderKind, TradeProvider] = {
            ProviderKind.DIRECT: DirectProvider(
                api_key=pump_key, trade_url=settings.pumpportal.trade_url, client=client, timeout=timeout
            ),
            ProviderKind.ROUTED: RoutedProvider(
                signer=signer,
                sender_url=settings.helius.sender_url,
                sender_api_key=helius_key,
                jupiter_url=execution.jupiter_url,
                tip_sol=execution.jito_tip_sol,
                client=client,
                timeout=timeout,
            ),
        }
        return cls(providers, selected=ProviderKind(execution.provider), history_size=execution.history_size)

    @property
    def selected(self) -> ProviderKind:
        return self._selected

    @property
    def available(self) -> list[ProviderKind]:
        return list(self._providers)

    @property
    def disabled(self) -> dict[ProviderKind, str]:
        """Disabled providers and why."""
        return dict(self._disabled)

    def select(self, kind: ProviderKind) -> None:
        """Switch the active provider.

        Raises:
            ConfigurationError: If ``kind`` is unknown or disabled.
        """
        if kind not in self._providers:
            reason = self._disabled.get(kind, "not registered")
            raise ConfigurationError(f"Provider {kind.value} is unavailable: {reason}")
        if kind != self._selected:
            logger.info("Execution provider switched: %s -> %s", self._selected.value, kind.value)
        self._selected = kind

    async def execute(self, params: TransactionParams) -> TransactionResult:
        provider = self._providers.get(self._selected)
        if provider is None:
            reason = self._disabled.get(self._selected, "not registered")
            result = TransactionResult.failed(
                params,
                provider=self._selected,
                error=f"Provider {self._selected.value} is unavailable: {reason}",
                error_kind=ErrorKind.CONFIGURATION,
                latency_ms=0.0,
            )
        else:
            try:
                result = await provider.execute_transaction(params)
            except Exception as e:
                logger.exception("Unexpected failure in %s provider", self._selected.value)
                result = TransactionResult.failed(
                    params,
                    provider=self._selected,
                    error=str(e) or type(e).__name__,
                    error_kind=ErrorKind.REJECTED,
                    latency_ms=0.0,
                )
        self.statistics.record(result)
        return result

    async def aclose(self) -> None:
        for provider in self._all.values():
            await provider.aclose()

"""Direct execution through the PumpPortal Lightning trade API."""

from __future__ import annotations

import logging

import httpx

from token_sniper.executor.models import (
    ConfigurationError,
    ErrorKind,
    ExecutionError,
    ProviderKind,
    TradeAction,
    TransactionParams,
    classify_error,
)
from token_sniper.executor.provider import DEFAULT_TIMEOUT_SECONDS, TradeProvider, raise_for_provider_error

logger = logging.getLogger(__name__)

DEFAULT_TRADE_URL = "https://pumpportal.fun/api/lightning"


class DirectProvider(TradeProvider):
    """Submit (action, mint, amount, slippage, wallet) and get a signature back.

    Example:
        ```python
        provider = DirectProvider(api_key=settings.pumpportal.api_key.get_secret_value())
        result = await provider.execute_transaction(params)
        ```
    """

    kind = ProviderKind.DIRECT

    def __init__(
        self,
        *,
        api_key: str | None,
        trade_url: str = DEFAULT_TRADE_URL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self._api_key = api_key
        self._trade_url = trade_url

    def validate(self) -> None:
        if not self._api_key:
            raise ConfigurationError("PUMPPORTAL_API_KEY is required for direct execution")

    def build_payload(self, params: TransactionParams) -> dict[str, object]:
        return {
            "action": params.action.value,
            "mint": params.mint,
            "amount": float(params.amount),
            "denominatedInSol": "true" if params.action == TradeAction.BUY else "false",
            "slippage": float(params.slippage),
            "wallet": params.wallet.public_key,
            "priorityFee": float(params.priority_fee),
            "pool": params.pool,
        }

    async def _submit(self, params: TransactionParams) -> str:
        query = {"api-key": self._api_key} if self._api_key else None
        response = await self._http().post(
            self._trade_url,
            params=query,
            json=self.build_payload(params),
            timeout=self._timeout,
        )
        raise_for_provider_error(response)
        try:
            body = response.json()
        except ValueError as e:
            raise ExecutionError(ErrorKind.REJECTED, f"Malformed trade response: {response.text[:200]}") from e

        signature = body.get("signature") if isinstance(body, dict) else None
        if not isinstance(signature, str) or not signature:
            errors = body.get("errors") if isinstance(body, dict) else None
            message = "; ".join(map(str, errors)) if isinstance(errors, list) and errors else str(body)
            raise ExecutionError(classify_error(message), message)
        return signature

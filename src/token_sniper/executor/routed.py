"""Routed execution: aggregator quote, signed swap, low-latency relay.

Flow for one submission:

1. ``GET {jupiter}/quote`` for the best route (amounts in lamports for buys).
2. ``POST {jupiter}/swap`` for the unsigned transaction, with the priority
   fee attached.
3. The signing service signs it and adds the relay tip.
4. ``sendTransaction`` on the Helius sender relays it.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

import httpx

from token_sniper.executor.models import (
    ConfigurationError,
    ErrorKind,
    ExecutionError,
    ProviderKind,
    TradeAction,
    TransactionParams,
    classify_error,
    sol_to_lamports,
)
from token_sniper.executor.provider import DEFAULT_TIMEOUT_SECONDS, TradeProvider, raise_for_provider_error
from token_sniper.executor.signing import SigningServiceClient
from token_sniper.ingestor.models import WRAPPED_SOL_MINT

logger = logging.getLogger(__name__)

DEFAULT_JUPITER_URL = "https://quote-api.jup.ag/v6"
MIN_TIP_SOL = Decimal("0.001")


def slippage_bps(slippage_percent: Decimal) -> int:
    return int(slippage_percent * 100)


class RoutedProvider(TradeProvider):
    """Execute through a route aggregator and a relay.

    Args:
        signer: Signing service client; required.
        sender_url: Relay JSON-RPC endpoint.
        sender_api_key: Bearer key for the relay.
        jupiter_url: Aggregator base URL (including the API version).
        tip_sol: Relay tip, raised to at least 0.001 SOL.
    """

    kind = ProviderKind.ROUTED

    def __init__(
        self,
        *,
        signer: SigningServiceClient | None,
        sender_url: str,
        sender_api_key: str | None,
        jupiter_url: str = DEFAULT_JUPITER_URL,
        tip_sol: Decimal = MIN_TIP_SOL,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        super().__init__(client=client, timeout=timeout)
        self._signer = signer
        self._sender_url = sender_url
        self._sender_api_key = sender_api_key
        self._jupiter_url = jupiter_url.rstrip("/")
        self._tip_sol = max(tip_sol, MIN_TIP_SOL)

    def validate(self) -> None:
        if self._signer is None:
            raise ConfigurationError("EXECUTION_SIGNING_SERVICE_URL is required for routed execution")
        if not self._sender_api_key:
            raise ConfigurationError("HELIUS_API_KEY is required for routed execution")

    @property
    def tip_lamports(self) -> int:
        return sol_to_lamports(self._tip_sol)

    async def _submit(self, params: TransactionParams) -> str:
        if self._signer is None:
            raise ExecutionError(ErrorKind.CONFIGURATION, "No signing service configured")
        quote = await self.get_quote(params)
        unsigned = await self.get_swap_transaction(quote, params)
        signed = await self._signer.sign_transaction(params.wallet, unsigned, tip_lamports=self.tip_lamports)
        return await self.send_transaction(signed)

    async def get_quote(self, params: TransactionParams) -> dict[str, Any]:
        if params.action == TradeAction.BUY:
            input_mint, output_mint = WRAPPED_SOL_MINT, params.mint
            amount = sol_to_lamports(params.amount)
        else:
            input_mint, output_mint = params.mint, WRAPPED_SOL_MINT
            amount = int(params.amount)
        if amount <= 0:
            raise ExecutionError(ErrorKind.INVALID_PARAMETERS, f"Amount must be positive: {params.amount}")

        response = await self._http().get(
            f"{self._jupiter_url}/quote",
            params={
                "inputMint": input_mint,
                "outputMint": output_mint,
                "amount": str(amount),
                "slippageBps": str(slippage_bps(params.slippage)),
            },
            timeout=self._timeout,
        )
        raise_for_provider_error(response)
        quote = self._json_object(response, "quote")
        if "error" in quote:
            message = str(quote["error"])
            raise ExecutionError(classify_error(message), message)
        logger.debug("Quote for %s: out=%s, impact=%s", params.mint, quote.get("outAmount"), quote.get("priceImpactPct"))
        return quote

    async def get_swap_transaction(self, quote: dict[str, Any], params: TransactionParams) -> str:
        response = await self._http().post(
            f"{self._jupiter_url}/swap",
            json={
                "quoteResponse": quote,
                "userPublicKey": params.wallet.public_key,
                "wrapAndUnwrapSol": True,
                "prioritizationFeeLamports": sol_to_lamports(params.priority_fee),
            },
            timeout=self._timeout,
        )
        raise_for_provider_error(response)
        body = self._json_object(response, "swap")
        transaction = body.get("swapTransaction")
        if not isinstance(transaction, str) or not transaction:
            message = str(body.get("error") or "Aggregator returned no transaction")
            raise ExecutionError(classify_error(message), message)
        return transaction

    async def send_transaction(self, signed_transaction: str) -> str:
        response = await self._http().post(
            self._sender_url,
            headers={"Authorization": f"Bearer {self._sender_api_key}"},
            json={
                "jsonrpc": "2.0",
                "id": 1,
                "method": "sendTransaction",
                "params": [
                    signed_transaction,
                    {"encoding": "base64", "skipPreflight": True, "maxRetries": 0},
                ],
            },
            timeout=self._timeout,
        )
        raise_for_provider_error(response)
        body = self._json_object(response, "relay")
        error = body.get("error")
        if error:
            message = str(error.get("message") or error) if isinstance(error, dict) else str(error)
            raise ExecutionError(classify_error(message), message)
        signature = body.get("result")
        if not isinstance(signature, str) or not signature:
            raise ExecutionError(ErrorKind.REJECTED, "Relay returned no signature")
        return signature

    @staticmethod
    def _json_object(response: httpx.Response, what: str) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise ExecutionError(ErrorKind.REJECTED, f"Malformed {what} response") from e
        if not isinstance(body, dict):
            raise ExecutionError(ErrorKind.REJECTED, f"Malformed {what} response")
        return body

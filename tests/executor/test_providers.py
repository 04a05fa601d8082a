"""Tests for the direct and routed execution providers."""

from __future__ import annotations

import json
from decimal import Decimal

import httpx
import pytest
import respx
from httpx import Response

from token_sniper.executor.direct import DEFAULT_TRADE_URL, DirectProvider
from token_sniper.executor.models import (
    ConfigurationError,
    ErrorKind,
    ProviderKind,
    TradeAction,
    TransactionParams,
    WalletRef,
)
from token_sniper.executor.routed import MIN_TIP_SOL, RoutedProvider, slippage_bps
from token_sniper.executor.signing import SigningServiceClient
from token_sniper.ingestor.models import WRAPPED_SOL_MINT

JUPITER_URL = "https://quote-api.jup.ag/v6"
SENDER_URL = "https://sender.helius-rpc.com/fast"
SIGNER_URL = "http://signer.local"


@pytest.fixture
def params() -> TransactionParams:
    return TransactionParams(
        action=TradeAction.BUY,
        mint="Mint111",
        amount=Decimal("0.5"),
        slippage=Decimal("15"),
        wallet=WalletRef(id="w1", public_key="Pub111"),
        priority_fee=Decimal("0.0001"),
    )


class TestDirectProvider:
    def test_validate_requires_key(self) -> None:
        with pytest.raises(ConfigurationError):
            DirectProvider(api_key=None).validate()
        DirectProvider(api_key="key").validate()

    def test_build_payload(self, params) -> None:
        payload = DirectProvider(api_key="key").build_payload(params)

        assert payload == {
            "action": "buy",
            "mint": "Mint111",
            "amount": 0.5,
            "denominatedInSol": "true",
            "slippage": 15.0,
            "wallet": "Pub111",
            "priorityFee": 0.0001,
            "pool": "pump",
        }

    @pytest.mark.asyncio
    @respx.mock
    async def test_success(self, params) -> None:
        route = respx.post(DEFAULT_TRADE_URL).mock(return_value=Response(200, json={"signature": "5sig"}))

        provider = DirectProvider(api_key="secret")
        try:
            result = await provider.execute_transaction(params)
        finally:
            await provider.aclose()

        assert result.success is True
        assert result.signature == "5sig"
        assert result.provider == ProviderKind.DIRECT
        assert result.latency_ms >= 0
        request = route.calls.last.request
        assert request.url.params["api-key"] == "secret"
        assert json.loads(request.content)["wallet"] == "Pub111"

    @pytest.mark.asyncio
    @respx.mock
    async def test_insufficient_funds_on_400(self, params) -> None:
        respx.post(DEFAULT_TRADE_URL).mock(
            return_value=Response(400, json={"error": "Insufficient funds for transaction"})
        )

        result = await DirectProvider(api_key="secret").execute_transaction(params)

        assert result.success is False
        assert result.error_kind == ErrorKind.INSUFFICIENT_FUNDS
        assert result.error == "Insufficient funds for transaction"

    @pytest.mark.asyncio
    @respx.mock
    async def test_errors_in_body(self, params) -> None:
        respx.post(DEFAULT_TRADE_URL).mock(
            return_value=Response(200, json={"errors": ["Slippage: too much price movement"]})
        )

        result = await DirectProvider(api_key="secret").execute_transaction(params)

        assert result.error_kind == ErrorKind.SLIPPAGE_EXCEEDED

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_error(self, params) -> None:
        respx.post(DEFAULT_TRADE_URL).mock(side_effect=httpx.ConnectError("connection refused"))

        result = await DirectProvider(api_key="secret").execute_transaction(params)

        assert result.success is False
        assert result.error_kind == ErrorKind.NETWORK


class TestRoutedProvider:
    @pytest.fixture
    def provider(self) -> RoutedProvider:
        signer = SigningServiceClient(base_url=SIGNER_URL, token="signer-token")
        return RoutedProvider(
            signer=signer,
            sender_url=SENDER_URL,
            sender_api_key="helius-key",
            jupiter_url=JUPITER_URL,
            tip_sol=Decimal("0.0001"),
        )

    def test_slippage_bps(self) -> None:
        assert slippage_bps(Decimal("15")) == 1500
        assert slippage_bps(Decimal("0.5")) == 50

    def test_tip_is_raised_to_minimum(self, provider) -> None:
        assert provider.tip_lamports == 1_000_000
        assert MIN_TIP_SOL == Decimal("0.001")

    def test_validate(self) -> None:
        with pytest.raises(ConfigurationError):
            RoutedProvider(signer=None, sender_url=SENDER_URL, sender_api_key="key").validate()
        signer = SigningServiceClient(base_url=SIGNER_URL)
        with pytest.raises(ConfigurationError):
            RoutedProvider(signer=signer, sender_url=SENDER_URL, sender_api_key=None).validate()

    @pytest.mark.asyncio
    @respx.mock
    async def test_full_flow(self, provider, params) -> None:
        quote = {"inputMint": WRAPPED_SOL_MINT, "outputMint": "Mint111", "outAmount": "123456"}
        quote_route = respx.get(f"{JUPITER_URL}/quote").mock(return_value=Response(200, json=quote))
        swap_route = respx.post(f"{JUPITER_URL}/swap").mock(
            return_value=Response(200, json={"swapTransaction": "dW5zaWduZWQ="})
        )
        sign_route = respx.post(f"{SIGNER_URL}/sign").mock(
            return_value=Response(200, json={"signed_transaction": "c2lnbmVk"})
        )
        send_route = respx.post(SENDER_URL).mock(
            return_value=Response(200, json={"jsonrpc": "2.0", "id": 1, "result": "4relaysig"})
        )

        result = await provider.execute_transaction(params)

        assert result.success is True
        assert result.signature == "4relaysig"
        assert result.provider == ProviderKind.ROUTED

        quote_params = quote_route.calls.last.request.url.params
        assert quote_params["inputMint"] == WRAPPED_SOL_MINT
        assert quote_params["outputMint"] == "Mint111"
        assert quote_params["amount"] == "500000000"
        assert quote_params["slippageBps"] == "1500"

        swap_body = json.loads(swap_route.calls.last.request.content)
        assert swap_body["quoteResponse"] == quote
        assert swap_body["userPublicKey"] == "Pub111"
        assert swap_body["prioritizationFeeLamports"] == 100_000

        sign_request = sign_route.calls.last.request
        assert sign_request.headers["Authorization"] == "Bearer signer-token"
        assert json.loads(sign_request.content) == {
            "wallet_id": "w1",
            "transaction": "dW5zaWduZWQ=",
            "tip_lamports": 1_000_000,
        }

        send_request = send_route.calls.last.request
        assert send_request.headers["Authorization"] == "Bearer helius-key"
        assert json.loads(send_request.content)["params"][0] == "c2lnbmVk"

    @pytest.mark.asyncio
    @respx.mock
    async def test_sell_quotes_token_to_sol(self, provider, params) -> None:
        route = respx.get(f"{JUPITER_URL}/quote").mock(return_value=Response(200, json={"outAmount": "1"}))
        sell = TransactionParams(
            action=TradeAction.SELL,
            mint="Mint111",
            amount=Decimal("2500000"),
            slippage=Decimal("1"),
            wallet=params.wallet,
        )

        await provider.get_quote(sell)

        quote_params = route.calls.last.request.url.params
        assert quote_params["inputMint"] == "Mint111"
        assert quote_params["outputMint"] == WRAPPED_SOL_MINT
        assert quote_params["amount"] == "2500000"

    @pytest.mark.asyncio
    @respx.mock
    async def test_quote_error(self, provider, params) -> None:
        respx.get(f"{JUPITER_URL}/quote").mock(
            return_value=Response(400, json={"error": "Could not find any route"})
        )

        result = await provider.execute_transaction(params)

        assert result.success is False
        assert result.error_kind == ErrorKind.INVALID_PARAMETERS
        assert result.error == "Could not find any route"

    @pytest.mark.asyncio
    @respx.mock
    async def test_relay_error(self, provider, params) -> None:
        respx.get(f"{JUPITER_URL}/quote").mock(return_value=Response(200, json={"outAmount": "1"}))
        respx.post(f"{JUPITER_URL}/swap").mock(return_value=Response(200, json={"swapTransaction": "dHg="}))
        respx.post(f"{SIGNER_URL}/sign").mock(return_value=Response(200, json={"signed_transaction": "c2ln"}))
        respx.post(SENDER_URL).mock(
            return_value=Response(
                200,
                json={"jsonrpc": "2.0", "id": 1, "error": {"code": -32002, "message": "insufficient lamports"}},
            )
        )

        result = await provider.execute_transaction(params)

        assert result.error_kind == ErrorKind.INSUFFICIENT_FUNDS

    @pytest.mark.asyncio
    async def test_zero_amount_rejected(self, provider, params) -> None:
        zero = TransactionParams(
            action=TradeAction.BUY,
            mint="Mint111",
            amount=Decimal("0"),
            slippage=Decimal("1"),
            wallet=params.wallet,
        )

        result = await provider.execute_transaction(zero)

        assert result.error_kind == ErrorKind.INVALID_PARAMETERS

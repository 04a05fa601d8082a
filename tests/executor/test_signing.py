"""Tests for wallet resolution and the signing service client."""

from __future__ import annotations

import httpx
import pytest
import respx
from httpx import Response

from token_sniper.executor.models import ErrorKind, ExecutionError, WalletRef
from token_sniper.executor.signing import SigningServiceClient, WalletDirectory

SIGNER_URL = "http://signer.local"


class TestWalletDirectory:
    @pytest.mark.asyncio
    async def test_resolve(self) -> None:
        directory = WalletDirectory({"w1": "Pub111"})

        assert await directory.resolve_wallet("w1") == WalletRef(id="w1", public_key="Pub111")
        assert await directory.resolve_wallet("missing") is None
        assert len(directory) == 1


class TestSigningServiceClient:
    @pytest.mark.asyncio
    @respx.mock
    async def test_resolve_wallet_is_cached(self) -> None:
        route = respx.get(f"{SIGNER_URL}/wallets/w1").mock(
            return_value=Response(200, json={"id": "w1", "public_key": "Pub111"})
        )
        client = SigningServiceClient(base_url=f"{SIGNER_URL}/", token="t")

        first = await client.resolve_wallet("w1")
        second = await client.resolve_wallet("w1")
        await client.aclose()

        assert first == second == WalletRef(id="w1", public_key="Pub111")
        assert route.call_count == 1
        assert route.calls.last.request.headers["Authorization"] == "Bearer t"

    @pytest.mark.asyncio
    @respx.mock
    async def test_unknown_wallet(self) -> None:
        respx.get(f"{SIGNER_URL}/wallets/ghost").mock(return_value=Response(404))

        assert await SigningServiceClient(base_url=SIGNER_URL).resolve_wallet("ghost") is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_unreachable_service(self) -> None:
        respx.get(f"{SIGNER_URL}/wallets/w1").mock(side_effect=httpx.ConnectError("refused"))

        assert await SigningServiceClient(base_url=SIGNER_URL).resolve_wallet("w1") is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_sign_rejected(self) -> None:
        respx.post(f"{SIGNER_URL}/sign").mock(return_value=Response(403, json={"error": "wallet locked"}))
        client = SigningServiceClient(base_url=SIGNER_URL)

        with pytest.raises(ExecutionError) as exc_info:
            await client.sign_transaction(WalletRef(id="w1", public_key="Pub111"), "dHg=")

        assert exc_info.value.kind == ErrorKind.REJECTED
        assert exc_info.value.message == "wallet locked"

    @pytest.mark.asyncio
    @respx.mock
    async def test_sign_without_transaction(self) -> None:
        respx.post(f"{SIGNER_URL}/sign").mock(return_value=Response(200, json={}))
        client = SigningServiceClient(base_url=SIGNER_URL)

        with pytest.raises(ExecutionError, match="no transaction"):
            await client.sign_transaction(WalletRef(id="w1", public_key="Pub111"), "dHg=")

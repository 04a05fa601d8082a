"""Wallet resolution and transaction signing.

Private keys never enter this process. Wallet ids from a configuration are
resolved to public keys, and unsigned transactions are sent to an external
signing service that returns them signed.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Protocol

import httpx

from token_sniper.executor.models import ErrorKind, ExecutionError, WalletRef
from token_sniper.executor.provider import DEFAULT_TIMEOUT_SECONDS, raise_for_provider_error

logger = logging.getLogger(__name__)


class WalletResolver(Protocol):
    async def resolve_wallet(self, wallet_id: str) -> WalletRef | None: ...


class WalletDirectory:
    """Static wallet id to public key mapping."""

    def __init__(self, wallets: Mapping[str, str] | None = None) -> None:
        self._wallets = dict(wallets or {})

    def __len__(self) -> int:
        return len(self._wallets)

    async def resolve_wallet(self, wallet_id: str) -> WalletRef | None:
        public_key = self._wallets.get(wallet_id)
        if public_key is None:
            return None
        return WalletRef(id=wallet_id, public_key=public_key)


class SigningServiceClient:
    """HTTP client for the external signing service.

    Endpoints:
        - ``GET /wallets/{id}`` returns ``{"id", "public_key"}``.
        - ``POST /sign`` with ``{"wallet_id", "transaction", "tip_lamports"}``
          returns ``{"signed_transaction"}`` (base64). The tip, when
          non-zero, is added by the service to the signed transaction.

    Resolved wallets are cached for the lifetime of the client.
    """

    def __init__(
        self,
        *,
        base_url: str,
        token: str | None = None,
        client: httpx.AsyncClient | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout
        self._wallets: dict[str, WalletRef] = {}

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    def _headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._token}"} if self._token else {}

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    async def resolve_wallet(self, wallet_id: str) -> WalletRef | None:
        if wallet_id in self._wallets:
            return self._wallets[wallet_id]
        try:
            response = await self._http().get(
                f"{self._base_url}/wallets/{wallet_id}", headers=self._headers(), timeout=self._timeout
            )
        except httpx.HTTPError as e:
            logger.warning("Failed to resolve wallet %s: %s", wallet_id, e)
            return None
        if response.status_code == 404:
            return None
        if not response.is_success:
            logger.warning("Signing service refused wallet %s: HTTP %d", wallet_id, response.status_code)
            return None
        try:
            body = response.json()
        except ValueError:
            logger.warning("Malformed wallet response for %s", wallet_id)
            return None
        public_key = body.get("public_key") if isinstance(body, dict) else None
        if not isinstance(public_key, str) or not public_key:
            return None
        wallet = WalletRef(id=wallet_id, public_key=public_key)
        self._wallets[wallet_id] = wallet
        return wallet

    async def sign_transaction(self, wallet: WalletRef, transaction: str, *, tip_lamports: int = 0) -> str:
        """Return ``transaction`` signed by ``wallet``.

        Raises:
            ExecutionError: If the service rejects the request.
            httpx.HTTPError: On transport failure.
        """
        response = await self._http().post(
            f"{self._base_url}/sign",
            headers=self._headers(),
            json={"wallet_id": wallet.id, "transaction": transaction, "tip_lamports": tip_lamports},
            timeout=self._timeout,
        )
        raise_for_provider_error(response)
        try:
            body = response.json()
        except ValueError as e:
            raise ExecutionError(ErrorKind.REJECTED, "Malformed signing response") from e
        signed = body.get("signed_transaction") if isinstance(body, dict) else None
        if not isinstance(signed, str) or not signed:
            raise ExecutionError(ErrorKind.REJECTED, "Signing service returned no transaction")
        return signed

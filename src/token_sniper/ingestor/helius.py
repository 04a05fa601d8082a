"""Helius connectors: transaction stream and DAS asset poller."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

import httpx

from token_sniper.ingestor.connector import (
    DEFAULT_HEARTBEAT_INTERVAL,
    PollingConnector,
    TransportError,
    WebSocketConnector,
)

logger = logging.getLogger(__name__)

RAYDIUM_AMM_PROGRAM = "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Mp8"
SPL_TOKEN_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

POOL_INIT_LOG = "initialize2: InitializeInstruction2"
MINT_LOG_MARKERS = ("initializeMint", "mintTo")
HEARTBEAT_REQUEST_ID = 999

DEFAULT_DAS_PAGE_SIZE = 20
DEFAULT_DAS_POLL_INTERVAL = 30  # seconds


def classify_transaction(transaction: dict[str, Any]) -> str | None:
    """Return ``"pool"`` or ``"mint"`` for interesting transactions, else None."""
    meta = transaction.get("meta") or {}
    logs = meta.get("logMessages") or []
    for line in logs:
        if not isinstance(line, str):
            continue
        if POOL_INIT_LOG in line:
            return "pool"
        if any(marker in line for marker in MINT_LOG_MARKERS):
            return "mint"
    return None


class HeliusStreamConnector(WebSocketConnector):
    """Subscribes to Raydium pool and SPL mint transactions.

    Each ``transactionSubscribe`` request carries a client-chosen id; the
    ``{"id": N, "result": sub}`` reply confirms it. The connector counts as
    connected once every request has been confirmed.
    """

    name = "helius"

    def __init__(
        self,
        *,
        url: str,
        api_key: str,
        programs: tuple[str, ...] = (RAYDIUM_AMM_PROGRAM, SPL_TOKEN_PROGRAM),
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        **kwargs: Any,
    ) -> None:
        super().__init__(url=f"{url}/?api-key={api_key}", heartbeat_interval=heartbeat_interval, **kwargs)
        self._programs = programs
        self._pending_ids: set[int] = set()
        self._subscriptions: dict[int, int] = {}

    @property
    def subscriptions(self) -> dict[int, int]:
        """Confirmed subscriptions, request id -> server subscription id."""
        return dict(self._subscriptions)

    def _subscription_requests(self) -> Iterable[dict[str, Any]]:
        self._subscriptions.clear()
        self._pending_ids = set()
        requests = []
        for request_id, program in enumerate(self._programs, start=1):
            self._pending_ids.add(request_id)
            requests.append(
                {
                    "jsonrpc": "2.0",
                    "id": request_id,
                    "method": "transactionSubscribe",
                    "params": [
                        {"accountInclude": [program]},
                        {
                            "commitment": "confirmed",
                            "encoding": "jsonParsed",
                            "transactionDetails": "full",
                            "maxSupportedTransactionVersion": 0,
                        },
                    ],
                }
            )
        return requests

    def _heartbeat_message(self) -> dict[str, Any]:
        return {"jsonrpc": "2.0", "id": HEARTBEAT_REQUEST_ID, "method": "ping"}

    async def _handle_frame(self, data: dict[str, Any]) -> None:
        request_id = data.get("id")
        if request_id is not None:
            if request_id == HEARTBEAT_REQUEST_ID:
                return
            if "error" in data:
                error = data.get("error")
                message = error.get("message", "unknown error") if isinstance(error, dict) else error
                raise TransportError(f"Helius rejected subscription {request_id}: {message}")
            if request_id in self._pending_ids and "result" in data:
                self._pending_ids.discard(request_id)
                self._subscriptions[request_id] = data["result"]
                logger.info("Helius subscription %s confirmed (sub=%s)", request_id, data["result"])
                if not self._pending_ids:
                    await self._mark_connected()
            return

        if data.get("method") != "transactionNotification":
            logger.debug("Ignoring Helius frame method=%r", data.get("method"))
            return

        result = (data.get("params") or {}).get("result") or {}
        transaction = result.get("transaction")
        if not isinstance(transaction, dict):
            return
        kind = classify_transaction(transaction)
        if kind is None:
            return
        self._emit({"kind": kind, "signature": result.get("signature"), "transaction": transaction})


class HeliusDasPoller(PollingConnector):
    """Polls ``searchAssets`` for the newest fungible assets."""

    name = "helius_das"

    def __init__(
        self,
        *,
        rpc_url: str,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        page_size: int = DEFAULT_DAS_PAGE_SIZE,
        poll_interval: float = DEFAULT_DAS_POLL_INTERVAL,
        timeout: float = 10.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(poll_interval=poll_interval, **kwargs)
        self._url = f"{rpc_url}/?api-key={api_key}"
        self._client = client
        self._owns_client = client is None
        self._page_size = page_size
        self._timeout = timeout

    async def _poll_once(self) -> list[dict[str, Any]]:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        body = {
            "jsonrpc": "2.0",
            "id": "recent-assets",
            "method": "searchAssets",
            "params": {
                "page": 1,
                "limit": self._page_size,
                "sortBy": {"sortBy": "created", "sortDirection": "desc"},
                "tokenType": "fungible",
                "displayOptions": {"showFungible": True},
            },
        }
        try:
            response = await self._client.post(self._url, json=body)
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"Helius DAS poll failed: {e}") from e

        if not isinstance(data, dict):
            raise TransportError("Helius DAS returned a non-object response")
        if "error" in data:
            raise TransportError(f"Helius DAS error: {data['error']}")
        items = ((data.get("result") or {}).get("items")) or []
        return [item for item in items if isinstance(item, dict)]

    async def _close_transport(self) -> None:
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

"""DexScreener latest-pairs poller."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from token_sniper.ingestor.connector import PollingConnector, TransportError

logger = logging.getLogger(__name__)

DEFAULT_DEXSCREENER_URL = "https://api.dexscreener.com"
DEFAULT_POLL_INTERVAL = 30  # seconds
LATEST_PAIRS_PATH = "/latest/dex/pairs/solana"


class DexScreenerPoller(PollingConnector):
    """Polls DexScreener for the most recently created Solana pairs.

    Pairs from other chains are skipped; the response is otherwise passed
    through untouched for the normalizer.
    """

    name = "dexscreener"

    def __init__(
        self,
        *,
        base_url: str = DEFAULT_DEXSCREENER_URL,
        client: httpx.AsyncClient | None = None,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
        timeout: float = 10.0,
        **kwargs: Any,
    ) -> None:
        super().__init__(poll_interval=poll_interval, **kwargs)
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    async def _poll_once(self) -> list[dict[str, Any]]:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, headers={"Accept": "application/json"})
        try:
            response = await self._client.get(
                f"{self._base_url}{LATEST_PAIRS_PATH}",
                params={"sort": "created_at", "order": "desc"},
            )
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise TransportError(f"DexScreener poll failed: {e}") from e

        pairs = data.get("pairs") if isinstance(data, dict) else None
        if not isinstance(pairs, list):
            logger.debug("DexScreener response without pairs list")
            return []
        return [p for p in pairs if isinstance(p, dict) and p.get("chainId", "solana") == "solana"]

    async def _close_transport(self) -> None:
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

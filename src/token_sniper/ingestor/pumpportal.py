"""PumpPortal new-token stream connector."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from token_sniper.ingestor.connector import DEFAULT_HEARTBEAT_INTERVAL, WebSocketConnector

logger = logging.getLogger(__name__)

DEFAULT_PUMPPORTAL_WS_URL = "wss://pumpportal.fun/api/data"


class PumpPortalConnector(WebSocketConnector):
    """Streams token creations from PumpPortal.

    PumpPortal answers the subscribe request with a ``{"message": ...}``
    frame; every frame carrying a ``mint`` afterwards is a new token. Some
    deployments skip the confirmation, so the first token frame also
    confirms the connection.
    """

    name = "pumpportal"

    def __init__(
        self,
        *,
        url: str = DEFAULT_PUMPPORTAL_WS_URL,
        heartbeat_interval: float = DEFAULT_HEARTBEAT_INTERVAL,
        **kwargs: Any,
    ) -> None:
        super().__init__(url=url, heartbeat_interval=heartbeat_interval, **kwargs)

    def _subscription_requests(self) -> Iterable[dict[str, Any]]:
        return [{"method": "subscribeNewToken"}]

    def _heartbeat_message(self) -> dict[str, Any]:
        return {"method": "ping"}

    async def _handle_frame(self, data: dict[str, Any]) -> None:
        if "message" in data and "mint" not in data:
            logger.info("PumpPortal: %s", data.get("message"))
            await self._mark_connected()
            return
        if "errors" in data:
            logger.warning("PumpPortal error frame: %s", data.get("errors"))
            return
        if "mint" in data:
            await self._mark_connected()
            self._emit(data)
            return
        logger.debug("Ignoring PumpPortal frame keys=%s", sorted(data))

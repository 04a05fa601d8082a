"""Common base for execution providers."""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from typing import Any

import httpx

from token_sniper.executor.models import (
    ErrorKind,
    ExecutionError,
    ProviderKind,
    TransactionParams,
    TransactionResult,
    classify_error,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


def response_error_text(response: httpx.Response) -> str:
    """Best-effort error text from a failed provider response."""
    try:
        body: Any = response.json()
    except ValueError:
        return response.text.strip() or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("error", "errors", "message"):
            value = body.get(key)
            if isinstance(value, dict):
                value = value.get("message") or value
            if isinstance(value, list):
                value = "; ".join(str(v) for v in value)
            if value:
                return str(value)
    return response.text.strip() or f"HTTP {response.status_code}"


def raise_for_provider_error(response: httpx.Response) -> None:
    """Raise :class:`ExecutionError` unless ``response`` is a 2xx."""
    if response.is_success:
        return
    message = response_error_text(response)
    raise ExecutionError(classify_error(message, status_code=response.status_code), message)


class TradeProvider(ABC):
    """Capability ``execute_transaction(params) -> TransactionResult``.

    Subclasses implement :meth:`_submit`, returning the transaction
    signature or raising :class:`ExecutionError`. Transport failures are
    mapped to ``ErrorKind.NETWORK``. Nothing is retried.
    """

    kind: ProviderKind

    def __init__(self, *, client: httpx.AsyncClient | None = None, timeout: float = DEFAULT_TIMEOUT_SECONDS) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()

    @abstractmethod
    def validate(self) -> None:
        """Raise ConfigurationError if a credential or endpoint is missing."""

    @abstractmethod
    async def _submit(self, params: TransactionParams) -> str:
        """Submit ``params`` and return the transaction signature."""

    async def execute_transaction(self, params: TransactionParams) -> TransactionResult:
        started = time.perf_counter()
        try:
            signature = await self._submit(params)
        except ExecutionError as e:
            error, kind = e.message, e.kind
        except httpx.HTTPError as e:
            error, kind = str(e) or type(e).__name__, ErrorKind.NETWORK
        else:
            latency_ms = (time.perf_counter() - started) * 1000
            logger.info(
                "%s %s %s for wallet %s: %s (%.0fms)",
                self.kind.value,
                params.action.value,
                params.mint,
                params.wallet.id,
                signature,
                latency_ms,
            )
            return TransactionResult.ok(params, provider=self.kind, signature=signature, latency_ms=latency_ms)

        latency_ms = (time.perf_counter() - started) * 1000
        logger.warning(
            "%s %s %s for wallet %s failed (%s): %s",
            self.kind.value,
            params.action.value,
            params.mint,
            params.wallet.id,
            kind.value,
            error,
        )
        return TransactionResult.failed(
            params, provider=self.kind, error=error, error_kind=kind, latency_ms=latency_ms
        )

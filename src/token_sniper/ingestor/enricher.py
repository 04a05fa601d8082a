"""Off-chain metadata enrichment with optional Redis caching.

Pairs are queued with :meth:`MetadataEnricher.submit` and processed by a
fixed pool of workers, so a slow metadata host never blocks ingestion.
Every finished job is handed to ``on_enriched`` as the submitted pair and
the metadata built for it (None on failure). Callers merge the metadata into
their current record with :func:`apply_enrichment`.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

import httpx
from redis.asyncio import Redis

from token_sniper.ingestor.links import dedupe_links, document_links, extract_tags
from token_sniper.ingestor.models import EnrichedMetadata, TradingPair

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 5.0
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_REQUEST_DELAY_MS = 500
DEFAULT_QUEUE_SIZE = 1000
DEFAULT_CACHE_TTL_SECONDS = 24 * 3600
DEFAULT_REDIS_KEY_PREFIX = "token_sniper:metadata:"
DEFAULT_IPFS_GATEWAYS = ("https://ipfs.io/ipfs/", "https://gateway.ipfs.io/ipfs/")

VERIFIED_RISK_DISCOUNT = 15
MIN_VERIFIED_DESCRIPTION = 50


class EnrichmentError(Exception):
    """Raised when a metadata document cannot be fetched or decoded."""


@dataclass
class EnricherStats:
    submitted: int = 0
    skipped: int = 0
    enriched: int = 0
    failed: int = 0
    fetches: int = 0
    cache_hits: int = 0
    last_error: str | None = None


EnrichedCallback = Callable[[TradingPair, EnrichedMetadata | None], Awaitable[None]]


def extract_ipfs_hash(uri: str) -> str | None:
    """Return the IPFS content id referenced by ``uri``, if any."""
    uri = uri.strip()
    if uri.startswith("ipfs://"):
        cid = uri[len("ipfs://") :]
        if cid.startswith("ipfs/"):
            cid = cid[len("ipfs/") :]
        return cid or None
    if "/ipfs/" in uri:
        return uri.split("/ipfs/", 1)[1] or None
    if "://" not in uri and uri.startswith(("Qm", "ba")):
        return uri
    return None


def is_verified(document: dict[str, Any]) -> bool:
    """At least two trust signals, and a description to begin with."""
    description = document.get("description")
    if not isinstance(description, str) or not description:
        return False
    indicators = [
        len(description) > MIN_VERIFIED_DESCRIPTION,
        bool(document.get("external_url")),
        bool(document.get("collection")),
        bool(document.get("attributes")),
    ]
    return sum(indicators) >= 2


def apply_enrichment(pair: TradingPair, metadata: EnrichedMetadata) -> TradingPair:
    """Attach ``metadata`` to ``pair``, discounting risk for verified documents."""
    risk = max(0, pair.risk_score - VERIFIED_RISK_DISCOUNT) if metadata.verified else pair.risk_score
    return pair.with_enrichment(metadata, risk_score=risk)


class MetadataEnricher:
    """Resolve metadata URIs into :class:`EnrichedMetadata`.

    Args:
        client: Shared HTTP client; one is created when omitted.
        redis: Optional cache for fetched documents.
        timeout: Per-request timeout in seconds.
        max_concurrency: Number of worker tasks (concurrent fetches).
        request_delay_ms: Pause each worker takes after a network fetch.
        queue_size: Pending jobs kept before new submissions are skipped.
        ipfs_gateways: Gateways tried in order for IPFS URIs.
        on_enriched: Awaited with the submitted pair and its metadata (or
            None) after every job.

    Example:
        ```python
        enricher = MetadataEnricher(on_enriched=handle_pair)
        await enricher.start()
        enricher.submit(pair)
        ```
    """

    def __init__(
        self,
        *,
        client: httpx.AsyncClient | None = None,
        redis: Redis | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_concurrency: int = DEFAULT_MAX_CONCURRENCY,
        request_delay_ms: int = DEFAULT_REQUEST_DELAY_MS,
        queue_size: int = DEFAULT_QUEUE_SIZE,
        ipfs_gateways: tuple[str, ...] = DEFAULT_IPFS_GATEWAYS,
        cache_ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
        key_prefix: str = DEFAULT_REDIS_KEY_PREFIX,
        on_enriched: EnrichedCallback | None = None,
    ) -> None:
        self._client = client
        self._owns_client = client is None
        self._redis = redis
        self._timeout = timeout
        self._max_concurrency = max_concurrency
        self._request_delay = request_delay_ms / 1000
        self._ipfs_gateways = ipfs_gateways
        self._cache_ttl = cache_ttl_seconds
        self._key_prefix = key_prefix
        self._on_enriched = on_enriched

        self._queue: asyncio.Queue[TradingPair] = asyncio.Queue(maxsize=queue_size)
        self._workers: list[asyncio.Task[None]] = []
        self._stats = EnricherStats()

    @property
    def stats(self) -> EnricherStats:
        return self._stats

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def set_callback(self, callback: EnrichedCallback | None) -> None:
        self._on_enriched = callback

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def start(self) -> None:
        if self._workers:
            raise RuntimeError("Enricher already running")
        self._workers = [
            asyncio.create_task(self._worker(i), name=f"enricher-{i}") for i in range(self._max_concurrency)
        ]
        logger.info("Metadata enricher started with %d workers", self._max_concurrency)

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        for task in self._workers:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._workers = []
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        if self._owns_client and self._client is not None:
            client, self._client = self._client, None
            await client.aclose()
        logger.info("Metadata enricher stopped")

    def submit(self, pair: TradingPair) -> bool:
        """Queue ``pair`` for enrichment without waiting.

        Returns:
            False if the queue is full and the pair was skipped.
        """
        try:
            self._queue.put_nowait(pair)
        except asyncio.QueueFull:
            self._stats.skipped += 1
            logger.warning("Enrichment queue full; skipping %s", pair.id)
            return False
        self._stats.submitted += 1
        return True

    async def join(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _worker(self, index: int) -> None:
        while True:
            pair = await self._queue.get()
            try:
                fetches_before = self._stats.fetches
                metadata = await self._process(pair)
                if self._on_enriched:
                    try:
                        await self._on_enriched(pair, metadata)
                    except Exception:
                        logger.exception("Error in enrichment callback for %s", pair.id)
                if self._stats.fetches > fetches_before and self._request_delay > 0:
                    await asyncio.sleep(self._request_delay)
            finally:
                self._queue.task_done()

    async def _process(self, pair: TradingPair) -> EnrichedMetadata | None:
        try:
            metadata = await self.build_metadata(pair)
        except EnrichmentError as e:
            self._stats.failed += 1
            self._stats.last_error = str(e)
            logger.debug("Enrichment failed for %s: %s", pair.id, e)
            return None
        except Exception as e:
            self._stats.failed += 1
            self._stats.last_error = str(e)
            logger.exception("Unexpected enrichment failure for %s", pair.id)
            return None
        self._stats.enriched += 1
        return metadata

    async def enrich(self, pair: TradingPair) -> TradingPair:
        """Return ``pair`` carrying enriched metadata.

        Raises:
            EnrichmentError: If the referenced document cannot be loaded.
        """
        return apply_enrichment(pair, await self.build_metadata(pair))

    async def build_metadata(self, pair: TradingPair) -> EnrichedMetadata:
        """Build the enriched metadata for ``pair``.

        A pair without a metadata URI is enriched from its inline fields
        only, without a network call.

        Raises:
            EnrichmentError: If the referenced document cannot be loaded.
        """
        document: dict[str, Any] = {}
        if pair.metadata_uri:
            document = await self.fetch_document(pair.metadata_uri)

        description = document.get("description") if isinstance(document.get("description"), str) else None
        description = description or pair.description or ""
        name = document.get("name") if isinstance(document.get("name"), str) else None

        image = document.get("image") if isinstance(document.get("image"), str) else None
        resolved_image = self.resolve_image_url(image) or self.resolve_image_url(pair.image_url)

        verified = is_verified(document) if document else False
        return EnrichedMetadata(
            description=description,
            verified=verified,
            resolved_image_url=resolved_image,
            name=name.strip() or None if name else None,
            social_links=dedupe_links((*document_links(document), *pair.social_links)),
            tags=extract_tags(description),
        )

    def resolve_image_url(self, image: str | None) -> str | None:
        if not image:
            return None
        cid = extract_ipfs_hash(image)
        if cid:
            return f"{self._ipfs_gateways[0]}{cid}"
        if image.startswith(("http://", "https://")):
            return image
        return None

    async def fetch_document(self, uri: str) -> dict[str, Any]:
        """Fetch a metadata document, consulting the cache first.

        Raises:
            EnrichmentError: On unsupported URIs, transport failures,
                timeouts, or non-object JSON.
        """
        cached = await self._cache_get(uri)
        if cached is not None:
            self._stats.cache_hits += 1
            return cached

        cid = extract_ipfs_hash(uri)
        if cid:
            urls = [f"{gateway}{cid}" for gateway in self._ipfs_gateways]
        elif uri.startswith(("http://", "https://")):
            urls = [uri]
        else:
            raise EnrichmentError(f"Unsupported metadata URI: {uri}")

        last_error: Exception | None = None
        for url in urls:
            self._stats.fetches += 1
            try:
                response = await self._http().get(url, timeout=self._timeout)
                response.raise_for_status()
                document = response.json()
            except (httpx.HTTPError, ValueError) as e:
                last_error = e
                logger.debug("Metadata fetch from %s failed: %s", url, e)
                continue
            if not isinstance(document, dict):
                last_error = EnrichmentError("metadata document is not a JSON object")
                continue
            await self._cache_set(uri, document)
            return document

        raise EnrichmentError(f"Failed to fetch metadata {uri}: {last_error}")

    async def _cache_get(self, uri: str) -> dict[str, Any] | None:
        if self._redis is None:
            return None
        try:
            cached = await self._redis.get(f"{self._key_prefix}{uri}")
        except Exception as e:
            logger.warning("Metadata cache read failed: %s", e)
            return None
        if not cached:
            return None
        try:
            data = json.loads(cached)
        except json.JSONDecodeError as e:
            logger.warning("Failed to parse cached metadata %s: %s", uri, e)
            return None
        return data if isinstance(data, dict) else None

    async def _cache_set(self, uri: str, document: dict[str, Any]) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.setex(f"{self._key_prefix}{uri}", self._cache_ttl, json.dumps(document))
        except Exception as e:
            logger.warning("Metadata cache write failed: %s", e)

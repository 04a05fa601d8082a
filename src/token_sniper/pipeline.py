"""Main pipeline orchestrator for the token sniper.

This module provides the Pipeline class that wires together source
connectors, normalization, the pair repository, enrichment, matching,
safety gating and trade execution.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any, TypeVar

import httpx
from redis.asyncio import Redis

from token_sniper.config import Settings, get_settings
from token_sniper.detector.matcher import MatchingEngine
from token_sniper.detector.models import SniperConfig, TokenMatch
from token_sniper.executor.dispatcher import ExecutionDispatcher
from token_sniper.executor.models import ProviderKind, TradeAction, TransactionParams, TransactionResult
from token_sniper.executor.safety import PendingConfirmation, Reservation, SafetyController, SafetyRejection
from token_sniper.executor.signing import SigningServiceClient, WalletDirectory, WalletResolver
from token_sniper.ingestor.connector import ConnectionState, SourceConnector, merge_events
from token_sniper.ingestor.dedup import Deduplicator
from token_sniper.ingestor.dexscreener import DexScreenerPoller
from token_sniper.ingestor.enricher import MetadataEnricher, apply_enrichment
from token_sniper.ingestor.helius import HeliusDasPoller, HeliusStreamConnector
from token_sniper.ingestor.models import EnrichedMetadata, RawEvent, TradingPair
from token_sniper.ingestor.normalizer import Normalizer, ParseError
from token_sniper.ingestor.pumpportal import PumpPortalConnector
from token_sniper.storage.config_store import ConfigStore, InMemoryConfigStore, RedisConfigStore
from token_sniper.storage.pair_repository import PairRepository

logger = logging.getLogger(__name__)

T = TypeVar("T")

MatchSink = Callable[[TokenMatch], Awaitable[None]]
ResultSink = Callable[[TransactionResult], Awaitable[None]]
ConfirmationSink = Callable[[PendingConfirmation], Awaitable[None]]

DEFAULT_HTTP_TIMEOUT_SECONDS = 10.0


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    events_received: int = 0
    pairs_accepted: int = 0
    duplicates: int = 0
    parse_errors: int = 0
    dropped_while_paused: int = 0
    matches: int = 0
    safety_rejections: int = 0
    trades_submitted: int = 0
    trades_failed: int = 0
    errors: int = 0
    last_event_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator.

    Pipeline flow:
        Connectors → Normalizer → Deduplicator → Pair Repository → Enricher
        → Matching Engine → Safety Controller → Execution Dispatcher

    Components not passed in are built from settings in :meth:`start`.

    Example:
        ```python
        from token_sniper.config import get_settings
        from token_sniper.pipeline import Pipeline

        pipeline = Pipeline(get_settings())
        pipeline.add_match_sink(print_match)

        async with pipeline:
            await asyncio.sleep(60)
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        connectors: list[SourceConnector] | None = None,
        config_store: ConfigStore | None = None,
        dispatcher: ExecutionDispatcher | None = None,
        wallets: WalletResolver | None = None,
        enricher: MetadataEnricher | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, authorize but do not submit trades. Overrides
                settings.dry_run.
            connectors: Source connectors; built from settings when omitted.
            config_store: Sniper configuration store.
            dispatcher: Execution dispatcher.
            wallets: Resolves configured wallet ids to wallets.
            enricher: Metadata enricher; built from settings when omitted
                and enrichment is enabled.
            clock: Returns "now"; injectable for tests.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run
        self._clock = clock or (lambda: datetime.now(UTC))

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        self._connectors: list[SourceConnector] = list(connectors) if connectors is not None else []
        self._build_connectors = connectors is None
        self._config_store = config_store
        self._dispatcher = dispatcher
        self._wallets = wallets
        self._enricher = enricher
        self._build_enricher = enricher is None

        ingest = self._settings.ingest
        self._normalizer = Normalizer(sol_usd_price=ingest.sol_usd_price, clock=self._clock)
        self._dedup = Deduplicator(max_entries=ingest.dedup_max_entries, trim_to=ingest.dedup_trim_to)
        self._repository = PairRepository(capacity=self._settings.repository.capacity)
        self._matcher = MatchingEngine(history_size=self._settings.repository.match_history_size)
        self._safety = SafetyController(
            confirmation_timeout=self._settings.safety.confirmation_timeout_seconds,
            max_pending=self._settings.safety.max_pending,
            clock=self._clock,
        )
        self._configs: dict[str, SniperConfig] = {}

        # Owned resources (created in start())
        self._redis: Redis | None = None
        self._http: httpx.AsyncClient | None = None
        self._signer: SigningServiceClient | None = None

        self._match_sinks: list[MatchSink] = []
        self._result_sinks: list[ResultSink] = []
        self._confirmation_sinks: list[ConfirmationSink] = []

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._ingest_task: asyncio.Task[None] | None = None
        self._trade_tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def repository(self) -> PairRepository:
        return self._repository

    @property
    def matcher(self) -> MatchingEngine:
        return self._matcher

    @property
    def safety(self) -> SafetyController:
        return self._safety

    @property
    def dispatcher(self) -> ExecutionDispatcher | None:
        return self._dispatcher

    @property
    def connectors(self) -> list[SourceConnector]:
        return list(self._connectors)

    @property
    def configs(self) -> list[SniperConfig]:
        return list(self._configs.values())

    # Sinks

    def add_match_sink(self, sink: MatchSink) -> None:
        self._match_sinks.append(sink)

    def add_result_sink(self, sink: ResultSink) -> None:
        self._result_sinks.append(sink)

    def add_confirmation_sink(self, sink: ConfirmationSink) -> None:
        self._confirmation_sinks.append(sink)

    async def _publish(self, sinks: list[Callable[[T], Awaitable[None]]], item: T) -> None:
        for sink in sinks:
            try:
                await sink(item)
            except Exception:
                logger.exception("Sink %r failed", sink)

    # Control surface

    def pause(self) -> bool:
        return self._repository.pause()

    def resume(self) -> bool:
        return self._repository.resume()

    def dialog_opened(self) -> None:
        self._repository.dialog_opened()

    def dialog_closed(self) -> bool:
        return self._repository.dialog_closed()

    def approve(self, confirmation_id: str) -> bool:
        return self._safety.approve(confirmation_id)

    def reject(self, confirmation_id: str) -> bool:
        return self._safety.reject(confirmation_id)

    def select_provider(self, kind: ProviderKind) -> None:
        """Switch the execution provider at runtime.

        Raises:
            RuntimeError: If no dispatcher is configured.
            ConfigurationError: If the provider is unavailable.
        """
        if self._dispatcher is None:
            raise RuntimeError("No execution dispatcher configured")
        self._dispatcher.select(kind)

    def connector_states(self) -> dict[str, ConnectionState]:
        return {c.name: c.state for c in self._connectors}

    async def reconnect(self, name: str) -> bool:
        """Restart the named connector after it settled into the error state."""
        for connector in self._connectors:
            if connector.name == name:
                await connector.reconnect()
                return True
        return False

    # Lifecycle

    async def start(self) -> None:
        """Start the pipeline.

        Raises:
            RuntimeError: If pipeline is already running.
            Exception: If any component fails to initialize.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            await self.reload_configs()
            await self._start_background_services()
            self._stats.started_at = self._clock()
            self._state = PipelineState.RUNNING
            logger.info(
                "Pipeline started (sources=%s, configs=%d, dry_run=%s)",
                ", ".join(c.name for c in self._connectors) or "none",
                len(self._configs),
                self._dry_run,
            )
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._stop_background_services()
            await self._cleanup()
            self._state = PipelineState.STOPPED
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully."""
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        await self._stop_background_services()
        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        settings = self._settings

        if settings.redis.enabled:
            logger.debug("Initializing Redis connection...")
            self._redis = Redis.from_url(settings.redis.url)

        if self._config_store is None:
            if self._redis is not None:
                self._config_store = RedisConfigStore(
                    self._redis,
                    key=settings.redis.config_key,
                    channel=settings.redis.config_channel,
                )
            else:
                logger.warning("Redis disabled; using an empty in-memory config store")
                self._config_store = InMemoryConfigStore()
        self._config_store.add_listener(self.reload_configs)

        needs_http = (
            self._build_connectors
            or (self._build_enricher and settings.enrichment.enabled)
            or self._dispatcher is None
            or self._wallets is None
        )
        if needs_http:
            self._http = httpx.AsyncClient(timeout=DEFAULT_HTTP_TIMEOUT_SECONDS, follow_redirects=True)

        if self._build_connectors:
            self._connectors = self._create_connectors()

        if self._build_enricher and settings.enrichment.enabled:
            enrichment = settings.enrichment
            self._enricher = MetadataEnricher(
                client=self._http,
                redis=self._redis,
                timeout=enrichment.timeout_seconds,
                max_concurrency=enrichment.max_concurrency,
                request_delay_ms=enrichment.request_delay_ms,
                queue_size=enrichment.queue_size,
                ipfs_gateways=enrichment.ipfs_gateways,
                cache_ttl_seconds=enrichment.cache_ttl_seconds,
            )

        execution = settings.execution
        if execution.signing_service_url and (self._dispatcher is None or self._wallets is None):
            token = execution.signing_service_token
            self._signer = SigningServiceClient(
                base_url=execution.signing_service_url,
                token=token.get_secret_value() if token else None,
                client=self._http,
                timeout=execution.request_timeout_seconds,
            )

        if self._wallets is None:
            self._wallets = self._signer if self._signer is not None else WalletDirectory(execution.wallets)

        if self._dispatcher is None:
            self._dispatcher = ExecutionDispatcher.from_settings(settings, client=self._http, signer=self._signer)

    def _create_connectors(self) -> list[SourceConnector]:
        settings = self._settings
        queue_size = settings.ingest.event_queue_size
        connectors: list[SourceConnector] = []
        if settings.pumpportal.enabled:
            connectors.append(
                PumpPortalConnector(
                    url=settings.pumpportal.ws_url,
                    heartbeat_interval=settings.pumpportal.heartbeat_interval_seconds,
                    queue_size=queue_size,
                )
            )
        helius = settings.helius
        if helius.api_key is not None:
            api_key = helius.api_key.get_secret_value()
            if helius.stream_enabled:
                connectors.append(
                    HeliusStreamConnector(
                        url=helius.ws_url,
                        api_key=api_key,
                        heartbeat_interval=helius.heartbeat_interval_seconds,
                        queue_size=queue_size,
                    )
                )
            if helius.das_enabled:
                connectors.append(
                    HeliusDasPoller(
                        rpc_url=helius.rpc_url,
                        api_key=api_key,
                        client=self._http,
                        page_size=helius.das_page_size,
                        poll_interval=helius.das_poll_interval_seconds,
                        queue_size=queue_size,
                    )
                )
        if settings.dexscreener.enabled:
            connectors.append(
                DexScreenerPoller(
                    base_url=settings.dexscreener.base_url,
                    client=self._http,
                    poll_interval=settings.dexscreener.poll_interval_seconds,
                    queue_size=queue_size,
                )
            )
        return connectors

    async def _start_background_services(self) -> None:
        if isinstance(self._config_store, RedisConfigStore):
            await self._config_store.start()

        if self._enricher is not None:
            self._enricher.set_callback(self._on_enriched)
            await self._enricher.start()

        for connector in self._connectors:
            logger.debug("Starting %s connector...", connector.name)
            await connector.start()

        if self._connectors:
            self._ingest_task = asyncio.create_task(self._run_ingest(), name="pipeline-ingest")

    async def _stop_background_services(self) -> None:
        for connector in self._connectors:
            logger.debug("Stopping %s connector...", connector.name)
            await connector.stop()

        if self._ingest_task:
            self._ingest_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._ingest_task
            self._ingest_task = None

        if self._enricher is not None:
            await self._enricher.stop()

        for task in list(self._trade_tasks):
            task.cancel()
        for task in list(self._trade_tasks):
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._trade_tasks.clear()

        if isinstance(self._config_store, RedisConfigStore):
            await self._config_store.stop()

    async def _cleanup(self) -> None:
        if self._dispatcher is not None:
            await self._dispatcher.aclose()
        if self._signer is not None:
            await self._signer.aclose()
            self._signer = None
        if self._http is not None:
            await self._http.aclose()
            self._http = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        logger.debug("Resources cleaned up")

    # Config cache

    async def reload_configs(self) -> None:
        """Refresh the rule cache from the config store."""
        if self._config_store is None:
            return
        try:
            configs = await self._config_store.list_configs()
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Failed to load sniper configs: %s", e)
            return
        removed = set(self._configs) - {c.id for c in configs}
        for config_id in removed:
            self._safety.forget(config_id)
        self._configs = {c.id: c for c in configs}
        logger.info(
            "Loaded %d sniper configs (%d enabled)",
            len(configs),
            sum(1 for c in configs if c.enabled),
        )

    # Event flow

    async def _run_ingest(self) -> None:
        try:
            async for raw in merge_events(self._connectors):
                try:
                    await self.process_event(raw)
                except Exception as e:
                    self._stats.errors += 1
                    self._stats.last_error = str(e)
                    logger.exception("Error processing %s event", raw.source)
        except asyncio.CancelledError:
            logger.debug("Ingest task cancelled")
            raise

    async def process_event(self, raw: RawEvent) -> TradingPair | None:
        """Normalize, deduplicate and store one raw event.

        Returns:
            The accepted pair, or None if the event was malformed, a
            duplicate, or arrived while the repository was paused.
        """
        self._stats.events_received += 1
        self._stats.last_event_time = self._clock()

        try:
            pair = self._normalizer.normalize(raw)
        except ParseError as e:
            self._stats.parse_errors += 1
            logger.debug("Dropping %s payload: %s", raw.source, e)
            return None

        if not self._dedup.accept(pair.id):
            self._stats.duplicates += 1
            self._repository.apply(pair.id, lambda current: current.with_market_data(pair))
            return None

        if not self._repository.insert(pair):
            self._stats.dropped_while_paused += 1
            logger.debug("Repository paused; discarding %s", pair.id)
            return None
        self._stats.pairs_accepted += 1

        if self._enricher is not None and self._enricher.submit(pair):
            return pair
        await self._handle_pair(pair)
        return pair

    async def _on_enriched(self, pair: TradingPair, metadata: EnrichedMetadata | None) -> None:
        """Merge finished enrichment into the stored record and match it.

        Market data merged while the fetch was running is kept. A paused or
        evicted record is not written, but the pair is still matched.
        """
        current = self._repository.get(pair.id) or pair
        if metadata is not None:
            stored = self._repository.apply(pair.id, lambda latest: apply_enrichment(latest, metadata))
            current = stored or apply_enrichment(current, metadata)
        await self._handle_pair(current)

    async def _handle_pair(self, pair: TradingPair) -> None:
        matches = self._matcher.match(pair, self._configs.values(), now=self._clock())
        for match in matches:
            self._stats.matches += 1
            await self._publish(self._match_sinks, match)
            self._authorize(match)

    def _authorize(self, match: TokenMatch) -> None:
        decision = self._safety.authorize(match.config)
        if isinstance(decision, SafetyRejection):
            self._stats.safety_rejections += 1
            logger.info("Trade for %s on %s withheld: %s", match.pair.symbol, match.config.name, decision)
            return
        task = asyncio.create_task(self._execute_authorized(match, decision), name=f"trade-{match.id[:8]}")
        self._trade_tasks.add(task)
        task.add_done_callback(self._trade_tasks.discard)

    async def _execute_authorized(self, match: TokenMatch, reservation: Reservation) -> None:
        try:
            if match.config.require_confirmation:
                pending = self._safety.request_confirmation(match, reservation)
                if isinstance(pending, SafetyRejection):
                    self._stats.safety_rejections += 1
                    logger.warning("Trade for %s withheld: %s", match.pair.symbol, pending)
                    return
                await self._publish(self._confirmation_sinks, pending)
                outcome = await self._safety.wait_for_confirmation(pending)
                if isinstance(outcome, SafetyRejection):
                    self._stats.safety_rejections += 1
                    return
            await self._submit_for_wallets(match, reservation)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.exception("Trade task for %s failed", match.pair.id)

    async def _submit_for_wallets(self, match: TokenMatch, reservation: Reservation) -> list[TransactionResult]:
        """Submit one buy per configured wallet, in order, with stagger."""
        config = match.config
        results: list[TransactionResult] = []
        attempted = False
        for index, wallet_id in enumerate(config.selected_wallets):
            if index > 0 and config.stagger_delay_ms > 0:
                await asyncio.sleep(config.stagger_delay_ms / 1000)

            wallet = await self._wallets.resolve_wallet(wallet_id) if self._wallets else None
            if wallet is None:
                logger.warning("Wallet %s of config %s could not be resolved", wallet_id, config.name)
                continue

            params = TransactionParams(
                action=TradeAction.BUY,
                mint=match.pair.id,
                amount=config.buy_amount,
                slippage=config.slippage,
                wallet=wallet,
                priority_fee=config.max_gas,
                pool=config.trading_pool,
                config_id=config.id,
                match_id=match.id,
            )
            attempted = True
            if self._dry_run:
                logger.info(
                    "[DRY RUN] Would buy %s SOL of %s with wallet %s",
                    params.amount,
                    match.pair.symbol,
                    wallet.id,
                )
                continue
            if self._dispatcher is None:
                logger.error("No execution dispatcher configured")
                break

            result = await self._dispatcher.execute(params)
            results.append(result)
            if result.success:
                self._stats.trades_submitted += 1
            else:
                self._stats.trades_failed += 1
            await self._publish(self._result_sinks, result)

        if not attempted:
            logger.warning("No usable wallet for config %s; releasing its reservation", config.name)
            self._safety.refund(reservation)
        return results

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    def request_stop(self) -> None:
        """Ask :meth:`run` to return."""
        if self._stop_event:
            self._stop_event.set()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()

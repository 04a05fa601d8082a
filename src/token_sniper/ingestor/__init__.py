"""Data ingestion layer - Real-time token discovery from several sources."""

from token_sniper.ingestor.connector import (
    ConnectionState,
    PollingConnector,
    SourceConnector,
    SourceError,
    TransportError,
    WebSocketConnector,
    merge_events,
)
from token_sniper.ingestor.dedup import Deduplicator
from token_sniper.ingestor.dexscreener import DexScreenerPoller
from token_sniper.ingestor.enricher import EnrichmentError, MetadataEnricher
from token_sniper.ingestor.helius import HeliusDasPoller, HeliusStreamConnector
from token_sniper.ingestor.models import (
    EnrichedMetadata,
    MigrationStatus,
    RawEvent,
    TokenEvent,
    TokenInfo,
    TradingPair,
)
from token_sniper.ingestor.normalizer import Normalizer, ParseError
from token_sniper.ingestor.pumpportal import PumpPortalConnector

__all__ = [
    "ConnectionState",
    "Deduplicator",
    "DexScreenerPoller",
    "EnrichedMetadata",
    "EnrichmentError",
    "HeliusDasPoller",
    "HeliusStreamConnector",
    "MetadataEnricher",
    "MigrationStatus",
    "Normalizer",
    "ParseError",
    "PollingConnector",
    "PumpPortalConnector",
    "RawEvent",
    "SourceConnector",
    "SourceError",
    "TokenEvent",
    "TokenInfo",
    "TradingPair",
    "TransportError",
    "WebSocketConnector",
    "merge_events",
]

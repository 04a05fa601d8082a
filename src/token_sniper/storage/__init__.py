"""Storage layer - Pair repository and configuration stores."""

from token_sniper.storage.config_store import ConfigStore, InMemoryConfigStore, RedisConfigStore
from token_sniper.storage.pair_repository import (
    ChangeKind,
    PairFilter,
    PairRepository,
    PauseState,
    SortKey,
)

__all__ = [
    "ChangeKind",
    "ConfigStore",
    "InMemoryConfigStore",
    "PairFilter",
    "PairRepository",
    "PauseState",
    "RedisConfigStore",
    "SortKey",
]

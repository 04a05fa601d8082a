"""Bounded, ordered, pausable store of trading pairs.

The repository is the single mutable source of truth for pair data. All
writers go through one lock; readers get copies. Pausing drops inbound
mutations so a consumer can look at a stable snapshot.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from enum import Enum

from token_sniper.ingestor.models import MigrationStatus, TradingPair

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 200


class PauseState(str, Enum):
    RUNNING = "running"
    PAUSED_BY_HOVER = "paused_by_hover"
    PAUSED_BY_DIALOG = "paused_by_dialog"


class SortKey(str, Enum):
    NEWEST = "newest"
    LIQUIDITY = "liquidity"
    VOLUME = "volume"
    MARKET_CAP = "market_cap"
    PRICE_CHANGE = "price_change"


class ChangeKind(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    EVICTED = "evicted"
    REMOVED = "removed"


@dataclass(frozen=True)
class PairFilter:
    """Query filter; unset fields do not constrain the result."""

    search: str | None = None
    dexes: frozenset[str] | None = None
    statuses: frozenset[MigrationStatus] | None = None
    min_liquidity: Decimal | None = None
    max_age: timedelta | None = None

    def matches(self, pair: TradingPair, now: datetime) -> bool:
        if self.search:
            needle = self.search.strip().lower()
            haystack = f"{pair.symbol} {pair.name} {pair.id}".lower()
            if needle and needle not in haystack:
                return False
        if self.dexes is not None and pair.dex not in self.dexes:
            return False
        if self.statuses is not None and pair.migration_status not in self.statuses:
            return False
        if self.min_liquidity is not None and (pair.liquidity is None or pair.liquidity < self.min_liquidity):
            return False
        if self.max_age is not None and pair.age_seconds(now) > self.max_age.total_seconds():
            return False
        return True


@dataclass
class RepositoryStats:
    inserted: int = 0
    updated: int = 0
    evicted: int = 0
    dropped_while_paused: int = 0
    last_change: datetime | None = field(default=None)


ChangeListener = Callable[[ChangeKind, TradingPair], None]

_SORT_FIELDS: dict[SortKey, Callable[[TradingPair], Decimal | None]] = {
    SortKey.LIQUIDITY: lambda p: p.liquidity,
    SortKey.VOLUME: lambda p: p.volume_24h,
    SortKey.MARKET_CAP: lambda p: p.market_cap,
    SortKey.PRICE_CHANGE: lambda p: p.price_change_24h,
}


class PairRepository:
    """Newest-first store keyed by pair id with strict FIFO eviction.

    Pause handling is a small state machine:

    - ``pause()``: RUNNING -> PAUSED_BY_HOVER
    - ``resume()``: PAUSED_BY_HOVER -> RUNNING (refused under a dialog)
    - ``dialog_opened()``: any -> PAUSED_BY_DIALOG
    - ``dialog_closed()``: PAUSED_BY_DIALOG -> RUNNING

    Example:
        ```python
        repo = PairRepository(capacity=200)
        repo.insert(pair)
        newest = repo.query(PairFilter(min_liquidity=Decimal("1000")), sort=SortKey.VOLUME)
        ```
    """

    def __init__(self, *, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity < 1:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        # Insertion order is oldest -> newest.
        self._pairs: dict[str, TradingPair] = {}
        self._lock = threading.Lock()
        self._pause_state = PauseState.RUNNING
        self._listeners: list[ChangeListener] = []
        self._stats = RepositoryStats()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def pause_state(self) -> PauseState:
        return self._pause_state

    @property
    def is_paused(self) -> bool:
        return self._pause_state != PauseState.RUNNING

    @property
    def stats(self) -> RepositoryStats:
        return self._stats

    def __len__(self) -> int:
        return len(self._pairs)

    def __contains__(self, pair_id: object) -> bool:
        return pair_id in self._pairs

    def add_listener(self, listener: ChangeListener) -> None:
        """Register a callback invoked after every applied mutation."""
        self._listeners.append(listener)

    def _notify(self, changes: list[tuple[ChangeKind, TradingPair]]) -> None:
        for kind, pair in changes:
            for listener in self._listeners:
                try:
                    listener(kind, pair)
                except Exception:
                    logger.exception("Repository listener failed")

    def insert(self, pair: TradingPair) -> bool:
        """Insert ``pair`` at the head, evicting the oldest pair on overflow.

        A pair whose id is already stored is replaced in place.

        Returns:
            False if the repository is paused and the insert was dropped.
        """
        changes: list[tuple[ChangeKind, TradingPair]] = []
        with self._lock:
            if self._pause_state != PauseState.RUNNING:
                self._stats.dropped_while_paused += 1
                return False
            if pair.id in self._pairs:
                self._pairs[pair.id] = pair
                self._stats.updated += 1
                changes.append((ChangeKind.UPDATED, pair))
            else:
                self._pairs[pair.id] = pair
                self._stats.inserted += 1
                changes.append((ChangeKind.INSERTED, pair))
                while len(self._pairs) > self._capacity:
                    oldest_id = next(iter(self._pairs))
                    evicted = self._pairs.pop(oldest_id)
                    self._stats.evicted += 1
                    changes.append((ChangeKind.EVICTED, evicted))
            self._stats.last_change = datetime.now(UTC)
        self._notify(changes)
        return True

    def update(self, pair: TradingPair) -> bool:
        """Replace a stored pair in place.

        Returns:
            False if paused or the pair is no longer stored.
        """
        with self._lock:
            if self._pause_state != PauseState.RUNNING:
                self._stats.dropped_while_paused += 1
                return False
            if pair.id not in self._pairs:
                return False
            self._pairs[pair.id] = pair
            self._stats.updated += 1
            self._stats.last_change = datetime.now(UTC)
        self._notify([(ChangeKind.UPDATED, pair)])
        return True

    def apply(self, pair_id: str, change: Callable[[TradingPair], TradingPair]) -> TradingPair | None:
        """Replace a stored pair with ``change(current)`` under the lock.

        ``change`` sees the record as stored at that moment, so merges made
        by other writers in the meantime are kept.

        Returns:
            The stored result, or None if paused or the pair is not stored.
        """
        with self._lock:
            if self._pause_state != PauseState.RUNNING:
                self._stats.dropped_while_paused += 1
                return None
            current = self._pairs.get(pair_id)
            if current is None:
                return None
            merged = change(current)
            self._pairs[pair_id] = merged
            self._stats.updated += 1
            self._stats.last_change = datetime.now(UTC)
        self._notify([(ChangeKind.UPDATED, merged)])
        return merged

    def get(self, pair_id: str) -> TradingPair | None:
        return self._pairs.get(pair_id)

    def snapshot(self) -> list[TradingPair]:
        """All pairs, newest first."""
        with self._lock:
            return list(reversed(self._pairs.values()))

    def query(
        self,
        pair_filter: PairFilter | None = None,
        *,
        sort: SortKey = SortKey.NEWEST,
        now: datetime | None = None,
    ) -> list[TradingPair]:
        """Filter and sort the stored pairs.

        Sorting is descending; pairs with an unknown sort value come last,
        in newest-first order.
        """
        now = now or datetime.now(UTC)
        pairs = self.snapshot()
        if pair_filter is not None:
            pairs = [p for p in pairs if pair_filter.matches(p, now)]
        if sort == SortKey.NEWEST:
            return sorted(pairs, key=lambda p: p.created_at, reverse=True)
        getter = _SORT_FIELDS[sort]
        known = [p for p in pairs if getter(p) is not None]
        unknown = [p for p in pairs if getter(p) is None]
        known.sort(key=lambda p: getter(p), reverse=True)  # type: ignore[arg-type, return-value]
        return known + unknown

    def clear(self) -> bool:
        """Remove every pair.

        Returns:
            False if the repository is paused and nothing was removed.
        """
        with self._lock:
            if self._pause_state != PauseState.RUNNING:
                self._stats.dropped_while_paused += 1
                return False
            removed = list(self._pairs.values())
            self._pairs.clear()
            if removed:
                self._stats.last_change = datetime.now(UTC)
        self._notify([(ChangeKind.REMOVED, pair) for pair in removed])
        return True

    # Pause control

    def pause(self) -> bool:
        """Pause on hover. No effect while a dialog holds the latch."""
        with self._lock:
            if self._pause_state != PauseState.RUNNING:
                return False
            self._pause_state = PauseState.PAUSED_BY_HOVER
        logger.debug("Pair repository paused (hover)")
        return True

    def resume(self) -> bool:
        """Leave a hover pause. Refused while a dialog is open."""
        with self._lock:
            if self._pause_state != PauseState.PAUSED_BY_HOVER:
                return False
            self._pause_state = PauseState.RUNNING
        logger.debug("Pair repository resumed")
        return True

    def dialog_opened(self) -> None:
        with self._lock:
            self._pause_state = PauseState.PAUSED_BY_DIALOG
        logger.debug("Pair repository paused (dialog)")

    def dialog_closed(self) -> bool:
        with self._lock:
            if self._pause_state != PauseState.PAUSED_BY_DIALOG:
                return False
            self._pause_state = PauseState.RUNNING
        logger.debug("Pair repository resumed (dialog closed)")
        return True

"""Bounded seen-id set guaranteeing at-most-once acceptance per token id."""

from __future__ import annotations

import logging

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 1000
DEFAULT_TRIM_TO = 500


class Deduplicator:
    """Insertion-ordered set of ids already accepted.

    :meth:`accept` records the id before returning ``True``, so the caller
    may schedule follow-on work knowing that no other report of the same id
    will be accepted. It never suspends, so concurrent tasks on one event
    loop cannot interleave inside it.

    Once the set grows past ``max_entries`` it is trimmed to the
    ``trim_to`` most recently inserted ids.
    """

    def __init__(self, *, max_entries: int = DEFAULT_MAX_ENTRIES, trim_to: int = DEFAULT_TRIM_TO) -> None:
        if trim_to >= max_entries:
            raise ValueError("trim_to must be smaller than max_entries")
        self._max_entries = max_entries
        self._trim_to = trim_to
        self._seen: dict[str, None] = {}
        self._duplicates = 0

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, token_id: object) -> bool:
        return token_id in self._seen

    @property
    def duplicates(self) -> int:
        """Number of rejected repeat reports."""
        return self._duplicates

    def accept(self, token_id: str) -> bool:
        """Record ``token_id``; return False if it was already seen."""
        if token_id in self._seen:
            self._duplicates += 1
            return False
        self._seen[token_id] = None
        if len(self._seen) > self._max_entries:
            self._trim()
        return True

    def _trim(self) -> None:
        drop = len(self._seen) - self._trim_to
        for token_id in list(self._seen)[:drop]:
            del self._seen[token_id]
        logger.debug("Trimmed dedup set by %d ids (kept %d)", drop, len(self._seen))

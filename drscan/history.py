"""
Bounded, persisted list of past analysis results (newest first).
"""
from __future__ import annotations

import logging
from typing import List, Optional, Tuple

from drscan.config import HISTORY_KEY, HISTORY_LIMIT
from drscan.models import AnalysisResult
from drscan.storage import KeyValueStore

logger = logging.getLogger(__name__)


class HistoryCache:
    """
    Ordered history of AnalysisResult records kept in a KeyValueStore.

    Every mutation replaces the stored list as a whole.
    """

    def __init__(self, store: KeyValueStore, *, key: str = HISTORY_KEY,
                 max_entries: int = HISTORY_LIMIT) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self._store = store
        self._key = key
        self._max_entries = max_entries
        self._entries: List[AnalysisResult] = self._load()

    def _load(self) -> List[AnalysisResult]:
        raw = self._store.get(self._key, [])
        if not isinstance(raw, list):
            logger.warning("Stored history under %r is not a list; ignoring it", self._key)
            return []

        entries: List[AnalysisResult] = []
        for item in raw:
            try:
                entries.append(AnalysisResult.from_dict(item))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Dropping unreadable history entry: %s", exc)
        return entries[:self._max_entries]

    def _persist(self) -> None:
        self._store.set(self._key, [entry.to_dict() for entry in self._entries])

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def add(self, result: AnalysisResult) -> None:
        """Prepend a result, evicting the oldest entries beyond the limit."""
        entries = [result] + self._entries
        evicted = entries[self._max_entries:]
        self._entries = entries[:self._max_entries]
        self._persist()
        logger.info("Added result %s to history (%d entries, %d evicted)",
                    result.id, len(self._entries), len(evicted))

    def delete(self, result_id: str) -> bool:
        """
        Remove the entry with the given id.

        Returns:
            True if an entry was removed, False if the id was unknown
        """
        remaining = [entry for entry in self._entries if entry.id != result_id]
        removed = len(remaining) != len(self._entries)
        self._entries = remaining
        self._persist()
        if removed:
            logger.info("Deleted result %s from history", result_id)
        return removed

    def get(self, result_id: str) -> Optional[AnalysisResult]:
        for entry in self._entries:
            if entry.id == result_id:
                return entry
        return None

    def list(self) -> Tuple[AnalysisResult, ...]:
        return tuple(self._entries)

    def clear(self) -> None:
        self._entries = []
        self._persist()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self):
        return iter(self.list())

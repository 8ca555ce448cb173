"""Explicit in-memory credential cache.

Created once by the CLI and handed to the vault, so tests can build as many
independent caches as they like. Bulk loads replace the whole snapshot in
one step; readers never see a half-merged state.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Iterable, Mapping

from rosterbot_vault.models import CacheStats, Credentials

logger = logging.getLogger(__name__)


def _key(identifier: str) -> str:
    return identifier.strip().lower()


def merge_latest(items: Iterable[Credentials], base: Mapping[str, Credentials] | None = None) -> dict[str, Credentials]:
    """Index credentials by identifier; the most recently updated item wins."""
    merged = dict(base or {})
    for item in items:
        key = _key(item.identifier)
        current = merged.get(key)
        if current is None or (item.updated_at, item.item_id) > (current.updated_at, current.item_id):
            if current is not None:
                logger.debug("Duplicate vault items for %s; keeping %s", key, item.item_id)
            merged[key] = item
    return merged


class CredentialCache:
    def __init__(self):
        self._lock = threading.Lock()
        self._entries: Mapping[str, Credentials] = MappingProxyType({})
        self._hits = 0
        self._misses = 0
        self._loaded_at: str | None = None
        self._loaded_clock: float | None = None

    @property
    def loaded(self) -> bool:
        return self._loaded_at is not None

    def age(self) -> float | None:
        """Seconds since the last load, or None if never loaded."""
        if self._loaded_clock is None:
            return None
        return time.monotonic() - self._loaded_clock

    def load(self, items: Iterable[Credentials]) -> int:
        """Replace the cache contents with ``items``. Returns the entry count."""
        snapshot = MappingProxyType(merge_latest(items))
        with self._lock:
            self._entries = snapshot
            self._loaded_at = datetime.now(timezone.utc).isoformat()
            self._loaded_clock = time.monotonic()
        logger.info("Credential cache loaded with %d entr%s", len(snapshot), "y" if len(snapshot) == 1 else "ies")
        return len(snapshot)

    def put(self, item: Credentials) -> None:
        with self._lock:
            self._entries = MappingProxyType(merge_latest([item], self._entries))

    def get(self, identifier: str) -> Credentials | None:
        with self._lock:
            found = self._entries.get(_key(identifier))
            if found is None:
                self._misses += 1
            else:
                self._hits += 1
        return found

    def clear(self) -> None:
        with self._lock:
            self._entries = MappingProxyType({})
            self._hits = 0
            self._misses = 0
            self._loaded_at = None
            self._loaded_clock = None

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                entries=len(self._entries),
                hits=self._hits,
                misses=self._misses,
                loaded_at=self._loaded_at,
            )

    def __len__(self) -> int:
        return len(self._entries)

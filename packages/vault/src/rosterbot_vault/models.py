"""Credential data models.

Decoupled from the vault backends so the cache and the processor can share
them without importing any CLI tooling.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class Credentials:
    """One tenant's service-account login, as stored in the vault."""

    identifier: str  # the username the item is looked up by
    email: str
    password: str = field(repr=False)
    item_id: str = ""
    updated_at: str = ""  # ISO-8601, used to pick the newest duplicate


@dataclass(frozen=True)
class CacheStats:
    entries: int
    hits: int
    misses: int
    loaded_at: str | None  # ISO-8601 UTC timestamp of the last load

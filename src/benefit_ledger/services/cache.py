"""Advisory cache for derived balance data.

Cached values (alert scans, employee summaries) are never authoritative:
readers tolerate staleness up to the TTL, and a failed invalidation must not
fail the ledger write that triggered it.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Protocol, runtime_checkable
from uuid import UUID

logger = logging.getLogger(__name__)

ALERTS_PREFIX = "low_balance_alerts"
SUMMARY_PREFIX = "employee_balance_summary"


@runtime_checkable
class BalanceCache(Protocol):
    """Key/TTL cache capability injected into the ledger services."""

    def get(self, key: str) -> Any | None:
        """Return the cached value, or None when missing or expired."""
        ...

    def put(self, key: str, value: Any, ttl: float) -> None:
        """Store a value for ttl seconds."""
        ...

    def invalidate(self, key: str) -> None:
        """Drop a single key."""
        ...

    def invalidate_prefix(self, prefix: str) -> None:
        """Drop every key starting with prefix."""
        ...


@dataclass
class _Entry:
    value: Any
    expires_at: float


class InMemoryBalanceCache:
    """Process-local TTL cache.

    Suitable for a single worker or for tests. Multi-process deployments
    should inject a shared backing store with the same interface.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.expires_at <= self._clock():
                del self._entries[key]
                return None
            return entry.value

    def put(self, key: str, value: Any, ttl: float) -> None:
        if ttl <= 0:
            return
        with self._lock:
            self._entries[key] = _Entry(value=value, expires_at=self._clock() + ttl)

    def invalidate(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def invalidate_prefix(self, prefix: str) -> None:
        with self._lock:
            for key in [k for k in self._entries if k.startswith(prefix)]:
                del self._entries[key]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class NullBalanceCache:
    """Cache that stores nothing."""

    def get(self, key: str) -> Any | None:
        return None

    def put(self, key: str, value: Any, ttl: float) -> None:
        return None

    def invalidate(self, key: str) -> None:
        return None

    def invalidate_prefix(self, prefix: str) -> None:
        return None


def alerts_key(threshold_percent: float, year: int) -> str:
    """Cache key for an alert scan. Year first so a year can be dropped by prefix."""
    return f"{ALERTS_PREFIX}:{year}:{threshold_percent:g}"


def summary_key(employee_id: UUID | str, year: int) -> str:
    """Cache key for an employee's yearly summary."""
    return f"{SUMMARY_PREFIX}:{employee_id}:{year}"


def invalidate_balance_caches(cache: BalanceCache, employee_id: UUID | str, year: int) -> None:
    """Drop cached data derived from an (employee, year) balance.

    Fire-and-forget: errors are logged and swallowed so the ledger write that
    triggered the invalidation still succeeds.
    """
    try:
        cache.invalidate(summary_key(employee_id, year))
        cache.invalidate_prefix(f"{ALERTS_PREFIX}:{year}:")
    except Exception:
        logger.exception(
            "Cache invalidation failed for employee %s year %s",
            employee_id,
            year,
        )

"""Bounded in-memory TTL cache owned by the Morgen client.

Entries expire lazily on read and are swept periodically by a background
task started with :meth:`TTLCache.start`. When the cache is full the
oldest-inserted entry is evicted (insertion order, not LRU).

Cache keys are namespaced by prefix so related entries can be invalidated
together::

    calendars
    accounts
    events:today
    events:week
    events:range:<sorted params>
    search:<query>:<sorted options json>
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 100
DEFAULT_TTL_SECONDS = 120.0
DEFAULT_CLEANUP_INTERVAL_SECONDS = 300.0


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float


class TTLCache:
    """Key/value store with per-entry expiry and insertion-order eviction.

    Parameters
    ----------
    max_size:
        Maximum number of entries held at once.
    default_ttl:
        TTL in seconds used when :meth:`set` is called without one.
    cleanup_interval:
        Seconds between background sweeps once :meth:`start` has been called.
    clock:
        Monotonic time source; injectable for tests.
    """

    def __init__(
        self,
        *,
        max_size: int = DEFAULT_MAX_SIZE,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_size < 1:
            raise ValueError("max_size must be at least 1")
        self.max_size = max_size
        self.default_ttl = default_ttl
        self.cleanup_interval = cleanup_interval
        self._clock = clock
        self._entries: dict[str, CacheEntry] = {}
        self._lock = threading.Lock()
        self._cleanup_task: asyncio.Task[None] | None = None

    def __len__(self) -> int:
        return len(self._entries)

    def set(self, key: str, value: Any, ttl: float | None = None) -> None:
        now = self._clock()
        ttl_seconds = self.default_ttl if ttl is None else ttl
        with self._lock:
            if key in self._entries:
                # Overwrite moves the key to the newest position.
                del self._entries[key]
            elif len(self._entries) >= self.max_size:
                oldest_key = next(iter(self._entries))
                del self._entries[oldest_key]
                logger.debug("Cache full (max_size=%d), evicted %s", self.max_size, oldest_key)
            self._entries[key] = CacheEntry(
                value=value,
                created_at=now,
                expires_at=now + ttl_seconds,
            )

    def get(self, key: str, default: Any = None) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return default
            if now > entry.expires_at:
                del self._entries[key]
                return default
            return entry.value

    def has(self, key: str) -> bool:
        marker = object()
        return self.get(key, marker) is not marker

    def delete(self, key: str) -> bool:
        with self._lock:
            return self._entries.pop(key, None) is not None

    def delete_prefixed(self, *prefixes: str) -> int:
        """Delete every entry whose key starts with one of *prefixes*."""
        with self._lock:
            doomed = [key for key in self._entries if key.startswith(prefixes)]
            for key in doomed:
                del self._entries[key]
        return len(doomed)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def cleanup(self) -> int:
        """Remove every expired entry and return how many were dropped."""
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now > entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def stats(self) -> dict[str, int]:
        now = self._clock()
        with self._lock:
            expired = sum(1 for entry in self._entries.values() if now > entry.expires_at)
            size = len(self._entries)
        return {
            "size": size,
            "valid": size - expired,
            "expired": expired,
            "max_size": self.max_size,
        }

    # ------------------------------------------------------------------
    # Key builders
    # ------------------------------------------------------------------

    @staticmethod
    def build_key(name: str, params: Mapping[str, Any] | None = None) -> str:
        """Build ``name:k1:v1|k2:v2`` with parameter names sorted."""
        if not params:
            return name
        parts = [
            f"{key}:{'' if params[key] is None else params[key]}" for key in sorted(params)
        ]
        return f"{name}:{'|'.join(parts)}"

    @staticmethod
    def hash_options(options: Mapping[str, Any]) -> str:
        """Serialize *options* canonically so equivalent requests share a key."""
        present = {key: value for key, value in options.items() if value is not None}
        return json.dumps(present, sort_keys=True, separators=(",", ":"), default=str)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._cleanup_task is not None and not self._cleanup_task.done():
            return
        self._cleanup_task = asyncio.get_running_loop().create_task(
            self._run_cleanup_loop(), name="morgen-cache-cleanup"
        )

    async def destroy(self) -> None:
        """Cancel the sweep task and drop every entry."""
        task = self._cleanup_task
        self._cleanup_task = None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.clear()

    async def _run_cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            removed = self.cleanup()
            if removed:
                logger.debug("Cache sweep removed %d expired entries", removed)

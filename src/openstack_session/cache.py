"""Thread-safe keyed cache for per-token-epoch metadata.

Endpoint URLs and negotiated API versions are resolved once per token and
reused until the token is replaced. A cache instance belongs to exactly one
token epoch and is discarded together with it, so entries never expire on
their own.
"""

import time
from collections.abc import Callable, Hashable
from threading import Lock
from typing import Generic, TypeVar

import structlog

logger = structlog.get_logger(__name__)

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class EpochCache(Generic[K, V]):
    """Keyed cache that fetches each value at most once.

    The fetch runs while the lock is held, so concurrent callers asking for
    the same key wait for the first fetch instead of repeating it.
    """

    def __init__(self, name: str):
        """Initialize the cache.

        Args:
            name: Cache name used in log events (e.g., "endpoints").
        """
        self._lock = Lock()
        self._name = name
        self._entries: dict[K, V] = {}

    def get_or_fetch(self, key: K, fetch_func: Callable[[], V]) -> V:
        """Return the cached value for ``key`` or fetch and store it.

        Exceptions raised by ``fetch_func`` propagate and leave the cache
        unchanged, so a later call fetches again.

        Args:
            key: Cache key.
            fetch_func: Function producing the value on a miss.

        Returns:
            Cached or freshly fetched value.
        """
        with self._lock:
            if key in self._entries:
                logger.debug("Using cached value", cache=self._name, key=key)
                return self._entries[key]

            start = time.time()
            value = fetch_func()
            duration = time.time() - start
            self._entries[key] = value
            logger.debug(
                "Fetched fresh value",
                cache=self._name,
                key=key,
                duration_seconds=round(duration, 3),
            )
            return value

    def peek(self, key: K) -> V | None:
        """Return the cached value for ``key`` without fetching."""
        with self._lock:
            return self._entries.get(key)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            return key in self._entries

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

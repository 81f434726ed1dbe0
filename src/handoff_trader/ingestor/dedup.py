"""Notification deduplication over a trailing time window."""

from __future__ import annotations

import threading
import time
from collections import OrderedDict
from collections.abc import Callable

DEFAULT_RETENTION_SECONDS = 60.0


class Deduplicator:
    """Expiring set of recently seen keys (signatures or message ids).

    Entries are kept in insertion order. With a fixed retention interval
    that is also expiry order, so eviction only ever pops from the front.

    Example:
        ```python
        dedup = Deduplicator(retention_seconds=60)
        if dedup.should_process(signature):
            await handle(signature)
        ```
    """

    def __init__(
        self,
        retention_seconds: float = DEFAULT_RETENTION_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the deduplicator.

        Args:
            retention_seconds: How long a key stays live after first sight.
            clock: Monotonic time source, injectable for tests.
        """
        if retention_seconds <= 0:
            raise ValueError("retention_seconds must be > 0")
        self._retention = retention_seconds
        self._clock = clock
        self._expiry: OrderedDict[str, float] = OrderedDict()
        self._lock = threading.Lock()

    def should_process(self, key: str) -> bool:
        """Record ``key`` and report whether this is its first live sighting."""
        with self._lock:
            now = self._clock()
            self._evict(now)
            if key in self._expiry:
                return False
            self._expiry[key] = now + self._retention
            return True

    def discard(self, key: str) -> None:
        """Forget ``key`` so its next sighting is processed again."""
        with self._lock:
            self._expiry.pop(key, None)

    def _evict(self, now: float) -> None:
        while self._expiry:
            key, expiry = next(iter(self._expiry.items()))
            if expiry > now:
                break
            del self._expiry[key]

    def __len__(self) -> int:
        with self._lock:
            self._evict(self._clock())
            return len(self._expiry)

    def __contains__(self, key: object) -> bool:
        with self._lock:
            self._evict(self._clock())
            return key in self._expiry

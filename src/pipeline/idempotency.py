from __future__ import annotations

import threading
import time
from typing import Callable, Dict


class IdempotencyTracker:
    """
    Set of already-seen item keys with an atomic check-and-insert.

    ``check_and_mark`` never suspends, so two ingress channels racing on the
    same key cannot both win. With a positive ``ttl_s`` keys are forgotten
    after that many seconds of the injected clock.
    """

    def __init__(self, ttl_s: float = 0.0, clock: Callable[[], float] = time.monotonic):
        self._ttl_s = ttl_s
        self._clock = clock
        self._seen: Dict[str, float] = {}
        self._lock = threading.Lock()

    def check_and_mark(self, key: str) -> bool:
        """Mark ``key`` as seen. Returns False if it already was."""
        with self._lock:
            now = self._clock()
            self._expire(now)
            if key in self._seen:
                return False
            self._seen[key] = now
            return True

    def mark(self, key: str) -> None:
        with self._lock:
            self._seen[key] = self._clock()

    def release(self, key: str) -> None:
        with self._lock:
            self._seen.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._seen.clear()

    def _expire(self, now: float) -> None:
        if self._ttl_s <= 0:
            return
        cutoff = now - self._ttl_s
        for key in [k for k, seen_at in self._seen.items() if seen_at < cutoff]:
            del self._seen[key]

    def __contains__(self, key: str) -> bool:
        with self._lock:
            self._expire(self._clock())
            return key in self._seen

    def __len__(self) -> int:
        with self._lock:
            self._expire(self._clock())
            return len(self._seen)

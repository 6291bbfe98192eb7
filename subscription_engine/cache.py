"""
Per-sender pattern cache.

Keeps the last resolved unsubscribe method per (user, sender) for a bounded
time so that listing and bulk unsubscribe do not re-run resolution for every
record. Entries are dropped when new mail from the sender arrives or when
they outlive the TTL.
"""

import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from .unsubscribe.methods import UnsubscribeMethod

DEFAULT_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class _Entry:
    method: UnsubscribeMethod
    stored_at: float


class SenderPatternCache:
    """Thread-safe TTL cache keyed by (user_id, sender_address)."""

    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: Dict[Tuple[str, str], _Entry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def _key(user_id: str, sender_address: str) -> Tuple[str, str]:
        return user_id, sender_address.lower()

    def get(self, user_id: str, sender_address: str) -> Optional[UnsubscribeMethod]:
        key = self._key(user_id, sender_address)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                self.misses += 1
                return None
            if self._clock() - entry.stored_at >= self.ttl_seconds:
                del self._entries[key]
                self.misses += 1
                return None
            self.hits += 1
            return entry.method

    def put(self, user_id: str, sender_address: str, method: UnsubscribeMethod) -> None:
        with self._lock:
            self._entries[self._key(user_id, sender_address)] = _Entry(method, self._clock())

    def invalidate(self, user_id: str, sender_address: str) -> None:
        with self._lock:
            self._entries.pop(self._key(user_id, sender_address), None)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

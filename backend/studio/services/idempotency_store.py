"""Idempotency keys for generation submissions.

A retried ``POST /revisions/{id}/generate`` with the same ``Idempotency-Key``
replays the first response instead of queueing the revision twice. Reusing a
key for a different request is a conflict. Entries expire after a TTL.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any

from studio.exceptions import IdempotencyConflictError


@dataclass
class CachedResponse:
    fingerprint: str
    status_code: int
    body: dict[str, Any]
    created_at: float


class IdempotencyStore:
    """Thread-safe in-memory store with TTL-based expiration."""

    def __init__(self, ttl_seconds: int = 86400) -> None:
        self._store: dict[str, CachedResponse] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds

    def lookup(self, key: str | None, fingerprint: str) -> CachedResponse | None:
        """Return the cached response for ``key``, or None for a new key.

        Raises:
            IdempotencyConflictError: the key was used for another request.
        """
        if key is None:
            return None
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            if time.monotonic() - entry.created_at > self._ttl:
                del self._store[key]
                return None
        if entry.fingerprint != fingerprint:
            raise IdempotencyConflictError(f"Idempotency-Key {key} was used for a different request")
        return entry

    def save(self, key: str | None, fingerprint: str, status_code: int, body: dict[str, Any]) -> None:
        if key is None:
            return
        with self._lock:
            now = time.monotonic()
            for stale in [k for k, v in self._store.items() if now - v.created_at > self._ttl]:
                del self._store[stale]
            self._store[key] = CachedResponse(fingerprint, status_code, body, now)

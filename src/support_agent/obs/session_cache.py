"""Session continuity cache: session id -> exported conversation span.

The first turn of a session opens a root "conversation" span; later turns
in the same session attach to it as children, so one conversation reads as
one trace. Losing an entry only splits a trace, never affects answers.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from support_agent.config import Settings
from support_agent.obs.tracing import Telemetry

logger = logging.getLogger(__name__)

KEY_PREFIX = "session-span:"


class SessionSpanCache(Protocol):
    def get(self, session_id: str) -> str | None:
        """Return the cached parent handle, or None if absent or expired."""

    def set(self, session_id: str, handle: str, ttl_seconds: int) -> None:
        """Store or refresh a handle for `ttl_seconds`."""

    def sweep(self) -> int:
        """Evict expired entries and return how many were removed."""

    def close(self) -> None:
        """Release background resources."""


@dataclass(slots=True)
class _Entry:
    handle: str
    expires_at: float


class InMemorySessionSpanCache:
    """Process-local cache for single-instance deployments.

    Expired entries are dropped lazily on `get` and in bulk by `sweep`, which
    `start()` runs periodically on a daemon thread.
    """

    def __init__(self, *, clock: Callable[[], float] = time.monotonic) -> None:
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._stop = threading.Event()
        self._sweeper: threading.Thread | None = None

    def get(self, session_id: str) -> str | None:
        with self._lock:
            entry = self._entries.get(session_id)
            if entry is None:
                return None
            if self._clock() >= entry.expires_at:
                del self._entries[session_id]
                return None
            return entry.handle

    def set(self, session_id: str, handle: str, ttl_seconds: int) -> None:
        with self._lock:
            self._entries[session_id] = _Entry(handle, self._clock() + ttl_seconds)

    def sweep(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [key for key, entry in self._entries.items() if now >= entry.expires_at]
            for key in expired:
                del self._entries[key]
        return len(expired)

    def start(self, interval_seconds: float) -> None:
        if self._sweeper is not None:
            return
        self._stop.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper,
            args=(interval_seconds,),
            name="session-span-sweeper",
            daemon=True,
        )
        self._sweeper.start()

    def close(self) -> None:
        self._stop.set()
        if self._sweeper is not None:
            self._sweeper.join(timeout=1.0)
            self._sweeper = None

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _run_sweeper(self, interval_seconds: float) -> None:
        while not self._stop.wait(interval_seconds):
            evicted = self.sweep()
            if evicted:
                logger.debug("Evicted %d expired session spans", evicted)


class RedisSessionSpanCache:
    """Shared cache for multi-instance deployments, relying on Redis key expiry."""

    def __init__(self, client: Any, *, key_prefix: str = KEY_PREFIX) -> None:
        self._client = client
        self._prefix = key_prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisSessionSpanCache":
        import redis

        return cls(redis.Redis.from_url(url, decode_responses=True))

    def get(self, session_id: str) -> str | None:
        value = self._client.get(self._prefix + session_id)
        if value is None:
            return None
        return value.decode("utf-8") if isinstance(value, bytes) else str(value)

    def set(self, session_id: str, handle: str, ttl_seconds: int) -> None:
        self._client.set(self._prefix + session_id, handle, ex=ttl_seconds)

    def sweep(self) -> int:
        return 0

    def close(self) -> None:
        self._client.close()


def create_session_cache(settings: Settings) -> SessionSpanCache:
    if settings.redis_url:
        return RedisSessionSpanCache.from_url(settings.redis_url)
    return InMemorySessionSpanCache()


def resolve_session_parent(
    cache: SessionSpanCache,
    telemetry: Telemetry,
    session_id: str,
    *,
    metadata: dict[str, Any],
    ttl_seconds: int,
) -> str | None:
    """Return the session's parent span handle, creating it on first use.

    A hit refreshes the TTL. Telemetry that cannot export (no-op backend)
    yields None and nothing is cached.
    """
    handle = cache.get(session_id)
    if handle:
        cache.set(session_id, handle, ttl_seconds)
        return handle

    root = telemetry.start_span(
        "conversation",
        event={"metadata": {"sessionId": session_id, **metadata}},
    )
    handle = root.export()
    if not handle:
        return None
    cache.set(session_id, handle, ttl_seconds)
    return handle

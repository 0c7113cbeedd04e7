"""
auth/state.py -- Key-value store for short-lived security state.

Holds lockout counters, lockout flags, refresh-token registrations and
revocation entries. Nothing else -- this is not a general cache.

Contract (SecurityStateStore):
  Every write carries an explicit TTL in milliseconds, so no key can grow
  without bound. set() with ttl_ms <= 0 is a silent no-op: a token revoked in
  the same millisecond it expires needs no deny-list entry.

  increment() is one atomic round-trip that also (re)applies the TTL. Two
  processes failing a login for the same principal at the same time both
  land their increment -- there is no read-modify-write window.

Implementations:
  RedisStateStore    -- production. redis-py with socket timeouts; every
                        RedisError surfaces as StoreUnavailable so callers
                        fail closed instead of treating "no data" as "no lock".
  InMemoryStateStore -- tests and single-process development. A lock guards
                        the dict; expiry is lazy on access.

Layer rule: no imports from api/. core/ is allowed.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable
from typing import Optional, Protocol

import redis
from redis.exceptions import RedisError

from auth.errors import StoreUnavailable
from core.config import Settings

logger = logging.getLogger("schoolgate.state")


class SecurityStateStore(Protocol):
    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, ttl_ms: int) -> None: ...

    def delete(self, key: str) -> None: ...

    def increment(self, key: str, ttl_ms: int) -> int: ...

    def expire(self, key: str, ttl_ms: int) -> None: ...

    def exists(self, key: str) -> bool: ...

    def ttl_ms(self, key: str) -> int: ...


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisStateStore:
    """Redis-backed SecurityStateStore.

    Usage:
        store = RedisStateStore.from_url("redis://localhost:6379/0", socket_timeout=2.0)
        store.set("blacklist:token:abc", "1", ttl_ms=60_000)
        store.exists("blacklist:token:abc")   # True
    """

    def __init__(self, client: redis.Redis) -> None:
        self.client = client

    @classmethod
    def from_url(cls, url: str, *, socket_timeout: float = 2.0) -> "RedisStateStore":
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        return cls(client)

    def get(self, key: str) -> Optional[str]:
        try:
            return self.client.get(key)
        except RedisError as exc:
            raise _unavailable("get", exc) from exc

    def set(self, key: str, value: str, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            return
        try:
            self.client.set(key, value, px=int(ttl_ms))
        except RedisError as exc:
            raise _unavailable("set", exc) from exc

    def delete(self, key: str) -> None:
        try:
            self.client.delete(key)
        except RedisError as exc:
            raise _unavailable("delete", exc) from exc

    def increment(self, key: str, ttl_ms: int) -> int:
        """INCR + PEXPIRE inside one MULTI/EXEC. Returns the new count."""
        try:
            pipe = self.client.pipeline(transaction=True)
            pipe.incr(key)
            pipe.pexpire(key, int(ttl_ms))
            count, _ = pipe.execute()
        except RedisError as exc:
            raise _unavailable("increment", exc) from exc
        return int(count)

    def expire(self, key: str, ttl_ms: int) -> None:
        try:
            self.client.pexpire(key, int(ttl_ms))
        except RedisError as exc:
            raise _unavailable("expire", exc) from exc

    def exists(self, key: str) -> bool:
        try:
            return bool(self.client.exists(key))
        except RedisError as exc:
            raise _unavailable("exists", exc) from exc

    def ttl_ms(self, key: str) -> int:
        """Remaining TTL in ms; 0 when the key is missing or has no expiry."""
        try:
            remaining = self.client.pttl(key)
        except RedisError as exc:
            raise _unavailable("pttl", exc) from exc
        return max(0, int(remaining or 0))

    def ping(self) -> bool:
        """Health probe. Returns False instead of raising."""
        try:
            return bool(self.client.ping())
        except RedisError:
            return False

    def close(self) -> None:
        self.client.close()


def _unavailable(op: str, exc: Exception) -> StoreUnavailable:
    logger.error("Security state store %s failed: %s", op, exc)
    return StoreUnavailable(reason=f"redis {op}: {type(exc).__name__}")


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class InMemoryStateStore:
    """Process-local SecurityStateStore.

    clock returns monotonic seconds; tests pass a fake to move time forward
    without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._data: dict[str, tuple[str, float]] = {}  # key -> (value, deadline)

    def _now_ms(self) -> float:
        return self._clock() * 1000

    def _live(self, key: str) -> Optional[tuple[str, float]]:
        # Caller holds self._lock.
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry[1] <= self._now_ms():
            del self._data[key]
            return None
        return entry

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key)
            return entry[0] if entry else None

    def set(self, key: str, value: str, ttl_ms: int) -> None:
        if ttl_ms <= 0:
            return
        with self._lock:
            self._data[key] = (str(value), self._now_ms() + ttl_ms)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def increment(self, key: str, ttl_ms: int) -> int:
        with self._lock:
            entry = self._live(key)
            count = int(entry[0]) + 1 if entry else 1
            self._data[key] = (str(count), self._now_ms() + ttl_ms)
            return count

    def expire(self, key: str, ttl_ms: int) -> None:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return
            if ttl_ms <= 0:
                del self._data[key]
                return
            self._data[key] = (entry[0], self._now_ms() + ttl_ms)

    def exists(self, key: str) -> bool:
        with self._lock:
            return self._live(key) is not None

    def ttl_ms(self, key: str) -> int:
        with self._lock:
            entry = self._live(key)
            if entry is None:
                return 0
            return max(0, int(entry[1] - self._now_ms()))

    def ping(self) -> bool:
        return True

    def close(self) -> None:
        with self._lock:
            self._data.clear()


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def build_state_store(settings: Settings) -> RedisStateStore | InMemoryStateStore:
    """Pick the store from config: Redis when REDIS_URL is set, in-memory otherwise."""
    if settings.redis_url:
        logger.info("Security state store: redis (timeout=%.1fs)", settings.redis_socket_timeout)
        return RedisStateStore.from_url(settings.redis_url, socket_timeout=settings.redis_socket_timeout)
    logger.warning("REDIS_URL not set -- using in-process security state; lockout is not shared across workers")
    return InMemoryStateStore()

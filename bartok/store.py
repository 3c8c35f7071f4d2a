# bartok/store.py
"""
TTL key-value store adapters for barcode tokens.

A store only knows three things: upsert a value with a TTL, read a value,
read the remaining TTL. Everything above that lives in the lifecycle manager.
"""
from __future__ import annotations
import threading
import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Callable, Dict, Optional, Tuple

import redis
from redis.exceptions import RedisError

from .config import RedisSettings
from .errors import StoreUnavailable
from .utils import logger

NO_EXPIRY = -1.0


class TokenStore(ABC):
    """
    Abstract TTL backend.

    ``get_remaining_ttl`` returns seconds left, ``None`` when the key does not
    exist and ``NO_EXPIRY`` (-1) when it exists without a TTL.
    """

    supports_keep_ttl = False

    def __init__(self, key_prefix: str = "barcode:") -> None:
        self.key_prefix = key_prefix

    def key_for(self, subject: str) -> str:
        return f"{self.key_prefix}{subject}"

    @abstractmethod
    def set_with_ttl(self, key: str, value: str, ttl_seconds: Optional[float]) -> None:
        """Unconditional upsert. ``ttl_seconds=None`` stores without expiry."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value, or None if absent/expired."""

    @abstractmethod
    def get_remaining_ttl(self, key: str) -> Optional[float]:
        """Return seconds until expiry, None if absent, NO_EXPIRY if persistent."""

    def replace_keep_ttl(self, key: str, value: str, fallback_ttl: Optional[float]) -> Optional[float]:
        """
        Write ``value`` keeping the key's current TTL in one atomic step.

        If the key is absent or has no positive TTL, ``fallback_ttl`` is used
        instead (None: no expiry). Returns the remaining TTL observed before
        the write, with the same conventions as ``get_remaining_ttl``.
        """
        raise NotImplementedError(f"{type(self).__name__} has no atomic keep-TTL write")

    def ping(self) -> bool:
        return True


def _check_ttl(ttl_seconds: Optional[float]) -> None:
    if ttl_seconds is not None and ttl_seconds <= 0:
        raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")


# ────────────────────── In-Memory ──────────────────────

class InMemoryTokenStore(TokenStore):
    """
    Dict-backed store for tests and single-process runs.

    Expiry is evaluated lazily against ``clock``, which tests replace with a
    fake clock to simulate the passage of time.
    """

    def __init__(
        self,
        key_prefix: str = "barcode:",
        clock: Callable[[], float] = time.monotonic,
        atomic: bool = True,
    ) -> None:
        super().__init__(key_prefix)
        self._clock = clock
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._lock = threading.Lock()
        self.supports_keep_ttl = atomic

    def _live(self, key: str, now: float) -> Optional[Tuple[str, Optional[float]]]:
        entry = self._data.get(key)
        if entry is None:
            return None
        deadline = entry[1]
        if deadline is not None and deadline <= now:
            del self._data[key]
            return None
        return entry

    @staticmethod
    def _remaining(entry: Optional[Tuple[str, Optional[float]]], now: float) -> Optional[float]:
        if entry is None:
            return None
        if entry[1] is None:
            return NO_EXPIRY
        return entry[1] - now

    def set_with_ttl(self, key: str, value: str, ttl_seconds: Optional[float]) -> None:
        _check_ttl(ttl_seconds)
        with self._lock:
            deadline = None if ttl_seconds is None else self._clock() + ttl_seconds
            self._data[key] = (value, deadline)

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            entry = self._live(key, self._clock())
            return entry[0] if entry else None

    def get_remaining_ttl(self, key: str) -> Optional[float]:
        with self._lock:
            now = self._clock()
            return self._remaining(self._live(key, now), now)

    def replace_keep_ttl(self, key: str, value: str, fallback_ttl: Optional[float]) -> Optional[float]:
        if not self.supports_keep_ttl:
            return super().replace_keep_ttl(key, value, fallback_ttl)
        _check_ttl(fallback_ttl)
        with self._lock:
            now = self._clock()
            entry = self._live(key, now)
            remaining = self._remaining(entry, now)
            if entry is not None and entry[1] is not None:
                self._data[key] = (value, entry[1])
            else:
                deadline = None if fallback_ttl is None else now + fallback_ttl
                self._data[key] = (value, deadline)
            return remaining

    def keys(self) -> list[str]:
        """Live keys (for testing and diagnostics)."""
        with self._lock:
            now = self._clock()
            return [k for k in list(self._data) if self._live(k, now) is not None]

    def clear(self) -> None:
        """Drop every key (for testing)."""
        with self._lock:
            self._data.clear()


# ────────────────────── Redis ──────────────────────

# PTTL and SET run inside one script, so no other client can expire or
# overwrite the key between the two.
_KEEP_TTL_SCRIPT = """
local pttl = redis.call('PTTL', KEYS[1])
if pttl > 0 then
    redis.call('SET', KEYS[1], ARGV[1], 'PX', pttl)
    return pttl
end
local fallback = tonumber(ARGV[2])
if fallback and fallback > 0 then
    redis.call('SET', KEYS[1], ARGV[1], 'PX', fallback)
else
    redis.call('SET', KEYS[1], ARGV[1])
end
return pttl
"""


def _to_ms(seconds: float) -> int:
    return max(1, int(round(seconds * 1000)))


def _from_pttl(pttl: int) -> Optional[float]:
    if pttl == -2:
        return None
    if pttl == -1:
        return NO_EXPIRY
    return pttl / 1000.0


class RedisTokenStore(TokenStore):
    """Redis-backed store using millisecond TTLs (SET PX / PTTL)."""

    supports_keep_ttl = True

    def __init__(
        self,
        settings: Optional[RedisSettings] = None,
        key_prefix: str = "barcode:",
        client: Optional[redis.Redis] = None,
    ) -> None:
        super().__init__(key_prefix)
        self.settings = settings or RedisSettings.from_env()
        # Bad settings (or a malformed URL) fail here, at startup, rather
        # than on the first request. No connection is opened yet.
        self.client = client if client is not None else self._build_client(self.settings)
        self._keep_ttl_script = None

    @staticmethod
    def _build_client(s: RedisSettings) -> redis.Redis:
        s.validate()
        if s.url:
            return redis.Redis.from_url(
                s.url,
                decode_responses=True,
                socket_timeout=s.socket_timeout,
                socket_connect_timeout=s.socket_connect_timeout,
                max_connections=s.max_connections,
            )
        pool = redis.ConnectionPool(
            host=s.host,
            port=s.port,
            db=s.db,
            password=s.password,
            decode_responses=True,
            socket_timeout=s.socket_timeout,
            socket_connect_timeout=s.socket_connect_timeout,
            max_connections=s.max_connections,
        )
        return redis.Redis(connection_pool=pool)

    @contextmanager
    def _backend(self, op: str, key: str):
        """Map redis-py failures to StoreUnavailable."""
        try:
            yield
        except RedisError as e:
            logger.error("Redis %s failed for key '%s': %s", op, key, e)
            raise StoreUnavailable(f"Redis {op} failed: {e}") from e

    def set_with_ttl(self, key: str, value: str, ttl_seconds: Optional[float]) -> None:
        _check_ttl(ttl_seconds)
        with self._backend("SET", key):
            if ttl_seconds is None:
                self.client.set(key, value)
            else:
                self.client.set(key, value, px=_to_ms(ttl_seconds))

    def get(self, key: str) -> Optional[str]:
        with self._backend("GET", key):
            value = self.client.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def get_remaining_ttl(self, key: str) -> Optional[float]:
        with self._backend("PTTL", key):
            pttl = self.client.pttl(key)
        return _from_pttl(int(pttl))

    def replace_keep_ttl(self, key: str, value: str, fallback_ttl: Optional[float]) -> Optional[float]:
        _check_ttl(fallback_ttl)
        fallback_ms = 0 if fallback_ttl is None else _to_ms(fallback_ttl)
        with self._backend("EVAL", key):
            if self._keep_ttl_script is None:
                self._keep_ttl_script = self.client.register_script(_KEEP_TTL_SCRIPT)
            pttl = self._keep_ttl_script(keys=[key], args=[value, fallback_ms])
        return _from_pttl(int(pttl))

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except RedisError as e:
            logger.warning("Redis ping failed: %s", e)
            return False


def create_store_from_env(backend: str, key_prefix: str) -> TokenStore:
    """Create the configured token store ('redis' or 'memory')."""
    if backend == "memory":
        logger.warning("Using in-memory token store; tokens do not survive a restart.")
        return InMemoryTokenStore(key_prefix=key_prefix)
    return RedisTokenStore(RedisSettings.from_env(), key_prefix=key_prefix)

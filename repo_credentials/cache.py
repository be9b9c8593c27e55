"""Expiring in-memory cache for short-lived bearer tokens.

Tokens are cached until their reported expiry minus a safety margin, so a
cached token is never handed out when it is about to become invalid. Entries
are keyed by a one-way hash of the identifying inputs; raw secret material is
never used as a key.
"""

import hashlib
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import structlog
from cachetools import TLRUCache

from repo_credentials.metrics import token_cache

logger = structlog.get_logger(__name__)

DEFAULT_CLEANUP_INTERVAL = 3600
DEFAULT_MAX_SIZE = 10_000


def cache_key(*parts: object) -> str:
    """Return a deterministic one-way hash of the given parts."""
    joined = ":".join(str(part) for part in parts)
    return hashlib.sha256(joined.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class _Entry:
    token: str
    expires: float


def _time_to_use(_key: str, entry: _Entry, _now: float) -> float:
    return entry.expires


class TokenCache:
    """Thread-safe token cache with per-entry expiry.

    Expired entries are never returned. A background thread additionally
    evicts them every ``cleanup_interval`` seconds, independent of request
    handling.

    Args:
        name: Cache name, used for logging and metrics (usually the provider name)
        default_ttl: TTL for tokens without a reported expiry
        safety_margin: Subtracted from a reported expiry
        cleanup_interval: Seconds between background sweeps (0 disables the sweep)
        maxsize: Max number of cached tokens
        timer: Monotonic clock, in seconds

    Example:
        >>> cache = TokenCache("github-app", timedelta(minutes=40), timedelta(minutes=20))
        >>> cache.set(cache_key("app", 42), "token")
        >>> cache.get(cache_key("app", 42))
        'token'
    """

    def __init__(
        self,
        name: str,
        default_ttl: timedelta,
        safety_margin: timedelta,
        cleanup_interval: float = DEFAULT_CLEANUP_INTERVAL,
        maxsize: int = DEFAULT_MAX_SIZE,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.default_ttl = default_ttl
        self.safety_margin = safety_margin
        self._timer = timer
        self._cache: TLRUCache[str, _Entry] = TLRUCache(
            maxsize=maxsize, ttu=_time_to_use, timer=timer
        )
        self._lock = threading.Lock()
        self._closed = threading.Event()
        self.cleanup_interval = cleanup_interval
        if cleanup_interval > 0:
            threading.Thread(
                target=self._sweep,
                name=f"token-cache-{name}",
                daemon=True,
            ).start()

    def get(self, key: str) -> str | None:
        with self._lock:
            entry = self._cache.get(key)
        if entry is None:
            token_cache.labels(self.name, "miss").inc()
            logger.debug("token cache miss", cache=self.name)
            return None
        token_cache.labels(self.name, "hit").inc()
        logger.debug("token cache hit", cache=self.name)
        return entry.token

    def set(self, key: str, token: str, expires_at: datetime | None = None) -> None:
        """Cache a token.

        Args:
            key: Cache key, see cache_key()
            token: Bearer token
            expires_at: Expiry reported by the issuer; None uses the default TTL
        """
        ttl = self.ttl(expires_at)
        if ttl <= 0:
            logger.debug("token expires within safety margin, not caching", cache=self.name)
            return
        with self._lock:
            self._cache[key] = _Entry(token=token, expires=self._timer() + ttl)

    def ttl(self, expires_at: datetime | None) -> float:
        """Return the TTL in seconds for a token with the given reported expiry."""
        if expires_at is None:
            return self.default_ttl.total_seconds()
        if expires_at.tzinfo is None:
            # issuers report naive datetimes in UTC
            expires_at = expires_at.replace(tzinfo=UTC)
        remaining = expires_at - datetime.now(UTC) - self.safety_margin
        return remaining.total_seconds()

    def expire(self) -> int:
        """Evict expired entries, returning how many were evicted."""
        with self._lock:
            return len(self._cache.expire())

    def close(self) -> None:
        """Stop the background sweep."""
        self._closed.set()

    def _sweep(self) -> None:
        while not self._closed.wait(self.cleanup_interval):
            evicted = self.expire()
            if evicted:
                logger.debug("evicted expired tokens", cache=self.name, count=evicted)

"""
Date Consensus - Rate Limiting

Fixed-window rate limiting per hashed identity and scope:
- submit: new predictions (default 10/min)
- update: revisions (default 30/min)
- read: stats, status, sentiment, distribution (default 60/min)

Counters live in memory (single instance) or Redis (shared across
instances). Store failures never block a request: the limiter fails open
and logs the failure.

Usage:
    from rate_limiter import RateLimiter, RateLimitConfig

    limiter = RateLimiter(RateLimitConfig.from_env())
    result = limiter.check_limit("submit", identity_token)
    if result.exceeded:
        return 429, {"retry_after": result.retry_after}

Environment Variables:
    RATE_LIMIT_ENABLED=true
    RATE_LIMIT_BACKEND=memory|redis
    RATE_LIMIT_SUBMIT=10
    RATE_LIMIT_UPDATE=30
    RATE_LIMIT_READ=60
    RATE_LIMIT_WINDOW=60
    RATE_LIMIT_REDIS_URL=redis://localhost:6379/0  (defaults to REDIS_URL)
    RATE_LIMIT_REDIS_PREFIX=dateconsensus:ratelimit:
"""

import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps
from typing import Any

from flask import current_app, jsonify, make_response, request

from errors import RateLimitExceededError
from identity import extract_client_ip, hash_identity

logger = logging.getLogger(__name__)

SCOPE_SUBMIT = "submit"
SCOPE_UPDATE = "update"
SCOPE_READ = "read"

DEFAULT_SCOPE_LIMITS = {SCOPE_SUBMIT: 10, SCOPE_UPDATE: 30, SCOPE_READ: 60}


@dataclass
class RateLimitConfig:
    """Configuration for rate limiting."""

    enabled: bool = True
    backend: str = "memory"

    # Requests per window, by scope
    scope_limits: dict[str, int] = field(default_factory=lambda: dict(DEFAULT_SCOPE_LIMITS))
    window_seconds: int = 60

    # Redis configuration
    redis_url: str = "redis://localhost:6379/0"
    redis_prefix: str = "dateconsensus:ratelimit:"
    redis_timeout: float = 1.0

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        for scope, limit in self.scope_limits.items():
            if limit <= 0:
                raise ValueError(f"Rate limit for scope '{scope}' must be positive")

    def limit_for(self, scope: str) -> int:
        try:
            return self.scope_limits[scope]
        except KeyError:
            raise ValueError(f"Unknown rate limit scope: {scope}") from None

    @classmethod
    def from_env(cls) -> "RateLimitConfig":
        """Create configuration from environment variables."""
        return cls(
            enabled=os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true",
            backend=os.getenv("RATE_LIMIT_BACKEND", "memory"),
            scope_limits={
                SCOPE_SUBMIT: int(os.getenv("RATE_LIMIT_SUBMIT", str(DEFAULT_SCOPE_LIMITS[SCOPE_SUBMIT]))),
                SCOPE_UPDATE: int(os.getenv("RATE_LIMIT_UPDATE", str(DEFAULT_SCOPE_LIMITS[SCOPE_UPDATE]))),
                SCOPE_READ: int(os.getenv("RATE_LIMIT_READ", str(DEFAULT_SCOPE_LIMITS[SCOPE_READ]))),
            },
            window_seconds=int(os.getenv("RATE_LIMIT_WINDOW", "60")),
            redis_url=os.getenv(
                "RATE_LIMIT_REDIS_URL", os.getenv("REDIS_URL", "redis://localhost:6379/0")
            ),
            redis_prefix=os.getenv("RATE_LIMIT_REDIS_PREFIX", "dateconsensus:ratelimit:"),
            redis_timeout=float(os.getenv("RATE_LIMIT_REDIS_TIMEOUT", "1.0")),
        )


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    exceeded: bool
    remaining: int
    limit: int
    reset_at: float  # Unix timestamp when window resets
    retry_after: int  # Seconds until retry allowed (0 if not exceeded)

    def to_headers(self) -> dict[str, str]:
        """Convert to rate limit response headers."""
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(max(0, self.remaining)),
            "X-RateLimit-Reset": str(int(self.reset_at)),
        }
        if self.exceeded:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class RateLimitStore(ABC):
    """Abstract base class for rate limit storage backends."""

    @abstractmethod
    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        """
        Increment counter for key.

        Returns:
            Tuple of (current_count, reset_timestamp)
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the store is available."""
        pass


class MemoryRateLimitStore(RateLimitStore):
    """In-memory rate limit storage (single instance only)."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._store: dict[str, dict[str, Any]] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._last_cleanup = clock()

    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        current_time = self._clock()

        with self._lock:
            self._maybe_cleanup(current_time, window_seconds)
            data = self._store.setdefault(key, {"count": 0, "window_start": current_time})
            reset_at = data["window_start"] + window_seconds

            if current_time >= reset_at:
                data["count"] = 0
                data["window_start"] = current_time
                reset_at = current_time + window_seconds

            data["count"] += 1
            return data["count"], reset_at

    def is_available(self) -> bool:
        """Memory store is always available."""
        return True

    def _maybe_cleanup(self, now: float, window_seconds: int) -> None:
        """Drop finished windows, at most once per window. Caller holds the lock."""
        if now - self._last_cleanup < window_seconds:
            return

        self._last_cleanup = now
        self._remove_older_than(now - window_seconds)

    def _remove_older_than(self, threshold: float) -> int:
        expired_keys = [k for k, v in self._store.items() if v["window_start"] <= threshold]
        for k in expired_keys:
            del self._store[k]
        return len(expired_keys)

    def cleanup_expired(self, window_seconds: int) -> int:
        """Remove expired entries to prevent memory growth."""
        expired_threshold = self._clock() - window_seconds * 2

        with self._lock:
            return self._remove_older_than(expired_threshold)

    def __len__(self) -> int:
        with self._lock:
            return len(self._store)


class RedisRateLimitStore(RateLimitStore):
    """Redis-backed rate limit storage for distributed deployments."""

    def __init__(self, url: str, prefix: str = "", timeout: float = 1.0):
        self.url = url
        self.prefix = prefix
        self.timeout = timeout
        self._client = None

    def _get_client(self):
        """Get or create Redis client."""
        if self._client is None:
            import redis

            self._client = redis.from_url(
                self.url,
                socket_timeout=self.timeout,
                socket_connect_timeout=self.timeout,
                decode_responses=True,
            )
        return self._client

    def increment(self, key: str, window_seconds: int) -> tuple[int, float]:
        """INCR plus EXPIRE NX in one pipeline, so the window starts on the first hit."""
        client = self._get_client()
        full_key = f"{self.prefix}{key}"
        current_time = time.time()

        pipe = client.pipeline()
        pipe.incr(full_key)
        pipe.expire(full_key, window_seconds, nx=True)
        pipe.ttl(full_key)
        count, _, ttl = pipe.execute()

        reset_at = current_time + (ttl if ttl > 0 else window_seconds)
        return count, reset_at

    def is_available(self) -> bool:
        try:
            return bool(self._get_client().ping())
        except Exception as e:
            logger.warning(f"Redis rate limit store unavailable: {e}")
            return False


class RateLimiter:
    """
    Per-scope fixed-window rate limiter.

    Fails open: if the store raises, the request is allowed.
    """

    def __init__(self, config: RateLimitConfig | None = None, store: RateLimitStore | None = None):
        self.config = config or RateLimitConfig.from_env()
        self.store = store or self._build_store()

    def _build_store(self) -> RateLimitStore:
        if self.config.backend.lower() == "redis":
            logger.info("Rate limiter: Redis backend")
            return RedisRateLimitStore(
                url=self.config.redis_url,
                prefix=self.config.redis_prefix,
                timeout=self.config.redis_timeout,
            )
        logger.info("Rate limiter: Memory backend")
        return MemoryRateLimitStore()

    def check_limit(self, scope: str, identifier: str) -> RateLimitResult:
        """
        Count one request for identifier in scope.

        Args:
            scope: One of submit, update, read
            identifier: Hashed identity token

        Returns:
            RateLimitResult with exceeded status and headers
        """
        limit = self.config.limit_for(scope)
        window = self.config.window_seconds

        try:
            count, reset_at = self.store.increment(f"{scope}:{identifier}", window)
        except Exception as e:
            logger.error(f"Rate limit check failed, allowing request: {e}")
            return RateLimitResult(
                exceeded=False,
                remaining=limit,
                limit=limit,
                reset_at=time.time() + window,
                retry_after=0,
            )

        exceeded = count > limit
        return RateLimitResult(
            exceeded=exceeded,
            remaining=max(0, limit - count),
            limit=limit,
            reset_at=reset_at,
            retry_after=max(1, int(reset_at - time.time())) if exceeded else 0,
        )

    def is_healthy(self) -> dict[str, Any]:
        return {
            "enabled": self.config.enabled,
            "backend": self.config.backend,
            "available": self.store.is_available(),
        }


def create_rate_limit_response(result: RateLimitResult):
    """Flask 429 response in the API error envelope."""
    error = RateLimitExceededError(
        f"Too many requests. Please retry after {result.retry_after} seconds.",
        details={"retry_after": result.retry_after},
    )
    response = make_response(jsonify(error.to_dict()), error.http_status)
    response.headers.update(result.to_headers())
    return response


def rate_limited(scope: str):
    """
    Flask view decorator enforcing the scope's limit per hashed client identity.

    Expects current_app.extensions["rate_limiter"] and
    current_app.extensions["prediction_engine"] (for the identity salt).
    Requests without a resolvable client address pass through; the engine
    rejects them where an identity is required.
    """

    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            limiter: RateLimiter | None = current_app.extensions.get("rate_limiter")
            if limiter is None or not limiter.config.enabled:
                return view(*args, **kwargs)

            raw_identity = extract_client_ip(
                request.headers,
                request.remote_addr,
                current_app.config.get("TRUSTED_PROXIES", frozenset()),
            )
            if not raw_identity:
                return view(*args, **kwargs)

            engine = current_app.extensions["prediction_engine"]
            identifier = hash_identity(raw_identity, engine.config.identity_salt)
            result = limiter.check_limit(scope, identifier)
            if result.exceeded:
                logger.warning("Rate limit exceeded", extra={"scope": scope, "limit": result.limit})
                return create_rate_limit_response(result)

            response = make_response(view(*args, **kwargs))
            response.headers.update(result.to_headers())
            return response

        return wrapper

    return decorator

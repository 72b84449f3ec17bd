"""
Fixed-window rate limiting for the dispatch endpoint.

Each identity's window opens at its first request and lasts `window_seconds`;
the next request after that opens a fresh window. Stores count hits per
(identity, window) so concurrent requests are counted exactly.
"""
import functools
import logging
import math
import threading
import time
from dataclasses import dataclass

from django.conf import settings
from django.core.cache import cache
from django.core.signals import setting_changed
from django.dispatch import receiver
from django.utils.module_loading import import_string
from rest_framework.throttling import BaseThrottle

from .exceptions import RateLimitExceeded

logger = logging.getLogger(__name__)

RATE_LIMIT_SETTINGS = ('ALERT_RATE_LIMIT_STORE', 'ALERT_RATE_LIMIT_REQUESTS', 'ALERT_RATE_LIMIT_WINDOW_SECONDS')


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_at: float

    def retry_after(self, now):
        return max(0.0, self.reset_at - now)


class InMemoryRateLimitStore:
    """Per-process buckets. Suitable for single-instance deployments and tests."""

    def __init__(self):
        self._buckets = {}
        self._lock = threading.Lock()

    def increment(self, key, window_seconds, now):
        """Count a hit for `key` and return (count, reset_at) of its current window."""
        with self._lock:
            for expired in [k for k, (_, reset_at) in self._buckets.items() if reset_at <= now]:
                del self._buckets[expired]
            count, reset_at = self._buckets.get(key, (0, now + window_seconds))
            self._buckets[key] = (count + 1, reset_at)
            return count + 1, reset_at


class CacheRateLimitStore:
    """
    Buckets in the Django cache; shared between instances when the cache is Redis.

    The window's reset time lives under an anchor key written with add(), so
    the first request of a window fixes it for everyone. The counter key
    embeds that reset time, which makes each window's counter distinct.
    """

    key_prefix = 'alerts:ratelimit'

    def __init__(self, cache_backend=None):
        self.cache = cache_backend or cache

    def increment(self, key, window_seconds, now):
        anchor_key = f"{self.key_prefix}:{key}:anchor"
        self.cache.add(anchor_key, now + window_seconds, timeout=self._ttl(window_seconds))
        reset_at = self.cache.get(anchor_key)
        if reset_at is None:
            # Evicted right after add(); start a window of our own.
            reset_at = now + window_seconds
        elif reset_at <= now:
            # Anchor outlived its window. Whoever adds the successor opens the next one.
            successor_key = f"{anchor_key}:{reset_at:.6f}"
            self.cache.add(successor_key, now + window_seconds, timeout=self._ttl(window_seconds))
            reset_at = self.cache.get(successor_key) or now + window_seconds
            self.cache.set(anchor_key, reset_at, timeout=self._ttl(reset_at - now))

        counter_key = f"{self.key_prefix}:{key}:{reset_at:.6f}"
        timeout = self._ttl(reset_at - now)
        self.cache.add(counter_key, 0, timeout=timeout)
        try:
            return self.cache.incr(counter_key), reset_at
        except ValueError:
            # Expired between add() and incr().
            self.cache.add(counter_key, 1, timeout=timeout)
            return 1, reset_at

    @staticmethod
    def _ttl(seconds):
        return max(1, math.ceil(seconds) + 1)


class RateLimiter:
    def __init__(self, store, max_requests=10, window_seconds=60, clock=time.time):
        self.store = store
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock

    def hit(self, identity):
        now = self.clock()
        count, reset_at = self.store.increment(identity, self.window_seconds, now)
        allowed = count <= self.max_requests
        if not allowed:
            logger.warning(f"Rate limit exceeded for {identity} ({count}/{self.max_requests} in window)")
        return RateLimitDecision(allowed=allowed, remaining=max(0, self.max_requests - count), reset_at=reset_at)

    def check(self, identity):
        decision = self.hit(identity)
        if not decision.allowed:
            raise RateLimitExceeded(retry_after=decision.retry_after(self.clock()))
        return decision


@functools.lru_cache(maxsize=None)
def build_rate_limiter():
    """The process-wide limiter built from settings; its store outlives individual requests."""
    store_path = getattr(settings, 'ALERT_RATE_LIMIT_STORE', 'apps.alerts_app.rate_limit.CacheRateLimitStore')
    return RateLimiter(
        store=import_string(store_path)(),
        max_requests=getattr(settings, 'ALERT_RATE_LIMIT_REQUESTS', 10),
        window_seconds=getattr(settings, 'ALERT_RATE_LIMIT_WINDOW_SECONDS', 60),
    )


@receiver(setting_changed)
def reset_rate_limiter(setting, **kwargs):
    if setting in RATE_LIMIT_SETTINGS:
        build_rate_limiter.cache_clear()


class DispatchRateThrottle(BaseThrottle):
    """DRF throttle backed by RateLimiter; keyed by user when authenticated, else by client IP."""

    def __init__(self, limiter=None):
        self.limiter = limiter or build_rate_limiter()
        self.decision = None

    def get_identity(self, request):
        user = getattr(request, 'user', None)
        if user is not None and user.is_authenticated:
            return f"user:{user.pk}"
        return f"ip:{self.get_ident(request)}"

    def allow_request(self, request, view):
        self.decision = self.limiter.hit(self.get_identity(request))
        return self.decision.allowed

    def wait(self):
        if self.decision is None:
            return None
        return math.ceil(self.decision.retry_after(self.limiter.clock()))

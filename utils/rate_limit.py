import json
from time import time
from typing import Dict, Optional, Tuple
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
import logging

from config.settings import settings

logger = logging.getLogger(__name__)

# Stripe retries webhooks on 429, so they are never throttled here
EXEMPT_PATHS = frozenset({"/api/billing/webhook"})

_redis_client = None
_redis_available = False

try:
    import redis
    if settings.redis_url:
        try:
            _redis_client = redis.from_url(settings.redis_url, decode_responses=True)
            _redis_client.ping()
            _redis_available = True
            logger.info("Redis connected successfully for rate limiting")
        except Exception as e:
            logger.warning(f"Redis connection failed: {e}. Falling back to in-memory rate limiting.")
            _redis_client = None
            _redis_available = False
    else:
        logger.info("REDIS_URL not set. Using in-memory rate limiting.")
except ImportError:
    logger.warning("redis package not installed. Using in-memory rate limiting.")


class RateLimiterMiddleware(BaseHTTPMiddleware):
    """
    Per-IP token bucket rate limiter, shared through Redis when available.
    Default: RATE_LIMIT_PER_MINUTE requests per 60 seconds per IP.
    """

    def __init__(self, app, requests_per_minute: Optional[int] = None):
        super().__init__(app)
        self.capacity = requests_per_minute or settings.rate_limit_per_minute
        self.refill_time_window = 60.0
        # In-memory fallback: ip -> (tokens, last_refill_ts)
        self._buckets: Dict[str, Tuple[float, float]] = {}
        self._use_redis = _redis_available and _redis_client is not None

    def _get_client_ip(self, request: Request) -> str:
        xff = request.headers.get("x-forwarded-for")
        if xff:
            return xff.split(",")[0].strip()
        client = request.client
        return client.host if client else "unknown"

    def _take_token(self, tokens: float, last_refill: float, now: float) -> Tuple[bool, float]:
        elapsed = max(0.0, now - last_refill)
        tokens = min(self.capacity, tokens + (elapsed / self.refill_time_window) * self.capacity)
        if tokens < 1.0:
            return False, tokens
        return True, tokens - 1.0

    def _check_redis(self, ip: str) -> Optional[bool]:
        """Returns None when Redis fails, so the caller falls back to memory."""
        key = f"rate_limit:{ip}"
        now = time()
        try:
            bucket_data = _redis_client.get(key)
            if bucket_data:
                data = json.loads(bucket_data)
                tokens = float(data.get("tokens", 0))
                last_refill = float(data.get("last_refill", now))
            else:
                tokens, last_refill = float(self.capacity), now

            allowed, tokens = self._take_token(tokens, last_refill, now)
            if allowed:
                _redis_client.setex(
                    key,
                    int(self.refill_time_window) + 10,
                    json.dumps({"tokens": tokens, "last_refill": now}),
                )
            return allowed
        except Exception as e:
            logger.warning(f"Redis rate limit check failed: {e}. Falling back to in-memory.")
            return None

    def _check_memory(self, ip: str) -> bool:
        now = time()
        tokens, last_refill = self._buckets.get(ip, (float(self.capacity), now))
        allowed, tokens = self._take_token(tokens, last_refill, now)
        if allowed:
            self._buckets[ip] = (tokens, now)
        return allowed

    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        ip = self._get_client_ip(request)
        allowed = self._check_redis(ip) if self._use_redis else None
        if allowed is None:
            allowed = self._check_memory(ip)

        if not allowed:
            return JSONResponse(
                status_code=429,
                content={"error": "Rate limit exceeded. Try again shortly."},
            )

        return await call_next(request)

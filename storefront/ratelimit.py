# storefront/ratelimit.py
import time
import logging
from typing import Optional, Tuple

from fastapi import Request
from fastapi.responses import JSONResponse
from redis.asyncio import Redis
from redis.exceptions import RedisError

from storefront import config

logger = logging.getLogger(__name__)

KEY_PREFIX = "ratelimit:"
LIMIT_MESSAGE = "Too many requests from this IP, please try again later."


class RateLimiter:
    """Fixed-window request counter kept in Redis."""

    def __init__(self, redis: Redis, max_requests: int, window_seconds: int):
        self.redis = redis
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    async def hit(self, client_key: str, now: Optional[float] = None) -> Tuple[bool, int, int]:
        """Count one request. Returns ``(allowed, remaining, reset_epoch)``.

        Redis failures let the request through.
        """
        now = time.time() if now is None else now
        window = int(now // self.window_seconds)
        reset = (window + 1) * self.window_seconds
        key = f"{KEY_PREFIX}{client_key}:{window}"
        try:
            count = await self.redis.incr(key)
            if count == 1:
                await self.redis.expire(key, self.window_seconds)
        except (RedisError, OSError) as e:
            logger.warning("[RATELIMIT] redis unavailable, allowing request: %s", e)
            return True, self.max_requests, reset
        remaining = max(self.max_requests - count, 0)
        return count <= self.max_requests, remaining, reset


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "unknown"


def build_limiter() -> RateLimiter:
    redis = Redis.from_url(config.REDIS_URL, decode_responses=True)
    return RateLimiter(redis, config.RATE_LIMIT_MAX, config.RATE_LIMIT_WINDOW_SECONDS)


def rate_limit_middleware(limiter: RateLimiter):
    async def middleware(request: Request, call_next):
        if not request.url.path.startswith("/api/"):
            return await call_next(request)
        allowed, remaining, reset = await limiter.hit(client_ip(request))
        headers = {
            "RateLimit-Limit": str(limiter.max_requests),
            "RateLimit-Remaining": str(remaining),
            "RateLimit-Reset": str(max(int(reset - time.time()), 0)),
        }
        if not allowed:
            return JSONResponse(status_code=429, content={"error": "Too Many Requests", "message": LIMIT_MESSAGE},
                                headers=headers)
        response = await call_next(request)
        response.headers.update(headers)
        return response

    return middleware

"""
Rate limiting middleware using a Redis token bucket
Falls back to in-memory buckets when Redis is not available
"""
import re
import time
import logging
import threading
from typing import Optional, Tuple, Callable, Dict
from fastapi import Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from redis.exceptions import RedisError

from ..services.redis_cache import get_redis_client
from ..config import config
from ..exceptions import ErrorResponse
from ..logging_config import get_request_id

logger = logging.getLogger(__name__)

EXEMPT_PATHS = {'/', '/health', '/health/detailed'}
EXEMPT_PREFIXES = ('/api/webhooks/', '/api/billing/webhook')

GENERATION_PATH = re.compile(r'^/api/stories/?$|^/api/stories/\d+/(chapters|characters|improve|analyze)$')

TIER_CACHE_SECONDS = 300

TOKEN_BUCKET_LUA = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local bucket_size = tonumber(ARGV[2])
local refill_rate = tonumber(ARGV[3])
local now = tonumber(ARGV[4])

local bucket = redis.call('HMGET', key, 'tokens', 'last_refill')
local tokens = tonumber(bucket[1]) or bucket_size
local last_refill = tonumber(bucket[2]) or now

local time_passed = now - last_refill
if time_passed >= refill_rate then
    tokens = bucket_size
    last_refill = now
else
    local tokens_to_add = math.floor((time_passed / refill_rate) * limit)
    if tokens_to_add > 0 then
        tokens = math.min(tokens + tokens_to_add, bucket_size)
        last_refill = now
    end
end

local allowed = 0
if tokens > 0 then
    tokens = tokens - 1
    allowed = 1
end

redis.call('HSET', key, 'tokens', tokens, 'last_refill', last_refill)
redis.call('EXPIRE', key, refill_rate * 2)

local reset_after = refill_rate - (now - last_refill)
if reset_after < 0 then
    reset_after = 0
end

return {allowed, tokens, reset_after}
"""


def _lookup_user_tier(user_id: int) -> Optional[str]:
    from sqlalchemy.exc import SQLAlchemyError
    from ..db.engine import SessionLocal
    from ..db.models.user import User

    db = SessionLocal()
    try:
        row = db.query(User.subscription_tier).filter(User.id == user_id).first()
        return row[0] if row else None
    except SQLAlchemyError as e:
        logger.debug(f"Tier lookup for rate limiting failed: {e}")
        return None
    finally:
        db.close()


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Token bucket rate limiting per user (JWT subject) or client IP

    Buckets hold twice the per-minute limit and refill continuously.
    """

    def __init__(
        self,
        app,
        redis_client=None,
        enabled: Optional[bool] = None,
        tier_resolver: Optional[Callable[[int], Optional[str]]] = None,
        base_rpm: Optional[int] = None,
        generate_rpm: Optional[int] = None
    ):
        super().__init__(app)
        self.enabled = config.RATE_LIMIT_ENABLED if enabled is None else enabled
        self.redis_client = redis_client if redis_client is not None else (
            get_redis_client() if self.enabled else None
        )
        self.use_redis = self.redis_client is not None
        self.tier_resolver = tier_resolver or _lookup_user_tier

        self.memory_buckets: Dict[str, Dict[str, float]] = {}
        self._lock = threading.Lock()
        self._tier_cache: Dict[int, Tuple[Optional[str], float]] = {}

        base_rpm = base_rpm or config.RATE_LIMIT_RPM
        self.tier_limits = {
            'basic': max(30, base_rpm // 2),
            'premium': max(100, base_rpm),
        }
        self.anonymous_limit = self.tier_limits['basic']
        self.generate_rpm = generate_rpm or config.RATE_LIMIT_GENERATE_RPM

        self.bucket_size_multiplier = 2
        self.refill_rate = 60

    @staticmethod
    def is_exempt(path: str) -> bool:
        return path in EXEMPT_PATHS or path.startswith(EXEMPT_PREFIXES)

    @staticmethod
    def is_generation(method: str, path: str) -> bool:
        return method == "POST" and GENERATION_PATH.match(path) is not None

    def _user_id_from_request(self, request: Request) -> Optional[int]:
        from ..auth import verify_token

        header = request.headers.get("Authorization", "")
        token = header[7:].strip() if header.lower().startswith("bearer ") else request.cookies.get("auth_token")
        if not token:
            return None
        payload = verify_token(token)
        if not payload:
            return None
        try:
            return int(payload.get("sub"))
        except (TypeError, ValueError):
            return None

    def _prune_tier_cache(self, now: float):
        expired = [uid for uid, (_, cached_at) in self._tier_cache.items() if now - cached_at >= TIER_CACHE_SECONDS]
        for uid in expired:
            del self._tier_cache[uid]

    async def _tier_for(self, user_id: int) -> Optional[str]:
        cached = self._tier_cache.get(user_id)
        now = time.time()
        if cached and now - cached[1] < TIER_CACHE_SECONDS:
            return cached[0]
        # Resolver may hit the database
        tier = await run_in_threadpool(self.tier_resolver, user_id)
        self._prune_tier_cache(now)
        self._tier_cache[user_id] = (tier, now)
        return tier

    def _check_memory_rate_limit(self, identifier: str, limit: int) -> Tuple[bool, int, int]:
        """
        Returns:
            Tuple of (allowed, remaining_tokens, reset_after_seconds)
        """
        bucket_size = limit * self.bucket_size_multiplier
        now = time.time()

        with self._lock:
            bucket = self.memory_buckets.get(identifier)
            if bucket is None:
                bucket = {'tokens': bucket_size, 'last_refill': now}
                self.memory_buckets[identifier] = bucket
            else:
                time_passed = now - bucket['last_refill']
                if time_passed >= self.refill_rate:
                    bucket['tokens'] = bucket_size
                    bucket['last_refill'] = now
                else:
                    tokens_to_add = int((time_passed / self.refill_rate) * limit)
                    if tokens_to_add > 0:
                        bucket['tokens'] = min(bucket['tokens'] + tokens_to_add, bucket_size)
                        bucket['last_refill'] = now

            allowed = bucket['tokens'] > 0
            if allowed:
                bucket['tokens'] -= 1

            reset_after = max(0, self.refill_rate - (now - bucket['last_refill']))
            return allowed, int(bucket['tokens']), int(reset_after)

    def _check_redis_rate_limit(self, identifier: str, limit: int) -> Tuple[bool, int, int]:
        if not self.use_redis:
            return self._check_memory_rate_limit(identifier, limit)

        try:
            result = self.redis_client.eval(
                TOKEN_BUCKET_LUA,
                1,
                f"ratelimit:{identifier}",
                limit,
                limit * self.bucket_size_multiplier,
                self.refill_rate,
                int(time.time())
            )
            return bool(result[0]), int(result[1]), int(result[2])
        except RedisError as e:
            logger.warning(f"Redis rate limit check failed: {e}, falling back to in-memory")
            return self._check_memory_rate_limit(identifier, limit)

    async def resolve_limit(self, request: Request) -> Tuple[str, int]:
        """Identifier and requests-per-minute for this request"""
        user_id = self._user_id_from_request(request)
        generation = self.is_generation(request.method, request.url.path)

        if user_id is not None:
            identifier = f"user:{user_id}"
            limit = self.tier_limits.get(await self._tier_for(user_id) or 'basic', self.anonymous_limit)
        else:
            host = request.client.host if request.client else "unknown"
            identifier = f"ip:{host}"
            limit = self.anonymous_limit

        if generation:
            identifier = f"{identifier}:generate"
            limit = self.generate_rpm

        return identifier, limit

    async def dispatch(self, request: Request, call_next):
        if not self.enabled or self.is_exempt(request.url.path):
            return await call_next(request)

        identifier, limit = await self.resolve_limit(request)
        allowed, remaining, reset_after = self._check_redis_rate_limit(identifier, limit)

        if not allowed:
            logger.warning(f"Rate limit exceeded for {identifier} on {request.method} {request.url.path}")
            error_response = ErrorResponse.create(
                message=f"Rate limit exceeded. Limit: {limit} requests per minute.",
                code="RATE_LIMITED",
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                request_id=get_request_id(),
                details={
                    "limit": limit,
                    "reset_after_seconds": reset_after,
                    "retry_after": reset_after
                }
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content=error_response,
                headers={
                    "X-RateLimit-Limit": str(limit),
                    "X-RateLimit-Remaining": str(remaining),
                    "X-RateLimit-Reset-After": str(reset_after),
                    "Retry-After": str(max(1, reset_after))
                }
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(limit)
        response.headers["X-RateLimit-Remaining"] = str(remaining)
        response.headers["X-RateLimit-Reset-After"] = str(reset_after)
        return response

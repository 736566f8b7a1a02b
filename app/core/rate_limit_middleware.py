from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from app.core.config import settings
from app.core.firebase import verify_firebase_token
from app.core.cache import get_cache
from app.core.redis_cache import RedisCache
from datetime import datetime, timedelta
from typing import Optional
import logging

logger = logging.getLogger(__name__)

# Signed-in users are keyed by identity-provider uid
USER_LIMITS = {
    'per_minute': 120,
    'per_hour': 5000,
}

# Unauthenticated requests are keyed by client IP
DEFAULT_IP_LIMITS = {
    'per_minute': 30,
    'per_hour': 500,
}

EXEMPT_PATHS = ('/health', '/docs', '/openapi.json', '/redoc')


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Per-user or per-IP request limits on fixed minute and hour windows.
    Counters live in Redis; when Redis is down every request is allowed.
    """

    def __init__(self, app: ASGIApp, cache: Optional[RedisCache] = None):
        super().__init__(app)
        self.cache = cache or get_cache()

    async def dispatch(self, request: Request, call_next):
        if not settings.rate_limit_enabled or request.url.path in EXEMPT_PATHS:
            return await call_next(request)

        # Webhooks are authenticated by signature and retried by the sender
        if request.url.path.startswith(f"{settings.api_v1_str}/webhooks"):
            return await call_next(request)

        uid = self._get_uid(request)
        if uid:
            request.state.uid = uid
            identity = f"user:{uid}"
            limits = USER_LIMITS
        else:
            identity = f"ip:{self._get_client_ip(request)}"
            limits = DEFAULT_IP_LIMITS

        minute_count = self._hit(identity, limits)
        if minute_count is None:
            message = (
                f"Rate limit exceeded. You can make {limits['per_minute']} requests per minute. Please try again later."
                if uid else "Rate limit exceeded. Please authenticate or try again later."
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"detail": message, "retry_after": 60},
                headers={
                    "Retry-After": "60",
                    "X-RateLimit-Limit": str(limits['per_minute']),
                    "X-RateLimit-Remaining": "0",
                }
            )

        response = await call_next(request)

        if uid and minute_count > 0:
            response.headers["X-RateLimit-Limit"] = str(limits['per_minute'])
            response.headers["X-RateLimit-Remaining"] = str(max(0, limits['per_minute'] - minute_count))
            response.headers["X-RateLimit-Reset"] = str(int((datetime.utcnow() + timedelta(minutes=1)).timestamp()))

        return response

    def _get_uid(self, request: Request) -> Optional[str]:
        """Identity from a Bearer token, if one verifies"""
        auth_header = request.headers.get('Authorization')
        if not auth_header or not auth_header.startswith('Bearer '):
            return None
        try:
            decoded_token = verify_firebase_token(auth_header.split(' ', 1)[1])
            return decoded_token.get('uid')
        except Exception as e:
            # The route's auth dependency reports the error
            logger.debug(f"Rate limit middleware: Could not verify token: {e}")
            return None

    def _get_client_ip(self, request: Request) -> str:
        """Extract client IP address from request"""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            # First IP in the chain is the client
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _hit(self, identity: str, limits: dict) -> Optional[int]:
        """
        Count this request against both windows.

        Returns the minute count, 0 when Redis is unavailable, or None when
        either limit is exceeded.
        """
        now = datetime.utcnow()
        minute_key = f"rate_limit:{identity}:minute:{now.replace(second=0, microsecond=0).isoformat()}"
        hour_key = f"rate_limit:{identity}:hour:{now.replace(minute=0, second=0, microsecond=0).isoformat()}"

        minute_count = self.cache.incr(minute_key, ttl_seconds=60)
        if minute_count is not None and minute_count > limits['per_minute']:
            logger.warning(f"Rate limit exceeded (per minute) - {identity}")
            return None

        hour_count = self.cache.incr(hour_key, ttl_seconds=3600)
        if hour_count is not None and hour_count > limits['per_hour']:
            logger.warning(f"Rate limit exceeded (per hour) - {identity}")
            return None

        return minute_count or 0

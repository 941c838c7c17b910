"""
Redis-based rate limiting for API endpoints.
Implements a fixed window counter per client IP and scope.

The limiter owns its Redis client and limits; one instance is built by
core.apps.CoreConfig for the process and views receive it through
RateLimitMixin (or as_view(rate_limiter=...)).
"""
import logging
from dataclasses import dataclass

import redis
from django.apps import apps
from rest_framework import exceptions, status

logger = logging.getLogger(__name__)


def get_client_ip(request):
    """Extract client IP address from request."""
    x_forwarded_for = request.META.get('HTTP_X_FORWARDED_FOR')
    if x_forwarded_for:
        ip = x_forwarded_for.split(',')[0].strip()
    else:
        ip = request.META.get('REMOTE_ADDR', 'unknown')
    return ip


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset: int

    def headers(self):
        return {
            'X-RateLimit-Limit': str(self.limit),
            'X-RateLimit-Remaining': str(self.remaining),
            'X-RateLimit-Reset': str(self.reset),
        }


class RateLimiter:
    """
    Counts requests per key in a window of window_seconds.

    Fails open: when Redis is unreachable the request is allowed and the
    error is logged.
    """

    def __init__(self, client, max_requests: int = 100, window_seconds: int = 60, enabled: bool = True):
        self.client = client
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.enabled = enabled

    @classmethod
    def from_url(cls, url, **kwargs):
        client = redis.Redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5
        )
        return cls(client, **kwargs)

    def check(self, key: str):
        """Count one request against key; None when limiting is skipped."""
        if not self.enabled or self.client is None:
            return None

        try:
            current_count = self.client.incr(key)

            # Set expiry on first request
            if current_count == 1:
                self.client.expire(key, self.window_seconds)

            ttl = self.client.ttl(key)
        except redis.RedisError as e:
            logger.error(f"Redis error in rate limiting: {e}")
            return None

        return RateLimitDecision(
            allowed=current_count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - current_count),
            reset=ttl,
        )


class RateLimitExceeded(exceptions.APIException):
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_code = 'throttled'

    def __init__(self, decision, window_seconds):
        self.wait = decision.reset
        super().__init__({
            'error': 'Rate limit exceeded',
            'detail': f'Maximum {decision.limit} requests per {window_seconds} seconds allowed.',
            'retry_after': decision.reset
        })


class RateLimitMixin:
    """
    Mixin class for class-based views to add rate limiting.

    Usage:
        class MyView(RateLimitMixin, APIView):
            rate_limit_scope = 'reserve'
    """
    rate_limiter = None
    rate_limit_scope = None

    def get_rate_limiter(self):
        if self.rate_limiter is not None:
            return self.rate_limiter
        return apps.get_app_config('core').rate_limiter

    def initial(self, request, *args, **kwargs):
        super().initial(request, *args, **kwargs)
        limiter = self.get_rate_limiter()
        scope = self.rate_limit_scope or self.__class__.__name__
        key = f"rate_limit:{scope}:{get_client_ip(request)}"

        self.rate_limit_decision = limiter.check(key) if limiter is not None else None
        if self.rate_limit_decision is not None and not self.rate_limit_decision.allowed:
            raise RateLimitExceeded(self.rate_limit_decision, limiter.window_seconds)

    def finalize_response(self, request, response, *args, **kwargs):
        response = super().finalize_response(request, response, *args, **kwargs)
        decision = getattr(self, 'rate_limit_decision', None)
        if decision is not None:
            for header, value in decision.headers().items():
                response[header] = value
        return response

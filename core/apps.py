from django.apps import AppConfig
from django.conf import settings


class CoreConfig(AppConfig):
    name = 'core'
    verbose_name = 'Core'

    container = None
    rate_limiter = None

    def ready(self):
        from .container import build_container
        from .rate_limiting import RateLimiter

        self.rate_limiter = RateLimiter.from_url(
            settings.REDIS_URL,
            max_requests=settings.RATE_LIMIT_MAX_REQUESTS,
            window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
            enabled=settings.RATE_LIMIT_ENABLED,
        )
        self.container = build_container()

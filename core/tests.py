"""
Tests for the lock registry and the Redis rate limiter.
"""
import threading
import uuid
from unittest.mock import MagicMock, patch

import redis
from django.apps import apps
from django.test import RequestFactory, SimpleTestCase, TestCase
from django.urls import reverse
from rest_framework.test import APIClient

from core.locks import ItemLockRegistry
from core.rate_limiting import RateLimiter, get_client_ip
from core.testing import build_test_container


class ItemLockRegistryTestCase(SimpleTestCase):

    def test_stripes_are_sorted_and_distinct(self):
        registry = ItemLockRegistry(stripes=8)
        keys = [uuid.uuid4() for _ in range(20)]

        stripes = registry.stripes_for(*keys)

        self.assertEqual(stripes, sorted(set(stripes)))
        self.assertTrue(all(0 <= s < 8 for s in stripes))

    def test_same_key_maps_to_same_stripe(self):
        registry = ItemLockRegistry()
        key = uuid.uuid4()
        self.assertEqual(registry.stripes_for(key), registry.stripes_for(str(key)))

    def test_rejects_non_positive_stripe_count(self):
        with self.assertRaises(ValueError):
            ItemLockRegistry(stripes=0)

    def test_acquire_is_reentrant(self):
        registry = ItemLockRegistry()
        key = uuid.uuid4()
        with registry.acquire(key):
            with registry.acquire(key):
                pass

    def test_acquire_blocks_other_threads(self):
        """
        Test: A held item lock blocks other threads until released.

        Given: The main thread holds the lock of an item
        When: Another thread tries to acquire the same item
        Then: It only gets through after the main thread releases
        """
        registry = ItemLockRegistry()
        key = uuid.uuid4()
        entered = threading.Event()

        def contender():
            with registry.acquire(key):
                entered.set()

        with registry.acquire(key):
            thread = threading.Thread(target=contender)
            thread.start()
            self.assertFalse(entered.wait(timeout=0.2))

        thread.join(timeout=5)
        self.assertTrue(entered.is_set())


class RateLimiterTestCase(SimpleTestCase):

    def setUp(self):
        self.client = MagicMock()
        self.client.ttl.return_value = 42
        self.limiter = RateLimiter(self.client, max_requests=100, window_seconds=60)

    def test_first_request_sets_window_expiry(self):
        self.client.incr.return_value = 1

        decision = self.limiter.check('rate_limit:test:1.2.3.4')

        self.assertTrue(decision.allowed)
        self.assertEqual(decision.remaining, 99)
        self.assertEqual(decision.reset, 42)
        self.client.expire.assert_called_once_with('rate_limit:test:1.2.3.4', 60)

    def test_request_over_limit_is_denied(self):
        self.client.incr.return_value = 101

        decision = self.limiter.check('rate_limit:test:1.2.3.4')

        self.assertFalse(decision.allowed)
        self.assertEqual(decision.remaining, 0)
        self.client.expire.assert_not_called()
        self.assertEqual(decision.headers()['X-RateLimit-Limit'], '100')

    def test_disabled_limiter_skips_redis(self):
        limiter = RateLimiter(self.client, enabled=False)
        self.assertIsNone(limiter.check('key'))
        self.client.incr.assert_not_called()

    def test_redis_failure_fails_open(self):
        self.client.incr.side_effect = redis.ConnectionError("connection refused")

        with self.assertLogs('core.rate_limiting', level='ERROR'):
            self.assertIsNone(self.limiter.check('key'))

    def test_client_ip_prefers_forwarded_header(self):
        factory = RequestFactory()
        request = factory.get('/', HTTP_X_FORWARDED_FOR='10.0.0.1, 10.0.0.2', REMOTE_ADDR='127.0.0.1')
        self.assertEqual(get_client_ip(request), '10.0.0.1')

        request = factory.get('/', REMOTE_ADDR='127.0.0.1')
        self.assertEqual(get_client_ip(request), '127.0.0.1')


class RateLimitedEndpointTestCase(TestCase):
    """The availability endpoint answers 429 once the limiter says no."""

    def setUp(self):
        self.api = APIClient()
        self.core = apps.get_app_config('core')
        self.redis_client = MagicMock()
        self.redis_client.ttl.return_value = 30
        self.limiter = RateLimiter(self.redis_client, max_requests=2, window_seconds=60)
        self.url = reverse('inventory:check-availability')
        self.payload = {'product_id': str(uuid.uuid4()), 'quantity': 1}

    def test_allowed_request_carries_rate_limit_headers(self):
        self.redis_client.incr.return_value = 1

        with patch.object(self.core, 'rate_limiter', self.limiter), \
                patch.object(self.core, 'container', build_test_container()):
            response = self.api.post(self.url, self.payload, format='json')

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response['X-RateLimit-Limit'], '2')
        self.assertEqual(response['X-RateLimit-Remaining'], '1')

    def test_request_over_limit_is_rejected(self):
        self.redis_client.incr.return_value = 3

        with patch.object(self.core, 'rate_limiter', self.limiter), \
                patch.object(self.core, 'container', build_test_container()):
            response = self.api.post(self.url, self.payload, format='json')

        self.assertEqual(response.status_code, 429)
        self.assertEqual(str(response.data['retry_after']), '30')
        self.assertEqual(response['X-RateLimit-Remaining'], '0')

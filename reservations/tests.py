"""
Tests for stock reservations.

Test Cases:
1. Reserve, fulfill and the resulting stock status
2. Multi-warehouse reserves and all-or-nothing rollback
3. Release idempotence, expiry and the expiry sweep
4. Bulk reserve and order-level release
5. Order system notifications
6. Concurrent reserves against the same item
7. API endpoints
"""
import threading
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

from django.apps import apps
from django.db import DatabaseError, connection
from django.test import TestCase, TransactionTestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.rate_limiting import RateLimiter
from core.testing import RecordingOrderSystem, build_test_container
from inventory.exceptions import (
    DuplicateReservationError,
    InsufficientStockError,
    InventoryValidationError,
    ReservationExpiredError,
    ReservationNotFoundError,
)
from inventory.models import InventoryItem, MovementType, StockMovement, StockStatus

from .models import StockReservation
from .services import AllocationChanged, StockStatusUpdate
from .tasks import sweep_expired_reservations


class ReservationTestMixin:

    def setUp(self):
        """Set up test data."""
        self.order_system = RecordingOrderSystem()
        self.container = build_test_container(order_system=self.order_system)
        self.manager = self.container.reservations
        self.product_id = uuid.uuid4()
        self.warehouses = [
            self.container.warehouses.create(code, code, priority=priority)
            for priority, code in enumerate(['W1', 'W2', 'W3'], start=1)
        ]

    def stock(self, *quantities, product_id=None, **options):
        return [
            self.container.store.create(
                product_id or self.product_id,
                warehouse,
                f"SKU-{uuid.uuid4().hex[:8].upper()}",
                initial_quantity=quantity,
                **options
            )
            for warehouse, quantity in zip(self.warehouses, quantities)
        ]

    def refreshed(self, items):
        return [InventoryItem.objects.get(id=item.id) for item in items]


class ReserveAndFulfillTestCase(ReservationTestMixin, TestCase):
    """Test cases for the reserve -> fulfill lifecycle."""

    def test_reservation_code_grows_when_prefix_is_taken(self):
        item, = self.stock(10)
        first = StockReservation.objects.create(
            inventory_item=item, order_id=uuid.uuid4(), quantity=1, expires_at=timezone.now()
        )
        same_prefix = uuid.UUID(first.id.hex[:8] + uuid.uuid4().hex[8:])

        second = StockReservation.objects.create(
            id=same_prefix, inventory_item=item, order_id=uuid.uuid4(), quantity=1, expires_at=timezone.now()
        )

        self.assertEqual(first.reservation_code, f"RSV-{first.id.hex[:8].upper()}")
        self.assertEqual(second.reservation_code, f"RSV-{same_prefix.hex[:12].upper()}")

    def test_reserve_then_fulfill(self):
        """
        Test: Reserving most of an item's stock and shipping it.

        Given: 100 units with a reorder point of 10
        When: 95 units are reserved and the reservation is fulfilled
        Then: The item holds 5 units, is low on stock, and its ledger replays to 5
        """
        item, = self.stock(100, reorder_point=10)
        order_id = uuid.uuid4()

        reservation, = self.manager.reserve(self.product_id, order_id, 95, reserved_price=Decimal('19.99'))

        item.refresh_from_db()
        self.assertEqual(item.quantity_available, 5)
        self.assertEqual(item.quantity_reserved, 95)
        self.assertEqual(item.quantity_total, 100)
        self.assertEqual(item.status, StockStatus.IN_STOCK)
        self.assertTrue(reservation.reservation_code.startswith('RSV-'))
        self.assertEqual(reservation.total_price, Decimal('1899.05'))

        reserved = StockMovement.objects.get(inventory_item_id=item.id, movement_type=MovementType.RESERVED)
        self.assertEqual(reserved.previous_quantity, reserved.new_quantity)
        self.assertEqual(reserved.reference_id, order_id)

        fulfilled = self.manager.fulfill(reservation.id)

        item.refresh_from_db()
        self.assertEqual(item.quantity_total, 5)
        self.assertEqual(item.quantity_reserved, 0)
        self.assertEqual(item.quantity_available, 5)
        self.assertEqual(item.status, StockStatus.LOW_STOCK)
        self.assertEqual(fulfilled.state, StockReservation.State.FULFILLED)
        self.assertEqual(self.container.ledger.replay(item), 5)

    def test_fulfill_twice_is_rejected(self):
        self.stock(10)
        reservation, = self.manager.reserve(self.product_id, uuid.uuid4(), 3)
        self.manager.fulfill(reservation.id)

        with self.assertRaises(ReservationExpiredError):
            self.manager.fulfill(reservation.id)

    def test_duplicate_reservation_for_order(self):
        self.stock(10)
        other_product = uuid.uuid4()
        self.stock(10, product_id=other_product)
        order_id = uuid.uuid4()
        self.manager.reserve(self.product_id, order_id, 2)

        with self.assertRaises(DuplicateReservationError):
            self.manager.reserve(self.product_id, order_id, 1)

        # Other products and other orders are independent
        self.manager.reserve(other_product, order_id, 1)
        self.manager.reserve(self.product_id, uuid.uuid4(), 1)
        self.assertEqual(StockReservation.objects.count(), 3)

    def test_ttl_handling(self):
        self.stock(10)

        default, = self.manager.reserve(self.product_id, uuid.uuid4(), 1, ttl_hours=0)
        short, = self.manager.reserve(self.product_id, uuid.uuid4(), 1, ttl_hours=2)

        self.assertAlmostEqual(
            (default.expires_at - timezone.now()).total_seconds(), 24 * 3600, delta=60
        )
        self.assertAlmostEqual(
            (short.expires_at - timezone.now()).total_seconds(), 2 * 3600, delta=60
        )
        with self.assertRaises(InventoryValidationError):
            self.manager.reserve(self.product_id, uuid.uuid4(), 1, ttl_hours=200)
        with self.assertRaises(InventoryValidationError):
            self.manager.reserve(self.product_id, uuid.uuid4(), 1, reserved_price=Decimal('-1'))


class MultiWarehouseReserveTestCase(ReservationTestMixin, TestCase):
    """Test cases for reserves spanning several warehouses."""

    def test_reserve_splits_by_priority(self):
        """
        Test: A quantity larger than any single warehouse holds.

        Given: W1/W2/W3 holding 5/4/3
        When: 12 units are reserved
        Then: One reservation per warehouse takes all of their stock
        """
        items = self.stock(5, 4, 3)

        reservations = self.manager.reserve(self.product_id, uuid.uuid4(), 12)

        self.assertEqual([r.quantity for r in reservations], [5, 4, 3])
        self.assertEqual([r.inventory_item_id for r in reservations], [i.id for i in items])
        self.assertEqual([i.quantity_available for i in self.refreshed(items)], [0, 0, 0])

    def test_insufficient_stock_changes_nothing(self):
        items = self.stock(5, 4, 3)

        with self.assertRaises(InsufficientStockError):
            self.manager.reserve(self.product_id, uuid.uuid4(), 13)

        self.assertEqual([i.quantity_available for i in self.refreshed(items)], [5, 4, 3])
        self.assertFalse(StockReservation.objects.exists())

    def test_failure_midway_rolls_back_every_warehouse(self):
        """
        Test: A failure after the first warehouse was reserved.

        Given: A reserve that needs all three warehouses
        When: Creating the second reservation fails
        Then: No warehouse keeps a hold and no reserved movement remains
        """
        items = self.stock(5, 4, 3)
        repository = self.container.reservation_repository
        create = repository.create
        calls = []

        def failing_create(**fields):
            calls.append(fields)
            if len(calls) == 2:
                raise DatabaseError("connection lost")
            return create(**fields)

        with patch.object(repository, 'create', side_effect=failing_create):
            with self.assertRaises(DatabaseError):
                self.manager.reserve(self.product_id, uuid.uuid4(), 12)

        self.assertEqual([i.quantity_reserved for i in self.refreshed(items)], [0, 0, 0])
        self.assertFalse(StockReservation.objects.exists())
        self.assertFalse(StockMovement.objects.filter(movement_type=MovementType.RESERVED).exists())

    def test_preferred_warehouse_used_when_it_covers_quantity(self):
        items = self.stock(5, 4, 3)

        reservations = self.manager.reserve(
            self.product_id, uuid.uuid4(), 4, preferred_warehouse_id=self.warehouses[1].id
        )

        self.assertEqual(len(reservations), 1)
        self.assertEqual(reservations[0].inventory_item_id, items[1].id)

    def test_preferred_warehouse_too_small_falls_back_to_plan(self):
        items = self.stock(5, 4, 3)

        reservations = self.manager.reserve(
            self.product_id, uuid.uuid4(), 6, preferred_warehouse_id=self.warehouses[2].id
        )

        self.assertEqual(
            [(r.inventory_item_id, r.quantity) for r in reservations],
            [(items[0].id, 5), (items[1].id, 1)]
        )

    def test_replans_when_stock_moves_before_locking(self):
        """
        Test: Stock taken between planning and locking.

        Given: A plan taking 5 from W1 and 1 from W2
        When: 3 units leave W1 before the items are locked
        Then: The reserve re-plans and takes 2 from W1 and 4 from W2
        """
        items = self.stock(5, 4, 3)
        planner = self.container.planner
        suggest = planner.suggest_allocation
        plans = []

        def racing_suggest(*args, **kwargs):
            plan = suggest(*args, **kwargs)
            plans.append(plan)
            if len(plans) == 1:
                self.container.inventory.adjust_stock(items[0].id, -3)
            return plan

        with patch.object(planner, 'suggest_allocation', side_effect=racing_suggest):
            with self.assertLogs('reservations.services', level='INFO') as logs:
                reservations = self.manager.reserve(self.product_id, uuid.uuid4(), 6)

        self.assertEqual(len(plans), 2)
        self.assertTrue(any('re-planning' in line for line in logs.output))
        self.assertEqual([r.quantity for r in reservations], [2, 4])

    def test_gives_up_after_repeated_changes(self):
        self.stock(5)

        with patch.object(self.manager, '_reserve_allocations', side_effect=AllocationChanged()):
            with self.assertRaises(InsufficientStockError):
                self.manager.reserve(self.product_id, uuid.uuid4(), 2)


class ReleaseAndExpiryTestCase(ReservationTestMixin, TestCase):
    """Test cases for releasing and expiring reservations."""

    def expire(self, reservation):
        StockReservation.objects.filter(id=reservation.id).update(
            expires_at=timezone.now() - timedelta(minutes=5)
        )

    def test_release_is_idempotent(self):
        item, = self.stock(10)
        reservation, = self.manager.reserve(self.product_id, uuid.uuid4(), 4)

        first = self.manager.release(reservation.id)
        second = self.manager.release(reservation.id)

        item.refresh_from_db()
        self.assertEqual(item.quantity_available, 10)
        self.assertEqual(item.quantity_reserved, 0)
        self.assertFalse(first.is_active)
        self.assertEqual(second.state, StockReservation.State.RELEASED)
        self.assertEqual(
            StockMovement.objects.filter(inventory_item_id=item.id, movement_type=MovementType.RELEASED).count(),
            1
        )

    def test_release_unknown_reservation(self):
        with self.assertRaises(ReservationNotFoundError):
            self.manager.release(uuid.uuid4())

    def test_released_reservation_cannot_be_fulfilled(self):
        self.stock(10)
        reservation, = self.manager.reserve(self.product_id, uuid.uuid4(), 4)
        self.manager.release(reservation.id)

        with self.assertRaises(ReservationExpiredError):
            self.manager.fulfill(reservation.id)

    def test_expired_reservation_cannot_be_fulfilled(self):
        item, = self.stock(10)
        reservation, = self.manager.reserve(self.product_id, uuid.uuid4(), 4)
        self.expire(reservation)

        with self.assertRaises(ReservationExpiredError):
            self.manager.fulfill(reservation.id)

        self.assertEqual(self.manager.get(reservation.id).state, StockReservation.State.EXPIRED)
        item.refresh_from_db()
        self.assertEqual(item.quantity_total, 10)

    def test_sweep_releases_only_expired(self):
        """
        Test: The periodic sweep.

        Given: Two active reservations, one past its expiry
        When: The sweep runs
        Then: Only the expired one is released, with reason 'Reservation expired'
        """
        item, = self.stock(10)
        stale, = self.manager.reserve(self.product_id, uuid.uuid4(), 3)
        fresh, = self.manager.reserve(self.product_id, uuid.uuid4(), 2)
        self.expire(stale)

        released = self.manager.sweep_expired()

        self.assertEqual(released, 1)
        self.assertFalse(self.manager.get(stale.id).is_active)
        self.assertTrue(self.manager.get(fresh.id).is_active)
        item.refresh_from_db()
        self.assertEqual(item.quantity_reserved, 2)
        movement = StockMovement.objects.get(movement_type=MovementType.RELEASED)
        self.assertEqual(movement.reason, 'Reservation expired')

    def test_sweep_continues_after_failure(self):
        self.stock(10)
        broken, = self.manager.reserve(self.product_id, uuid.uuid4(), 1)
        other, = self.manager.reserve(self.product_id, uuid.uuid4(), 1)
        StockReservation.objects.filter(id=broken.id).update(expires_at=timezone.now() - timedelta(hours=2))
        self.expire(other)
        release = self.manager.release

        def failing_release(reservation_id, **kwargs):
            if reservation_id == broken.id:
                raise DatabaseError("deadlock detected")
            return release(reservation_id, **kwargs)

        with patch.object(self.manager, 'release', side_effect=failing_release):
            with self.assertLogs('reservations.services', level='ERROR'):
                released = self.manager.sweep_expired()

        self.assertEqual(released, 1)
        self.assertTrue(self.manager.get(broken.id).is_active)
        self.assertFalse(self.manager.get(other.id).is_active)

    def test_sweep_task(self):
        self.stock(10)
        reservation, = self.manager.reserve(self.product_id, uuid.uuid4(), 1)
        self.expire(reservation)

        with patch.object(apps.get_app_config('core'), 'container', self.container):
            result = sweep_expired_reservations()

        self.assertEqual(result, {'released': 1})


class OrderReservationsTestCase(ReservationTestMixin, TestCase):
    """Test cases for order-level operations and notifications."""

    def test_allocation_is_notified_after_commit(self):
        self.stock(5, 4)
        order_id = uuid.uuid4()

        with self.captureOnCommitCallbacks(execute=True):
            reservations = self.manager.reserve(self.product_id, order_id, 7)

        self.assertEqual(len(self.order_system.allocations), 1)
        notified_order, allocations = self.order_system.allocations[0]
        self.assertEqual(notified_order, order_id)
        self.assertEqual([a['quantity'] for a in allocations], [5, 2])
        self.assertEqual(allocations[0]['reservation_code'], reservations[0].reservation_code)

    def test_notification_failure_keeps_reservation(self):
        container = build_test_container(order_system=RecordingOrderSystem(fail=True))
        self.stock(5)

        with self.assertLogs('reservations.services', level='ERROR'):
            with self.captureOnCommitCallbacks(execute=True):
                reservation, = container.reservations.reserve(self.product_id, uuid.uuid4(), 2)

        self.assertTrue(StockReservation.objects.get(id=reservation.id).is_active)

    def test_bulk_reserve_partial(self):
        """
        Test: Bulk reserve with one line that cannot be covered.

        Given: Product A with 10 units and product B with 3
        When: An order reserves 5 of A and 50 of B
        Then: A is reserved, B fails, and the order is partially reserved
        """
        product_b = uuid.uuid4()
        self.stock(10)
        self.stock(3, product_id=product_b)
        order_id = uuid.uuid4()

        result = self.manager.bulk_reserve(order_id, [
            {'product_id': self.product_id, 'quantity': 5},
            {'product_id': product_b, 'quantity': 50},
        ])

        self.assertEqual(result['status'], StockStatusUpdate.PARTIALLY_RESERVED)
        self.assertEqual((result['success_count'], result['failure_count']), (1, 1))
        self.assertEqual(result['results'][1]['error'], 'insufficient_stock')
        self.assertEqual(len(result['results'][0]['reservations']), 1)
        self.assertEqual(
            self.order_system.statuses,
            [(order_id, StockStatusUpdate.PARTIALLY_RESERVED, {'success_count': 1, 'failure_count': 1})]
        )

    def test_bulk_reserve_status(self):
        self.stock(10)

        reserved = self.manager.bulk_reserve(uuid.uuid4(), [{'product_id': self.product_id, 'quantity': 1}])
        unavailable = self.manager.bulk_reserve(uuid.uuid4(), [{'product_id': uuid.uuid4(), 'quantity': 1}])

        self.assertEqual(reserved['status'], StockStatusUpdate.RESERVED)
        self.assertEqual(unavailable['status'], StockStatusUpdate.UNAVAILABLE)
        with self.assertRaises(InventoryValidationError):
            self.manager.bulk_reserve(uuid.uuid4(), [])

    def test_release_order(self):
        product_b = uuid.uuid4()
        items = self.stock(10) + self.stock(10, product_id=product_b)
        order_id = uuid.uuid4()
        self.manager.reserve(self.product_id, order_id, 3)
        self.manager.reserve(product_b, order_id, 4)

        released = self.manager.release_order(order_id)

        self.assertEqual(len(released), 2)
        self.assertEqual([i.quantity_reserved for i in self.refreshed(items)], [0, 0])
        self.assertEqual(self.manager.for_order(order_id, active_only=True), [])
        self.assertEqual(self.order_system.statuses[-1][1], StockStatusUpdate.RELEASED)


class ConcurrentReservationTestCase(TransactionTestCase):
    """
    Concurrent reserves use real transactions, so this runs outside the
    per-test transaction of TestCase.
    """

    def test_concurrent_reserves_never_oversell(self):
        """
        Test: Ten threads reserving one unit each against four available.

        Given: An item with 4 units
        When: 10 threads reserve 1 unit for 10 different orders at once
        Then: Exactly 4 succeed, 6 fail with insufficient stock, nothing is oversold
        """
        order_system = RecordingOrderSystem()
        container = build_test_container(order_system=order_system)
        warehouse = container.warehouses.create('EAST-01', 'East')
        product_id = uuid.uuid4()
        item = container.store.create(product_id, warehouse, 'SKU-1', initial_quantity=4)

        results = {'success': 0, 'insufficient': 0, 'errors': []}
        results_lock = threading.Lock()

        def attempt():
            try:
                container.reservations.reserve(product_id, uuid.uuid4(), 1)
                outcome = 'success'
            except InsufficientStockError:
                outcome = 'insufficient'
            except Exception as e:
                with results_lock:
                    results['errors'].append(e)
                return
            finally:
                connection.close()
            with results_lock:
                results[outcome] += 1

        threads = [threading.Thread(target=attempt) for _ in range(10)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results['errors'], [])
        self.assertEqual(results['success'], 4)
        self.assertEqual(results['insufficient'], 6)

        item.refresh_from_db()
        self.assertEqual(item.quantity_available, 0)
        self.assertEqual(item.quantity_reserved, 4)
        self.assertEqual(item.quantity_total, 4)
        self.assertEqual(StockReservation.objects.filter(is_active=True).count(), 4)
        self.assertEqual(len(order_system.allocations), 4)

    def test_concurrent_retries_of_one_order_hold_stock_once(self):
        """
        Test: Retried requests for the same order line do not stack up holds.

        Given: An item with 100 units
        When: 8 threads reserve 1 unit of it for the same order at once
        Then: One succeeds, the other 7 are rejected as duplicates
        """
        container = build_test_container()
        warehouse = container.warehouses.create('EAST-01', 'East')
        product_id = uuid.uuid4()
        item = container.store.create(product_id, warehouse, 'SKU-1', initial_quantity=100)
        order_id = uuid.uuid4()

        barrier = threading.Barrier(8)
        results = {'success': 0, 'duplicate': 0, 'errors': []}
        results_lock = threading.Lock()

        def attempt():
            try:
                barrier.wait(timeout=5)
                container.reservations.reserve(product_id, order_id, 1)
                outcome = 'success'
            except DuplicateReservationError:
                outcome = 'duplicate'
            except Exception as e:
                with results_lock:
                    results['errors'].append(e)
                return
            finally:
                connection.close()
            with results_lock:
                results[outcome] += 1

        threads = [threading.Thread(target=attempt) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(results['errors'], [])
        self.assertEqual(results['success'], 1)
        self.assertEqual(results['duplicate'], 7)

        item.refresh_from_db()
        self.assertEqual(item.quantity_reserved, 1)
        self.assertEqual(StockReservation.objects.filter(order_id=order_id, is_active=True).count(), 1)


class ReservationAPITestCase(ReservationTestMixin, TestCase):
    """Test cases for the reservation endpoints."""

    def setUp(self):
        super().setUp()
        self.client = APIClient()
        core = apps.get_app_config('core')
        for name, value in (('container', self.container), ('rate_limiter', RateLimiter(None))):
            patcher = patch.object(core, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)
        self.order_id = uuid.uuid4()

    def reserve(self, quantity):
        return self.client.post(reverse('reservations:reserve'), {
            'product_id': str(self.product_id),
            'order_id': str(self.order_id),
            'quantity': quantity,
        }, format='json')

    def test_reserve_across_warehouses(self):
        self.stock(5, 4)

        response = self.reserve(7)

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['total_quantity'], 7)
        self.assertEqual([r['quantity'] for r in response.data['reservations']], [5, 2])
        self.assertEqual(response.data['reservations'][0]['state'], 'active')

    def test_insufficient_stock_is_conflict(self):
        self.stock(5)

        response = self.reserve(6)

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'insufficient_stock')

    def test_release_and_fulfill(self):
        self.stock(5)
        reservation_id = self.reserve(2).data['reservations'][0]['id']
        url = reverse('reservations:reservation-detail', args=[reservation_id])

        first = self.client.delete(url)
        second = self.client.delete(url)
        fulfill = self.client.post(reverse('reservations:reservation-fulfill', args=[reservation_id]))

        self.assertEqual(first.status_code, status.HTTP_200_OK)
        self.assertEqual(second.data['state'], 'released')
        self.assertEqual(fulfill.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(fulfill.data['error'], 'reservation_expired')

    def test_unknown_reservation_is_not_found(self):
        response = self.client.get(reverse('reservations:reservation-detail', args=[uuid.uuid4()]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'reservation_not_found')

    def test_order_reservations(self):
        self.stock(5)
        self.reserve(2)
        url = reverse('reservations:order-reservations', args=[self.order_id])

        listing = self.client.get(url)
        released = self.client.delete(url)
        active = self.client.get(url, {'active_only': 'true'})

        self.assertEqual(len(listing.data), 1)
        self.assertEqual(len(released.data['released']), 1)
        self.assertEqual(active.data, [])

    def test_active_reservation_list(self):
        self.stock(5)
        self.reserve(2)

        response = self.client.get(reverse('reservations:reservation-list'), {
            'warehouse_id': str(self.warehouses[0].id),
        })

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)

    def test_bulk_reserve(self):
        self.stock(5)

        response = self.client.post(reverse('reservations:bulk-reserve'), {
            'order_id': str(self.order_id),
            'lines': [
                {'product_id': str(self.product_id), 'quantity': 2},
                {'product_id': str(uuid.uuid4()), 'quantity': 1},
            ],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], StockStatusUpdate.PARTIALLY_RESERVED)
        self.assertEqual(response.data['results'][0]['reservations'][0]['quantity'], 2)

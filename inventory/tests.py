"""
Tests for stock tracking, the movement ledger, allocation and alerts.

Test Cases:
1. Quantity operations on InventoryItem and status derivation
2. Item store creation with its initial-stock movement
3. Ledger replay and movement reports
4. Allocation planning across warehouses
5. Adjustments, transfers and bulk updates
6. Alert generation
7. Product and order service clients
8. API error mapping and responses
"""
import json
import threading
import uuid
from datetime import timedelta
from decimal import Decimal
from unittest.mock import MagicMock, patch

import httpx
from django.apps import apps
from django.db import DatabaseError, connection
from django.test import SimpleTestCase, TestCase, TransactionTestCase
from django.urls import reverse
from django.utils import timezone
from rest_framework import status
from rest_framework.test import APIClient

from core.rate_limiting import RateLimiter
from core.testing import FakeProductCatalog, build_test_container

from .exceptions import (
    ActiveReservationsError,
    DuplicateItemError,
    DuplicateWarehouseError,
    InsufficientStockError,
    InvalidQuantityError,
    InventoryNotFoundError,
    InventoryValidationError,
    ProductNotFoundError,
    WarehouseNotFoundError,
)
from .integrations import HttpOrderSystem, HttpProductCatalog, QueuedOrderSystem
from .models import InventoryItem, MovementType, StockAlert, StockMovement, StockStatus, Warehouse
from .repositories import MovementFilters
from .tasks import generate_stock_alerts, notify_order_allocation


def stock(container, warehouse, product_id=None, quantity=100, **options):
    """Create an inventory item holding quantity units."""
    product_id = product_id or uuid.uuid4()
    options.setdefault('sku', f"SKU-{uuid.uuid4().hex[:8].upper()}")
    return container.store.create(product_id, warehouse, initial_quantity=quantity, **options)


class InventoryItemModelTestCase(SimpleTestCase):
    """Quantity methods only touch the in-memory instance."""

    def setUp(self):
        self.item = InventoryItem(
            quantity_available=10,
            quantity_reserved=0,
            quantity_total=10,
            reorder_point=3,
        )

    def test_reserve_moves_available_to_reserved(self):
        self.item.reserve(4)

        self.assertEqual(self.item.quantity_available, 6)
        self.assertEqual(self.item.quantity_reserved, 4)
        self.assertEqual(self.item.quantity_total, 10)
        self.assertTrue(self.item.check_invariant())

    def test_reserve_more_than_available(self):
        with self.assertRaises(InsufficientStockError) as ctx:
            self.item.reserve(11)
        self.assertEqual(ctx.exception.requested, 11)
        self.assertEqual(ctx.exception.available, 10)
        self.assertEqual(self.item.quantity_available, 10)

    def test_rejects_non_positive_quantities(self):
        for quantity in (0, -1, True, 2.5):
            with self.assertRaises(InvalidQuantityError):
                self.item.reserve(quantity)

    def test_release_and_fulfill_need_reserved_stock(self):
        self.item.reserve(4)

        with self.assertRaises(InvalidQuantityError):
            self.item.release(5)
        with self.assertRaises(InvalidQuantityError):
            self.item.fulfill(5)

        self.item.release(1)
        self.item.fulfill(3)
        self.assertEqual(self.item.quantity_available, 7)
        self.assertEqual(self.item.quantity_reserved, 0)
        self.assertEqual(self.item.quantity_total, 7)
        self.assertIsNotNone(self.item.last_sold_at)

    def test_status_follows_total(self):
        self.item.remove_stock(7)
        self.assertEqual(self.item.status, StockStatus.LOW_STOCK)

        self.item.remove_stock(3)
        self.assertEqual(self.item.status, StockStatus.OUT_OF_STOCK)

        self.item.add_stock(20)
        self.assertEqual(self.item.status, StockStatus.IN_STOCK)

    def test_backorder_is_kept_until_stock_returns(self):
        self.item.remove_stock(10)
        self.item.status = StockStatus.BACKORDER

        self.assertEqual(self.item.refresh_status(), StockStatus.BACKORDER)

        self.item.add_stock(2)
        self.assertEqual(self.item.status, StockStatus.LOW_STOCK)

    def test_add_stock_tracks_cost_price(self):
        self.item.cost_price = Decimal('4.00')

        self.item.add_stock(5, cost_price=Decimal('4.50'))

        self.assertEqual(self.item.cost_price, Decimal('4.50'))
        self.assertEqual(self.item.last_cost_price, Decimal('4.00'))
        self.assertIsNotNone(self.item.last_restocked_at)


class InventoryItemStoreTestCase(TestCase):
    """Test cases for creating inventory items."""

    def setUp(self):
        """Set up test data."""
        self.container = build_test_container()
        self.warehouse = self.container.warehouses.create('EAST-01', 'East', priority=1)
        self.product_id = uuid.uuid4()

    def test_create_records_initial_stock(self):
        """
        Test: Creating an item with stock records an inbound movement.

        Given: A warehouse
        When: An item is created with 100 units
        Then: One inbound movement from 0 to 100 tagged initial_stock exists
        """
        item = stock(self.container, self.warehouse, self.product_id, 100, cost_price=Decimal('2.50'))

        self.assertEqual(item.quantity_available, 100)
        self.assertEqual(item.status, StockStatus.IN_STOCK)

        movement = StockMovement.objects.get(inventory_item_id=item.id)
        self.assertEqual(movement.movement_type, MovementType.INBOUND)
        self.assertEqual(movement.reference_type, 'initial_stock')
        self.assertEqual(movement.reason, 'Initial inventory setup')
        self.assertEqual((movement.previous_quantity, movement.new_quantity), (0, 100))
        self.assertEqual(movement.total_cost, Decimal('250.00'))

    def test_create_empty_item(self):
        item = stock(self.container, self.warehouse, self.product_id, 0)

        self.assertEqual(item.status, StockStatus.OUT_OF_STOCK)
        self.assertFalse(StockMovement.objects.filter(inventory_item_id=item.id).exists())

    def test_duplicate_item_rejected(self):
        stock(self.container, self.warehouse, self.product_id, 10)

        with self.assertRaises(DuplicateItemError):
            stock(self.container, self.warehouse, self.product_id, 5)

        # A variant of the same product is a different item
        stock(self.container, self.warehouse, self.product_id, 5, variant_id=uuid.uuid4())
        self.assertEqual(InventoryItem.objects.filter(product_id=self.product_id).count(), 2)

    def test_negative_initial_quantity_rejected(self):
        with self.assertRaises(InvalidQuantityError):
            stock(self.container, self.warehouse, self.product_id, -1)

    def test_initial_movement_failure_keeps_item(self):
        """
        Test: A failed initial movement does not undo the item.

        Given: The ledger fails on write
        When: An item is created with stock
        Then: The item exists, the failure is logged and replay shows the gap
        """
        with patch.object(self.container.ledger, 'record', side_effect=DatabaseError("disk full")):
            with self.assertLogs('inventory.stock', level='ERROR'):
                item = stock(self.container, self.warehouse, self.product_id, 40)

        self.assertTrue(InventoryItem.objects.filter(id=item.id).exists())
        self.assertEqual(self.container.ledger.replay(item), 0)
        self.assertFalse(self.container.ledger.is_consistent(item))


class MovementLedgerTestCase(TestCase):
    """Test cases for ledger replay and movement reports."""

    def setUp(self):
        """Set up test data."""
        self.container = build_test_container()
        self.warehouse = self.container.warehouses.create('EAST-01', 'East', priority=1)
        self.item = stock(self.container, self.warehouse, quantity=100, reorder_point=10)

    def test_replay_matches_total_after_mixed_operations(self):
        """
        Test: The ledger of an item replays to its quantity_total.

        Given: An item with 100 units
        When: It is reserved, damaged, released, returned and fulfilled
        Then: Folding its movements gives the current total
        """
        inventory = self.container.inventory
        reservations = self.container.reservations

        first = reservations.reserve(self.item.product_id, uuid.uuid4(), 30)[0]
        inventory.adjust_stock(self.item.id, -10, movement_type=MovementType.DAMAGED)
        reservations.release(first.id)
        inventory.adjust_stock(self.item.id, 5, movement_type=MovementType.RETURNED)
        second = reservations.reserve(self.item.product_id, uuid.uuid4(), 15)[0]
        reservations.fulfill(second.id)

        self.item.refresh_from_db()
        self.assertEqual(self.item.quantity_total, 80)
        self.assertEqual(self.container.ledger.replay(self.item), 80)
        self.assertTrue(inventory.ledger_check(self.item.id)['consistent'])

    def test_summary_counts_total_changes(self):
        inventory = self.container.inventory
        reservations = self.container.reservations

        reservations.reserve(self.item.product_id, uuid.uuid4(), 30)
        inventory.adjust_stock(self.item.id, -10, movement_type=MovementType.DAMAGED)
        inventory.adjust_stock(self.item.id, 5, movement_type=MovementType.RETURNED)

        summary = inventory.movement_summary()

        self.assertEqual(summary['total_movements'], 4)
        self.assertEqual(summary['total_inbound'], 105)
        self.assertEqual(summary['total_outbound'], 10)
        self.assertEqual(summary['net_movement'], 95)
        self.assertEqual(summary['movements_by_type'], {
            MovementType.INBOUND: 1,
            MovementType.RESERVED: 1,
            MovementType.DAMAGED: 1,
            MovementType.RETURNED: 1,
        })
        self.assertEqual(summary['warehouses'][0]['warehouse_name'], 'East')
        self.assertEqual(summary['top_products'][0]['quantity_moved'], 115)
        self.assertEqual(summary['daily'], [
            {'date': timezone.localdate().isoformat(), 'inbound': 105, 'outbound': 10},
        ])
        self.assertEqual(
            (summary['warehouses'][0]['movements'], summary['warehouses'][0]['inbound']),
            (4, 105)
        )

    def test_summary_is_computed_in_the_database(self):
        for _ in range(5):
            self.container.inventory.adjust_stock(self.item.id, 1)

        with self.assertNumQueries(5):
            summary = self.container.inventory.movement_summary()

        self.assertEqual(summary['total_movements'], 6)
        self.assertEqual(summary['top_products'][0]['movements'], 6)

    def test_history_filters_by_type(self):
        self.container.inventory.adjust_stock(self.item.id, -3, movement_type=MovementType.DAMAGED)

        damaged, total = self.container.ledger.history(MovementFilters(movement_type=MovementType.DAMAGED))

        self.assertEqual(total, 1)
        self.assertEqual(damaged[0].quantity, -3)

    def test_movements_are_immutable(self):
        movement = StockMovement.objects.get(inventory_item_id=self.item.id)
        movement.reason = 'changed'

        with self.assertRaises(ValueError):
            movement.save()
        with self.assertRaises(ValueError):
            movement.delete()

    def test_purge_removes_old_movements_only(self):
        self.container.inventory.adjust_stock(self.item.id, 5)
        StockMovement.objects.filter(movement_type=MovementType.INBOUND).update(
            movement_date=timezone.now() - timedelta(days=800)
        )

        deleted = self.container.ledger.purge(older_than_days=730)

        self.assertEqual(deleted, 1)
        self.assertEqual(StockMovement.objects.count(), 1)


class AllocationPlannerTestCase(TestCase):
    """Test cases for splitting a quantity across warehouses."""

    def setUp(self):
        """Set up test data."""
        self.container = build_test_container()
        self.product_id = uuid.uuid4()
        self.warehouses = [
            self.container.warehouses.create(code, code, priority=priority)
            for priority, code in enumerate(['W1', 'W2', 'W3'], start=1)
        ]

    def stock_levels(self, *quantities):
        return [
            stock(self.container, warehouse, self.product_id, quantity)
            for warehouse, quantity in zip(self.warehouses, quantities)
        ]

    def test_exact_cover_across_warehouses(self):
        """
        Test: A request equal to the total is split by priority.

        Given: W1/W2/W3 (priority 1/2/3) holding 5/4/3
        When: 12 units are requested
        Then: The plan is available and takes 5, 4 and 3 in priority order
        """
        self.stock_levels(5, 4, 3)

        plan = self.container.planner.suggest_allocation(self.product_id, 12)

        self.assertTrue(plan.is_available)
        self.assertEqual([a.quantity for a in plan.allocations], [5, 4, 3])
        self.assertEqual([a.warehouse_name for a in plan.allocations], ['W1', 'W2', 'W3'])
        self.assertEqual(plan.allocated_quantity, 12)

    def test_short_request_reports_partial_allocation(self):
        self.stock_levels(5, 4, 2)

        plan = self.container.planner.suggest_allocation(self.product_id, 12)

        self.assertFalse(plan.is_available)
        self.assertEqual(plan.total_available, 11)
        self.assertEqual([a.quantity for a in plan.allocations], [5, 4, 2])

    def test_smaller_request_uses_first_warehouse(self):
        items = self.stock_levels(5, 4, 3)

        plan = self.container.planner.suggest_allocation(self.product_id, 3)

        self.assertEqual(len(plan.allocations), 1)
        self.assertEqual(plan.allocations[0].inventory_item_id, items[0].id)
        self.assertEqual(len(plan.per_warehouse), 3)

    def test_inactive_warehouse_excluded(self):
        self.stock_levels(5, 4, 3)
        self.container.warehouses.update(self.warehouses[0].id, is_active=False)

        plan = self.container.planner.suggest_allocation(self.product_id, 12)

        self.assertFalse(plan.is_available)
        self.assertEqual(plan.total_available, 7)
        self.assertNotIn('W1', [s.warehouse_code for s in plan.per_warehouse])

    def test_equal_priority_prefers_larger_stock(self):
        self.container.warehouses.update(self.warehouses[1].id, priority=1)
        items = self.stock_levels(3, 8)

        plan = self.container.planner.suggest_allocation(self.product_id, 5)

        self.assertEqual(plan.allocations[0].inventory_item_id, items[1].id)
        self.assertEqual(plan.allocations[0].quantity, 5)

    def test_empty_warehouse_gets_no_allocation(self):
        self.stock_levels(0, 4)

        plan = self.container.planner.suggest_allocation(self.product_id, 2)

        self.assertEqual(len(plan.per_warehouse), 2)
        self.assertEqual([a.warehouse_name for a in plan.allocations], ['W2'])

    def test_invalid_quantity(self):
        with self.assertRaises(InvalidQuantityError):
            self.container.planner.suggest_allocation(self.product_id, 0)


class InventoryServiceTestCase(TestCase):
    """Test cases for item management and stock changes."""

    def setUp(self):
        """Set up test data."""
        self.container = build_test_container()
        self.service = self.container.inventory
        self.east = self.container.warehouses.create('EAST-01', 'East', priority=1)
        self.west = self.container.warehouses.create('WEST-01', 'West', priority=2)
        self.product_id = uuid.uuid4()

    def test_create_item_checks_catalog(self):
        catalog = FakeProductCatalog(known=[])
        container = build_test_container(catalog=catalog)

        with self.assertRaises(ProductNotFoundError):
            container.inventory.create_item(self.product_id, self.east.id, 'SKU-1')

        self.assertEqual(catalog.calls, [(self.product_id, None)])
        self.assertFalse(InventoryItem.objects.exists())

    def test_create_item_unknown_warehouse(self):
        with self.assertRaises(WarehouseNotFoundError):
            self.service.create_item(self.product_id, uuid.uuid4(), 'SKU-1')

    def test_damaged_adjustment_empties_item(self):
        """
        Test: Writing off all stock as damaged.

        Given: An item with 5 units
        When: A damaged adjustment of -5 is applied
        Then: The item is out of stock with one damaged movement ending at 0
        """
        item = stock(self.container, self.east, self.product_id, 5)

        movement = self.service.adjust_stock(item.id, -5, movement_type=MovementType.DAMAGED, reason='Water damage')

        item.refresh_from_db()
        self.assertEqual(item.quantity_total, 0)
        self.assertEqual(item.quantity_available, 0)
        self.assertEqual(item.status, StockStatus.OUT_OF_STOCK)
        self.assertEqual(movement.quantity, -5)
        self.assertEqual(movement.new_quantity, 0)
        self.assertEqual(
            StockMovement.objects.filter(inventory_item_id=item.id, movement_type=MovementType.DAMAGED).count(),
            1
        )

    def test_adjustment_sign_must_match_type(self):
        item = stock(self.container, self.east, self.product_id, 5)

        with self.assertRaises(InvalidQuantityError):
            self.service.adjust_stock(item.id, 5, movement_type=MovementType.DAMAGED)
        with self.assertRaises(InvalidQuantityError):
            self.service.adjust_stock(item.id, -5, movement_type=MovementType.INBOUND)
        with self.assertRaises(InvalidQuantityError):
            self.service.adjust_stock(item.id, 0)
        with self.assertRaises(InventoryValidationError):
            self.service.adjust_stock(item.id, 5, movement_type=MovementType.RESERVED)

    def test_removal_cannot_touch_reserved_stock(self):
        item = stock(self.container, self.east, self.product_id, 10)
        self.container.reservations.reserve(self.product_id, uuid.uuid4(), 8)

        with self.assertRaises(InsufficientStockError):
            self.service.adjust_stock(item.id, -3)

        item.refresh_from_db()
        self.assertEqual(item.quantity_total, 10)
        self.assertEqual(item.quantity_reserved, 8)

    def test_inbound_adjustment_updates_cost(self):
        item = stock(self.container, self.east, self.product_id, 10, cost_price=Decimal('3.00'))

        movement = self.service.adjust_stock(
            item.id, 20, movement_type=MovementType.INBOUND, unit_cost=Decimal('3.50')
        )

        item.refresh_from_db()
        self.assertEqual(item.quantity_total, 30)
        self.assertEqual(item.cost_price, Decimal('3.50'))
        self.assertEqual(item.last_cost_price, Decimal('3.00'))
        self.assertEqual(movement.total_cost, Decimal('70.00'))

    def test_transfer_creates_destination(self):
        """
        Test: Transferring to a warehouse that does not stock the product.

        Given: 20 units at East, none at West
        When: 8 units are transferred East -> West
        Then: West gets a new item with 8 units and both ledgers replay
        """
        source = stock(self.container, self.east, self.product_id, 20, reorder_point=5)

        outbound, inbound = self.service.transfer(self.product_id, self.east.id, self.west.id, 8)

        source.refresh_from_db()
        destination = InventoryItem.objects.get(product_id=self.product_id, warehouse=self.west)
        self.assertEqual(source.quantity_total, 12)
        self.assertEqual(destination.quantity_total, 8)
        self.assertEqual(destination.sku, source.sku)
        self.assertEqual(destination.reorder_point, 5)
        self.assertEqual((outbound.quantity, inbound.quantity), (-8, 8))
        self.assertEqual(outbound.movement_type, MovementType.TRANSFER)
        self.assertEqual(inbound.reference_type, 'transfer')
        self.assertTrue(self.container.ledger.is_consistent(source))
        self.assertTrue(self.container.ledger.is_consistent(destination))

    def test_transfer_failures(self):
        source = stock(self.container, self.east, self.product_id, 5)

        with self.assertRaises(InsufficientStockError):
            self.service.transfer(self.product_id, self.east.id, self.west.id, 6)
        with self.assertRaises(InventoryValidationError):
            self.service.transfer(self.product_id, self.east.id, self.east.id, 1)
        with self.assertRaises(InventoryNotFoundError):
            self.service.transfer(uuid.uuid4(), self.east.id, self.west.id, 1)
        with self.assertRaises(WarehouseNotFoundError):
            self.service.transfer(self.product_id, self.east.id, uuid.uuid4(), 1)

        source.refresh_from_db()
        self.assertEqual(source.quantity_total, 5)

    def test_failed_transfer_leaves_no_destination_item(self):
        """
        Test: A transfer that cannot be covered creates nothing at the destination.

        Given: 3 units at East, none at West
        When: 10 units are transferred East -> West
        Then: It fails, West has no item and the next scan raises no out-of-stock alert
        """
        stock(self.container, self.east, self.product_id, 3)

        with self.assertRaises(InsufficientStockError):
            self.service.transfer(self.product_id, self.east.id, self.west.id, 10)

        self.assertFalse(InventoryItem.objects.filter(product_id=self.product_id, warehouse=self.west).exists())
        self.container.alerts.generate_alerts()
        self.assertEqual(StockAlert.objects.filter(alert_type=StockAlert.AlertType.OUT_OF_STOCK).count(), 0)

    def test_transfer_failing_mid_move_removes_new_destination(self):
        source = stock(self.container, self.east, self.product_id, 5)

        with patch.object(self.container.store, 'add_stock', side_effect=InvalidQuantityError("rejected")):
            with self.assertRaises(InvalidQuantityError):
                self.service.transfer(self.product_id, self.east.id, self.west.id, 3)

        source.refresh_from_db()
        self.assertEqual(source.quantity_total, 5)
        self.assertFalse(InventoryItem.objects.filter(product_id=self.product_id, warehouse=self.west).exists())

    def test_failed_transfer_keeps_existing_destination(self):
        stock(self.container, self.east, self.product_id, 3)
        destination = stock(self.container, self.west, self.product_id, 0)

        with self.assertRaises(InsufficientStockError):
            self.service.transfer(self.product_id, self.east.id, self.west.id, 10)

        self.assertTrue(InventoryItem.objects.filter(id=destination.id).exists())

    def test_bulk_update_reports_each_line(self):
        item = stock(self.container, self.east, self.product_id, 10)

        result = self.service.bulk_update([
            {'inventory_item_id': item.id, 'quantity': 5},
            {'inventory_item_id': uuid.uuid4(), 'quantity': 5},
            {'inventory_item_id': item.id, 'quantity': 3, 'movement_type': MovementType.DAMAGED},
        ])

        self.assertEqual(result['success_count'], 1)
        self.assertEqual(result['failure_count'], 2)
        self.assertEqual(result['results'][0]['new_quantity'], 15)
        self.assertEqual(
            [r['error'] for r in result['results'] if not r['success']],
            ['inventory_not_found', 'invalid_quantity']
        )

    def test_backorder_only_when_out_of_stock(self):
        empty = stock(self.container, self.east, self.product_id, 0)
        stocked = stock(self.container, self.west, self.product_id, 50)

        item = self.service.update_item(empty.id, status=StockStatus.BACKORDER)
        self.assertEqual(item.status, StockStatus.BACKORDER)

        with self.assertRaises(InventoryValidationError):
            self.service.update_item(stocked.id, status=StockStatus.BACKORDER)

        self.service.adjust_stock(empty.id, 50, movement_type=MovementType.INBOUND)
        empty.refresh_from_db()
        self.assertEqual(empty.status, StockStatus.IN_STOCK)

    def test_update_item_validates_levels(self):
        item = stock(self.container, self.east, self.product_id, 50)

        with self.assertRaises(InventoryValidationError):
            self.service.update_item(item.id, min_stock_level=500, max_stock_level=100)
        with self.assertRaises(InventoryValidationError):
            self.service.update_item(item.id, quantity_total=5)

        updated = self.service.update_item(item.id, reorder_point=60, location='B02-S1')
        self.assertEqual(updated.status, StockStatus.LOW_STOCK)
        self.assertEqual(updated.location, 'B02-S1')

    def test_delete_item_blocked_by_active_reservation(self):
        item = stock(self.container, self.east, self.product_id, 10)
        reservation = self.container.reservations.reserve(self.product_id, uuid.uuid4(), 2)[0]

        with self.assertRaises(ActiveReservationsError):
            self.service.delete_item(item.id)

        self.container.reservations.release(reservation.id)
        self.service.delete_item(item.id)

        with self.assertRaises(InventoryNotFoundError):
            self.service.get_item(item.id)
        # History outlives the item
        self.assertTrue(StockMovement.objects.filter(inventory_item_id=item.id).exists())

    def test_valuation(self):
        stock(self.container, self.east, quantity=10, cost_price=Decimal('2.50'))
        stock(self.container, self.west, quantity=4, cost_price=Decimal('10.00'))

        report = self.service.valuation()

        self.assertEqual(report['total_items'], 2)
        self.assertEqual(report['total_quantity'], 14)
        self.assertEqual(report['total_value'], Decimal('65.00'))
        self.assertEqual(report['top_products'][0]['value'], Decimal('40.00'))

        east_only = self.service.valuation(warehouse_id=self.east.id)
        self.assertEqual(east_only['total_value'], Decimal('25.00'))

    def test_valuation_groups_by_status_in_the_database(self):
        stock(self.container, self.east, quantity=50, cost_price=Decimal('1.00'))
        stock(self.container, self.east, quantity=4, cost_price=Decimal('2.00'))
        stock(self.container, self.west, quantity=0, cost_price=Decimal('9.00'))

        with self.assertNumQueries(3):
            report = self.service.valuation(top=2)

        self.assertEqual(report['by_status'][StockStatus.IN_STOCK]['value'], Decimal('50.00'))
        self.assertEqual(report['by_status'][StockStatus.LOW_STOCK]['quantity'], 4)
        self.assertEqual(report['by_status'][StockStatus.OUT_OF_STOCK]['items'], 1)
        self.assertEqual(report['average_unit_value'], Decimal('1.07'))
        self.assertEqual([p['value'] for p in report['top_products']], [Decimal('50.00'), Decimal('8.00')])


class WarehouseRegistryTestCase(TestCase):

    def setUp(self):
        self.container = build_test_container()
        self.registry = self.container.warehouses

    def test_duplicate_code_rejected(self):
        self.registry.create('EAST-01', 'East')
        with self.assertRaises(DuplicateWarehouseError):
            self.registry.create('EAST-01', 'East again')

    def test_single_default(self):
        first = self.registry.create('EAST-01', 'East', is_default=True)
        second = self.registry.create('WEST-01', 'West', is_default=True)

        first.refresh_from_db()
        self.assertFalse(first.is_default)
        self.assertEqual(self.registry.default(), second)

        self.registry.update(first.id, is_default=True)
        self.assertEqual(list(Warehouse.objects.filter(is_default=True)), [first])

    def test_summary_and_capacity(self):
        warehouse = self.registry.create('EAST-01', 'East', capacity=100)
        stock(self.container, warehouse, quantity=60, cost_price=Decimal('1.00'))
        stock(self.container, warehouse, quantity=5, reorder_point=10)
        stock(self.container, warehouse, quantity=0)

        summary = self.registry.inventory_summary(warehouse.id)
        capacity = self.registry.capacity_report(warehouse.id)

        self.assertEqual(summary['total_items'], 3)
        self.assertEqual(summary['total_quantity'], 65)
        self.assertEqual(summary['low_stock_count'], 1)
        self.assertEqual(summary['out_of_stock_count'], 1)
        self.assertEqual(len(summary['recent_movements']), 2)
        self.assertEqual(capacity['used'], 65)
        self.assertEqual(capacity['free'], 35)
        self.assertFalse(capacity['near_capacity'])


class AlertGeneratorTestCase(TestCase):
    """Test cases for the low/out-of-stock scan."""

    def setUp(self):
        """Set up test data."""
        self.container = build_test_container()
        self.warehouse = self.container.warehouses.create('EAST-01', 'East')
        self.low = stock(self.container, self.warehouse, quantity=5, reorder_point=10, sku='LOW-1')
        self.out = stock(self.container, self.warehouse, quantity=0, sku='OUT-1')
        self.healthy = stock(self.container, self.warehouse, quantity=50, reorder_point=10)

    def test_scan_creates_one_alert_per_matching_item(self):
        """
        Test: One scan over a low, an empty and a healthy item.

        Given: Items at 5 (reorder point 10), 0 and 50 units
        When: Alerts are generated
        Then: A medium low-stock and a high out-of-stock alert are created
        """
        result = self.container.alerts.generate_alerts()

        self.assertEqual(result['alerts_created'], 2)
        self.assertEqual(result['low_stock_count'], 1)
        self.assertEqual(result['out_of_stock_count'], 1)
        self.assertEqual(result['errors'], [])

        low_alert = StockAlert.objects.get(inventory_item=self.low)
        self.assertEqual(low_alert.severity, StockAlert.Severity.MEDIUM)
        self.assertEqual(low_alert.message, 'Low stock alert: LOW-1 has 5 units (reorder point: 10)')
        out_alert = StockAlert.objects.get(inventory_item=self.out)
        self.assertEqual(out_alert.alert_type, StockAlert.AlertType.OUT_OF_STOCK)
        self.assertEqual(out_alert.severity, StockAlert.Severity.HIGH)

    def test_repeated_scans_accumulate_by_default(self):
        self.container.alerts.generate_alerts()
        self.container.alerts.generate_alerts()

        self.assertEqual(StockAlert.objects.count(), 4)

    def test_deduplicated_scans_skip_unresolved(self):
        container = build_test_container(ALERT_DEDUPLICATE=True)

        container.alerts.generate_alerts()
        second = container.alerts.generate_alerts()
        self.assertEqual(second['alerts_created'], 0)
        # Items still count even when no new alert is written
        self.assertEqual((second['low_stock_count'], second['out_of_stock_count']), (1, 1))

        low_alert = StockAlert.objects.get(inventory_item=self.low)
        container.alerts.mark_resolved(low_alert.id)
        third = container.alerts.generate_alerts()
        self.assertEqual(third['alerts_created'], 1)
        self.assertEqual(third['low_stock_count'], 1)

    def test_scan_pages_through_items(self):
        for _ in range(3):
            stock(self.container, self.warehouse, quantity=1, reorder_point=10)
        container = build_test_container(ALERT_SCAN_BATCH_SIZE=2)

        result = container.alerts.generate_alerts()

        self.assertEqual(result['low_stock_count'], 4)
        self.assertEqual(result['out_of_stock_count'], 1)

    def test_failed_alert_is_reported(self):
        with patch.object(self.container.alert_repository, 'create', side_effect=DatabaseError("locked")):
            with self.assertLogs('inventory.alerts', level='ERROR'):
                result = self.container.alerts.generate_alerts()

        self.assertEqual(result['alerts_created'], 0)
        self.assertEqual(len(result['errors']), 2)
        self.assertEqual((result['low_stock_count'], result['out_of_stock_count']), (1, 1))

    def test_read_resolve_and_purge(self):
        self.container.alerts.generate_alerts()
        alert_ids = list(StockAlert.objects.values_list('id', flat=True))

        self.assertEqual(self.container.alerts.bulk_mark_read(alert_ids), 2)
        self.assertEqual(self.container.alerts.bulk_mark_read(alert_ids), 0)
        self.assertEqual(self.container.alerts.bulk_mark_resolved(alert_ids[:1]), 1)

        StockAlert.objects.filter(id=alert_ids[0]).update(resolved_at=timezone.now() - timedelta(days=120))
        self.assertEqual(self.container.alerts.purge_resolved(90), 1)
        self.assertEqual(StockAlert.objects.count(), 1)

    def test_alert_task_returns_serializable_result(self):
        with patch.object(apps.get_app_config('core'), 'container', self.container):
            result = generate_stock_alerts()

        self.assertEqual(result['alerts_created'], 2)
        self.assertIsInstance(result['generated_at'], str)


class ConcurrentTransferTestCase(TransactionTestCase):
    """Opposite transfers lock the same two items from each end."""

    def test_opposite_transfers_do_not_deadlock(self):
        """
        Test: East -> West and West -> East transfers running at the same time.

        Given: 50 units of a product at East and at West
        When: 4 threads each run 10 transfers of 1 unit, half of them in each direction
        Then: All finish, totals are conserved and both ledgers replay
        """
        container = build_test_container()
        east = container.warehouses.create('EAST-01', 'East')
        west = container.warehouses.create('WEST-01', 'West')
        product_id = uuid.uuid4()
        east_item = stock(container, east, product_id, 50)
        west_item = stock(container, west, product_id, 50)

        errors = []
        errors_lock = threading.Lock()

        def shuttle(from_warehouse, to_warehouse):
            try:
                for _ in range(10):
                    container.inventory.transfer(product_id, from_warehouse.id, to_warehouse.id, 1)
            except Exception as e:
                with errors_lock:
                    errors.append(e)
            finally:
                connection.close()

        threads = [
            threading.Thread(target=shuttle, args=pair)
            for pair in [(east, west), (west, east)] * 2
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=60)

        self.assertFalse(any(thread.is_alive() for thread in threads))
        self.assertEqual(errors, [])

        east_item.refresh_from_db()
        west_item.refresh_from_db()
        self.assertEqual(east_item.quantity_total, 50)
        self.assertEqual(west_item.quantity_total, 50)
        self.assertEqual(StockMovement.objects.filter(movement_type=MovementType.TRANSFER).count(), 80)
        self.assertTrue(container.ledger.is_consistent(east_item))
        self.assertTrue(container.ledger.is_consistent(west_item))


class CollaboratorClientTestCase(SimpleTestCase):
    """Test cases for the product and order service clients."""

    def http_client(self, handler):
        return httpx.Client(transport=httpx.MockTransport(handler))

    def test_catalog_lookup(self):
        product_id = uuid.uuid4()
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(404 if 'variants' in request.url.path else 200, json={})

        catalog = HttpProductCatalog('http://catalog/', client=self.http_client(handler))

        self.assertTrue(catalog.exists(product_id))
        self.assertFalse(catalog.exists(product_id, variant_id=uuid.uuid4()))
        self.assertEqual(paths[0], f'/api/v1/products/{product_id}')

    def test_catalog_server_error_propagates(self):
        catalog = HttpProductCatalog(
            'http://catalog', client=self.http_client(lambda request: httpx.Response(503))
        )

        with self.assertRaises(httpx.HTTPStatusError):
            catalog.exists(uuid.uuid4())

    def test_order_system_requests(self):
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, json={})

        orders = HttpOrderSystem('http://orders', client=self.http_client(handler))
        orders.notify_allocation('order-1', [{'quantity': 2}])
        orders.update_stock_status('order-1', 'reserved')

        self.assertEqual([r.method for r in requests], ['POST', 'PUT'])
        self.assertEqual(requests[0].url.path, '/api/v1/orders/order-1/allocation')
        self.assertEqual(
            json.loads(requests[0].content),
            {'order_id': 'order-1', 'allocations': [{'quantity': 2}]}
        )
        self.assertEqual(json.loads(requests[1].content)['status'], 'reserved')

    def test_queued_order_system_defers_to_tasks(self):
        order_id = uuid.uuid4()

        with patch('inventory.tasks.notify_order_allocation.delay') as notify, \
                patch('inventory.tasks.update_order_stock_status.delay') as update:
            QueuedOrderSystem().notify_allocation(order_id, [{'quantity': 1}])
            QueuedOrderSystem().update_stock_status(order_id, 'released')

        notify.assert_called_once_with(str(order_id), [{'quantity': 1}])
        update.assert_called_once_with(str(order_id), 'released', {})

    def test_notification_task_uses_http_client(self):
        client = MagicMock()

        with patch('inventory.tasks._order_system', return_value=client):
            result = notify_order_allocation('order-1', [{'quantity': 1}])

        client.notify_allocation.assert_called_once_with('order-1', [{'quantity': 1}])
        client.close.assert_called_once_with()
        self.assertEqual(result['allocations'], 1)


class InventoryAPITestCase(TestCase):
    """Test cases for the inventory endpoints."""

    def setUp(self):
        """Set up test data."""
        self.client = APIClient()
        self.container = build_test_container()
        core = apps.get_app_config('core')
        for name, value in (('container', self.container), ('rate_limiter', RateLimiter(None))):
            patcher = patch.object(core, name, value)
            patcher.start()
            self.addCleanup(patcher.stop)

        self.warehouse = self.container.warehouses.create('EAST-01', 'East', priority=1)
        self.product_id = uuid.uuid4()

    def create_item(self, **overrides):
        payload = {
            'product_id': str(self.product_id),
            'warehouse_id': str(self.warehouse.id),
            'sku': 'WH-00001',
            'initial_quantity': 100,
            'reorder_point': 10,
            'cost_price': '12.50',
        }
        payload.update(overrides)
        return self.client.post(reverse('inventory:item-list'), payload, format='json')

    def test_create_and_fetch_item(self):
        response = self.create_item()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['quantity_available'], 100)
        self.assertEqual(response.data['status'], StockStatus.IN_STOCK)

        detail = self.client.get(reverse('inventory:item-detail', args=[response.data['id']]))
        self.assertEqual(detail.status_code, status.HTTP_200_OK)
        self.assertEqual(detail.data['sku'], 'WH-00001')

    def test_duplicate_item_is_conflict(self):
        self.create_item()

        response = self.create_item()

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'duplicate_item')

    def test_unknown_item_is_not_found(self):
        response = self.client.get(reverse('inventory:item-detail', args=[uuid.uuid4()]))

        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'inventory_not_found')

    def test_invalid_body_is_validation_error(self):
        response = self.client.post(reverse('inventory:adjust-stock'), {'quantity': 0}, format='json')

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'validation_error')
        self.assertIn('inventory_item_id', response.data['detail'])

    def test_adjust_stock(self):
        item_id = self.create_item().data['id']

        response = self.client.post(reverse('inventory:adjust-stock'), {
            'inventory_item_id': item_id,
            'quantity': -95,
            'movement_type': 'damaged',
            'reason': 'Forklift accident',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['new_quantity'], 5)

        listing = self.client.get(reverse('inventory:item-list'), {'low_stock': 'true'})
        self.assertEqual(listing.data['count'], 1)

    def test_adjust_more_than_available_is_conflict(self):
        item_id = self.create_item(initial_quantity=3).data['id']

        response = self.client.post(reverse('inventory:adjust-stock'), {
            'inventory_item_id': item_id,
            'quantity': -4,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'insufficient_stock')

    def test_check_availability(self):
        self.create_item(initial_quantity=7)

        response = self.client.post(reverse('inventory:check-availability'), {
            'product_id': str(self.product_id),
            'quantity': 5,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.data['is_available'])
        self.assertEqual(response.data['total_available'], 7)
        self.assertEqual(response.data['allocation_suggestion'][0]['quantity'], 5)

    def test_transfer(self):
        self.create_item(initial_quantity=10)
        west = self.container.warehouses.create('WEST-01', 'West', priority=2)

        response = self.client.post(reverse('inventory:transfer-stock'), {
            'product_id': str(self.product_id),
            'from_warehouse_id': str(self.warehouse.id),
            'to_warehouse_id': str(west.id),
            'quantity': 4,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual([m['quantity'] for m in response.data['movements']], [-4, 4])

    def test_movement_list_is_paginated(self):
        self.create_item()

        response = self.client.get(reverse('inventory:movement-list'), {'limit': 1})

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['reference_type'], 'initial_stock')

    def test_generate_and_list_alerts(self):
        self.create_item(initial_quantity=0)

        generated = self.client.post(reverse('inventory:alert-generate'))
        listing = self.client.get(reverse('inventory:alert-list'))

        self.assertEqual(generated.data['out_of_stock_count'], 1)
        self.assertEqual(listing.data['count'], 1)

        alert_id = listing.data['results'][0]['id']
        resolved = self.client.post(reverse('inventory:alert-resolve', args=[alert_id]))
        self.assertTrue(resolved.data['is_resolved'])

    def test_warehouse_endpoints(self):
        created = self.client.post(reverse('inventory:warehouse-list'), {
            'code': 'WEST-01', 'name': 'West', 'priority': 2,
        }, format='json')
        self.assertEqual(created.status_code, status.HTTP_201_CREATED)

        duplicate = self.client.post(reverse('inventory:warehouse-list'), {
            'code': 'WEST-01', 'name': 'West',
        }, format='json')
        self.assertEqual(duplicate.status_code, status.HTTP_409_CONFLICT)

        detail = self.client.get(reverse('inventory:warehouse-detail', args=[created.data['id']]))
        self.assertEqual(detail.data['capacity_report']['used'], 0)

    def test_unexpected_error_is_logged(self):
        with patch.object(self.container.inventory, 'get_item', side_effect=RuntimeError("boom")):
            with self.assertLogs('inventory.views', level='ERROR'):
                response = self.client.get(reverse('inventory:item-detail', args=[uuid.uuid4()]))

        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)
        self.assertEqual(response.data['error'], 'server_error')

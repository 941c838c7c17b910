"""
Inventory Service Layer - the operation surface used by views and tasks.

Every quantity change runs inside InventoryItemStore.locked(), so the item
lock is held and the row re-read with select_for_update() before any check
is made against it.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional, Protocol

from django.core.exceptions import ImproperlyConfigured

from .alerts import AlertGenerator
from .allocation import AllocationPlanner
from .exceptions import (
    ActiveReservationsError,
    InsufficientStockError,
    InventoryError,
    InventoryNotFoundError,
    InventoryValidationError,
    InvalidQuantityError,
    ProductNotFoundError,
)
from .integrations import ProductCatalog
from .ledger import MovementLedger
from .models import MovementType, StockStatus
from .repositories import InventoryItemRepository, ItemFilters, MovementFilters
from .stock import InventoryItemStore
from .warehouses import WarehouseRegistry

logger = logging.getLogger(__name__)

# Movement types accepted by adjust_stock and the sign their quantity must have
# (None: either sign).
ADJUSTMENT_SIGNS = {
    MovementType.INBOUND: 1,
    MovementType.RETURNED: 1,
    MovementType.OUTBOUND: -1,
    MovementType.DAMAGED: -1,
    MovementType.ADJUSTMENT: None,
}

UPDATABLE_ITEM_FIELDS = {
    'min_stock_level', 'max_stock_level', 'reorder_point', 'location',
    'barcode', 'sku', 'cost_price', 'status',
}


class ActiveReservationLookup(Protocol):
    def has_active(self, item_id) -> bool: ...


class InventoryService:
    """
    Facade over the stock components.

    All collaborators are passed in; see core.container for the wiring.
    """

    def __init__(
        self,
        items: Optional[InventoryItemRepository] = None,
        store: Optional[InventoryItemStore] = None,
        ledger: Optional[MovementLedger] = None,
        planner: Optional[AllocationPlanner] = None,
        warehouses: Optional[WarehouseRegistry] = None,
        alerts: Optional[AlertGenerator] = None,
        catalog: Optional[ProductCatalog] = None,
        reservations: Optional[ActiveReservationLookup] = None,
    ):
        for name, value in (
            ('items', items), ('store', store), ('ledger', ledger),
            ('planner', planner), ('warehouses', warehouses), ('alerts', alerts),
            ('catalog', catalog), ('reservations', reservations),
        ):
            if value is None:
                raise ImproperlyConfigured(f"InventoryService requires {name}")
        self.items = items
        self.store = store
        self.ledger = ledger
        self.planner = planner
        self.warehouses = warehouses
        self.alerts = alerts
        self.catalog = catalog
        self.reservations = reservations

    # =========================================================================
    # Items
    # =========================================================================

    def create_item(self, product_id, warehouse_id, sku, variant_id=None, **options):
        """
        Stock a product at a warehouse for the first time.

        Raises:
            ProductNotFoundError: If the catalog does not know the product
            WarehouseNotFoundError: If warehouse_id is unknown
            DuplicateItemError: If the item already exists
        """
        if not self.catalog.exists(product_id, variant_id):
            raise ProductNotFoundError(
                f"product {product_id} not found in catalog",
                product_id=str(product_id),
            )
        warehouse = self.warehouses.get(warehouse_id)
        return self.store.create(product_id, warehouse, sku, variant_id=variant_id, **options)

    def get_item(self, item_id):
        return self.items.get(item_id)

    def get_item_by_sku(self, sku):
        return self.items.get_by_sku(sku)

    def get_item_by_barcode(self, barcode):
        return self.items.get_by_barcode(barcode)

    def find_item(self, product_id, warehouse_id, variant_id=None):
        item = self.items.find(product_id, warehouse_id, variant_id)
        if item is None:
            raise InventoryNotFoundError(
                f"no inventory for product {product_id} at warehouse {warehouse_id}",
                product_id=str(product_id),
                warehouse_id=str(warehouse_id),
            )
        return item

    def update_item(self, item_id, **changes):
        """
        Update levels, location, identifiers or cost of an item.

        status may only be set to backorder, and only while the item is out
        of stock; any other value re-derives the status.
        """
        unknown = set(changes) - UPDATABLE_ITEM_FIELDS
        if unknown:
            raise InventoryValidationError(f"unknown inventory fields: {sorted(unknown)}")

        requested_status = changes.pop('status', None)
        if requested_status is not None and requested_status not in StockStatus.values:
            raise InventoryValidationError(f"unknown status {requested_status}")

        item = self.items.get(item_id)
        with self.store.locked(item.id) as locked:
            item = locked[item.id]
            for name, value in changes.items():
                setattr(item, name, value)

            if item.min_stock_level > item.max_stock_level:
                raise InventoryValidationError("min_stock_level cannot exceed max_stock_level")

            if requested_status == StockStatus.BACKORDER:
                if not item.is_out_of_stock:
                    raise InventoryValidationError("only out-of-stock items can be put on backorder")
                item.status = StockStatus.BACKORDER
            else:
                if requested_status is not None:
                    item.status = item.derive_status()
                item.refresh_status()

            self.items.save(item, list(changes) + ['status'])

        logger.info(f"Updated inventory item {item.id}: {sorted(changes)}")
        return item

    def delete_item(self, item_id):
        item = self.items.get(item_id)
        if self.reservations.has_active(item.id):
            raise ActiveReservationsError(item_id=str(item.id))
        with self.store.locked(item.id) as locked:
            if self.reservations.has_active(item.id):
                raise ActiveReservationsError(item_id=str(item.id))
            self.items.delete(locked[item.id])
        logger.info(f"Deleted inventory item {item.id} ({item.sku})")

    def search(self, filters: ItemFilters, limit=50, offset=0):
        return self.items.search(filters, limit=limit, offset=offset)

    def low_stock_items(self, warehouse_id=None, limit=50, offset=0):
        return self.items.low_stock(warehouse_id=warehouse_id, limit=limit, offset=offset)

    def out_of_stock_items(self, warehouse_id=None, limit=50, offset=0):
        return self.items.out_of_stock(warehouse_id=warehouse_id, limit=limit, offset=offset)

    def ledger_check(self, item_id):
        item = self.items.get(item_id)
        ledger_total = self.ledger.replay(item)
        return {
            'inventory_item_id': item.id,
            'quantity_total': item.quantity_total,
            'ledger_total': ledger_total,
            'consistent': ledger_total == item.quantity_total,
        }

    # =========================================================================
    # Availability
    # =========================================================================

    def check_availability(self, product_id, quantity, variant_id=None, warehouse_id=None):
        return self.planner.suggest_allocation(
            product_id, quantity, variant_id=variant_id, warehouse_id=warehouse_id
        )

    # =========================================================================
    # Stock changes
    # =========================================================================

    def adjust_stock(
        self,
        item_id,
        quantity: int,
        movement_type=MovementType.ADJUSTMENT,
        reason: str = '',
        unit_cost=None,
        notes: str = '',
        reference_type: str = '',
        reference_id=None,
        user_id=None,
        user_name: str = '',
    ):
        """
        Apply a signed quantity change and record it.

        Positive quantities add stock; negative ones remove unreserved stock.

        Returns:
            The recorded StockMovement

        Raises:
            InventoryNotFoundError: If the item does not exist
            InvalidQuantityError: If quantity is zero or has the wrong sign
            InsufficientStockError: If removing more than is available
        """
        if movement_type not in ADJUSTMENT_SIGNS:
            raise InventoryValidationError(f"movement type {movement_type} cannot be used for adjustments")
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity == 0:
            raise InvalidQuantityError(f"adjustment quantity must be a non-zero integer, got {quantity!r}")
        sign = ADJUSTMENT_SIGNS[movement_type]
        if sign is not None and quantity * sign < 0:
            raise InvalidQuantityError(
                f"{movement_type} adjustments must be {'positive' if sign > 0 else 'negative'}"
            )

        item = self.items.get(item_id)
        with self.store.locked(item.id) as locked:
            item = locked[item.id]
            previous = item.quantity_total
            if quantity > 0:
                self.store.add_stock(item, quantity, unit_cost)
            else:
                self.store.remove_stock(item, -quantity)

            movement = self.ledger.record(
                item,
                movement_type,
                quantity,
                previous_quantity=previous,
                new_quantity=item.quantity_total,
                reference_type=reference_type,
                reference_id=reference_id,
                reason=reason,
                notes=notes,
                unit_cost=unit_cost if unit_cost is not None else item.cost_price,
                user_id=user_id,
                user_name=user_name,
            )

        logger.info(
            f"Adjusted item {item.id} by {quantity:+d} ({movement_type}): "
            f"{previous} -> {item.quantity_total}"
        )
        return movement

    def transfer(
        self,
        product_id,
        from_warehouse_id,
        to_warehouse_id,
        quantity: int,
        variant_id=None,
        reason: str = '',
        notes: str = '',
        user_id=None,
        user_name: str = '',
    ):
        """
        Move unreserved stock of a product between warehouses.

        The destination item is created on first transfer, copying levels,
        SKU and cost from the source. A transfer that fails leaves no new
        destination item behind.

        Returns:
            [outbound movement, inbound movement]
        """
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
            raise InvalidQuantityError(f"transfer quantity must be a positive integer, got {quantity!r}")
        if str(from_warehouse_id) == str(to_warehouse_id):
            raise InventoryValidationError("source and destination warehouse must differ")

        source = self.find_item(product_id, from_warehouse_id, variant_id)
        destination_warehouse = self.warehouses.get(to_warehouse_id)
        if self.items.find(product_id, destination_warehouse.id, variant_id) is None:
            with self.store.locked(source.id) as locked:
                if not locked[source.id].is_available(quantity):
                    raise InsufficientStockError(
                        quantity, locked[source.id].quantity_available, item_id=str(source.id)
                    )

        destination, created = self.items.get_or_create(
            product_id,
            variant_id,
            destination_warehouse.id,
            defaults={
                'sku': source.sku,
                'min_stock_level': source.min_stock_level,
                'max_stock_level': source.max_stock_level,
                'reorder_point': source.reorder_point,
                'cost_price': source.cost_price,
                'status': StockStatus.OUT_OF_STOCK,
            },
        )
        if created:
            logger.info(f"Created inventory item {destination.id} at {destination_warehouse.code} for transfer")

        try:
            movements = self._move(source, destination, quantity, reason, notes, user_id, user_name)
        except InventoryError:
            if created:
                self._discard_if_empty(destination.id)
            raise

        logger.info(
            f"Transferred {quantity} of product {product_id} "
            f"from {from_warehouse_id} to {to_warehouse_id}"
        )
        return movements

    def _discard_if_empty(self, item_id):
        with self.store.locked(item_id) as locked:
            item = locked[item_id]
            if item.quantity_total or item.quantity_reserved or self.reservations.has_active(item.id):
                return
            self.items.delete(item)
        logger.info(f"Removed empty inventory item {item_id} left by a failed transfer")

    def _move(self, source, destination, quantity, reason, notes, user_id, user_name):
        with self.store.locked(source.id, destination.id) as locked:
            source = locked[source.id]
            destination = locked[destination.id]

            source_previous = source.quantity_total
            destination_previous = destination.quantity_total
            self.store.remove_stock(source, quantity)
            self.store.add_stock(destination, quantity)

            outbound = self.ledger.record(
                source,
                MovementType.TRANSFER,
                -quantity,
                previous_quantity=source_previous,
                new_quantity=source.quantity_total,
                reference_type='transfer',
                reference_id=destination.id,
                reason=reason,
                notes=notes,
                unit_cost=source.cost_price,
                user_id=user_id,
                user_name=user_name,
            )
            inbound = self.ledger.record(
                destination,
                MovementType.TRANSFER,
                quantity,
                previous_quantity=destination_previous,
                new_quantity=destination.quantity_total,
                reference_type='transfer',
                reference_id=source.id,
                reason=reason,
                notes=notes,
                unit_cost=source.cost_price,
                user_id=user_id,
                user_name=user_name,
            )
        return [outbound, inbound]

    def bulk_update(self, updates: List[Dict], user_id=None, user_name: str = ''):
        """
        Apply several adjustments, each independently.

        Returns:
            Dict with per-line results and success/failure counts
        """
        results = []
        for index, update in enumerate(updates):
            item_id = update.get('inventory_item_id')
            try:
                movement = self.adjust_stock(
                    item_id,
                    update.get('quantity'),
                    movement_type=update.get('movement_type', MovementType.ADJUSTMENT),
                    reason=update.get('reason', ''),
                    unit_cost=update.get('unit_cost'),
                    notes=update.get('notes', ''),
                    user_id=user_id,
                    user_name=user_name,
                )
            except InventoryError as e:
                logger.warning(f"Bulk update line {index} for item {item_id} failed: {e.code}")
                results.append({
                    'index': index,
                    'inventory_item_id': item_id,
                    'success': False,
                    'error': e.code,
                    'message': e.message,
                })
                continue
            results.append({
                'index': index,
                'inventory_item_id': item_id,
                'success': True,
                'movement_id': movement.id,
                'new_quantity': movement.new_quantity,
            })

        success_count = sum(1 for r in results if r['success'])
        return {
            'results': results,
            'success_count': success_count,
            'failure_count': len(results) - success_count,
        }

    # =========================================================================
    # Reports
    # =========================================================================

    def movement_history(self, filters: MovementFilters, limit=50, offset=0):
        return self.ledger.history(filters, limit=limit, offset=offset)

    def movement_summary(self, start_date=None, end_date=None, warehouse_id=None, top=10):
        summary = self.ledger.summary(start_date, end_date, warehouse_id=warehouse_id)
        summary['top_products'] = self.ledger.top_moved(summary['start_date'], summary['end_date'], limit=top)
        return summary

    def valuation(self, warehouse_id=None, top=10):
        """Stock value at cost, overall and by status."""
        totals = self.items.stock_totals(warehouse_id=warehouse_id)
        total_value = totals['value'] or Decimal('0.00')
        total_quantity = totals['quantity'] or 0
        average = (total_value / total_quantity).quantize(Decimal('0.01')) if total_quantity else Decimal('0.00')

        return {
            'warehouse_id': warehouse_id,
            'total_items': totals['items'],
            'total_quantity': total_quantity,
            'total_value': total_value,
            'average_unit_value': average,
            'by_status': {
                row['status']: {
                    'items': row['items'],
                    'quantity': row['quantity'] or 0,
                    'value': row['value'] or Decimal('0.00'),
                }
                for row in self.items.totals_by_status(warehouse_id=warehouse_id)
            },
            'top_products': [
                {
                    'inventory_item_id': item.id,
                    'product_id': item.product_id,
                    'variant_id': item.variant_id,
                    'sku': item.sku,
                    'quantity_total': item.quantity_total,
                    'cost_price': item.cost_price,
                    'value': item.stock_value,
                }
                for item in self.items.top_items(warehouse_id=warehouse_id, limit=top)
            ],
        }

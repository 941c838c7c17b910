"""
Warehouse Registry - fulfillment locations and their reports.
"""
import logging
from decimal import Decimal
from typing import Optional

from django.core.exceptions import ImproperlyConfigured
from django.db import IntegrityError, transaction

from .exceptions import DuplicateWarehouseError, InventoryValidationError
from .ledger import MovementLedger
from .repositories import (
    InventoryItemRepository,
    MovementFilters,
    WarehouseRepository,
)

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = {
    'name', 'description', 'address_line_1', 'address_line_2', 'city', 'state',
    'postal_code', 'country', 'is_active', 'is_default', 'priority', 'capacity',
    'manager_name', 'phone', 'email',
}


class WarehouseRegistry:
    def __init__(
        self,
        warehouses: Optional[WarehouseRepository] = None,
        items: Optional[InventoryItemRepository] = None,
        ledger: Optional[MovementLedger] = None,
    ):
        if warehouses is None:
            raise ImproperlyConfigured("WarehouseRegistry requires a warehouse repository")
        if items is None:
            raise ImproperlyConfigured("WarehouseRegistry requires an item repository")
        if ledger is None:
            raise ImproperlyConfigured("WarehouseRegistry requires a movement ledger")
        self.warehouses = warehouses
        self.items = items
        self.ledger = ledger

    def create(self, code: str, name: str, **fields):
        """
        Register a warehouse. Marking it default clears the flag elsewhere.

        Raises:
            DuplicateWarehouseError: If code is already taken
        """
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InventoryValidationError(f"unknown warehouse fields: {sorted(unknown)}")
        if self.warehouses.get_by_code(code) is not None:
            raise DuplicateWarehouseError(f"warehouse code {code} already in use", code=code)

        try:
            with transaction.atomic():
                warehouse = self.warehouses.create(code=code, name=name, **fields)
                if warehouse.is_default:
                    self.warehouses.clear_default(keep_id=warehouse.id)
        except IntegrityError:
            raise DuplicateWarehouseError(f"warehouse code {code} already in use", code=code)

        logger.info(f"Created warehouse {warehouse.code} (priority {warehouse.priority})")
        return warehouse

    def get(self, warehouse_id):
        return self.warehouses.get(warehouse_id)

    def get_by_code(self, code: str):
        return self.warehouses.get_by_code(code)

    def update(self, warehouse_id, **changes):
        unknown = set(changes) - UPDATABLE_FIELDS
        if unknown:
            raise InventoryValidationError(f"unknown warehouse fields: {sorted(unknown)}")

        with transaction.atomic():
            warehouse = self.warehouses.get(warehouse_id)
            for name, value in changes.items():
                setattr(warehouse, name, value)
            self.warehouses.save(warehouse, list(changes))
            if changes.get('is_default'):
                self.warehouses.clear_default(keep_id=warehouse.id)

        logger.info(f"Updated warehouse {warehouse.code}: {sorted(changes)}")
        return warehouse

    def list(self, active_only: bool = False):
        return self.warehouses.all(active_only=active_only)

    def by_priority(self):
        return self.warehouses.by_priority()

    def default(self):
        return self.warehouses.default()

    def capacity_report(self, warehouse_id):
        warehouse = self.warehouses.get(warehouse_id)
        used = warehouse.capacity_used
        return {
            'warehouse_id': warehouse.id,
            'capacity': warehouse.capacity,
            'used': used,
            'free': max(0, warehouse.capacity - used),
            'utilization': round(warehouse.capacity_utilization, 2),
            'near_capacity': warehouse.is_near_capacity(),
        }

    def inventory_summary(self, warehouse_id, top=10, recent=10):
        """Item counts, stock value and recent activity for one warehouse."""
        warehouse = self.warehouses.get(warehouse_id)
        totals = self.items.stock_totals(warehouse_id=warehouse.id)
        movements, _ = self.ledger.history(MovementFilters(warehouse_id=warehouse.id), limit=recent)

        return {
            'warehouse': warehouse,
            'total_items': totals['items'],
            'total_quantity': totals['quantity'] or 0,
            'total_reserved': totals['reserved'] or 0,
            'total_value': totals['value'] or Decimal('0.00'),
            'low_stock_count': totals['low_stock'],
            'out_of_stock_count': totals['out_of_stock'],
            'status_breakdown': {
                row['status']: row['items']
                for row in self.items.totals_by_status(warehouse_id=warehouse.id)
            },
            'top_products': [
                {
                    'inventory_item_id': item.id,
                    'product_id': item.product_id,
                    'variant_id': item.variant_id,
                    'sku': item.sku,
                    'quantity_total': item.quantity_total,
                }
                for item in self.items.top_items(warehouse_id=warehouse.id, by='quantity_total', limit=top)
            ],
            'recent_movements': movements,
        }

"""
Allocation Planner - splits a requested quantity across warehouses.

First-fit greedy: warehouses are ranked by priority (lower first), ties
broken by larger available quantity, and each takes as much of the
remainder as it can.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from django.core.exceptions import ImproperlyConfigured

from .models import validate_quantity
from .repositories import InventoryItemRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WarehouseStock:
    warehouse_id: UUID
    warehouse_name: str
    warehouse_code: str
    inventory_item_id: UUID
    available: int
    reserved: int
    total: int
    location: str = ''


@dataclass(frozen=True)
class Allocation:
    warehouse_id: UUID
    warehouse_name: str
    inventory_item_id: UUID
    quantity: int


@dataclass(frozen=True)
class AllocationPlan:
    product_id: UUID
    variant_id: Optional[UUID]
    requested_quantity: int
    total_available: int
    total_reserved: int
    is_available: bool
    per_warehouse: List[WarehouseStock] = field(default_factory=list)
    allocations: List[Allocation] = field(default_factory=list)

    @property
    def allocated_quantity(self) -> int:
        return sum(a.quantity for a in self.allocations)


class AllocationPlanner:
    def __init__(self, items: Optional[InventoryItemRepository] = None):
        if items is None:
            raise ImproperlyConfigured("AllocationPlanner requires an item repository")
        self.items = items

    def suggest_allocation(self, product_id, quantity: int, variant_id=None, warehouse_id=None) -> AllocationPlan:
        """
        Rank warehouses holding the product and allocate quantity greedily.

        Only active warehouses are considered. Warehouses with nothing
        available get no allocation entry.
        """
        validate_quantity(quantity)

        candidates = self.items.for_product(product_id, variant_id=variant_id, warehouse_id=warehouse_id)
        # Priority ascending, then most available first.
        candidates = sorted(
            candidates,
            key=lambda item: (item.warehouse.priority, -item.quantity_available, item.warehouse.code)
        )

        per_warehouse = []
        allocations = []
        remaining = quantity
        for item in candidates:
            per_warehouse.append(WarehouseStock(
                warehouse_id=item.warehouse_id,
                warehouse_name=item.warehouse.name,
                warehouse_code=item.warehouse.code,
                inventory_item_id=item.id,
                available=item.quantity_available,
                reserved=item.quantity_reserved,
                total=item.quantity_total,
                location=item.location,
            ))
            if remaining > 0 and item.quantity_available > 0:
                take = min(remaining, item.quantity_available)
                allocations.append(Allocation(
                    warehouse_id=item.warehouse_id,
                    warehouse_name=item.warehouse.name,
                    inventory_item_id=item.id,
                    quantity=take,
                ))
                remaining -= take

        plan = AllocationPlan(
            product_id=product_id,
            variant_id=variant_id,
            requested_quantity=quantity,
            total_available=sum(s.available for s in per_warehouse),
            total_reserved=sum(s.reserved for s in per_warehouse),
            is_available=remaining == 0,
            per_warehouse=per_warehouse,
            allocations=allocations,
        )
        logger.debug(
            f"Allocation for product {product_id}: requested {quantity}, "
            f"allocated {plan.allocated_quantity} across {len(allocations)} warehouse(s)"
        )
        return plan

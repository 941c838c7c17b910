"""
Movement Ledger - append-only record of every quantity change.

The ledger never rejects a write on business grounds; callers record a
movement in the same transaction as the quantity change it describes.
"""
import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from django.core.exceptions import ImproperlyConfigured
from django.utils import timezone

from .repositories import MovementFilters, StockMovementRepository

logger = logging.getLogger(__name__)


class MovementLedger:
    """Writer and query surface over StockMovement rows."""

    def __init__(self, movements: Optional[StockMovementRepository] = None):
        if movements is None:
            raise ImproperlyConfigured("MovementLedger requires a movement repository")
        self.movements = movements

    def record(
        self,
        item,
        movement_type,
        quantity: int,
        previous_quantity: int,
        new_quantity: int,
        reference_type: str = '',
        reference_id=None,
        reason: str = '',
        notes: str = '',
        unit_cost=None,
        user_id=None,
        user_name: str = '',
    ):
        """
        Append one movement for item.

        Args:
            item: InventoryItem the movement belongs to
            movement_type: one of MovementType
            quantity: signed quantity moved
            previous_quantity: quantity_total before the change
            new_quantity: quantity_total after the change
            unit_cost: cost per unit; total_cost is |quantity| * unit_cost

        Returns:
            The stored StockMovement
        """
        unit_cost = Decimal(unit_cost) if unit_cost is not None else Decimal('0.00')
        movement = self.movements.add(
            inventory_item_id=item.id,
            movement_type=movement_type,
            quantity=quantity,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            reason=reason,
            notes=notes,
            unit_cost=unit_cost,
            total_cost=abs(quantity) * unit_cost,
            user_id=user_id,
            user_name=user_name,
        )
        logger.debug(
            f"Recorded {movement_type} {quantity:+d} for item {item.id} "
            f"({previous_quantity} -> {new_quantity})"
        )
        return movement

    # =========================================================================
    # Queries
    # =========================================================================

    def for_item(self, item_id, limit=50, offset=0):
        return self.movements.for_item(item_id, limit=limit, offset=offset)

    def by_type(self, movement_type, start_date, end_date, limit=50, offset=0):
        return self.movements.by_type(movement_type, start_date, end_date, limit=limit, offset=offset)

    def by_reference(self, reference_type, reference_id):
        return self.movements.by_reference(reference_type, reference_id)

    def by_date_range(self, start_date, end_date, limit=50, offset=0):
        return self.movements.by_date_range(start_date, end_date, limit=limit, offset=offset)

    def history(self, filters: MovementFilters, limit=50, offset=0):
        return self.movements.history(filters, limit=limit, offset=offset)

    def replay(self, item) -> int:
        """Fold the ledger of item into the quantity_total it implies."""
        return self.movements.net_change(item.id)

    def is_consistent(self, item) -> bool:
        return self.replay(item) == item.quantity_total

    def summary(self, start_date=None, end_date=None, warehouse_id=None):
        """
        Aggregate movements in a date range (default: the last 30 days).

        Inbound and outbound quantities count changes to quantity_total;
        reserved/released rows only show up in the per-type counts.
        """
        end_date = end_date or timezone.now()
        start_date = start_date or end_date - timedelta(days=30)

        totals = self.movements.window_totals(start_date, end_date, warehouse_id=warehouse_id)
        inbound = totals['inbound'] or 0
        outbound = totals['outbound'] or 0

        return {
            'start_date': start_date,
            'end_date': end_date,
            'total_movements': totals['movements'],
            'total_inbound': inbound,
            'total_outbound': outbound,
            'net_movement': inbound - outbound,
            'movements_by_type': self.movements.counts_by_type(start_date, end_date, warehouse_id=warehouse_id),
            'daily': [
                {
                    'date': row['day'].isoformat(),
                    'inbound': row['inbound'] or 0,
                    'outbound': row['outbound'] or 0,
                }
                for row in self.movements.daily_flow(start_date, end_date, warehouse_id=warehouse_id)
            ],
            'warehouses': [
                {
                    'warehouse_id': row['inventory_item__warehouse_id'],
                    'warehouse_name': row['inventory_item__warehouse__name'],
                    'movements': row['movements'],
                    'inbound': row['inbound'] or 0,
                    'outbound': row['outbound'] or 0,
                }
                for row in self.movements.warehouse_flow(start_date, end_date, warehouse_id=warehouse_id)
            ],
        }

    def top_moved(self, start_date=None, end_date=None, limit=10):
        """Products with the largest absolute change in quantity_total."""
        end_date = end_date or timezone.now()
        start_date = start_date or end_date - timedelta(days=30)

        return [
            {
                'product_id': row['inventory_item__product_id'],
                'variant_id': row['inventory_item__variant_id'],
                'sku': row['sku'],
                'quantity_moved': row['quantity_moved'],
                'movements': row['movements'],
            }
            for row in self.movements.product_flow(start_date, end_date, limit=limit)
        ]

    def purge(self, older_than_days: int) -> int:
        cutoff = timezone.now() - timedelta(days=older_than_days)
        deleted = self.movements.purge(cutoff)
        logger.info(f"Purged {deleted} stock movements older than {cutoff:%Y-%m-%d}")
        return deleted

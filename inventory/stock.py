"""
Inventory Item Store - per-(product, variant, warehouse) quantity records.

Every quantity change goes through locked():

    with store.locked(item_id) as items:
        item = store.reserve(items[item_id], 5)
        ledger.record(...)

locked() takes the in-process item locks first, then opens the transaction
and re-reads the rows with select_for_update(). The mutators below assume
the caller is inside that block.
"""
import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Optional

from django.core.exceptions import ImproperlyConfigured
from django.db import DatabaseError, IntegrityError, transaction

from core.locks import ItemLockRegistry

from .exceptions import DuplicateItemError, InvalidQuantityError
from .ledger import MovementLedger
from .models import MovementType
from .repositories import InventoryItemRepository

logger = logging.getLogger(__name__)

QUANTITY_FIELDS = ['quantity_available', 'quantity_reserved', 'quantity_total', 'status']


class InventoryItemStore:
    """
    Owns the quantity triple of every InventoryItem.

    available + reserved == total is checked after every mutation; the
    database check constraint backs it up.
    """

    def __init__(
        self,
        items: Optional[InventoryItemRepository] = None,
        ledger: Optional[MovementLedger] = None,
        locks: Optional[ItemLockRegistry] = None,
    ):
        if items is None:
            raise ImproperlyConfigured("InventoryItemStore requires an item repository")
        if ledger is None:
            raise ImproperlyConfigured("InventoryItemStore requires a movement ledger")
        if locks is None:
            raise ImproperlyConfigured("InventoryItemStore requires a lock registry")
        self.items = items
        self.ledger = ledger
        self.locks = locks

    @contextmanager
    def locked(self, *item_ids):
        """
        Serialize on item_ids and yield {id: freshly locked item}.

        Locks are acquired in a fixed order, so callers may pass ids in any
        order without risking lock-order deadlocks.
        """
        with self.locks.acquire(*item_ids):
            with transaction.atomic():
                yield self.items.lock(item_ids)

    def create(
        self,
        product_id,
        warehouse,
        sku: str,
        variant_id=None,
        initial_quantity: int = 0,
        min_stock_level: int = 0,
        max_stock_level: int = 1000,
        reorder_point: int = 10,
        cost_price=Decimal('0.00'),
        barcode: str = '',
        location: str = '',
        user_id=None,
        user_name: str = '',
    ):
        """
        Create the item for (product, variant, warehouse).

        The initial-stock movement is written in its own savepoint; if it
        fails the item is still created and the gap shows up in
        MovementLedger.replay().

        Raises:
            DuplicateItemError: If an item already exists for the key
            InvalidQuantityError: If initial_quantity is negative
        """
        if isinstance(initial_quantity, bool) or not isinstance(initial_quantity, int) or initial_quantity < 0:
            raise InvalidQuantityError(f"initial quantity must be a non-negative integer, got {initial_quantity!r}")

        if self.items.find(product_id, warehouse.id, variant_id) is not None:
            raise DuplicateItemError(
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                warehouse_id=str(warehouse.id),
            )

        fields = dict(
            product_id=product_id,
            variant_id=variant_id,
            warehouse=warehouse,
            sku=sku,
            quantity_available=initial_quantity,
            quantity_reserved=0,
            quantity_total=initial_quantity,
            min_stock_level=min_stock_level,
            max_stock_level=max_stock_level,
            reorder_point=reorder_point,
            cost_price=Decimal(cost_price),
            barcode=barcode,
            location=location,
        )

        try:
            with transaction.atomic():
                item = self.items.create(**fields)
                if initial_quantity > 0:
                    self._record_initial_stock(item, initial_quantity, user_id, user_name)
        except IntegrityError:
            # Lost a race against a concurrent create for the same key.
            raise DuplicateItemError(
                product_id=str(product_id),
                variant_id=str(variant_id) if variant_id else None,
                warehouse_id=str(warehouse.id),
            )

        logger.info(
            f"Created inventory item {item.id} ({item.sku}) at warehouse {warehouse.code} "
            f"with {initial_quantity} units"
        )
        return item

    def _record_initial_stock(self, item, quantity, user_id, user_name):
        try:
            with transaction.atomic():
                self.ledger.record(
                    item,
                    MovementType.INBOUND,
                    quantity,
                    previous_quantity=0,
                    new_quantity=quantity,
                    reference_type='initial_stock',
                    reference_id=item.id,
                    reason='Initial inventory setup',
                    unit_cost=item.cost_price,
                    user_id=user_id,
                    user_name=user_name,
                )
        except DatabaseError:
            logger.exception(f"Failed to record initial stock movement for item {item.id}")

    # =========================================================================
    # Mutators (caller holds locked())
    # =========================================================================

    def _persist(self, item, extra_fields=()):
        if not item.check_invariant():
            raise InvalidQuantityError(
                f"quantity invariant violated for item {item.id}: "
                f"{item.quantity_available} + {item.quantity_reserved} != {item.quantity_total}"
            )
        return self.items.save(item, QUANTITY_FIELDS + list(extra_fields))

    def reserve(self, item, quantity: int):
        item.reserve(quantity)
        return self._persist(item)

    def release(self, item, quantity: int):
        item.release(quantity)
        return self._persist(item)

    def fulfill(self, item, quantity: int):
        item.fulfill(quantity)
        return self._persist(item, ['last_sold_at'])

    def add_stock(self, item, quantity: int, cost_price=None):
        item.add_stock(quantity, cost_price)
        return self._persist(item, ['cost_price', 'last_cost_price', 'last_restocked_at'])

    def remove_stock(self, item, quantity: int):
        item.remove_stock(quantity)
        return self._persist(item)

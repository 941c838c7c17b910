"""
Reservation Manager - holds stock for orders until it ships or is let go.

Reserve flow:
1. Pick warehouse(s): the preferred one if it covers the whole quantity,
   otherwise the Allocation Planner's first-fit split
2. Lock every chosen item (sorted order) and open one transaction
3. Re-check availability under the lock; re-plan if another request got there
   first
4. Reserve on each item, create one reservation per warehouse, record a
   `reserved` movement for each
5. After commit, tell the order system about the allocation

A failure anywhere in step 4 rolls the whole transaction back, so a
multi-warehouse reserve never leaves partial holds behind.
"""
import logging
from datetime import timedelta
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional

from django.core.exceptions import ImproperlyConfigured
from django.db import transaction
from django.utils import timezone

from core.locks import ItemLockRegistry
from inventory.allocation import AllocationPlanner
from inventory.exceptions import (
    DuplicateReservationError,
    InsufficientStockError,
    InventoryError,
    InventoryValidationError,
    ReservationExpiredError,
)
from inventory.integrations import OrderSystem
from inventory.ledger import MovementLedger
from inventory.models import MovementType, validate_quantity
from inventory.repositories import InventoryItemRepository
from inventory.stock import InventoryItemStore

from .repositories import ReservationRepository

logger = logging.getLogger(__name__)

MAX_PLAN_ATTEMPTS = 3


class StockStatusUpdate:
    RESERVED = 'reserved'
    PARTIALLY_RESERVED = 'partially_reserved'
    UNAVAILABLE = 'unavailable'
    RELEASED = 'released'


class AllocationChanged(Exception):
    """Stock seen while planning was gone once the items were locked."""


def _product_key(product_id, variant_id):
    return str(product_id), str(variant_id) if variant_id else None


class ReservationManager:
    def __init__(
        self,
        reservations: Optional[ReservationRepository] = None,
        items: Optional[InventoryItemRepository] = None,
        store: Optional[InventoryItemStore] = None,
        ledger: Optional[MovementLedger] = None,
        planner: Optional[AllocationPlanner] = None,
        order_system: Optional[OrderSystem] = None,
        default_ttl_hours: int = 24,
        min_ttl_hours: int = 1,
        max_ttl_hours: int = 168,
        sweep_batch_size: int = 100,
        order_locks: Optional[ItemLockRegistry] = None,
    ):
        for name, value in (
            ('reservations', reservations), ('items', items), ('store', store),
            ('ledger', ledger), ('planner', planner), ('order_system', order_system),
        ):
            if value is None:
                raise ImproperlyConfigured(f"ReservationManager requires {name}")
        self.reservations = reservations
        self.items = items
        self.store = store
        self.ledger = ledger
        self.planner = planner
        self.order_system = order_system
        self.default_ttl_hours = default_ttl_hours
        self.min_ttl_hours = min_ttl_hours
        self.max_ttl_hours = max_ttl_hours
        self.sweep_batch_size = sweep_batch_size
        # Keyed by (order, product, variant); never shares stripes with item locks.
        self.order_locks = order_locks or ItemLockRegistry(stripes=64)

    # =========================================================================
    # Reserve
    # =========================================================================

    def reserve(
        self,
        product_id,
        order_id,
        quantity: int,
        variant_id=None,
        preferred_warehouse_id=None,
        ttl_hours: Optional[int] = None,
        reserved_price=Decimal('0.00'),
        user_id=None,
        user_name: str = '',
    ):
        """
        Reserve quantity of a product for an order.

        Returns:
            List of StockReservation, one per warehouse used

        Raises:
            InvalidQuantityError: If quantity is not a positive integer
            InventoryValidationError: If ttl_hours or reserved_price is out of range
            DuplicateReservationError: If the order already holds this product
            InsufficientStockError: If the quantity cannot be fully covered
        """
        validate_quantity(quantity)
        expires_at = timezone.now() + timedelta(hours=self._ttl(ttl_hours))
        reserved_price = self._price(reserved_price)

        wanted = _product_key(product_id, variant_id)
        with self.order_locks.acquire((str(order_id),) + wanted):
            self._ensure_not_held(order_id, wanted)

            for attempt in range(1, MAX_PLAN_ATTEMPTS + 1):
                allocations = self._plan(product_id, variant_id, quantity, preferred_warehouse_id)
                try:
                    reservations = self._reserve_allocations(
                        order_id, wanted, allocations, expires_at, reserved_price, user_id, user_name
                    )
                except AllocationChanged:
                    logger.info(f"Stock moved while reserving for order {order_id}, re-planning (attempt {attempt})")
                    continue

                logger.info(
                    f"Reserved {quantity} of product {product_id} for order {order_id} "
                    f"across {len(reservations)} warehouse(s)"
                )
                return reservations

        logger.warning(f"Giving up reserving product {product_id} for order {order_id} after {MAX_PLAN_ATTEMPTS} attempts")
        raise InsufficientStockError(
            message="stock changed repeatedly while reserving; try again",
            product_id=str(product_id),
        )

    def _ensure_not_held(self, order_id, wanted):
        for existing in self.reservations.for_order(order_id, active_only=True):
            held = existing.inventory_item
            if _product_key(held.product_id, held.variant_id) == wanted:
                raise DuplicateReservationError(
                    f"order {order_id} already holds product {wanted[0]}",
                    order_id=str(order_id),
                    reservation_id=str(existing.id),
                )

    def _ttl(self, ttl_hours):
        if not ttl_hours:
            return self.default_ttl_hours
        if isinstance(ttl_hours, bool) or not isinstance(ttl_hours, int):
            raise InventoryValidationError(f"ttl_hours must be an integer, got {ttl_hours!r}")
        if not self.min_ttl_hours <= ttl_hours <= self.max_ttl_hours:
            raise InventoryValidationError(
                f"ttl_hours must be between {self.min_ttl_hours} and {self.max_ttl_hours}"
            )
        return ttl_hours

    def _price(self, reserved_price):
        try:
            price = Decimal(reserved_price if reserved_price is not None else '0.00')
        except (InvalidOperation, TypeError, ValueError):
            raise InventoryValidationError(f"invalid reserved price {reserved_price!r}")
        if price < 0:
            raise InventoryValidationError("reserved price cannot be negative")
        return price

    def _plan(self, product_id, variant_id, quantity, preferred_warehouse_id):
        """[(inventory item id, quantity)] covering the whole quantity."""
        if preferred_warehouse_id is not None:
            item = self.items.find(product_id, preferred_warehouse_id, variant_id)
            if item is not None and item.warehouse.is_active and item.quantity_available >= quantity:
                return [(item.id, quantity)]

        plan = self.planner.suggest_allocation(product_id, quantity, variant_id=variant_id)
        if not plan.is_available:
            logger.warning(
                f"Insufficient stock for product {product_id}: "
                f"requested {quantity}, available {plan.total_available}"
            )
            raise InsufficientStockError(quantity, plan.total_available, product_id=str(product_id))
        return [(a.inventory_item_id, a.quantity) for a in plan.allocations]

    def _reserve_allocations(self, order_id, wanted, allocations, expires_at, reserved_price, user_id, user_name):
        reservations = []
        notification = []
        with self.store.locked(*[item_id for item_id, _ in allocations]) as locked:
            self._ensure_not_held(order_id, wanted)
            for item_id, quantity in allocations:
                if locked[item_id].quantity_available < quantity:
                    raise AllocationChanged()

            for item_id, quantity in allocations:
                item = self.store.reserve(locked[item_id], quantity)
                reservation = self.reservations.create(
                    inventory_item_id=item.id,
                    order_id=order_id,
                    quantity=quantity,
                    reserved_price=reserved_price,
                    expires_at=expires_at,
                )
                self.ledger.record(
                    item,
                    MovementType.RESERVED,
                    quantity,
                    previous_quantity=item.quantity_total,
                    new_quantity=item.quantity_total,
                    reference_type='order',
                    reference_id=order_id,
                    reason=f"Reserved for order {order_id}",
                    unit_cost=item.cost_price,
                    user_id=user_id,
                    user_name=user_name,
                )
                reservations.append(reservation)
                notification.append({
                    'reservation_id': str(reservation.id),
                    'reservation_code': reservation.reservation_code,
                    'inventory_item_id': str(item.id),
                    'warehouse_id': str(item.warehouse_id),
                    'quantity': quantity,
                    'expires_at': expires_at.isoformat(),
                })

            transaction.on_commit(lambda: self._notify_allocation(order_id, notification))
        return reservations

    def _notify_allocation(self, order_id, allocations):
        try:
            self.order_system.notify_allocation(order_id, allocations)
        except Exception as e:
            logger.error(f"Failed to notify order system of allocation for order {order_id}: {e}")

    def _update_stock_status(self, order_id, status, details=None):
        try:
            self.order_system.update_stock_status(order_id, status, details or {})
        except Exception as e:
            logger.error(f"Failed to update stock status of order {order_id}: {e}")

    # =========================================================================
    # Release / fulfill
    # =========================================================================

    def release(self, reservation_id, reason: str = 'Reservation released', user_id=None, user_name: str = ''):
        """
        Return a reservation's quantity to available stock.

        Releasing an inactive reservation is a no-op.

        Raises:
            ReservationNotFoundError: If the reservation does not exist
        """
        reservation = self.reservations.get(reservation_id)
        if not reservation.is_active:
            logger.debug(f"Reservation {reservation.reservation_code} already inactive, nothing to release")
            return reservation

        with self.store.locked(reservation.inventory_item_id) as locked:
            reservation = self.reservations.lock(reservation.id)
            if not reservation.is_active:
                return reservation

            item = self.store.release(locked[reservation.inventory_item_id], reservation.quantity)
            reservation.mark_released()
            self.reservations.save(reservation, ['is_active', 'released_at'])
            self.ledger.record(
                item,
                MovementType.RELEASED,
                reservation.quantity,
                previous_quantity=item.quantity_total,
                new_quantity=item.quantity_total,
                reference_type='order',
                reference_id=reservation.order_id,
                reason=reason,
                unit_cost=item.cost_price,
                user_id=user_id,
                user_name=user_name,
            )

        logger.info(
            f"Released reservation {reservation.reservation_code}: "
            f"{reservation.quantity} units back to item {reservation.inventory_item_id}"
        )
        return reservation

    def fulfill(self, reservation_id, user_id=None, user_name: str = ''):
        """
        Consume a reservation: the reserved units leave the warehouse.

        Raises:
            ReservationNotFoundError: If the reservation does not exist
            ReservationExpiredError: If it is released, consumed or past expiry
        """
        reservation = self.reservations.get(reservation_id)
        self._ensure_consumable(reservation)

        with self.store.locked(reservation.inventory_item_id) as locked:
            reservation = self.reservations.lock(reservation.id)
            self._ensure_consumable(reservation)

            item = locked[reservation.inventory_item_id]
            previous = item.quantity_total
            self.store.fulfill(item, reservation.quantity)
            reservation.mark_fulfilled()
            self.reservations.save(reservation, ['is_active', 'fulfilled_at'])
            self.ledger.record(
                item,
                MovementType.OUTBOUND,
                -reservation.quantity,
                previous_quantity=previous,
                new_quantity=item.quantity_total,
                reference_type='order',
                reference_id=reservation.order_id,
                reason=f"Fulfilled reservation {reservation.reservation_code}",
                unit_cost=item.cost_price,
                user_id=user_id,
                user_name=user_name,
            )

        logger.info(f"Fulfilled reservation {reservation.reservation_code} ({reservation.quantity} units)")
        return reservation

    def _ensure_consumable(self, reservation):
        if not reservation.is_active:
            raise ReservationExpiredError(
                f"reservation {reservation.reservation_code} is no longer active",
                reservation_id=str(reservation.id),
            )
        if reservation.is_expired:
            raise ReservationExpiredError(
                f"reservation {reservation.reservation_code} expired at {reservation.expires_at.isoformat()}",
                reservation_id=str(reservation.id),
            )

    def sweep_expired(self, batch_size: Optional[int] = None) -> int:
        """
        Release active reservations whose expiry has passed, oldest first.

        Returns:
            Number of reservations released
        """
        batch = self.reservations.expired(batch_size or self.sweep_batch_size)
        processed = 0
        for reservation in batch:
            try:
                self.release(reservation.id, reason='Reservation expired')
            except Exception:
                logger.exception(f"Failed to release expired reservation {reservation.id}")
                continue
            processed += 1

        if batch:
            logger.info(f"Expiry sweep released {processed} of {len(batch)} expired reservation(s)")
        return processed

    # =========================================================================
    # Orders
    # =========================================================================

    def bulk_reserve(self, order_id, lines: List[Dict], ttl_hours: Optional[int] = None, user_id=None, user_name: str = ''):
        """
        Reserve every line of an order, each independently.

        Returns:
            Dict with per-line results, success/failure counts and the stock
            status reported to the order system
        """
        if not lines:
            raise InventoryValidationError("bulk reserve requires at least one line")

        results = []
        for index, line in enumerate(lines):
            product_id = line.get('product_id')
            try:
                reservations = self.reserve(
                    product_id,
                    order_id,
                    line.get('quantity'),
                    variant_id=line.get('variant_id'),
                    preferred_warehouse_id=line.get('preferred_warehouse_id'),
                    ttl_hours=ttl_hours,
                    reserved_price=line.get('reserved_price', Decimal('0.00')),
                    user_id=user_id,
                    user_name=user_name,
                )
            except InventoryError as e:
                logger.warning(f"Bulk reserve line {index} of order {order_id} failed: {e.code}")
                results.append({
                    'index': index,
                    'product_id': product_id,
                    'success': False,
                    'error': e.code,
                    'message': e.message,
                })
                continue
            results.append({
                'index': index,
                'product_id': product_id,
                'success': True,
                'reservations': reservations,
            })

        success_count = sum(1 for r in results if r['success'])
        failure_count = len(results) - success_count
        if failure_count == 0:
            status = StockStatusUpdate.RESERVED
        elif success_count:
            status = StockStatusUpdate.PARTIALLY_RESERVED
        else:
            status = StockStatusUpdate.UNAVAILABLE

        self._update_stock_status(order_id, status, {
            'success_count': success_count,
            'failure_count': failure_count,
        })
        return {
            'order_id': order_id,
            'status': status,
            'results': results,
            'success_count': success_count,
            'failure_count': failure_count,
        }

    def release_order(self, order_id, reason: str = 'Order cancelled', user_id=None, user_name: str = ''):
        released = [
            self.release(reservation.id, reason=reason, user_id=user_id, user_name=user_name)
            for reservation in self.reservations.for_order(order_id, active_only=True)
        ]
        logger.info(f"Released {len(released)} reservation(s) of order {order_id}")
        self._update_stock_status(order_id, StockStatusUpdate.RELEASED, {'released_count': len(released)})
        return released

    # =========================================================================
    # Queries
    # =========================================================================

    def get(self, reservation_id):
        return self.reservations.get(reservation_id)

    def get_by_code(self, code):
        return self.reservations.get_by_code(code)

    def for_order(self, order_id, active_only: bool = False):
        return self.reservations.for_order(order_id, active_only=active_only)

    def active(self, warehouse_id=None, limit=50, offset=0):
        return self.reservations.active(warehouse_id=warehouse_id, limit=limit, offset=offset)

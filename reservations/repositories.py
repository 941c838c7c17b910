"""
Storage interface for stock reservations and its Django ORM implementation.
"""
from typing import List, Optional, Protocol, Tuple, runtime_checkable

from django.utils import timezone

from inventory.exceptions import ReservationNotFoundError

from .models import StockReservation


@runtime_checkable
class ReservationRepository(Protocol):
    def create(self, **fields) -> StockReservation: ...
    def get(self, reservation_id) -> StockReservation: ...
    def lock(self, reservation_id) -> StockReservation: ...
    def get_by_code(self, code: str) -> StockReservation: ...
    def for_order(self, order_id, active_only: bool = False) -> List[StockReservation]: ...
    def for_item(self, item_id, active_only: bool = False) -> List[StockReservation]: ...
    def has_active(self, item_id) -> bool: ...
    def save(self, reservation: StockReservation, fields: List[str]) -> StockReservation: ...
    def expired(self, limit: int, now=None) -> List[StockReservation]: ...
    def active(self, warehouse_id=None, limit=None, offset=0) -> Tuple[List[StockReservation], int]: ...


class DjangoReservationRepository:
    """StockReservation storage backed by the Django ORM."""

    def _queryset(self):
        return StockReservation.objects.select_related('inventory_item', 'inventory_item__warehouse')

    def create(self, **fields):
        return StockReservation.objects.create(**fields)

    def get(self, reservation_id):
        try:
            return self._queryset().get(id=reservation_id)
        except StockReservation.DoesNotExist:
            raise ReservationNotFoundError(
                f"reservation {reservation_id} not found",
                reservation_id=str(reservation_id)
            )

    def lock(self, reservation_id):
        """Re-read with a row lock. Must run inside transaction.atomic()."""
        try:
            return StockReservation.objects.select_for_update().get(id=reservation_id)
        except StockReservation.DoesNotExist:
            raise ReservationNotFoundError(
                f"reservation {reservation_id} not found",
                reservation_id=str(reservation_id)
            )

    def get_by_code(self, code):
        try:
            return self._queryset().get(reservation_code=code)
        except StockReservation.DoesNotExist:
            raise ReservationNotFoundError(f"reservation {code} not found", reservation_code=code)

    def for_order(self, order_id, active_only=False):
        queryset = self._queryset().filter(order_id=order_id)
        if active_only:
            queryset = queryset.filter(is_active=True)
        return list(queryset.order_by('created_at'))

    def for_item(self, item_id, active_only=False):
        queryset = self._queryset().filter(inventory_item_id=item_id)
        if active_only:
            queryset = queryset.filter(is_active=True)
        return list(queryset)

    def has_active(self, item_id):
        return StockReservation.objects.filter(inventory_item_id=item_id, is_active=True).exists()

    def save(self, reservation, fields):
        reservation.save(update_fields=list(fields) + ['updated_at'])
        return reservation

    def expired(self, limit, now=None):
        now = now or timezone.now()
        return list(
            StockReservation.objects.filter(is_active=True, expires_at__lt=now)
            .order_by('expires_at')[:limit]
        )

    def active(self, warehouse_id=None, limit=None, offset=0):
        queryset = self._queryset().filter(is_active=True)
        if warehouse_id is not None:
            queryset = queryset.filter(inventory_item__warehouse_id=warehouse_id)
        queryset = queryset.order_by('expires_at', 'created_at')
        total = queryset.count()
        if limit is not None:
            queryset = queryset[offset:offset + limit]
        return list(queryset), total

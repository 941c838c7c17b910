"""
Reservation Models - Time-bounded holds of stock against orders.

Reservation lifecycle:
    ACTIVE -> FULFILLED (stock shipped, leaves the warehouse)
    ACTIVE -> RELEASED (cancelled, or expired and swept)

There is no way back to ACTIVE. An active reservation whose expires_at has
passed is treated as expired even before the sweep releases it.
"""
import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.utils import timezone

from inventory.models import InventoryItem


class StockReservation(models.Model):
    """
    Quantity of one inventory item held for one order.
    """

    class State(models.TextChoices):
        ACTIVE = 'active', 'Active'
        EXPIRED = 'expired', 'Expired'
        FULFILLED = 'fulfilled', 'Fulfilled'
        RELEASED = 'released', 'Released'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    inventory_item = models.ForeignKey(
        InventoryItem,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='reservations'
    )
    order_id = models.UUIDField(db_index=True)
    quantity = models.PositiveIntegerField(validators=[MinValueValidator(1)])
    reserved_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        default=Decimal('0.00'),
        help_text="Unit price promised to the order"
    )

    is_active = models.BooleanField(default=True)
    reservation_code = models.CharField(max_length=50, unique=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    expires_at = models.DateTimeField(null=True, blank=True)
    released_at = models.DateTimeField(null=True, blank=True)
    fulfilled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = 'Stock Reservation'
        verbose_name_plural = 'Stock Reservations'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['is_active', 'expires_at']),
            models.Index(fields=['inventory_item', 'is_active']),
        ]

    def __str__(self):
        return f"{self.reservation_code} - {self.quantity} units for order {self.order_id} ({self.state})"

    def save(self, *args, **kwargs):
        if not self.reservation_code:
            self.reservation_code = self.generate_reservation_code()
        super().save(*args, **kwargs)

    def generate_reservation_code(self) -> str:
        """RSV- plus the first 8 hex digits of the id, more if that code is taken."""
        digits = str(self.id).replace('-', '').upper()
        for length in (8, 12, 16):
            code = f"RSV-{digits[:length]}"
            if not StockReservation.objects.filter(reservation_code=code).exists():
                return code
        return f"RSV-{digits}"

    @property
    def is_expired(self) -> bool:
        return self.expires_at is not None and timezone.now() > self.expires_at

    @property
    def is_consumable(self) -> bool:
        return self.is_active and not self.is_expired

    @property
    def state(self):
        if self.is_active:
            return self.State.EXPIRED if self.is_expired else self.State.ACTIVE
        if self.fulfilled_at is not None:
            return self.State.FULFILLED
        return self.State.RELEASED

    @property
    def total_price(self) -> Decimal:
        return self.quantity * self.reserved_price

    def mark_released(self):
        now = timezone.now()
        self.is_active = False
        self.released_at = now

    def mark_fulfilled(self):
        now = timezone.now()
        self.is_active = False
        self.fulfilled_at = now

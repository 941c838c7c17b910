"""
Inventory Models - Core data entities for multi-warehouse stock tracking.

Models:
    - Warehouse: Fulfillment location, ranked by priority for allocation
    - InventoryItem: Stock levels of a product/variant at one warehouse
    - StockMovement: Immutable ledger entry for every quantity change
    - StockAlert: Low/out-of-stock notification produced by the alert scan

Quantity invariant on InventoryItem:
    quantity_available + quantity_reserved == quantity_total, all >= 0
"""
import uuid
from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Sum
from django.utils import timezone

from .exceptions import InsufficientStockError, InvalidQuantityError


class StockStatus(models.TextChoices):
    IN_STOCK = 'in_stock', 'In stock'
    LOW_STOCK = 'low_stock', 'Low stock'
    OUT_OF_STOCK = 'out_of_stock', 'Out of stock'
    BACKORDER = 'backorder', 'Backorder'


class MovementType(models.TextChoices):
    INBOUND = 'inbound', 'Inbound'
    OUTBOUND = 'outbound', 'Outbound'
    ADJUSTMENT = 'adjustment', 'Adjustment'
    RESERVED = 'reserved', 'Reserved'
    RELEASED = 'released', 'Released'
    TRANSFER = 'transfer', 'Transfer'
    DAMAGED = 'damaged', 'Damaged'
    RETURNED = 'returned', 'Returned'


def validate_quantity(quantity):
    """Quantities passed to stock operations must be positive integers."""
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantityError(f"quantity must be a positive integer, got {quantity!r}")


class Warehouse(models.Model):
    """
    Storage location. Lower priority values are preferred when allocating.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    name = models.CharField(max_length=100)
    code = models.CharField(
        max_length=20,
        unique=True,
        help_text="Unique warehouse code"
    )
    description = models.TextField(blank=True, default='')

    address_line_1 = models.CharField(max_length=255, blank=True, default='')
    address_line_2 = models.CharField(max_length=255, blank=True, default='')
    city = models.CharField(max_length=100, blank=True, default='')
    state = models.CharField(max_length=100, blank=True, default='')
    postal_code = models.CharField(max_length=20, blank=True, default='')
    country = models.CharField(max_length=100, default='US')

    is_active = models.BooleanField(default=True, db_index=True)
    is_default = models.BooleanField(default=False)
    priority = models.IntegerField(
        default=0,
        db_index=True,
        help_text="Fulfillment priority (lower is preferred)"
    )
    capacity = models.PositiveIntegerField(
        default=10000,
        validators=[MinValueValidator(1)]
    )

    manager_name = models.CharField(max_length=100, blank=True, default='')
    phone = models.CharField(max_length=20, blank=True, default='')
    email = models.CharField(max_length=100, blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = 'Warehouse'
        verbose_name_plural = 'Warehouses'
        ordering = ['priority', 'name']

    def __str__(self):
        return f"{self.name} ({self.code})"

    @property
    def capacity_used(self) -> int:
        return self.inventory_items.aggregate(total=Sum('quantity_total'))['total'] or 0

    @property
    def capacity_utilization(self) -> float:
        if not self.capacity:
            return 0.0
        return self.capacity_used / self.capacity * 100

    def is_near_capacity(self, threshold: float = 90.0) -> bool:
        return self.capacity_utilization >= threshold


class InventoryItem(models.Model):
    """
    Stock levels for a product (and optional variant) at one warehouse.

    The quantity methods below only change the in-memory instance; callers
    persist them while holding the item's lock (see inventory.stock).
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    product_id = models.UUIDField(db_index=True)
    variant_id = models.UUIDField(null=True, blank=True, db_index=True)
    warehouse = models.ForeignKey(
        Warehouse,
        on_delete=models.PROTECT,
        related_name='inventory_items'
    )

    quantity_available = models.PositiveIntegerField(default=0)
    quantity_reserved = models.PositiveIntegerField(default=0)
    quantity_total = models.PositiveIntegerField(default=0)
    min_stock_level = models.PositiveIntegerField(default=0)
    max_stock_level = models.PositiveIntegerField(default=1000, validators=[MinValueValidator(1)])
    reorder_point = models.PositiveIntegerField(default=10)

    status = models.CharField(
        max_length=20,
        choices=StockStatus.choices,
        default=StockStatus.IN_STOCK,
        db_index=True
    )
    location = models.CharField(
        max_length=50,
        blank=True,
        default='',
        help_text="Aisle, shelf or bin code"
    )
    sku = models.CharField(max_length=100, db_index=True)
    barcode = models.CharField(max_length=100, blank=True, default='', db_index=True)

    cost_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    last_cost_price = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    last_restocked_at = models.DateTimeField(null=True, blank=True)
    last_sold_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = 'Inventory Item'
        verbose_name_plural = 'Inventory Items'
        ordering = ['warehouse__priority', 'sku']
        constraints = [
            models.UniqueConstraint(
                fields=['product_id', 'variant_id', 'warehouse'],
                condition=models.Q(variant_id__isnull=False),
                name='unique_product_variant_warehouse'
            ),
            models.UniqueConstraint(
                fields=['product_id', 'warehouse'],
                condition=models.Q(variant_id__isnull=True),
                name='unique_product_warehouse_without_variant'
            ),
            models.CheckConstraint(
                condition=models.Q(
                    quantity_total=models.F('quantity_available') + models.F('quantity_reserved')
                ),
                name='inventory_quantities_balance'
            ),
        ]
        indexes = [
            models.Index(fields=['product_id', 'warehouse', 'variant_id']),
            models.Index(fields=['warehouse', 'status']),
        ]

    def __str__(self):
        return f"{self.sku} @ {self.warehouse_id}: {self.quantity_available}/{self.quantity_total}"

    def is_available(self, quantity: int) -> bool:
        return self.quantity_available >= quantity

    @property
    def is_low_stock(self) -> bool:
        return self.quantity_total <= self.reorder_point

    @property
    def is_out_of_stock(self) -> bool:
        return self.quantity_total <= 0

    def derive_status(self):
        if self.is_out_of_stock:
            return StockStatus.OUT_OF_STOCK
        if self.is_low_stock:
            return StockStatus.LOW_STOCK
        return StockStatus.IN_STOCK

    def refresh_status(self):
        # Backorder is set explicitly and survives until stock comes back.
        if self.status == StockStatus.BACKORDER and self.is_out_of_stock:
            return self.status
        self.status = self.derive_status()
        return self.status

    def check_invariant(self):
        return (
            self.quantity_available >= 0
            and self.quantity_reserved >= 0
            and self.quantity_available + self.quantity_reserved == self.quantity_total
        )

    def reserve(self, quantity: int):
        validate_quantity(quantity)
        if not self.is_available(quantity):
            raise InsufficientStockError(quantity, self.quantity_available, item_id=str(self.id))
        self.quantity_available -= quantity
        self.quantity_reserved += quantity
        self.refresh_status()
        return self

    def release(self, quantity: int):
        validate_quantity(quantity)
        if quantity > self.quantity_reserved:
            raise InvalidQuantityError(
                f"insufficient reserved stock: requested {quantity}, reserved {self.quantity_reserved}"
            )
        self.quantity_reserved -= quantity
        self.quantity_available += quantity
        self.refresh_status()
        return self

    def fulfill(self, quantity: int):
        validate_quantity(quantity)
        if quantity > self.quantity_reserved:
            raise InvalidQuantityError(
                f"insufficient reserved stock: requested {quantity}, reserved {self.quantity_reserved}"
            )
        self.quantity_reserved -= quantity
        self.quantity_total -= quantity
        self.last_sold_at = timezone.now()
        self.refresh_status()
        return self

    def add_stock(self, quantity: int, cost_price=None):
        validate_quantity(quantity)
        self.quantity_available += quantity
        self.quantity_total += quantity
        if cost_price is not None and Decimal(cost_price) > 0:
            self.last_cost_price = self.cost_price
            self.cost_price = Decimal(cost_price)
        self.last_restocked_at = timezone.now()
        self.refresh_status()
        return self

    def remove_stock(self, quantity: int):
        """Take unreserved units out of the warehouse (write-off, transfer)."""
        validate_quantity(quantity)
        if not self.is_available(quantity):
            raise InsufficientStockError(quantity, self.quantity_available, item_id=str(self.id))
        self.quantity_available -= quantity
        self.quantity_total -= quantity
        self.refresh_status()
        return self


class StockMovement(models.Model):
    """
    Append-only audit record of a quantity change.

    previous_quantity/new_quantity always describe quantity_total, so the
    ledger of an item replays to its current total. The item reference has
    no database constraint: history outlives a deleted item.
    """
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    inventory_item = models.ForeignKey(
        InventoryItem,
        on_delete=models.DO_NOTHING,
        db_constraint=False,
        related_name='movements'
    )
    movement_type = models.CharField(max_length=20, choices=MovementType.choices, db_index=True)
    quantity = models.IntegerField(help_text="Positive for inbound, negative for outbound")
    previous_quantity = models.IntegerField()
    new_quantity = models.IntegerField()

    reference_type = models.CharField(max_length=50, blank=True, default='')
    reference_id = models.UUIDField(null=True, blank=True, db_index=True)

    reason = models.CharField(max_length=255, blank=True, default='')
    notes = models.TextField(blank=True, default='')
    unit_cost = models.DecimalField(max_digits=12, decimal_places=2, default=Decimal('0.00'))
    total_cost = models.DecimalField(max_digits=14, decimal_places=2, default=Decimal('0.00'))

    user_id = models.UUIDField(null=True, blank=True, db_index=True)
    user_name = models.CharField(max_length=100, blank=True, default='')

    created_at = models.DateTimeField(auto_now_add=True)
    movement_date = models.DateTimeField(default=timezone.now, db_index=True)

    class Meta:
        verbose_name = 'Stock Movement'
        verbose_name_plural = 'Stock Movements'
        ordering = ['-movement_date', '-created_at']
        indexes = [
            models.Index(fields=['inventory_item', 'movement_date']),
            models.Index(fields=['movement_type', 'movement_date']),
            models.Index(fields=['reference_type', 'reference_id']),
        ]

    def __str__(self):
        return f"{self.movement_type} {self.quantity:+d} ({self.previous_quantity} -> {self.new_quantity})"

    @property
    def delta(self) -> int:
        return self.new_quantity - self.previous_quantity

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Stock movements are immutable once recorded")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ValueError("Stock movements can only be removed by the retention purge")


class StockAlert(models.Model):
    """
    Low/out-of-stock alert produced by the periodic scan.
    """

    class AlertType(models.TextChoices):
        LOW_STOCK = 'low_stock', 'Low stock'
        OUT_OF_STOCK = 'out_of_stock', 'Out of stock'
        OVERSTOCK = 'overstock', 'Overstock'

    class Severity(models.TextChoices):
        LOW = 'low', 'Low'
        MEDIUM = 'medium', 'Medium'
        HIGH = 'high', 'High'
        CRITICAL = 'critical', 'Critical'

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    inventory_item = models.ForeignKey(
        InventoryItem,
        on_delete=models.CASCADE,
        related_name='alerts'
    )
    alert_type = models.CharField(max_length=50, choices=AlertType.choices, db_index=True)
    message = models.TextField()
    severity = models.CharField(
        max_length=20,
        choices=Severity.choices,
        default=Severity.MEDIUM,
        db_index=True
    )
    is_read = models.BooleanField(default=False)
    is_resolved = models.BooleanField(default=False)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)
    read_at = models.DateTimeField(null=True, blank=True)
    resolved_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = 'Stock Alert'
        verbose_name_plural = 'Stock Alerts'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['inventory_item', 'alert_type', 'is_resolved']),
        ]

    def __str__(self):
        return f"[{self.severity}] {self.alert_type}: {self.message}"

    def mark_read(self):
        if not self.is_read:
            self.is_read = True
            self.read_at = timezone.now()

    def mark_resolved(self):
        if not self.is_resolved:
            self.is_resolved = True
            self.resolved_at = timezone.now()

"""
Storage interfaces for the inventory entities and their Django ORM
implementations.

Services depend on the Protocols; the ORM classes are what the process wires
in (see core.container).
"""
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable
from uuid import UUID

from django.db.models import Count, DecimalField, ExpressionWrapper, F, Min, Q, Sum
from django.db.models.functions import Abs, TruncDate

from .exceptions import AlertNotFoundError, InventoryNotFoundError, WarehouseNotFoundError
from .models import InventoryItem, StockAlert, StockMovement, Warehouse


def _page(queryset, limit, offset):
    total = queryset.count()
    if limit is not None:
        queryset = queryset[offset:offset + limit]
    elif offset:
        queryset = queryset[offset:]
    return list(queryset), total


def _variant_filter(variant_id):
    if variant_id is None:
        return Q(variant_id__isnull=True)
    return Q(variant_id=variant_id)


def _stock_value():
    return ExpressionWrapper(
        F('quantity_total') * F('cost_price'),
        output_field=DecimalField(max_digits=20, decimal_places=2),
    )


def _flow():
    """Units added to and taken from quantity_total, as aggregates."""
    return {
        'inbound': Sum(
            F('new_quantity') - F('previous_quantity'),
            filter=Q(new_quantity__gt=F('previous_quantity')),
        ),
        'outbound': Sum(
            F('previous_quantity') - F('new_quantity'),
            filter=Q(new_quantity__lt=F('previous_quantity')),
        ),
    }


@dataclass
class ItemFilters:
    product_id: Optional[UUID] = None
    variant_id: Optional[UUID] = None
    warehouse_id: Optional[UUID] = None
    status: Optional[str] = None
    sku: str = ''
    barcode: str = ''
    min_quantity: Optional[int] = None
    max_quantity: Optional[int] = None
    low_stock: bool = False
    out_of_stock: bool = False
    location: str = ''
    search_term: str = ''
    sort_by: str = ''
    sort_order: str = 'asc'


@dataclass
class MovementFilters:
    inventory_item_id: Optional[UUID] = None
    warehouse_id: Optional[UUID] = None
    movement_type: Optional[str] = None
    reference_type: str = ''
    reference_id: Optional[UUID] = None
    start_date: Optional[object] = None
    end_date: Optional[object] = None
    user_id: Optional[UUID] = None


@dataclass
class AlertFilters:
    warehouse_id: Optional[UUID] = None
    alert_type: str = ''
    severity: str = ''
    unread_only: bool = False
    unresolved_only: bool = False


# =============================================================================
# Protocols
# =============================================================================

@runtime_checkable
class InventoryItemRepository(Protocol):
    def get(self, item_id) -> InventoryItem: ...
    def find(self, product_id, warehouse_id, variant_id=None) -> Optional[InventoryItem]: ...
    def get_by_sku(self, sku: str) -> InventoryItem: ...
    def get_by_barcode(self, barcode: str) -> InventoryItem: ...
    def lock(self, item_ids: Iterable) -> Dict[UUID, InventoryItem]: ...
    def for_product(self, product_id, variant_id=None, warehouse_id=None) -> List[InventoryItem]: ...
    def create(self, **fields) -> InventoryItem: ...
    def get_or_create(self, product_id, variant_id, warehouse_id, defaults) -> Tuple[InventoryItem, bool]: ...
    def save(self, item: InventoryItem, fields: List[str]) -> InventoryItem: ...
    def delete(self, item: InventoryItem) -> None: ...
    def low_stock(self, warehouse_id=None, limit=None, offset=0) -> Tuple[List[InventoryItem], int]: ...
    def out_of_stock(self, warehouse_id=None, limit=None, offset=0) -> Tuple[List[InventoryItem], int]: ...
    def search(self, filters: ItemFilters, limit=None, offset=0) -> Tuple[List[InventoryItem], int]: ...
    def stock_totals(self, warehouse_id=None) -> dict: ...
    def totals_by_status(self, warehouse_id=None) -> List[dict]: ...
    def top_items(self, warehouse_id=None, by: str = 'stock_value', limit: int = 10) -> List[InventoryItem]: ...


@runtime_checkable
class WarehouseRepository(Protocol):
    def create(self, **fields) -> Warehouse: ...
    def get(self, warehouse_id) -> Warehouse: ...
    def get_by_code(self, code: str) -> Optional[Warehouse]: ...
    def default(self) -> Optional[Warehouse]: ...
    def all(self, active_only: bool = False) -> List[Warehouse]: ...
    def by_priority(self) -> List[Warehouse]: ...
    def save(self, warehouse: Warehouse, fields: Optional[List[str]] = None) -> Warehouse: ...
    def clear_default(self, keep_id=None) -> int: ...


@runtime_checkable
class StockMovementRepository(Protocol):
    def add(self, **fields) -> StockMovement: ...
    def for_item(self, item_id, limit=None, offset=0) -> Tuple[List[StockMovement], int]: ...
    def net_change(self, item_id) -> int: ...
    def by_type(self, movement_type, start_date, end_date, limit=None, offset=0) -> Tuple[List[StockMovement], int]: ...
    def by_reference(self, reference_type: str, reference_id) -> List[StockMovement]: ...
    def by_date_range(self, start_date, end_date, limit=None, offset=0) -> Tuple[List[StockMovement], int]: ...
    def history(self, filters: MovementFilters, limit=None, offset=0) -> Tuple[List[StockMovement], int]: ...
    def window_totals(self, start_date, end_date, warehouse_id=None) -> dict: ...
    def counts_by_type(self, start_date, end_date, warehouse_id=None) -> Dict[str, int]: ...
    def daily_flow(self, start_date, end_date, warehouse_id=None) -> List[dict]: ...
    def warehouse_flow(self, start_date, end_date, warehouse_id=None) -> List[dict]: ...
    def product_flow(self, start_date, end_date, limit: int = 10) -> List[dict]: ...
    def purge(self, before) -> int: ...


@runtime_checkable
class StockAlertRepository(Protocol):
    def create(self, **fields) -> StockAlert: ...
    def get(self, alert_id) -> StockAlert: ...
    def for_item(self, item_id, unread_only: bool = False) -> List[StockAlert]: ...
    def has_unresolved(self, item_id, alert_type: str) -> bool: ...
    def list(self, filters: AlertFilters, limit=None, offset=0) -> Tuple[List[StockAlert], int]: ...
    def save(self, alert: StockAlert, fields: List[str]) -> StockAlert: ...
    def mark_read(self, alert_ids, when) -> int: ...
    def mark_resolved(self, alert_ids, when) -> int: ...
    def purge_resolved(self, before) -> int: ...


# =============================================================================
# Django ORM implementations
# =============================================================================

class DjangoInventoryItemRepository:
    """InventoryItem storage backed by the Django ORM."""

    def _queryset(self):
        return InventoryItem.objects.select_related('warehouse')

    def get(self, item_id):
        try:
            return self._queryset().get(id=item_id)
        except InventoryItem.DoesNotExist:
            raise InventoryNotFoundError(f"inventory item {item_id} not found", item_id=str(item_id))

    def find(self, product_id, warehouse_id, variant_id=None):
        return self._queryset().filter(
            _variant_filter(variant_id),
            product_id=product_id,
            warehouse_id=warehouse_id,
        ).first()

    def get_by_sku(self, sku):
        item = self._queryset().filter(sku=sku).first()
        if item is None:
            raise InventoryNotFoundError(f"no inventory item with SKU {sku}", sku=sku)
        return item

    def get_by_barcode(self, barcode):
        item = self._queryset().filter(barcode=barcode).first() if barcode else None
        if item is None:
            raise InventoryNotFoundError(f"no inventory item with barcode {barcode}", barcode=barcode)
        return item

    def lock(self, item_ids):
        """
        Re-read rows with a row lock, in id order. Must run inside
        transaction.atomic().
        """
        ids = sorted({str(item_id) for item_id in item_ids})
        rows = (
            InventoryItem.objects.select_for_update()
            .filter(id__in=ids)
            .order_by('id')
        )
        locked = {item.id: item for item in rows}
        missing = {UUID(i) for i in ids} - set(locked)
        if missing:
            missing_id = sorted(str(m) for m in missing)[0]
            raise InventoryNotFoundError(f"inventory item {missing_id} not found", item_id=missing_id)
        return locked

    def for_product(self, product_id, variant_id=None, warehouse_id=None):
        queryset = self._queryset().filter(
            _variant_filter(variant_id),
            product_id=product_id,
            warehouse__is_active=True,
        )
        if warehouse_id is not None:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        return list(queryset.order_by('warehouse__priority', '-quantity_available', 'warehouse__code'))

    def create(self, **fields):
        item = InventoryItem(**fields)
        item.refresh_status()
        item.save(force_insert=True)
        return item

    def get_or_create(self, product_id, variant_id, warehouse_id, defaults):
        return InventoryItem.objects.get_or_create(
            product_id=product_id,
            variant_id=variant_id,
            warehouse_id=warehouse_id,
            defaults=defaults,
        )

    def save(self, item, fields):
        item.save(update_fields=list(fields) + ['updated_at'])
        return item

    def delete(self, item):
        item.delete()

    def low_stock(self, warehouse_id=None, limit=None, offset=0):
        queryset = self._queryset().filter(
            quantity_total__gt=0,
            quantity_total__lte=F('reorder_point'),
        )
        if warehouse_id is not None:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        return _page(queryset.order_by('quantity_total', 'id'), limit, offset)

    def out_of_stock(self, warehouse_id=None, limit=None, offset=0):
        queryset = self._queryset().filter(quantity_total__lte=0)
        if warehouse_id is not None:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        return _page(queryset.order_by('id'), limit, offset)

    sortable_fields = {
        'sku', 'quantity_available', 'quantity_reserved', 'quantity_total',
        'status', 'created_at', 'updated_at', 'cost_price',
    }

    def search(self, filters, limit=None, offset=0):
        queryset = self._queryset()

        if filters.product_id is not None:
            queryset = queryset.filter(product_id=filters.product_id)
        if filters.variant_id is not None:
            queryset = queryset.filter(variant_id=filters.variant_id)
        if filters.warehouse_id is not None:
            queryset = queryset.filter(warehouse_id=filters.warehouse_id)
        if filters.status:
            queryset = queryset.filter(status=filters.status)
        if filters.sku:
            queryset = queryset.filter(sku=filters.sku)
        if filters.barcode:
            queryset = queryset.filter(barcode=filters.barcode)
        if filters.min_quantity is not None:
            queryset = queryset.filter(quantity_available__gte=filters.min_quantity)
        if filters.max_quantity is not None:
            queryset = queryset.filter(quantity_available__lte=filters.max_quantity)
        if filters.low_stock:
            queryset = queryset.filter(quantity_total__gt=0, quantity_total__lte=F('reorder_point'))
        if filters.out_of_stock:
            queryset = queryset.filter(quantity_total__lte=0)
        if filters.location:
            queryset = queryset.filter(location__iexact=filters.location)
        if filters.search_term:
            term = filters.search_term
            queryset = queryset.filter(
                Q(sku__icontains=term) |
                Q(barcode__icontains=term) |
                Q(location__icontains=term)
            )

        sort_by = filters.sort_by if filters.sort_by in self.sortable_fields else 'sku'
        if filters.sort_order == 'desc':
            sort_by = f'-{sort_by}'
        return _page(queryset.order_by(sort_by, 'id'), limit, offset)

    def stock_totals(self, warehouse_id=None):
        """Item counts, quantities and value at cost in one query."""
        return self._scope(warehouse_id).aggregate(
            items=Count('id'),
            quantity=Sum('quantity_total'),
            reserved=Sum('quantity_reserved'),
            value=Sum(_stock_value()),
            low_stock=Count('id', filter=Q(quantity_total__gt=0, quantity_total__lte=F('reorder_point'))),
            out_of_stock=Count('id', filter=Q(quantity_total__lte=0)),
        )

    def totals_by_status(self, warehouse_id=None):
        return list(
            self._scope(warehouse_id)
            .values('status')
            .annotate(items=Count('id'), quantity=Sum('quantity_total'), value=Sum(_stock_value()))
            .order_by('status')
        )

    def top_items(self, warehouse_id=None, by='stock_value', limit=10):
        """Items ranked by stock_value or quantity_total, highest first."""
        queryset = self._scope(warehouse_id).annotate(stock_value=_stock_value())
        return list(queryset.order_by(f'-{by}', 'sku')[:limit])

    def _scope(self, warehouse_id):
        queryset = InventoryItem.objects.all()
        if warehouse_id is not None:
            queryset = queryset.filter(warehouse_id=warehouse_id)
        return queryset


class DjangoWarehouseRepository:
    """Warehouse storage backed by the Django ORM."""

    def create(self, **fields):
        return Warehouse.objects.create(**fields)

    def get(self, warehouse_id):
        try:
            return Warehouse.objects.get(id=warehouse_id)
        except Warehouse.DoesNotExist:
            raise WarehouseNotFoundError(
                f"warehouse {warehouse_id} not found",
                warehouse_id=str(warehouse_id)
            )

    def get_by_code(self, code):
        return Warehouse.objects.filter(code=code).first()

    def default(self):
        return Warehouse.objects.filter(is_default=True, is_active=True).first()

    def all(self, active_only=False):
        queryset = Warehouse.objects.all()
        if active_only:
            queryset = queryset.filter(is_active=True)
        return list(queryset.order_by('priority', 'name'))

    def by_priority(self):
        return list(Warehouse.objects.filter(is_active=True).order_by('priority', 'code'))

    def save(self, warehouse, fields=None):
        if fields:
            warehouse.save(update_fields=list(fields) + ['updated_at'])
        else:
            warehouse.save()
        return warehouse

    def clear_default(self, keep_id=None):
        queryset = Warehouse.objects.filter(is_default=True)
        if keep_id is not None:
            queryset = queryset.exclude(id=keep_id)
        return queryset.update(is_default=False)


class DjangoStockMovementRepository:
    """Append-only StockMovement storage backed by the Django ORM."""

    def _queryset(self):
        return StockMovement.objects.all()

    def add(self, **fields):
        return StockMovement.objects.create(**fields)

    def for_item(self, item_id, limit=None, offset=0):
        queryset = self._queryset().filter(inventory_item_id=item_id)
        return _page(queryset.order_by('-movement_date', '-created_at'), limit, offset)

    def net_change(self, item_id):
        total = self._queryset().filter(inventory_item_id=item_id).aggregate(
            total=Sum(F('new_quantity') - F('previous_quantity'))
        )['total']
        return total or 0

    def by_type(self, movement_type, start_date, end_date, limit=None, offset=0):
        queryset = self._queryset().filter(
            movement_type=movement_type,
            movement_date__gte=start_date,
            movement_date__lte=end_date,
        )
        return _page(queryset, limit, offset)

    def by_reference(self, reference_type, reference_id):
        return list(
            self._queryset()
            .filter(reference_type=reference_type, reference_id=reference_id)
            .order_by('movement_date', 'created_at')
        )

    def by_date_range(self, start_date, end_date, limit=None, offset=0):
        queryset = self._queryset().filter(
            movement_date__gte=start_date,
            movement_date__lte=end_date,
        )
        return _page(queryset, limit, offset)

    def history(self, filters, limit=None, offset=0):
        queryset = self._queryset()
        if filters.inventory_item_id is not None:
            queryset = queryset.filter(inventory_item_id=filters.inventory_item_id)
        if filters.warehouse_id is not None:
            queryset = queryset.filter(inventory_item__warehouse_id=filters.warehouse_id)
        if filters.movement_type:
            queryset = queryset.filter(movement_type=filters.movement_type)
        if filters.reference_type:
            queryset = queryset.filter(reference_type=filters.reference_type)
        if filters.reference_id is not None:
            queryset = queryset.filter(reference_id=filters.reference_id)
        if filters.start_date is not None:
            queryset = queryset.filter(movement_date__gte=filters.start_date)
        if filters.end_date is not None:
            queryset = queryset.filter(movement_date__lte=filters.end_date)
        if filters.user_id is not None:
            queryset = queryset.filter(user_id=filters.user_id)
        return _page(queryset, limit, offset)

    def _window(self, start_date, end_date, warehouse_id=None):
        queryset = self._queryset().filter(
            movement_date__gte=start_date,
            movement_date__lte=end_date,
        )
        if warehouse_id is not None:
            queryset = queryset.filter(inventory_item__warehouse_id=warehouse_id)
        return queryset

    def window_totals(self, start_date, end_date, warehouse_id=None):
        return self._window(start_date, end_date, warehouse_id).aggregate(movements=Count('id'), **_flow())

    def counts_by_type(self, start_date, end_date, warehouse_id=None):
        rows = (
            self._window(start_date, end_date, warehouse_id)
            .values('movement_type')
            .annotate(count=Count('id'))
            .order_by('movement_type')
        )
        return {row['movement_type']: row['count'] for row in rows}

    def daily_flow(self, start_date, end_date, warehouse_id=None):
        return list(
            self._window(start_date, end_date, warehouse_id)
            .exclude(new_quantity=F('previous_quantity'))
            .annotate(day=TruncDate('movement_date'))
            .values('day')
            .annotate(**_flow())
            .order_by('day')
        )

    def warehouse_flow(self, start_date, end_date, warehouse_id=None):
        return list(
            self._window(start_date, end_date, warehouse_id)
            .values('inventory_item__warehouse_id', 'inventory_item__warehouse__name')
            .annotate(movements=Count('id'), **_flow())
            .order_by('inventory_item__warehouse__name')
        )

    def product_flow(self, start_date, end_date, limit=10):
        """Products ranked by the absolute change they made to quantity_total."""
        return list(
            self._window(start_date, end_date)
            .exclude(new_quantity=F('previous_quantity'))
            .values('inventory_item__product_id', 'inventory_item__variant_id')
            .annotate(
                sku=Min('inventory_item__sku'),
                quantity_moved=Sum(Abs(F('new_quantity') - F('previous_quantity'))),
                movements=Count('id'),
            )
            .order_by('-quantity_moved')[:limit]
        )

    def purge(self, before):
        deleted, _ = self._queryset().filter(movement_date__lt=before).delete()
        return deleted


class DjangoStockAlertRepository:
    """StockAlert storage backed by the Django ORM."""

    def _queryset(self):
        return StockAlert.objects.select_related('inventory_item')

    def create(self, **fields):
        return StockAlert.objects.create(**fields)

    def get(self, alert_id):
        try:
            return self._queryset().get(id=alert_id)
        except StockAlert.DoesNotExist:
            raise AlertNotFoundError(f"stock alert {alert_id} not found", alert_id=str(alert_id))

    def for_item(self, item_id, unread_only=False):
        queryset = self._queryset().filter(inventory_item_id=item_id)
        if unread_only:
            queryset = queryset.filter(is_read=False)
        return list(queryset)

    def has_unresolved(self, item_id, alert_type):
        return StockAlert.objects.filter(
            inventory_item_id=item_id,
            alert_type=alert_type,
            is_resolved=False,
        ).exists()

    def list(self, filters, limit=None, offset=0):
        queryset = self._queryset()
        if filters.warehouse_id is not None:
            queryset = queryset.filter(inventory_item__warehouse_id=filters.warehouse_id)
        if filters.alert_type:
            queryset = queryset.filter(alert_type=filters.alert_type)
        if filters.severity:
            queryset = queryset.filter(severity=filters.severity)
        if filters.unread_only:
            queryset = queryset.filter(is_read=False)
        if filters.unresolved_only:
            queryset = queryset.filter(is_resolved=False)
        return _page(queryset.order_by('-created_at'), limit, offset)

    def save(self, alert, fields):
        alert.save(update_fields=list(fields))
        return alert

    def mark_read(self, alert_ids, when):
        return StockAlert.objects.filter(id__in=list(alert_ids), is_read=False).update(
            is_read=True, read_at=when
        )

    def mark_resolved(self, alert_ids, when):
        return StockAlert.objects.filter(id__in=list(alert_ids), is_resolved=False).update(
            is_resolved=True, resolved_at=when
        )

    def purge_resolved(self, before):
        deleted, _ = StockAlert.objects.filter(is_resolved=True, resolved_at__lt=before).delete()
        return deleted

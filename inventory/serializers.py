"""
Serializers for inventory models and requests.
Request serializers validate input before it reaches the services; model
serializers render responses.
"""
from decimal import Decimal

from rest_framework import serializers

from .models import InventoryItem, MovementType, StockAlert, StockMovement, StockStatus, Warehouse
from .repositories import AlertFilters, ItemFilters, MovementFilters
from .services import ADJUSTMENT_SIGNS


# =============================================================================
# Warehouses
# =============================================================================

class WarehouseSerializer(serializers.ModelSerializer):
    """Serializer for Warehouse model."""

    class Meta:
        model = Warehouse
        fields = [
            'id', 'name', 'code', 'description',
            'address_line_1', 'address_line_2', 'city', 'state', 'postal_code', 'country',
            'is_active', 'is_default', 'priority', 'capacity',
            'manager_name', 'phone', 'email',
            'created_at', 'updated_at'
        ]
        read_only_fields = ['id', 'created_at', 'updated_at']
        # Code uniqueness is reported by the registry as duplicate_warehouse.
        extra_kwargs = {'code': {'validators': []}}


class WarehouseUpdateSerializer(WarehouseSerializer):
    class Meta(WarehouseSerializer.Meta):
        read_only_fields = ['id', 'code', 'created_at', 'updated_at']


class WarehouseMinimalSerializer(serializers.ModelSerializer):
    """Minimal serializer for nested warehouse representation."""
    class Meta:
        model = Warehouse
        fields = ['id', 'name', 'code', 'priority']


# =============================================================================
# Inventory items
# =============================================================================

class InventoryItemSerializer(serializers.ModelSerializer):
    """
    Serializer for InventoryItem with nested warehouse.
    Items come from the repository with select_related('warehouse').
    """
    warehouse = WarehouseMinimalSerializer(read_only=True)
    is_low_stock = serializers.BooleanField(read_only=True)
    is_out_of_stock = serializers.BooleanField(read_only=True)

    class Meta:
        model = InventoryItem
        fields = [
            'id', 'product_id', 'variant_id', 'warehouse',
            'quantity_available', 'quantity_reserved', 'quantity_total',
            'min_stock_level', 'max_stock_level', 'reorder_point',
            'status', 'is_low_stock', 'is_out_of_stock',
            'location', 'sku', 'barcode', 'cost_price', 'last_cost_price',
            'created_at', 'updated_at', 'last_restocked_at', 'last_sold_at'
        ]
        read_only_fields = fields


class InventoryItemCreateSerializer(serializers.Serializer):
    """
    Serializer for POST /items/

    Request format:
    {
        "product_id": "<uuid>",
        "warehouse_id": "<uuid>",
        "sku": "SKU-001",
        "initial_quantity": 100,
        "reorder_point": 10
    }
    """
    product_id = serializers.UUIDField()
    variant_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    warehouse_id = serializers.UUIDField()
    sku = serializers.CharField(max_length=100)
    initial_quantity = serializers.IntegerField(min_value=0, default=0)
    min_stock_level = serializers.IntegerField(min_value=0, default=0)
    max_stock_level = serializers.IntegerField(min_value=1, default=1000)
    reorder_point = serializers.IntegerField(min_value=0, default=10)
    cost_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), default=Decimal('0.00'))
    barcode = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')
    location = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    user_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    user_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['min_stock_level'] > attrs['max_stock_level']:
            raise serializers.ValidationError("min_stock_level cannot exceed max_stock_level")
        return attrs


class InventoryItemUpdateSerializer(serializers.Serializer):
    """Serializer for PATCH /items/<id>/; every field is optional."""
    min_stock_level = serializers.IntegerField(min_value=0, required=False)
    max_stock_level = serializers.IntegerField(min_value=1, required=False)
    reorder_point = serializers.IntegerField(min_value=0, required=False)
    location = serializers.CharField(max_length=50, required=False, allow_blank=True)
    barcode = serializers.CharField(max_length=100, required=False, allow_blank=True)
    sku = serializers.CharField(max_length=100, required=False)
    cost_price = serializers.DecimalField(max_digits=12, decimal_places=2, min_value=Decimal('0'), required=False)
    status = serializers.ChoiceField(choices=StockStatus.choices, required=False)


class ItemSearchSerializer(serializers.Serializer):
    """Query parameters for GET /items/"""
    product_id = serializers.UUIDField(required=False)
    variant_id = serializers.UUIDField(required=False)
    warehouse_id = serializers.UUIDField(required=False)
    status = serializers.ChoiceField(choices=StockStatus.choices, required=False)
    sku = serializers.CharField(required=False)
    barcode = serializers.CharField(required=False)
    min_quantity = serializers.IntegerField(min_value=0, required=False)
    max_quantity = serializers.IntegerField(min_value=0, required=False)
    low_stock = serializers.BooleanField(required=False, default=False)
    out_of_stock = serializers.BooleanField(required=False, default=False)
    location = serializers.CharField(required=False)
    q = serializers.CharField(required=False)
    sort_by = serializers.CharField(required=False)
    sort_order = serializers.ChoiceField(choices=['asc', 'desc'], required=False, default='asc')

    def to_filters(self):
        data = dict(self.validated_data)
        data['search_term'] = data.pop('q', '')
        return ItemFilters(**data)


# =============================================================================
# Availability / allocation
# =============================================================================

class AvailabilityRequestSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    variant_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    quantity = serializers.IntegerField(min_value=1)
    warehouse_id = serializers.UUIDField(required=False, allow_null=True, default=None)


class WarehouseStockSerializer(serializers.Serializer):
    warehouse_id = serializers.UUIDField()
    warehouse_name = serializers.CharField()
    warehouse_code = serializers.CharField()
    inventory_item_id = serializers.UUIDField()
    available = serializers.IntegerField()
    reserved = serializers.IntegerField()
    total = serializers.IntegerField()
    location = serializers.CharField()


class AllocationSerializer(serializers.Serializer):
    warehouse_id = serializers.UUIDField()
    warehouse_name = serializers.CharField()
    inventory_item_id = serializers.UUIDField()
    quantity = serializers.IntegerField()


class AllocationPlanSerializer(serializers.Serializer):
    """Renders an AllocationPlan."""
    product_id = serializers.UUIDField()
    variant_id = serializers.UUIDField(allow_null=True)
    requested_quantity = serializers.IntegerField()
    is_available = serializers.BooleanField()
    total_available = serializers.IntegerField()
    total_reserved = serializers.IntegerField()
    per_warehouse = WarehouseStockSerializer(many=True)
    allocation_suggestion = AllocationSerializer(many=True, source='allocations')


# =============================================================================
# Movements
# =============================================================================

class StockMovementSerializer(serializers.ModelSerializer):
    """Serializer for StockMovement; the item may no longer exist."""
    inventory_item_id = serializers.UUIDField(read_only=True)

    class Meta:
        model = StockMovement
        fields = [
            'id', 'inventory_item_id', 'movement_type', 'quantity',
            'previous_quantity', 'new_quantity',
            'reference_type', 'reference_id', 'reason', 'notes',
            'unit_cost', 'total_cost', 'user_id', 'user_name',
            'movement_date', 'created_at'
        ]
        read_only_fields = fields


class MovementQuerySerializer(serializers.Serializer):
    """Query parameters for GET /movements/"""
    inventory_item_id = serializers.UUIDField(required=False)
    warehouse_id = serializers.UUIDField(required=False)
    movement_type = serializers.ChoiceField(choices=MovementType.choices, required=False)
    reference_type = serializers.CharField(required=False)
    reference_id = serializers.UUIDField(required=False)
    start_date = serializers.DateTimeField(required=False)
    end_date = serializers.DateTimeField(required=False)
    user_id = serializers.UUIDField(required=False)

    def to_filters(self):
        return MovementFilters(**self.validated_data)


class MovementSummaryQuerySerializer(serializers.Serializer):
    start_date = serializers.DateTimeField(required=False, default=None)
    end_date = serializers.DateTimeField(required=False, default=None)
    warehouse_id = serializers.UUIDField(required=False, default=None)

    def validate(self, attrs):
        if attrs['start_date'] and attrs['end_date'] and attrs['start_date'] > attrs['end_date']:
            raise serializers.ValidationError("start_date must be before end_date")
        return attrs


class AdjustStockSerializer(serializers.Serializer):
    """
    Serializer for POST /adjust/

    quantity is signed: positive adds stock, negative removes it.
    """
    inventory_item_id = serializers.UUIDField()
    quantity = serializers.IntegerField()
    movement_type = serializers.ChoiceField(
        choices=[(t.value, t.label) for t in ADJUSTMENT_SIGNS],
        default=MovementType.ADJUSTMENT
    )
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    unit_cost = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0'),
        required=False, allow_null=True, default=None
    )
    reference_type = serializers.CharField(max_length=50, required=False, allow_blank=True, default='')
    reference_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    user_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    user_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')

    def validate_quantity(self, value):
        if value == 0:
            raise serializers.ValidationError("quantity cannot be zero")
        return value


class TransferSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    variant_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    from_warehouse_id = serializers.UUIDField()
    to_warehouse_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    notes = serializers.CharField(required=False, allow_blank=True, default='')
    user_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    user_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')

    def validate(self, attrs):
        if attrs['from_warehouse_id'] == attrs['to_warehouse_id']:
            raise serializers.ValidationError("source and destination warehouse must differ")
        return attrs


class BulkUpdateLineSerializer(serializers.Serializer):
    inventory_item_id = serializers.UUIDField()
    quantity = serializers.IntegerField()
    movement_type = serializers.ChoiceField(
        choices=[(t.value, t.label) for t in ADJUSTMENT_SIGNS],
        default=MovementType.ADJUSTMENT
    )
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    unit_cost = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0'),
        required=False, allow_null=True, default=None
    )


class BulkUpdateSerializer(serializers.Serializer):
    updates = BulkUpdateLineSerializer(many=True, allow_empty=False)
    user_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    user_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')


# =============================================================================
# Alerts
# =============================================================================

class StockAlertSerializer(serializers.ModelSerializer):
    inventory_item_id = serializers.UUIDField(read_only=True)
    sku = serializers.CharField(source='inventory_item.sku', read_only=True)

    class Meta:
        model = StockAlert
        fields = [
            'id', 'inventory_item_id', 'sku', 'alert_type', 'severity', 'message',
            'is_read', 'is_resolved', 'created_at', 'read_at', 'resolved_at'
        ]
        read_only_fields = fields


class AlertQuerySerializer(serializers.Serializer):
    warehouse_id = serializers.UUIDField(required=False)
    alert_type = serializers.ChoiceField(choices=StockAlert.AlertType.choices, required=False)
    severity = serializers.ChoiceField(choices=StockAlert.Severity.choices, required=False)
    unread_only = serializers.BooleanField(required=False, default=False)
    unresolved_only = serializers.BooleanField(required=False, default=False)

    def to_filters(self):
        return AlertFilters(**self.validated_data)


class AlertIdsSerializer(serializers.Serializer):
    alert_ids = serializers.ListField(child=serializers.UUIDField(), allow_empty=False)


class WarehouseQuerySerializer(serializers.Serializer):
    warehouse_id = serializers.UUIDField(required=False, default=None)

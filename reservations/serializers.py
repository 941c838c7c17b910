"""
Serializers for reservation models and requests.
"""
from decimal import Decimal

from rest_framework import serializers

from .models import StockReservation


class StockReservationSerializer(serializers.ModelSerializer):
    """Serializer for StockReservation with its derived state."""
    inventory_item_id = serializers.UUIDField(read_only=True)
    state = serializers.CharField(read_only=True)
    total_price = serializers.DecimalField(max_digits=14, decimal_places=2, read_only=True)

    class Meta:
        model = StockReservation
        fields = [
            'id', 'reservation_code', 'inventory_item_id', 'order_id',
            'quantity', 'reserved_price', 'total_price',
            'is_active', 'state',
            'expires_at', 'released_at', 'fulfilled_at',
            'created_at', 'updated_at'
        ]
        read_only_fields = fields


class ReserveSerializer(serializers.Serializer):
    """
    Serializer for POST /reserve/

    Request format:
    {
        "product_id": "<uuid>",
        "order_id": "<uuid>",
        "quantity": 5,
        "preferred_warehouse_id": null,
        "ttl_hours": 24
    }

    ttl_hours of 0 or null uses the configured default.
    """
    product_id = serializers.UUIDField()
    variant_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    order_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1)
    preferred_warehouse_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    ttl_hours = serializers.IntegerField(min_value=0, required=False, allow_null=True, default=None)
    reserved_price = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0'), default=Decimal('0.00')
    )
    user_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    user_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')


class BulkReserveLineSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    variant_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    quantity = serializers.IntegerField(min_value=1)
    reserved_price = serializers.DecimalField(
        max_digits=12, decimal_places=2, min_value=Decimal('0'), default=Decimal('0.00')
    )
    preferred_warehouse_id = serializers.UUIDField(required=False, allow_null=True, default=None)


class BulkReserveSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()
    lines = BulkReserveLineSerializer(many=True, allow_empty=False)
    ttl_hours = serializers.IntegerField(min_value=0, required=False, allow_null=True, default=None)
    user_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    user_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')


class ReleaseSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, allow_blank=True, default='')
    user_id = serializers.UUIDField(required=False, allow_null=True, default=None)
    user_name = serializers.CharField(max_length=100, required=False, allow_blank=True, default='')

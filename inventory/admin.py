"""
Django Admin configuration for inventory models.

Quantities and the movement ledger are read-only here; stock changes go
through the API so they are locked and recorded.
"""
from django.contrib import admin
from .models import Warehouse, InventoryItem, StockMovement, StockAlert


@admin.register(Warehouse)
class WarehouseAdmin(admin.ModelAdmin):
    list_display = ['code', 'name', 'priority', 'is_active', 'is_default', 'capacity', 'item_count', 'created_at']
    list_filter = ['is_active', 'is_default', 'country']
    search_fields = ['code', 'name', 'city']
    ordering = ['priority', 'name']

    def item_count(self, obj):
        return obj.inventory_items.count()
    item_count.short_description = 'Inventory Items'


class StockAlertInline(admin.TabularInline):
    model = StockAlert
    extra = 0
    readonly_fields = ['alert_type', 'severity', 'message', 'is_read', 'is_resolved', 'created_at']
    can_delete = False


@admin.register(InventoryItem)
class InventoryItemAdmin(admin.ModelAdmin):
    list_display = [
        'sku', 'warehouse', 'quantity_available', 'quantity_reserved',
        'quantity_total', 'status', 'is_low_stock', 'updated_at'
    ]
    list_filter = ['status', 'warehouse', 'updated_at']
    search_fields = ['sku', 'barcode', 'location', 'product_id']
    ordering = ['warehouse__priority', 'sku']
    raw_id_fields = ['warehouse']
    readonly_fields = [
        'quantity_available', 'quantity_reserved', 'quantity_total', 'status',
        'last_restocked_at', 'last_sold_at', 'created_at', 'updated_at'
    ]
    inlines = [StockAlertInline]

    def is_low_stock(self, obj):
        return obj.is_low_stock
    is_low_stock.boolean = True
    is_low_stock.short_description = 'Low Stock'


@admin.register(StockMovement)
class StockMovementAdmin(admin.ModelAdmin):
    list_display = [
        'movement_date', 'movement_type', 'inventory_item_id', 'quantity',
        'previous_quantity', 'new_quantity', 'reference_type', 'user_name'
    ]
    list_filter = ['movement_type', 'reference_type', 'movement_date']
    search_fields = ['reason', 'reference_id', 'user_name']
    ordering = ['-movement_date']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(StockAlert)
class StockAlertAdmin(admin.ModelAdmin):
    list_display = ['created_at', 'alert_type', 'severity', 'inventory_item', 'is_read', 'is_resolved']
    list_filter = ['alert_type', 'severity', 'is_read', 'is_resolved']
    search_fields = ['message', 'inventory_item__sku']
    ordering = ['-created_at']
    raw_id_fields = ['inventory_item']
    readonly_fields = ['created_at', 'read_at', 'resolved_at']

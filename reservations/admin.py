"""
Django Admin configuration for reservation models.
"""
from django.contrib import admin
from .models import StockReservation


@admin.register(StockReservation)
class StockReservationAdmin(admin.ModelAdmin):
    list_display = [
        'reservation_code', 'order_id', 'inventory_item_id', 'quantity',
        'state', 'expires_at', 'created_at'
    ]
    list_filter = ['is_active', 'created_at', 'expires_at']
    search_fields = ['reservation_code', 'order_id']
    ordering = ['-created_at']

    def state(self, obj):
        return obj.state.label
    state.short_description = 'State'

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

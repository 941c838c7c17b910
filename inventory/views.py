"""
Inventory API Views.

Implements:
- Item CRUD and search
- Availability check with allocation suggestion (rate limited)
- Stock adjustments, transfers and bulk updates
- Warehouse registry, movement history and reports
- Stock alerts

Views stay thin: serializers validate, the services in core.container do the
work, and InventoryError codes are mapped to HTTP status here.
"""
import logging

from django.apps import apps
from rest_framework import exceptions, status
from rest_framework.pagination import LimitOffsetPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from core.rate_limiting import RateLimitMixin

from .exceptions import InventoryError
from .serializers import (
    AdjustStockSerializer,
    AlertIdsSerializer,
    AlertQuerySerializer,
    AllocationPlanSerializer,
    AvailabilityRequestSerializer,
    BulkUpdateSerializer,
    InventoryItemCreateSerializer,
    InventoryItemSerializer,
    InventoryItemUpdateSerializer,
    ItemSearchSerializer,
    MovementQuerySerializer,
    MovementSummaryQuerySerializer,
    StockAlertSerializer,
    StockMovementSerializer,
    TransferSerializer,
    WarehouseQuerySerializer,
    WarehouseSerializer,
    WarehouseUpdateSerializer,
)

logger = logging.getLogger(__name__)

CONFLICT_CODES = {
    'insufficient_stock',
    'duplicate_reservation',
    'duplicate_item',
    'duplicate_warehouse',
    'active_reservations',
    'reservation_expired',
}


def error_status(error: InventoryError) -> int:
    if error.code.endswith('_not_found'):
        return status.HTTP_404_NOT_FOUND
    if error.code in CONFLICT_CODES:
        return status.HTTP_409_CONFLICT
    return status.HTTP_400_BAD_REQUEST


class InventoryAPIView(APIView):
    """
    Base view for the service-backed endpoints.

    Translates InventoryError into {"error": code, "detail": message} and
    answers unexpected failures with a logged 500.
    """

    def get_container(self):
        return apps.get_app_config('core').container

    def handle_exception(self, exc):
        if isinstance(exc, InventoryError):
            logger.warning(f"{self.request.method} {self.request.path} rejected: {exc.code}: {exc.message}")
            return Response(exc.as_dict(), status=error_status(exc))
        if isinstance(exc, exceptions.ValidationError):
            return Response(
                {'error': 'validation_error', 'detail': exc.detail},
                status=status.HTTP_400_BAD_REQUEST
            )
        if isinstance(exc, exceptions.APIException):
            return super().handle_exception(exc)

        logger.exception(f"Unexpected error in {self.request.method} {self.request.path}: {exc}")
        return Response(
            {'error': 'server_error', 'detail': 'An unexpected error occurred'},
            status=status.HTTP_500_INTERNAL_SERVER_ERROR
        )

    def validated(self, serializer_class, data):
        serializer = serializer_class(data=data)
        serializer.is_valid(raise_exception=True)
        return serializer

    def paginated(self, fetch, serializer_class):
        """Call fetch(limit=, offset=) -> (rows, total) and render one page."""
        paginator = LimitOffsetPagination()
        limit = paginator.get_limit(self.request)
        offset = paginator.get_offset(self.request)
        rows, total = fetch(limit=limit, offset=offset)
        return Response({
            'count': total,
            'limit': limit,
            'offset': offset,
            'results': serializer_class(rows, many=True).data,
        })


# =============================================================================
# Item Views
# =============================================================================

class ItemListCreateView(InventoryAPIView):
    """
    GET: Search inventory items
    POST: Stock a product at a warehouse

    Query Parameters (GET):
        - product_id, variant_id, warehouse_id, status, sku, barcode, location
        - min_quantity / max_quantity: Range on quantity_available
        - low_stock / out_of_stock: true to restrict
        - q: Free text over SKU, barcode and location
        - sort_by, sort_order (asc/desc), limit, offset
    """

    def get(self, request):
        query = self.validated(ItemSearchSerializer, request.query_params)
        service = self.get_container().inventory
        return self.paginated(
            lambda limit, offset: service.search(query.to_filters(), limit=limit, offset=offset),
            InventoryItemSerializer
        )

    def post(self, request):
        data = dict(self.validated(InventoryItemCreateSerializer, request.data).validated_data)
        item = self.get_container().inventory.create_item(
            data.pop('product_id'),
            data.pop('warehouse_id'),
            data.pop('sku'),
            **data
        )
        return Response(InventoryItemSerializer(item).data, status=status.HTTP_201_CREATED)


class ItemDetailView(InventoryAPIView):
    """
    GET: Retrieve an item
    PATCH: Update levels, location, identifiers, cost or backorder status
    DELETE: Delete an item without active reservations
    """

    def get(self, request, pk):
        item = self.get_container().inventory.get_item(pk)
        return Response(InventoryItemSerializer(item).data)

    def patch(self, request, pk):
        changes = self.validated(InventoryItemUpdateSerializer, request.data).validated_data
        item = self.get_container().inventory.update_item(pk, **changes)
        return Response(InventoryItemSerializer(item).data)

    def delete(self, request, pk):
        self.get_container().inventory.delete_item(pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


class CheckAvailabilityView(RateLimitMixin, InventoryAPIView):
    """
    POST: Check availability of a product and suggest an allocation.

    Request Body:
    {
        "product_id": "<uuid>",
        "variant_id": null,
        "quantity": 12,
        "warehouse_id": null
    }

    Rate limited per client IP.
    """
    rate_limit_scope = 'check_availability'

    def post(self, request):
        data = self.validated(AvailabilityRequestSerializer, request.data).validated_data
        plan = self.get_container().inventory.check_availability(
            data['product_id'],
            data['quantity'],
            variant_id=data['variant_id'],
            warehouse_id=data['warehouse_id'],
        )
        return Response(AllocationPlanSerializer(plan).data)


# =============================================================================
# Stock Change Views
# =============================================================================

class AdjustStockView(InventoryAPIView):
    """
    POST: Apply a signed stock adjustment.

    Returns:
        - 201: The recorded movement
        - 404: Item not found
        - 409: Not enough unreserved stock to remove
    """

    def post(self, request):
        data = dict(self.validated(AdjustStockSerializer, request.data).validated_data)
        movement = self.get_container().inventory.adjust_stock(
            data.pop('inventory_item_id'),
            data.pop('quantity'),
            **data
        )
        return Response(StockMovementSerializer(movement).data, status=status.HTTP_201_CREATED)


class TransferView(InventoryAPIView):
    """POST: Move unreserved stock between warehouses."""

    def post(self, request):
        data = dict(self.validated(TransferSerializer, request.data).validated_data)
        movements = self.get_container().inventory.transfer(
            data.pop('product_id'),
            data.pop('from_warehouse_id'),
            data.pop('to_warehouse_id'),
            data.pop('quantity'),
            **data
        )
        return Response(
            {'movements': StockMovementSerializer(movements, many=True).data},
            status=status.HTTP_201_CREATED
        )


class BulkUpdateView(InventoryAPIView):
    """
    POST: Apply several adjustments; each line succeeds or fails on its own.
    """

    def post(self, request):
        data = self.validated(BulkUpdateSerializer, request.data).validated_data
        result = self.get_container().inventory.bulk_update(
            [dict(line) for line in data['updates']],
            user_id=data['user_id'],
            user_name=data['user_name'],
        )
        return Response(result)


# =============================================================================
# Warehouse Views
# =============================================================================

class WarehouseListCreateView(InventoryAPIView):
    """
    GET: List warehouses by priority (active_only=true to hide inactive)
    POST: Register a warehouse
    """

    def get(self, request):
        active_only = request.query_params.get('active_only', '').lower() == 'true'
        warehouses = self.get_container().warehouses.list(active_only=active_only)
        return Response(WarehouseSerializer(warehouses, many=True).data)

    def post(self, request):
        data = dict(self.validated(WarehouseSerializer, request.data).validated_data)
        warehouse = self.get_container().warehouses.create(data.pop('code'), data.pop('name'), **data)
        return Response(WarehouseSerializer(warehouse).data, status=status.HTTP_201_CREATED)


class WarehouseDetailView(InventoryAPIView):
    """
    GET: Retrieve a warehouse with its capacity figures
    PATCH: Update a warehouse
    """

    def get(self, request, pk):
        registry = self.get_container().warehouses
        warehouse = registry.get(pk)
        data = WarehouseSerializer(warehouse).data
        data['capacity_report'] = registry.capacity_report(warehouse.id)
        return Response(data)

    def patch(self, request, pk):
        serializer = WarehouseUpdateSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        warehouse = self.get_container().warehouses.update(pk, **serializer.validated_data)
        return Response(WarehouseSerializer(warehouse).data)


class WarehouseSummaryView(InventoryAPIView):
    """GET: Inventory summary for one warehouse."""

    def get(self, request, pk):
        summary = self.get_container().warehouses.inventory_summary(pk)
        summary['warehouse'] = WarehouseSerializer(summary['warehouse']).data
        summary['recent_movements'] = StockMovementSerializer(summary['recent_movements'], many=True).data
        return Response(summary)


# =============================================================================
# Movement and Report Views
# =============================================================================

class MovementListView(InventoryAPIView):
    """
    GET: Movement history, newest first.

    Query Parameters:
        - inventory_item_id, warehouse_id, movement_type, reference_type,
          reference_id, start_date, end_date, user_id, limit, offset
    """

    def get(self, request):
        query = self.validated(MovementQuerySerializer, request.query_params)
        service = self.get_container().inventory
        return self.paginated(
            lambda limit, offset: service.movement_history(query.to_filters(), limit=limit, offset=offset),
            StockMovementSerializer
        )


class MovementSummaryView(InventoryAPIView):
    """GET: Aggregated movements (default: last 30 days)."""

    def get(self, request):
        data = self.validated(MovementSummaryQuerySerializer, request.query_params).validated_data
        summary = self.get_container().inventory.movement_summary(
            start_date=data['start_date'],
            end_date=data['end_date'],
            warehouse_id=data['warehouse_id'],
        )
        return Response(summary)


class ValuationView(InventoryAPIView):
    """GET: Stock valuation at cost, optionally for one warehouse."""

    def get(self, request):
        warehouse_id = self.validated(WarehouseQuerySerializer, request.query_params).validated_data['warehouse_id']
        if warehouse_id is not None:
            warehouse_id = self.get_container().warehouses.get(warehouse_id).id
        return Response(self.get_container().inventory.valuation(warehouse_id=warehouse_id))


# =============================================================================
# Alert Views
# =============================================================================

class AlertListView(InventoryAPIView):
    """GET: Stock alerts, newest first."""

    def get(self, request):
        query = self.validated(AlertQuerySerializer, request.query_params)
        alerts = self.get_container().alerts
        return self.paginated(
            lambda limit, offset: alerts.list(query.to_filters(), limit=limit, offset=offset),
            StockAlertSerializer
        )


class GenerateAlertsView(InventoryAPIView):
    """POST: Run the low/out-of-stock scan now."""

    def post(self, request):
        return Response(self.get_container().alerts.generate_alerts())


class AlertReadView(InventoryAPIView):
    def post(self, request, pk):
        alert = self.get_container().alerts.mark_read(pk)
        return Response(StockAlertSerializer(alert).data)


class AlertResolveView(InventoryAPIView):
    def post(self, request, pk):
        alert = self.get_container().alerts.mark_resolved(pk)
        return Response(StockAlertSerializer(alert).data)


class BulkAlertReadView(InventoryAPIView):
    def post(self, request):
        alert_ids = self.validated(AlertIdsSerializer, request.data).validated_data['alert_ids']
        return Response({'updated': self.get_container().alerts.bulk_mark_read(alert_ids)})


class BulkAlertResolveView(InventoryAPIView):
    def post(self, request):
        alert_ids = self.validated(AlertIdsSerializer, request.data).validated_data['alert_ids']
        return Response({'updated': self.get_container().alerts.bulk_mark_resolved(alert_ids)})

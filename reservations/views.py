"""
Reservation API Views.

Implements:
- POST /reserve/ - Reserve stock for an order (rate limited)
- GET /reservations/ - Active reservations
- GET/DELETE /reservations/{id}/ - Detail / release
- POST /reservations/{id}/fulfill/ - Consume a reservation
- GET/DELETE /orders/{order_id}/reservations/ - Reservations of an order / release them all
- POST /admin/bulk-reserve/ - Best-effort reservation of several lines
"""
import logging

from rest_framework import status
from rest_framework.response import Response

from core.rate_limiting import RateLimitMixin
from inventory.serializers import WarehouseQuerySerializer
from inventory.views import InventoryAPIView

from .serializers import (
    BulkReserveSerializer,
    ReleaseSerializer,
    ReserveSerializer,
    StockReservationSerializer,
)

logger = logging.getLogger(__name__)


class ReserveView(RateLimitMixin, InventoryAPIView):
    """
    POST: Reserve stock for an order.

    Returns:
        - 201: One reservation per warehouse used
        - 400: Validation error
        - 409: Insufficient stock or duplicate reservation
    """
    rate_limit_scope = 'reserve'

    def post(self, request):
        data = dict(self.validated(ReserveSerializer, request.data).validated_data)
        reservations = self.get_container().reservations.reserve(
            data.pop('product_id'),
            data.pop('order_id'),
            data.pop('quantity'),
            **data
        )
        return Response(
            {
                'reservations': StockReservationSerializer(reservations, many=True).data,
                'total_quantity': sum(r.quantity for r in reservations),
            },
            status=status.HTTP_201_CREATED
        )


class ActiveReservationListView(InventoryAPIView):
    """
    GET: Active reservations, soonest expiry first.

    Query Parameters:
        - warehouse_id: Filter by warehouse
        - limit, offset
    """

    def get(self, request):
        warehouse_id = self.validated(WarehouseQuerySerializer, request.query_params).validated_data['warehouse_id']
        manager = self.get_container().reservations
        if warehouse_id is not None:
            warehouse_id = self.get_container().warehouses.get(warehouse_id).id
        return self.paginated(
            lambda limit, offset: manager.active(warehouse_id=warehouse_id, limit=limit, offset=offset),
            StockReservationSerializer
        )


class ReservationDetailView(InventoryAPIView):
    """
    GET: Retrieve a reservation
    DELETE: Release it (no-op if already inactive)
    """

    def get(self, request, pk):
        reservation = self.get_container().reservations.get(pk)
        return Response(StockReservationSerializer(reservation).data)

    def delete(self, request, pk):
        data = self.validated(ReleaseSerializer, request.data).validated_data
        reservation = self.get_container().reservations.release(
            pk,
            reason=data['reason'] or 'Reservation released',
            user_id=data['user_id'],
            user_name=data['user_name'],
        )
        return Response(StockReservationSerializer(reservation).data)


class FulfillReservationView(InventoryAPIView):
    """
    POST: Fulfill a reservation; the units leave the warehouse.

    Returns:
        - 200: The fulfilled reservation
        - 404: Reservation not found
        - 409: Reservation released, already fulfilled or expired
    """

    def post(self, request, pk):
        data = self.validated(ReleaseSerializer, request.data).validated_data
        reservation = self.get_container().reservations.fulfill(
            pk,
            user_id=data['user_id'],
            user_name=data['user_name'],
        )
        return Response(StockReservationSerializer(reservation).data)


class OrderReservationsView(InventoryAPIView):
    """
    GET: Reservations of an order (active_only=true to hide finished ones)
    DELETE: Release every active reservation of the order
    """

    def get(self, request, order_id):
        active_only = request.query_params.get('active_only', '').lower() == 'true'
        reservations = self.get_container().reservations.for_order(order_id, active_only=active_only)
        return Response(StockReservationSerializer(reservations, many=True).data)

    def delete(self, request, order_id):
        data = self.validated(ReleaseSerializer, request.data).validated_data
        released = self.get_container().reservations.release_order(
            order_id,
            reason=data['reason'] or 'Order cancelled',
            user_id=data['user_id'],
            user_name=data['user_name'],
        )
        return Response({
            'order_id': order_id,
            'released': StockReservationSerializer(released, many=True).data,
        })


class BulkReserveView(InventoryAPIView):
    """
    POST: Reserve several lines of an order; each line succeeds or fails on its own.
    """

    def post(self, request):
        data = self.validated(BulkReserveSerializer, request.data).validated_data
        result = self.get_container().reservations.bulk_reserve(
            data['order_id'],
            [dict(line) for line in data['lines']],
            ttl_hours=data['ttl_hours'],
            user_id=data['user_id'],
            user_name=data['user_name'],
        )
        for line in result['results']:
            if line['success']:
                line['reservations'] = StockReservationSerializer(line['reservations'], many=True).data
        return Response(result)

"""
URL routing for reservation API endpoints.
"""
from django.urls import path
from . import views

app_name = 'reservations'

urlpatterns = [
    path('reserve/', views.ReserveView.as_view(), name='reserve'),
    path('reservations/', views.ActiveReservationListView.as_view(), name='reservation-list'),
    path('reservations/<uuid:pk>/', views.ReservationDetailView.as_view(), name='reservation-detail'),
    path('reservations/<uuid:pk>/fulfill/', views.FulfillReservationView.as_view(), name='reservation-fulfill'),
    path('orders/<uuid:order_id>/reservations/', views.OrderReservationsView.as_view(), name='order-reservations'),
    path('admin/bulk-reserve/', views.BulkReserveView.as_view(), name='bulk-reserve'),
]

"""
URL routing for inventory API endpoints.
"""
from django.urls import path
from . import views

app_name = 'inventory'

urlpatterns = [
    # Items
    path('items/', views.ItemListCreateView.as_view(), name='item-list'),
    path('items/<uuid:pk>/', views.ItemDetailView.as_view(), name='item-detail'),
    path('check-availability/', views.CheckAvailabilityView.as_view(), name='check-availability'),

    # Stock changes
    path('adjust/', views.AdjustStockView.as_view(), name='adjust-stock'),
    path('transfer/', views.TransferView.as_view(), name='transfer-stock'),

    # Warehouses
    path('warehouses/', views.WarehouseListCreateView.as_view(), name='warehouse-list'),
    path('warehouses/<uuid:pk>/', views.WarehouseDetailView.as_view(), name='warehouse-detail'),
    path('warehouses/<uuid:pk>/summary/', views.WarehouseSummaryView.as_view(), name='warehouse-summary'),

    # Movements and reports
    path('movements/', views.MovementListView.as_view(), name='movement-list'),
    path('movements/summary/', views.MovementSummaryView.as_view(), name='movement-summary'),
    path('valuation/', views.ValuationView.as_view(), name='valuation'),

    # Admin
    path('admin/bulk-update/', views.BulkUpdateView.as_view(), name='bulk-update'),
    path('admin/alerts/', views.AlertListView.as_view(), name='alert-list'),
    path('admin/alerts/generate/', views.GenerateAlertsView.as_view(), name='alert-generate'),
    path('admin/alerts/bulk-read/', views.BulkAlertReadView.as_view(), name='alert-bulk-read'),
    path('admin/alerts/bulk-resolve/', views.BulkAlertResolveView.as_view(), name='alert-bulk-resolve'),
    path('admin/alerts/<uuid:pk>/read/', views.AlertReadView.as_view(), name='alert-read'),
    path('admin/alerts/<uuid:pk>/resolve/', views.AlertResolveView.as_view(), name='alert-resolve'),
]

"""
Alert Generator - periodic scan for low and out-of-stock items.
"""
import logging
from datetime import timedelta
from typing import Optional

from django.core.exceptions import ImproperlyConfigured
from django.db import DatabaseError, transaction
from django.utils import timezone

from .models import StockAlert
from .repositories import AlertFilters, InventoryItemRepository, StockAlertRepository

logger = logging.getLogger(__name__)


class AlertGenerator:
    """
    Creates StockAlert rows for items at or below their reorder point.

    With deduplicate=False every scan adds one alert per matching item; with
    deduplicate=True an item that still has an unresolved alert of the same
    type is skipped.
    """

    def __init__(
        self,
        items: Optional[InventoryItemRepository] = None,
        alerts: Optional[StockAlertRepository] = None,
        batch_size: int = 100,
        deduplicate: bool = False,
    ):
        if items is None:
            raise ImproperlyConfigured("AlertGenerator requires an item repository")
        if alerts is None:
            raise ImproperlyConfigured("AlertGenerator requires an alert repository")
        self.items = items
        self.alerts = alerts
        self.batch_size = batch_size
        self.deduplicate = deduplicate

    def generate_alerts(self, warehouse_id=None):
        result = {
            'alerts_created': 0,
            'low_stock_count': 0,
            'out_of_stock_count': 0,
            'generated_at': timezone.now(),
            'errors': [],
        }

        for item in self._scan(self.items.low_stock, warehouse_id):
            result['low_stock_count'] += 1
            self._emit(
                item,
                StockAlert.AlertType.LOW_STOCK,
                StockAlert.Severity.MEDIUM,
                f"Low stock alert: {item.sku} has {item.quantity_total} units "
                f"(reorder point: {item.reorder_point})",
                result,
            )

        for item in self._scan(self.items.out_of_stock, warehouse_id):
            result['out_of_stock_count'] += 1
            self._emit(
                item,
                StockAlert.AlertType.OUT_OF_STOCK,
                StockAlert.Severity.HIGH,
                f"Out of stock alert: {item.sku} is out of stock",
                result,
            )

        logger.info(
            f"Alert scan found {result['low_stock_count']} low stock and {result['out_of_stock_count']} out of stock item(s), "
            f"created {result['alerts_created']} alert(s), "
            f"{len(result['errors'])} error(s)"
        )
        return result

    def _scan(self, query, warehouse_id):
        offset = 0
        while True:
            page, total = query(warehouse_id=warehouse_id, limit=self.batch_size, offset=offset)
            yield from page
            offset += len(page)
            if not page or offset >= total:
                break

    def _emit(self, item, alert_type, severity, message, result):
        if self.deduplicate and self.alerts.has_unresolved(item.id, alert_type):
            return
        try:
            with transaction.atomic():
                self.alerts.create(
                    inventory_item_id=item.id,
                    alert_type=alert_type,
                    severity=severity,
                    message=message,
                )
        except DatabaseError as e:
            logger.exception(f"Failed to create {alert_type} alert for item {item.id}")
            result['errors'].append({
                'inventory_item_id': str(item.id),
                'alert_type': alert_type,
                'error': str(e),
            })
            return
        result['alerts_created'] += 1

    # =========================================================================
    # Read / resolve
    # =========================================================================

    def list(self, filters: AlertFilters, limit=50, offset=0):
        return self.alerts.list(filters, limit=limit, offset=offset)

    def get(self, alert_id):
        return self.alerts.get(alert_id)

    def for_item(self, item_id, unread_only=False):
        return self.alerts.for_item(item_id, unread_only=unread_only)

    def mark_read(self, alert_id):
        alert = self.alerts.get(alert_id)
        if not alert.is_read:
            alert.mark_read()
            self.alerts.save(alert, ['is_read', 'read_at'])
        return alert

    def mark_resolved(self, alert_id):
        alert = self.alerts.get(alert_id)
        if not alert.is_resolved:
            alert.mark_resolved()
            self.alerts.save(alert, ['is_resolved', 'resolved_at'])
            logger.info(f"Resolved {alert.alert_type} alert {alert.id}")
        return alert

    def bulk_mark_read(self, alert_ids) -> int:
        return self.alerts.mark_read(alert_ids, timezone.now())

    def bulk_mark_resolved(self, alert_ids) -> int:
        updated = self.alerts.mark_resolved(alert_ids, timezone.now())
        logger.info(f"Resolved {updated} alert(s)")
        return updated

    def purge_resolved(self, older_than_days: int) -> int:
        cutoff = timezone.now() - timedelta(days=older_than_days)
        deleted = self.alerts.purge_resolved(cutoff)
        logger.info(f"Purged {deleted} resolved alerts older than {cutoff:%Y-%m-%d}")
        return deleted

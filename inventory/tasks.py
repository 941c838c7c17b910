"""
Celery tasks for inventory maintenance and order-service notifications.

Tasks:
    - generate_stock_alerts: Periodic low/out-of-stock scan
    - purge_resolved_alerts: Retention purge of resolved alerts
    - purge_old_movements: Retention purge of the movement ledger
    - notify_order_allocation: Tell the order service where stock was reserved
    - update_order_stock_status: Tell the order service an order's stock status
"""
import logging

from celery import shared_task
from django.apps import apps
from django.conf import settings

from .integrations import HttpOrderSystem

logger = logging.getLogger(__name__)


def _container():
    return apps.get_app_config('core').container


def _order_system():
    options = settings.INVENTORY
    return HttpOrderSystem(options['ORDER_SERVICE_URL'], timeout=options['HTTP_TIMEOUT_SECONDS'])


@shared_task
def generate_stock_alerts():
    """
    Periodic scan creating low/out-of-stock alerts.

    Returns:
        Dict with alert counts (JSON serializable)
    """
    result = _container().alerts.generate_alerts()
    logger.info(f"[CELERY] Stock alert scan: {result['alerts_created']} alert(s) created")
    return {
        'alerts_created': result['alerts_created'],
        'low_stock_count': result['low_stock_count'],
        'out_of_stock_count': result['out_of_stock_count'],
        'generated_at': result['generated_at'].isoformat(),
        'errors': result['errors'],
    }


@shared_task
def purge_resolved_alerts(older_than_days=None):
    days = older_than_days or settings.INVENTORY['ALERT_RETENTION_DAYS']
    return {'deleted': _container().alerts.purge_resolved(days)}


@shared_task
def purge_old_movements(older_than_days=None):
    days = older_than_days or settings.INVENTORY['MOVEMENT_RETENTION_DAYS']
    return {'deleted': _container().ledger.purge(days)}


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def notify_order_allocation(self, order_id: str, allocations):
    """
    Push a committed allocation to the order service.

    Args:
        order_id: Order the stock was reserved for
        allocations: List of dicts, one per reservation
    """
    order_system = _order_system()
    try:
        order_system.notify_allocation(order_id, allocations)
    finally:
        order_system.close()
    return {'status': 'sent', 'order_id': order_id, 'allocations': len(allocations)}


@shared_task(
    bind=True,
    max_retries=3,
    default_retry_delay=60,
    autoretry_for=(Exception,),
    retry_backoff=True
)
def update_order_stock_status(self, order_id: str, status: str, details=None):
    order_system = _order_system()
    try:
        order_system.update_stock_status(order_id, status, details or {})
    finally:
        order_system.close()
    return {'status': 'sent', 'order_id': order_id, 'stock_status': status}

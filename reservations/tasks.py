"""
Celery tasks for reservations.

Tasks:
    - sweep_expired_reservations: Periodic release of expired reservations
"""
import logging

from celery import shared_task
from django.apps import apps

logger = logging.getLogger(__name__)


@shared_task
def sweep_expired_reservations(batch_size=None):
    """
    Release active reservations past their expiry, oldest first.

    Args:
        batch_size: Maximum reservations to process in this run
            (defaults to INVENTORY['EXPIRY_SWEEP_BATCH_SIZE'])

    Returns:
        Dict with the number of reservations released
    """
    manager = apps.get_app_config('core').container.reservations
    released = manager.sweep_expired(batch_size)
    if released:
        logger.info(f"[CELERY] Released {released} expired reservation(s)")
    return {'released': released}

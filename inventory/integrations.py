"""
Collaborator services reached over the network.

ProductCatalog is consulted before an inventory item is created. OrderSystem
is told about allocations and stock status; those calls are fire-and-forget,
so the default wiring queues them on Celery (QueuedOrderSystem) and the task
talks HTTP (HttpOrderSystem) with retries.
"""
import logging
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx

logger = logging.getLogger(__name__)


@runtime_checkable
class ProductCatalog(Protocol):
    def exists(self, product_id, variant_id=None) -> bool: ...


@runtime_checkable
class OrderSystem(Protocol):
    def notify_allocation(self, order_id, allocations: List[Dict[str, Any]]) -> None: ...
    def update_stock_status(self, order_id, status: str, details: Optional[Dict[str, Any]] = None) -> None: ...


class HttpProductCatalog:
    """Client for the product service"""

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip('/')
        self.client = client or httpx.Client(timeout=timeout)

    def close(self):
        self.client.close()

    def exists(self, product_id, variant_id=None) -> bool:
        """
        True when the product (and variant, if given) is known to the catalog.

        Transport errors and unexpected statuses propagate as httpx errors.
        """
        url = f"{self.base_url}/api/v1/products/{product_id}"
        if variant_id is not None:
            url = f"{url}/variants/{variant_id}"

        response = self.client.get(url)
        if response.status_code == httpx.codes.NOT_FOUND:
            return False
        response.raise_for_status()
        return True


class HttpOrderSystem:
    """Client for the order service"""

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.Client] = None):
        self.base_url = base_url.rstrip('/')
        self.client = client or httpx.Client(timeout=timeout)

    def close(self):
        self.client.close()

    def notify_allocation(self, order_id, allocations):
        response = self.client.post(
            f"{self.base_url}/api/v1/orders/{order_id}/allocation",
            json={'order_id': str(order_id), 'allocations': allocations},
        )
        response.raise_for_status()
        logger.info(f"Notified order service of allocation for order {order_id}")

    def update_stock_status(self, order_id, status, details=None):
        response = self.client.put(
            f"{self.base_url}/api/v1/orders/{order_id}/stock-status",
            json={'order_id': str(order_id), 'status': status, 'details': details or {}},
        )
        response.raise_for_status()
        logger.info(f"Updated stock status of order {order_id} to {status}")


class QueuedOrderSystem:
    """OrderSystem that hands every call to a retrying Celery task."""

    def notify_allocation(self, order_id, allocations):
        from .tasks import notify_order_allocation
        notify_order_allocation.delay(str(order_id), allocations)

    def update_stock_status(self, order_id, status, details=None):
        from .tasks import update_order_stock_status
        update_order_stock_status.delay(str(order_id), status, details or {})

"""
Test doubles for the network collaborators and a container factory using them.
"""
import threading

from .container import InventoryContainer
from .locks import ItemLockRegistry


class FakeProductCatalog:
    """Knows every product unless `known` restricts it."""

    def __init__(self, known=None):
        self.known = {str(product_id) for product_id in known} if known is not None else None
        self.calls = []

    def exists(self, product_id, variant_id=None):
        self.calls.append((product_id, variant_id))
        return self.known is None or str(product_id) in self.known


class RecordingOrderSystem:
    """Records notifications; raises on every call when fail=True."""

    def __init__(self, fail=False):
        self.fail = fail
        self.allocations = []
        self.statuses = []
        self._lock = threading.Lock()

    def notify_allocation(self, order_id, allocations):
        if self.fail:
            raise RuntimeError("order service unavailable")
        with self._lock:
            self.allocations.append((order_id, allocations))

    def update_stock_status(self, order_id, status, details=None):
        if self.fail:
            raise RuntimeError("order service unavailable")
        with self._lock:
            self.statuses.append((order_id, status, details or {}))


def build_test_container(catalog=None, order_system=None, **options):
    return InventoryContainer(
        catalog=catalog or FakeProductCatalog(),
        order_system=order_system or RecordingOrderSystem(),
        locks=ItemLockRegistry(stripes=16),
        options=options,
    )

"""
Composition root: builds the services with their collaborators.

One container is created per process by core.apps.CoreConfig.ready() and
reached through apps.get_app_config('core').container. Tests build their own
with fake collaborators.
"""
from django.conf import settings

from inventory.alerts import AlertGenerator
from inventory.allocation import AllocationPlanner
from inventory.integrations import HttpProductCatalog, QueuedOrderSystem
from inventory.ledger import MovementLedger
from inventory.repositories import (
    DjangoInventoryItemRepository,
    DjangoStockAlertRepository,
    DjangoStockMovementRepository,
    DjangoWarehouseRepository,
)
from inventory.services import InventoryService
from inventory.stock import InventoryItemStore
from inventory.warehouses import WarehouseRegistry
from reservations.repositories import DjangoReservationRepository
from reservations.services import ReservationManager

from .locks import ItemLockRegistry


class InventoryContainer:
    """Process-scoped wiring of repositories, components and services."""

    def __init__(self, catalog, order_system, locks=None, options=None):
        options = {**settings.INVENTORY, **(options or {})}

        self.locks = locks or ItemLockRegistry()
        self.catalog = catalog
        self.order_system = order_system

        self.item_repository = DjangoInventoryItemRepository()
        self.warehouse_repository = DjangoWarehouseRepository()
        self.movement_repository = DjangoStockMovementRepository()
        self.alert_repository = DjangoStockAlertRepository()
        self.reservation_repository = DjangoReservationRepository()

        self.ledger = MovementLedger(movements=self.movement_repository)
        self.store = InventoryItemStore(
            items=self.item_repository,
            ledger=self.ledger,
            locks=self.locks,
        )
        self.planner = AllocationPlanner(items=self.item_repository)
        self.warehouses = WarehouseRegistry(
            warehouses=self.warehouse_repository,
            items=self.item_repository,
            ledger=self.ledger,
        )
        self.alerts = AlertGenerator(
            items=self.item_repository,
            alerts=self.alert_repository,
            batch_size=options['ALERT_SCAN_BATCH_SIZE'],
            deduplicate=options['ALERT_DEDUPLICATE'],
        )
        self.inventory = InventoryService(
            items=self.item_repository,
            store=self.store,
            ledger=self.ledger,
            planner=self.planner,
            warehouses=self.warehouses,
            alerts=self.alerts,
            catalog=self.catalog,
            reservations=self.reservation_repository,
        )
        self.reservations = ReservationManager(
            reservations=self.reservation_repository,
            items=self.item_repository,
            store=self.store,
            ledger=self.ledger,
            planner=self.planner,
            order_system=self.order_system,
            default_ttl_hours=options['DEFAULT_RESERVATION_TTL_HOURS'],
            min_ttl_hours=options['MIN_RESERVATION_TTL_HOURS'],
            max_ttl_hours=options['MAX_RESERVATION_TTL_HOURS'],
            sweep_batch_size=options['EXPIRY_SWEEP_BATCH_SIZE'],
            order_locks=ItemLockRegistry(),
        )
        self.options = options


def build_container():
    options = settings.INVENTORY
    catalog = HttpProductCatalog(
        options['PRODUCT_SERVICE_URL'],
        timeout=options['HTTP_TIMEOUT_SECONDS'],
    )
    return InventoryContainer(catalog=catalog, order_system=QueuedOrderSystem())

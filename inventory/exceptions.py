"""
Typed failures raised by the stock services.

Every error carries a stable, transport-independent ``code`` plus a
human-readable message. The API layer maps codes to HTTP status.
"""


class InventoryError(Exception):
    """Base class for stock business errors."""
    code = 'inventory_error'
    default_message = 'inventory operation failed'

    def __init__(self, message=None, **details):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def as_dict(self):
        return {'error': self.code, 'detail': self.message}


class InventoryValidationError(InventoryError):
    """Raised when request data is rejected before touching the store."""
    code = 'validation_error'
    default_message = 'invalid request'


class InsufficientStockError(InventoryError):
    """Raised when the requested quantity exceeds what is available."""
    code = 'insufficient_stock'
    default_message = 'insufficient stock available'

    def __init__(self, requested=None, available=None, message=None, **details):
        if message is None and requested is not None:
            message = f"insufficient stock available: requested {requested}, available {available}"
        super().__init__(message, requested=requested, available=available, **details)
        self.requested = requested
        self.available = available


class InvalidQuantityError(InventoryError):
    code = 'invalid_quantity'
    default_message = 'invalid quantity specified'


class InventoryNotFoundError(InventoryError):
    code = 'inventory_not_found'
    default_message = 'inventory item not found'


class WarehouseNotFoundError(InventoryError):
    code = 'warehouse_not_found'
    default_message = 'warehouse not found'


class ProductNotFoundError(InventoryError):
    code = 'product_not_found'
    default_message = 'product or variant does not exist'


class ReservationNotFoundError(InventoryError):
    code = 'reservation_not_found'
    default_message = 'stock reservation not found'


class ReservationExpiredError(InventoryError):
    code = 'reservation_expired'
    default_message = 'stock reservation has expired'


class DuplicateReservationError(InventoryError):
    code = 'duplicate_reservation'
    default_message = 'duplicate reservation exists'


class DuplicateItemError(InventoryError):
    code = 'duplicate_item'
    default_message = 'inventory item already exists for this product and warehouse'


class DuplicateWarehouseError(InventoryError):
    code = 'duplicate_warehouse'
    default_message = 'warehouse code already in use'


class ActiveReservationsError(InventoryError):
    code = 'active_reservations'
    default_message = 'cannot delete inventory item with active reservations'


class AlertNotFoundError(InventoryError):
    code = 'alert_not_found'
    default_message = 'stock alert not found'

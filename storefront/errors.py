"""
Cart Errors

Error messages and exception types shared by the cart core.
"""

# Cart errors
ERROR_INVALID_QUANTITY = "Quantity must be a positive integer"
ERROR_INVALID_PRICE = "Price must be a non-negative number"
ERROR_INVALID_PRODUCT_ID = "product_id must be a non-empty string"

# Persistence errors
ERROR_STORAGE_WRITE = "Failed to persist cart snapshot"
ERROR_STORAGE_CORRUPT = "Stored cart snapshot is corrupt"
ERROR_STORAGE_VERSION = "Unsupported cart snapshot version"

# Sync errors
ERROR_SYNC_UNAVAILABLE = "Server cart unavailable"


class CartError(Exception):
    """Base class for cart core errors."""


class InvalidQuantity(CartError, ValueError):
    """Requested quantity is not a positive integer."""

    def __init__(self, quantity, message: str = ERROR_INVALID_QUANTITY):
        self.quantity = quantity
        super().__init__(f"{message}: {quantity!r}")


class InvalidPrice(CartError, ValueError):
    """Price snapshot is negative or not a number."""

    def __init__(self, price, message: str = ERROR_INVALID_PRICE):
        self.price = price
        super().__init__(f"{message}: {price!r}")


class PersistenceError(CartError):
    """Durable store failure. Never propagated past the storage adapter."""


class PersistenceWriteFailed(PersistenceError):
    """Durable store rejected a write."""


class PersistenceReadCorrupt(PersistenceError):
    """Stored record is unparsable or has the wrong schema version."""


class SyncError(CartError):
    """Server cart endpoint failed or returned an unexpected payload."""

"""
Storefront Core Module

This package contains the client-side state engine of the storefront:
- cart: cart/wishlist state container, persistence and panels
- config: environment-driven settings
- services.money: Decimal helpers for prices

Note: Imports are lazy so that importing the package does not configure
storage backends or pull in optional clients.
"""

__all__ = [
    "CartStore",
    "CartSettings",
    "get_settings",
]


def __getattr__(name):
    """Lazy attribute access."""
    if name == "CartStore":
        from storefront.cart import CartStore
        return CartStore
    elif name == "CartSettings":
        from storefront.config import CartSettings
        return CartSettings
    elif name == "get_settings":
        from storefront.config import get_settings
        return get_settings
    raise AttributeError(f"module 'storefront' has no attribute '{name}'")

"""Read-only aggregates computed from a cart snapshot."""
from decimal import Decimal

from storefront.services.money import round_money, to_float

from .models import CartSnapshot, cart_total


def total_item_count(snapshot: CartSnapshot) -> int:
    """Total units across all line items (0 for an empty cart)."""
    return sum(item.quantity for item in snapshot.items)


def total_price(snapshot: CartSnapshot) -> Decimal:
    """Sum of add-time unit price * quantity."""
    return cart_total(snapshot.items)


def line_item_count(snapshot: CartSnapshot) -> int:
    """Number of distinct line items, not units."""
    return len(snapshot.items)


def checkout_summary(snapshot: CartSnapshot, language: str = "en") -> dict:
    """Ordered line items and totals handed to the checkout collaborator."""
    if not snapshot.items:
        return {
            "is_empty": True,
            "items": [],
            "total_items": 0,
            "line_items": 0,
            "total": 0.0,
        }

    return {
        "is_empty": False,
        "items": [
            {
                "product_id": item.product_id,
                "name": item.display_name(language),
                "attributes": dict(item.attributes),
                "quantity": item.quantity,
                "unit_price": to_float(item.price),
                "total": to_float(round_money(item.line_total)),
                "image_url": item.image_url,
                "brand": item.brand,
            }
            for item in snapshot.items
        ],
        "total_items": total_item_count(snapshot),
        "line_items": line_item_count(snapshot),
        "total": to_float(total_price(snapshot)),
    }

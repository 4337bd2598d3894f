"""Cart snapshot models with Decimal price snapshots and a versioned record format."""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError

from storefront.errors import (
    ERROR_STORAGE_CORRUPT,
    ERROR_STORAGE_VERSION,
    PersistenceReadCorrupt,
)
from storefront.services.money import multiply, round_money, to_decimal

SNAPSHOT_VERSION = 1

# Fallback chain for localized product names
DEFAULT_LANGUAGES = ("zh-TW", "en")

LineKey = Tuple[str, Tuple[Tuple[str, str], ...]]


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def make_key(product_id: str, attributes: Optional[Dict[str, Any]] = None) -> LineKey:
    """Composite line key: product id plus sorted variant attributes."""
    attrs = attributes or {}
    return product_id, tuple(sorted((str(k), str(v)) for k, v in attrs.items()))


@dataclass(frozen=True)
class CatalogProduct:
    """Product record supplied by the catalog at add-time."""
    product_id: str
    price: Decimal
    name: str = ""
    display_names: Dict[str, str] = field(default_factory=dict)
    image_url: Optional[str] = None
    brand: Optional[str] = None


@dataclass(frozen=True)
class CartLineItem:
    """One distinguishable product entry in the cart."""
    product_id: str
    quantity: int
    price: Decimal  # unit price captured when the item was added
    attributes: Dict[str, str] = field(default_factory=dict)
    name: str = ""
    display_names: Dict[str, str] = field(default_factory=dict)
    image_url: Optional[str] = None
    brand: Optional[str] = None
    added_at: str = ""

    def __post_init__(self):
        # Frozen dataclass: normalize through object.__setattr__
        object.__setattr__(self, "price", to_decimal(self.price))
        object.__setattr__(
            self, "attributes", {str(k): str(v) for k, v in (self.attributes or {}).items()}
        )
        object.__setattr__(self, "display_names", dict(self.display_names or {}))
        if not self.added_at:
            object.__setattr__(self, "added_at", now_iso())

    @property
    def key(self) -> LineKey:
        return make_key(self.product_id, self.attributes)

    @property
    def line_total(self) -> Decimal:
        """Price for all units of this line."""
        return multiply(self.price, self.quantity)

    def with_quantity(self, quantity: int) -> "CartLineItem":
        return replace(self, quantity=quantity)

    def display_name(self, language: str = "en") -> str:
        """Localized name, falling back to zh-TW, then en, then the base name."""
        for lang in (language, *DEFAULT_LANGUAGES):
            value = self.display_names.get(lang)
            if value:
                return value
        return self.name or self.product_id

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "product_id": self.product_id,
            "quantity": self.quantity,
            "price": str(self.price),
            "attributes": dict(self.attributes),
            "name": self.name,
            "display_names": dict(self.display_names),
            "image_url": self.image_url,
            "brand": self.brand,
            "added_at": self.added_at,
        }


@dataclass(frozen=True)
class WishlistEntry:
    """Product saved to the wishlist."""
    product_id: str
    added_at: str = ""

    def __post_init__(self):
        if not self.added_at:
            object.__setattr__(self, "added_at", now_iso())

    def to_dict(self) -> dict:
        return {"product_id": self.product_id, "added_at": self.added_at}


@dataclass(frozen=True)
class CartSnapshot:
    """Complete serializable cart + wishlist state."""
    items: Tuple[CartLineItem, ...] = ()
    wishlist: Tuple[WishlistEntry, ...] = ()
    version: int = SNAPSHOT_VERSION
    updated_at: str = ""

    @classmethod
    def empty(cls) -> "CartSnapshot":
        return cls(updated_at=now_iso())

    @property
    def is_empty(self) -> bool:
        return not self.items and not self.wishlist

    def find(self, key: LineKey) -> Optional[CartLineItem]:
        return next((item for item in self.items if item.key == key), None)

    def wishlist_ids(self) -> List[str]:
        return [entry.product_id for entry in self.wishlist]

    def to_dict(self) -> dict:
        """Convert to dictionary for the durable store."""
        return {
            "version": self.version,
            "items": [item.to_dict() for item in self.items],
            "wishlist": [entry.to_dict() for entry in self.wishlist],
            "updated_at": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "CartSnapshot":
        """
        Create from a stored record.

        Raises:
            PersistenceReadCorrupt: unknown version tag or malformed payload
        """
        if not isinstance(data, dict):
            raise PersistenceReadCorrupt(f"{ERROR_STORAGE_CORRUPT}: expected object")

        version = data.get("version")
        record_cls = None
        if isinstance(version, int) and not isinstance(version, bool):
            record_cls = SNAPSHOT_RECORDS.get(version)
        if record_cls is None:
            raise PersistenceReadCorrupt(f"{ERROR_STORAGE_VERSION}: {version!r}")

        try:
            record = record_cls.model_validate(data)
        except ValidationError as e:
            raise PersistenceReadCorrupt(f"{ERROR_STORAGE_CORRUPT}: {e.error_count()} errors") from e
        return record.to_snapshot()


def merge_line_items(items) -> Tuple[CartLineItem, ...]:
    """Collapse entries sharing a composite key, keeping first-seen order."""
    merged: Dict[LineKey, CartLineItem] = {}
    for item in items:
        existing = merged.get(item.key)
        if existing is None:
            merged[item.key] = item
        else:
            merged[item.key] = existing.with_quantity(existing.quantity + item.quantity)
    return tuple(merged.values())


def dedupe_wishlist(entries) -> Tuple[WishlistEntry, ...]:
    seen: Dict[str, WishlistEntry] = {}
    for entry in entries:
        seen.setdefault(entry.product_id, entry)
    return tuple(seen.values())


def cart_total(items) -> Decimal:
    """Sum of price * quantity, rounded to cents."""
    return round_money(sum((item.line_total for item in items), Decimal("0")))


# ============================================================
# Stored record schema
# ============================================================

class LineItemRecord(BaseModel):
    product_id: str = Field(min_length=1)
    quantity: int = Field(ge=1)
    price: Decimal = Field(ge=0)
    attributes: Dict[str, str] = Field(default_factory=dict)
    name: str = ""
    display_names: Dict[str, str] = Field(default_factory=dict)
    image_url: Optional[str] = None
    brand: Optional[str] = None
    added_at: str = ""


class WishlistRecord(BaseModel):
    product_id: str = Field(min_length=1)
    added_at: str = ""


class SnapshotRecordV1(BaseModel):
    """Version 1 of the persisted cart record."""
    version: Literal[1]
    items: List[LineItemRecord] = Field(default_factory=list)
    wishlist: List[WishlistRecord] = Field(default_factory=list)
    updated_at: str = ""

    def to_snapshot(self) -> CartSnapshot:
        items = [CartLineItem(**item.model_dump()) for item in self.items]
        wishlist = [WishlistEntry(**entry.model_dump()) for entry in self.wishlist]
        return CartSnapshot(
            items=merge_line_items(items),
            wishlist=dedupe_wishlist(wishlist),
            version=self.version,
            updated_at=self.updated_at,
        )


# version tag -> record schema
SNAPSHOT_RECORDS = {
    1: SnapshotRecordV1,
}

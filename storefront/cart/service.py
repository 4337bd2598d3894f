"""Cart state container: the single owner of the live cart/wishlist snapshot."""
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from storefront.config import CartSettings, get_settings
from storefront.errors import (
    ERROR_INVALID_PRODUCT_ID,
    CartError,
    InvalidPrice,
    InvalidQuantity,
)
from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.money import parse_price

from . import views
from .events import EventBus, SnapshotChanged
from .models import (
    CartLineItem,
    CartSnapshot,
    CatalogProduct,
    WishlistEntry,
    make_key,
    merge_line_items,
    now_iso,
)
from .panels import CART_PANEL, WISHLIST_PANEL, PanelChannel
from .storage import MemoryStore, SnapshotStorage, build_storage

logger = get_logger(__name__)


class CartStore:
    """
    Cart and wishlist state for one browsing session.

    Every mutation builds a new immutable snapshot, swaps it in, writes it to
    storage and publishes SnapshotChanged, in that order. Readers only ever
    see complete snapshots.

    Usage:
        store = CartStore(storage=SnapshotStorage(FileStore(path)))
        store.start()
        store.add_item("prod-1", price=10, quantity=2)
        store.total_price()
        store.teardown()
    """

    def __init__(
        self,
        storage=None,
        bus: Optional[EventBus] = None,
        max_quantity: Optional[int] = None,
        auto_open_on_add: bool = False,
    ):
        if max_quantity is not None and max_quantity < 1:
            raise ValueError("max_quantity must be a positive integer or None")

        self.storage = storage if storage is not None else SnapshotStorage(MemoryStore())
        self.bus = bus if bus is not None else EventBus()
        self.max_quantity = max_quantity
        self.auto_open_on_add = auto_open_on_add
        self.cart_panel = PanelChannel(CART_PANEL, self.bus)
        self.wishlist_panel = PanelChannel(WISHLIST_PANEL, self.bus)
        self._snapshot = CartSnapshot.empty()
        self._started = False

    @classmethod
    def from_settings(cls, settings: Optional[CartSettings] = None, write_behind: bool = True) -> "CartStore":
        """Build a store wired to the configured storage backend."""
        settings = settings or get_settings()
        return cls(
            storage=build_storage(settings, write_behind=write_behind),
            max_quantity=settings.max_quantity,
            auto_open_on_add=settings.auto_open_on_add,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> CartSnapshot:
        """Rehydrate from storage and notify subscribers."""
        self._snapshot = self.storage.load()
        self._started = True
        logger.debug(
            "Cart rehydrated: %d lines, %d wishlist entries",
            len(self._snapshot.items),
            len(self._snapshot.wishlist),
        )
        self.bus.publish(SnapshotChanged(snapshot=self._snapshot, reason="rehydrate"))
        return self._snapshot

    def teardown(self) -> None:
        """Flush pending writes, close panels, and drop subscribers."""
        self.storage.flush()
        self.cart_panel.close()
        self.wishlist_panel.close()
        self.bus.clear()
        self.storage.close()
        self._started = False

    def __enter__(self) -> "CartStore":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.teardown()

    @property
    def snapshot(self) -> CartSnapshot:
        """Current state. Snapshots are immutable, so this is safe to hand out."""
        return self._snapshot

    @property
    def items(self) -> List[CartLineItem]:
        return list(self._snapshot.items)

    # ------------------------------------------------------------------
    # Cart mutations
    # ------------------------------------------------------------------

    def add_item(
        self,
        product_id: str,
        price,
        quantity: int = 1,
        attributes: Optional[Dict[str, str]] = None,
        *,
        name: str = "",
        display_names: Optional[Dict[str, str]] = None,
        image_url: Optional[str] = None,
        brand: Optional[str] = None,
    ) -> CartSnapshot:
        """
        Add units of a product, merging into an existing line with the same key.

        The existing line keeps its original price snapshot and position.

        Raises:
            InvalidQuantity: quantity is not a positive integer
            InvalidPrice: price is negative or not a number
        """
        self._check_product_id(product_id)
        self._check_quantity(quantity)
        unit_price = parse_price(price)
        if unit_price is None or unit_price < 0:
            raise InvalidPrice(price)

        key = make_key(product_id, attributes)
        items = list(self._snapshot.items)
        index = self._index_of(key)

        if index is not None:
            existing = items[index]
            items[index] = existing.with_quantity(self._clamp(existing.quantity + quantity))
        else:
            items.append(
                CartLineItem(
                    product_id=product_id,
                    quantity=self._clamp(quantity),
                    price=unit_price,
                    attributes=attributes or {},
                    name=name,
                    display_names=display_names or {},
                    image_url=image_url,
                    brand=brand,
                )
            )

        logger.debug("Cart add: product=%s qty=%d", sanitize_id_for_logging(product_id), quantity)
        snapshot = self._commit(items=items, reason="add_item")

        if self.auto_open_on_add:
            self.cart_panel.open()
        return snapshot

    def add_product(
        self,
        product: CatalogProduct,
        quantity: int = 1,
        attributes: Optional[Dict[str, str]] = None,
    ) -> CartSnapshot:
        """Add a catalog product, snapshotting its current price and display fields."""
        return self.add_item(
            product.product_id,
            price=product.price,
            quantity=quantity,
            attributes=attributes,
            name=product.name,
            display_names=product.display_names,
            image_url=product.image_url,
            brand=product.brand,
        )

    def remove_item(self, product_id: str, attributes: Optional[Dict[str, str]] = None) -> CartSnapshot:
        """Delete the matching line. Absent lines are a no-op."""
        index = self._index_of(make_key(product_id, attributes))
        if index is None:
            return self._snapshot

        items = list(self._snapshot.items)
        del items[index]
        logger.debug("Cart remove: product=%s", sanitize_id_for_logging(product_id))
        return self._commit(items=items, reason="remove_item")

    def set_quantity(
        self,
        product_id: str,
        quantity: int,
        attributes: Optional[Dict[str, str]] = None,
    ) -> CartSnapshot:
        """
        Overwrite a line's quantity in place.

        Use remove_item() to delete a line; quantities below 1 are rejected
        and leave the cart unchanged.

        Raises:
            InvalidQuantity: quantity is not a positive integer
        """
        self._check_quantity(quantity)

        index = self._index_of(make_key(product_id, attributes))
        if index is None:
            return self._snapshot

        items = list(self._snapshot.items)
        new_quantity = self._clamp(quantity)
        if items[index].quantity == new_quantity:
            return self._snapshot
        items[index] = items[index].with_quantity(new_quantity)
        return self._commit(items=items, reason="set_quantity")

    def clear(self) -> CartSnapshot:
        """Empty the cart. The wishlist is kept."""
        if not self._snapshot.items:
            return self._snapshot
        return self._commit(items=[], reason="clear")

    def complete_checkout(self) -> CartSnapshot:
        """Checkout succeeded: drop the purchased line items."""
        logger.info("Checkout completed, clearing %d cart lines", len(self._snapshot.items))
        return self._commit(items=[], reason="checkout")

    def replace_items(self, items: Iterable[CartLineItem], reason: str = "replace") -> CartSnapshot:
        """Adopt an externally sourced item list (e.g. the server cart after login)."""
        merged = [item.with_quantity(self._clamp(item.quantity)) for item in merge_line_items(items)]
        return self._commit(items=merged, reason=reason)

    # ------------------------------------------------------------------
    # Wishlist
    # ------------------------------------------------------------------

    def toggle_wishlist(self, product_id: str) -> bool:
        """Add product_id if absent, remove it if present. Returns the new membership."""
        self._check_product_id(product_id)

        wishlist = list(self._snapshot.wishlist)
        if self.is_in_wishlist(product_id):
            wishlist = [entry for entry in wishlist if entry.product_id != product_id]
            added = False
        else:
            wishlist.append(WishlistEntry(product_id=product_id))
            added = True

        self._commit(wishlist=wishlist, reason="toggle_wishlist")
        return added

    def is_in_wishlist(self, product_id: str) -> bool:
        return any(entry.product_id == product_id for entry in self._snapshot.wishlist)

    def wishlist_ids(self) -> List[str]:
        return self._snapshot.wishlist_ids()

    def replace_wishlist(self, product_ids: Iterable[str], reason: str = "replace") -> CartSnapshot:
        """Adopt an externally sourced wishlist, keeping add dates of ids already present."""
        existing = {entry.product_id: entry for entry in self._snapshot.wishlist}
        wishlist = []
        for product_id in dict.fromkeys(product_ids):
            self._check_product_id(product_id)
            wishlist.append(existing.get(product_id) or WishlistEntry(product_id=product_id))
        return self._commit(wishlist=wishlist, reason=reason)

    def clear_wishlist(self) -> CartSnapshot:
        if not self._snapshot.wishlist:
            return self._snapshot
        return self._commit(wishlist=[], reason="clear_wishlist")

    # ------------------------------------------------------------------
    # Derived views
    # ------------------------------------------------------------------

    def total_item_count(self) -> int:
        return views.total_item_count(self._snapshot)

    def total_price(self) -> Decimal:
        return views.total_price(self._snapshot)

    def line_item_count(self) -> int:
        return views.line_item_count(self._snapshot)

    def checkout_summary(self, language: str = "en") -> dict:
        return views.checkout_summary(self._snapshot, language=language)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _commit(self, items=None, wishlist=None, reason: str = "") -> CartSnapshot:
        changes = {"updated_at": now_iso()}
        if items is not None:
            changes["items"] = tuple(items)
        if wishlist is not None:
            changes["wishlist"] = tuple(wishlist)

        snapshot = replace(self._snapshot, **changes)
        self._snapshot = snapshot
        self.storage.save(snapshot)
        self.bus.publish(SnapshotChanged(snapshot=snapshot, reason=reason))
        return snapshot

    def _index_of(self, key) -> Optional[int]:
        for index, item in enumerate(self._snapshot.items):
            if item.key == key:
                return index
        return None

    def _clamp(self, quantity: int) -> int:
        if self.max_quantity is not None and quantity > self.max_quantity:
            return self.max_quantity
        return quantity

    @staticmethod
    def _check_quantity(quantity) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise InvalidQuantity(quantity)

    @staticmethod
    def _check_product_id(product_id) -> None:
        if not product_id or not isinstance(product_id, str):
            raise CartError(ERROR_INVALID_PRODUCT_ID)

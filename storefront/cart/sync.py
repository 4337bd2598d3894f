"""
Server cart sync.

Keeps a signed-in user's cart in step with the storefront user-data endpoint:
- after login the server cart replaces the local one
- local changes are pushed back with a debounce (one PATCH per burst)
- the wishlist is pulled the same way and pushed as per-product toggles

The local CartStore stays authoritative for the session; sync failures are
logged and never undo local mutations.
"""

import asyncio
from typing import Any, Callable, List, Optional, Set

import httpx

from storefront.config import CartSettings, get_settings
from storefront.errors import ERROR_SYNC_UNAVAILABLE, SyncError
from storefront.logging import get_logger, sanitize_id_for_logging
from storefront.services.money import parse_price, to_float

from .events import SnapshotChanged
from .models import CartLineItem

logger = get_logger(__name__)

USER_DATA_PATH = "/api/userData"
WISHLIST_PATH = "/api/wishlist"
SERVER_SYNC_REASON = "server_sync"
WISHLIST_REASONS = ("toggle_wishlist", "clear_wishlist")


def _is_str_map(value: Any) -> bool:
    return isinstance(value, dict) and all(
        isinstance(k, str) and isinstance(v, str) for k, v in value.items()
    )


def from_server_item(data: Any) -> Optional[CartLineItem]:
    """Map a server cart entry to a line item. Returns None for unusable entries."""
    if not isinstance(data, dict):
        return None

    product_id = data.get("_id") or data.get("product_id")
    price = parse_price(data.get("price"))
    quantity = data.get("quantity") or 1
    if not isinstance(product_id, str) or not product_id:
        return None
    if price is None or price < 0:
        return None
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        return None

    attributes = data.get("attributes") or {}
    display_names = data.get("displayNames") or {}
    images = data.get("images") or []
    name = data.get("name") or ""
    if not _is_str_map(attributes) or not _is_str_map(display_names):
        return None
    if not isinstance(images, list) or not all(isinstance(image, str) for image in images):
        return None
    if not isinstance(name, str):
        return None

    brand = data.get("brand")
    if isinstance(brand, dict):
        brand = brand.get("name")

    return CartLineItem(
        product_id=product_id,
        quantity=quantity,
        price=price,
        attributes=attributes,
        name=name,
        display_names=display_names,
        image_url=images[0] if images else None,
        brand=brand if isinstance(brand, str) else None,
    )


def to_server_item(item: CartLineItem) -> dict:
    """Map a line item to the server cart entry shape."""
    return {
        "_id": item.product_id,
        "name": item.name,
        "displayNames": dict(item.display_names),
        "images": [item.image_url] if item.image_url else [],
        "price": to_float(item.price),
        "brand": item.brand,
        "quantity": item.quantity,
        "attributes": dict(item.attributes),
    }


class ServerCartSync:
    """Pulls and pushes the cart through the user-data endpoint."""

    def __init__(self, store, client: httpx.AsyncClient, debounce_seconds: float = 1.0):
        self.store = store
        self.client = client
        self.debounce_seconds = debounce_seconds
        self._pending: Optional[asyncio.Task] = None
        self._pulling = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        # Wishlist ids the server is known to hold; pushes send the difference
        self._server_wishlist: Set[str] = set()
        self._wishlist_lock = asyncio.Lock()
        self._wishlist_tasks: Set[asyncio.Task] = set()

    @classmethod
    def from_settings(
        cls,
        store,
        settings: Optional[CartSettings] = None,
        access_token: Optional[str] = None,
    ) -> "ServerCartSync":
        settings = settings or get_settings()
        if not settings.api_url:
            raise ValueError("STOREFRONT_API_URL must be set for server cart sync")

        headers = {"Content-Type": "application/json"}
        if access_token:
            headers["Authorization"] = f"Bearer {access_token}"
        client = httpx.AsyncClient(base_url=settings.api_url, headers=headers, timeout=10.0)
        return cls(store, client, debounce_seconds=settings.sync_debounce_seconds)

    @property
    def is_pulling(self) -> bool:
        return self._pulling

    def attach(self) -> Callable[[], None]:
        """Push on every local cart change. Returns a detach callable."""
        if self._unsubscribe is None:
            self._unsubscribe = self.store.bus.subscribe(SnapshotChanged, self._on_snapshot_changed)
        return self.detach

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def fetch_server_cart(self) -> Optional[List[CartLineItem]]:
        """
        GET the server cart.

        Returns:
            Parsed line items, or None when the server holds no cart

        Raises:
            SyncError: endpoint unreachable or payload malformed
        """
        try:
            response = await self.client.get(USER_DATA_PATH)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SyncError(f"{ERROR_SYNC_UNAVAILABLE}: {type(e).__name__}") from e

        cart = payload.get("cart") if isinstance(payload, dict) else None
        if not cart:
            return None
        if not isinstance(cart, list):
            raise SyncError(f"{ERROR_SYNC_UNAVAILABLE}: cart is not a list")

        items = []
        for entry in cart:
            item = from_server_item(entry)
            if item is None:
                logger.warning("Skipping malformed server cart entry: %s", sanitize_id_for_logging(str(entry)))
                continue
            items.append(item)
        return items

    async def load_server_cart(self) -> bool:
        """
        Replace the local cart with the server cart after login.

        Returns True when the local cart was replaced.
        """
        self._pulling = True
        try:
            items = await self.fetch_server_cart()
            if items is None:
                return False
            self.store.replace_items(items, reason=SERVER_SYNC_REASON)
            logger.info("Loaded server cart: %d lines", len(items))
            return True
        except SyncError as e:
            logger.warning("Failed to load server cart: %s", e)
            return False
        finally:
            self._pulling = False

    async def push_now(self) -> bool:
        """PATCH the current line items to the server. Returns False on failure."""
        body = {"cart": [to_server_item(item) for item in self.store.snapshot.items]}
        try:
            response = await self.client.patch(USER_DATA_PATH, json=body)
            response.raise_for_status()
            return True
        except httpx.HTTPError as e:
            logger.warning("Failed to sync cart with server: %s", type(e).__name__)
            return False

    def schedule_push(self) -> Optional[asyncio.Task]:
        """Restart the debounce timer; the push fires once the cart stops changing."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, cart push skipped")
            return None

        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        self._pending = loop.create_task(self._push_later())
        return self._pending

    # ------------------------------------------------------------------
    # Wishlist
    # ------------------------------------------------------------------

    async def fetch_server_wishlist(self) -> List[str]:
        """
        GET the server wishlist as product ids, in server order.

        Raises:
            SyncError: endpoint unreachable or payload malformed
        """
        try:
            response = await self.client.get(WISHLIST_PATH)
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SyncError(f"{ERROR_SYNC_UNAVAILABLE}: {type(e).__name__}") from e

        entries = payload.get("items") if isinstance(payload, dict) else None
        if entries is None:
            return []
        if not isinstance(entries, list):
            raise SyncError(f"{ERROR_SYNC_UNAVAILABLE}: wishlist is not a list")

        product_ids = []
        for entry in entries:
            product_id = entry.get("_id") if isinstance(entry, dict) else None
            if not isinstance(product_id, str) or not product_id:
                logger.warning("Skipping malformed server wishlist entry: %s", sanitize_id_for_logging(str(entry)))
                continue
            product_ids.append(product_id)
        return product_ids

    async def load_server_wishlist(self) -> bool:
        """Replace the local wishlist with the server one. Returns False on failure."""
        self._pulling = True
        try:
            product_ids = await self.fetch_server_wishlist()
            self.store.replace_wishlist(product_ids, reason=SERVER_SYNC_REASON)
            self._server_wishlist = set(product_ids)
            logger.info("Loaded server wishlist: %d entries", len(product_ids))
            return True
        except SyncError as e:
            logger.warning("Failed to load server wishlist: %s", e)
            return False
        finally:
            self._pulling = False

    async def push_wishlist(self) -> bool:
        """
        Toggle every id whose membership differs from the server's.

        The endpoint only toggles, so an unexpected action (another device
        changed the same product) is toggled back. Returns False on failure.
        """
        async with self._wishlist_lock:
            local = set(self.store.wishlist_ids())
            try:
                for product_id in sorted(local ^ self._server_wishlist):
                    wanted = "added" if product_id in local else "removed"
                    action = await self._toggle_remote(product_id)
                    if action != wanted:
                        action = await self._toggle_remote(product_id)
                    if action == "added":
                        self._server_wishlist.add(product_id)
                    else:
                        self._server_wishlist.discard(product_id)
                return True
            except SyncError as e:
                logger.warning("Failed to sync wishlist with server: %s", e)
                return False

    def schedule_wishlist_push(self) -> Optional[asyncio.Task]:
        """Push wishlist changes right away; toggles are not debounced."""
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, wishlist push skipped")
            return None

        task = loop.create_task(self.push_wishlist())
        self._wishlist_tasks.add(task)
        task.add_done_callback(self._wishlist_tasks.discard)
        return task

    async def _toggle_remote(self, product_id: str) -> str:
        try:
            response = await self.client.post(WISHLIST_PATH, json={"productId": product_id})
            response.raise_for_status()
            payload = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SyncError(f"{ERROR_SYNC_UNAVAILABLE}: {type(e).__name__}") from e

        if not isinstance(payload, dict):
            payload = {}
        action = payload.get("action")
        if not payload.get("success") or action not in ("added", "removed"):
            raise SyncError(f"{ERROR_SYNC_UNAVAILABLE}: wishlist toggle rejected")
        return action

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def flush(self) -> None:
        """Wait for scheduled cart and wishlist pushes, if any."""
        pending = list(self._wishlist_tasks)
        if self._pending is not None and not self._pending.done():
            pending.append(self._pending)
        for task in pending:
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def aclose(self) -> None:
        self.detach()
        if self._pending is not None and not self._pending.done():
            self._pending.cancel()
        for task in list(self._wishlist_tasks):
            task.cancel()
        await self.client.aclose()

    async def _push_later(self) -> None:
        await asyncio.sleep(self.debounce_seconds)
        await self.push_now()

    def _on_snapshot_changed(self, event: SnapshotChanged) -> None:
        # Changes caused by a pull must not echo back to the server
        if event.reason in (SERVER_SYNC_REASON, "rehydrate") or self._pulling:
            return
        if event.reason in WISHLIST_REASONS:
            self.schedule_wishlist_push()
        else:
            self.schedule_push()

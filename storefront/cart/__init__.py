"""Cart package: models, storage, events, panels, and the state container."""
from .events import EventBus, PanelToggled, SnapshotChanged
from .models import CartLineItem, CartSnapshot, CatalogProduct, WishlistEntry
from .panels import PanelChannel
from .service import CartStore
from .storage import FileStore, MemoryStore, SnapshotStorage, WriteBehindStorage

__all__ = [
    "CartLineItem",
    "CartSnapshot",
    "CatalogProduct",
    "WishlistEntry",
    "EventBus",
    "SnapshotChanged",
    "PanelToggled",
    "PanelChannel",
    "CartStore",
    "FileStore",
    "MemoryStore",
    "SnapshotStorage",
    "WriteBehindStorage",
]

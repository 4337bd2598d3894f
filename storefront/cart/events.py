"""Typed publish/subscribe channel between the cart core and UI components."""
from collections import defaultdict
from dataclasses import dataclass
from typing import Callable, DefaultDict, List, Type, TypeVar

from storefront.logging import get_logger

from .models import CartSnapshot

logger = get_logger(__name__)


@dataclass(frozen=True)
class CartEvent:
    """Base class for events published by the cart core."""


@dataclass(frozen=True)
class SnapshotChanged(CartEvent):
    """Cart or wishlist contents changed."""
    snapshot: CartSnapshot
    reason: str


@dataclass(frozen=True)
class PanelToggled(CartEvent):
    """An overlay panel opened or closed."""
    panel: str
    is_open: bool


E = TypeVar("E", bound=CartEvent)
Handler = Callable[[CartEvent], None]


class EventBus:
    """
    Synchronous event bus.

    Handlers run in subscription order on the publishing thread. A handler
    that raises is logged and skipped; remaining handlers still receive the
    event.
    """

    def __init__(self) -> None:
        self._handlers: DefaultDict[Type[CartEvent], List[Handler]] = defaultdict(list)

    def subscribe(self, event_type: Type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """Register handler for event_type. Returns a callable that unsubscribes it."""
        self._handlers[event_type].append(handler)

        def unsubscribe() -> None:
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

        return unsubscribe

    def publish(self, event: CartEvent) -> None:
        # Copy so handlers may unsubscribe while being notified
        for handler in list(self._handlers.get(type(event), [])):
            try:
                handler(event)
            except Exception as e:
                logger.error(
                    "Event handler failed for %s: %s",
                    type(event).__name__,
                    type(e).__name__,
                    exc_info=True,
                )

    def subscriber_count(self, event_type: Type[CartEvent]) -> int:
        return len(self._handlers.get(event_type, []))

    def clear(self) -> None:
        """Drop every subscription."""
        self._handlers.clear()

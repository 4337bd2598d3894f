"""Open/close state for the cart and wishlist overlay panels."""
from .events import EventBus, PanelToggled

CART_PANEL = "cart"
WISHLIST_PANEL = "wishlist"


class PanelChannel:
    """
    Boolean open/close signal for one overlay panel.

    Any number of trigger sources may call open(); the state is a flag, not a
    counter, so a single close() always hides the panel. Only real transitions
    publish PanelToggled.
    """

    def __init__(self, name: str, bus: EventBus):
        self.name = name
        self._bus = bus
        self._is_open = False

    @property
    def is_open(self) -> bool:
        return self._is_open

    def open(self) -> None:
        self._set(True)

    def close(self) -> None:
        self._set(False)

    def toggle(self) -> bool:
        self._set(not self._is_open)
        return self._is_open

    def _set(self, value: bool) -> None:
        if self._is_open == value:
            return
        self._is_open = value
        self._bus.publish(PanelToggled(panel=self.name, is_open=value))

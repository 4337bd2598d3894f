"""
Tests for the event bus and overlay panels
"""

import logging

from storefront.cart import CartSnapshot, EventBus, PanelChannel, PanelToggled, SnapshotChanged


class TestEventBus:
    """Tests for EventBus."""

    def test_delivers_by_type(self):
        bus = EventBus()
        changes, toggles = [], []
        bus.subscribe(SnapshotChanged, changes.append)
        bus.subscribe(PanelToggled, toggles.append)

        bus.publish(PanelToggled(panel="cart", is_open=True))

        assert changes == []
        assert toggles == [PanelToggled(panel="cart", is_open=True)]

    def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe(PanelToggled, received.append)

        unsubscribe()
        unsubscribe()
        bus.publish(PanelToggled(panel="cart", is_open=True))

        assert received == []
        assert bus.subscriber_count(PanelToggled) == 0

    def test_failing_handler_does_not_block_others(self, caplog):
        """Test a raising subscriber is logged and later subscribers still run."""
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("render failed")

        bus.subscribe(SnapshotChanged, broken)
        bus.subscribe(SnapshotChanged, received.append)

        with caplog.at_level(logging.ERROR):
            bus.publish(SnapshotChanged(snapshot=CartSnapshot(), reason="test"))

        assert len(received) == 1
        assert "Event handler failed for SnapshotChanged" in caplog.text

    def test_handler_may_unsubscribe_during_publish(self):
        bus = EventBus()
        calls = []

        def once(event):
            calls.append(event)
            unsubscribe()

        unsubscribe = bus.subscribe(PanelToggled, once)

        bus.publish(PanelToggled(panel="cart", is_open=True))
        bus.publish(PanelToggled(panel="cart", is_open=False))

        assert len(calls) == 1


class TestPanelChannel:
    """Tests for PanelChannel."""

    def test_open_is_idempotent(self):
        bus = EventBus()
        events = []
        bus.subscribe(PanelToggled, events.append)
        panel = PanelChannel("cart", bus)

        panel.open()
        panel.open()

        assert panel.is_open
        assert events == [PanelToggled(panel="cart", is_open=True)]

    def test_single_close_after_many_opens(self):
        panel = PanelChannel("cart", EventBus())

        panel.open()
        panel.open()
        panel.close()

        assert not panel.is_open

    def test_close_when_closed_publishes_nothing(self):
        bus = EventBus()
        events = []
        bus.subscribe(PanelToggled, events.append)

        PanelChannel("wishlist", bus).close()

        assert events == []

    def test_toggle(self):
        panel = PanelChannel("wishlist", EventBus())

        assert panel.toggle() is True
        assert panel.toggle() is False

    def test_store_panels_are_independent(self, cart_store):
        cart_store.wishlist_panel.open()

        assert cart_store.wishlist_panel.is_open
        assert not cart_store.cart_panel.is_open

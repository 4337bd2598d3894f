"""Pytest configuration and fixtures"""
import os
from decimal import Decimal

import pytest

# Keep settings deterministic regardless of the developer's shell
os.environ.setdefault("CART_STORAGE_BACKEND", "memory")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from storefront.cart import CartStore, CatalogProduct, EventBus, MemoryStore, SnapshotStorage


@pytest.fixture
def memory_store():
    """Empty in-memory key-value store"""
    return MemoryStore()


@pytest.fixture
def storage(memory_store):
    """Snapshot storage on top of the memory store"""
    return SnapshotStorage(memory_store, key="cart-storage")


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def cart_store(storage, bus):
    """Started cart store with synchronous persistence"""
    store = CartStore(storage=storage, bus=bus)
    store.start()
    yield store
    store.teardown()


@pytest.fixture
def sample_product():
    """Sample catalog product"""
    return CatalogProduct(
        product_id="product-123",
        price=Decimal("299.00"),
        name="Linen Shirt",
        display_names={"en": "Linen Shirt", "zh-TW": "亞麻襯衫"},
        image_url="https://cdn.example.com/shirt.jpg",
        brand="Northwind",
    )


class FailingStore:
    """Key-value store whose every operation fails"""

    def get(self, key):
        raise OSError("storage unavailable")

    def set(self, key, value):
        raise OSError("quota exceeded")

    def delete(self, key):
        raise OSError("storage unavailable")


@pytest.fixture
def failing_store():
    return FailingStore()

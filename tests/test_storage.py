"""
Tests for snapshot persistence
"""

import json
import logging

import pytest

from storefront.cart import (
    CartLineItem,
    CartSnapshot,
    FileStore,
    MemoryStore,
    SnapshotStorage,
    WishlistEntry,
    WriteBehindStorage,
)
from storefront.cart.models import SNAPSHOT_VERSION
from storefront.cart.storage import RedisStore, build_store
from storefront.config import CartSettings
from storefront.errors import PersistenceReadCorrupt


def _snapshot() -> CartSnapshot:
    return CartSnapshot(
        items=(
            CartLineItem(product_id="A", quantity=2, price="10.00", attributes={"size": "M"}, name="Shirt"),
            CartLineItem(product_id="B", quantity=1, price="5.5", display_names={"en": "Cap"}),
        ),
        wishlist=(WishlistEntry(product_id="W"),),
        updated_at="2025-01-01T00:00:00+00:00",
    )


class TestSnapshotSerialization:
    """Tests for the versioned snapshot record."""

    def test_to_dict_is_tagged(self):
        data = _snapshot().to_dict()

        assert data["version"] == SNAPSHOT_VERSION
        assert data["items"][0]["price"] == "10.00"
        assert data["wishlist"] == [{"product_id": "W", "added_at": data["wishlist"][0]["added_at"]}]

    def test_from_dict_round_trip(self):
        snapshot = _snapshot()

        restored = CartSnapshot.from_dict(json.loads(json.dumps(snapshot.to_dict())))

        assert restored == snapshot

    @pytest.mark.parametrize("version", [None, 0, 2, "1", True])
    def test_unknown_version_rejected(self, version):
        data = _snapshot().to_dict()
        data["version"] = version

        with pytest.raises(PersistenceReadCorrupt):
            CartSnapshot.from_dict(data)

    def test_invalid_line_rejected(self):
        data = _snapshot().to_dict()
        data["items"][0]["quantity"] = 0

        with pytest.raises(PersistenceReadCorrupt):
            CartSnapshot.from_dict(data)

    def test_non_object_rejected(self):
        with pytest.raises(PersistenceReadCorrupt):
            CartSnapshot.from_dict(["not", "a", "snapshot"])

    def test_duplicate_keys_merged_on_load(self):
        """Test a hand-edited record with duplicate keys still loads with unique lines."""
        data = {
            "version": 1,
            "items": [
                {"product_id": "A", "quantity": 1, "price": "2"},
                {"product_id": "A", "quantity": 2, "price": "2"},
            ],
            "wishlist": [{"product_id": "W"}, {"product_id": "W"}],
        }

        snapshot = CartSnapshot.from_dict(data)

        assert len(snapshot.items) == 1
        assert snapshot.items[0].quantity == 3
        assert snapshot.wishlist_ids() == ["W"]


class TestSnapshotStorage:
    """Tests for SnapshotStorage save/load."""

    def test_load_missing_returns_empty(self, storage):
        snapshot = storage.load()

        assert snapshot.items == ()
        assert snapshot.wishlist == ()
        assert snapshot.version == SNAPSHOT_VERSION

    def test_save_then_load(self, storage):
        snapshot = _snapshot()

        assert storage.save(snapshot) is True

        assert storage.load() == snapshot

    def test_save_overwrites(self, storage, memory_store):
        storage.save(_snapshot())
        storage.save(CartSnapshot.empty())

        assert storage.load().items == ()
        assert list(memory_store.data) == ["cart-storage"]

    def test_corrupt_json_discarded(self, storage, memory_store, caplog):
        memory_store.set("cart-storage", "{not json")

        with caplog.at_level(logging.WARNING):
            snapshot = storage.load()

        assert snapshot.items == ()
        assert "cart-storage" not in memory_store.data
        assert "Discarding stored cart" in caplog.text

    def test_version_mismatch_discarded(self, storage, memory_store):
        data = _snapshot().to_dict()
        data["version"] = 99
        memory_store.set("cart-storage", json.dumps(data))

        assert storage.load().items == ()
        assert "cart-storage" not in memory_store.data

    def test_write_failure_is_non_fatal(self, failing_store, caplog):
        storage = SnapshotStorage(failing_store)

        with caplog.at_level(logging.WARNING):
            assert storage.save(_snapshot()) is False

        assert "Failed to persist cart snapshot" in caplog.text

    def test_read_failure_returns_empty(self, failing_store):
        assert SnapshotStorage(failing_store).load().items == ()

    def test_price_precision_preserved(self, storage):
        storage.save(CartSnapshot(items=(CartLineItem(product_id="A", quantity=1, price="0.10"),)))

        assert str(storage.load().items[0].price) == "0.10"

    def test_clear(self, storage, memory_store):
        storage.save(_snapshot())

        storage.clear()

        assert memory_store.data == {}


class TestFileStore:
    """Tests for the file-backed store."""

    def test_round_trip_across_instances(self, tmp_path):
        snapshot = _snapshot()
        SnapshotStorage(FileStore(tmp_path)).save(snapshot)

        restored = SnapshotStorage(FileStore(tmp_path)).load()

        assert restored == snapshot

    def test_key_sanitized(self, tmp_path):
        store = FileStore(tmp_path)

        store.set("../cart storage", "{}")

        assert store.path_for("../cart storage").parent == tmp_path
        assert store.get("../cart storage") == "{}"

    def test_missing_and_delete(self, tmp_path):
        store = FileStore(tmp_path / "nested")

        assert store.get("cart") is None
        store.delete("cart")
        store.set("cart", "x")
        store.delete("cart")
        assert store.get("cart") is None


class TestWriteBehindStorage:
    """Tests for ordered background writes."""

    def test_last_write_wins(self, storage):
        background = WriteBehindStorage(storage)
        snapshots = [
            CartSnapshot(items=(CartLineItem(product_id="A", quantity=n, price=1),))
            for n in range(1, 20)
        ]

        for snapshot in snapshots:
            background.save(snapshot)
        background.flush()

        assert storage.load() == snapshots[-1]
        background.close()

    def test_load_waits_for_pending_writes(self, storage):
        background = WriteBehindStorage(storage)
        snapshot = _snapshot()

        background.save(snapshot)

        assert background.load() == snapshot
        background.close()

    def test_save_after_close_starts_new_worker(self, storage):
        background = WriteBehindStorage(storage)
        background.save(CartSnapshot.empty())
        background.close()
        assert not background.is_running
        snapshot = _snapshot()

        assert background.save(snapshot) is True
        background.flush()

        assert storage.load() == snapshot
        assert background.is_running
        background.close()

    def test_failed_write_does_not_raise_on_flush(self, failing_store):
        background = WriteBehindStorage(SnapshotStorage(failing_store))

        background.save(_snapshot())
        background.flush()
        background.close()


class TestBuildStore:
    """Tests for backend selection."""

    def test_memory_backend(self):
        assert isinstance(build_store(CartSettings(storage_backend="memory")), MemoryStore)

    def test_file_backend(self, tmp_path):
        store = build_store(CartSettings(storage_backend="file", storage_dir=str(tmp_path)))

        assert isinstance(store, FileStore)
        assert store.directory == tmp_path

    def test_redis_backend_requires_credentials(self):
        with pytest.raises(ValueError):
            build_store(CartSettings(storage_backend="redis"))

    def test_redis_store_prefixes_keys(self):
        from unittest.mock import Mock

        redis = Mock()
        redis.get.return_value = None
        store = RedisStore(redis)

        store.set("cart-storage", "{}")
        store.get("cart-storage")
        store.delete("cart-storage")

        redis.set.assert_called_once_with("cart:cart-storage", "{}")
        redis.get.assert_called_once_with("cart:cart-storage")
        redis.delete.assert_called_once_with("cart:cart-storage")

"""Durable per-device storage for cart snapshots."""
import json
import os
import re
import tempfile
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import Dict, Optional, Protocol, Union

from storefront.config import CartSettings
from storefront.db import RedisKeys, get_redis_sync
from storefront.errors import (
    ERROR_STORAGE_CORRUPT,
    ERROR_STORAGE_WRITE,
    PersistenceReadCorrupt,
    PersistenceWriteFailed,
)
from storefront.logging import get_logger

from .models import CartSnapshot

logger = get_logger(__name__)

DEFAULT_STORAGE_KEY = "cart-storage"


class KeyValueStore(Protocol):
    """Minimal durable key-value contract."""

    def get(self, key: str) -> Optional[Union[str, bytes]]: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local store. Survives CartStore restarts, not process restarts."""

    def __init__(self) -> None:
        self.data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self.data.get(key)

    def set(self, key: str, value: str) -> None:
        self.data[key] = value

    def delete(self, key: str) -> None:
        self.data.pop(key, None)


class FileStore:
    """One JSON file per key inside a device directory."""

    _UNSAFE = re.compile(r"[^A-Za-z0-9_.-]")

    def __init__(self, directory: Union[str, Path]):
        self.directory = Path(directory)

    def path_for(self, key: str) -> Path:
        return self.directory / f"{self._UNSAFE.sub('_', key)}.json"

    def get(self, key: str) -> Optional[str]:
        path = self.path_for(key)
        if not path.exists():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        # Write to a sibling temp file, then atomically replace
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(value)
            os.replace(tmp_path, path)
        except BaseException:
            Path(tmp_path).unlink(missing_ok=True)
            raise

    def delete(self, key: str) -> None:
        self.path_for(key).unlink(missing_ok=True)


class RedisStore:
    """Upstash Redis backed store (sync REST client)."""

    def __init__(self, redis):
        self._redis = redis

    def get(self, key: str) -> Optional[str]:
        return self._redis.get(RedisKeys.cart_key(key))

    def set(self, key: str, value: str) -> None:
        self._redis.set(RedisKeys.cart_key(key), value)

    def delete(self, key: str) -> None:
        self._redis.delete(RedisKeys.cart_key(key))


class SnapshotStorage:
    """
    Reads and writes the serialized snapshot under one fixed key.

    Neither method raises: write failures are logged and reported through the
    return value, and any unreadable record loads as an empty snapshot.
    """

    def __init__(self, store: KeyValueStore, key: str = DEFAULT_STORAGE_KEY):
        self.store = store
        self.key = key

    def save(self, snapshot: CartSnapshot) -> bool:
        """Serialize and overwrite the stored snapshot. Returns False on failure."""
        try:
            payload = json.dumps(snapshot.to_dict())
            self.store.set(self.key, payload)
            return True
        except Exception as e:
            error = PersistenceWriteFailed(f"{ERROR_STORAGE_WRITE}: {type(e).__name__}: {e}")
            logger.warning("%s (key=%s)", error, self.key, exc_info=True)
            return False

    def load(self) -> CartSnapshot:
        """Return the last saved snapshot, or an empty one when none is usable."""
        try:
            raw = self.store.get(self.key)
        except Exception as e:
            logger.warning(
                "Cart storage unavailable (key=%s): %s", self.key, type(e).__name__, exc_info=True
            )
            return CartSnapshot.empty()

        if raw is None:
            return CartSnapshot.empty()

        try:
            try:
                data = json.loads(raw)
            except (json.JSONDecodeError, TypeError, UnicodeDecodeError) as e:
                raise PersistenceReadCorrupt(f"{ERROR_STORAGE_CORRUPT}: {type(e).__name__}") from e
            return CartSnapshot.from_dict(data)
        except PersistenceReadCorrupt as e:
            logger.warning("Discarding stored cart (key=%s): %s", self.key, e)
            self._discard()
            return CartSnapshot.empty()

    def clear(self) -> None:
        self._discard()

    def flush(self) -> None:
        """Writes are synchronous; nothing to wait for."""

    def close(self) -> None:
        """Nothing to release."""

    def _discard(self) -> None:
        try:
            self.store.delete(self.key)
        except Exception as e:
            logger.warning("Failed to delete stored cart (key=%s): %s", self.key, type(e).__name__)


class WriteBehindStorage:
    """
    Non-blocking wrapper around SnapshotStorage.

    save() queues the write on a single worker thread and returns at once.
    One worker means writes land in the order their mutations happened, so
    the stored value always converges on the latest snapshot.

    close() stops the worker; the next save() or load() starts a fresh one,
    so a CartStore can be torn down and started again.
    """

    def __init__(self, storage: SnapshotStorage):
        self.storage = storage
        self.key = storage.key
        self._executor: Optional[ThreadPoolExecutor] = None
        self._last: Optional[Future] = None

    def save(self, snapshot: CartSnapshot) -> bool:
        try:
            self._last = self._worker().submit(self.storage.save, snapshot)
        except RuntimeError as e:
            # Interpreter shutdown refuses new threads
            error = PersistenceWriteFailed(f"{ERROR_STORAGE_WRITE}: {type(e).__name__}: {e}")
            logger.warning("%s (key=%s)", error, self.key)
            return False
        return True

    def load(self) -> CartSnapshot:
        self.flush()
        return self.storage.load()

    def clear(self) -> None:
        self.flush()
        self.storage.clear()

    def flush(self) -> None:
        """Block until every queued write has been applied."""
        if self._last is not None:
            # SnapshotStorage.save never raises, so result() only waits
            self._last.result()

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    @property
    def is_running(self) -> bool:
        return self._executor is not None

    def _worker(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cart-storage")
        return self._executor


def build_store(settings: CartSettings) -> KeyValueStore:
    """Create the key-value store selected by CART_STORAGE_BACKEND."""
    if settings.storage_backend == "memory":
        return MemoryStore()
    if settings.storage_backend == "redis":
        return RedisStore(get_redis_sync(settings))
    return FileStore(settings.storage_dir)


def build_storage(settings: CartSettings, write_behind: bool = False):
    """Snapshot storage for the configured backend and key."""
    storage = SnapshotStorage(build_store(settings), key=settings.storage_key)
    if write_behind:
        return WriteBehindStorage(storage)
    return storage

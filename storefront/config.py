"""Cart core configuration read from the environment."""
from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv

# Per-user data directory
DEFAULT_STORAGE_DIR = Path.home() / ".storefront"

STORAGE_BACKENDS = ("memory", "file", "redis")


def _get_env(*keys: str, default: str | None = None) -> str | None:
    for k in keys:
        v = os.getenv(k)
        if v is not None and str(v).strip() != "":
            return v.strip()
    return default


def _get_int(*keys: str, default: int | None = None) -> int | None:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return int(v)


def _get_float(*keys: str, default: float) -> float:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return float(v)


def _get_bool(*keys: str, default: bool) -> bool:
    v = _get_env(*keys, default=None)
    if v is None:
        return default
    return v.lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class CartSettings:
    storage_key: str = "cart-storage"
    storage_backend: str = "file"
    storage_dir: str = str(DEFAULT_STORAGE_DIR)
    # None means no per-line upper bound
    max_quantity: int | None = None
    auto_open_on_add: bool = True
    sync_debounce_seconds: float = 1.0
    api_url: str = ""
    redis_url: str = ""
    redis_token: str = ""


def load_settings() -> CartSettings:
    """Build settings from environment variables (and .env if present)."""
    load_dotenv(dotenv_path=Path.cwd() / ".env")

    backend = (_get_env("CART_STORAGE_BACKEND", default="file") or "file").lower()
    if backend not in STORAGE_BACKENDS:
        raise ValueError(
            f"CART_STORAGE_BACKEND must be one of {', '.join(STORAGE_BACKENDS)}, got {backend!r}"
        )

    max_quantity = _get_int("CART_MAX_QUANTITY", default=0) or None
    if max_quantity is not None and max_quantity < 1:
        raise ValueError("CART_MAX_QUANTITY must be a positive integer or 0 for unbounded")

    return CartSettings(
        storage_key=_get_env("CART_STORAGE_KEY", default="cart-storage") or "cart-storage",
        storage_backend=backend,
        storage_dir=_get_env("CART_STORAGE_DIR", default=str(DEFAULT_STORAGE_DIR)),
        max_quantity=max_quantity,
        auto_open_on_add=_get_bool("CART_AUTO_OPEN_ON_ADD", default=True),
        sync_debounce_seconds=_get_float("CART_SYNC_DEBOUNCE_SECONDS", default=1.0),
        api_url=_get_env("STOREFRONT_API_URL", default="") or "",
        redis_url=_get_env("UPSTASH_REDIS_REST_URL", default="") or "",
        redis_token=_get_env("UPSTASH_REDIS_REST_TOKEN", default="") or "",
    )


@lru_cache(maxsize=1)
def get_settings() -> CartSettings:
    """Process-wide settings, loaded once."""
    return load_settings()

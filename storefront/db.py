"""
Redis client for the durable cart store.

Only used when CART_STORAGE_BACKEND=redis. The client is created per
settings object rather than cached globally so tests and multiple devices
can each hold their own connection.
"""

from upstash_redis import Redis

from storefront.config import CartSettings


class RedisKeys:
    """Redis key prefixes for cart data."""

    CART = "cart:"  # cart:{storage_key}

    @staticmethod
    def cart_key(storage_key: str) -> str:
        return f"{RedisKeys.CART}{storage_key}"


def get_redis_sync(settings: CartSettings) -> Redis:
    """
    Create a sync Upstash Redis client.

    Uses standard Upstash env var names:
    - UPSTASH_REDIS_REST_URL
    - UPSTASH_REDIS_REST_TOKEN
    """
    if not settings.redis_url or not settings.redis_token:
        raise ValueError("UPSTASH_REDIS_REST_URL and UPSTASH_REDIS_REST_TOKEN must be set")
    return Redis(url=settings.redis_url, token=settings.redis_token)

"""Cache utilities with typed helpers.

Cache failures never propagate: a Valkey outage degrades to cache misses.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any, Optional, Union

from app.core.config import settings
from app.core.logging import get_logger

from .client import get_valkey_client

logger = get_logger("cache")

# Cache key prefixes for namespacing
CACHE_PREFIX = "marketlens"
CACHE_VERSION = "v1"


def cache_key(*parts: Union[str, int, float], prefix: str = "cache") -> str:
    """
    Generate a consistent cache key from parts.

    Usage:
        cache_key("analyzer", "abc123") -> "marketlens:v1:cache:analyzer:abc123"
    """
    sanitized = [str(part).replace(":", "_") for part in parts]
    return f"{CACHE_PREFIX}:{CACHE_VERSION}:{prefix}:{':'.join(sanitized)}"


def hash_key(payload: Any) -> str:
    """Stable short hash of a JSON-serializable payload (query params etc)."""
    encoded = json.dumps(payload, sort_keys=True, default=str).encode()
    return hashlib.md5(encoded).hexdigest()


def _serialize(value: Any) -> str:
    return json.dumps(value, default=str)


def _deserialize(value: str) -> Any:
    return json.loads(value)


class Cache:
    """Typed cache wrapper with common patterns."""

    def __init__(self, prefix: str = "cache", default_ttl: Optional[int] = None):
        self.prefix = prefix
        self.default_ttl = default_ttl or settings.cache_default_ttl

    async def get(self, key: str) -> Optional[Any]:
        """Get value from cache."""
        full_key = cache_key(key, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            value = await client.get(full_key)
            if value is not None:
                logger.debug(f"Cache hit: {full_key}")
                return _deserialize(value)
            logger.debug(f"Cache miss: {full_key}")
            return None
        except Exception as e:
            logger.warning(f"Cache get failed: {e}")
            return None

    async def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> bool:
        """Set value in cache with TTL."""
        full_key = cache_key(key, prefix=self.prefix)
        try:
            client = await get_valkey_client()
            await client.set(full_key, _serialize(value), ex=ttl or self.default_ttl)
            logger.debug(f"Cache set: {full_key}, TTL: {ttl or self.default_ttl}s")
            return True
        except Exception as e:
            logger.warning(f"Cache set failed: {e}")
            return False


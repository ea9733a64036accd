# services/cache/cache_utils.py
from __future__ import annotations

import inspect
from functools import wraps
from typing import Any, Awaitable, Callable, TypeVar, cast

from services.cache.cache_backend import JsonValue, cache_get, cache_set

T = TypeVar("T")


def should_cache_non_empty(val: Any) -> bool:
    """Cache non-empty JSON payloads; empty dicts/lists usually mean an upstream miss."""
    if val is None:
        return False
    if isinstance(val, (dict, list)):
        return len(val) > 0
    return isinstance(val, (str, int, float, bool))


def cacheable(
    *,
    ttl: int,
    key_fn: Callable[..., str],
    should_cache: Callable[[Any], bool] = should_cache_non_empty,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator for read-only coroutines.

    - ttl: Redis/shared TTL (local TTL handled by backend)
    - key_fn: key_fn(*args, **kwargs) -> str
    - should_cache: decide what values get cached
    """
    def deco(fn: Callable[..., T]) -> Callable[..., T]:
        if not inspect.iscoroutinefunction(fn):
            raise TypeError(f"cacheable expects an async function, got {fn.__qualname__}")

        @wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            key = (key_fn(*args, **kwargs) or "").strip()
            if key:
                hit = cache_get(key)
                if hit is not None:
                    return cast(T, hit)

            val = await cast(Callable[..., Awaitable[Any]], fn)(*args, **kwargs)

            if key and should_cache(val):
                cache_set(key, cast(JsonValue, val), ttl_seconds=ttl)

            return cast(T, val)

        return cast(Callable[..., T], wrapper)

    return deco

# services/cache/cache_backend.py
from __future__ import annotations

import json
import logging
import os
import time
from typing import Any, Dict, List, Optional, Tuple, Union

import redis

logger = logging.getLogger(__name__)

JsonValue = Union[Dict[str, Any], List[Any], str, int, float, bool, None]

DEFAULT_TTL_SEC = int(os.getenv("CACHE_DEFAULT_TTL_SEC", "60"))
LOCAL_CACHE_TTL_SEC = int(os.getenv("CACHE_LOCAL_TTL_SEC", "60"))

# isolates app + env in a shared Redis, e.g. "portfolio:prod:"
REDIS_PREFIX = os.getenv("REDIS_PREFIX", "portfolio:")

# key -> (expires_at_epoch, payload)
_LOCAL: Dict[str, Tuple[float, JsonValue]] = {}

_redis_client: Optional[redis.Redis] = None
_redis_checked = False


def _redis_url() -> Optional[str]:
    return os.getenv("REDIS_URL") or os.getenv("UPSTASH_REDIS_URL")


def get_redis_client() -> Optional[redis.Redis]:
    """Lazy init of the shared L2 client. None when no URL is configured."""
    global _redis_client, _redis_checked
    if _redis_checked:
        return _redis_client
    _redis_checked = True

    url = _redis_url()
    if not url:
        return None

    try:
        _redis_client = redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=2,
            socket_connect_timeout=2,
        )
    except (ValueError, redis.RedisError) as exc:
        logger.warning("Redis disabled, bad REDIS_URL: %s", exc)
        _redis_client = None
    return _redis_client


def _norm_key(key: str) -> str:
    return (key or "").strip().upper()


def _redis_key(k: str) -> str:
    return f"{REDIS_PREFIX}{k}"


def _local_get(k: str) -> Optional[JsonValue]:
    hit = _LOCAL.get(k)
    if not hit:
        return None
    expires_at, payload = hit
    if time.time() <= expires_at:
        return payload
    _LOCAL.pop(k, None)
    return None


def _local_set(k: str, payload: JsonValue, ttl_seconds: int) -> None:
    _LOCAL[k] = (time.time() + ttl_seconds, payload)


def cache_get(key: str) -> Optional[JsonValue]:
    """
    Read-through cache:
      1) local memory (short TTL)
      2) redis (shared across instances)
    """
    k = _norm_key(key)
    if not k:
        return None

    hit = _local_get(k)
    if hit is not None:
        return hit

    r = get_redis_client()
    if r is None:
        return None

    try:
        raw = r.get(_redis_key(k))
    except redis.RedisError as exc:
        logger.warning("Redis GET failed for %s: %s", k, exc)
        return None
    if not isinstance(raw, (str, bytes, bytearray)):
        return None

    try:
        payload: JsonValue = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Dropping undecodable cache entry %s", k)
        return None
    _local_set(k, payload, LOCAL_CACHE_TTL_SEC)
    return payload


def cache_set(key: str, payload: JsonValue, ttl_seconds: int = DEFAULT_TTL_SEC) -> None:
    """
    Write-through cache:
      - local TTL: min(LOCAL_CACHE_TTL_SEC, ttl_seconds)
      - redis TTL: ttl_seconds
    """
    k = _norm_key(key)
    if not k:
        return

    ttl_seconds = int(ttl_seconds) if ttl_seconds and ttl_seconds > 0 else DEFAULT_TTL_SEC
    _local_set(k, payload, min(LOCAL_CACHE_TTL_SEC, ttl_seconds))

    r = get_redis_client()
    if r is None:
        return

    try:
        r.setex(_redis_key(k), ttl_seconds, json.dumps(payload, separators=(",", ":"), default=str))
    except redis.RedisError as exc:
        # local cache still serves this instance
        logger.warning("Redis SETEX failed for %s: %s", k, exc)


def cache_clear() -> None:
    """Drop the in-process layer. Redis entries expire on their own."""
    _LOCAL.clear()

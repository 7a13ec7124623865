"""
db/redis_client.py
-------------------
redis-py client: singleton plus helpers for the optimization key schemas.

Key schemas:

  1. optimization:{trip_id}:{places_hash}:{settings_hash}
       Type : String (OptimizationResult JSON)
       TTL  : RESULT_CACHE_TTL  (default 3,600 s = 1 hour)

  2. optinflight:{cache_key}
       Type : String ("1")
       TTL  : INFLIGHT_WAIT_SECONDS (claim marker for an in-flight computation)

  3. optprogress:{trip_id}
       Type : Hash  (stage, percent, message, timestamp)
       TTL  : PROGRESS_TTL (reset on each write)

Environment variables (set in config.py):
    REDIS_HOST        default: localhost
    REDIS_PORT        default: 6379
    REDIS_DB          default: 0
    REDIS_PASSWORD    default: ""  (empty = no auth)
"""

from __future__ import annotations

import json
from typing import Any, Optional

import redis

import config

# Module-level singleton; initialised lazily on first call to get_redis()
_client: redis.Redis | None = None


def get_redis() -> redis.Redis:
    """Return the singleton Redis client, creating it on first call."""
    global _client
    if _client is None:
        kwargs: dict[str, Any] = {
            "host":             config.REDIS_HOST,
            "port":             config.REDIS_PORT,
            "db":               config.REDIS_DB,
            "decode_responses": True,   # return str, not bytes
        }
        if config.REDIS_PASSWORD:
            kwargs["password"] = config.REDIS_PASSWORD
        _client = redis.Redis(**kwargs)
    return _client


# ── Result cache ───────────────────────────────────────────────────────────────

def result_key(trip_id: str, places_hash: str, settings_hash: str) -> str:
    return f"optimization:{trip_id}:{places_hash}:{settings_hash}"


def inflight_key(cache_key: str) -> str:
    return f"optinflight:{cache_key}"


def get_json(key: str, client: Optional[redis.Redis] = None) -> Optional[dict]:
    """Return the decoded JSON value at *key*, or None on cache miss."""
    raw = (client or get_redis()).get(key)
    return json.loads(raw) if raw is not None else None


def set_json(key: str, value: dict, ttl: int, client: Optional[redis.Redis] = None) -> None:
    """SETEX *key* to the JSON encoding of *value*."""
    (client or get_redis()).setex(key, ttl, json.dumps(value, default=str, sort_keys=True))

"""
db/cache.py
-----------
ResultCache: explicit cache service for OptimizationResult payloads.

Constructed once per process and handed to the orchestrator; tests build
their own and call flush().

Backends (RESULT_BACKEND):
  in_memory  dict of key -> (expires_at, payload), expiry checked on read
  redis      SETEX JSON under optimization:{trip_id}:{places_hash}:{settings_hash}

Cache misses and write failures are non-fatal: get() returns None and set()
logs a warning.

In-flight coordination: the first request for a key claims it; concurrent
requests for the same key wait for the claimant to release, then read the
cached result. A waiter that times out recomputes (the pipeline is
deterministic, so duplicate work is harmless).
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Optional

import redis

import config
from db import redis_client

logger = logging.getLogger(__name__)

_POLL_SECONDS = 0.2


class ResultCache:
    def __init__(
        self,
        backend: str = config.RESULT_BACKEND,
        ttl: int = config.RESULT_CACHE_TTL,
        client: Optional[redis.Redis] = None,
    ) -> None:
        if backend not in ("in_memory", "redis"):
            raise ValueError(f"unknown result cache backend {backend!r}")
        self.backend = backend
        self.ttl = ttl
        self._client = client
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, dict]] = {}
        self._inflight: dict[str, threading.Event] = {}

    @staticmethod
    def key(trip_id: str, places_hash: str, settings_hash: str) -> str:
        return redis_client.result_key(trip_id, places_hash, settings_hash)

    def _redis(self) -> redis.Redis:
        if self._client is None:
            self._client = redis_client.get_redis()
        return self._client

    # ── get / set ─────────────────────────────────────────────────────────

    def get(self, key: str) -> Optional[dict]:
        if self.backend == "redis":
            try:
                return redis_client.get_json(key, self._redis())
            except (redis.RedisError, ValueError) as exc:
                logger.warning("Result cache read failed for %s: %s", key, exc)
                return None

        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, payload = entry
            if time.monotonic() >= expires_at:
                del self._entries[key]
                return None
            return payload

    def set(self, key: str, payload: dict) -> bool:
        """Store *payload* for ttl seconds. Returns False if the write failed."""
        if self.backend == "redis":
            try:
                redis_client.set_json(key, payload, self.ttl, self._redis())
            except redis.RedisError as exc:
                logger.warning("Result cache write failed for %s: %s", key, exc)
                return False
            return True

        with self._lock:
            self._entries[key] = (time.monotonic() + self.ttl, payload)
        return True

    def flush(self) -> None:
        """Drop every cached result and in-flight marker held by this instance."""
        with self._lock:
            self._entries.clear()
            for event in self._inflight.values():
                event.set()
            self._inflight.clear()
        if self.backend == "redis":
            try:
                r = self._redis()
                for pattern in ("optimization:*", "optinflight:*"):
                    for k in r.scan_iter(match=pattern):
                        r.delete(k)
            except redis.RedisError as exc:
                logger.warning("Result cache flush failed: %s", exc)

    # ── in-flight coordination ────────────────────────────────────────────

    def claim(self, key: str) -> bool:
        """True if the caller now owns the computation for *key*."""
        if self.backend == "redis":
            try:
                marker = redis_client.inflight_key(key)
                return bool(self._redis().set(
                    marker, "1", nx=True, ex=max(1, int(config.INFLIGHT_WAIT_SECONDS)),
                ))
            except redis.RedisError as exc:
                logger.warning("In-flight claim failed for %s: %s", key, exc)
                return True

        with self._lock:
            if key in self._inflight:
                return False
            self._inflight[key] = threading.Event()
            return True

    def wait(self, key: str, timeout: float = config.INFLIGHT_WAIT_SECONDS) -> Optional[dict]:
        """Wait for the in-flight computation of *key*; returns its cached result or None."""
        if self.backend == "redis":
            deadline = time.monotonic() + timeout
            marker = redis_client.inflight_key(key)
            while time.monotonic() < deadline:
                payload = self.get(key)
                if payload is not None:
                    return payload
                try:
                    if not self._redis().exists(marker):
                        return self.get(key)
                except redis.RedisError as exc:
                    logger.warning("In-flight wait failed for %s: %s", key, exc)
                    return None
                time.sleep(_POLL_SECONDS)
            return None

        with self._lock:
            event = self._inflight.get(key)
        if event is not None:
            event.wait(timeout)
        return self.get(key)

    def release(self, key: str) -> None:
        if self.backend == "redis":
            try:
                self._redis().delete(redis_client.inflight_key(key))
            except redis.RedisError as exc:
                logger.warning("In-flight release failed for %s: %s", key, exc)
            return

        with self._lock:
            event = self._inflight.pop(key, None)
        if event is not None:
            event.set()

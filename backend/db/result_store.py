"""
db/result_store.py
-------------------
Durable storage of OptimizationResult snapshots.

Logical record per run:
    {trip_id, settings_hash, places_hash, result, expires_at}

  InMemoryResultStore  -- list of records (tests, CLI demo, PERSIST_RESULTS=false)
  PostgresResultStore  -- optimization_results table via db.connection.get_conn()
"""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Protocol

import config
from db.repositories import optimization_repo


def build_record(
    trip_id: str,
    places_hash: str,
    settings_hash: str,
    result: dict,
    ttl_seconds: int = config.RESULT_CACHE_TTL,
) -> dict:
    return {
        "trip_id":           trip_id,
        "places_hash":       places_hash,
        "settings_hash":     settings_hash,
        "result":            result,
        "algorithm_version": result.get("generation_info", {}).get(
            "algorithm_version", config.ALGORITHM_VERSION,
        ),
        "expires_at":        datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds),
    }


class ResultStore(Protocol):
    def save(self, record: dict) -> None: ...

    def latest(self, trip_id: str, places_hash: str, settings_hash: str) -> Optional[dict]: ...


class InMemoryResultStore:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.records: list[dict] = []

    def save(self, record: dict) -> None:
        with self._lock:
            self.records.append(dict(record))

    def latest(self, trip_id: str, places_hash: str, settings_hash: str) -> Optional[dict]:
        now = datetime.now(timezone.utc)
        with self._lock:
            for record in reversed(self.records):
                if (record["trip_id"], record["places_hash"], record["settings_hash"]) == \
                        (trip_id, places_hash, settings_hash) and record["expires_at"] > now:
                    return record
        return None


class PostgresResultStore:
    """Writes through a connection-context factory (default: db.connection.get_conn)."""

    def __init__(self, conn_factory: Optional[Callable] = None) -> None:
        if conn_factory is None:
            from db.connection import get_conn
            conn_factory = get_conn
        self._conn_factory = conn_factory

    def save(self, record: dict) -> None:
        with self._conn_factory() as conn:
            optimization_repo.insert_result(conn, record)

    def latest(self, trip_id: str, places_hash: str, settings_hash: str) -> Optional[dict]:
        with self._conn_factory() as conn:
            return optimization_repo.get_latest_result(conn, trip_id, places_hash, settings_hash)


def build_result_store(persist: bool = config.PERSIST_RESULTS):
    return PostgresResultStore() if persist else InMemoryResultStore()

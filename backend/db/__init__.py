"""
db/
----
Storage layer for the FairTrip optimizer.

Storage architecture:
  PostgreSQL (psycopg2): durable result store and optional progress mirror
    tables: optimization_results, optimization_progress
    schema: db/schema.sql
    apply:  python scripts/run_migrations.py

  Redis (redis-py): volatile result cache and progress hashes
    optimization:{trip_id}:{places_hash}:{settings_hash}  TTL = RESULT_CACHE_TTL
    optinflight:{cache_key}                               TTL = INFLIGHT_WAIT_SECONDS
    optprogress:{trip_id}                                 TTL = PROGRESS_TTL

Public exports (import from here for convenience):
    from db import get_conn, get_redis, ResultCache
    from db.repositories import optimization_repo
"""

from db.cache import ResultCache
from db.connection import close_pool, get_conn
from db.redis_client import get_redis

__all__ = ["get_conn", "close_pool", "get_redis", "ResultCache"]

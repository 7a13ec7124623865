"""
db/repositories/optimization_repo.py
-------------------------------------
CRUD operations for the `optimization_results` and `optimization_progress` tables.

Source: db/schema.sql

All functions accept a psycopg2 connection object.
Commit/rollback is managed by the caller via db.connection.get_conn().
"""

from __future__ import annotations

import json
from typing import Any


# ── optimization_results table ─────────────────────────────────────────────────

def insert_result(conn, record: dict[str, Any]) -> str:
    """
    Insert one result row. Returns result_id (UUID string).

    Required keys:
        trip_id, places_hash, settings_hash, result, algorithm_version, expires_at

    result: dict or JSON string: OptimizationResult.to_dict().
    """
    row = dict(record)
    if isinstance(row.get("result"), dict):
        row["result"] = json.dumps(row["result"], sort_keys=True, default=str)

    sql = """
        INSERT INTO optimization_results (
            trip_id, places_hash, settings_hash,
            result, algorithm_version, expires_at
        ) VALUES (
            %(trip_id)s, %(places_hash)s, %(settings_hash)s,
            %(result)s::jsonb, %(algorithm_version)s, %(expires_at)s
        )
        RETURNING result_id
    """
    with conn.cursor() as cur:
        cur.execute(sql, row)
        return str(cur.fetchone()[0])


def get_latest_result(
    conn,
    trip_id: str,
    places_hash: str,
    settings_hash: str,
) -> dict | None:
    """Newest unexpired result for identical inputs, or None."""
    sql = """
        SELECT result_id, trip_id, places_hash, settings_hash,
               result, algorithm_version, created_at, expires_at
          FROM optimization_results
         WHERE trip_id = %s AND places_hash = %s AND settings_hash = %s
           AND expires_at > now()
         ORDER BY created_at DESC
         LIMIT 1
    """
    with conn.cursor() as cur:
        cur.execute(sql, (trip_id, places_hash, settings_hash))
        row = cur.fetchone()
        if row is None:
            return None
        cols = [d[0] for d in cur.description]
        out = dict(zip(cols, row))
    if isinstance(out.get("result"), str):
        out["result"] = json.loads(out["result"])
    return out


def delete_expired_results(conn) -> int:
    """Delete rows past expires_at. Returns the number of rows removed."""
    with conn.cursor() as cur:
        cur.execute("DELETE FROM optimization_results WHERE expires_at <= now()")
        return cur.rowcount


# ── optimization_progress table ────────────────────────────────────────────────

def upsert_progress(conn, trip_id: str, stage: str, percent: int, message: str) -> None:
    sql = """
        INSERT INTO optimization_progress (trip_id, stage, percent, message, updated_at)
        VALUES (%(trip_id)s, %(stage)s, %(percent)s, %(message)s, now())
        ON CONFLICT (trip_id) DO UPDATE
           SET stage = EXCLUDED.stage,
               percent = EXCLUDED.percent,
               message = EXCLUDED.message,
               updated_at = now()
    """
    with conn.cursor() as cur:
        cur.execute(sql, {"trip_id": trip_id, "stage": stage,
                          "percent": percent, "message": message})


def get_progress(conn, trip_id: str) -> dict | None:
    with conn.cursor() as cur:
        cur.execute(
            "SELECT trip_id, stage, percent, message, updated_at "
            "FROM optimization_progress WHERE trip_id = %s",
            (trip_id,),
        )
        row = cur.fetchone()
        if row is None:
            return None
        cols = [d[0] for d in cur.description]
        return dict(zip(cols, row))

"""
test_storage.py
───────────────────────────────────────────────────────────────────────────────
Postgres-backed result store and progress sink against a recording fake
connection, plus the migration statement splitter on the real schema file.
───────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import json
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

from db.repositories import optimization_repo
from db.result_store import PostgresResultStore, build_record
from modules.optimization.progress import PostgresProgressSink, ProgressEvent
from scripts.run_migrations import SCHEMA_PATH, split_statements


class _FakeCursor:
    def __init__(self, conn):
        self.conn = conn
        self.description = None
        self.rowcount = 0

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))
        if self.conn.rows:
            columns, row, self.rowcount = self.conn.rows.pop(0)
            self.description = [(c,) for c in columns]
            self._row = row
        else:
            self._row = None

    def fetchone(self):
        return self._row


class _FakeConn:
    def __init__(self, rows=None):
        self.executed: list[tuple[str, object]] = []
        self.rows = list(rows or [])

    def cursor(self):
        return _FakeCursor(self)


def _factory(conn):
    @contextmanager
    def _get_conn():
        yield conn
    return _get_conn


def test_result_store_insert_serialises_json():
    conn = _FakeConn(rows=[(["result_id"], ("0b5c-uuid",), 1)])
    store = PostgresResultStore(conn_factory=_factory(conn))
    payload = {"trip_id": "t1", "generation_info": {"algorithm_version": "v-test"}}

    store.save(build_record("t1", "ph", "sh", payload))

    sql, params = conn.executed[0]
    assert sql.startswith("INSERT INTO optimization_results")
    assert json.loads(params["result"]) == payload
    assert params["algorithm_version"] == "v-test"


def test_result_store_latest_decodes_row():
    expires = datetime.now(timezone.utc) + timedelta(hours=1)
    columns = ["result_id", "trip_id", "places_hash", "settings_hash",
               "result", "algorithm_version", "created_at", "expires_at"]
    row = ("id-1", "t1", "ph", "sh", '{"trip_id": "t1"}', "v-test", expires, expires)
    conn = _FakeConn(rows=[(columns, row, 1)])

    record = PostgresResultStore(conn_factory=_factory(conn)).latest("t1", "ph", "sh")

    assert record["result"] == {"trip_id": "t1"}
    assert conn.executed[0][1] == ("t1", "ph", "sh")


def test_result_store_latest_miss():
    conn = _FakeConn()
    assert PostgresResultStore(conn_factory=_factory(conn)).latest("t1", "ph", "sh") is None


def test_delete_expired_reports_rowcount():
    conn = _FakeConn(rows=[([], None, 3)])
    assert optimization_repo.delete_expired_results(conn) == 3


def test_progress_sink_upserts_latest_stage():
    conn = _FakeConn()
    sink = PostgresProgressSink(conn_factory=_factory(conn))
    sink.publish(ProgressEvent("t1", "routing", 70, "Sequencing route"))

    sql, params = conn.executed[0]
    assert "ON CONFLICT (trip_id) DO UPDATE" in sql
    assert params == {"trip_id": "t1", "stage": "routing", "percent": 70,
                      "message": "Sequencing route"}


def test_progress_sink_latest_row():
    updated = datetime(2026, 4, 1, 9, 0, tzinfo=timezone.utc)
    conn = _FakeConn(rows=[(["trip_id", "stage", "percent", "message", "updated_at"],
                            ("t1", "complete", 100, "done", updated), 1)])
    latest = PostgresProgressSink(conn_factory=_factory(conn)).latest("t1")

    assert latest["stage"] == "complete"
    assert latest["timestamp"] == str(updated)
    assert "updated_at" not in latest


def test_schema_statements():
    statements = split_statements(SCHEMA_PATH.read_text(encoding="utf-8"))

    assert len(statements) == 5
    assert statements[0].startswith("CREATE EXTENSION")
    assert all("--" not in s and "/*" not in s for s in statements)
    assert sum(s.startswith("CREATE TABLE IF NOT EXISTS") for s in statements) == 2


def test_split_statements_drops_comments():
    sql = "/* header; with semicolon */\nSELECT 1; -- trailing; comment\n\n;SELECT 2;"
    assert split_statements(sql) == ["SELECT 1", "SELECT 2"]

#!/usr/bin/env python
"""
scripts/run_migrations.py
--------------------------
Applies db/schema.sql (optimization_results, optimization_progress) to the
configured Postgres database, and prunes expired optimization results.

Usage:
    python scripts/run_migrations.py                  # apply schema
    python scripts/run_migrations.py --dry-run        # list statements only
    python scripts/run_migrations.py --prune-expired  # apply, then delete expired results

Exit codes:
    0 - success
    1 - connection failed or SQL error

Connection settings come from POSTGRES_* (see config.py). The schema uses
IF NOT EXISTS throughout, so re-running is safe; all statements share one
transaction.
"""

from __future__ import annotations

import argparse
import logging
import pathlib
import re
import sys

_BACKEND_DIR = pathlib.Path(__file__).resolve().parent.parent
sys.path.insert(0, str(_BACKEND_DIR))

import psycopg2

import config
from db.connection import connect_kwargs
from db.repositories import optimization_repo

logger = logging.getLogger("migrations")

SCHEMA_PATH = _BACKEND_DIR / "db" / "schema.sql"
EXPECTED_TABLES = ("optimization_results", "optimization_progress")

_BLOCK_COMMENT = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT = re.compile(r"--[^\n]*")


def split_statements(sql: str) -> list[str]:
    """Comment-free, non-empty statements of *sql* in file order."""
    sql = _LINE_COMMENT.sub("", _BLOCK_COMMENT.sub("", sql))
    return [stmt.strip() for stmt in sql.split(";") if stmt.strip()]


def _existing_tables(cur) -> set[str]:
    cur.execute(
        "SELECT table_name FROM information_schema.tables "
        "WHERE table_schema = 'public' AND table_name = ANY(%s)",
        (list(EXPECTED_TABLES),),
    )
    return {row[0] for row in cur.fetchall()}


def apply_schema(conn, statements: list[str]) -> None:
    with conn.cursor() as cur:
        before = _existing_tables(cur)
        for n, stmt in enumerate(statements, 1):
            head = " ".join(stmt.split())[:70]
            try:
                cur.execute(stmt)
            except psycopg2.Error as exc:
                logger.error("statement %d failed (%s): %s", n, head, exc.pgerror or exc)
                raise
            logger.info("  ok  %s", head)
        created = _existing_tables(cur) - before
    logger.info("tables created: %s", ", ".join(sorted(created)) or "none (already present)")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Apply the optimization storage schema.")
    parser.add_argument("--dry-run", action="store_true",
                        help="Print the statements without connecting.")
    parser.add_argument("--prune-expired", action="store_true",
                        help="After applying, delete optimization results past expires_at.")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="[migrations] %(message)s")

    statements = split_statements(SCHEMA_PATH.read_text(encoding="utf-8"))
    logger.info("%d statement(s) from %s -> %s@%s:%s", len(statements), SCHEMA_PATH.name,
                config.POSTGRES_DB, config.POSTGRES_HOST, config.POSTGRES_PORT)

    if args.dry_run:
        for n, stmt in enumerate(statements, 1):
            print(f"-- [{n:02d}]\n{stmt};\n")
        return 0

    try:
        conn = psycopg2.connect(**connect_kwargs())
    except psycopg2.OperationalError as exc:
        logger.error("cannot connect: %s", exc)
        return 1

    try:
        with conn:
            apply_schema(conn, statements)
            if args.prune_expired:
                removed = optimization_repo.delete_expired_results(conn)
                logger.info("pruned %d expired optimization result(s)", removed)
    except psycopg2.Error:
        logger.error("rolled back, no changes applied")
        return 1
    finally:
        conn.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())

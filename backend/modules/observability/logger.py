"""
Structured JSON logger: append-only, one object per line (.jsonl).

Usage:
    from modules.observability.logger import StructuredLogger

    slog = StructuredLogger()
    slog.log("trip_42", "STAGE_TRANSITION", {"stage": "normalizing", "percent": 30})

Records are written to  <LOGS_DIR>/<run_id>.jsonl  (config.LOGS_DIR).
Event types used by the engine:
    STAGE_TRANSITION, CACHE_HIT, CACHE_MISS, PERFORMANCE, RUN_FAILED
"""

from __future__ import annotations

import json
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import IO

import config


class StructuredLogger:
    """Thread-safe, append-only JSONL logger."""

    def __init__(self, logs_dir: Path | str | None = None) -> None:
        self._logs_dir = Path(logs_dir) if logs_dir else Path(config.LOGS_DIR)
        self._lock = threading.Lock()
        self._handles: dict[str, IO[str]] = {}  # run_id -> file handle

    @property
    def logs_dir(self) -> Path:
        return self._logs_dir

    # ── public API ────────────────────────────────────────────────────────

    def log(self, run_id: str, event_type: str, payload: dict) -> None:
        """Append one structured JSON record to ``<run_id>.jsonl``."""
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "run_id": run_id,
            "event_type": event_type,
            "payload": payload,
        }
        line = json.dumps(record, default=str, ensure_ascii=False) + "\n"

        with self._lock:
            fh = self._handles.get(run_id)
            if fh is None:
                fh = self._open(run_id)
            fh.write(line)
            fh.flush()

    def read(self, run_id: str, event_type: str | None = None) -> list[dict]:
        """Records written for *run_id*, optionally only those of *event_type*."""
        path = self._logs_dir / f"{_safe_name(run_id)}.jsonl"
        if not path.exists():
            return []
        with self._lock, open(path, encoding="utf-8") as fh:
            records = [json.loads(line) for line in fh if line.strip()]
        if event_type is None:
            return records
        return [r for r in records if r["event_type"] == event_type]

    def close(self, run_id: str | None = None) -> None:
        """Close one or all open file handles."""
        with self._lock:
            if run_id:
                fh = self._handles.pop(run_id, None)
                if fh:
                    fh.close()
            else:
                for fh in self._handles.values():
                    fh.close()
                self._handles.clear()

    # ── internals ─────────────────────────────────────────────────────────

    def _open(self, run_id: str) -> IO[str]:
        os.makedirs(self._logs_dir, exist_ok=True)
        path = self._logs_dir / f"{_safe_name(run_id)}.jsonl"
        fh = open(path, "a", encoding="utf-8")  # noqa: SIM115
        self._handles[run_id] = fh
        return fh


def _safe_name(run_id: str) -> str:
    return "".join(ch if ch.isalnum() or ch in "-_." else "_" for ch in run_id) or "default"

"""
modules/optimization/progress.py
---------------------------------
Optimization stage machine and progress sinks.

Stages and the percentage reported on entry / completion:

  collecting   10 -> 30
  normalizing  30 -> 50
  selecting    50 -> 70
  routing      70 -> 90
  complete     95 -> 100
  error        0  (terminal, reachable from any stage)

Sinks accept (trip_id, stage, percent, message). Writes are fire-and-forget:
a failing sink is logged and swallowed, never raised into the pipeline.
"""

from __future__ import annotations

import logging
import queue
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Protocol

import config

logger = logging.getLogger(__name__)

STAGES: tuple[str, ...] = ("collecting", "normalizing", "selecting", "routing", "complete")
ERROR_STAGE = "error"

# stage -> (percent on entry, percent on completion)
STAGE_PERCENT: dict[str, tuple[int, int]] = {
    "collecting":  (10, 30),
    "normalizing": (30, 50),
    "selecting":   (50, 70),
    "routing":     (70, 90),
    "complete":    (95, 100),
}

_ALLOWED_NEXT: dict[Optional[str], set[str]] = {
    None:          {"collecting"},
    "collecting":  {"normalizing", "complete"},   # complete directly on a cache hit
    "normalizing": {"selecting"},
    "selecting":   {"routing"},
    "routing":     {"complete"},
    "complete":    set(),
    ERROR_STAGE:   set(),
}


@dataclass
class ProgressEvent:
    trip_id: str
    stage: str
    percent: int
    message: str
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return {
            "trip_id":   self.trip_id,
            "stage":     self.stage,
            "percent":   self.percent,
            "message":   self.message,
            "timestamp": self.timestamp,
        }


class ProgressSink(Protocol):
    def publish(self, event: ProgressEvent) -> None: ...


# ── Sinks ──────────────────────────────────────────────────────────────────────

class InMemoryProgressSink:
    """Keeps every event and the latest one per trip; used by tests and the API."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[ProgressEvent] = []
        self._latest: dict[str, ProgressEvent] = {}

    def publish(self, event: ProgressEvent) -> None:
        with self._lock:
            self.events.append(event)
            self._latest[event.trip_id] = event

    def latest(self, trip_id: str) -> Optional[dict]:
        with self._lock:
            event = self._latest.get(trip_id)
        return event.to_dict() if event else None


class RedisProgressSink:
    """
    Stores the latest event per trip in a Redis hash.

    Key: optprogress:{trip_id}   Type: Hash   TTL: PROGRESS_TTL (reset on each write)
    """

    def __init__(self, client=None, ttl: int = config.PROGRESS_TTL) -> None:
        self._client = client
        self.ttl = ttl

    def _redis(self):
        if self._client is None:
            from db.redis_client import get_redis
            self._client = get_redis()
        return self._client

    @staticmethod
    def key(trip_id: str) -> str:
        return f"optprogress:{trip_id}"

    def publish(self, event: ProgressEvent) -> None:
        r = self._redis()
        key = self.key(event.trip_id)
        mapping = {k: str(v) for k, v in event.to_dict().items()}
        r.hset(key, mapping=mapping)
        r.expire(key, self.ttl)

    def latest(self, trip_id: str) -> Optional[dict]:
        raw = self._redis().hgetall(self.key(trip_id))
        if not raw:
            return None
        raw["percent"] = int(raw.get("percent", 0))
        return raw


class PostgresProgressSink:
    """Mirrors the latest event per trip into the optimization_progress table."""

    def __init__(self, conn_factory=None) -> None:
        if conn_factory is None:
            from db.connection import get_conn
            conn_factory = get_conn
        self._conn_factory = conn_factory

    def publish(self, event: ProgressEvent) -> None:
        from db.repositories import optimization_repo
        with self._conn_factory() as conn:
            optimization_repo.upsert_progress(
                conn, event.trip_id, event.stage, event.percent, event.message,
            )

    def latest(self, trip_id: str) -> Optional[dict]:
        from db.repositories import optimization_repo
        with self._conn_factory() as conn:
            row = optimization_repo.get_progress(conn, trip_id)
        if row is None:
            return None
        row["timestamp"] = str(row.pop("updated_at", ""))
        return row


class BackgroundProgressSink:
    """
    Wraps another sink and delivers events from a single daemon worker thread,
    so a slow or failing store never blocks the pipeline.
    """

    def __init__(self, inner: ProgressSink) -> None:
        self.inner = inner
        self._queue: "queue.Queue[ProgressEvent | threading.Event]" = queue.Queue()
        self._worker = threading.Thread(target=self._run, name="progress-sink", daemon=True)
        self._worker.start()

    def publish(self, event: ProgressEvent) -> None:
        self._queue.put(event)

    def latest(self, trip_id: str) -> Optional[dict]:
        return self.inner.latest(trip_id)  # type: ignore[attr-defined]

    def flush(self, timeout: float = 5.0) -> None:
        """Block until queued events are delivered (tests / shutdown)."""
        done = threading.Event()
        self._queue.put(done)
        done.wait(timeout)

    def _run(self) -> None:
        while True:
            event = self._queue.get()
            if isinstance(event, threading.Event):
                event.set()
                continue
            try:
                self.inner.publish(event)
            except Exception as exc:
                logger.warning("Progress write failed for %s (%s): %s",
                               event.trip_id, event.stage, exc)


def build_progress_sink(backend: str = config.PROGRESS_BACKEND):
    """Sink for the configured PROGRESS_BACKEND ("in_memory" | "redis" | "postgres")."""
    if backend == "redis":
        return BackgroundProgressSink(RedisProgressSink())
    if backend == "postgres":
        return BackgroundProgressSink(PostgresProgressSink())
    return InMemoryProgressSink()


# ── Stage machine ──────────────────────────────────────────────────────────────

class StageTracker:
    """
    Enforces the stage order for one run and emits progress events.

    Every publish goes through _emit(), which swallows sink failures.
    """

    def __init__(self, trip_id: str, sink: Optional[ProgressSink] = None) -> None:
        self.trip_id = trip_id
        self.sink = sink
        self.stage: Optional[str] = None
        self.history: list[ProgressEvent] = []

    def enter(self, stage: str, message: str) -> None:
        if stage not in _ALLOWED_NEXT.get(self.stage, set()):
            raise RuntimeError(f"ILLEGAL_TRANSITION: {self.stage} -> {stage}")
        self.stage = stage
        self._emit(stage, STAGE_PERCENT[stage][0], message)

    def finish(self, message: str) -> None:
        """Report completion of the current stage."""
        if self.stage not in STAGE_PERCENT:
            return
        self._emit(self.stage, STAGE_PERCENT[self.stage][1], message)

    def fail(self, message: str) -> None:
        self.stage = ERROR_STAGE
        self._emit(ERROR_STAGE, 0, message)

    def _emit(self, stage: str, percent: int, message: str) -> None:
        event = ProgressEvent(self.trip_id, stage, percent, message)
        self.history.append(event)
        if self.sink is None:
            return
        try:
            self.sink.publish(event)
        except Exception as exc:
            logger.warning("Progress write failed for %s (%s): %s", self.trip_id, stage, exc)

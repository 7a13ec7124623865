"""
test_cache_and_progress.py
───────────────────────────────────────────────────────────────────────────────
ResultCache (in-memory and Redis backends), in-flight coordination, result
store records, the stage machine and the progress sinks.
───────────────────────────────────────────────────────────────────────────────
"""

from __future__ import annotations

import fnmatch
import threading
import time

import pytest
import redis

from db.cache import ResultCache
from db.result_store import InMemoryResultStore, build_record
from modules.optimization.progress import (
    BackgroundProgressSink,
    InMemoryProgressSink,
    RedisProgressSink,
    StageTracker,
)


class _FakeRedis:
    """Just enough of the redis-py surface for the cache and progress sink."""

    def __init__(self):
        self.store: dict[str, object] = {}
        self.ttls: dict[str, int] = {}

    def get(self, key):
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self.store[key] = value
        self.ttls[key] = ttl

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        if ex is not None:
            self.ttls[key] = ex
        return True

    def exists(self, key):
        return int(key in self.store)

    def delete(self, *keys):
        for key in keys:
            self.store.pop(key, None)

    def scan_iter(self, match="*"):
        return [k for k in list(self.store) if fnmatch.fnmatch(k, match)]

    def hset(self, key, mapping):
        self.store.setdefault(key, {}).update(mapping)

    def hgetall(self, key):
        return dict(self.store.get(key, {}))

    def expire(self, key, ttl):
        self.ttls[key] = ttl


class _DownRedis:
    def __getattr__(self, name):
        def _fail(*args, **kwargs):
            raise redis.ConnectionError("connection refused")
        return _fail


# ─────────────────────────────────────────────────────────────────────────────
# ResultCache
# ─────────────────────────────────────────────────────────────────────────────

def test_key_format():
    assert ResultCache.key("t1", "ph", "sh") == "optimization:t1:ph:sh"


def test_in_memory_get_set_and_flush():
    cache = ResultCache(backend="in_memory", ttl=60)
    assert cache.get("k") is None
    assert cache.set("k", {"trip_id": "t1"})
    assert cache.get("k") == {"trip_id": "t1"}
    cache.flush()
    assert cache.get("k") is None


def test_in_memory_entries_expire():
    cache = ResultCache(backend="in_memory", ttl=0)
    cache.set("k", {"trip_id": "t1"})
    assert cache.get("k") is None


def test_unknown_backend_is_rejected():
    with pytest.raises(ValueError):
        ResultCache(backend="memcached")


def test_claim_is_exclusive_until_released():
    cache = ResultCache(backend="in_memory")
    assert cache.claim("k")
    assert not cache.claim("k")
    cache.release("k")
    assert cache.claim("k")


def test_waiter_receives_claimants_result():
    cache = ResultCache(backend="in_memory")
    assert cache.claim("k")

    def finish():
        time.sleep(0.05)
        cache.set("k", {"answer": 42})
        cache.release("k")

    worker = threading.Thread(target=finish)
    worker.start()
    assert cache.wait("k", timeout=5) == {"answer": 42}
    worker.join()


def test_redis_backend_round_trip_and_ttl():
    fake = _FakeRedis()
    cache = ResultCache(backend="redis", ttl=120, client=fake)
    key = ResultCache.key("t1", "ph", "sh")

    assert cache.set(key, {"trip_id": "t1"})
    assert fake.ttls[key] == 120
    assert cache.get(key) == {"trip_id": "t1"}

    assert cache.claim(key)
    assert not cache.claim(key)
    cache.release(key)
    assert cache.wait(key, timeout=1) == {"trip_id": "t1"}

    cache.flush()
    assert fake.store == {}


def test_redis_outage_is_not_fatal():
    cache = ResultCache(backend="redis", client=_DownRedis())
    assert cache.get("k") is None
    assert cache.set("k", {"x": 1}) is False
    assert cache.claim("k") is True
    cache.release("k")


# ─────────────────────────────────────────────────────────────────────────────
# Result store
# ─────────────────────────────────────────────────────────────────────────────

def test_in_memory_store_latest():
    store = InMemoryResultStore()
    payload = {"generation_info": {"algorithm_version": "v-test"}}
    store.save(build_record("t1", "ph", "sh", payload))
    record = store.latest("t1", "ph", "sh")

    assert record["algorithm_version"] == "v-test"
    assert record["result"] is payload
    assert store.latest("t1", "ph", "other") is None


def test_expired_records_are_not_returned():
    store = InMemoryResultStore()
    store.save(build_record("t1", "ph", "sh", {}, ttl_seconds=-1))
    assert store.latest("t1", "ph", "sh") is None


# ─────────────────────────────────────────────────────────────────────────────
# Stage machine
# ─────────────────────────────────────────────────────────────────────────────

def test_stage_order_and_percentages():
    sink = InMemoryProgressSink()
    tracker = StageTracker("t1", sink)
    for stage in ("collecting", "normalizing", "selecting", "routing", "complete"):
        tracker.enter(stage, f"{stage}...")
        tracker.finish("done")

    percents = [e.percent for e in sink.events]
    assert percents == sorted(percents)
    assert percents[0] == 10 and percents[-1] == 100
    assert sink.latest("t1")["stage"] == "complete"


def test_illegal_transition_is_rejected():
    tracker = StageTracker("t1")
    tracker.enter("collecting", "start")
    with pytest.raises(RuntimeError, match="ILLEGAL_TRANSITION"):
        tracker.enter("routing", "skip ahead")


def test_error_is_terminal():
    sink = InMemoryProgressSink()
    tracker = StageTracker("t1", sink)
    tracker.enter("collecting", "start")
    tracker.fail("boom")

    assert sink.latest("t1")["stage"] == "error"
    assert sink.latest("t1")["percent"] == 0
    with pytest.raises(RuntimeError):
        tracker.enter("normalizing", "resume")


def test_cache_hit_may_complete_from_collecting():
    tracker = StageTracker("t1")
    tracker.enter("collecting", "start")
    tracker.enter("complete", "from cache")
    assert tracker.stage == "complete"


def test_failing_sink_never_breaks_the_run():
    class _Broken:
        def publish(self, event):
            raise OSError("disk full")

    tracker = StageTracker("t1", _Broken())
    tracker.enter("collecting", "start")
    tracker.finish("done")
    assert [e.stage for e in tracker.history] == ["collecting", "collecting"]


def test_background_sink_delivers_in_order():
    inner = InMemoryProgressSink()
    sink = BackgroundProgressSink(inner)
    tracker = StageTracker("t1", sink)
    tracker.enter("collecting", "start")
    tracker.enter("normalizing", "next")
    sink.flush()

    assert [e.stage for e in inner.events] == ["collecting", "normalizing"]
    assert sink.latest("t1")["stage"] == "normalizing"


def test_redis_progress_sink():
    fake = _FakeRedis()
    sink = RedisProgressSink(client=fake, ttl=90)
    tracker = StageTracker("t1", sink)
    tracker.enter("collecting", "start")

    latest = sink.latest("t1")
    assert latest["stage"] == "collecting"
    assert latest["percent"] == 10
    assert fake.ttls["optprogress:t1"] == 90
    assert sink.latest("unknown") is None

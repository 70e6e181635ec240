import asyncio

import models
from constants import CONTAINER
from datetime_utils import now_ms
from grading import aggregate
from session_cache import CosmosSessionStore, InMemorySessionStore, SessionCache, SessionKey, SessionStore


class FailingStore(SessionStore):
    async def get(self, key):
        raise RuntimeError("store down")

    async def put(self, key, snapshot):
        raise RuntimeError("store down")

    async def delete(self, key):
        raise RuntimeError("store down")


def _snapshot(**overrides):
    results = aggregate([models.TestCaseResult(input="1", expected="1", actual="1", passed=True, execution_time=4)])
    data = dict(code="print(input())", time_remaining=1200, session_start_time=now_ms(), question_id="q1",
                test_results=results)
    data.update(overrides)
    return models.SessionSnapshot(**data)


def test_key_format():
    assert str(SessionKey("a1", "q1", "u1")) == "codeEditor_a1_q1_u1"


def test_round_trip_restores_code_time_and_results():
    cache = SessionCache(InMemorySessionStore())
    key = SessionKey("a1", "q1", "u1")
    snapshot = _snapshot()

    async def scenario():
        await cache.save(key, snapshot)
        return await cache.load(key)

    loaded = asyncio.run(scenario())
    assert loaded.code == snapshot.code
    assert loaded.time_remaining == snapshot.time_remaining
    assert loaded.test_results == snapshot.test_results
    assert loaded.last_saved > 0


def test_entries_older_than_max_age_are_dropped():
    store = InMemorySessionStore()
    cache = SessionCache(store, max_age_seconds=60)
    key = SessionKey("a1", "q1", "u1")

    async def scenario():
        await store.put(key, _snapshot(last_saved=now_ms() - 61_000))
        first = await cache.load(key)
        second = await store.get(key)
        return first, second

    first, second = asyncio.run(scenario())
    assert first is None
    assert second is None


def test_clear_removes_entry():
    cache = SessionCache(InMemorySessionStore())
    key = SessionKey("a1", "q1", "u1")

    async def scenario():
        await cache.save(key, _snapshot())
        await cache.clear(key)
        return await cache.load(key)

    assert asyncio.run(scenario()) is None


def test_store_failures_are_logged_not_raised():
    cache = SessionCache(FailingStore())
    key = SessionKey("a1", "q1", "u1")

    async def scenario():
        saved = await cache.save(key, _snapshot())
        loaded = await cache.load(key)
        await cache.clear(key)
        return saved, loaded

    saved, loaded = asyncio.run(scenario())
    assert saved.code == "print(input())"
    assert loaded is None


def test_cosmos_store_documents_are_partitioned_by_user(db):
    store = CosmosSessionStore(db)
    key = SessionKey("a1", "q1", "u1")

    async def scenario():
        await store.put(key, _snapshot(last_saved=123))
        return await store.get(key)

    loaded = asyncio.run(scenario())
    doc = db.storage[CONTAINER["SESSION_CACHE"]]["codeEditor_a1_q1_u1"]
    assert doc["user_id"] == "u1"
    assert doc["snapshot"]["timeRemaining"] == 1200
    assert doc["snapshot"]["lastSaved"] == 123
    assert loaded.question_id == "q1"

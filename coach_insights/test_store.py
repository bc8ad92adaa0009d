"""
Key-Value Store Tests
=====================
"""

import json
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from coach_insights.store import InMemoryStore, SqlKeyValueStore, dump_json_array, read_json_array
from database import Base


@pytest.fixture
def sql_store():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield SqlKeyValueStore(sessionmaker(bind=engine))
    engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def store(request, sql_store):
    if request.param == "memory":
        return InMemoryStore()
    return sql_store


class TestKeyValueStore:

    def test_get_set_remove(self, store):
        assert store.get("a") is None

        store.set("a", "1")
        store.set("a", "2")
        assert store.get("a") == "2"

        store.remove("a")
        assert store.get("a") is None

    def test_multi_set(self, store):
        store.multi_set([("b", "2"), ("a", "1")])

        assert store.get("a") == "1"
        assert store.get("b") == "2"

    def test_update_none_leaves_value(self, store):
        store.set("a", "keep")

        assert store.update("a", lambda raw: None) is None
        assert store.get("a") == "keep"

    def test_update_receives_current_value(self, store):
        store.set("counter", "1")

        store.update("counter", lambda raw: str(int(raw) + 1))

        assert store.get("counter") == "2"

    def test_update_is_atomic_per_key(self):
        store = InMemoryStore()
        store.set("counter", "0")

        def bump():
            for _ in range(200):
                store.update("counter", lambda raw: str(int(raw) + 1))

        threads = [threading.Thread(target=bump) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert store.get("counter") == "1600"


class TestJsonArrays:

    @pytest.mark.parametrize("raw", [None, "", "{broken", '{"not": "a list"}', "42"])
    def test_unreadable_values_are_empty(self, raw):
        assert read_json_array(raw, "coach.outcomes") == []

    def test_round_trip_keeps_unicode(self):
        encoded = dump_json_array([{"label": "Ruhe zuerst – später handeln"}])

        assert "–" in encoded
        assert read_json_array(encoded) == json.loads(encoded)

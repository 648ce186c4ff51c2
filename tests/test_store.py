"""Intent store persistence."""

import peewee
import pytest

from kohakuport.db.intent import IntentRecord
from kohakuport.models.enums import Protocol
from kohakuport.models.tunnel import TunnelIntent
from kohakuport.storage.exceptions import StoreOpenError, StorePersistenceError
from kohakuport.storage.intents import IntentStore


def test_intents_survive_reopen(tmp_path):
    path = str(tmp_path / "state.db")
    store = IntentStore(path)
    store.open()
    store.set(
        TunnelIntent(
            "abc",
            8443,
            protocol_override=Protocol.HTTPS,
            url="https://demo.ngrok.app",
            pooling_enabled=True,
            description="demo",
        )
    )
    store.set(TunnelIntent("def", 5432))
    store.close()

    reopened = IntentStore(path)
    reopened.open()
    try:
        intent = reopened.get("abc")
        assert intent.target_port == 8443
        assert intent.protocol_override == Protocol.HTTPS
        assert intent.url == "https://demo.ngrok.app"
        assert intent.pooling_enabled is True
        assert intent.description == "demo"
        assert reopened.get("def").protocol_override is None
        assert [i.container_id for i in reopened.list()] == ["abc", "def"]
    finally:
        reopened.close()


def test_replacing_keeps_creation_time(store):
    first = store.set(TunnelIntent("abc", 8080))
    second = store.set(TunnelIntent("abc", 9090))

    assert second.created_at == first.created_at
    assert store.get("abc").target_port == 9090
    assert len(store) == 1


def test_delete(store):
    store.set(TunnelIntent("abc", 8080))

    assert store.delete("abc") is True
    assert store.delete("abc") is False
    assert "abc" not in store


def test_failed_write_leaves_memory_unchanged(store, monkeypatch):
    def broken_upsert(intent):
        raise peewee.OperationalError("disk I/O error")

    monkeypatch.setattr(IntentRecord, "upsert", broken_upsert)

    with pytest.raises(StorePersistenceError):
        store.set(TunnelIntent("abc", 8080))

    assert store.get("abc") is None
    assert store.list() == []


def test_failed_delete_keeps_intent(store, monkeypatch):
    store.set(TunnelIntent("abc", 8080))

    def broken_delete(pk):
        raise peewee.OperationalError("database is locked")

    monkeypatch.setattr(IntentRecord, "delete_by_id", broken_delete)

    with pytest.raises(StorePersistenceError):
        store.delete("abc")

    assert store.get("abc") is not None


def test_unopenable_database(tmp_path):
    # A directory cannot be opened as a database file
    store = IntentStore(str(tmp_path))

    with pytest.raises(StoreOpenError):
        store.open()

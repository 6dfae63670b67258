"""Tests for the ledger store backends."""
from __future__ import annotations

import pytest

from agentmarket.errors import ConflictError, DuplicateKeyError, PersistenceError
from agentmarket.models import AgentStatus
from agentmarket.store import AGENTS, POSTS, PREDICTIONS, SNAPSHOTS, JsonlStore, MemoryStore


def _agent(aid, balance=100.0, status="active"):
    return {"id": aid, "name": aid, "archetype": "saver", "balance": balance, "status": status}


def test_select_filters_null_and_in():
    store = MemoryStore()
    store.insert(PREDICTIONS, {"id": "a", "user_id": "u", "result": None, "epoch": 1})
    store.insert(PREDICTIONS, {"id": "b", "user_id": "u", "result": "win", "epoch": 1})
    store.insert(PREDICTIONS, {"id": "c", "user_id": "v", "result": None, "epoch": 2})

    open_rows = store.select(PREDICTIONS, {"result": None}, order_by="id")
    assert [r["id"] for r in open_rows] == ["a", "c"]
    assert store.count(PREDICTIONS, {"id": ["a", "b"]}) == 2
    assert store.max(PREDICTIONS, "epoch") == 2
    assert store.max(PREDICTIONS, "epoch", {"user_id": "nobody"}) is None


def test_enum_values_match_stored_strings():
    store = MemoryStore()
    store.insert(AGENTS, _agent("saver", status=AgentStatus.STRUGGLING))
    assert store.first(AGENTS)["status"] == "struggling"
    assert store.count(AGENTS, {"status": AgentStatus.STRUGGLING}) == 1


def test_select_returns_copies():
    store = MemoryStore()
    store.insert(AGENTS, _agent("saver"))
    row = store.first(AGENTS, {"id": "saver"})
    row["balance"] = 0
    assert store.first(AGENTS, {"id": "saver"})["balance"] == 100.0


def test_unique_key_enforced():
    store = MemoryStore()
    store.insert(SNAPSHOTS, {"agent_id": "saver", "epoch": 1, "opening_balance": 1, "closing_balance": 2})
    store.insert(SNAPSHOTS, {"agent_id": "saver", "epoch": 2, "opening_balance": 2, "closing_balance": 3})
    with pytest.raises(DuplicateKeyError) as exc:
        store.insert(SNAPSHOTS, {"agent_id": "saver", "epoch": 1, "opening_balance": 9, "closing_balance": 9})
    assert isinstance(exc.value, ConflictError)
    assert store.count(SNAPSHOTS) == 2


def test_update_returns_rowcount():
    store = MemoryStore()
    store.insert(PREDICTIONS, {"id": "a", "result": None})
    assert store.update(PREDICTIONS, {"id": "a", "result": None}, {"result": "win"}) == 1
    assert store.update(PREDICTIONS, {"id": "a", "result": None}, {"result": "lose"}) == 0
    assert store.first(PREDICTIONS, {"id": "a"})["result"] == "win"


def test_atomic_rolls_back_on_error():
    store = MemoryStore()
    store.insert(AGENTS, _agent("saver"))
    with pytest.raises(RuntimeError):
        with store.atomic():
            store.update(AGENTS, {"id": "saver"}, {"balance": 1.0})
            store.insert(AGENTS, _agent("gambler"))
            raise RuntimeError("boom")
    assert store.count(AGENTS) == 1
    assert store.first(AGENTS, {"id": "saver"})["balance"] == 100.0


def test_jsonl_store_persists_and_reloads(tmp_path):
    store = JsonlStore(tmp_path)
    store.insert(AGENTS, _agent("saver"))
    store.insert(AGENTS, _agent("gambler"))
    store.update(AGENTS, {"id": "gambler"}, {"balance": 42.5})

    reloaded = JsonlStore(tmp_path)
    assert reloaded.count(AGENTS) == 2
    assert reloaded.first(AGENTS, {"id": "gambler"})["balance"] == 42.5


def test_jsonl_atomic_flushes_once(tmp_path):
    store = JsonlStore(tmp_path)
    with store.atomic():
        store.insert(AGENTS, _agent("saver"))
        store.insert(AGENTS, _agent("trader"))
        assert not (tmp_path / "economy_agents.jsonl").exists()
    assert JsonlStore(tmp_path).count(AGENTS) == 2


def test_jsonl_write_failure_becomes_persistence_error(tmp_path, monkeypatch):
    store = JsonlStore(tmp_path)

    def disk_full(path, row):
        raise OSError("No space left on device")

    monkeypatch.setattr("agentmarket.store.append_jsonl", disk_full)
    with pytest.raises(PersistenceError):
        store.insert(POSTS, {"id": "p1", "agent_id": "saver", "content": "hello"})
    assert store.count(POSTS) == 0


def test_failed_update_keeps_memory_in_step_with_disk(tmp_path, monkeypatch):
    store = JsonlStore(tmp_path)
    store.insert(AGENTS, _agent("saver"))

    def disk_full(path, rows):
        raise OSError("No space left on device")

    monkeypatch.setattr("agentmarket.store.write_jsonl_atomic", disk_full)
    with pytest.raises(PersistenceError):
        store.update(AGENTS, {"id": "saver"}, {"balance": 5.0})
    assert store.first(AGENTS, {"id": "saver"})["balance"] == 100.0
    assert JsonlStore(tmp_path).first(AGENTS, {"id": "saver"})["balance"] == 100.0


def test_failed_atomic_flush_rolls_memory_back(tmp_path, monkeypatch):
    store = JsonlStore(tmp_path)
    store.insert(AGENTS, _agent("saver"))

    def disk_full(path, rows):
        raise OSError("No space left on device")

    monkeypatch.setattr("agentmarket.store.write_jsonl_atomic", disk_full)
    with pytest.raises(PersistenceError):
        with store.atomic():
            store.update(AGENTS, {"id": "saver"}, {"balance": 1.0})
            store.insert(AGENTS, _agent("gambler"))
    assert [r["id"] for r in store.select(AGENTS)] == ["saver"]
    assert store.first(AGENTS, {"id": "saver"})["balance"] == 100.0


def test_stores_sharing_a_directory_see_each_others_writes(tmp_path):
    one = JsonlStore(tmp_path)
    two = JsonlStore(tmp_path)
    one.insert(AGENTS, _agent("saver"))
    with pytest.raises(DuplicateKeyError):
        two.insert(AGENTS, _agent("saver"))

    two.update(AGENTS, {"id": "saver"}, {"balance": 7.0})
    two.insert(AGENTS, _agent("gambler"))
    assert one.first(AGENTS, {"id": "saver"})["balance"] == 7.0
    assert one.count(AGENTS) == 2


def test_claim_is_exclusive_across_stores(tmp_path):
    one = JsonlStore(tmp_path)
    two = JsonlStore(tmp_path)
    with one.claim("epoch"):
        with pytest.raises(ConflictError) as exc:
            with two.claim("epoch"):
                pass
        assert exc.value.code == "epoch_in_progress"
        with two.claim("settlement"):
            pass
    with two.claim("epoch"):
        pass


def test_unknown_table_rejected():
    with pytest.raises(ValueError):
        MemoryStore().select("nope")

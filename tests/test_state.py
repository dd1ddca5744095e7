"""Tests for the SQLite and JSON-file state stores."""

import json
import os
import stat
from unittest.mock import patch

import pytest

from core.models import ExecutionRecord
from core.state import JsonFileStateStore, SqliteStateStore


@pytest.fixture(params=["sqlite", "json"])
def store(request, in_memory_db, tmp_path):
    if request.param == "sqlite":
        return SqliteStateStore(in_memory_db)
    return JsonFileStateStore(tmp_path / "state.json")


class TestStoreContract:
    def test_empty(self, store):
        assert store.get("essentials", "abc") is None
        assert store.all() == []

    def test_put_then_get(self, store):
        store.put(ExecutionRecord("essentials", "abc", detail="installed"))
        record = store.get("essentials", "abc")
        assert record.step_name == "essentials"
        assert record.detail == "installed"

    def test_hash_mismatch_is_a_miss(self, store):
        store.put(ExecutionRecord("swap", "old"))
        assert store.get("swap", "new") is None

    def test_rerun_replaces_record(self, store):
        store.put(ExecutionRecord("swap", "h1", completed_at="2026-01-01T00:00:00+00:00"))
        store.put(ExecutionRecord("swap", "h2", completed_at="2026-01-02T00:00:00+00:00"))
        assert store.get("swap", "h1") is None
        assert store.get("swap", "h2") is not None
        assert len(store.all()) == 1

    def test_all_ordered_by_completion(self, store):
        store.put(ExecutionRecord("b", "x", completed_at="2026-01-02T00:00:00+00:00"))
        store.put(ExecutionRecord("a", "x", completed_at="2026-01-01T00:00:00+00:00"))
        assert [r.step_name for r in store.all()] == ["a", "b"]

    def test_clear_one(self, store):
        store.put(ExecutionRecord("a", "x"))
        store.put(ExecutionRecord("b", "x"))
        assert store.clear("a") == 1
        assert store.clear("a") == 0
        assert [r.step_name for r in store.all()] == ["b"]

    def test_clear_all(self, store):
        store.put(ExecutionRecord("a", "x"))
        store.put(ExecutionRecord("b", "x"))
        assert store.clear() == 2
        assert store.all() == []


class TestJsonFileStateStore:
    def test_survives_reopen(self, tmp_path):
        path = tmp_path / "state.json"
        JsonFileStateStore(path).put(ExecutionRecord("caddy", "abc"))
        assert JsonFileStateStore(path).get("caddy", "abc") is not None

    def test_file_format(self, tmp_path):
        path = tmp_path / "state.json"
        JsonFileStateStore(path).put(ExecutionRecord("caddy", "abc"))
        data = json.loads(path.read_text())
        assert data["version"] == 1
        assert data["records"]["caddy"]["param_hash"] == "abc"

    def test_file_is_private(self, tmp_path):
        path = tmp_path / "state.json"
        JsonFileStateStore(path).put(ExecutionRecord("caddy", "abc"))
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600

    def test_no_temp_files_left(self, tmp_path):
        store = JsonFileStateStore(tmp_path / "state.json")
        store.put(ExecutionRecord("a", "x"))
        store.put(ExecutionRecord("b", "x"))
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_creates_parent_directory(self, tmp_path):
        path = tmp_path / "nested" / "dir" / "state.json"
        JsonFileStateStore(path).put(ExecutionRecord("a", "x"))
        assert path.exists()

    def test_corrupt_file_starts_empty(self, tmp_path):
        path = tmp_path / "state.json"
        path.write_text("{not json")
        store = JsonFileStateStore(path)
        assert store.all() == []
        store.put(ExecutionRecord("a", "x"))
        assert JsonFileStateStore(path).get("a", "x") is not None

    @pytest.mark.parametrize("content", [
        {"version": 1, "records": {"a": 1}},
        {"version": 1, "records": ["a"]},
        ["records"],
    ])
    def test_malformed_records_start_empty(self, tmp_path, content):
        path = tmp_path / "state.json"
        path.write_text(json.dumps(content))
        store = JsonFileStateStore(path)
        assert store.get("a", "x") is None
        store.put(ExecutionRecord("a", "x"))
        assert JsonFileStateStore(path).get("a", "x") is not None

    def test_failed_write_keeps_previous_file(self, tmp_path):
        path = tmp_path / "state.json"
        store = JsonFileStateStore(path)
        store.put(ExecutionRecord("a", "x"))
        before = path.read_text()

        with patch("core.state.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                store.put(ExecutionRecord("b", "y"))

        assert path.read_text() == before
        assert store.get("b", "y") is None
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

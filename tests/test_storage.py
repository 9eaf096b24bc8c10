import json

import pytest

from drscan.storage import JsonFileStore, KeyValueStore, MemoryStore


def test_memory_store_returns_default_for_missing_key():
    store = MemoryStore()
    assert store.get("darkMode", True) is True
    store.set("darkMode", False)
    assert store.get("darkMode", True) is False


def test_memory_store_copies_values():
    store = MemoryStore()
    value = [{"a": 1}]
    store.set("k", value)
    value[0]["a"] = 2
    assert store.get("k") == [{"a": 1}]


def test_file_store_survives_reopen(tmp_path):
    path = tmp_path / "nested" / "store.json"
    store = JsonFileStore(path)
    store.set("darkMode", False)
    store.set("analysisHistory", [{"id": "a"}])

    reopened = JsonFileStore(path)
    assert reopened.get("darkMode") is False
    assert reopened.get("analysisHistory") == [{"id": "a"}]
    assert json.loads(path.read_text(encoding="utf-8"))["darkMode"] is False


def test_file_store_leaves_no_temp_files(tmp_path):
    store = JsonFileStore(tmp_path / "store.json")
    for i in range(3):
        store.set("n", i)
    assert [p.name for p in tmp_path.iterdir()] == ["store.json"]


def test_corrupt_file_starts_empty(tmp_path):
    path = tmp_path / "store.json"
    path.write_text("{not json", encoding="utf-8")
    store = JsonFileStore(path)
    assert store.get("analysisHistory", []) == []

    path.write_text("[1, 2, 3]", encoding="utf-8")
    assert JsonFileStore(path).get("darkMode") is None


def test_key_value_store_is_abstract():
    with pytest.raises(TypeError):
        KeyValueStore()

    class _GetOnly(KeyValueStore):
        def get(self, key, default=None):
            return default

    with pytest.raises(TypeError):
        _GetOnly()

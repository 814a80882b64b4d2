from __future__ import annotations

import sqlite3

import pytest

from cairn.errors import StoreError
from cairn.knowledge_store import SQLiteKnowledgeStore


def test_insert_sets_matching_timestamps(sqlite_store: SQLiteKnowledgeStore) -> None:
    row = sqlite_store.insert_item({"category": "habits", "content": "x", "tags": ["a"], "embedding": [0.5]})

    assert row["created_at"] == row["last_updated"]
    assert row["tags"] == '["a"]'
    assert row["embedding"] == "[0.5]"
    assert len(row["id"]) == 32


def test_update_advances_last_updated_only(sqlite_store: SQLiteKnowledgeStore) -> None:
    row = sqlite_store.insert_item({"category": "habits", "content": "x"})

    updated = sqlite_store.update_item(row["id"], {"content": "y", "tags": "solo"})

    assert updated is not None
    assert updated["content"] == "y"
    assert updated["tags"] == '["solo"]'
    assert updated["created_at"] == row["created_at"]
    assert updated["last_updated"] > row["last_updated"]


def test_update_unknown_id_returns_none(sqlite_store: SQLiteKnowledgeStore) -> None:
    assert sqlite_store.update_item("nope", {"content": "y"}) is None


def test_find_by_category_is_exact(sqlite_store: SQLiteKnowledgeStore) -> None:
    sqlite_store.insert_item({"category": "habits", "content": "x"})

    assert sqlite_store.find_by_category("habits") is not None
    assert sqlite_store.find_by_category("Habits") is None
    assert sqlite_store.find_by_category("habit") is None


def test_list_items_newest_first(sqlite_store: SQLiteKnowledgeStore) -> None:
    first = sqlite_store.insert_item({"category": "a", "content": "1"})
    second = sqlite_store.insert_item({"category": "b", "content": "2"})

    assert [row["id"] for row in sqlite_store.list_items()] == [second["id"], first["id"]]


def test_read_only_columns_are_rejected(sqlite_store: SQLiteKnowledgeStore) -> None:
    with pytest.raises(StoreError):
        sqlite_store.insert_item({"category": "a", "content": "1", "id": "forced"})
    with pytest.raises(StoreError):
        sqlite_store.update_item("any", {"last_updated": "2020-01-01"})


def test_empty_category_violates_constraint(sqlite_store: SQLiteKnowledgeStore) -> None:
    with pytest.raises(StoreError) as excinfo:
        sqlite_store.insert_item({"category": "", "content": "1"})

    assert excinfo.value.code == "IntegrityError"


def test_delete_is_silent_for_missing_rows(sqlite_store: SQLiteKnowledgeStore) -> None:
    row = sqlite_store.insert_item({"category": "a", "content": "1"})

    sqlite_store.delete_item(row["id"])
    sqlite_store.delete_item(row["id"])

    assert sqlite_store.get_item(row["id"]) is None


def test_legacy_plain_text_tags_are_returned_raw(sqlite_store: SQLiteKnowledgeStore) -> None:
    row = sqlite_store.insert_item({"category": "a", "content": "1"})
    with sqlite3.connect(str(sqlite_store.db_path)) as conn:
        conn.execute("UPDATE knowledge_items SET tags = ? WHERE id = ?", ("legacy", row["id"]))

    assert sqlite_store.get_item(row["id"])["tags"] == "legacy"


def test_invalid_table_name_rejected(tmp_path) -> None:
    with pytest.raises(ValueError):
        SQLiteKnowledgeStore(tmp_path / "k.sqlite", table="items; drop")

"""
Tests for the expert knowledge base.
"""

import json

import pytest

from app.core.exceptions import PersistenceError, ValidationError
from app.services.knowledge_store import (
    KNOWLEDGE_TEMPLATES,
    InMemoryPersistence,
    JsonFilePersistence,
    KnowledgeStore,
    natural_sort_key,
)


class FailingWritePersistence(InMemoryPersistence):
    def save(self, items):
        raise PersistenceError("disk full")


class TestAdd:
    """Test adding knowledge."""

    def test_duplicate_content_stored_once(self, knowledge_store):
        knowledge_store.add("Myeloma", "Look for lytic lesions")
        second = knowledge_store.add("Other name", "  Look for lytic lesions  ")

        assert second is None
        assert len(knowledge_store.list()) == 1

    def test_empty_content_ignored(self, knowledge_store, persistence):
        assert knowledge_store.add("Name", "   ") is None
        assert knowledge_store.list() == []
        assert persistence.save_count == 0

    def test_name_synthesized_from_content(self, knowledge_store):
        content = "A very long piece of knowledge text exceeding forty characters total"

        item = knowledge_store.add("", content)

        assert item.name == content[:40] + "..."
        assert item.name == "A very long piece of knowledge text exce..."

    def test_content_and_name_trimmed(self, knowledge_store):
        item = knowledge_store.add("  Label  ", "  body  ")
        assert item.name == "Label"
        assert item.content == "body"

    def test_ids_are_unique(self, knowledge_store):
        first = knowledge_store.add("a", "one")
        second = knowledge_store.add("b", "two")
        assert first.id != second.id

    def test_each_mutation_persists_full_state(self, knowledge_store, persistence):
        knowledge_store.add("a", "one")
        knowledge_store.add("b", "two")

        assert persistence.save_count == 2
        assert [item["content"] for item in persistence.items] == ["one", "two"]


class TestOrdering:
    """Test natural, case-insensitive ordering."""

    def test_numeric_aware_sort(self, knowledge_store):
        knowledge_store.add("Item 10", "ten")
        knowledge_store.add("Item 2", "two")

        assert [item.name for item in knowledge_store.list()] == ["Item 2", "Item 10"]

    def test_case_insensitive_sort(self, knowledge_store):
        knowledge_store.add("beta", "b")
        knowledge_store.add("Alpha", "a")
        knowledge_store.add("gamma", "g")

        assert [item.name for item in knowledge_store.list()] == ["Alpha", "beta", "gamma"]

    def test_sort_key_mixed_segments(self):
        names = ["x10y", "x2y", "X1y"]
        assert sorted(names, key=natural_sort_key) == ["X1y", "x2y", "x10y"]

    def test_superscript_digits_sort_as_text(self, knowledge_store):
        knowledge_store.add("Grade 3²", "superscript note")
        knowledge_store.add("Grade 10", "ten")
        knowledge_store.add("Grade 2", "two")

        assert [item.name for item in knowledge_store.list()] == ["Grade 2", "Grade 3²", "Grade 10"]

    def test_non_ascii_decimal_digits_sort_numerically(self):
        names = ["Item ١٠", "Item ٢"]
        assert sorted(names, key=natural_sort_key) == ["Item ٢", "Item ١٠"]


class TestUpdateRemove:
    """Test updating and removing knowledge."""

    def test_update_keeps_id_and_position(self, knowledge_store, persistence):
        first = knowledge_store.add("a", "one")
        knowledge_store.add("b", "two")

        updated = knowledge_store.update(first.id, "", "revised content")

        assert updated.id == first.id
        assert updated.name == "revised content..."
        assert persistence.items[0]["id"] == first.id
        assert persistence.items[0]["content"] == "revised content"

    def test_update_with_empty_content_is_noop(self, knowledge_store):
        item = knowledge_store.add("a", "one")

        assert knowledge_store.update(item.id, "new", "  ") is None
        assert knowledge_store.get(item.id).content == "one"

    def test_update_unknown_id_is_noop(self, knowledge_store):
        assert knowledge_store.update("missing", "n", "c") is None

    def test_update_to_other_items_content_is_noop(self, knowledge_store, persistence):
        first = knowledge_store.add("a", "one")
        knowledge_store.add("b", "two")

        assert knowledge_store.update(first.id, "a", "  two ") is None
        assert sorted(item.content for item in knowledge_store.list()) == ["one", "two"]
        assert persistence.save_count == 2

    def test_update_keeping_own_content(self, knowledge_store):
        item = knowledge_store.add("a", "one")

        updated = knowledge_store.update(item.id, "renamed", "one")

        assert updated.name == "renamed"

    def test_remove(self, knowledge_store):
        item = knowledge_store.add("a", "one")

        assert knowledge_store.remove(item.id) is True
        assert knowledge_store.list() == []

    def test_remove_unknown_id_is_noop(self, knowledge_store, persistence):
        knowledge_store.add("a", "one")

        assert knowledge_store.remove("missing") is False
        assert len(knowledge_store) == 1
        assert persistence.save_count == 1


class TestTemplates:
    """Test predefined knowledge notes."""

    def test_add_multiple_myeloma_template(self, knowledge_store):
        item = knowledge_store.add_template("multiple_myeloma")

        assert item.name == KNOWLEDGE_TEMPLATES["multiple_myeloma"]["name"]
        assert "punched-out" in item.content

    def test_template_added_once(self, knowledge_store):
        knowledge_store.add_template("multiple_myeloma")
        assert knowledge_store.add_template("multiple_myeloma") is None
        assert len(knowledge_store) == 1

    def test_unknown_template_rejected(self, knowledge_store):
        with pytest.raises(ValidationError):
            knowledge_store.add_template("nope")


class TestPersistence:
    """Test loading and saving through persistence ports."""

    def test_loads_existing_items(self):
        persistence = InMemoryPersistence([{"id": "1", "name": "Saved", "content": "kept"}])

        store = KnowledgeStore(persistence)

        assert [item.content for item in store.list()] == ["kept"]

    def test_malformed_items_load_as_empty(self):
        store = KnowledgeStore(InMemoryPersistence([{"unexpected": True}]))
        assert store.list() == []

    def test_write_failure_keeps_memory_state(self):
        store = KnowledgeStore(FailingWritePersistence())

        with pytest.raises(PersistenceError):
            store.add("a", "one")

        assert [item.content for item in store.list()] == ["one"]

    def test_json_file_round_trip(self, tmp_path):
        path = tmp_path / "kb.json"
        store = KnowledgeStore(JsonFilePersistence(path, key="kb"))
        store.add("Item 1", "first note")

        reloaded = KnowledgeStore(JsonFilePersistence(path, key="kb"))

        assert [item.content for item in reloaded.list()] == ["first note"]
        assert "kb" in json.loads(path.read_text())

    def test_missing_file_loads_empty(self, tmp_path):
        store = KnowledgeStore(JsonFilePersistence(tmp_path / "absent.json", key="kb"))
        assert store.list() == []

    def test_malformed_file_loads_empty(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text("{not json")

        store = KnowledgeStore(JsonFilePersistence(path, key="kb"))

        assert store.list() == []
        store.add("a", "recovered")
        assert json.loads(path.read_text())["kb"][0]["content"] == "recovered"

"""
Tests for the in-memory Entity Store.
"""
import pytest

from templateforge.ecs.entity import Template, TemplateCategory, TemplateStatus
from templateforge.ecs.errors import DuplicateTemplateError, VersionConflictError


class TestInMemoryStore:

    def test_save_and_find(self, store, add_template):
        saved = add_template("A")

        assert store.find_by_name_version("A", "1.0.0").id == saved.id
        assert store.find_by_id(saved.id).key == "A@1.0.0"
        assert store.find_by_id(saved.id, "1.0.0").key == "A@1.0.0"

    def test_find_missing(self, store):
        assert store.find_by_name_version("A", "1.0.0") is None

    def test_status_filter(self, store, add_template):
        add_template("A", status=TemplateStatus.draft)
        assert store.find_by_name_version("A", "1.0.0", status=TemplateStatus.published) is None
        assert store.find_by_name_version("A", "1.0.0", status=TemplateStatus.draft) is not None
        assert store.find_by_name_version("A", "1.0.0") is not None

    def test_returns_copies(self, store, add_template):
        add_template("A", content="original")

        found = store.find_by_name_version("A", "1.0.0")
        found.content = "mutated"

        assert store.find_by_name_version("A", "1.0.0").content == "original"

    def test_new_version_becomes_live(self, store, add_template):
        first = add_template("A")
        second = first.model_copy(update={"version": "1.1.0", "content": "new"})
        store.save(second)

        assert store.find_by_id(first.id).version == "1.1.0"
        assert store.find_by_id(first.id, "1.0.0").content == "// A 1.0.0"
        assert [t.version for t in store.list_versions("A")] == ["1.0.0", "1.1.0"]

    def test_list_versions_sorted_semantically(self, store, add_template):
        for version in ("1.10.0", "1.2.0", "1.9.0"):
            add_template("A", version)
        assert [t.version for t in store.list_versions("A")] == ["1.2.0", "1.9.0", "1.10.0"]

    def test_duplicate_key_from_other_template(self, store, add_template):
        add_template("A")
        with pytest.raises(DuplicateTemplateError):
            store.save(Template(name="A", category=TemplateCategory.utility))

    def test_resave_same_template_updates(self, store, add_template):
        saved = add_template("A")
        store.save(saved.model_copy(update={"description": "changed"}))
        assert store.find_by_id(saved.id).description == "changed"

    def test_status_and_clear(self, store, add_template):
        a = add_template("A")
        store.save(a.model_copy(update={"version": "2.0.0"}))
        add_template("B")

        status = store.get_store_status()
        assert status["in_memory"] is True
        assert status["snapshot_count"] == 3
        assert status["template_count"] == 2

        store.clear()
        assert store.get_store_status()["snapshot_count"] == 0
        assert store.find_by_id(a.id) is None

    def test_save_checks_expected_version(self, store, add_template):
        first = add_template("A")
        store.save(first.model_copy(update={"version": "1.1.0"}), expected_version="1.0.0")

        with pytest.raises(VersionConflictError) as exc_info:
            store.save(first.model_copy(update={"version": "1.2.0"}), expected_version="1.0.0")

        assert exc_info.value.actual == "1.1.0"
        assert store.find_by_id(first.id).version == "1.1.0"
        assert store.find_by_id(first.id, "1.2.0") is None

    def test_delete_removes_every_version(self, store, add_template):
        a = add_template("A")
        store.save(a.model_copy(update={"version": "1.1.0"}))
        add_template("B")

        assert store.delete(a.id) == 2
        assert store.find_by_id(a.id) is None
        assert store.list_versions("A") == []
        assert store.find_by_name_version("B", "1.0.0") is not None
        assert store.delete(a.id) == 0

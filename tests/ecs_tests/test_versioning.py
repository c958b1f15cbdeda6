"""
Tests for version history: creating versions, diffs, lineage and paging.
"""
import threading
from unittest import mock

import pytest

from templateforge.ecs.entity import Template, TemplateCategory, TemplateStatus
from templateforge.ecs.errors import (
    DuplicateTemplateError, InvalidVersionError, NotFoundError,
    TemplateNotFoundError, VersionConflictError,
)
from templateforge.ecs.versioning import (
    DiffType, VersionData, VersionHistoryManager, positional_diff,
)


@pytest.fixture
def manager(store):
    return VersionHistoryManager(store)


@pytest.fixture
def created(manager):
    template = Template(name="Prompt", category=TemplateCategory.utility,
                        content="line one\nline two")
    return manager.create_template(template, author_id="alice")


class TestPositionalDiff:

    def test_identical_content_is_all_unchanged(self):
        diff = positional_diff("a\nb\nc", "a\nb\nc")
        assert [d.type for d in diff] == [DiffType.unchanged] * 3

    def test_changed_line_is_removed_then_added(self):
        diff = positional_diff("a\nb", "a\nB")
        assert [(d.type, d.text) for d in diff] == [
            (DiffType.unchanged, "a"),
            (DiffType.removed, "b"),
            (DiffType.added, "B"),
        ]

    def test_trailing_lines(self):
        assert [d.type for d in positional_diff("a", "a\nb")] == [DiffType.unchanged, DiffType.added]
        assert [d.type for d in positional_diff("a\nb", "a")] == [DiffType.unchanged, DiffType.removed]

    def test_insertion_shifts_following_lines(self):
        """Lines are compared by position, so an insert marks the rest as changed."""
        diff = positional_diff("a\nb", "x\na\nb")
        assert DiffType.unchanged not in [d.type for d in diff]

    def test_empty_content_is_one_line(self):
        diff = positional_diff("", "")
        assert len(diff) == 1
        assert diff[0].type == DiffType.unchanged


class TestCreateTemplate:

    def test_initial_record(self, created):
        assert created.version == "1.0.0"
        assert created.author == "alice"
        assert len(created.version_history) == 1
        record = created.version_history[0]
        assert record.changes == "Initial version"
        assert record.parent_version is None
        assert record.branch == "main"

    def test_duplicate_id(self, manager, created):
        with pytest.raises(DuplicateTemplateError):
            manager.create_template(created, author_id="alice")

    def test_duplicate_name_version(self, manager, created):
        with pytest.raises(DuplicateTemplateError):
            manager.create_template(
                Template(name="Prompt", category=TemplateCategory.utility), author_id="bob"
            )


class TestCreateVersion:

    def test_content_change_creates_version(self, manager, store, created):
        updated = manager.create_version(
            created, VersionData(version="1.1.0", content="line one\nline 2", changes="Reword"),
            author_id="bob",
        )

        assert updated.id == created.id
        assert updated.version == "1.1.0"
        assert len(updated.version_history) == 2
        record = updated.version_history[-1]
        assert record.parent_version == "1.0.0"
        assert record.author == "bob"
        assert record.changes == "Reword"
        assert record.status == TemplateStatus.draft

        # Old version is still stored and the new one is live
        assert store.find_by_name_version("Prompt", "1.0.0").content == "line one\nline two"
        assert store.find_by_id(created.id).version == "1.1.0"

    def test_no_change_keeps_version(self, manager, created):
        same = manager.create_version(
            created, VersionData(version="1.1.0", content=created.content), author_id="bob"
        )
        assert same.version == "1.0.0"
        assert len(same.version_history) == 1

    def test_status_is_applied_when_given(self, manager, created):
        updated = manager.create_version(
            created,
            VersionData(version="2.0.0", content="new", status=TemplateStatus.published,
                        branch="release"),
            author_id="bob",
        )
        assert updated.status == TemplateStatus.published
        assert updated.version_history[-1].branch == "release"

    @pytest.mark.parametrize("version", ["1.0.0", "0.9.0", "1.0.0-rc.1"])
    def test_version_must_increase(self, manager, created, version):
        with pytest.raises(InvalidVersionError):
            manager.create_version(created, VersionData(version=version, content="x"), author_id="bob")

    def test_malformed_version(self, manager, created):
        with pytest.raises(InvalidVersionError):
            manager.create_version(created, VersionData(version="next", content="x"), author_id="bob")

    def test_stale_copy_conflicts(self, manager, created):
        manager.create_version(created, VersionData(version="1.1.0", content="a"), author_id="bob")

        with pytest.raises(VersionConflictError) as exc_info:
            manager.create_version(created, VersionData(version="1.2.0", content="b"), author_id="carol")

        assert exc_info.value.expected == "1.0.0"
        assert exc_info.value.actual == "1.1.0"

    def test_unknown_template(self, manager):
        ghost = Template(name="Ghost", category=TemplateCategory.utility)
        with pytest.raises(TemplateNotFoundError):
            manager.create_version(ghost, VersionData(version="1.1.0", content="x"), author_id="bob")

    def test_concurrent_writers_one_wins(self, manager, created):
        outcomes = []

        def write(version):
            try:
                manager.create_version(created, VersionData(version=version, content=version),
                                       author_id="bob")
                outcomes.append("ok")
            except VersionConflictError:
                outcomes.append("conflict")

        threads = [threading.Thread(target=write, args=(f"1.{i}.0",)) for i in range(1, 5)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict"] * 3 + ["ok"]


class TestHistoryQueries:

    @pytest.fixture
    def evolved(self, manager, created):
        current = created
        for i in range(1, 4):
            current = manager.create_version(
                current, VersionData(version=f"1.{i}.0", content=f"line one\nrev {i}"),
                author_id="bob",
            )
        return current

    def test_compare_versions(self, manager, evolved):
        comparison = manager.compare_versions("Prompt", "1.0.0", "1.3.0")

        assert comparison.old_version == "1.0.0"
        assert comparison.new_version == "1.3.0"
        assert comparison.has_changes
        assert comparison.summary() == {"unchanged": 1, "removed": 1, "added": 1}
        assert comparison.new_date >= comparison.old_date

    def test_compare_same_version(self, manager, evolved):
        comparison = manager.compare_versions("Prompt", "1.2.0", "1.2.0")
        assert not comparison.has_changes

    def test_compare_missing_version(self, manager, evolved):
        with pytest.raises(NotFoundError):
            manager.compare_versions("Prompt", "1.0.0", "9.0.0")

    def test_history_is_newest_first_and_paged(self, manager, evolved):
        page = manager.get_version_history(evolved.id, page=1, limit=3)
        assert [r.version for r in page.versions] == ["1.3.0", "1.2.0", "1.1.0"]
        assert page.total == 4
        assert page.pages == 2

        second = manager.get_version_history(evolved.id, page=2, limit=3)
        assert [r.version for r in second.versions] == ["1.0.0"]
        assert second.current_page == 2

    def test_lineage(self, manager, evolved):
        lineage = manager.get_lineage(evolved.id)
        assert [r.version for r in lineage] == ["1.3.0", "1.2.0", "1.1.0", "1.0.0"]


class TestCompareAndSwap:
    """Writers that do not share a manager still cannot lose each other's versions."""

    def test_second_manager_with_stale_read_conflicts(self, store, created):
        first = VersionHistoryManager(store)
        second = VersionHistoryManager(store)
        stale = store.find_by_id(created.id)

        first.create_version(created, VersionData(version="1.1.0", content="first"), author_id="bob")

        # The second writer read the live version before the first one saved
        with mock.patch.object(store, "find_by_id", return_value=stale):
            with pytest.raises(VersionConflictError) as exc_info:
                second.create_version(created, VersionData(version="1.2.0", content="second"),
                                      author_id="carol")

        assert exc_info.value.expected == "1.0.0"
        assert exc_info.value.actual == "1.1.0"
        live = store.find_by_id(created.id)
        assert live.version == "1.1.0"
        assert [r.version for r in live.version_history] == ["1.0.0", "1.1.0"]

    def test_racing_managers_one_wins(self, store, created):
        barrier = threading.Barrier(2, timeout=5)
        find_by_id = store.find_by_id

        def find_then_wait(*args, **kwargs):
            found = find_by_id(*args, **kwargs)
            barrier.wait()
            return found

        outcomes = []

        def write(version):
            manager = VersionHistoryManager(store)
            try:
                manager.create_version(created, VersionData(version=version, content=version),
                                       author_id="bob")
                outcomes.append("ok")
            except VersionConflictError:
                outcomes.append("conflict")

        with mock.patch.object(store, "find_by_id", side_effect=find_then_wait):
            threads = [threading.Thread(target=write, args=(v,)) for v in ("1.1.0", "1.2.0")]
            for t in threads:
                t.start()
            for t in threads:
                t.join()

        assert sorted(outcomes) == ["conflict", "ok"]
        live = store.find_by_id(created.id)
        assert len(live.version_history) == 2
        assert live.version_history[-1].parent_version == "1.0.0"


class TestStatusTransitions:

    def test_set_status_keeps_version_and_history(self, manager, created):
        published = manager.set_status(created.id, TemplateStatus.published, author_id="alice")

        assert published.status == TemplateStatus.published
        assert published.version == "1.0.0"
        assert len(published.version_history) == 1
        assert published.updated_at >= created.updated_at

    def test_published_template_becomes_a_dependency_target(self, manager, store, created):
        assert store.find_by_name_version("Prompt", "1.0.0", status=TemplateStatus.published) is None
        manager.set_status(created.id, TemplateStatus.published, author_id="alice")
        assert store.find_by_name_version("Prompt", "1.0.0", status=TemplateStatus.published) is not None

    def test_status_only_version_data_is_applied(self, manager, created):
        updated = manager.create_version(
            created, VersionData(version="1.0.1", status=TemplateStatus.published), author_id="alice"
        )
        assert updated.status == TemplateStatus.published
        assert updated.version == "1.0.0"
        assert len(updated.version_history) == 1

    def test_same_status_is_a_no_op(self, manager, created):
        same = manager.set_status(created.id, TemplateStatus.draft, author_id="alice")
        assert same.updated_at == created.updated_at

    def test_expected_version_is_checked(self, manager, created):
        manager.create_version(created, VersionData(version="1.1.0", content="a"), author_id="bob")
        with pytest.raises(VersionConflictError):
            manager.set_status(created.id, TemplateStatus.published, author_id="alice",
                               expected_version="1.0.0")

    def test_unknown_template(self, manager):
        ghost = Template(name="Ghost", category=TemplateCategory.utility)
        with pytest.raises(TemplateNotFoundError):
            manager.set_status(ghost.id, TemplateStatus.published, author_id="alice")


def test_prerelease_increase_is_accepted(manager):
    template = manager.create_template(
        Template(name="Pre", version="1.0.0-rc.9", category=TemplateCategory.utility, content="a"),
        author_id="alice",
    )
    updated = manager.create_version(template, VersionData(version="1.0.0-rc.10", content="b"),
                                     author_id="alice")
    assert updated.version == "1.0.0-rc.10"

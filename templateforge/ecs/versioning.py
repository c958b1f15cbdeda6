"""
Version history management.

Every change to a template's content, parameters or dependencies creates a new
stored version and appends a `VersionRecord` to the template's history. Older
versions stay in the store under their own `(name, version)` key, which is
what `compare_versions` diffs against.

Diffs are positional: line i of the old content is compared with line i of the
new content. An inserted or deleted line therefore shows every following line
as changed. This is a known limitation, not an LCS diff.
"""
import logging
import threading
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from templateforge.ecs.entity import (
    DependencyRef, Parameter, SemanticVersion, Template, TemplateStatus,
    VersionRecord, utc_now,
)
from templateforge.ecs.errors import (
    DuplicateTemplateError, InvalidVersionError, NotFoundError,
    TemplateNotFoundError, VersionConflictError,
)
from templateforge.ecs.storage import EntityStore

# Fields whose change warrants a new version
VERSIONED_FIELDS = ("content", "parameters", "dependencies")


class VersionData(BaseModel):
    """Input for `create_version`. Unset content fields keep their current values."""
    version: str
    changes: str = "Updated template"
    status: Optional[TemplateStatus] = None
    branch: Optional[str] = None
    content: Optional[str] = None
    parameters: Optional[List[Parameter]] = None
    dependencies: Optional[List[DependencyRef]] = None


class DiffType(str, Enum):
    unchanged = "unchanged"
    added = "added"
    removed = "removed"


class DiffLine(BaseModel):
    type: DiffType
    text: str


class VersionComparison(BaseModel):
    name: str
    old_version: str
    new_version: str
    old_date: datetime
    new_date: datetime
    diff: List[DiffLine] = Field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return any(line.type != DiffType.unchanged for line in self.diff)

    def summary(self) -> Dict[str, int]:
        counts = {t.value: 0 for t in DiffType}
        for line in self.diff:
            counts[line.type.value] += 1
        return counts


class VersionHistoryPage(BaseModel):
    versions: List[VersionRecord]
    total: int
    pages: int
    current_page: int


def split_lines(content: str) -> List[str]:
    return content.split("\n")


def positional_diff(old: str, new: str) -> List[DiffLine]:
    """Line-by-line diff by index, up to the longer of the two contents."""
    old_lines = split_lines(old)
    new_lines = split_lines(new)
    diff: List[DiffLine] = []
    for i in range(max(len(old_lines), len(new_lines))):
        if i >= len(old_lines):
            diff.append(DiffLine(type=DiffType.added, text=new_lines[i]))
        elif i >= len(new_lines):
            diff.append(DiffLine(type=DiffType.removed, text=old_lines[i]))
        elif old_lines[i] == new_lines[i]:
            diff.append(DiffLine(type=DiffType.unchanged, text=old_lines[i]))
        else:
            diff.append(DiffLine(type=DiffType.removed, text=old_lines[i]))
            diff.append(DiffLine(type=DiffType.added, text=new_lines[i]))
    return diff


def parse_version(version: str) -> SemanticVersion:
    try:
        return SemanticVersion.parse(version)
    except ValueError:
        raise InvalidVersionError(version, "not a MAJOR.MINOR.PATCH version") from None


class VersionHistoryManager:
    """
    Creates template versions and answers history questions.

    Writes are serialised per template id within this manager. `create_version`
    checks the caller's expected current version against the stored one, and
    every write goes through the store's compare-and-swap on the live version,
    so writers in other managers or processes cannot interleave a lost update.
    """
    def __init__(self, store: EntityStore, default_branch: str = "main") -> None:
        self.store = store
        self.default_branch = default_branch
        self._logger = logging.getLogger("templateforge.VersionHistoryManager")
        self._locks: Dict[UUID, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, template_id: UUID) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(template_id, threading.Lock())

    def create_template(self, template: Template, author_id: str,
                        changes: str = "Initial version") -> Template:
        """
        Store a brand-new template with its initial version record.

        Raises:
            DuplicateTemplateError: If the (name, version) pair or the id is taken.
        """
        parse_version(template.version)
        if self.store.find_by_id(template.id) is not None:
            raise DuplicateTemplateError(template.name, template.version)

        record = VersionRecord(
            version=template.version,
            author=author_id,
            changes=changes,
            parent_version=None,
            status=template.status,
            branch=self.default_branch,
        )
        created = template.model_copy(update={
            "author": template.author or author_id,
            "version_history": [record],
        })
        saved = self.store.save(created)
        self._logger.info(f"Template created: {saved.key} ({saved.id})")
        return saved

    def create_version(self, template: Template, version_data: VersionData, author_id: str,
                       expected_version: Optional[str] = None) -> Template:
        """
        Append a version to `template` if its content, parameters or dependencies change.

        A request that only changes `status` updates the live version in place,
        as `set_status` does.

        Args:
            template: The caller's copy of the template
            version_data: New version string, change description and changed fields
            author_id: Author recorded on the version record
            expected_version: Version the caller believes is current; defaults to `template.version`

        Returns:
            The stored template, updated or unchanged

        Raises:
            TemplateNotFoundError: The template is not stored
            VersionConflictError: The stored version is not the expected one
            InvalidVersionError: The new version is malformed or not greater than the current one
        """
        expected = expected_version or template.version
        with self._lock_for(template.id):
            stored = self.store.find_by_id(template.id)
            if stored is None:
                raise TemplateNotFoundError(template.id)
            if stored.version != expected:
                self._logger.error(
                    f"Version conflict on {stored.name}: expected {expected}, stored {stored.version}"
                )
                raise VersionConflictError(template.id, expected, stored.version)

            updates: Dict[str, Any] = {}
            for field in VERSIONED_FIELDS:
                value = getattr(version_data, field)
                if value is not None and value != getattr(stored, field):
                    updates[field] = value
            if not updates:
                if version_data.status is not None and version_data.status != stored.status:
                    return self._apply_status(stored, version_data.status, author_id)
                self._logger.info(f"No content changes for {stored.key}, keeping version")
                return stored

            new_version = parse_version(version_data.version)
            if not new_version > stored.semantic_version:
                raise InvalidVersionError(
                    version_data.version, f"must be greater than current version {stored.version}"
                )

            record = VersionRecord(
                version=version_data.version,
                author=author_id,
                changes=version_data.changes,
                parent_version=stored.version,
                status=version_data.status or TemplateStatus.draft,
                branch=version_data.branch or self.default_branch,
                timestamp=utc_now(),
            )
            updates.update({
                "version": version_data.version,
                "version_history": [*stored.version_history, record],
                "updated_at": record.timestamp,
            })
            if version_data.status is not None:
                updates["status"] = version_data.status

            updated = stored.model_copy(deep=True, update=updates)
            saved = self.store.save(updated, expected_version=stored.version)
            self._logger.info(
                f"Created version {saved.version} of {saved.name} "
                f"(parent {stored.version}, fields {sorted(k for k in updates if k in VERSIONED_FIELDS)})"
            )
            return saved

    def set_status(self, template_id: UUID, status: TemplateStatus, author_id: str,
                   expected_version: Optional[str] = None) -> Template:
        """
        Move the live version of a template to `status` without creating a new version.

        Publishing makes the live version selectable as a dependency target;
        archiving takes it out again while keeping it retrievable.

        Raises:
            TemplateNotFoundError: The template is not stored
            VersionConflictError: The stored version is not `expected_version`
        """
        with self._lock_for(template_id):
            stored = self.store.find_by_id(template_id)
            if stored is None:
                raise TemplateNotFoundError(template_id)
            if expected_version is not None and stored.version != expected_version:
                self._logger.error(
                    f"Version conflict on {stored.name}: expected {expected_version}, stored {stored.version}"
                )
                raise VersionConflictError(template_id, expected_version, stored.version)
            if stored.status == status:
                return stored
            return self._apply_status(stored, status, author_id)

    def _apply_status(self, stored: Template, status: TemplateStatus, author_id: str) -> Template:
        # Same version, so the history gets no new record
        updated = stored.model_copy(deep=True, update={"status": status, "updated_at": utc_now()})
        saved = self.store.save(updated, expected_version=stored.version)
        self._logger.info(
            f"Status of {saved.key} changed from {stored.status.value} to {status.value} by {author_id}"
        )
        return saved

    def compare_versions(self, name: str, old_version: str, new_version: str) -> VersionComparison:
        """
        Positional line diff between two stored versions of a template.

        Raises:
            NotFoundError: If either version is not stored
        """
        old = self.store.find_by_name_version(name, old_version)
        if old is None:
            raise NotFoundError(name, old_version)
        new = self.store.find_by_name_version(name, new_version)
        if new is None:
            raise NotFoundError(name, new_version)

        return VersionComparison(
            name=name,
            old_version=old_version,
            new_version=new_version,
            old_date=old.updated_at,
            new_date=new.updated_at,
            diff=positional_diff(old.content, new.content),
        )

    def get_version_history(self, template_id: UUID, page: int = 1, limit: int = 10) -> VersionHistoryPage:
        """Version records of a template, newest first, one page at a time."""
        stored = self.store.find_by_id(template_id)
        if stored is None:
            raise TemplateNotFoundError(template_id)
        records = list(reversed(stored.version_history))
        page = max(page, 1)
        start = (page - 1) * limit
        return VersionHistoryPage(
            versions=records[start:start + limit],
            total=len(records),
            pages=-(-len(records) // limit) if limit > 0 else 0,
            current_page=page,
        )

    def get_lineage(self, template_id: UUID) -> List[VersionRecord]:
        """Follow `parent_version` links from the live version back to the first one."""
        stored = self.store.find_by_id(template_id)
        if stored is None:
            raise TemplateNotFoundError(template_id)

        by_version = {r.version: r for r in stored.version_history}
        lineage: List[VersionRecord] = []
        current: Optional[str] = stored.version
        seen = set()
        while current is not None and current in by_version and current not in seen:
            seen.add(current)
            record = by_version[current]
            lineage.append(record)
            current = record.parent_version
        return lineage

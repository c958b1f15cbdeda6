"""
Entity Store implementations.

A store keeps one snapshot per `(name, version)`. Every version of a template
shares the template's `id`; the most recently saved version is the template's
live version, returned by `find_by_id` when no version is given.

`save(template, expected_version=...)` is a compare-and-swap: the live version
is checked and replaced in one step, so concurrent writers working from the
same live version cannot both succeed.

Stores hand out copies. Mutating a returned Template never changes stored state.
"""
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from templateforge.ecs.entity import SemanticVersion, Template, TemplateStatus, make_key
from templateforge.ecs.errors import DuplicateTemplateError, VersionConflictError
from templateforge.ecs.sql_models import TemplateSQL


##############################
# 1) Storage Protocol
##############################

class EntityStore(Protocol):
    """
    Generic interface for storing and looking up templates.
    """
    def find_by_id(self, template_id: UUID, version: Optional[str] = None) -> Optional[Template]: ...
    def find_by_name_version(self, name: str, version: str,
                             status: Optional[TemplateStatus] = None) -> Optional[Template]: ...
    def save(self, template: Template, expected_version: Optional[str] = None) -> Template: ...
    def delete(self, template_id: UUID) -> int: ...
    def list_versions(self, name: str) -> List[Template]: ...
    def get_store_status(self) -> Dict[str, Any]: ...
    def clear(self) -> None: ...


def _sort_by_version(templates: List[Template]) -> List[Template]:
    return sorted(templates, key=lambda t: SemanticVersion.parse(t.version))


##############################
# 2) In-memory storage
##############################

class InMemoryEntityStore(EntityStore):
    """
    In-memory storage keeping deep-copied snapshots.
    """
    def __init__(self) -> None:
        self._logger = logging.getLogger("templateforge.InMemoryEntityStore")
        self._snapshots: Dict[str, Template] = {}
        self._keys_by_id: Dict[UUID, List[str]] = {}
        self._live: Dict[UUID, str] = {}
        self._lock = threading.RLock()

    def find_by_id(self, template_id: UUID, version: Optional[str] = None) -> Optional[Template]:
        """Get a template by id, either a specific version or the live one."""
        with self._lock:
            if version is None:
                key = self._live.get(template_id)
            else:
                key = next(
                    (k for k in self._keys_by_id.get(template_id, [])
                     if self._snapshots[k].version == version),
                    None,
                )
            if key is None:
                return None
            return self._snapshots[key].model_copy(deep=True)

    def find_by_name_version(self, name: str, version: str,
                             status: Optional[TemplateStatus] = None) -> Optional[Template]:
        """Get a template by its unique (name, version) pair, optionally filtered by status."""
        with self._lock:
            snap = self._snapshots.get(make_key(name, version))
            if snap is None:
                return None
            if status is not None and snap.status != status:
                self._logger.debug(f"{snap.key} has status {snap.status.value}, wanted {status.value}")
                return None
            return snap.model_copy(deep=True)

    def save(self, template: Template, expected_version: Optional[str] = None) -> Template:
        """
        Store a snapshot of the template and make it the live version.

        Raises:
            VersionConflictError: If `expected_version` is given and is not the live version.
            DuplicateTemplateError: If another template owns the (name, version) pair.
        """
        key = template.key
        with self._lock:
            if expected_version is not None:
                live_key = self._live.get(template.id)
                live_version = self._snapshots[live_key].version if live_key else None
                if live_version != expected_version:
                    self._logger.error(
                        f"Refusing to save {key}: live version is {live_version}, expected {expected_version}"
                    )
                    raise VersionConflictError(template.id, expected_version, live_version)

            existing = self._snapshots.get(key)
            if existing is not None and existing.id != template.id:
                self._logger.error(f"Refusing to save {key}: owned by template {existing.id}")
                raise DuplicateTemplateError(template.name, template.version)

            self._snapshots[key] = template.model_copy(deep=True)
            keys = self._keys_by_id.setdefault(template.id, [])
            if key not in keys:
                keys.append(key)
            self._live[template.id] = key
            self._logger.info(f"Saved {key} (template {template.id})")
            return template.model_copy(deep=True)

    def delete(self, template_id: UUID) -> int:
        """Remove every stored version of a template. Returns how many were removed."""
        with self._lock:
            keys = self._keys_by_id.pop(template_id, [])
            for key in keys:
                del self._snapshots[key]
            self._live.pop(template_id, None)
        if keys:
            self._logger.info(f"Deleted {len(keys)} versions of template {template_id}")
        return len(keys)

    def list_versions(self, name: str) -> List[Template]:
        """All stored versions for a template name, oldest first."""
        with self._lock:
            found = [s.model_copy(deep=True) for s in self._snapshots.values() if s.name == name]
        return _sort_by_version(found)

    def get_store_status(self) -> Dict[str, Any]:
        return {
            "storage": "in_memory",
            "in_memory": True,
            "snapshot_count": len(self._snapshots),
            "template_count": len(self._keys_by_id),
        }

    def clear(self) -> None:
        """Clear all data from storage."""
        with self._lock:
            self._snapshots.clear()
            self._keys_by_id.clear()
            self._live.clear()


##############################
# 3) SQL storage
##############################

class SqlEntityStore(EntityStore):
    """
    SQLAlchemy-based template storage.

    Each method accepts an optional session so several calls can share one
    transaction; when none is given the store opens and closes its own.
    """
    def __init__(self, session_factory: Callable[[], Session]) -> None:
        """
        Args:
            session_factory: Factory function to create SQLAlchemy sessions
        """
        self._logger = logging.getLogger("templateforge.SqlEntityStore")
        self._session_factory = session_factory
        self._logger.info("Initialized SQL template storage")

    def get_session(self, existing_session: Optional[Session] = None) -> Tuple[Session, bool]:
        """
        Get a session - either the provided one or a new one.

        Returns:
            Tuple of (session, should_close_when_done)
        """
        if existing_session is not None:
            self._logger.debug("Reusing provided session")
            return existing_session, False

        self._logger.debug("Creating new session")
        return self._session_factory(), True

    def find_by_id(self, template_id: UUID, version: Optional[str] = None,
                   session: Optional[Session] = None) -> Optional[Template]:
        session, should_close = self.get_session(session)
        try:
            query = session.query(TemplateSQL).filter(TemplateSQL.template_id == template_id)
            if version is None:
                query = query.filter(TemplateSQL.is_live.is_(True))
            else:
                query = query.filter(TemplateSQL.version == version)
            row = query.first()
            return row.to_entity() if row is not None else None
        finally:
            if should_close:
                session.close()

    def find_by_name_version(self, name: str, version: str,
                             status: Optional[TemplateStatus] = None,
                             session: Optional[Session] = None) -> Optional[Template]:
        session, should_close = self.get_session(session)
        try:
            query = session.query(TemplateSQL).filter(
                TemplateSQL.name == name, TemplateSQL.version == version
            )
            if status is not None:
                query = query.filter(TemplateSQL.status == status.value)
            row = query.first()
            return row.to_entity() if row is not None else None
        finally:
            if should_close:
                session.close()

    def save(self, template: Template, expected_version: Optional[str] = None,
             session: Optional[Session] = None) -> Template:
        """
        Insert or update the row for `template.key` and mark it live.

        With `expected_version`, the live flag is taken off the expected row by a
        single conditional UPDATE inside this transaction. A second writer that
        read the same live version matches no row once the first one commits.

        Raises:
            VersionConflictError: If `expected_version` is given and is not the live version.
            DuplicateTemplateError: If another template owns the (name, version) pair.
        """
        own_session = session is None
        if own_session:
            session = self._session_factory()

        try:
            if expected_version is not None:
                swapped = session.query(TemplateSQL).filter(
                    TemplateSQL.template_id == template.id,
                    TemplateSQL.is_live.is_(True),
                    TemplateSQL.version == expected_version,
                ).update({TemplateSQL.is_live: False}, synchronize_session=False)
                if swapped != 1:
                    live = session.query(TemplateSQL.version).filter(
                        TemplateSQL.template_id == template.id, TemplateSQL.is_live.is_(True)
                    ).scalar()
                    self._logger.error(
                        f"Refusing to save {template.key}: live version is {live}, expected {expected_version}"
                    )
                    raise VersionConflictError(template.id, expected_version, live)

            row = session.query(TemplateSQL).filter(
                TemplateSQL.name == template.name, TemplateSQL.version == template.version
            ).first()
            if row is not None and row.template_id != template.id:
                raise DuplicateTemplateError(template.name, template.version)

            session.query(TemplateSQL).filter(
                TemplateSQL.template_id == template.id
            ).update({TemplateSQL.is_live: False})

            if row is None:
                row = TemplateSQL.from_entity(template)
                session.add(row)
            else:
                row.update_from_entity(template)
            row.is_live = True
            session.flush()
            saved = row.to_entity()

            if own_session:
                session.commit()
            self._logger.info(f"Saved {template.key} (template {template.id})")
            return saved
        except IntegrityError as e:
            if own_session:
                session.rollback()
            self._logger.error(f"Integrity error saving {template.key}: {e}")
            raise DuplicateTemplateError(template.name, template.version) from e
        except Exception as e:
            if own_session:
                session.rollback()
            self._logger.error(f"Error saving {template.key}: {str(e)}")
            raise
        finally:
            if own_session:
                session.close()

    def delete(self, template_id: UUID, session: Optional[Session] = None) -> int:
        """Remove every row of a template. Returns how many were removed."""
        own_session = session is None
        if own_session:
            session = self._session_factory()

        try:
            removed = session.query(TemplateSQL).filter(
                TemplateSQL.template_id == template_id
            ).delete(synchronize_session=False)
            if own_session:
                session.commit()
            if removed:
                self._logger.info(f"Deleted {removed} versions of template {template_id}")
            return removed
        except Exception as e:
            if own_session:
                session.rollback()
            self._logger.error(f"Error deleting template {template_id}: {str(e)}")
            raise
        finally:
            if own_session:
                session.close()

    def list_versions(self, name: str, session: Optional[Session] = None) -> List[Template]:
        session, should_close = self.get_session(session)
        try:
            rows = session.query(TemplateSQL).filter(TemplateSQL.name == name).all()
            return _sort_by_version([row.to_entity() for row in rows])
        finally:
            if should_close:
                session.close()

    def get_store_status(self) -> Dict[str, Any]:
        session, should_close = self.get_session()
        try:
            return {
                "storage": "sql",
                "in_memory": False,
                "snapshot_count": session.query(TemplateSQL).count(),
                "template_count": session.query(TemplateSQL.template_id).distinct().count(),
            }
        finally:
            if should_close:
                session.close()

    def clear(self) -> None:
        session, should_close = self.get_session()
        try:
            session.query(TemplateSQL).delete()
            session.commit()
        finally:
            if should_close:
                session.close()

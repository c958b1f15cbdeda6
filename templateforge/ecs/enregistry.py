import logging
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import UUID

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from templateforge.config import Settings, get_settings
from templateforge.ecs.entity import DependencyRef, Template, TemplateStatus, VersionRecord
from templateforge.ecs.errors import TemplateForgeError, TemplateNotFoundError
from templateforge.ecs.storage import EntityStore, InMemoryEntityStore, SqlEntityStore
from templateforge.ecs.sql_models import Base
from templateforge.ecs.dependency import (
    DependencyGraph, DependencyResolver, DependencyValidator, GraphBuilder,
    ResolvedEntry, TemplateRef, ValidationResult,
)
from templateforge.ecs.versioning import (
    VersionComparison, VersionData, VersionHistoryManager, VersionHistoryPage,
)

RefLike = Union[TemplateRef, Template, UUID, str]

##############################
# Registry Facade
##############################

class TemplateRegistry:
    """
    Static facade over one Entity Store and the engine components built on it.

    This is the API boundary: errors are logged here and re-raised unchanged so
    callers can map them onto transport-level responses.
    """
    _logger = logging.getLogger("templateforge.TemplateRegistry")
    _storage: EntityStore = InMemoryEntityStore()  # default
    _settings: Optional[Settings] = None
    _versions: Optional[VersionHistoryManager] = None

    @classmethod
    def use_storage(cls, storage: EntityStore) -> None:
        """Set the storage implementation to use."""
        cls._storage = storage
        cls._versions = None
        cls._logger.info(f"Now using {type(storage).__name__} for storage")

    @classmethod
    def configure(cls, settings: Optional[Settings] = None) -> None:
        """Pick a store from settings: SQL when a database URL is set, in-memory otherwise."""
        settings = settings or get_settings()
        cls._settings = settings
        if settings.database_url:
            engine = create_engine(settings.database_url)
            Base.metadata.create_all(engine)
            cls.use_storage(SqlEntityStore(sessionmaker(bind=engine)))
        else:
            cls.use_storage(InMemoryEntityStore())

    @classmethod
    def get_storage(cls) -> EntityStore:
        return cls._storage

    @classmethod
    def _get_settings(cls) -> Settings:
        return cls._settings or get_settings()

    @classmethod
    def _max_depth(cls) -> int:
        return cls._get_settings().max_depth

    @classmethod
    def _version_manager(cls) -> VersionHistoryManager:
        if cls._versions is None:
            cls._versions = VersionHistoryManager(
                cls._storage, default_branch=cls._get_settings().default_branch
            )
        return cls._versions

    # Simple delegation methods
    @classmethod
    def register(cls, template: Template, author_id: str) -> Template:
        """Store a new template with its initial version record."""
        try:
            return cls._version_manager().create_template(template, author_id)
        except TemplateForgeError as exc:
            cls._logger.error(f"Error creating template {template.key}: {exc}")
            raise

    @classmethod
    def get(cls, template_id: UUID, version: Optional[str] = None) -> Optional[Template]:
        return cls._storage.find_by_id(template_id, version)

    @classmethod
    def get_version(cls, template_id: UUID, version: str) -> Template:
        """A specific stored version of a template."""
        template = cls._storage.find_by_id(template_id, version)
        if template is None:
            cls._logger.error(f"Template {template_id} has no version {version}")
            raise TemplateNotFoundError(template_id, version)
        return template

    @classmethod
    def delete(cls, template_id: UUID) -> int:
        """Remove a template and all of its stored versions."""
        removed = cls._storage.delete(template_id)
        if not removed:
            cls._logger.error(f"Cannot delete template {template_id}: not found")
            raise TemplateNotFoundError(template_id)
        cls._logger.info(f"Template deleted: {template_id}")
        return removed

    @classmethod
    def find(cls, name: str, version: str, status: Optional[TemplateStatus] = None) -> Optional[Template]:
        return cls._storage.find_by_name_version(name, version, status)

    @classmethod
    def list_versions(cls, name: str) -> List[Template]:
        return cls._storage.list_versions(name)

    @classmethod
    def clear(cls) -> None:
        cls._storage.clear()
        cls._versions = None

    @classmethod
    def get_registry_status(cls) -> Dict[str, Any]:
        return {"registry": "template", **cls._storage.get_store_status()}

    # Dependency operations
    @classmethod
    def resolve(cls, ref: RefLike, version: Optional[str] = None) -> List[ResolvedEntry]:
        try:
            return DependencyResolver(cls._storage, max_depth=cls._max_depth()).resolve(ref, version)
        except TemplateForgeError as exc:
            cls._logger.error(f"Failed to resolve dependencies of {ref}: {exc}")
            raise

    @classmethod
    def validate(cls, template: RefLike, version: Optional[str] = None) -> ValidationResult:
        return DependencyValidator(cls._storage, max_depth=cls._max_depth()).validate(template, version)

    @classmethod
    def validate_dependencies(cls, dependencies: Sequence[Union[DependencyRef, Dict[str, Any]]],
                              template: Optional[RefLike] = None,
                              version: Optional[str] = None) -> ValidationResult:
        validator = DependencyValidator(cls._storage, max_depth=cls._max_depth())
        return validator.validate_dependencies(dependencies, template, version)

    @classmethod
    def build_graph(cls, ref: RefLike, version: Optional[str] = None) -> DependencyGraph:
        try:
            return GraphBuilder(cls._storage, max_depth=cls._max_depth()).build_graph(ref, version)
        except TemplateForgeError as exc:
            cls._logger.error(f"Failed to build dependency graph of {ref}: {exc}")
            raise

    # Version operations
    @classmethod
    def create_version(cls, template: Union[Template, UUID], version_data: VersionData,
                       author_id: str, expected_version: Optional[str] = None) -> Template:
        if isinstance(template, UUID):
            found = cls._storage.find_by_id(template)
            if found is None:
                raise TemplateNotFoundError(template)
            template = found
        try:
            return cls._version_manager().create_version(
                template, version_data, author_id, expected_version
            )
        except TemplateForgeError as exc:
            cls._logger.error(f"Failed to create version {version_data.version} of {template.name}: {exc}")
            raise

    @classmethod
    def compare_versions(cls, name: str, old_version: str, new_version: str) -> VersionComparison:
        try:
            return cls._version_manager().compare_versions(name, old_version, new_version)
        except TemplateForgeError as exc:
            cls._logger.error(f"Error comparing versions {old_version} and {new_version} of {name}: {exc}")
            raise

    @classmethod
    def set_status(cls, template_id: UUID, status: TemplateStatus, author_id: str,
                   expected_version: Optional[str] = None) -> Template:
        try:
            return cls._version_manager().set_status(template_id, status, author_id, expected_version)
        except TemplateForgeError as exc:
            cls._logger.error(f"Failed to set status {status.value} on template {template_id}: {exc}")
            raise

    @classmethod
    def publish(cls, template_id: UUID, author_id: str,
                expected_version: Optional[str] = None) -> Template:
        """Make the live version a dependency target."""
        return cls.set_status(template_id, TemplateStatus.published, author_id, expected_version)

    @classmethod
    def archive(cls, template_id: UUID, author_id: str,
                expected_version: Optional[str] = None) -> Template:
        """Keep the template retrievable but stop it being selected as a dependency."""
        return cls.set_status(template_id, TemplateStatus.archived, author_id, expected_version)

    @classmethod
    def get_version_history(cls, template_id: UUID, page: int = 1, limit: int = 10) -> VersionHistoryPage:
        return cls._version_manager().get_version_history(template_id, page, limit)

    @classmethod
    def get_lineage(cls, template_id: UUID) -> List[VersionRecord]:
        return cls._version_manager().get_lineage(template_id)

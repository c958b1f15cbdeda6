"""
templateforge: versioned templates with exact-version dependency resolution.
"""
from templateforge.ecs.entity import (
    DependencyRef, Parameter, ParameterType, SemanticVersion, Template,
    TemplateCategory, TemplateStatus, VersionRecord,
)
from templateforge.ecs.errors import (
    CircularDependencyError, DependencyNotFoundError, DependencyTypeMismatchError,
    DuplicateTemplateError, InvalidVersionError, MaxDepthExceededError, NotFoundError,
    ParameterValidationError, TemplateForgeError, TemplateNotFoundError,
    TypeMismatchError, ValidationAggregateError, VersionConflictError,
)
from templateforge.ecs.storage import EntityStore, InMemoryEntityStore, SqlEntityStore
from templateforge.ecs.dependency import (
    DependencyGraph, DependencyResolver, DependencyValidator, EdgeDescriptor,
    GraphBuilder, NodeDescriptor, ResolvedEntry, TemplateRef, ValidationResult,
)
from templateforge.ecs.versioning import (
    DiffLine, DiffType, VersionComparison, VersionData, VersionHistoryManager,
)
from templateforge.ecs.enregistry import TemplateRegistry

__version__ = "0.1.0"

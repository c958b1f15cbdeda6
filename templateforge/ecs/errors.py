"""
Structured errors raised by the dependency engine.

Every error carries the values that caused it as attributes so callers at the
API boundary can map them onto whatever status codes or payloads they need.
`to_dict()` gives a JSON-friendly view of the same data.
"""
from typing import Any, Dict, List, Optional, Sequence


class TemplateForgeError(Exception):
    """Base class for all engine errors."""
    kind: str = "error"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": str(self)}


class NotFoundError(TemplateForgeError):
    """An entity or a named dependency is absent, or not published."""
    kind = "not_found"

    def __init__(self, name: str, version: Optional[str] = None, message: Optional[str] = None) -> None:
        self.name = name
        self.version = version
        key = f"{name}@{version}" if version else name
        super().__init__(message or f"Dependency not found: {key}")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "name": self.name, "version": self.version}


# Name used by the resolver contract
DependencyNotFoundError = NotFoundError


class TemplateNotFoundError(NotFoundError):
    """The root template of an operation could not be located."""

    def __init__(self, identifier: Any, version: Optional[str] = None) -> None:
        self.identifier = identifier
        suffix = f" (version {version})" if version else ""
        super().__init__(str(identifier), version, f"Template not found: {identifier}{suffix}")


class CircularDependencyError(TemplateForgeError):
    """A dependency path returned to a node that is still being resolved."""
    kind = "circular_dependency"

    def __init__(self, cycle_key: str, path: Optional[Sequence[str]] = None) -> None:
        self.cycle_key = cycle_key
        self.path: List[str] = list(path) if path else [cycle_key]
        super().__init__(f"Circular dependency detected: {cycle_key}")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "cycle_key": self.cycle_key, "path": self.path}


class TypeMismatchError(TemplateForgeError):
    """A dependency's declared type differs from the category of its target."""
    kind = "type_mismatch"

    def __init__(self, name: str, version: str, expected: str, actual: str) -> None:
        self.name = name
        self.version = version
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Invalid dependency type for {name}@{version}: expected {expected}, got {actual}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "name": self.name,
            "version": self.version,
            "expected": self.expected,
            "actual": self.actual,
        }


DependencyTypeMismatchError = TypeMismatchError


class MaxDepthExceededError(TemplateForgeError):
    """Traversal went deeper than the configured limit."""
    kind = "max_depth_exceeded"

    def __init__(self, key: str, max_depth: int) -> None:
        self.key = key
        self.max_depth = max_depth
        super().__init__(f"Maximum dependency depth {max_depth} exceeded at {key}")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "key": self.key, "max_depth": self.max_depth}


class ValidationAggregateError(TemplateForgeError):
    """Collection of dependency errors reported by the validator."""
    kind = "validation_failed"

    def __init__(self, errors: Sequence[TemplateForgeError]) -> None:
        self.errors: List[TemplateForgeError] = list(errors)
        super().__init__(f"Invalid dependencies: {'; '.join(str(e) for e in self.errors)}")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "errors": [e.to_dict() for e in self.errors]}


class VersionConflictError(TemplateForgeError):
    """The caller's view of the current version is stale."""
    kind = "version_conflict"

    def __init__(self, template_id: Any, expected: str, actual: str) -> None:
        self.template_id = template_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Version conflict for template {template_id}: expected current version {expected}, found {actual}"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            **super().to_dict(),
            "template_id": str(self.template_id),
            "expected": self.expected,
            "actual": self.actual,
        }


class InvalidVersionError(TemplateForgeError):
    """A version string is malformed or does not move forward."""
    kind = "invalid_version"

    def __init__(self, version: str, reason: str) -> None:
        self.version = version
        self.reason = reason
        super().__init__(f"Invalid version {version!r}: {reason}")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "version": self.version, "reason": self.reason}


class DuplicateTemplateError(TemplateForgeError):
    """Another template already owns this (name, version) pair."""
    kind = "duplicate"

    def __init__(self, name: str, version: str) -> None:
        self.name = name
        self.version = version
        super().__init__(f"Template {name}@{version} already exists")

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "name": self.name, "version": self.version}


class ParameterValidationError(TemplateForgeError):
    """Parameter values supplied for code generation are invalid."""
    kind = "invalid_parameters"

    def __init__(self, errors: Sequence[str]) -> None:
        self.errors: List[str] = list(errors)
        super().__init__(", ".join(self.errors))

    def to_dict(self) -> Dict[str, Any]:
        return {**super().to_dict(), "errors": self.errors}

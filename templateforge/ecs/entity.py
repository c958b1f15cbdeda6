############################################################
# entity.py
############################################################

"""
Template data model.

Key concepts:

1. IDENTITY:
   - Each template has a stable `id` shared by every stored version
   - `(name, version)` is the unique lookup key, rendered as `name@version`

2. DEPENDENCIES:
   - A template declares an ordered list of `DependencyRef`s
   - Each reference names an exact version and the category it expects

3. LIFECYCLE:
   - Templates start in `draft`; only `published` ones are dependency targets
   - Every content/parameter/dependency change appends a `VersionRecord`

4. PARAMETERS:
   - Content may contain `${param}` placeholders filled in by `generate_code`
"""

import re
import logging
from enum import Enum
from typing import Any, Dict, List, Optional, Self
from uuid import UUID, uuid4
from datetime import datetime, timezone

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from templateforge.ecs.errors import ParameterValidationError

logger = logging.getLogger("templateforge.TemplateEntity")

SEMVER_PATTERN = re.compile(
    r"^(\d+)\.(\d+)\.(\d+)(?:-([a-zA-Z0-9.-]+))?(?:\+([a-zA-Z0-9.-]+))?$"
)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def make_key(name: str, version: str) -> str:
    """Lookup key used for memoisation, cycle tracking and graph nodes."""
    return f"{name}@{version}"


##############################
# 1) Enums
##############################

class TemplateCategory(str, Enum):
    strategy = "strategy"
    indicator = "indicator"
    utility = "utility"
    test = "test"
    other = "other"
    blueprint = "blueprint"
    code_generation = "code-generation"
    quickfix = "quickfix"
    document_fingerprinting = "document-fingerprinting"
    ai_integration = "ai-integration"
    project_init = "project-init"
    development_workflow = "development-workflow"
    testing_deployment = "testing-deployment"


class TemplateStatus(str, Enum):
    draft = "draft"
    review = "review"
    published = "published"
    archived = "archived"


class ParameterType(str, Enum):
    string = "string"
    number = "number"
    boolean = "boolean"
    array = "array"
    object = "object"


##############################
# 2) Semantic versions
##############################

class SemanticVersion(BaseModel):
    """Semantic version with ordering support."""

    major: int = Field(ge=0)
    minor: int = Field(ge=0)
    patch: int = Field(ge=0)
    prerelease: Optional[str] = None
    build: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def parse(cls, version_str: str) -> "SemanticVersion":
        """
        Parse a `MAJOR.MINOR.PATCH[-pre][+build]` string.

        Raises:
            ValueError: If the string is not a valid semantic version.
        """
        match = SEMVER_PATTERN.match(version_str or "")
        if not match:
            raise ValueError(f"Invalid semantic version: {version_str}")
        return cls(
            major=int(match.group(1)),
            minor=int(match.group(2)),
            patch=int(match.group(3)),
            prerelease=match.group(4),
            build=match.group(5),
        )

    @classmethod
    def is_valid(cls, version_str: str) -> bool:
        return SEMVER_PATTERN.match(version_str or "") is not None

    def __str__(self) -> str:
        version = f"{self.major}.{self.minor}.{self.patch}"
        if self.prerelease:
            version += f"-{self.prerelease}"
        if self.build:
            version += f"+{self.build}"
        return version

    def _core(self) -> tuple:
        return (self.major, self.minor, self.patch)

    def _prerelease_key(self) -> tuple:
        """
        Dot-separated identifiers compared in order: numeric ones as integers
        and below alphanumeric ones, and a shorter prefix first.
        """
        return tuple(
            (0, int(part), "") if part.isdigit() else (1, 0, part)
            for part in self.prerelease.split(".")
        )

    def __lt__(self, other: "SemanticVersion") -> bool:
        if self._core() != other._core():
            return self._core() < other._core()
        # A prerelease sorts before the release it precedes
        if self.prerelease and not other.prerelease:
            return True
        if not self.prerelease and other.prerelease:
            return False
        if self.prerelease and other.prerelease:
            return self._prerelease_key() < other._prerelease_key()
        return False

    def __le__(self, other: "SemanticVersion") -> bool:
        return self == other or self < other

    def __gt__(self, other: "SemanticVersion") -> bool:
        return other < self

    def __ge__(self, other: "SemanticVersion") -> bool:
        return other <= self

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SemanticVersion):
            return NotImplemented
        return (self._core(), self.prerelease) == (other._core(), other.prerelease)

    def __hash__(self) -> int:
        return hash((self.major, self.minor, self.patch, self.prerelease))


def _check_semver(value: str) -> str:
    if not SemanticVersion.is_valid(value):
        raise ValueError(f"Invalid semantic version: {value}")
    return value


##############################
# 3) Value objects
##############################

class DependencyRef(BaseModel):
    """Reference to another template by exact version, plus the category the declarer expects."""
    name: str = Field(min_length=1)
    version: str
    declared_type: TemplateCategory

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        return _check_semver(v)

    @property
    def key(self) -> str:
        return make_key(self.name, self.version)

    def __str__(self) -> str:
        return f"{self.key} ({self.declared_type.value})"


class Parameter(BaseModel):
    """A placeholder the template's content can be generated with."""
    name: str = Field(min_length=1)
    type: ParameterType
    description: str = ""
    required: bool = False
    default_value: Any = None

    def accepts(self, value: Any) -> bool:
        """Check a supplied value against the declared parameter type."""
        if self.type == ParameterType.string:
            return isinstance(value, str)
        if self.type == ParameterType.number:
            return isinstance(value, (int, float)) and not isinstance(value, bool)
        if self.type == ParameterType.boolean:
            return isinstance(value, bool)
        if self.type == ParameterType.array:
            return isinstance(value, (list, tuple))
        return isinstance(value, dict)


class VersionRecord(BaseModel):
    """One entry of a template's append-only version history."""
    version: str
    author: str
    changes: str
    parent_version: Optional[str] = None
    status: TemplateStatus = TemplateStatus.draft
    branch: str = "main"
    timestamp: datetime = Field(default_factory=utc_now)


##############################
# 4) The Template entity
##############################

class Template(BaseModel):
    """
    A versioned template/prompt.

    Attributes:
        id: Stable identifier shared by every version of this template
        name: Human-readable key, unique together with `version`
        version: Current semantic version string
        category: Type tag that dependency declarations are checked against
        content: Opaque payload returned unmodified by resolution
        parameters: Placeholders `content` can be generated with
        dependencies: Ordered dependency declarations
        status: Lifecycle status; only `published` templates are dependency targets
        version_history: Append-only list of version records
    """
    id: UUID = Field(default_factory=uuid4, description="Stable template identifier")
    name: str = Field(min_length=1)
    version: str = "1.0.0"
    category: TemplateCategory
    description: str = ""
    content: str = ""
    parameters: List[Parameter] = Field(default_factory=list)
    dependencies: List[DependencyRef] = Field(default_factory=list)
    status: TemplateStatus = TemplateStatus.draft
    version_history: List[VersionRecord] = Field(default_factory=list)
    author: Optional[str] = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    @field_validator("version")
    @classmethod
    def validate_version(cls, v: str) -> str:
        return _check_semver(v)

    @model_validator(mode="after")
    def check_parameter_names(self) -> Self:
        names = [p.name for p in self.parameters]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate parameter names: {sorted(duplicates)}")
        return self

    def __repr__(self) -> str:
        return f"Template({self.key}, {self.status.value})"

    @property
    def key(self) -> str:
        return make_key(self.name, self.version)

    @property
    def semantic_version(self) -> SemanticVersion:
        return SemanticVersion.parse(self.version)

    def is_resolvable_target(self) -> bool:
        """Only published templates may be resolved as somebody's dependency."""
        return self.status == TemplateStatus.published

    def as_dependency(self) -> DependencyRef:
        """Build the reference another template would use to depend on this one."""
        return DependencyRef(name=self.name, version=self.version, declared_type=self.category)

    def validate_parameters(self, values: Dict[str, Any]) -> List[str]:
        """Return a list of problems with the supplied parameter values."""
        errors: List[str] = []
        for param in self.parameters:
            if param.name not in values:
                if param.required:
                    errors.append(f"Missing required parameter: {param.name}")
                continue
            value = values[param.name]
            if value is None:
                continue
            if not param.accepts(value):
                errors.append(f"Parameter {param.name} must be a {param.type.value}")
        return errors

    def generate_code(self, values: Optional[Dict[str, Any]] = None) -> str:
        """
        Substitute `${name}` placeholders in `content`.

        Supplied values win over parameter defaults. Placeholders without a
        value or default are left untouched.

        Raises:
            ParameterValidationError: If the supplied values fail validation.
        """
        values = values or {}
        errors = self.validate_parameters(values)
        if errors:
            logger.error(f"Parameter validation failed for {self.key}: {errors}")
            raise ParameterValidationError(errors)

        code = self.content
        for param in self.parameters:
            value = values.get(param.name, param.default_value)
            if value is None:
                continue
            code = code.replace("${" + param.name + "}", str(value))
        logger.info(f"Generated code from template {self.key}")
        return code

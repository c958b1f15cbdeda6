"""
Non-fatal dependency validation.

The validator runs the resolver's traversal in collecting mode. Missing or
mistyped dependencies are recorded and their siblings are still checked. A
cycle or a depth overrun stops the walk and is recorded as a single error,
since nothing past it can be checked safely.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from templateforge.ecs.entity import DependencyRef, Template, TemplateCategory
from templateforge.ecs.dependency.traversal import DependencyTraversal, TemplateRef, load_root
from templateforge.ecs.errors import (
    CircularDependencyError, MaxDepthExceededError, TemplateForgeError,
    ValidationAggregateError,
)
from templateforge.ecs.storage import EntityStore

# Stand-in root when a dependency list is validated without an owning template
PROPOSED_ROOT_NAME = "__proposed__"


class ValidationResult(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    error_details: List[Any] = Field(default_factory=list, exclude=True)

    model_config = ConfigDict(arbitrary_types_allowed=True)

    def raise_if_invalid(self) -> None:
        """Raise `ValidationAggregateError` carrying the structured errors."""
        if not self.is_valid:
            raise ValidationAggregateError(
                [e for e in self.error_details if isinstance(e, TemplateForgeError)]
            )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "details": [e.to_dict() for e in self.error_details if isinstance(e, TemplateForgeError)],
        }


class _ValidateTraversal(DependencyTraversal[str]):
    def visit(self, dep: DependencyRef, template: Template, children: List[str]) -> str:
        return template.key


class DependencyValidator:
    """Aggregates every dependency problem of a template without raising."""

    def __init__(self, store: EntityStore, max_depth: Optional[int] = None) -> None:
        self.store = store
        self.max_depth = max_depth
        self._logger = logging.getLogger("templateforge.DependencyValidator")

    def validate(self, template: Union[Template, TemplateRef, UUID, str],
                 version: Optional[str] = None) -> ValidationResult:
        """
        Check every dependency reachable from `template`.

        A Template instance is validated as given, which lets callers check
        unsaved edits. Anything else is looked up as a root reference; a missing
        root is reported as an error rather than raised.
        """
        if not isinstance(template, Template):
            try:
                template = load_root(self.store, TemplateRef.coerce(template, version))
            except (TemplateForgeError, ValueError) as e:
                self._logger.info(f"Cannot validate {template}: {e}")
                return self._result([e])
        return self._validate_root(template)

    def validate_dependencies(self, dependencies: Sequence[Union[DependencyRef, Dict[str, Any]]],
                              template: Optional[Union[Template, TemplateRef, UUID, str]] = None,
                              version: Optional[str] = None) -> ValidationResult:
        """
        Validate a proposed dependency list, optionally as the new list of `template`.

        Malformed entries are reported as errors alongside resolution problems.
        """
        shape_errors: List[Exception] = []
        refs: List[DependencyRef] = []
        for index, item in enumerate(dependencies):
            if isinstance(item, DependencyRef):
                refs.append(item)
                continue
            try:
                refs.append(DependencyRef.model_validate(item))
            except ValidationError as e:
                self._logger.info(f"Malformed dependency at index {index}: {e.errors()}")
                shape_errors.append(ValueError(f"Malformed dependency at index {index}: {item!r}"))

        if template is None:
            root = Template(name=PROPOSED_ROOT_NAME, version="0.0.0",
                            category=TemplateCategory.other, dependencies=refs)
        else:
            if not isinstance(template, Template):
                try:
                    template = load_root(self.store, TemplateRef.coerce(template, version))
                except (TemplateForgeError, ValueError) as e:
                    return self._result(shape_errors + [e])
            root = template.model_copy(update={"dependencies": refs})

        result = self._validate_root(root)
        if shape_errors:
            return self._result(shape_errors + result.error_details)
        return result

    def _validate_root(self, root: Template) -> ValidationResult:
        self._logger.info(f"Validating dependencies for {root.key}")
        traversal = _ValidateTraversal(self.store, max_depth=self.max_depth, collect_errors=True)
        errors: List[Exception] = []
        try:
            traversal.run(root)
            errors.extend(traversal.errors)
        except (CircularDependencyError, MaxDepthExceededError) as e:
            errors.extend(traversal.errors)
            errors.append(e)
        result = self._result(errors)
        if result.is_valid:
            self._logger.info(f"Dependencies of {root.key} are valid")
        else:
            self._logger.info(f"Found {len(result.errors)} dependency errors for {root.key}")
        return result

    @staticmethod
    def _result(errors: Sequence[Exception]) -> ValidationResult:
        return ValidationResult(
            is_valid=not errors,
            errors=[str(e) for e in errors],
            error_details=list(errors),
        )

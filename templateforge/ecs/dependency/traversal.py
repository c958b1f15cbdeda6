"""
Depth-first walk over declared template dependencies.

The resolver, validator and graph builder all share this walk and differ only
in what they accumulate. Each call gets a fresh `DependencyTraversal`, so no
state is shared between requests.

Nodes are coloured UNVISITED -> IN_PROGRESS -> DONE. Reaching a DONE node
reuses its result, which keeps diamond-shaped graphs to one fetch per key.
Reaching an IN_PROGRESS node means the current path loops back on itself
and the walk aborts with `CircularDependencyError`.
"""
import logging
from enum import Enum
from typing import Dict, Generic, List, Optional, Protocol, Set, TypeVar, Union
from uuid import UUID

from pydantic import BaseModel, model_validator

from templateforge.ecs.entity import DependencyRef, Template, TemplateStatus
from templateforge.ecs.errors import (
    CircularDependencyError, MaxDepthExceededError, NotFoundError,
    TemplateForgeError, TemplateNotFoundError, TypeMismatchError,
)
from templateforge.ecs.storage import EntityStore

T = TypeVar("T")

# Errors that only invalidate one dependency; everything else aborts the walk
RECOVERABLE_ERRORS = (NotFoundError, TypeMismatchError)


class NodeState(Enum):
    """Colour of a node during a single traversal."""
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


##############################
# 1) Root references and lookup strategies
##############################

class TemplateRef(BaseModel):
    """Identifies the root of an operation, by id (+ optional version) or by name + version."""
    template_id: Optional[UUID] = None
    name: Optional[str] = None
    version: Optional[str] = None

    @model_validator(mode="after")
    def check_identity(self) -> "TemplateRef":
        if self.template_id is None and not (self.name and self.version):
            raise ValueError("TemplateRef needs a template_id or both name and version")
        return self

    @classmethod
    def by_id(cls, template_id: UUID, version: Optional[str] = None) -> "TemplateRef":
        return cls(template_id=template_id, version=version)

    @classmethod
    def by_name(cls, name: str, version: str) -> "TemplateRef":
        return cls(name=name, version=version)

    @classmethod
    def coerce(cls, value: Union["TemplateRef", Template, UUID, str],
               version: Optional[str] = None) -> "TemplateRef":
        """
        Accept the shapes callers commonly hold: a ref, a Template, a UUID, or a
        string that is either a UUID or a template name.

        A string that parses as a UUID is always taken as a template id. To look
        up a template whose name is UUID-shaped, pass `TemplateRef.by_name(...)`.
        """
        if isinstance(value, TemplateRef):
            return value
        if isinstance(value, Template):
            return cls.by_id(value.id, version or value.version)
        if isinstance(value, UUID):
            return cls.by_id(value, version)
        try:
            return cls.by_id(UUID(value), version)
        except ValueError:
            if version is None:
                raise ValueError(f"A version is required to look up template {value!r} by name")
            return cls.by_name(value, version)

    def __str__(self) -> str:
        if self.template_id is not None:
            return f"{self.template_id}@{self.version}" if self.version else str(self.template_id)
        return f"{self.name}@{self.version}"


class LookupStrategy(Protocol):
    def fetch_root(self, ref: TemplateRef) -> Optional[Template]: ...


class ById:
    """Find the root through its stable id, optionally pinned to a version."""
    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def fetch_root(self, ref: TemplateRef) -> Optional[Template]:
        return self.store.find_by_id(ref.template_id, ref.version)


class ByNameVersion:
    """Find the root through its (name, version) pair. The root may be in any status."""
    def __init__(self, store: EntityStore) -> None:
        self.store = store

    def fetch_root(self, ref: TemplateRef) -> Optional[Template]:
        return self.store.find_by_name_version(ref.name, ref.version)


def strategy_for(store: EntityStore, ref: TemplateRef) -> LookupStrategy:
    if ref.template_id is not None:
        return ById(store)
    return ByNameVersion(store)


def load_root(store: EntityStore, ref: TemplateRef,
              lookup: Optional[LookupStrategy] = None) -> Template:
    """Fetch the root template or raise `TemplateNotFoundError`."""
    lookup = lookup or strategy_for(store, ref)
    template = lookup.fetch_root(ref)
    if template is None:
        raise TemplateNotFoundError(ref.template_id or ref.name, ref.version)
    return template


##############################
# 2) The traversal
##############################

class DependencyTraversal(Generic[T]):
    """
    Per-call depth-first traversal context.

    Subclasses override the hooks to accumulate results:
        enter_root(root)                called once before walking
        on_edge(parent, dep)            called for every declared reference, cached or not
        enter(dep, template)            called once per key, before its children
        visit(dep, template, children)  builds the per-key result after its children

    With `collect_errors=True`, not-found and type-mismatch failures are
    recorded in `errors` and the walk continues with the next sibling.
    Cycles and depth overruns always abort.
    """
    logger = logging.getLogger("templateforge.DependencyTraversal")

    def __init__(self, store: EntityStore, max_depth: Optional[int] = None,
                 collect_errors: bool = False) -> None:
        self.store = store
        self.max_depth = max_depth
        self.collect_errors = collect_errors
        self.states: Dict[str, NodeState] = {}
        self.results: Dict[str, T] = {}
        self.order: List[str] = []
        self.path: List[str] = []
        self.errors: List[TemplateForgeError] = []
        self.root_children: List[T] = []
        self._failed: Set[str] = set()

    # Hooks

    def enter_root(self, root: Template) -> None:
        pass

    def on_edge(self, parent: Template, dep: DependencyRef) -> None:
        pass

    def enter(self, dep: DependencyRef, template: Template) -> None:
        pass

    def visit(self, dep: DependencyRef, template: Template, children: List[T]) -> T:
        raise NotImplementedError

    # Walk

    def state_of(self, key: str) -> NodeState:
        return self.states.get(key, NodeState.UNVISITED)

    def run(self, root: Template) -> List[T]:
        """
        Walk every dependency reachable from `root`.

        Returns:
            One result per distinct dependency, in first-encountered (pre-order) order.
            The root itself is not part of the result.
        """
        self.logger.debug(f"Traversing dependencies of {root.key}")
        self.enter_root(root)
        self.states[root.key] = NodeState.IN_PROGRESS
        self.path.append(root.key)
        self.root_children = self.walk_dependencies(root, depth=1)
        self.path.pop()
        self.states[root.key] = NodeState.DONE
        self.logger.debug(f"Traversed {len(self.results)} dependencies of {root.key}")
        return [self.results[key] for key in self.order if key in self.results]

    def walk_dependencies(self, parent: Template, depth: int) -> List[T]:
        children: List[T] = []
        for dep in parent.dependencies:
            self.on_edge(parent, dep)
            try:
                child = self.walk(dep, depth)
            except RECOVERABLE_ERRORS as exc:
                if not self.collect_errors:
                    raise
                self.logger.info(f"Recorded error for {dep.key} under {parent.key}: {exc}")
                self.errors.append(exc)
                continue
            if child is not None:
                children.append(child)
        return children

    def walk(self, dep: DependencyRef, depth: int) -> Optional[T]:
        key = dep.key
        state = self.state_of(key)

        if state is NodeState.DONE:
            self.logger.debug(f"{key} already visited, reusing result")
            return self.results.get(key)

        if state is NodeState.IN_PROGRESS:
            cycle = self.path[self.path.index(key):] + [key]
            self.logger.warning(f"Detected cycle: {' -> '.join(cycle)}")
            raise CircularDependencyError(key, cycle)

        if self.max_depth is not None and depth > self.max_depth:
            self.logger.warning(f"Depth {depth} exceeds limit {self.max_depth} at {key}")
            raise MaxDepthExceededError(key, self.max_depth)

        self.states[key] = NodeState.IN_PROGRESS
        self.path.append(key)
        try:
            template = self.fetch(dep)
            self.order.append(key)
            self.enter(dep, template)
            children = self.walk_dependencies(template, depth + 1)
            result = self.visit(dep, template, children)
        except RECOVERABLE_ERRORS:
            # Later references to a failed key are skipped rather than re-reported
            self.states[key] = NodeState.DONE
            self._failed.add(key)
            raise
        finally:
            self.path.pop()

        self.results[key] = result
        self.states[key] = NodeState.DONE
        return result

    def fetch(self, dep: DependencyRef) -> Template:
        """Fetch a published dependency target and check its category."""
        template = self.store.find_by_name_version(
            dep.name, dep.version, status=TemplateStatus.published
        )
        if template is None:
            self.logger.error(f"Dependency not found or not published: {dep.key}")
            raise NotFoundError(dep.name, dep.version)
        if template.category != dep.declared_type:
            self.logger.error(
                f"Invalid dependency type for {dep.key}: expected {dep.declared_type.value}, "
                f"got {template.category.value}"
            )
            raise TypeMismatchError(
                dep.name, dep.version, dep.declared_type.value, template.category.value
            )
        return template

    @property
    def failed_keys(self) -> Set[str]:
        return set(self._failed)

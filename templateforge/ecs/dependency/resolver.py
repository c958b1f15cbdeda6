"""
Dependency resolution.

`DependencyResolver.resolve` materialises the full transitive dependency set of
a template into a flat, de-duplicated list of `ResolvedEntry` values. The walk
is fail-fast: a missing dependency, a type mismatch or a cycle aborts the call
and no partial result is returned.
"""
import logging
from typing import Iterator, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field

from templateforge.ecs.entity import (
    DependencyRef, Parameter, Template, TemplateCategory, make_key
)
from templateforge.ecs.dependency.traversal import (
    DependencyTraversal, LookupStrategy, TemplateRef, load_root
)
from templateforge.ecs.errors import TemplateForgeError
from templateforge.ecs.storage import EntityStore


class ResolvedEntry(BaseModel):
    """A fully materialised dependency, including its own resolved dependencies."""
    name: str
    version: str
    type: TemplateCategory
    content: str
    parameters: List[Parameter] = Field(default_factory=list)
    dependencies: List["ResolvedEntry"] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return make_key(self.name, self.version)

    def iter_tree(self) -> Iterator["ResolvedEntry"]:
        """Yield this entry and every nested entry, depth first. Shared entries repeat."""
        yield self
        for dep in self.dependencies:
            yield from dep.iter_tree()


class _ResolveTraversal(DependencyTraversal[ResolvedEntry]):
    def visit(self, dep: DependencyRef, template: Template,
              children: List[ResolvedEntry]) -> ResolvedEntry:
        return ResolvedEntry(
            name=template.name,
            version=template.version,
            type=template.category,
            content=template.content,
            parameters=[p.model_copy() for p in template.parameters],
            dependencies=children,
        )


class DependencyResolver:
    """
    Resolves template dependencies against an Entity Store.

    The root may be addressed by id or by name + version (see `TemplateRef`);
    both go through the same traversal.
    """
    def __init__(self, store: EntityStore, max_depth: Optional[int] = None) -> None:
        self.store = store
        self.max_depth = max_depth
        self._logger = logging.getLogger("templateforge.DependencyResolver")

    def _new_traversal(self) -> _ResolveTraversal:
        return _ResolveTraversal(self.store, max_depth=self.max_depth)

    def resolve(self, ref: Union[TemplateRef, Template, UUID, str],
                version: Optional[str] = None,
                lookup: Optional[LookupStrategy] = None) -> List[ResolvedEntry]:
        """
        Resolve every dependency reachable from the referenced template.

        Args:
            ref: Root reference; a TemplateRef, Template, UUID or id/name string
            version: Version to pin the root to when `ref` does not carry one
            lookup: Optional strategy overriding how the root is fetched

        Returns:
            Distinct resolved entries in first-encountered (pre-order) order

        Raises:
            TemplateNotFoundError: The root does not exist
            NotFoundError: A dependency is missing or not published
            TypeMismatchError: A dependency's category differs from its declared type
            CircularDependencyError: The dependency graph contains a cycle
        """
        root_ref = TemplateRef.coerce(ref, version)
        root = load_root(self.store, root_ref, lookup)
        return self.resolve_template(root)

    def resolve_template(self, root: Template) -> List[ResolvedEntry]:
        """Resolve the dependencies declared by an already loaded template."""
        self._logger.info(f"Resolving dependencies for {root.key}")
        traversal = self._new_traversal()
        try:
            resolved = traversal.run(root)
        except TemplateForgeError as e:
            self._logger.error(f"Failed to resolve dependencies for {root.key}: {e}")
            raise
        self._logger.info(f"Resolved {len(resolved)} dependencies for {root.key}")
        return resolved

    def resolve_tree(self, ref: Union[TemplateRef, Template, UUID, str],
                     version: Optional[str] = None) -> List[ResolvedEntry]:
        """Like `resolve`, but return the root's direct dependencies with their nested trees."""
        root = load_root(self.store, TemplateRef.coerce(ref, version))
        traversal = self._new_traversal()
        traversal.run(root)
        return traversal.root_children

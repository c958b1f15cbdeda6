"""
Common fixtures for engine tests.
Provides an in-memory store and factories for building template catalogs.
"""
import pytest
from typing import Callable, Iterable, Optional, Tuple, Union

from templateforge.ecs.entity import DependencyRef, Template, TemplateCategory, TemplateStatus
from templateforge.ecs.enregistry import TemplateRegistry
from templateforge.ecs.storage import InMemoryEntityStore

DepSpec = Union[DependencyRef, Tuple[str, str], Tuple[str, str, TemplateCategory]]


def make_dep(name: str, version: str = "1.0.0",
             declared_type: TemplateCategory = TemplateCategory.utility) -> DependencyRef:
    return DependencyRef(name=name, version=version, declared_type=declared_type)


# ========================================================================
# Fixtures
# ========================================================================

@pytest.fixture
def store() -> InMemoryEntityStore:
    """A fresh, empty in-memory store."""
    return InMemoryEntityStore()


@pytest.fixture
def dep() -> Callable[..., DependencyRef]:
    """Factory for dependency references, defaulting to version 1.0.0 of a utility."""
    return make_dep


@pytest.fixture
def add_template(store) -> Callable[..., Template]:
    """
    Factory that saves a template into `store`.

    Templates are published utilities at 1.0.0 unless told otherwise.
    Dependencies can be DependencyRefs or (name, version[, type]) tuples.
    """
    def _add(name: str,
             version: str = "1.0.0",
             category: TemplateCategory = TemplateCategory.utility,
             dependencies: Iterable[DepSpec] = (),
             status: TemplateStatus = TemplateStatus.published,
             content: Optional[str] = None,
             **kwargs) -> Template:
        refs = [d if isinstance(d, DependencyRef) else make_dep(*d) for d in dependencies]
        template = Template(
            name=name,
            version=version,
            category=category,
            dependencies=refs,
            status=status,
            content=content if content is not None else f"// {name} {version}",
            **kwargs,
        )
        return store.save(template)
    return _add


@pytest.fixture
def registry(store):
    """TemplateRegistry wired to the test store, restored afterwards."""
    original = TemplateRegistry.get_storage()
    TemplateRegistry.use_storage(store)
    yield TemplateRegistry
    TemplateRegistry.use_storage(original)


@pytest.fixture
def diamond(add_template):
    """A depends on B and C, both of which depend on D."""
    d = add_template("D")
    b = add_template("B", dependencies=[("D", "1.0.0")])
    c = add_template("C", dependencies=[("D", "1.0.0")])
    a = add_template("A", category=TemplateCategory.strategy,
                     dependencies=[("B", "1.0.0"), ("C", "1.0.0")])
    return a, b, c, d

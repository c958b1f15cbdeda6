"""
Dependency graph construction for visualisation.

`GraphBuilder.build_graph` walks the same traversal as the resolver and
collects node and edge descriptors instead of content. It keeps the resolver's
cycle guard, so a cyclic catalog fails with `CircularDependencyError` instead of
recursing forever.
"""
import logging
from typing import Any, Dict, List, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from templateforge.ecs.entity import DependencyRef, Template, TemplateCategory
from templateforge.ecs.dependency.traversal import DependencyTraversal, TemplateRef, load_root
from templateforge.ecs.errors import TemplateForgeError
from templateforge.ecs.storage import EntityStore

logger = logging.getLogger("templateforge.DependencyGraph")


class NodeDescriptor(BaseModel):
    """Represents a template version in the dependency graph."""
    key: str
    name: str
    version: str
    category: TemplateCategory

    model_config = ConfigDict(frozen=True)

    @classmethod
    def from_template(cls, template: Template) -> "NodeDescriptor":
        return cls(key=template.key, name=template.name,
                   version=template.version, category=template.category)


class EdgeDescriptor(BaseModel):
    """A `from` template declares a dependency on the `to` template."""
    from_key: str = Field(alias="from")
    to_key: str = Field(alias="to")

    model_config = ConfigDict(frozen=True, populate_by_name=True)


class DependencyGraph(BaseModel):
    """
    Nodes and edges of a template's dependency graph.

    Nodes and edges keep insertion order and are de-duplicated, so the root is
    always the first node.
    """
    root: Optional[str] = None
    nodes: Dict[str, NodeDescriptor] = Field(default_factory=dict)
    edges: List[EdgeDescriptor] = Field(default_factory=list)

    def add_node(self, node: NodeDescriptor) -> None:
        if node.key not in self.nodes:
            self.nodes[node.key] = node

    def add_edge(self, from_key: str, to_key: str) -> None:
        edge = EdgeDescriptor(from_key=from_key, to_key=to_key)
        if edge not in self.edges:
            self.edges.append(edge)

    def get_node(self, key: str) -> Optional[NodeDescriptor]:
        return self.nodes.get(key)

    def get_dependencies(self, key: str) -> List[str]:
        """Keys the given node depends on, in declaration order."""
        return [e.to_key for e in self.edges if e.from_key == key]

    def get_dependents(self, key: str) -> List[str]:
        """Keys of nodes that depend on the given node."""
        return [e.from_key for e in self.edges if e.to_key == key]

    def get_topological_sort(self) -> List[str]:
        """
        Return node keys in dependency order (dependencies first).

        Nodes are ordered by their depth in the graph; nodes at the same depth
        keep insertion order. Built graphs are acyclic, so depths are finite.
        """
        depths: Dict[str, int] = {}

        def calculate_depth(key: str) -> int:
            if key in depths:
                return depths[key]
            deps = [d for d in self.get_dependencies(key) if d in self.nodes]
            depth = 0 if not deps else max(calculate_depth(d) for d in deps) + 1
            depths[key] = depth
            return depth

        for key in self.nodes:
            calculate_depth(key)
        return sorted(self.nodes, key=lambda k: depths[k])

    def to_dict(self) -> Dict[str, Any]:
        """Payload for the graph renderer: `{nodes: [...], edges: [{from, to}]}`."""
        return {
            "nodes": [n.model_dump(mode="json") for n in self.nodes.values()],
            "edges": [e.model_dump(by_alias=True) for e in self.edges],
        }

    def to_mermaid(self) -> str:
        """Render the graph as a Mermaid flowchart."""
        if not self.nodes:
            return "```mermaid\ngraph TD\n  No data available\n```"

        ids: Dict[str, str] = {key: f"n{i}" for i, key in enumerate(self.nodes)}
        lines = ["```mermaid", "graph TD"]
        for key, node in self.nodes.items():
            lines.append(f'  {ids[key]}["{node.key}<br/>{node.category.value}"]')
        for edge in self.edges:
            if edge.from_key not in ids or edge.to_key not in ids:
                continue
            lines.append(f"  {ids[edge.from_key]} --> {ids[edge.to_key]}")
        if self.root in ids:
            lines.append(f"  style {ids[self.root]} stroke-width:3px")
        lines.append("```")
        return "\n".join(lines)


class _GraphTraversal(DependencyTraversal[NodeDescriptor]):
    def __init__(self, store: EntityStore, max_depth: Optional[int] = None) -> None:
        super().__init__(store, max_depth=max_depth)
        self.graph = DependencyGraph()

    def enter_root(self, root: Template) -> None:
        self.graph.root = root.key
        self.graph.add_node(NodeDescriptor.from_template(root))

    def on_edge(self, parent: Template, dep: DependencyRef) -> None:
        self.graph.add_edge(parent.key, dep.key)

    def enter(self, dep: DependencyRef, template: Template) -> None:
        self.graph.add_node(NodeDescriptor.from_template(template))

    def visit(self, dep: DependencyRef, template: Template,
              children: List[NodeDescriptor]) -> NodeDescriptor:
        return self.graph.nodes[template.key]


class GraphBuilder:
    """Builds `DependencyGraph`s from an Entity Store."""

    def __init__(self, store: EntityStore, max_depth: Optional[int] = None) -> None:
        self.store = store
        self.max_depth = max_depth

    def build_graph(self, ref: Union[TemplateRef, Template, UUID, str],
                    version: Optional[str] = None) -> DependencyGraph:
        """
        Build the dependency graph rooted at the referenced template.

        Raises:
            TemplateNotFoundError, NotFoundError, TypeMismatchError,
            CircularDependencyError: on the first problem encountered
        """
        root = ref if isinstance(ref, Template) else load_root(
            self.store, TemplateRef.coerce(ref, version)
        )
        logger.debug(f"Building dependency graph for {root.key}")
        traversal = _GraphTraversal(self.store, max_depth=self.max_depth)
        try:
            traversal.run(root)
        except TemplateForgeError as e:
            logger.error(f"Failed to build dependency graph for {root.key}: {e}")
            raise
        graph = traversal.graph
        logger.info(f"Built dependency graph with {len(graph.nodes)} nodes and {len(graph.edges)} edges")
        return graph

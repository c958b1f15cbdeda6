"""
Template dependency resolution, validation and graph construction.

All three share one depth-first traversal with per-call cycle detection.
"""
from .traversal import (
    ById, ByNameVersion, DependencyTraversal, LookupStrategy, NodeState, TemplateRef, load_root
)
from .resolver import DependencyResolver, ResolvedEntry
from .validator import DependencyValidator, ValidationResult
from .graph import DependencyGraph, EdgeDescriptor, GraphBuilder, NodeDescriptor

__all__ = [
    "ById", "ByNameVersion", "DependencyTraversal", "LookupStrategy", "NodeState",
    "TemplateRef", "load_root",
    "DependencyResolver", "ResolvedEntry",
    "DependencyValidator", "ValidationResult",
    "DependencyGraph", "EdgeDescriptor", "GraphBuilder", "NodeDescriptor",
]

"""
stencil/dependencies - Resolve declared dependencies into a DependencyGraph.
"""

from .types import (
    DependencyConflict,
    DependencyGraph,
    MissingDependency,
    ResolutionOptions,
    ResolvedDependency,
)
from .versions import version_satisfies
from .resolver import DependencyGraphResolver, find_conflicts, normalize_dependencies

__all__ = [
    "DependencyConflict",
    "DependencyGraph",
    "DependencyGraphResolver",
    "MissingDependency",
    "ResolutionOptions",
    "ResolvedDependency",
    "find_conflicts",
    "normalize_dependencies",
    "version_satisfies",
]

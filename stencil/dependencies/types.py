"""
types.py - Dependency resolution options and result types.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from stencil.descriptor.types import Dependency, DependencyType
from stencil.resolution.resolvers.registry import DEFAULT_INSTALL_DIR


@dataclass(frozen=True)
class ResolutionOptions:
    """Filters and locations for one dependency resolution run.

    Args:
        include_dev: Keep entries marked `dev`.
        include_optional: Keep entries marked `optional`.
        install_dir: Directory under project_root holding installed packages.
        project_root: Base for relative references and the install directory;
            defaults to the current directory.
    """
    include_dev: bool = True
    include_optional: bool = True
    install_dir: str = DEFAULT_INSTALL_DIR
    project_root: Optional[str] = None


@dataclass(frozen=True)
class ResolvedDependency:
    """A dependency that was found."""
    name: str
    type: DependencyType
    version: Optional[str] = None
    path: Optional[str] = None
    source: Optional[str] = None
    optional: bool = False
    dev: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "version": self.version,
            "path": self.path,
            "source": self.source,
            "optional": self.optional,
            "dev": self.dev,
        }


@dataclass(frozen=True)
class MissingDependency:
    """A dependency that could not be resolved, with the reason."""
    name: str
    type: DependencyType
    reason: str
    optional: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "reason": self.reason,
            "optional": self.optional,
        }


@dataclass(frozen=True)
class DependencyConflict:
    """Entries sharing a name with a differing version or type."""
    name: str
    entries: Tuple[Dependency, ...]
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "entries": [e.to_dict() for e in self.entries],
            "reason": self.reason,
        }


@dataclass(frozen=True)
class DependencyGraph:
    """Outcome of resolving one descriptor's dependency list."""
    requested: Tuple[Dependency, ...] = ()
    resolved: Tuple[ResolvedDependency, ...] = ()
    missing: Tuple[MissingDependency, ...] = ()
    conflicts: Tuple[DependencyConflict, ...] = ()

    @property
    def ok(self) -> bool:
        """No required entry is missing and there are no conflicts."""
        return not self.required_missing and not self.conflicts

    @property
    def required_missing(self) -> Tuple[MissingDependency, ...]:
        return tuple(m for m in self.missing if not m.optional)

    @property
    def all_required_failed(self) -> bool:
        """True when there were required entries and none of them resolved."""
        required = [d for d in self.requested if not d.optional]
        if not required:
            return False
        found = {(r.name, r.type) for r in self.resolved if not r.optional}
        return not any((d.name, d.type) in found for d in required)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "resolved": [r.to_dict() for r in self.resolved],
            "missing": [m.to_dict() for m in self.missing],
            "conflicts": [c.to_dict() for c in self.conflicts],
        }

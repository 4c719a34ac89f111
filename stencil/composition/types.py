"""
types.py - Composition context and result types.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Callable, Dict, Optional, Tuple, Union

from stencil.descriptor.types import ConflictStrategy, TemplateDescriptor

if TYPE_CHECKING:
    from stencil.resolution.manager import SourceResolutionManager


@dataclass(frozen=True)
class ConflictRecord:
    """One collision seen during composition.

    `resolution` is the strategy that decided it, "override" when a child
    replaces a parent definition, or "deduplicated" for the final clean-up pass.
    """
    type: str  # "variable" | "step" | "dependency" | "output" | "tag"
    name: str
    sources: Tuple[str, ...]
    resolution: str


@dataclass(frozen=True)
class ResolvedInclude:
    """What happened to one include entry, in declared order."""
    url: str
    included: bool
    strategy: ConflictStrategy
    reason: Optional[str] = None
    source: Optional[str] = None


@dataclass
class CompositionContext:
    """Inputs shared by one composition run.

    Args:
        project_root: Root of the project being generated into.
        manager: Resolution manager used for extends/includes.
        variables: Caller-supplied variable values (used by include conditions).
        base_path: Directory relative references are resolved against;
            defaults to project_root.
        source: Reference or path of the descriptor being composed, used to
            detect cycles back to it.
    """
    project_root: Union[str, Path]
    manager: "SourceResolutionManager"
    variables: Dict[str, Any] = field(default_factory=dict)
    base_path: Union[str, Path, None] = None
    source: Optional[str] = None

    @property
    def effective_base_path(self) -> str:
        return str(self.base_path if self.base_path is not None else self.project_root)


@dataclass(frozen=True)
class ComposedTemplate:
    """Final, immutable output of composition."""
    descriptor: TemplateDescriptor
    resolved_includes: Tuple[ResolvedInclude, ...] = ()
    conflicts: Tuple[ConflictRecord, ...] = ()
    warnings: Tuple[str, ...] = ()
    parent: Optional[str] = None
    base_path: Optional[str] = None

    @property
    def included(self) -> Tuple[ResolvedInclude, ...]:
        return tuple(i for i in self.resolved_includes if i.included)

    @property
    def skipped(self) -> Tuple[ResolvedInclude, ...]:
        return tuple(i for i in self.resolved_includes if not i.included)


# Called for the "prompt" strategy; returns the strategy name to apply.
ConflictHandler = Callable[[ConflictRecord], str]

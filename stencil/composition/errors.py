"""
errors.py - Errors raised while composing descriptors.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

from stencil.errors import StencilError

if TYPE_CHECKING:
    from .types import ConflictRecord


class CompositionError(StencilError):
    """Raised when composition cannot continue."""

    pass


class CompositionCycleError(CompositionError):
    """Raised when extends/includes reference a template already being composed."""

    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(f"Template composition cycle: {' -> '.join(self.chain)}")


class CompositionConflictError(CompositionError):
    """Raised when a collision occurs under the fail/error strategy."""

    def __init__(self, conflict: "ConflictRecord"):
        self.conflict = conflict
        super().__init__(
            f"Conflicting {conflict.type} '{conflict.name}' between "
            f"{' and '.join(conflict.sources)} (strategy: {conflict.resolution})"
        )

"""
errors.py - Error types raised by the descriptor layer.

Parsing itself accumulates problems into ParsedTemplate.errors; these
exceptions exist for callers that want a hard failure (raise_for_errors),
for the condition interpreter and for step phase planning.
"""

from __future__ import annotations

from typing import List, Optional, Sequence

from stencil.errors import StencilError


class TemplateConfigError(StencilError):
    """Raised when a template descriptor is missing, malformed or invalid."""

    def __init__(self, source: str, errors: Sequence[str]):
        self.source = source
        self.errors: List[str] = list(errors)
        detail = "; ".join(self.errors) if self.errors else "unknown error"
        super().__init__(f"Invalid template descriptor {source}: {detail}")


class ConditionSyntaxError(StencilError):
    """Raised when a condition expression cannot be tokenized or parsed."""

    def __init__(self, expression: str, message: str, position: Optional[int] = None):
        self.expression = expression
        self.position = position
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"Invalid condition '{expression}'{where}: {message}")


class CircularStepDependencyError(StencilError):
    """Raised when steps cannot be ordered because dependsOn forms a cycle."""

    def __init__(self, cycle: Sequence[str]):
        self.cycle: List[str] = list(cycle)
        super().__init__(f"Circular dependency detected: {' -> '.join(self.cycle)}")

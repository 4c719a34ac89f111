"""
stencil/composition - Merge descriptors through extends and includes.

Usage:
    from stencil.composition import CompositionContext, TemplateCompositionEngine

    engine = TemplateCompositionEngine()
    composed = await engine.compose(
        descriptor, CompositionContext(project_root=".", manager=manager)
    )
"""

from .errors import CompositionConflictError, CompositionCycleError, CompositionError
from .types import (
    ComposedTemplate,
    CompositionContext,
    ConflictHandler,
    ConflictRecord,
    ResolvedInclude,
)
from .engine import MAX_COMPOSITION_DEPTH, TemplateCompositionEngine

__all__ = [
    "ComposedTemplate",
    "CompositionConflictError",
    "CompositionContext",
    "CompositionCycleError",
    "CompositionError",
    "ConflictHandler",
    "ConflictRecord",
    "MAX_COMPOSITION_DEPTH",
    "ResolvedInclude",
    "TemplateCompositionEngine",
]

"""
engine.py - Compose descriptors through inheritance and includes.

Composition of one descriptor runs in three passes:

1. Inheritance. `extends` is resolved through the manager, parsed and composed
   recursively, then the child is merged over it: child variables win, steps
   with the same name are replaced by the child's, lists are concatenated
   parent-first and settings are merged field by field.
2. Includes, strictly in declared order. Each include's condition is
   evaluated against the variables known so far (defaults, caller values and
   earlier overrides); a true include is resolved, composed, given its
   variable overrides and merged using its strategy.
3. Clean-up. Dependencies are de-duplicated by (name, type), keeping the first
   position and the last definition; outputs and tags keep first occurrences.

Resolution or parse failures skip the include (or drop the parent) with a
warning unless the governing strategy is fail/error, in which case
composition stops with a CompositionError. Cycles always stop composition.
"""

from __future__ import annotations

import asyncio
import copy
import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from stencil.descriptor.conditions import evaluate_condition
from stencil.descriptor.errors import ConditionSyntaxError, TemplateConfigError
from stencil.descriptor.parser import CONFLICT_CATEGORIES, TemplateParser, compare_versions
from stencil.descriptor.types import (
    ConflictStrategy,
    Hooks,
    Include,
    TemplateDescriptor,
)
from stencil.resolution.errors import ResolutionError
from stencil.resolution.references import (
    classify_reference,
    locate_descriptor,
    normalize_reference,
)
from stencil.resolution.types import ResolvedTemplate, SourceType

from .errors import CompositionConflictError, CompositionCycleError, CompositionError
from .types import (
    ComposedTemplate,
    CompositionContext,
    ConflictHandler,
    ConflictRecord,
    ResolvedInclude,
)

logger = logging.getLogger(__name__)

MAX_COMPOSITION_DEPTH = 32


@dataclass
class _Run:
    """Conflicts and warnings collected while composing one descriptor."""
    conflicts: List[ConflictRecord] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def absorb(self, composed: ComposedTemplate) -> None:
        self.conflicts.extend(composed.conflicts)
        self.warnings.extend(composed.warnings)

    def warn(self, message: str) -> None:
        logger.warning(message)
        self.warnings.append(message)


def _locate_reference(reference: str, base_path: str) -> Tuple[str, str]:
    """Pick the reference to resolve and the identity used for cycle checks.

    A bare name such as `base` is first looked up as a template directory next
    to (or one level above) the current template.
    """
    candidate = reference.strip()
    explicit = candidate.startswith(("github:", "npm:", "http://", "https://", "file:"))
    if not explicit and classify_reference(candidate) in (SourceType.REGISTRY, SourceType.REPOSITORY):
        base = Path(base_path)
        for root in (base, base.parent):
            found = locate_descriptor(root / candidate)
            if found is not None:
                candidate = str(found.parent)
                break

    normalized = normalize_reference(candidate, base_path)
    identity = normalized
    if classify_reference(candidate) == SourceType.LOCAL:
        found = locate_descriptor(Path(normalized))
        if found is not None:
            identity = str(found)
    return candidate, identity


class TemplateCompositionEngine:
    """Compose a descriptor with its parent and includes.

    Args:
        parser: Parser for resolved content; defaults to TemplateParser().
        conflict_handler: Callback for the "prompt" strategy. It receives the
            ConflictRecord and returns the strategy name to apply. Without a
            handler "prompt" behaves like "fail".
    """

    def __init__(
        self,
        parser: Optional[TemplateParser] = None,
        conflict_handler: Optional[ConflictHandler] = None,
    ):
        self.parser = parser or TemplateParser()
        self.conflict_handler = conflict_handler

    async def compose(
        self, descriptor: TemplateDescriptor, context: CompositionContext
    ) -> ComposedTemplate:
        """Compose a descriptor. The input descriptor is not modified.

        Raises:
            CompositionError: On cycles, or failures under fail/error.
            CompositionConflictError: On a collision under fail/error.
        """
        chain: Tuple[str, ...] = ()
        if context.source:
            loop = asyncio.get_running_loop()
            _, identity = await loop.run_in_executor(
                None, _locate_reference, context.source, str(context.project_root)
            )
            chain = (identity,)

        composed = await self._compose(descriptor, context, chain)
        logger.info(
            "Composed template '%s' (%d of %d includes applied, %d conflicts)",
            composed.descriptor.name,
            len(composed.included),
            len(composed.resolved_includes),
            len(composed.conflicts),
        )
        return composed

    # -------------------------------------------------------------------------
    # Recursion
    # -------------------------------------------------------------------------

    async def _compose(
        self,
        descriptor: TemplateDescriptor,
        context: CompositionContext,
        chain: Tuple[str, ...],
    ) -> ComposedTemplate:
        if len(chain) > MAX_COMPOSITION_DEPTH:
            raise CompositionError(
                f"Template composition deeper than {MAX_COMPOSITION_DEPTH} levels"
            )

        run = _Run()
        acc = copy.deepcopy(descriptor)
        parent_ref = acc.extends
        inherited_from = None

        if parent_ref:
            try:
                parent, _ = await self._load(parent_ref, context, chain, context.variables, run)
            except (ResolutionError, TemplateConfigError) as e:
                if acc.conflicts.strategy.aborts:
                    raise CompositionError(
                        f"Failed to resolve parent template '{parent_ref}': {e}"
                    ) from e
                run.warn(f"Ignoring parent template '{parent_ref}': {e}")
            else:
                run.absorb(parent)
                acc = self._inherit(parent.descriptor, acc, parent_ref, run)
                inherited_from = parent_ref

        acc.extends = None
        includes, acc.includes = acc.includes, []

        variables: Dict[str, Any] = acc.variable_defaults()
        variables.update(context.variables)

        resolved_includes = []
        for include in includes:
            resolved_includes.append(
                await self._apply_include(acc, include, context, chain, variables, run)
            )

        self._deduplicate(acc, run)

        return ComposedTemplate(
            descriptor=acc,
            resolved_includes=tuple(resolved_includes),
            conflicts=tuple(run.conflicts),
            warnings=tuple(run.warnings),
            parent=inherited_from,
            base_path=context.effective_base_path,
        )

    async def _load(
        self,
        reference: str,
        context: CompositionContext,
        chain: Tuple[str, ...],
        variables: Dict[str, Any],
        run: _Run,
    ) -> Tuple[ComposedTemplate, ResolvedTemplate]:
        base_path = context.effective_base_path
        loop = asyncio.get_running_loop()
        candidate, identity = await loop.run_in_executor(
            None, _locate_reference, reference, base_path
        )
        if identity in chain:
            raise CompositionCycleError(chain + (identity,))

        resolved = await context.manager.resolve_one(candidate, base_path)
        parsed = self.parser.parse_text(resolved.content, source=resolved.metadata.reference)
        descriptor = parsed.raise_for_errors()
        for warning in parsed.warnings:
            run.warnings.append(f"{reference}: {warning}")

        child_context = CompositionContext(
            project_root=context.project_root,
            manager=context.manager,
            variables=dict(variables),
            base_path=resolved.base_path,
        )
        composed = await self._compose(descriptor, child_context, chain + (identity,))
        return composed, resolved

    # -------------------------------------------------------------------------
    # Inheritance
    # -------------------------------------------------------------------------

    def _inherit(
        self,
        parent: TemplateDescriptor,
        child: TemplateDescriptor,
        parent_ref: str,
        run: _Run,
    ) -> TemplateDescriptor:
        sources = (parent_ref, child.name or "<child>")

        variables = dict(parent.variables)
        for name, variable in child.variables.items():
            if name in variables and variables[name] != variable:
                logger.debug("Child template overrides variable '%s' of %s", name, parent_ref)
                run.conflicts.append(ConflictRecord("variable", name, sources, "override"))
            variables[name] = variable

        child_steps = {s.name: s for s in child.steps}
        steps = []
        for step in parent.steps:
            if step.name in child_steps:
                run.conflicts.append(ConflictRecord("step", step.name, sources, "override"))
                steps.append(child_steps.pop(step.name))
            else:
                steps.append(step)
        steps.extend(s for s in child.steps if s.name in child_steps)

        return TemplateDescriptor(
            name=child.name or parent.name,
            variables=variables,
            description=child.description or parent.description,
            version=child.version or parent.version,
            author=child.author or parent.author,
            category=child.category or parent.category,
            tags=parent.tags + child.tags,
            examples=parent.examples + child.examples,
            dependencies=parent.dependencies + child.dependencies,
            outputs=parent.outputs + child.outputs,
            steps=steps,
            extends=None,
            includes=list(child.includes),
            conflicts=child.conflicts,
            engines={**parent.engines, **child.engines},
            hooks=Hooks(
                pre=parent.hooks.pre + child.hooks.pre,
                post=parent.hooks.post + child.hooks.post,
                error=parent.hooks.error + child.hooks.error,
            ),
            settings=child.settings.merged_over(parent.settings),
        )

    # -------------------------------------------------------------------------
    # Includes
    # -------------------------------------------------------------------------

    async def _apply_include(
        self,
        acc: TemplateDescriptor,
        include: Include,
        context: CompositionContext,
        chain: Tuple[str, ...],
        variables: Dict[str, Any],
        run: _Run,
    ) -> ResolvedInclude:
        if include.condition:
            try:
                active = evaluate_condition(include.condition, variables)
            except ConditionSyntaxError as e:
                if include.strategy.aborts:
                    raise CompositionError(f"Include '{include.url}': {e}") from e
                run.warn(f"Skipped include '{include.url}': {e}")
                return ResolvedInclude(
                    url=include.url,
                    included=False,
                    strategy=include.strategy,
                    reason=f"invalid condition: {e}",
                )
            if not active:
                logger.info("Include %s skipped: condition %r is false", include.url, include.condition)
                return ResolvedInclude(
                    url=include.url,
                    included=False,
                    strategy=include.strategy,
                    reason=f"condition '{include.condition}' evaluated to false",
                )

        try:
            composed, resolved = await self._load(
                include.url, context, chain, {**variables, **include.variables}, run
            )
        except (ResolutionError, TemplateConfigError) as e:
            if include.strategy.aborts:
                raise CompositionError(f"Failed to include '{include.url}': {e}") from e
            run.warn(f"Skipped include '{include.url}': {e}")
            return ResolvedInclude(
                url=include.url,
                included=False,
                strategy=include.strategy,
                reason=str(e),
            )

        run.absorb(composed)
        included = composed.descriptor

        if include.version and included.version:
            if compare_versions(include.version, included.version) != 0:
                run.warn(
                    f"Include '{include.url}' pinned to {include.version} "
                    f"but resolved version {included.version}"
                )

        for name, value in include.variables.items():
            variable = included.variables.get(name)
            if variable is not None:
                included.variables[name] = dataclasses.replace(
                    variable, default=value, required=False
                )
        for name, variable in included.variables.items():
            variables.setdefault(name, variable.default)
        variables.update(include.variables)

        self._merge_include(acc, included, include, run)
        logger.info("Included %s (strategy %s)", include.url, include.strategy.value)

        return ResolvedInclude(
            url=include.url,
            included=True,
            strategy=include.strategy,
            source=resolved.metadata.reference,
        )

    def _decide(self, strategy: ConflictStrategy, record: ConflictRecord) -> ConflictStrategy:
        """Turn a strategy into the action for one collision."""
        if strategy == ConflictStrategy.PROMPT:
            choice = self.conflict_handler(record) if self.conflict_handler else "fail"
            try:
                strategy = ConflictStrategy(choice)
            except ValueError:
                raise CompositionError(f"Conflict handler returned unknown strategy '{choice}'")
            if strategy == ConflictStrategy.PROMPT:
                strategy = ConflictStrategy.FAIL
        if strategy.aborts:
            raise CompositionConflictError(dataclasses.replace(record, resolution=strategy.value))
        return strategy

    def _merge_include(
        self,
        acc: TemplateDescriptor,
        included: TemplateDescriptor,
        include: Include,
        run: _Run,
    ) -> None:
        sources = (acc.name or "<template>", include.url)
        for category in CONFLICT_CATEGORIES:
            strategy = acc.conflicts.rules.get(category, include.strategy)
            if category == "variables":
                self._merge_variables(acc, included, strategy, sources, run)
            elif category == "dependencies":
                self._merge_dependencies(acc, included, strategy, sources, run)
            else:
                self._merge_strings(acc, included, category, strategy)

    def _merge_variables(
        self,
        acc: TemplateDescriptor,
        included: TemplateDescriptor,
        strategy: ConflictStrategy,
        sources: Tuple[str, ...],
        run: _Run,
    ) -> None:
        if strategy == ConflictStrategy.REPLACE:
            if not included.variables:
                return
            for name, variable in included.variables.items():
                if name in acc.variables and acc.variables[name] != variable:
                    run.conflicts.append(ConflictRecord("variable", name, sources, strategy.value))
            acc.variables = dict(included.variables)
            return

        for name, variable in included.variables.items():
            existing = acc.variables.get(name)
            if existing is None:
                acc.variables[name] = variable
                continue
            if existing == variable:
                continue
            record = ConflictRecord("variable", name, sources, strategy.value)
            action = self._decide(strategy, record)
            if action != ConflictStrategy.EXTEND:
                acc.variables[name] = variable
            run.conflicts.append(dataclasses.replace(record, resolution=action.value))

    def _merge_dependencies(
        self,
        acc: TemplateDescriptor,
        included: TemplateDescriptor,
        strategy: ConflictStrategy,
        sources: Tuple[str, ...],
        run: _Run,
    ) -> None:
        if not included.dependencies:
            return

        if strategy == ConflictStrategy.REPLACE:
            acc.dependencies = list(included.dependencies)
            return
        if strategy == ConflictStrategy.EXTEND:
            acc.dependencies = acc.dependencies + list(included.dependencies)
            return

        positions = {dep.key: i for i, dep in enumerate(acc.dependencies)}
        for dep in included.dependencies:
            index = positions.get(dep.key)
            if index is None:
                positions[dep.key] = len(acc.dependencies)
                acc.dependencies.append(dep)
                continue
            if acc.dependencies[index] == dep:
                continue
            record = ConflictRecord("dependency", dep.name, sources, strategy.value)
            action = self._decide(strategy, record)
            if action != ConflictStrategy.EXTEND:
                acc.dependencies[index] = dep
            run.conflicts.append(dataclasses.replace(record, resolution=action.value))

    @staticmethod
    def _merge_strings(
        acc: TemplateDescriptor,
        included: TemplateDescriptor,
        attr: str,
        strategy: ConflictStrategy,
    ) -> None:
        items = list(getattr(included, attr))
        if not items:
            return
        current = getattr(acc, attr)
        if strategy == ConflictStrategy.REPLACE:
            setattr(acc, attr, items)
        elif strategy == ConflictStrategy.EXTEND:
            setattr(acc, attr, current + items)
        else:
            setattr(acc, attr, current + [i for i in items if i not in current])

    # -------------------------------------------------------------------------
    # Clean-up
    # -------------------------------------------------------------------------

    @staticmethod
    def _deduplicate(acc: TemplateDescriptor, run: _Run) -> None:
        positions: Dict[Tuple[str, str], int] = {}
        dependencies = []
        for dep in acc.dependencies:
            index = positions.get(dep.key)
            if index is None:
                positions[dep.key] = len(dependencies)
                dependencies.append(dep)
                continue
            if dependencies[index] != dep:
                run.conflicts.append(
                    ConflictRecord("dependency", dep.name, (acc.name or "<template>",), "deduplicated")
                )
            dependencies[index] = dep
        acc.dependencies = dependencies

        acc.outputs = list(dict.fromkeys(acc.outputs))
        acc.tags = list(dict.fromkeys(acc.tags))

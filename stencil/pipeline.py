"""
pipeline.py - Parse, compose and resolve one template in a single call.

    descriptor path
        -> TemplateParser            (ParsedTemplate)
        -> TemplateCompositionEngine (ComposedTemplate)
        -> DependencyGraphResolver   (DependencyGraph)

An invalid descriptor stops the pipeline after parsing; the result carries
the parser's errors. Composition errors under fail/error strategies are
raised to the caller. Dependency problems are reported in the graph.

Usage:
    from stencil.pipeline import TemplateResolutionPipeline

    pipeline = TemplateResolutionPipeline.from_settings(load_settings())
    result = await pipeline.resolve("templates/api", variables={"name": "svc"})
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from stencil.composition import ComposedTemplate, CompositionContext, TemplateCompositionEngine
from stencil.composition.types import ConflictHandler
from stencil.config.settings import ResolverSettings, build_manager
from stencil.dependencies import DependencyGraph, DependencyGraphResolver, ResolutionOptions
from stencil.descriptor import ParsedTemplate, TemplateParser
from stencil.resolution.manager import SourceResolutionManager
from stencil.resolution.resolvers import DEFAULT_INSTALL_DIR

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineResult:
    """Everything produced for one template."""
    parsed: ParsedTemplate
    composed: Optional[ComposedTemplate] = None
    dependencies: Optional[DependencyGraph] = None

    @property
    def ok(self) -> bool:
        """Parsed, composed, and not every required dependency failed."""
        if not self.parsed.is_valid or self.composed is None:
            return False
        return self.dependencies is None or not self.dependencies.all_required_failed

    @property
    def warnings(self) -> Tuple[str, ...]:
        warnings = list(self.parsed.warnings)
        if self.composed is not None:
            warnings.extend(self.composed.warnings)
        return tuple(warnings)


class TemplateResolutionPipeline:
    """Wire parser, composition engine and dependency resolver together.

    Args:
        manager: Shared by composition and dependency resolution.
        parser: Defaults to TemplateParser().
        conflict_handler: Passed to the composition engine for "prompt".
        install_dir: Install directory for registry dependencies.
    """

    def __init__(
        self,
        manager: Optional[SourceResolutionManager] = None,
        parser: Optional[TemplateParser] = None,
        conflict_handler: Optional[ConflictHandler] = None,
        install_dir: str = DEFAULT_INSTALL_DIR,
    ):
        self.manager = manager or SourceResolutionManager()
        self.parser = parser or TemplateParser()
        self.engine = TemplateCompositionEngine(self.parser, conflict_handler)
        self.dependency_resolver = DependencyGraphResolver(self.manager)
        self.install_dir = install_dir

    @classmethod
    def from_settings(
        cls,
        settings: ResolverSettings,
        conflict_handler: Optional[ConflictHandler] = None,
        transport=None,
    ) -> "TemplateResolutionPipeline":
        return cls(
            manager=build_manager(settings, transport=transport),
            parser=TemplateParser(default_conflict_strategy=settings.conflict_strategy),
            conflict_handler=conflict_handler,
            install_dir=settings.install_dir,
        )

    async def resolve(
        self,
        path: Union[str, Path],
        variables: Optional[Dict[str, Any]] = None,
        project_root: Union[str, Path, None] = None,
        options: Optional[ResolutionOptions] = None,
    ) -> PipelineResult:
        """Run the full pipeline for a descriptor file or template directory."""
        loop = asyncio.get_running_loop()
        parsed = await loop.run_in_executor(None, self.parser.parse_file, path)
        if not parsed.is_valid:
            logger.warning("Template %s is invalid; skipping composition", path)
            return PipelineResult(parsed=parsed)

        root = Path(project_root) if project_root is not None else Path.cwd()
        context = CompositionContext(
            project_root=root,
            manager=self.manager,
            variables=dict(variables or {}),
            base_path=str(Path(parsed.file_path).parent),
            source=parsed.file_path,
        )
        composed = await self.engine.compose(parsed.descriptor, context)

        options = options or ResolutionOptions(
            install_dir=self.install_dir, project_root=str(root)
        )
        graph = await self.dependency_resolver.resolve(composed.descriptor.dependencies, options)
        if graph.all_required_failed:
            logger.warning(
                "Every required dependency of '%s' failed to resolve", composed.descriptor.name
            )

        return PipelineResult(parsed=parsed, composed=composed, dependencies=graph)

    def run(self, path: Union[str, Path], **kwargs: Any) -> PipelineResult:
        """Synchronous wrapper around resolve()."""
        return asyncio.run(self.resolve(path, **kwargs))

"""
resolver.py - Resolve a descriptor's declared dependencies.

Every entry is normalized to a Dependency, filtered by the run options and
then resolved on its own task:

- registry packages are looked up in `<project_root>/<install_dir>/<name>`
  and their package.json version is checked against the declared constraint;
- local, repository and http entries go through the SourceResolutionManager
  (by `url` when given, else by name).

A failing entry becomes a MissingDependency; nothing is raised to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from stencil.descriptor.parser import dependency_from_value
from stencil.descriptor.types import Dependency, DependencyType
from stencil.resolution.errors import ResolutionError
from stencil.resolution.manager import SourceResolutionManager
from stencil.resolution.resolvers.registry import read_package_version

from .types import (
    DependencyConflict,
    DependencyGraph,
    MissingDependency,
    ResolutionOptions,
    ResolvedDependency,
)
from .versions import version_satisfies

logger = logging.getLogger(__name__)


def normalize_dependencies(values: Sequence[Any]) -> List[Dependency]:
    """Turn bare names and mappings into Dependency objects.

    Entries that are already Dependency objects are kept as they are; invalid
    entries are logged and dropped.
    """
    result = []
    for index, value in enumerate(values):
        if isinstance(value, Dependency):
            result.append(value)
            continue
        warnings: List[str] = []
        dependency = dependency_from_value(value, index, warnings)
        for warning in warnings:
            logger.warning(warning)
        if dependency is not None:
            result.append(dependency)
    return result


def find_conflicts(dependencies: Sequence[Dependency]) -> List[DependencyConflict]:
    """Group entries by name and report names declared inconsistently."""
    by_name: Dict[str, List[Dependency]] = {}
    for dep in dependencies:
        by_name.setdefault(dep.name, []).append(dep)

    conflicts = []
    for name, entries in by_name.items():
        types = {e.type for e in entries}
        versions = {e.version for e in entries if e.version}
        reasons = []
        if len(types) > 1:
            reasons.append("source types " + ", ".join(sorted(t.value for t in types)))
        if len(versions) > 1:
            reasons.append("versions " + ", ".join(sorted(versions)))
        if reasons:
            conflicts.append(
                DependencyConflict(
                    name=name,
                    entries=tuple(entries),
                    reason="conflicting " + " and ".join(reasons),
                )
            )
    return conflicts


class DependencyGraphResolver:
    """Resolve dependency lists concurrently.

    Args:
        manager: Used for local, repository and http entries; defaults to a
            manager with the default resolvers and no cache.
    """

    def __init__(self, manager: Optional[SourceResolutionManager] = None):
        self.manager = manager or SourceResolutionManager()

    @staticmethod
    def _selected(dep: Dependency, options: ResolutionOptions) -> bool:
        if dep.dev and not options.include_dev:
            return False
        if dep.optional and not options.include_optional:
            return False
        return True

    async def resolve(
        self, dependencies: Sequence[Any], options: Optional[ResolutionOptions] = None
    ) -> DependencyGraph:
        """Resolve every selected dependency; failures land in `missing`."""
        options = options or ResolutionOptions()
        normalized = normalize_dependencies(dependencies)
        selected = [d for d in normalized if self._selected(d, options)]
        skipped = len(normalized) - len(selected)
        if skipped:
            logger.debug("Skipped %d dev/optional dependencies", skipped)

        conflicts = find_conflicts(selected)
        for conflict in conflicts:
            logger.warning("Dependency '%s': %s", conflict.name, conflict.reason)

        unique: List[Dependency] = []
        seen = set()
        for dep in selected:
            identity = (dep.name, dep.type, dep.version, dep.url)
            if identity not in seen:
                seen.add(identity)
                unique.append(dep)

        outcomes = await asyncio.gather(
            *(self._resolve_entry(dep, options) for dep in unique),
            return_exceptions=True,
        )

        resolved: List[ResolvedDependency] = []
        missing: List[MissingDependency] = []
        for dep, outcome in zip(unique, outcomes):
            if isinstance(outcome, ResolvedDependency):
                resolved.append(outcome)
            elif isinstance(outcome, Exception):
                level = logging.DEBUG if dep.optional else logging.WARNING
                logger.log(level, "Dependency '%s' not resolved: %s", dep.name, outcome)
                missing.append(
                    MissingDependency(
                        name=dep.name,
                        type=dep.type,
                        reason=str(outcome),
                        optional=dep.optional,
                    )
                )
            else:
                raise outcome

        graph = DependencyGraph(
            requested=tuple(unique),
            resolved=tuple(resolved),
            missing=tuple(missing),
            conflicts=tuple(conflicts),
        )
        logger.info(
            "Resolved %d of %d dependencies (%d missing, %d conflicts)",
            len(resolved), len(unique), len(missing), len(conflicts),
        )
        return graph

    async def _resolve_entry(self, dep: Dependency, options: ResolutionOptions) -> ResolvedDependency:
        root = options.project_root or str(Path.cwd())
        if dep.type == DependencyType.REGISTRY:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, self._check_installed, dep, root, options.install_dir)

        if not dep.url:
            raise ResolutionError(
                dep.name, dep.type.value, message=f"url required for {dep.type.value} dependency"
            )
        reference = dep.url
        template = await self.manager.resolve_one(reference, root)
        version = template.metadata.version
        if dep.version and not version_satisfies(version, dep.version):
            raise ResolutionError(
                reference,
                dep.type.value,
                message=f"resolved version {version or 'unknown'} does not satisfy {dep.version}",
            )
        return ResolvedDependency(
            name=dep.name,
            type=dep.type,
            version=version,
            path=template.base_path,
            source=template.metadata.reference,
            optional=dep.optional,
            dev=dep.dev,
        )

    @staticmethod
    def _check_installed(dep: Dependency, root: str, install_dir: str) -> ResolvedDependency:
        package_dir = Path(root) / install_dir / dep.name
        if not package_dir.is_dir():
            raise ResolutionError(
                dep.name,
                dep.type.value,
                message=f"not installed in {Path(root) / install_dir}",
            )

        version = read_package_version(package_dir)
        if not version_satisfies(version, dep.version):
            raise ResolutionError(
                dep.name,
                dep.type.value,
                message=f"installed version {version or 'unknown'} does not satisfy {dep.version}",
            )
        return ResolvedDependency(
            name=dep.name,
            type=dep.type,
            version=version,
            path=str(package_dir),
            source=dep.name,
            optional=dep.optional,
            dev=dep.dev,
        )

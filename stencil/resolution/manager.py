"""
manager.py - Route references to resolvers through the cache and security policy.

For each reference the manager:
1. normalizes it (local paths made absolute) and looks it up in the cache;
2. on a miss, classifies it and checks the security policy;
3. picks the first resolver of that source type whose supports() accepts it;
4. runs the resolver and stores the result in the cache.

Concurrent requests for the same normalized reference share one task, so an
uncached reference is fetched once no matter how many callers ask for it.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence, Union

from .cache import ResolutionCache
from .errors import NoResolverError
from .policy import SecurityPolicy
from .references import cache_key, classify_reference, normalize_reference
from .resolvers import SourceResolver, default_resolvers
from .types import ResolutionResult, ResolvedTemplate

logger = logging.getLogger(__name__)

BasePath = Union[str, Path, None]


class SourceResolutionManager:
    """Resolve template references with caching and policy enforcement.

    Args:
        resolvers: Dispatch table, tried in order. Defaults to
            default_resolvers(policy).
        cache: Optional injected cache; without one every call resolves.
        policy: Security policy; defaults to SecurityPolicy().
    """

    def __init__(
        self,
        resolvers: Optional[Iterable[SourceResolver]] = None,
        cache: Optional[ResolutionCache] = None,
        policy: Optional[SecurityPolicy] = None,
    ):
        self.policy = policy or SecurityPolicy()
        self.resolvers: List[SourceResolver] = (
            list(resolvers) if resolvers is not None else default_resolvers(self.policy)
        )
        self.cache = cache
        self._in_flight: Dict[str, "asyncio.Task[ResolvedTemplate]"] = {}

    def register(self, resolver: SourceResolver, first: bool = False) -> None:
        """Add a resolver to the dispatch table."""
        if first:
            self.resolvers.insert(0, resolver)
        else:
            self.resolvers.append(resolver)

    def find_resolver(self, reference: str) -> SourceResolver:
        """First resolver matching the reference's classification.

        Raises:
            NoResolverError: If no resolver applies.
        """
        source_type = classify_reference(reference)
        for resolver in self.resolvers:
            if resolver.source_type == source_type and resolver.supports(reference):
                logger.debug("Dispatching %s to %s resolver", reference, resolver.name)
                return resolver
        raise NoResolverError(reference, source_type.value)

    async def resolve_one(self, reference: str, base_path: BasePath = None) -> ResolvedTemplate:
        """Resolve a single reference.

        Raises:
            ResolutionError: (or a subclass) if the reference cannot be resolved.
        """
        normalized = normalize_reference(reference, base_path)
        key = cache_key(normalized)

        task = self._in_flight.get(key)
        if task is not None and task.get_loop() is asyncio.get_running_loop():
            logger.debug("Joining in-flight resolution of %s", normalized)
            return await asyncio.shield(task)

        task = asyncio.ensure_future(self._resolve_normalized(normalized, base_path))
        self._in_flight[key] = task
        task.add_done_callback(lambda t, k=key: self._forget(k, t))
        return await asyncio.shield(task)

    def _forget(self, key: str, task: "asyncio.Task[ResolvedTemplate]") -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]

    async def _resolve_normalized(self, normalized: str, base_path: BasePath) -> ResolvedTemplate:
        loop = asyncio.get_running_loop()

        if self.cache is not None:
            cached = await loop.run_in_executor(None, self.cache.get, normalized)
            if cached is not None:
                return cached

        self.policy.check_reference(normalized, classify_reference(normalized))
        resolver = self.find_resolver(normalized)

        resolved = await resolver.resolve(normalized, base_path)

        if self.cache is not None:
            try:
                await loop.run_in_executor(None, self.cache.set, normalized, resolved)
            except OSError as e:
                logger.warning("Could not cache %s: %s", normalized, e)

        return resolved

    async def resolve_many(
        self, references: Sequence[str], base_path: BasePath = None
    ) -> List[ResolutionResult]:
        """Resolve references concurrently.

        Results are aligned with the input order; one failure never cancels
        the others.
        """
        outcomes = await asyncio.gather(
            *(self.resolve_one(ref, base_path) for ref in references),
            return_exceptions=True,
        )
        results = []
        for reference, outcome in zip(references, outcomes):
            if isinstance(outcome, Exception):
                logger.warning("Failed to resolve %s: %s", reference, outcome)
                results.append(ResolutionResult(reference=reference, error=outcome))
            elif isinstance(outcome, BaseException):
                raise outcome
            else:
                results.append(ResolutionResult(reference=reference, template=outcome))
        return results

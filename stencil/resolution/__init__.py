"""
stencil/resolution - Fetch template content from references.

- References: classify_reference, normalize_reference, parse_repository_reference
- Resolvers: LocalResolver, RepositoryResolver, HttpResolver, RegistryResolver
- Cache: ResolutionCache (on-disk, TTL and size bounded)
- Manager: SourceResolutionManager (dispatch, cache, policy, batching)

Usage:
    from stencil.resolution import ResolutionCache, SourceResolutionManager

    manager = SourceResolutionManager(cache=ResolutionCache(".stencil/cache"))
    template = await manager.resolve_one("owner/repo@v1/templates/api")
"""

from .types import (
    ResolutionResult,
    ResolvedMetadata,
    ResolvedTemplate,
    SourceType,
    compute_checksum,
)

from .errors import (
    NoResolverError,
    PayloadTooLargeError,
    ResolutionError,
    ResolutionTimeoutError,
    SecurityPolicyError,
)

from .references import (
    RepositoryReference,
    cache_key,
    classify_reference,
    normalize_reference,
    parse_repository_reference,
)

from .policy import SecurityPolicy

from .cache import (
    CacheEntryInfo,
    CacheInfo,
    CacheValidationReport,
    ResolutionCache,
)

from .resolvers import (
    HttpResolver,
    LocalResolver,
    RegistryResolver,
    RepositoryResolver,
    SourceResolver,
    default_resolvers,
)

from .manager import SourceResolutionManager

__all__ = [
    "CacheEntryInfo",
    "CacheInfo",
    "CacheValidationReport",
    "HttpResolver",
    "LocalResolver",
    "NoResolverError",
    "PayloadTooLargeError",
    "RegistryResolver",
    "RepositoryReference",
    "RepositoryResolver",
    "ResolutionCache",
    "ResolutionError",
    "ResolutionResult",
    "ResolutionTimeoutError",
    "ResolvedMetadata",
    "ResolvedTemplate",
    "SecurityPolicy",
    "SecurityPolicyError",
    "SourceResolutionManager",
    "SourceResolver",
    "SourceType",
    "cache_key",
    "classify_reference",
    "compute_checksum",
    "default_resolvers",
    "normalize_reference",
    "parse_repository_reference",
]

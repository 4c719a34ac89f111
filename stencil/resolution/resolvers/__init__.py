"""
stencil/resolution/resolvers - Source resolver implementations.
"""

from typing import List, Optional

import httpx

from ..policy import SecurityPolicy
from .base import SourceResolver
from .http import HttpResolver
from .local import LocalResolver
from .registry import DEFAULT_INSTALL_DIR, RegistryResolver, read_package_version, split_package_spec
from .repository import RepositoryResolver


def default_resolvers(
    policy: Optional[SecurityPolicy] = None,
    install_dir: str = DEFAULT_INSTALL_DIR,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[SourceResolver]:
    """The standard dispatch table: local, repository, http, registry."""
    policy = policy or SecurityPolicy()
    return [
        LocalResolver(),
        RepositoryResolver(policy, transport=transport),
        HttpResolver(policy, transport=transport),
        RegistryResolver(install_dir),
    ]


__all__ = [
    "DEFAULT_INSTALL_DIR",
    "HttpResolver",
    "LocalResolver",
    "RegistryResolver",
    "RepositoryResolver",
    "SourceResolver",
    "default_resolvers",
    "read_package_version",
    "split_package_spec",
]

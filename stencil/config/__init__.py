"""
stencil/config - Resolver settings and manager construction.
"""

from .settings import (
    ENV_OVERRIDES,
    CacheSettings,
    ResolverSettings,
    SecurityPolicy,
    SettingsError,
    build_cache,
    build_manager,
    load_settings,
)

__all__ = [
    "ENV_OVERRIDES",
    "CacheSettings",
    "ResolverSettings",
    "SecurityPolicy",
    "SettingsError",
    "build_cache",
    "build_manager",
    "load_settings",
]

"""
settings.py - Resolver settings: YAML file, schema check, environment overrides.

Settings are read from `.stencil/resolver.yaml` under the project root (or an
explicit path), validated against the bundled JSON Schema and then overridden
by environment variables. Environment variables take precedence over YAML.

    STENCIL_CACHE_DIR            cache.directory
    STENCIL_CACHE_TTL            cache.ttl_seconds
    STENCIL_CACHE_MAX_BYTES      cache.max_size_bytes
    STENCIL_REQUIRE_HTTPS        security.require_secure_transport
    STENCIL_MAX_PAYLOAD_BYTES    security.max_payload_bytes
    STENCIL_TIMEOUT_SECONDS      security.timeout_seconds
    STENCIL_ALLOWED_DOMAINS      security.allowed_domains (comma separated)
    STENCIL_BLOCKED_DOMAINS      security.blocked_domains (comma separated)

Usage:
    from stencil.config import build_manager, load_settings

    settings = load_settings(project_root=".")
    manager = build_manager(settings)
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from stencil.descriptor.types import ConflictStrategy
from stencil.errors import StencilError
from stencil.resolution.cache import DEFAULT_MAX_SIZE_BYTES, DEFAULT_TTL_SECONDS, ResolutionCache
from stencil.resolution.manager import SourceResolutionManager
from stencil.resolution.policy import SecurityPolicy
from stencil.resolution.resolvers import DEFAULT_INSTALL_DIR, default_resolvers

logger = logging.getLogger(__name__)

SETTINGS_DIR = ".stencil"
SETTINGS_FILENAME = "resolver.yaml"
DEFAULT_CACHE_DIR = f"{SETTINGS_DIR}/cache"

_SCHEMA_PATH = Path(__file__).parent / "schemas" / "resolver_settings.schema.json"


class SettingsError(StencilError):
    """Raised when resolver settings cannot be loaded or are invalid."""

    def __init__(self, source: str, errors: List[str]):
        self.source = source
        self.errors = errors
        super().__init__(f"Invalid resolver settings in {source}: " + "; ".join(errors))


# =============================================================================
# Models
# =============================================================================


class CacheSettings(BaseModel):
    """On-disk resolution cache settings."""

    enabled: bool = True
    directory: str = Field(
        default=DEFAULT_CACHE_DIR,
        description="Cache root; relative paths are taken from the project root",
    )
    ttl_seconds: float = Field(default=DEFAULT_TTL_SECONDS, gt=0)
    max_size_bytes: int = Field(default=DEFAULT_MAX_SIZE_BYTES, gt=0)

    @field_validator("directory")
    @classmethod
    def directory_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("cache directory must not be empty")
        return v


class ResolverSettings(BaseModel):
    """Everything needed to build a SourceResolutionManager."""

    security: SecurityPolicy = Field(default_factory=SecurityPolicy)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    install_dir: str = Field(
        default=DEFAULT_INSTALL_DIR,
        description="Directory under the project root holding installed packages",
    )
    conflict_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.MERGE,
        description="Strategy for descriptors that do not declare one",
    )
    project_root: str = Field(default=".", description="Set by load_settings()")

    @field_validator("install_dir")
    @classmethod
    def install_dir_is_relative(cls, v: str) -> str:
        v = v.strip().strip("/")
        if not v:
            raise ValueError("install_dir must not be empty")
        if ".." in Path(v).parts:
            raise ValueError("install_dir must not contain '..'")
        return v

    def cache_directory(self) -> Path:
        directory = Path(self.cache.directory).expanduser()
        if not directory.is_absolute():
            directory = Path(self.project_root) / directory
        return directory


# =============================================================================
# Loading
# =============================================================================


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    raise ValueError(f"expected a boolean, got '{value}'")


def _parse_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


# env var -> (section, key, converter)
ENV_OVERRIDES: Dict[str, Tuple[str, str, Callable[[str], Any]]] = {
    "STENCIL_CACHE_DIR": ("cache", "directory", str),
    "STENCIL_CACHE_TTL": ("cache", "ttl_seconds", float),
    "STENCIL_CACHE_MAX_BYTES": ("cache", "max_size_bytes", int),
    "STENCIL_REQUIRE_HTTPS": ("security", "require_secure_transport", _parse_bool),
    "STENCIL_MAX_PAYLOAD_BYTES": ("security", "max_payload_bytes", int),
    "STENCIL_TIMEOUT_SECONDS": ("security", "timeout_seconds", float),
    "STENCIL_ALLOWED_DOMAINS": ("security", "allowed_domains", _parse_list),
    "STENCIL_BLOCKED_DOMAINS": ("security", "blocked_domains", _parse_list),
}


def _schema_errors(data: Mapping[str, Any]) -> List[str]:
    from jsonschema import Draft7Validator

    with open(_SCHEMA_PATH, "r", encoding="utf-8") as f:
        schema = json.load(f)

    errors = []
    for error in Draft7Validator(schema).iter_errors(data):
        path = ".".join(str(p) for p in error.absolute_path) or "root"
        errors.append(f"{path}: {error.message}")
    return errors


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise SettingsError(str(path), [f"cannot read file: {e}"]) from e
    except yaml.YAMLError as e:
        raise SettingsError(str(path), [f"invalid YAML: {e}"]) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise SettingsError(str(path), ["root must be a mapping"])
    return data


def _apply_env(data: Dict[str, Any], env: Mapping[str, str]) -> List[str]:
    errors = []
    for name, (section, key, convert) in ENV_OVERRIDES.items():
        raw = env.get(name)
        if raw is None or raw == "":
            continue
        try:
            value = convert(raw)
        except ValueError as e:
            errors.append(f"{name}: {e}")
            continue
        data.setdefault(section, {})[key] = value
        logger.debug("Setting %s.%s overridden by %s", section, key, name)
    return errors


def load_settings(
    path: Union[str, Path, None] = None,
    env: Optional[Mapping[str, str]] = None,
    project_root: Union[str, Path] = ".",
) -> ResolverSettings:
    """Load resolver settings.

    Args:
        path: Settings file. Defaults to `<project_root>/.stencil/resolver.yaml`;
            a missing default file means "all defaults", a missing explicit
            file is an error.
        env: Environment mapping; defaults to os.environ.
        project_root: Base for the default file and relative cache directory.

    Raises:
        SettingsError: On unreadable YAML, schema violations, bad environment
            values or model validation failures.
    """
    env = os.environ if env is None else env
    root = Path(project_root)

    if path is None:
        settings_path = root / SETTINGS_DIR / SETTINGS_FILENAME
        data = _read_yaml(settings_path) if settings_path.is_file() else {}
    else:
        settings_path = Path(path)
        if not settings_path.is_file():
            raise SettingsError(str(settings_path), ["file not found"])
        data = _read_yaml(settings_path)

    source = str(settings_path)
    errors = _schema_errors(data)
    if errors:
        raise SettingsError(source, errors)

    env_errors = _apply_env(data, env)
    if env_errors:
        raise SettingsError("environment", env_errors)

    try:
        settings = ResolverSettings(**data, project_root=str(root))
    except ValidationError as e:
        messages = [
            f"{'.'.join(str(p) for p in err['loc']) or 'root'}: {err['msg']}"
            for err in e.errors()
        ]
        raise SettingsError(source, messages) from e

    logger.debug("Loaded resolver settings from %s", source)
    return settings


def build_cache(settings: ResolverSettings) -> ResolutionCache:
    return ResolutionCache(
        settings.cache_directory(),
        ttl_seconds=settings.cache.ttl_seconds,
        max_size_bytes=settings.cache.max_size_bytes,
        enabled=settings.cache.enabled,
    )


def build_manager(settings: Optional[ResolverSettings] = None, transport=None) -> SourceResolutionManager:
    """Manager with the default resolver table, a cache and the policy."""
    settings = settings or ResolverSettings()
    return SourceResolutionManager(
        resolvers=default_resolvers(
            settings.security, install_dir=settings.install_dir, transport=transport
        ),
        cache=build_cache(settings),
        policy=settings.security,
    )

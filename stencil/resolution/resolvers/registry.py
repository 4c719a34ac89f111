"""
registry.py - Resolve installed registry packages that ship a template.

Packages are looked up in the local install directory (`node_modules` by
default) under the base path; nothing is downloaded.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
from pathlib import Path
from typing import Optional, Tuple

from ..errors import ResolutionError
from ..references import locate_descriptor
from ..types import ResolvedMetadata, ResolvedTemplate, SourceType, compute_checksum
from .base import BasePath, SourceResolver, descriptor_version

logger = logging.getLogger(__name__)

DEFAULT_INSTALL_DIR = "node_modules"

_PACKAGE_NAME = re.compile(r"^(?:@[a-z0-9][-a-z0-9._~]*/)?[a-z0-9][-a-z0-9._~]*$", re.IGNORECASE)


def split_package_spec(reference: str) -> Tuple[str, Optional[str]]:
    """Split `npm:@scope/name@1.2.0` into ("@scope/name", "1.2.0")."""
    spec = reference.strip()
    if spec.startswith("npm:"):
        spec = spec[len("npm:"):]
    at = spec.rfind("@")
    if at > 0:
        return spec[:at], spec[at + 1:] or None
    return spec, None


def read_package_version(package_dir: Path) -> Optional[str]:
    """Version from package.json in an installed package, if readable."""
    manifest = package_dir / "package.json"
    if not manifest.is_file():
        return None
    try:
        with open(manifest, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Unreadable package manifest %s: %s", manifest, e)
        return None
    version = data.get("version") if isinstance(data, dict) else None
    return version if isinstance(version, str) else None


class RegistryResolver(SourceResolver):
    """`npm:name`, `@scope/name` and bare package identifiers."""

    source_type = SourceType.REGISTRY

    def __init__(self, install_dir: str = DEFAULT_INSTALL_DIR):
        self.install_dir = install_dir

    def supports(self, reference: str) -> bool:
        if not super().supports(reference):
            return False
        name, _ = split_package_spec(reference)
        return bool(_PACKAGE_NAME.match(name))

    def find_package(self, name: str, start: Path) -> Optional[Path]:
        """Look for `<dir>/<install_dir>/<name>` in start and its parents."""
        for directory in [start] + list(start.parents):
            candidate = directory / self.install_dir / name
            if candidate.is_dir():
                return candidate
        return None

    async def resolve(self, reference: str, base_path: BasePath = None) -> ResolvedTemplate:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._resolve_sync, reference, base_path)

    def _resolve_sync(self, reference: str, base_path: BasePath) -> ResolvedTemplate:
        name, _ = split_package_spec(reference)
        root = Path(base_path) if base_path else Path.cwd()
        package_dir = self.find_package(name, root)

        if package_dir is None:
            raise ResolutionError(
                reference,
                self.name,
                message=f"package '{name}' is not installed in {root / self.install_dir}",
            )

        descriptor = locate_descriptor(package_dir)
        if descriptor is None:
            raise ResolutionError(
                reference, self.name, message=f"package '{name}' does not contain a template"
            )

        try:
            content = descriptor.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ResolutionError(reference, self.name, e) from e

        logger.debug("Resolved package %s from %s", name, package_dir)
        return ResolvedTemplate(
            content=content,
            base_path=str(descriptor.parent),
            metadata=ResolvedMetadata(
                reference=reference,
                source_type=self.source_type,
                checksum=compute_checksum(content),
                version=read_package_version(package_dir) or descriptor_version(content),
            ),
        )

"""
local.py - Resolve templates from the local filesystem.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Tuple

from ..errors import ResolutionError
from ..references import (
    is_windows_path,
    locate_descriptor,
    resolve_local_path,
    strip_file_scheme,
)
from ..types import ResolvedMetadata, ResolvedTemplate, SourceType, compute_checksum
from .base import BasePath, SourceResolver, descriptor_version

logger = logging.getLogger(__name__)


class LocalResolver(SourceResolver):
    """Absolute, relative, `~/`, `file:` and Windows-style paths.

    A directory reference is resolved to the template.yml (or template.yaml)
    inside it; the returned base_path is always the descriptor's directory.
    """

    source_type = SourceType.LOCAL

    async def resolve(self, reference: str, base_path: BasePath = None) -> ResolvedTemplate:
        loop = asyncio.get_running_loop()
        descriptor, content = await loop.run_in_executor(
            None, self._read, reference, base_path
        )
        logger.debug("Resolved local reference %s -> %s", reference, descriptor)
        return ResolvedTemplate(
            content=content,
            base_path=str(descriptor.parent),
            metadata=ResolvedMetadata(
                reference=reference,
                source_type=self.source_type,
                checksum=compute_checksum(content),
                version=descriptor_version(content),
            ),
        )

    def _read(self, reference: str, base_path: BasePath) -> Tuple[Path, str]:
        raw = strip_file_scheme(reference.strip())
        path = Path(raw) if is_windows_path(raw) else resolve_local_path(reference, base_path)

        descriptor = locate_descriptor(path)
        if descriptor is None:
            raise ResolutionError(
                reference,
                self.name,
                FileNotFoundError(str(path)),
                f"no template descriptor found at {path}",
            )
        try:
            return descriptor, descriptor.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ResolutionError(reference, self.name, e) from e


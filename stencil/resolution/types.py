"""
types.py - Resolution result types.

ResolvedTemplate is immutable: once a resolver or the cache produces one, it is
shared freely between callers.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class SourceType(str, Enum):
    """Kinds of reference a resolver can handle."""
    LOCAL = "local"
    REPOSITORY = "repository"
    REGISTRY = "registry-package"
    HTTP = "http"


def compute_checksum(content: str) -> str:
    """SHA-256 hex digest of descriptor content."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ResolvedMetadata:
    """Where a resolved template came from and what it hashed to."""
    reference: str
    source_type: SourceType
    checksum: str
    fetch_timestamp: datetime = field(default_factory=utc_now)
    version: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "reference": self.reference,
            "source_type": self.source_type.value,
            "checksum": self.checksum,
            "fetch_timestamp": self.fetch_timestamp.isoformat(),
            "version": self.version,
        }


def resolved_metadata_from_dict(data: Dict[str, Any]) -> ResolvedMetadata:
    """Parse ResolvedMetadata from a metadata.json mapping."""
    return ResolvedMetadata(
        reference=data["reference"],
        source_type=SourceType(data["source_type"]),
        checksum=data["checksum"],
        fetch_timestamp=datetime.fromisoformat(data["fetch_timestamp"]),
        version=data.get("version"),
    )


@dataclass(frozen=True)
class ResolvedTemplate:
    """Raw descriptor text plus the directory its files live in."""
    content: str
    base_path: str
    metadata: ResolvedMetadata

    @property
    def checksum(self) -> str:
        return self.metadata.checksum


@dataclass(frozen=True)
class ResolutionResult:
    """Outcome of one reference in a batch resolution."""
    reference: str
    template: Optional[ResolvedTemplate] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.template is not None

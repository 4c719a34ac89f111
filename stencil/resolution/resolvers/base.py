"""
base.py - Common interface for source resolvers.

A resolver handles exactly one SourceType. The manager keeps an ordered table
of resolvers and dispatches a reference to the first one whose source type
matches its classification and whose `supports()` accepts it.
"""

from __future__ import annotations

import abc
from pathlib import Path
from typing import Optional, Union

import yaml

from ..references import classify_reference
from ..types import ResolvedTemplate, SourceType

BasePath = Union[str, Path, None]


class SourceResolver(abc.ABC):
    """Fetches template content for one kind of reference."""

    source_type: SourceType

    @property
    def name(self) -> str:
        return self.source_type.value

    def supports(self, reference: str) -> bool:
        """Return True if this resolver can handle the reference."""
        return classify_reference(reference) == self.source_type

    @abc.abstractmethod
    async def resolve(self, reference: str, base_path: BasePath = None) -> ResolvedTemplate:
        """Fetch the reference.

        Raises:
            ResolutionError: On any failure. Resolvers never retry.
        """


def descriptor_version(content: str) -> Optional[str]:
    """Best-effort read of the `version` field from descriptor text."""
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError:
        return None
    if isinstance(data, dict) and isinstance(data.get("version"), str):
        return data["version"]
    return None

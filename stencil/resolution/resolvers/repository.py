"""
repository.py - Resolve templates hosted in GitHub repositories.

Supported forms:
    owner/repo[@ref][/path]
    github:owner/repo[@ref][/path]
    https://github.com/owner/repo[/tree|blob/<ref>/<path>]
    https://raw.githubusercontent.com/owner/repo/<ref>/<path>

The descriptor is fetched from the raw-content host and written into a fresh
temp directory which becomes the resolved template's base_path.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..errors import ResolutionError
from ..fetch import fetch_text, materialize
from ..policy import SecurityPolicy
from ..references import parse_repository_reference
from ..types import ResolvedMetadata, ResolvedTemplate, SourceType, compute_checksum
from .base import BasePath, SourceResolver, descriptor_version

logger = logging.getLogger(__name__)


class RepositoryResolver(SourceResolver):
    """GitHub shorthand, web and raw-content references."""

    source_type = SourceType.REPOSITORY

    def __init__(
        self,
        policy: Optional[SecurityPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.policy = policy or SecurityPolicy()
        self.transport = transport

    def supports(self, reference: str) -> bool:
        if not super().supports(reference):
            return False
        try:
            parse_repository_reference(reference)
        except ValueError:
            return False
        return True

    async def resolve(self, reference: str, base_path: BasePath = None) -> ResolvedTemplate:
        try:
            repo_ref = parse_repository_reference(reference)
        except ValueError as e:
            raise ResolutionError(reference, self.name, e) from e

        url = repo_ref.raw_url
        self.policy.check_url(url, reference, self.name)

        content = await fetch_text(
            url,
            reference=reference,
            resolver_type=self.name,
            policy=self.policy,
            transport=self.transport,
        )
        directory = await materialize(content, prefix=f"stencil-{repo_ref.owner}-{repo_ref.repo}-")
        logger.info(
            "Resolved %s/%s@%s:%s into %s",
            repo_ref.owner, repo_ref.repo, repo_ref.ref or "default", repo_ref.descriptor_path,
            directory,
        )

        return ResolvedTemplate(
            content=content,
            base_path=directory,
            metadata=ResolvedMetadata(
                reference=reference,
                source_type=self.source_type,
                checksum=compute_checksum(content),
                version=repo_ref.ref or descriptor_version(content),
            ),
        )

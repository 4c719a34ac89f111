"""
http.py - Resolve templates from plain http(s) URLs.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..fetch import fetch_text, materialize
from ..policy import SecurityPolicy
from ..types import ResolvedMetadata, ResolvedTemplate, SourceType, compute_checksum
from .base import BasePath, SourceResolver, descriptor_version

logger = logging.getLogger(__name__)


class HttpResolver(SourceResolver):
    """A URL that points directly at a descriptor file."""

    source_type = SourceType.HTTP

    def __init__(
        self,
        policy: Optional[SecurityPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.policy = policy or SecurityPolicy()
        self.transport = transport

    async def resolve(self, reference: str, base_path: BasePath = None) -> ResolvedTemplate:
        url = reference.strip()
        self.policy.check_url(url, reference, self.name)

        content = await fetch_text(
            url,
            reference=reference,
            resolver_type=self.name,
            policy=self.policy,
            transport=self.transport,
        )
        directory = await materialize(content, prefix="stencil-http-")
        logger.info("Resolved %s into %s", url, directory)

        return ResolvedTemplate(
            content=content,
            base_path=directory,
            metadata=ResolvedMetadata(
                reference=reference,
                source_type=self.source_type,
                checksum=compute_checksum(content),
                version=descriptor_version(content),
            ),
        )

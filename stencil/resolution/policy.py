"""
policy.py - Security policy for fetching template references.

The policy is supplied by the caller (see stencil.config.settings) and checked
twice: by the manager against the reference before a resolver runs, and by the
network resolvers against the concrete URL they are about to fetch.
"""

from __future__ import annotations

import logging
import re
from typing import List
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator

from .errors import SecurityPolicyError
from .types import SourceType

logger = logging.getLogger(__name__)

# Characters that could smuggle a second command through a package identifier
SHELL_METACHARACTERS = re.compile(r"[;&|`$(){}!<>\n\r]")

DEFAULT_MAX_PAYLOAD_BYTES = 10 * 1024 * 1024
DEFAULT_TIMEOUT_SECONDS = 30.0


def _domain_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


class SecurityPolicy(BaseModel):
    """Constraints applied to every resolved reference."""

    require_secure_transport: bool = Field(
        default=True,
        description="Reject plain http:// fetches",
    )
    allowed_domains: List[str] = Field(
        default_factory=list,
        description="If non-empty, only these hosts (and their subdomains) may be fetched",
    )
    blocked_domains: List[str] = Field(
        default_factory=list,
        description="Hosts (and their subdomains) that may never be fetched",
    )
    max_payload_bytes: int = Field(default=DEFAULT_MAX_PAYLOAD_BYTES, gt=0)
    timeout_seconds: float = Field(default=DEFAULT_TIMEOUT_SECONDS, gt=0)

    @field_validator("allowed_domains", "blocked_domains")
    @classmethod
    def normalize_domains(cls, v: List[str]) -> List[str]:
        """Lower-case domains and drop blanks."""
        return [d.strip().lower().lstrip(".") for d in v if d and d.strip()]

    def check_reference(self, reference: str, source_type: SourceType) -> None:
        """Reject references that are unsafe for their source type.

        Raises:
            SecurityPolicyError: On shell metacharacters in a registry
                package identifier, or for URL references, insecure transport
                or a disallowed host.
        """
        if source_type == SourceType.REGISTRY and SHELL_METACHARACTERS.search(reference):
            raise SecurityPolicyError(
                reference, "manager", "reference contains shell metacharacters"
            )
        if source_type in (SourceType.HTTP, SourceType.REPOSITORY) and reference.startswith(
            ("http://", "https://")
        ):
            self.check_url(reference, reference, "manager")

    def check_url(self, url: str, reference: str, resolver_type: str) -> None:
        """Check a concrete fetch URL against transport and domain rules.

        Raises:
            SecurityPolicyError: If the URL is not allowed.
        """
        parsed = urlparse(url)
        scheme = parsed.scheme.lower()
        host = (parsed.hostname or "").lower()

        if scheme not in ("http", "https"):
            raise SecurityPolicyError(reference, resolver_type, f"unsupported scheme '{scheme}'")
        if self.require_secure_transport and scheme != "https":
            raise SecurityPolicyError(reference, resolver_type, "secure transport (https) required")
        if not host:
            raise SecurityPolicyError(reference, resolver_type, "URL has no host")

        for blocked in self.blocked_domains:
            if _domain_matches(host, blocked):
                raise SecurityPolicyError(reference, resolver_type, f"domain '{host}' is blocked")

        if self.allowed_domains and not any(
            _domain_matches(host, allowed) for allowed in self.allowed_domains
        ):
            raise SecurityPolicyError(
                reference, resolver_type, f"domain '{host}' is not in the allowed list"
            )

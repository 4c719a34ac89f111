"""
errors.py - Typed errors for reference resolution.

Every resolution failure carries the offending reference, the resolver (or
manager) that failed and the underlying cause, so a caller can report it
without further lookup.
"""

from __future__ import annotations

from typing import Optional

from stencil.errors import StencilError


class ResolutionError(StencilError):
    """Raised when a reference cannot be resolved."""

    def __init__(
        self,
        reference: str,
        resolver_type: str,
        cause: Optional[BaseException] = None,
        message: Optional[str] = None,
    ):
        self.reference = reference
        self.resolver_type = resolver_type
        self.cause = cause
        detail = message or (str(cause) if cause is not None else "resolution failed")
        super().__init__(f"[{resolver_type}] Failed to resolve '{reference}': {detail}")


class NoResolverError(ResolutionError):
    """Raised when no registered resolver supports a reference."""

    def __init__(self, reference: str, source_type: str):
        self.source_type = source_type
        super().__init__(
            reference,
            "manager",
            message=f"no resolver registered for source type '{source_type}'",
        )


class ResolutionTimeoutError(ResolutionError):
    """Raised when a fetch exceeds its timeout."""

    def __init__(
        self,
        reference: str,
        resolver_type: str,
        timeout_seconds: float,
        cause: Optional[BaseException] = None,
    ):
        self.timeout_seconds = timeout_seconds
        super().__init__(
            reference,
            resolver_type,
            cause,
            message=f"timed out after {timeout_seconds:g}s",
        )


class SecurityPolicyError(ResolutionError):
    """Raised when a reference violates the security policy."""

    def __init__(self, reference: str, resolver_type: str, reason: str):
        self.reason = reason
        super().__init__(reference, resolver_type, message=f"security policy violation: {reason}")


class PayloadTooLargeError(SecurityPolicyError):
    """Raised when a fetched payload exceeds the configured byte limit."""

    def __init__(self, reference: str, resolver_type: str, limit_bytes: int):
        self.limit_bytes = limit_bytes
        super().__init__(
            reference,
            resolver_type,
            f"payload exceeds maximum size of {limit_bytes} bytes",
        )

"""
fetch.py - Bounded HTTP fetches and temp-dir materialization for remote resolvers.

Fetches are streamed so an oversized payload is abandoned as soon as the byte
count passes the policy limit; nothing is written anywhere until the whole body
has been received.
"""

from __future__ import annotations

import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Optional

import httpx

from .errors import PayloadTooLargeError, ResolutionError, ResolutionTimeoutError
from .policy import SecurityPolicy
from .references import DESCRIPTOR_FILENAMES

logger = logging.getLogger(__name__)

USER_AGENT = "stencil-core"


async def fetch_text(
    url: str,
    *,
    reference: str,
    resolver_type: str,
    policy: SecurityPolicy,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> str:
    """GET a URL as UTF-8 text within the policy's time and size limits.

    Args:
        url: Concrete URL to fetch (already checked against the policy).
        reference: Original reference, for error reporting.
        resolver_type: Resolver name, for error reporting.
        policy: Supplies timeout_seconds and max_payload_bytes.
        transport: Optional httpx transport (tests inject a MockTransport).

    Raises:
        PayloadTooLargeError: If the body exceeds max_payload_bytes.
        ResolutionTimeoutError: If the fetch exceeds timeout_seconds.
        ResolutionError: On HTTP errors, non-200 status or undecodable bodies.
    """
    try:
        body = await asyncio.wait_for(
            _stream_body(url, reference, resolver_type, policy, transport),
            timeout=policy.timeout_seconds,
        )
    except asyncio.TimeoutError as e:
        raise ResolutionTimeoutError(reference, resolver_type, policy.timeout_seconds, e) from e
    except httpx.TimeoutException as e:
        raise ResolutionTimeoutError(reference, resolver_type, policy.timeout_seconds, e) from e
    except httpx.HTTPError as e:
        raise ResolutionError(reference, resolver_type, e) from e

    try:
        return body.decode("utf-8")
    except UnicodeDecodeError as e:
        raise ResolutionError(reference, resolver_type, e, "response is not valid UTF-8") from e


async def _stream_body(
    url: str,
    reference: str,
    resolver_type: str,
    policy: SecurityPolicy,
    transport: Optional[httpx.AsyncBaseTransport],
) -> bytes:
    limit = policy.max_payload_bytes
    logger.info("Fetching %s (%s)", url, resolver_type)

    async with httpx.AsyncClient(
        timeout=policy.timeout_seconds,
        transport=transport,
        follow_redirects=True,
        headers={"User-Agent": USER_AGENT},
    ) as client:
        async with client.stream("GET", url) as response:
            final_url = str(response.url)
            if final_url != url:
                policy.check_url(final_url, reference, resolver_type)

            if response.status_code != 200:
                raise ResolutionError(
                    reference,
                    resolver_type,
                    message=f"HTTP {response.status_code} fetching {url}",
                )

            declared = response.headers.get("content-length")
            if declared and declared.isdigit() and int(declared) > limit:
                raise PayloadTooLargeError(reference, resolver_type, limit)

            chunks = []
            received = 0
            async for chunk in response.aiter_bytes():
                received += len(chunk)
                if received > limit:
                    logger.warning(
                        "Aborting fetch of %s after %d bytes (limit %d)", url, received, limit
                    )
                    raise PayloadTooLargeError(reference, resolver_type, limit)
                chunks.append(chunk)

    logger.debug("Fetched %d bytes from %s", received, url)
    return b"".join(chunks)


def _write_descriptor_dir(content: str, prefix: str) -> str:
    directory = tempfile.mkdtemp(prefix=prefix)
    (Path(directory) / DESCRIPTOR_FILENAMES[0]).write_text(content, encoding="utf-8")
    return directory


async def materialize(content: str, prefix: str = "stencil-") -> str:
    """Write fetched descriptor text into a fresh temp directory.

    Returns:
        The directory path (used as the resolved template's base_path).
    """
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, _write_descriptor_dir, content, prefix)

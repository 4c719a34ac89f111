"""
Test fixtures and utilities for stencil tests.

This module provides reusable fixtures for writing template descriptors to
disk, building resolution managers with an injected cache, and serving
remote descriptors through an httpx.MockTransport.
"""

from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest
import yaml

from stencil.resolution import (
    ResolutionCache,
    SecurityPolicy,
    SourceResolutionManager,
    default_resolvers,
)


# ============================================================================
# Helpers
# ============================================================================


def write_template(directory: Path, data: Dict[str, Any], filename: str = "template.yml") -> Path:
    """Write a descriptor mapping as YAML into a directory and return the file."""
    directory.mkdir(parents=True, exist_ok=True)
    path = directory / filename
    path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
    return path


def minimal_descriptor(name: str, **extra: Any) -> Dict[str, Any]:
    """Smallest valid descriptor, plus any extra top-level fields."""
    data: Dict[str, Any] = {"name": name, "variables": {}}
    data.update(extra)
    return data


class RecordingHandler:
    """MockTransport handler serving fixed bodies by URL and counting requests."""

    def __init__(self, routes: Optional[Dict[str, Any]] = None):
        self.routes: Dict[str, Any] = dict(routes or {})
        self.requests: List[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requests.append(url)
        body = self.routes.get(url)
        if body is None:
            return httpx.Response(404, text="not found")
        if isinstance(body, httpx.Response):
            return body
        if callable(body):
            return body(request)
        return httpx.Response(200, text=body)

    def count(self, url: str) -> int:
        return sum(1 for u in self.requests if u == url)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def make_template(tmp_path) -> Callable[..., Path]:
    """Factory writing `<tmp_path>/<relative>/template.yml` from a mapping."""

    def _make(relative: str, data: Dict[str, Any]) -> Path:
        return write_template(tmp_path / relative, data)

    return _make


@pytest.fixture
def cache(tmp_path) -> ResolutionCache:
    """An isolated on-disk cache under tmp_path."""
    return ResolutionCache(tmp_path / "cache")


@pytest.fixture
def handler() -> RecordingHandler:
    """Empty route table; tests add routes before resolving."""
    return RecordingHandler()


@pytest.fixture
def manager_factory(cache, handler) -> Callable[..., SourceResolutionManager]:
    """Build managers whose network resolvers talk to the recording handler."""

    def _build(
        policy: Optional[SecurityPolicy] = None,
        with_cache: bool = True,
        install_dir: str = "node_modules",
    ) -> SourceResolutionManager:
        policy = policy or SecurityPolicy()
        return SourceResolutionManager(
            resolvers=default_resolvers(
                policy, install_dir=install_dir, transport=httpx.MockTransport(handler)
            ),
            cache=cache if with_cache else None,
            policy=policy,
        )

    return _build


@pytest.fixture
def manager(manager_factory) -> SourceResolutionManager:
    """Manager with the default resolvers, the tmp cache and the mock transport."""
    return manager_factory()

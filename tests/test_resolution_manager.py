"""Tests for SourceResolutionManager.

These tests verify:
1. Dispatch to the first matching resolver, NoResolverError otherwise
2. Security policy enforcement before any resolver runs
3. A cached reference is fetched once within the TTL
4. Identical in-flight references share one fetch
5. resolve_many keeps input order and isolates failures
"""

import asyncio

import pytest

from conftest import minimal_descriptor, write_template
from stencil.resolution import (
    LocalResolver,
    NoResolverError,
    ResolutionCache,
    ResolvedMetadata,
    ResolvedTemplate,
    SecurityPolicy,
    SecurityPolicyError,
    SourceResolutionManager,
    SourceResolver,
    SourceType,
    compute_checksum,
)

RAW = "https://raw.githubusercontent.com"
DESCRIPTOR = "name: remote\nvariables: {}\n"


class SlowHttpResolver(SourceResolver):
    """HTTP resolver stand-in with per-reference latency and a call log."""

    source_type = SourceType.HTTP

    def __init__(self, delays=None, failures=()):
        self.delays = delays or {}
        self.failures = set(failures)
        self.calls = []

    async def resolve(self, reference, base_path=None):
        self.calls.append(reference)
        await asyncio.sleep(self.delays.get(reference, 0))
        if reference in self.failures:
            raise ValueError(f"boom: {reference}")
        content = f"name: {reference.rsplit('/', 1)[-1]}\nvariables: {{}}\n"
        return ResolvedTemplate(
            content=content,
            base_path="/tmp",
            metadata=ResolvedMetadata(
                reference=reference,
                source_type=self.source_type,
                checksum=compute_checksum(content),
            ),
        )


class TestDispatch:
    """Resolver selection."""

    def test_local_reference(self, manager, tmp_path):
        write_template(tmp_path / "api", minimal_descriptor("api"))

        resolved = asyncio.run(manager.resolve_one("./api", tmp_path))
        assert resolved.base_path == str(tmp_path / "api")

    def test_no_resolver(self, tmp_path):
        manager = SourceResolutionManager(resolvers=[LocalResolver()])

        with pytest.raises(NoResolverError) as exc_info:
            asyncio.run(manager.resolve_one("https://example.com/t.yml"))
        assert exc_info.value.source_type == "http"

    def test_find_resolver_respects_order(self):
        first, second = SlowHttpResolver(), SlowHttpResolver()
        manager = SourceResolutionManager(resolvers=[first])
        manager.register(second, first=True)

        assert manager.find_resolver("https://example.com/t.yml") is second

    def test_repository_reference(self, manager, handler):
        handler.routes[f"{RAW}/acme/tpl/main/template.yml"] = DESCRIPTOR

        resolved = asyncio.run(manager.resolve_one("acme/tpl"))
        assert resolved.content == DESCRIPTOR


class TestSecurityPolicy:
    """Policy checks happen before a resolver runs."""

    def test_shell_metacharacters_rejected_in_package_names(self, manager, tmp_path):
        with pytest.raises(SecurityPolicyError):
            asyncio.run(manager.resolve_one("npm:left-pad$(whoami)", tmp_path))
        with pytest.raises(SecurityPolicyError):
            asyncio.run(manager.resolve_one("left-pad;rm -rf ~", tmp_path))

    def test_url_query_string_allowed(self, manager, handler):
        url = "https://templates.example.com/get?name=api&ref=v1"
        handler.routes[url] = DESCRIPTOR

        resolved = asyncio.run(manager.resolve_one(url))
        assert resolved.content == DESCRIPTOR
        assert handler.count(url) == 1

    def test_local_path_with_parentheses(self, manager, tmp_path):
        write_template(tmp_path / "Templates (old)" / "base", minimal_descriptor("base"))

        resolved = asyncio.run(manager.resolve_one("./Templates (old)/base", tmp_path))
        assert resolved.base_path == str(tmp_path / "Templates (old)" / "base")

    def test_blocked_domain(self, manager_factory, handler):
        handler.routes["https://evil.example.com/t.yml"] = DESCRIPTOR
        manager = manager_factory(SecurityPolicy(blocked_domains=["Example.com"]))

        with pytest.raises(SecurityPolicyError) as exc_info:
            asyncio.run(manager.resolve_one("https://evil.example.com/t.yml"))
        assert "blocked" in str(exc_info.value)
        assert handler.requests == []

    def test_allowed_domains(self, manager_factory, handler):
        handler.routes["https://templates.acme.dev/t.yml"] = DESCRIPTOR
        manager = manager_factory(SecurityPolicy(allowed_domains=["acme.dev"]))

        assert asyncio.run(manager.resolve_one("https://templates.acme.dev/t.yml")).content == DESCRIPTOR
        with pytest.raises(SecurityPolicyError):
            asyncio.run(manager.resolve_one("https://other.dev/t.yml"))

    def test_raw_host_must_be_allowed_for_repositories(self, manager_factory, handler):
        handler.routes[f"{RAW}/acme/tpl/main/template.yml"] = DESCRIPTOR
        manager = manager_factory(SecurityPolicy(allowed_domains=["github.com"]))

        with pytest.raises(SecurityPolicyError):
            asyncio.run(manager.resolve_one("acme/tpl"))


class TestCaching:
    """Cache interaction."""

    def test_single_fetch_within_ttl(self, manager, handler, cache):
        """Two resolutions of one reference hit the network once."""
        url = f"{RAW}/acme/tpl/v1/template.yml"
        handler.routes[url] = DESCRIPTOR

        first = asyncio.run(manager.resolve_one("acme/tpl@v1"))
        second = asyncio.run(manager.resolve_one("github:acme/tpl@v1"))

        assert handler.count(url) == 1
        assert first.content == second.content
        assert first.checksum == second.checksum
        assert cache.get_info().entry_count == 1

    def test_expired_entry_refetched(self, tmp_path, handler, manager_factory):
        url = f"{RAW}/acme/tpl/main/template.yml"
        handler.routes[url] = DESCRIPTOR
        now = [1000.0]
        manager = manager_factory(with_cache=False)
        manager.cache = ResolutionCache(tmp_path / "short", ttl_seconds=10, clock=lambda: now[0])

        asyncio.run(manager.resolve_one("acme/tpl"))
        now[0] += 11
        asyncio.run(manager.resolve_one("acme/tpl"))

        assert handler.count(url) == 2

    def test_tampered_cache_entry_refetched(self, manager, handler, cache):
        url = f"{RAW}/acme/tpl/main/template.yml"
        handler.routes[url] = DESCRIPTOR
        asyncio.run(manager.resolve_one("acme/tpl"))

        entry = cache.entry_path("github:acme/tpl")
        (entry / "template.yml").write_text("name: tampered\nvariables: {}\n")

        resolved = asyncio.run(manager.resolve_one("acme/tpl"))
        assert resolved.content == DESCRIPTOR
        assert handler.count(url) == 2

    def test_without_cache_every_call_fetches(self, manager_factory, handler):
        url = f"{RAW}/acme/tpl/main/template.yml"
        handler.routes[url] = DESCRIPTOR
        manager = manager_factory(with_cache=False)

        asyncio.run(manager.resolve_one("acme/tpl"))
        asyncio.run(manager.resolve_one("acme/tpl"))
        assert handler.count(url) == 2


class TestConcurrency:
    """Coalescing and batch resolution."""

    def test_identical_in_flight_references_coalesced(self):
        resolver = SlowHttpResolver(delays={"https://example.com/a.yml": 0.05})
        manager = SourceResolutionManager(resolvers=[resolver])

        async def run():
            return await asyncio.gather(
                manager.resolve_one("https://example.com/a.yml"),
                manager.resolve_one("https://example.com/a.yml"),
                manager.resolve_one("https://example.com/a.yml"),
            )

        results = asyncio.run(run())
        assert resolver.calls == ["https://example.com/a.yml"]
        assert len({r.checksum for r in results}) == 1

    def test_resolve_many_keeps_input_order(self):
        """Results line up with the input even when latencies invert order."""
        refs = [f"https://example.com/{name}.yml" for name in ("slow", "medium", "fast")]
        resolver = SlowHttpResolver(delays={refs[0]: 0.06, refs[1]: 0.03, refs[2]: 0.0})
        manager = SourceResolutionManager(resolvers=[resolver])

        results = asyncio.run(manager.resolve_many(refs))

        assert [r.reference for r in results] == refs
        assert [r.template.content.split("\n")[0] for r in results] == [
            "name: slow.yml",
            "name: medium.yml",
            "name: fast.yml",
        ]

    def test_resolve_many_isolates_failures(self):
        refs = ["https://example.com/ok.yml", "https://example.com/bad.yml", "https://example.com/late.yml"]
        resolver = SlowHttpResolver(delays={refs[2]: 0.02}, failures=[refs[1]])
        manager = SourceResolutionManager(resolvers=[resolver])

        results = asyncio.run(manager.resolve_many(refs))

        assert [r.ok for r in results] == [True, False, True]
        assert isinstance(results[1].error, ValueError)
        assert results[2].template is not None

    def test_resolve_many_reports_unresolvable(self, manager):
        results = asyncio.run(manager.resolve_many(["./does-not-exist"]))
        assert not results[0].ok
        assert results[0].error.reference.endswith("does-not-exist")

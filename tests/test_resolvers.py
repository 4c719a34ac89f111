"""Tests for the source resolvers and the bounded fetch helper.

Network resolvers are exercised through httpx.MockTransport; nothing here
touches the real network.
"""

import asyncio
from pathlib import Path

import httpx
import pytest

from conftest import RecordingHandler, minimal_descriptor, write_template
from stencil.resolution import (
    HttpResolver,
    LocalResolver,
    PayloadTooLargeError,
    RegistryResolver,
    RepositoryResolver,
    ResolutionCache,
    ResolutionError,
    ResolutionTimeoutError,
    SecurityPolicy,
    SecurityPolicyError,
    SourceResolutionManager,
    SourceType,
    compute_checksum,
)

RAW = "https://raw.githubusercontent.com"
DESCRIPTOR = "name: remote\nversion: 1.0.0\nvariables: {}\n"


class TestLocalResolver:
    """Filesystem references."""

    def test_resolves_directory(self, tmp_path):
        path = write_template(tmp_path / "api", minimal_descriptor("api", version="1.0.0"))

        resolved = asyncio.run(LocalResolver().resolve("./api", tmp_path))

        assert resolved.base_path == str(tmp_path / "api")
        assert resolved.content == path.read_text()
        assert resolved.checksum == compute_checksum(resolved.content)
        assert resolved.metadata.source_type == SourceType.LOCAL
        assert resolved.metadata.version == "1.0.0"

    def test_resolves_file_scheme(self, tmp_path):
        write_template(tmp_path / "api", minimal_descriptor("api"))
        resolved = asyncio.run(LocalResolver().resolve(f"file:{tmp_path}/api"))
        assert resolved.base_path == str(tmp_path / "api")

    def test_resolves_explicit_file(self, tmp_path):
        path = write_template(tmp_path / "api", minimal_descriptor("api"), filename="custom.yml")
        resolved = asyncio.run(LocalResolver().resolve(str(path)))
        assert resolved.base_path == str(tmp_path / "api")

    def test_missing_path(self, tmp_path):
        with pytest.raises(ResolutionError) as exc_info:
            asyncio.run(LocalResolver().resolve("./missing", tmp_path))

        error = exc_info.value
        assert error.reference == "./missing"
        assert error.resolver_type == "local"
        assert isinstance(error.cause, FileNotFoundError)


class TestRepositoryResolver:
    """GitHub references fetched from the raw-content host."""

    def test_fetch_and_materialize(self):
        handler = RecordingHandler({f"{RAW}/acme/tpl/v1/api/template.yml": DESCRIPTOR})
        resolver = RepositoryResolver(transport=httpx.MockTransport(handler))

        resolved = asyncio.run(resolver.resolve("acme/tpl@v1/api"))

        assert resolved.content == DESCRIPTOR
        assert resolved.metadata.version == "v1"
        assert resolved.metadata.source_type == SourceType.REPOSITORY
        assert (Path(resolved.base_path) / "template.yml").read_text() == DESCRIPTOR

    def test_version_from_descriptor_without_ref(self):
        handler = RecordingHandler({f"{RAW}/acme/tpl/main/template.yml": DESCRIPTOR})
        resolver = RepositoryResolver(transport=httpx.MockTransport(handler))

        resolved = asyncio.run(resolver.resolve("github:acme/tpl"))
        assert resolved.metadata.version == "1.0.0"

    def test_http_error_status(self):
        resolver = RepositoryResolver(transport=httpx.MockTransport(RecordingHandler()))

        with pytest.raises(ResolutionError) as exc_info:
            asyncio.run(resolver.resolve("acme/tpl"))
        assert "HTTP 404" in str(exc_info.value)

    def test_supports_rejects_traversal(self):
        resolver = RepositoryResolver()
        assert resolver.supports("acme/tpl@v1/api")
        assert not resolver.supports("acme/tpl/../../etc")
        assert not resolver.supports("./local")

    def test_oversized_payload_aborted_mid_stream(self):
        """The fetch stops as soon as the limit is passed."""
        chunk = b"#" * 1024
        produced = []

        async def body():
            for i in range(100):
                produced.append(i)
                yield chunk

        def respond(request):
            return httpx.Response(200, content=body())

        handler = RecordingHandler({f"{RAW}/acme/big/main/template.yml": respond})
        policy = SecurityPolicy(max_payload_bytes=4 * 1024)
        resolver = RepositoryResolver(policy, transport=httpx.MockTransport(handler))

        with pytest.raises(PayloadTooLargeError) as exc_info:
            asyncio.run(resolver.resolve("acme/big"))

        assert exc_info.value.limit_bytes == 4 * 1024
        assert "4096 bytes" in str(exc_info.value)
        assert len(produced) < 100

    def test_declared_length_over_limit(self):
        def respond(request):
            return httpx.Response(200, content=b"x" * 2048)

        handler = RecordingHandler({f"{RAW}/acme/big/main/template.yml": respond})
        resolver = RepositoryResolver(
            SecurityPolicy(max_payload_bytes=1024), transport=httpx.MockTransport(handler)
        )

        with pytest.raises(PayloadTooLargeError):
            asyncio.run(resolver.resolve("acme/big"))

    def test_oversized_payload_leaves_no_cache_entry(self, tmp_path):
        chunk = b"#" * 1024

        async def body():
            for _ in range(50):
                yield chunk

        handler = RecordingHandler(
            {f"{RAW}/acme/big/main/template.yml": lambda request: httpx.Response(200, content=body())}
        )
        policy = SecurityPolicy(max_payload_bytes=2048)
        cache = ResolutionCache(tmp_path / "cache")
        manager = SourceResolutionManager(
            resolvers=[RepositoryResolver(policy, transport=httpx.MockTransport(handler))],
            cache=cache,
            policy=policy,
        )

        with pytest.raises(PayloadTooLargeError):
            asyncio.run(manager.resolve_one("acme/big"))

        assert cache.get_info().entry_count == 0
        assert not (tmp_path / "cache").exists() or not any((tmp_path / "cache").iterdir())

    def test_timeout(self):
        async def slow(request):
            await asyncio.sleep(5)
            return httpx.Response(200, text=DESCRIPTOR)

        resolver = RepositoryResolver(
            SecurityPolicy(timeout_seconds=0.05), transport=httpx.MockTransport(slow)
        )

        with pytest.raises(ResolutionTimeoutError) as exc_info:
            asyncio.run(resolver.resolve("acme/tpl"))
        assert exc_info.value.timeout_seconds == 0.05

    def test_transport_error(self):
        def broken(request):
            raise httpx.ConnectError("connection refused", request=request)

        resolver = RepositoryResolver(transport=httpx.MockTransport(broken))
        with pytest.raises(ResolutionError) as exc_info:
            asyncio.run(resolver.resolve("acme/tpl"))
        assert isinstance(exc_info.value.cause, httpx.ConnectError)


class TestHttpResolver:
    """Plain URLs to a descriptor file."""

    def test_fetch(self):
        handler = RecordingHandler({"https://templates.example.com/api.yml": DESCRIPTOR})
        resolver = HttpResolver(transport=httpx.MockTransport(handler))

        resolved = asyncio.run(resolver.resolve("https://templates.example.com/api.yml"))
        assert resolved.content == DESCRIPTOR
        assert resolved.metadata.source_type == SourceType.HTTP

    def test_insecure_transport_rejected(self):
        handler = RecordingHandler({"http://templates.example.com/api.yml": DESCRIPTOR})
        resolver = HttpResolver(transport=httpx.MockTransport(handler))

        with pytest.raises(SecurityPolicyError):
            asyncio.run(resolver.resolve("http://templates.example.com/api.yml"))
        assert handler.requests == []

    def test_insecure_transport_allowed_by_policy(self):
        handler = RecordingHandler({"http://templates.example.com/api.yml": DESCRIPTOR})
        resolver = HttpResolver(
            SecurityPolicy(require_secure_transport=False), transport=httpx.MockTransport(handler)
        )
        resolved = asyncio.run(resolver.resolve("http://templates.example.com/api.yml"))
        assert resolved.content == DESCRIPTOR

    def test_redirect_to_blocked_domain(self):
        def redirect(request):
            return httpx.Response(302, headers={"Location": "https://evil.example.net/t.yml"})

        handler = RecordingHandler(
            {
                "https://templates.example.com/api.yml": redirect,
                "https://evil.example.net/t.yml": DESCRIPTOR,
            }
        )
        resolver = HttpResolver(
            SecurityPolicy(blocked_domains=["example.net"]), transport=httpx.MockTransport(handler)
        )

        with pytest.raises(SecurityPolicyError):
            asyncio.run(resolver.resolve("https://templates.example.com/api.yml"))


class TestRegistryResolver:
    """Installed packages under the install directory."""

    def test_resolves_installed_package(self, tmp_path):
        package = tmp_path / "node_modules" / "@acme" / "tpl-api"
        write_template(package, minimal_descriptor("tpl-api"))
        (package / "package.json").write_text('{"name": "@acme/tpl-api", "version": "2.3.0"}')

        resolved = asyncio.run(RegistryResolver().resolve("npm:@acme/tpl-api", tmp_path))

        assert resolved.base_path == str(package)
        assert resolved.metadata.version == "2.3.0"
        assert resolved.metadata.source_type == SourceType.REGISTRY

    def test_finds_package_in_parent_directory(self, tmp_path):
        package = tmp_path / "node_modules" / "tpl-api"
        write_template(package, minimal_descriptor("tpl-api"))
        nested = tmp_path / "apps" / "web"
        nested.mkdir(parents=True)

        resolved = asyncio.run(RegistryResolver().resolve("tpl-api", nested))
        assert resolved.base_path == str(package)

    def test_custom_install_dir(self, tmp_path):
        write_template(tmp_path / "vendor" / "tpl", minimal_descriptor("tpl"))
        resolved = asyncio.run(RegistryResolver("vendor").resolve("tpl", tmp_path))
        assert resolved.base_path == str(tmp_path / "vendor" / "tpl")

    def test_not_installed(self, tmp_path):
        with pytest.raises(ResolutionError) as exc_info:
            asyncio.run(RegistryResolver().resolve("missing-pkg", tmp_path))
        assert "not installed" in str(exc_info.value)

    def test_package_without_template(self, tmp_path):
        (tmp_path / "node_modules" / "plain").mkdir(parents=True)
        with pytest.raises(ResolutionError) as exc_info:
            asyncio.run(RegistryResolver().resolve("plain", tmp_path))
        assert "does not contain a template" in str(exc_info.value)

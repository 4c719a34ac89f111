"""
references.py - Classify, normalize and hash template references.

Reference forms, checked in this order:

    file:./tpl, file:///abs/tpl          -> local
    github:owner/repo[@ref][/path]       -> repository
    npm:name                             -> registry-package
    https://github.com/owner/repo/...    -> repository
    https://raw.githubusercontent.com/.. -> repository
    http(s)://anything-else              -> http
    C:\\tpl, \\\\server\\share, .\\tpl   -> local
    /abs, ./rel, ../rel, ~/tpl           -> local
    owner/repo[@ref][/path]              -> repository
    anything else (incl. @scope/name)    -> registry-package

This module has no dependencies on the rest of the package so that the
descriptor parser can use it for dependency type inference.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union
from urllib.parse import urlparse

from .types import SourceType

DESCRIPTOR_FILENAMES = ("template.yml", "template.yaml")

GITHUB_WEB_HOSTS = ("github.com", "www.github.com")
GITHUB_RAW_HOST = "raw.githubusercontent.com"
DEFAULT_REF = "main"

_WINDOWS_DRIVE = re.compile(r"^[A-Za-z]:[/\\]")
_SHORTHAND = re.compile(r"^([A-Za-z0-9][-A-Za-z0-9_.]*)/([A-Za-z0-9][-A-Za-z0-9_.]*)(?:[@#/]|$)")
_REPO_REFERENCE = re.compile(
    r"^(?P<owner>[^/@#\s]+)/(?P<repo>[^/@#\s]+)"
    r"(?:[@#](?P<ref>[^/\s]+))?"
    r"(?:/(?P<path>.*))?$"
)
_OWNER_NAME = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9-]{0,38})$")
_REPO_NAME = re.compile(r"^[A-Za-z0-9._-]{1,100}$")
_REF_NAME = re.compile(r"^[A-Za-z0-9._/-]{1,255}$")


def is_windows_path(reference: str) -> bool:
    return bool(
        _WINDOWS_DRIVE.match(reference)
        or reference.startswith("\\\\")
        or reference.startswith(".\\")
        or reference.startswith("..\\")
    )


def is_local_path(reference: str) -> bool:
    if reference in (".", "..", "~"):
        return True
    return reference.startswith(("/", "./", "../", "~/")) or is_windows_path(reference)


def classify_reference(reference: str) -> SourceType:
    """Classify a reference by syntax alone (no I/O)."""
    ref = reference.strip()

    if ref.startswith("file:"):
        return SourceType.LOCAL
    if ref.startswith("github:"):
        return SourceType.REPOSITORY
    if ref.startswith("npm:"):
        return SourceType.REGISTRY

    if ref.startswith(("http://", "https://")):
        host = (urlparse(ref).hostname or "").lower()
        if host in GITHUB_WEB_HOSTS or host == GITHUB_RAW_HOST:
            return SourceType.REPOSITORY
        return SourceType.HTTP

    if is_local_path(ref):
        return SourceType.LOCAL

    if not ref.startswith("@") and _SHORTHAND.match(ref):
        return SourceType.REPOSITORY

    return SourceType.REGISTRY


def strip_file_scheme(reference: str) -> str:
    if reference.startswith("file://"):
        return reference[len("file://"):]
    if reference.startswith("file:"):
        return reference[len("file:"):]
    return reference


def resolve_local_path(reference: str, base_path: Union[str, Path, None] = None) -> Path:
    """Turn a local reference into an absolute path.

    Relative paths resolve against `base_path`, or the working directory.
    """
    raw = os.path.expanduser(strip_file_scheme(reference.strip()))
    path = Path(raw)
    if not path.is_absolute():
        path = Path(base_path) / path if base_path else Path.cwd() / path
    return Path(os.path.normpath(str(path)))


# =============================================================================
# Repository references
# =============================================================================


@dataclass(frozen=True)
class RepositoryReference:
    """A parsed hosted-repository reference."""
    owner: str
    repo: str
    ref: Optional[str] = None
    path: str = ""

    @property
    def descriptor_path(self) -> str:
        """Repository-relative path of the descriptor file."""
        path = self.path.strip("/")
        if path.endswith((".yml", ".yaml")):
            return path
        return f"{path}/{DESCRIPTOR_FILENAMES[0]}" if path else DESCRIPTOR_FILENAMES[0]

    @property
    def raw_url(self) -> str:
        return (
            f"https://{GITHUB_RAW_HOST}/{self.owner}/{self.repo}/"
            f"{self.ref or DEFAULT_REF}/{self.descriptor_path}"
        )

    @property
    def canonical(self) -> str:
        text = f"github:{self.owner}/{self.repo}"
        if self.ref:
            text += f"@{self.ref}"
        if self.path.strip("/"):
            text += f"/{self.path.strip('/')}"
        return text


def parse_repository_reference(reference: str) -> RepositoryReference:
    """Parse shorthand, `github:` and GitHub web/raw URL references.

    Raises:
        ValueError: If the reference is malformed, names are invalid or the
            path tries to escape the repository.
    """
    ref = reference.strip()

    if ref.startswith(("http://", "https://")):
        parsed = urlparse(ref)
        host = (parsed.hostname or "").lower()
        parts = [p for p in parsed.path.split("/") if p]
        if host == GITHUB_RAW_HOST:
            if len(parts) < 3:
                raise ValueError(f"Raw content URL needs owner/repo/ref: {reference}")
            repo_ref = RepositoryReference(parts[0], parts[1], parts[2], "/".join(parts[3:]))
        elif host in GITHUB_WEB_HOSTS:
            if len(parts) < 2:
                raise ValueError(f"Repository URL needs owner/repo: {reference}")
            owner, repo = parts[0], parts[1]
            if repo.endswith(".git"):
                repo = repo[: -len(".git")]
            if len(parts) >= 4 and parts[2] in ("tree", "blob"):
                repo_ref = RepositoryReference(owner, repo, parts[3], "/".join(parts[4:]))
            else:
                repo_ref = RepositoryReference(owner, repo, None, "/".join(parts[2:]))
        else:
            raise ValueError(f"Not a repository URL: {reference}")
    else:
        if ref.startswith("github:"):
            ref = ref[len("github:"):]
        match = _REPO_REFERENCE.match(ref)
        if not match:
            raise ValueError(f"Invalid repository reference: {reference}")
        repo_ref = RepositoryReference(
            owner=match.group("owner"),
            repo=match.group("repo"),
            ref=match.group("ref"),
            path=match.group("path") or "",
        )

    _validate_repository_reference(repo_ref, reference)
    return repo_ref


def _validate_repository_reference(repo_ref: RepositoryReference, reference: str) -> None:
    if not _OWNER_NAME.match(repo_ref.owner):
        raise ValueError(f"Invalid repository owner '{repo_ref.owner}' in {reference}")
    if not _REPO_NAME.match(repo_ref.repo) or repo_ref.repo in (".", ".."):
        raise ValueError(f"Invalid repository name '{repo_ref.repo}' in {reference}")
    if repo_ref.ref is not None:
        if not _REF_NAME.match(repo_ref.ref) or ".." in repo_ref.ref:
            raise ValueError(f"Invalid ref '{repo_ref.ref}' in {reference}")
    if "\\" in repo_ref.path or any(seg == ".." for seg in repo_ref.path.split("/")):
        raise ValueError(f"Path traversal is not allowed: {reference}")


# =============================================================================
# Normalization and cache keys
# =============================================================================


def normalize_reference(
    reference: str, base_path: Union[str, Path, None] = None
) -> str:
    """Normalize a reference so equivalent spellings share one cache key.

    Local paths become absolute (Windows-style paths are kept verbatim);
    repository references become `github:owner/repo[@ref][/path]`.
    """
    ref = reference.strip()
    source_type = classify_reference(ref)

    if source_type == SourceType.LOCAL:
        if is_windows_path(strip_file_scheme(ref)):
            return strip_file_scheme(ref)
        return str(resolve_local_path(ref, base_path))

    if source_type == SourceType.REPOSITORY:
        try:
            return parse_repository_reference(ref).canonical
        except ValueError:
            return ref

    if source_type == SourceType.REGISTRY and ref.startswith("npm:"):
        return ref[len("npm:"):]

    return ref


def cache_key(normalized_reference: str) -> str:
    """SHA-256 hex digest of a normalized reference."""
    return hashlib.sha256(normalized_reference.encode("utf-8")).hexdigest()


def locate_descriptor(path: Path) -> Optional[Path]:
    """Return the descriptor file for a file or directory path, if one exists."""
    if path.is_file():
        return path
    if path.is_dir():
        for filename in DESCRIPTOR_FILENAMES:
            candidate = path / filename
            if candidate.is_file():
                return candidate
    return None

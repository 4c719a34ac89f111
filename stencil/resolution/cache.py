"""
cache.py - Content-addressed on-disk cache for resolved templates.

Layout (one directory per entry, keyed by the SHA-256 of the normalized
reference):

    <cache_dir>/
        <sha256>/
            template.yml     raw descriptor content
            metadata.json    reference, source type, version, checksum,
                             fetch time, cached_at, original base_path

Files are written atomically (temp file + os.replace). A lookup that finds an
expired entry or content whose checksum no longer matches evicts the entry and
reports a miss. When the total size exceeds max_size_bytes, the oldest entries
are removed until usage drops below 80% of the limit.

Each ResolutionCache instance guards its own directory with a lock per key plus
an instance lock for eviction; there is no module-level cache.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
import tempfile
import threading
import time
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from .references import DESCRIPTOR_FILENAMES, cache_key
from .types import (
    ResolvedTemplate,
    compute_checksum,
    resolved_metadata_from_dict,
)

logger = logging.getLogger(__name__)

CONTENT_FILENAME = DESCRIPTOR_FILENAMES[0]
METADATA_FILENAME = "metadata.json"

DEFAULT_TTL_SECONDS = 24 * 60 * 60
DEFAULT_MAX_SIZE_BYTES = 100 * 1024 * 1024
EVICTION_TARGET_RATIO = 0.8


@dataclass(frozen=True)
class CacheEntryInfo:
    """Summary of one cache entry."""
    key: str
    reference: str
    size_bytes: int
    cached_at: datetime
    expired: bool


@dataclass(frozen=True)
class CacheInfo:
    """Snapshot of the cache directory."""
    directory: str
    entry_count: int
    total_size_bytes: int
    max_size_bytes: int
    ttl_seconds: float
    entries: Tuple[CacheEntryInfo, ...] = ()


@dataclass(frozen=True)
class CacheValidationReport:
    """Result of ResolutionCache.validate()."""
    checked: int
    removed: Tuple[str, ...]

    @property
    def valid(self) -> int:
        return self.checked - len(self.removed)


def _atomic_write_text(path: Path, text: str) -> None:
    """Write text to a file atomically (temp file in the same dir + os.replace)."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(suffix=".tmp", prefix=path.name + ".", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except Exception:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def _dir_size(path: Path) -> int:
    total = 0
    for child in path.rglob("*"):
        if child.is_file():
            try:
                total += child.stat().st_size
            except OSError:
                continue
    return total


class ResolutionCache:
    """TTL and size bounded cache of ResolvedTemplate objects.

    Args:
        directory: Cache root; created on first write.
        ttl_seconds: Entry lifetime.
        max_size_bytes: Size limit that triggers oldest-first eviction.
        enabled: When False, get() always misses and set() is a no-op.
        clock: Seconds-since-epoch source (injectable for tests).
    """

    def __init__(
        self,
        directory: Union[str, Path],
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        max_size_bytes: int = DEFAULT_MAX_SIZE_BYTES,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.directory = Path(directory)
        self.ttl_seconds = ttl_seconds
        self.max_size_bytes = max_size_bytes
        self.enabled = enabled
        self._clock = clock
        self._locks: "weakref.WeakValueDictionary[str, threading.Lock]" = weakref.WeakValueDictionary()
        self._locks_lock = threading.Lock()
        self._evict_lock = threading.Lock()

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _key_lock(self, key: str) -> threading.Lock:
        # Locks live only while a caller holds a reference
        with self._locks_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock

    def entry_path(self, reference: str) -> Path:
        """Directory that holds the entry for a normalized reference."""
        return self.directory / cache_key(reference)

    def _read_metadata(self, entry_dir: Path) -> Optional[Dict[str, Any]]:
        path = entry_dir / METADATA_FILENAME
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Corrupt cache metadata at %s: %s", path, e)
            return None
        return data if isinstance(data, dict) else None

    def _is_expired(self, metadata: Dict[str, Any]) -> bool:
        cached_at = metadata.get("cached_at")
        if not isinstance(cached_at, (int, float)):
            return True
        return self._clock() - cached_at > self.ttl_seconds

    def _remove_entry_dir(self, entry_dir: Path) -> None:
        shutil.rmtree(entry_dir, ignore_errors=True)

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def get(self, reference: str) -> Optional[ResolvedTemplate]:
        """Return the cached template, or None on miss, expiry or corruption."""
        if not self.enabled:
            return None

        key = cache_key(reference)
        entry_dir = self.directory / key
        with self._key_lock(key):
            if not entry_dir.is_dir():
                logger.debug("Cache miss for %s", reference)
                return None

            metadata = self._read_metadata(entry_dir)
            if metadata is None:
                logger.warning("Evicting cache entry %s: metadata missing or corrupt", key)
                self._remove_entry_dir(entry_dir)
                return None

            if self._is_expired(metadata):
                logger.debug("Cache entry for %s expired", reference)
                self._remove_entry_dir(entry_dir)
                return None

            try:
                content = (entry_dir / CONTENT_FILENAME).read_text(encoding="utf-8")
                resolved_meta = resolved_metadata_from_dict(metadata)
            except (OSError, UnicodeDecodeError, KeyError, ValueError) as e:
                logger.warning("Evicting unreadable cache entry %s: %s", key, e)
                self._remove_entry_dir(entry_dir)
                return None

            if compute_checksum(content) != resolved_meta.checksum:
                logger.warning("Evicting cache entry %s for %s: checksum mismatch", key, reference)
                self._remove_entry_dir(entry_dir)
                return None

        base_path = metadata.get("base_path")
        if not base_path or not Path(base_path).is_dir():
            base_path = str(entry_dir)

        logger.debug("Cache hit for %s", reference)
        return ResolvedTemplate(content=content, base_path=base_path, metadata=resolved_meta)

    def set(self, reference: str, resolved: ResolvedTemplate) -> None:
        """Store a resolved template under a normalized reference."""
        if not self.enabled:
            return

        key = cache_key(reference)
        entry_dir = self.directory / key
        metadata = resolved.metadata.to_dict()
        metadata.update({
            "cache_reference": reference,
            "cached_at": self._clock(),
            "base_path": resolved.base_path,
        })

        with self._key_lock(key):
            _atomic_write_text(entry_dir / CONTENT_FILENAME, resolved.content)
            _atomic_write_text(
                entry_dir / METADATA_FILENAME, json.dumps(metadata, indent=2, ensure_ascii=False)
            )
        logger.debug("Cached %s as %s", reference, key)

        self._enforce_size_limit()

    def delete(self, reference: str) -> bool:
        """Remove one entry. Returns True if it existed."""
        key = cache_key(reference)
        entry_dir = self.directory / key
        with self._key_lock(key):
            if not entry_dir.exists():
                return False
            self._remove_entry_dir(entry_dir)
        logger.debug("Deleted cache entry for %s", reference)
        return True

    def clear(self) -> int:
        """Remove every entry. Returns the number removed."""
        removed = 0
        with self._evict_lock:
            for entry_dir in self._entry_dirs():
                with self._key_lock(entry_dir.name):
                    self._remove_entry_dir(entry_dir)
                removed += 1
        logger.info("Cleared %d cache entries from %s", removed, self.directory)
        return removed

    def get_info(self) -> CacheInfo:
        """Entry count, total size and per-entry details."""
        entries: List[CacheEntryInfo] = []
        for entry_dir in self._entry_dirs():
            metadata = self._read_metadata(entry_dir) or {}
            cached_at = metadata.get("cached_at")
            entries.append(
                CacheEntryInfo(
                    key=entry_dir.name,
                    reference=str(metadata.get("cache_reference", metadata.get("reference", ""))),
                    size_bytes=_dir_size(entry_dir),
                    cached_at=datetime.fromtimestamp(
                        cached_at if isinstance(cached_at, (int, float)) else 0, tz=timezone.utc
                    ),
                    expired=self._is_expired(metadata),
                )
            )
        return CacheInfo(
            directory=str(self.directory),
            entry_count=len(entries),
            total_size_bytes=sum(e.size_bytes for e in entries),
            max_size_bytes=self.max_size_bytes,
            ttl_seconds=self.ttl_seconds,
            entries=tuple(entries),
        )

    def validate(self) -> CacheValidationReport:
        """Check every entry and remove expired or corrupt ones."""
        checked = 0
        removed: List[str] = []
        for entry_dir in self._entry_dirs():
            checked += 1
            key = entry_dir.name
            with self._key_lock(key):
                if not self._entry_is_valid(entry_dir):
                    self._remove_entry_dir(entry_dir)
                    removed.append(key)
        if removed:
            logger.warning("Cache validation removed %d of %d entries", len(removed), checked)
        return CacheValidationReport(checked=checked, removed=tuple(removed))

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _entry_dirs(self) -> List[Path]:
        if not self.directory.is_dir():
            return []
        return sorted(p for p in self.directory.iterdir() if p.is_dir())

    def _entry_is_valid(self, entry_dir: Path) -> bool:
        metadata = self._read_metadata(entry_dir)
        if metadata is None or self._is_expired(metadata):
            return False
        try:
            content = (entry_dir / CONTENT_FILENAME).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return False
        return compute_checksum(content) == metadata.get("checksum")

    def _enforce_size_limit(self) -> None:
        with self._evict_lock:
            sized = []
            for entry_dir in self._entry_dirs():
                metadata = self._read_metadata(entry_dir) or {}
                cached_at = metadata.get("cached_at")
                sized.append((
                    cached_at if isinstance(cached_at, (int, float)) else 0.0,
                    entry_dir,
                    _dir_size(entry_dir),
                ))

            total = sum(size for _, _, size in sized)
            if total <= self.max_size_bytes:
                return

            target = self.max_size_bytes * EVICTION_TARGET_RATIO
            evicted = 0
            for _, entry_dir, size in sorted(sized, key=lambda item: item[0]):
                if total < target:
                    break
                with self._key_lock(entry_dir.name):
                    self._remove_entry_dir(entry_dir)
                total -= size
                evicted += 1

            logger.info(
                "Cache over limit: evicted %d entries, %d bytes remain (limit %d)",
                evicted, total, self.max_size_bytes,
            )

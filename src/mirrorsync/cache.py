"""Caches for branch-state results.

Conflict and modification results are keyed by the commit SHAs involved, so
a moved branch simply produces a new key; entries are never invalidated
explicitly, only expired by the store.

Disk entries are stored in ~/.mirrorsync/cache/ by default.
"""

from __future__ import annotations

import hashlib
import json
import os
import tempfile
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Tuple


DEFAULT_CACHE_DIR = Path.home() / ".mirrorsync" / "cache"
DEFAULT_TTL_MINUTES = 7 * 24 * 60


def _get_cache_dir() -> Path:
    """Get cache directory from environment or default."""
    cache_dir = os.environ.get("MIRRORSYNC_CACHE_DIR")
    if cache_dir:
        return Path(cache_dir)
    return DEFAULT_CACHE_DIR


def _key_hash(key: str) -> str:
    return hashlib.sha256(key.encode("utf-8")).hexdigest()[:32]


class CacheStore(Protocol):
    """Persistent key/value store consulted for branch-state results."""

    def get(self, key: str) -> Optional[Any]:
        ...

    def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        ...


class NullCacheStore:
    """A store that never remembers anything."""

    def get(self, key: str) -> Optional[Any]:
        return None

    def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        return None


class MemoryCacheStore:
    """In-process store with per-entry expiry. Safe to share between threads."""

    def __init__(self, clock=time.time):
        self._entries: Dict[str, Tuple[float, Any]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            expires_at, value = entry
            if expires_at <= self._clock():
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        with self._lock:
            self._entries[key] = (self._clock() + ttl_minutes * 60, value)

    def __len__(self) -> int:
        return len(self._entries)


class DiskCacheStore:
    """One JSON file per key under ``cache_dir``."""

    def __init__(self, cache_dir: Optional[Path] = None, clock=time.time):
        self.cache_dir = cache_dir or _get_cache_dir() / "branch-state"
        self.cache_dir.mkdir(parents=True, exist_ok=True, mode=0o700)
        self._clock = clock

    def _key_path(self, key: str) -> Path:
        return self.cache_dir / f"{_key_hash(key)}.json"

    def get(self, key: str) -> Optional[Any]:
        cache_path = self._key_path(key)
        if not cache_path.exists():
            return None
        try:
            data = json.loads(cache_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError):
            return None
        # Hash collisions are possible in theory; the key is stored verbatim
        if data.get("key") != key:
            return None
        if data.get("expires_at", 0) <= self._clock():
            try:
                cache_path.unlink()
            except OSError:
                pass
            return None
        return data.get("value")

    def set(self, key: str, value: Any, ttl_minutes: int) -> None:
        data = {
            "key": key,
            "value": value,
            "expires_at": self._clock() + ttl_minutes * 60,
        }
        fd, tmp_name = tempfile.mkstemp(dir=self.cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_name, self._key_path(key))
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

    def stats(self) -> dict:
        """Return cache statistics."""
        files = list(self.cache_dir.glob("*.json"))
        return {
            "count": len(files),
            "size_bytes": sum(f.stat().st_size for f in files),
            "path": str(self.cache_dir),
        }


def create_cache_store(
    backend: str = "memory", cache_dir: Optional[Path] = None
) -> CacheStore:
    """Build the store named by the ``cache.backend`` config value."""
    if backend == "disk":
        return DiskCacheStore(cache_dir)
    if backend == "none":
        return NullCacheStore()
    return MemoryCacheStore()


class BranchStateCache:
    """Conflict and modification memoization on top of a CacheStore."""

    def __init__(self, store: Optional[CacheStore] = None, ttl_minutes: int = DEFAULT_TTL_MINUTES):
        self.store: CacheStore = store if store is not None else MemoryCacheStore()
        self.ttl_minutes = ttl_minutes

    @staticmethod
    def conflict_key(base_branch: str, base_sha: str, branch: str, sha: str) -> str:
        return f"conflict:{base_branch}:{base_sha}:{branch}:{sha}"

    @staticmethod
    def modified_key(branch: str, sha: str) -> str:
        return f"modified:{branch}:{sha}"

    def get_conflict(self, base_branch: str, base_sha: str, branch: str, sha: str) -> Optional[bool]:
        value = self.store.get(self.conflict_key(base_branch, base_sha, branch, sha))
        return value if isinstance(value, bool) else None

    def set_conflict(
        self, base_branch: str, base_sha: str, branch: str, sha: str, conflicted: bool
    ) -> None:
        self.store.set(
            self.conflict_key(base_branch, base_sha, branch, sha),
            bool(conflicted),
            self.ttl_minutes,
        )

    def get_modified(self, branch: str, sha: str) -> Optional[bool]:
        value = self.store.get(self.modified_key(branch, sha))
        return value if isinstance(value, bool) else None

    def set_modified(self, branch: str, sha: str, modified: bool) -> None:
        self.store.set(self.modified_key(branch, sha), bool(modified), self.ttl_minutes)

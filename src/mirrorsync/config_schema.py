"""Configuration schema for mirrorsync.

Defines all configuration options with types, defaults, and validation.
Uses Pydantic for schema enforcement and clear error messages.
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Dict, List, Literal

from pydantic import BaseModel, Field, field_validator


class CloneConfig(BaseModel):
    """Where and how the local mirror is created."""

    local_dir: str = Field(
        default="",
        description="Local mirror directory (empty = ~/.mirrorsync/repos/<name>)",
    )
    full_clone: bool = Field(
        default=False,
        description="Perform a full clone instead of a blobless one",
    )
    clone_submodules: bool = Field(
        default=False,
        description="Initialize submodules after sync",
    )
    extra_clone_opts: Dict[str, str] = Field(
        default_factory=dict,
        description="Extra options appended to the clone command",
    )


class GitConfig(BaseModel):
    """Commit identity and hook behavior."""

    author: str = Field(
        default="",
        description="Commit author as 'Name <email>' (empty = built-in bot identity)",
    )
    ignored_authors: List[str] = Field(
        default_factory=list,
        description="Author emails whose commits do not count as human modifications",
    )
    signing_key: str = Field(
        default="",
        description="GPG key id used to sign commits (empty = unsigned)",
    )
    no_verify: List[Literal["commit", "push"]] = Field(
        default_factory=lambda: ["commit", "push"],
        description="Git operations run with --no-verify",
    )


class RetryConfig(BaseModel):
    """Backoff for transient host failures."""

    base_delay: float = Field(
        default=3.0,
        ge=0,
        description="Seconds to wait after the first failed attempt",
    )
    backoff_factor: float = Field(
        default=2.0,
        ge=1,
        description="Multiplier applied to the delay after each further failure",
    )


class CacheConfig(BaseModel):
    """Branch-state cache store."""

    backend: Literal["memory", "disk", "none"] = Field(
        default="memory",
        description="Cache store backend",
    )
    dir: str = Field(
        default="",
        description="Disk cache directory (empty = ~/.mirrorsync/cache)",
    )
    ttl_minutes: int = Field(
        default=7 * 24 * 60,
        ge=1,
        description="Lifetime of cached branch-state results",
    )

    @field_validator("dir")
    @classmethod
    def validate_cache_dir(cls, v: str) -> str:
        """Warn if the cache path exists but is not a directory."""
        if v:
            path = Path(v).expanduser()
            if path.exists() and not path.is_dir():
                warnings.warn(
                    f"Cache path exists but is not a directory: {v}",
                    UserWarning,
                )
        return v


class RefsConfig(BaseModel):
    """Side-channel refs outside refs/heads."""

    prefix: str = Field(
        default="refs/mirrorsync",
        description="Ref namespace used for side-channel refs",
    )

    @field_validator("prefix")
    @classmethod
    def validate_prefix(cls, v: str) -> str:
        v = v.rstrip("/")
        if not v.startswith("refs/") or v.startswith("refs/heads") or v.count("/") != 1:
            raise ValueError(
                "prefix must be a single namespace under refs/ other than refs/heads"
            )
        return v


class MirrorConfig(BaseModel):
    """Root configuration model."""

    version: int = Field(
        default=1,
        ge=1,
        description="Config schema version",
    )

    clone: CloneConfig = Field(default_factory=CloneConfig)
    git: GitConfig = Field(default_factory=GitConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    refs: RefsConfig = Field(default_factory=RefsConfig)

    @classmethod
    def default(cls) -> "MirrorConfig":
        """Create config with all defaults."""
        return cls()

    def resolve_local_dir(self, repository: str) -> Path:
        """Directory of the mirror for ``repository`` (e.g. ``org/repo``)."""
        if self.clone.local_dir:
            return Path(self.clone.local_dir).expanduser()
        safe = "".join(c if c.isalnum() or c in "-_." else "_" for c in repository)
        return Path.home() / ".mirrorsync" / "repos" / safe

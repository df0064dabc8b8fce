"""Exception types raised by mirrorsync operations.

Every typed error keeps the low-level git failure as ``__cause__`` so the
original diagnostic output is never lost.
"""

from __future__ import annotations

from typing import Optional


class GitSyncError(Exception):
    """Base exception for mirror synchronization operations."""
    pass


class ExternalHostError(GitSyncError):
    """Transient failure talking to the remote host; safe to retry."""

    def __init__(self, err: BaseException, host_type: str = "git"):
        super().__init__(f"External host error ({host_type}): {err}")
        self.err = err
        self.host_type = host_type


class RepositoryEmptyError(GitSyncError):
    """The remote repository has no commits."""
    pass


class RepositoryDisabledError(GitSyncError):
    """The remote repository or its owner account is disabled."""
    pass


class RepositoryChangedError(GitSyncError):
    """The remote moved under us; the caller must recompute from scratch."""
    pass


class InsufficientDiskSpaceError(GitSyncError):
    """The local filesystem ran out of space."""
    pass


class InvalidPathError(GitSyncError):
    """A path resolved outside the local mirror directory."""

    def __init__(self, path: str, local_dir: Optional[str] = None):
        super().__init__(f"Invalid path outside local directory: {path}")
        self.path = path
        self.local_dir = local_dir


class TemporaryError(GitSyncError):
    """A failure expected to go away on a later run."""
    pass


class BranchBlockedError(GitSyncError):
    """An existing ref prevents the branch from being created."""
    pass

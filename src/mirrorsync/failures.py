"""Classification of low-level git failures.

The pattern table is plain data: each entry pairs a case-insensitive
substring (or compiled regex) of git's output with the kind of failure it
indicates. The first matching entry wins, so the fatal conditions are
listed before the transient ones.
"""

from __future__ import annotations

import re
from enum import Enum
from typing import Optional, Union

from .errors import (
    ExternalHostError,
    GitSyncError,
    InsufficientDiskSpaceError,
    InvalidPathError,
    RepositoryChangedError,
    RepositoryDisabledError,
    RepositoryEmptyError,
)


class FailureKind(str, Enum):
    """Outcome of classifying a git failure."""

    TRANSIENT_HOST_FAILURE = "transient-host-failure"
    REPOSITORY_EMPTY = "repository-empty"
    REPOSITORY_DISABLED = "repository-disabled"
    REPOSITORY_CHANGED = "repository-changed"
    INSUFFICIENT_DISK_SPACE = "insufficient-disk-space"
    INVALID_PATH = "invalid-path"
    UNKNOWN = "unknown"


FAILURE_PATTERNS: list[tuple[Union[str, re.Pattern[str]], FailureKind]] = [
    # Fatal conditions
    ("no space left on device", FailureKind.INSUFFICIENT_DISK_SPACE),
    ("enospc", FailureKind.INSUFFICIENT_DISK_SPACE),
    ("please ask the owner to check their account", FailureKind.REPOSITORY_DISABLED),
    ("repository has been disabled", FailureKind.REPOSITORY_DISABLED),
    ("does not have any commits yet", FailureKind.REPOSITORY_EMPTY),
    ("refs/remotes/origin/head is not a symbolic ref", FailureKind.REPOSITORY_EMPTY),
    (re.compile(r"\[rejected\].*\(stale info\)"), FailureKind.REPOSITORY_CHANGED),
    ("fatal: bad revision", FailureKind.REPOSITORY_CHANGED),
    ("not a valid object name", FailureKind.REPOSITORY_CHANGED),
    ("fatal: ambiguous argument", FailureKind.REPOSITORY_CHANGED),
    ("preventing access to file outside", FailureKind.INVALID_PATH),
    # Transient host failures
    ("remote: invalid username or password", FailureKind.TRANSIENT_HOST_FAILURE),
    ("gnutls_handshake() failed", FailureKind.TRANSIENT_HOST_FAILURE),
    ("the requested url returned error: 5", FailureKind.TRANSIENT_HOST_FAILURE),
    ("the remote end hung up unexpectedly", FailureKind.TRANSIENT_HOST_FAILURE),
    ("access denied or repository not exported", FailureKind.TRANSIENT_HOST_FAILURE),
    ("could not write new index file", FailureKind.TRANSIENT_HOST_FAILURE),
    ("failed to connect to", FailureKind.TRANSIENT_HOST_FAILURE),
    ("connection timed out", FailureKind.TRANSIENT_HOST_FAILURE),
    ("operation timed out", FailureKind.TRANSIENT_HOST_FAILURE),
    ("malformed object name", FailureKind.TRANSIENT_HOST_FAILURE),
    ("could not resolve host", FailureKind.TRANSIENT_HOST_FAILURE),
    ("could not read from remote repository", FailureKind.TRANSIENT_HOST_FAILURE),
    ("network is unreachable", FailureKind.TRANSIENT_HOST_FAILURE),
    ("rpc failed", FailureKind.TRANSIENT_HOST_FAILURE),
    ("early eof", FailureKind.TRANSIENT_HOST_FAILURE),
    ("fatal: bad config", FailureKind.TRANSIENT_HOST_FAILURE),  # broken .gitmodules
    ("expected flush after ref listing", FailureKind.TRANSIENT_HOST_FAILURE),
]

_TYPED_KINDS: list[tuple[type, FailureKind]] = [
    (ExternalHostError, FailureKind.TRANSIENT_HOST_FAILURE),
    (RepositoryEmptyError, FailureKind.REPOSITORY_EMPTY),
    (RepositoryDisabledError, FailureKind.REPOSITORY_DISABLED),
    (RepositoryChangedError, FailureKind.REPOSITORY_CHANGED),
    (InsufficientDiskSpaceError, FailureKind.INSUFFICIENT_DISK_SPACE),
    (InvalidPathError, FailureKind.INVALID_PATH),
]


def error_text(err: BaseException) -> str:
    """Collect everything git printed for ``err`` into one string."""
    parts = [str(err)]
    for attr in ("stderr", "stdout"):
        value = getattr(err, attr, None)
        if isinstance(value, bytes):
            value = value.decode("utf-8", errors="replace")
        if value and value not in parts[0]:
            parts.append(value)
    return "\n".join(parts)


def classify_failure(err: BaseException) -> FailureKind:
    """Decide what kind of failure ``err`` represents.

    Already-typed mirrorsync errors keep their kind; anything else is matched
    against FAILURE_PATTERNS.
    """
    for error_type, kind in _TYPED_KINDS:
        if isinstance(err, error_type):
            return kind

    lowered = error_text(err).lower()
    for pattern, kind in FAILURE_PATTERNS:
        if isinstance(pattern, re.Pattern):
            if pattern.search(lowered):
                return kind
        elif pattern in lowered:
            return kind
    return FailureKind.UNKNOWN


def to_typed_error(err: BaseException, kind: FailureKind) -> Optional[GitSyncError]:
    """Build the mirrorsync exception matching ``kind`` (None for UNKNOWN)."""
    if isinstance(err, GitSyncError) and classify_failure(err) is kind:
        return err
    message = error_text(err)
    if kind is FailureKind.TRANSIENT_HOST_FAILURE:
        return ExternalHostError(err, "git")
    if kind is FailureKind.REPOSITORY_EMPTY:
        return RepositoryEmptyError(message)
    if kind is FailureKind.REPOSITORY_DISABLED:
        return RepositoryDisabledError(message)
    if kind is FailureKind.REPOSITORY_CHANGED:
        return RepositoryChangedError(message)
    if kind is FailureKind.INSUFFICIENT_DISK_SPACE:
        return InsufficientDiskSpaceError(message)
    if kind is FailureKind.INVALID_PATH:
        return InvalidPathError(message)
    return None


def typed_failure(err: BaseException) -> Optional[GitSyncError]:
    """The mirrorsync error ``err`` classifies as, or None when unrecognized."""
    return to_typed_error(err, classify_failure(err))


def check_for_platform_failure(err: BaseException) -> Optional[ExternalHostError]:
    """Return an ExternalHostError when ``err`` is a transient host failure.

    Mirrors the common call-site idiom: "if this is a host failure, raise the
    wrapped error, otherwise handle ``err`` locally".
    """
    if classify_failure(err) is not FailureKind.TRANSIENT_HOST_FAILURE:
        return None
    if isinstance(err, ExternalHostError):
        return err
    return ExternalHostError(err, "git")

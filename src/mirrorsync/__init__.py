"""Mirrorsync: local git mirror synchronization and branch lifecycle."""

from importlib.metadata import version, PackageNotFoundError

try:
    __version__ = version("mirrorsync")
except PackageNotFoundError:
    __version__ = "0.0.0-dev"  # Fallback for editable installs without metadata

from .config_loader import ConfigError, get_config, load_config  # noqa: F401
from .config_schema import MirrorConfig  # noqa: F401
from .errors import (  # noqa: F401
    BranchBlockedError,
    ExternalHostError,
    GitSyncError,
    InsufficientDiskSpaceError,
    InvalidPathError,
    RepositoryChangedError,
    RepositoryDisabledError,
    RepositoryEmptyError,
    TemporaryError,
)
from .mirror import GitMirror  # noqa: F401
from .models import (  # noqa: F401
    CommitRequest,
    CommitResult,
    ConflictResult,
    ConflictStatus,
    FileAddition,
    FileDeletion,
)

__all__ = [
    "GitMirror",
    "MirrorConfig",
    "ConfigError",
    "get_config",
    "load_config",
    "CommitRequest",
    "CommitResult",
    "ConflictResult",
    "ConflictStatus",
    "FileAddition",
    "FileDeletion",
    "GitSyncError",
    "ExternalHostError",
    "RepositoryEmptyError",
    "RepositoryDisabledError",
    "RepositoryChangedError",
    "InsufficientDiskSpaceError",
    "InvalidPathError",
    "TemporaryError",
    "BranchBlockedError",
    "__version__",
]

"""Data types exchanged with mirrorsync callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Literal, Optional, Union


@dataclass
class FileAddition:
    """Add or modify ``path`` with ``contents``.

    ``contents=None`` means "leave this path alone". For symlinks the
    contents are the link target.
    """

    path: str
    contents: Optional[Union[str, bytes]]
    is_symlink: bool = False
    is_executable: bool = False
    type: Literal["addition"] = "addition"


@dataclass
class FileDeletion:
    path: str
    type: Literal["deletion"] = "deletion"


FileChange = Union[FileAddition, FileDeletion]


@dataclass
class CommitRequest:
    """One commit to be written to ``branch_name``. A rename is a deletion plus an addition."""

    branch_name: str
    files: List[FileChange]
    message: str
    force: bool = False


@dataclass
class CommitResult:
    parent_commit_sha: str
    commit_sha: str
    files: List[FileChange]


@dataclass
class TreeItem:
    path: str
    mode: str
    type: str  # blob, tree or commit
    sha: str


@dataclass
class StatusResult:
    """Working-tree status parsed from ``git status --porcelain``."""

    current: Optional[str] = None
    modified: List[str] = field(default_factory=list)
    created: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    renamed: List[str] = field(default_factory=list)
    not_added: List[str] = field(default_factory=list)
    conflicted: List[str] = field(default_factory=list)

    def is_clean(self) -> bool:
        return not (
            self.modified
            or self.created
            or self.deleted
            or self.renamed
            or self.not_added
            or self.conflicted
        )


@dataclass
class Outcome:
    """Result of a best-effort step; callers log failures and move on."""

    ok: bool
    error: Optional[str] = None

    @classmethod
    def success(cls) -> "Outcome":
        return cls(ok=True)

    @classmethod
    def failure(cls, error: BaseException | str) -> "Outcome":
        return cls(ok=False, error=str(error))


class ConflictStatus(str, Enum):
    CLEAN = "clean"
    CONFLICTED = "conflicted"
    ERROR = "error"


@dataclass(frozen=True)
class ConflictResult:
    status: ConflictStatus
    reason: Optional[str] = None

    @property
    def is_conflicted(self) -> bool:
        # A check that could not complete is treated as a conflict
        return self.status is not ConflictStatus.CLEAN


@dataclass(frozen=True)
class GitAuthor:
    name: Optional[str]
    address: str

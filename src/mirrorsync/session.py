"""Per-repository session state."""

from __future__ import annotations

from dataclasses import dataclass, field
from email.utils import parseaddr
from typing import Dict, List, Optional

from .config_loader import ConfigError
from .models import GitAuthor

DEFAULT_GIT_AUTHOR = "Mirrorsync Bot <bot@mirrorsync.dev>"


def parse_git_author(value: str) -> Optional[GitAuthor]:
    """Parse ``Name <email>`` or a bare email address.

    Returns None when no usable address can be found.
    """
    value = (value or "").strip()
    if not value:
        return None
    name, address = parseaddr(value)
    if not address or "@" not in address or " " in address:
        return None
    local, _, domain = address.rpartition("@")
    if not local or not domain:
        return None
    return GitAuthor(name=name.strip() or None, address=address)


@dataclass
class RepositorySession:
    """Mutable state for one tracked repository.

    ``branch_commits`` is the branch registry: a branch exists if and only
    if it has a key here. The current-branch pointers always describe what
    is actually checked out in the mirror.
    """

    url: str
    current_branch: Optional[str] = None
    current_branch_sha: Optional[str] = None
    branch_commits: Dict[str, str] = field(default_factory=dict)
    branch_is_modified: Dict[str, bool] = field(default_factory=dict)
    ignored_authors: List[str] = field(default_factory=list)
    git_author_name: Optional[str] = None
    git_author_email: Optional[str] = None
    signing_key: Optional[str] = None
    initialized: bool = False
    write_git_done: bool = False
    signing_configured: bool = False
    remote_refs_exist: bool = False

    def reset(self, url: Optional[str] = None, current_branch: Optional[str] = None) -> None:
        """Forget everything learned about the previous repository."""
        if url is not None:
            self.url = url
        self.current_branch = current_branch
        self.current_branch_sha = None
        self.branch_commits = {}
        self.branch_is_modified = {}
        self.ignored_authors = []
        self.initialized = False
        self.write_git_done = False
        self.signing_configured = False
        self.remote_refs_exist = False

    def set_git_author(self, git_author: Optional[str]) -> None:
        """Record the bot identity used for commits.

        Raises:
            ConfigError: If ``git_author`` is not a valid RFC 5322 address
        """
        parsed = parse_git_author(git_author or DEFAULT_GIT_AUTHOR)
        if parsed is None:
            raise ConfigError(
                f"gitAuthor is not parsed as valid RFC5322 format: {git_author}"
            )
        self.git_author_name = parsed.name
        self.git_author_email = parsed.address

    def set_user_repo_config(
        self,
        ignored_authors: Optional[List[str]] = None,
        git_author: Optional[str] = None,
    ) -> None:
        self.ignored_authors = list(ignored_authors or [])
        self.set_git_author(git_author)

    def is_bot_author(self, email: Optional[str]) -> bool:
        if not email:
            return False
        # Email addresses are matched case-insensitively
        bot_emails = {e.lower() for e in (self.git_author_email, *self.ignored_authors) if e}
        return email.lower() in bot_emails

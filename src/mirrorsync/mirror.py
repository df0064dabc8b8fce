"""GitMirror: one tracked repository and everything that operates on it."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlsplit

from .branches import BranchOperations
from .cache import BranchStateCache, CacheStore, create_cache_store
from .commit import CommitPipeline
from .config_loader import get_config
from .config_schema import MirrorConfig
from .limits import UsageCounter
from .models import CommitRequest, CommitResult, ConflictResult, StatusResult, TreeItem
from .queries import RepositoryQueries
from .refs import SideChannelRefs
from .retry import RetryExecutor
from .session import RepositorySession
from .sync import Synchronizer


def repository_name(url: str) -> str:
    """``org/repo`` style name for a clone URL or local path."""
    if "://" in url:
        path = urlsplit(url).path
    elif ":" in url and url.startswith("git@"):
        path = url.split(":", 1)[1]
    else:
        path = url
    path = path.rstrip("/")
    if path.endswith(".git"):
        path = path[: -len(".git")]
    parts = [p for p in path.split("/") if p]
    return "/".join(parts[-2:]) or "repository"


class GitMirror:
    """Facade over the session, synchronizer and branch/commit/ref operations.

    Example:
        >>> mirror = GitMirror.from_config("https://example.com/org/repo.git", config)
        >>> mirror.init_repo()
        >>> mirror.commit_files(CommitRequest("update/x", files, "Update x"))
    """

    def __init__(
        self,
        url: str,
        config: Optional[MirrorConfig] = None,
        *,
        local_dir: Optional[Path] = None,
        cache_store: Optional[CacheStore] = None,
        retry: Optional[RetryExecutor] = None,
        counter: Optional[UsageCounter] = None,
    ):
        self.config = config or MirrorConfig.default()
        self.session = RepositorySession(url=url)
        self.session.signing_key = self.config.git.signing_key or None
        if local_dir is None:
            local_dir = self.config.resolve_local_dir(repository_name(url))
        self.synchronizer = Synchronizer(
            self.session, self.config, Path(local_dir), retry=retry, counter=counter
        )
        self.cache = BranchStateCache(cache_store, self.config.cache.ttl_minutes)
        self.branches = BranchOperations(self.synchronizer, self.cache)
        self.commits = CommitPipeline(self.synchronizer, self.branches, self.cache)
        self.refs = SideChannelRefs(self.synchronizer, self.config.refs.prefix)
        self.queries = RepositoryQueries(self.synchronizer)

    @classmethod
    def from_config(cls, url: str, config: MirrorConfig, **kwargs) -> "GitMirror":
        """Build a mirror whose cache store follows ``config.cache``."""
        cache_dir = Path(config.cache.dir).expanduser() if config.cache.dir else None
        kwargs.setdefault("cache_store", create_cache_store(config.cache.backend, cache_dir))
        return cls(url, config, **kwargs)

    @classmethod
    def for_repository(cls, url: str, project_path: Optional[Path] = None, **kwargs) -> "GitMirror":
        """Build a mirror from the loaded configuration, including the
        ``[repositories."org/repo"]`` overrides that match ``url``."""
        config = get_config(project_path, repository=repository_name(url))
        return cls.from_config(url, config, **kwargs)

    @property
    def local_dir(self) -> Path:
        return self.synchronizer.local_dir

    @property
    def counter(self) -> UsageCounter:
        return self.synchronizer.counter

    # Session

    def init_repo(self, *, current_branch: Optional[str] = None) -> None:
        self.synchronizer.init_repo(current_branch=current_branch)
        self.set_user_repo_config(self.config.git.ignored_authors, self.config.git.author or None)

    def set_user_repo_config(
        self, ignored_authors: Optional[List[str]] = None, git_author: Optional[str] = None
    ) -> None:
        self.session.set_user_repo_config(ignored_authors, git_author)

    def sync(self) -> None:
        self.synchronizer.sync()

    def reset_to_commit(self, commit_sha: str) -> None:
        self.synchronizer.sync()
        self.synchronizer.reset_to_commit(commit_sha)

    def get_submodules(self) -> List[str]:
        self.synchronizer.sync()
        return self.synchronizer.get_submodules()

    # Branches

    def branch_exists(self, branch_name: str) -> bool:
        return self.branches.branch_exists(branch_name)

    def get_branch_list(self) -> List[str]:
        return self.branches.get_branch_list()

    def get_branch_commit(self, branch_name: str) -> Optional[str]:
        return self.branches.get_branch_commit(branch_name)

    def get_branch_parent_sha(self, branch_name: str) -> Optional[str]:
        return self.branches.get_branch_parent_sha(branch_name)

    def get_branch_last_commit_time(self, branch_name: str) -> datetime:
        return self.branches.get_branch_last_commit_time(branch_name)

    def get_branch_files(self, branch_name: str) -> Optional[List[str]]:
        return self.branches.get_branch_files(branch_name)

    def get_file(self, file_path: str, branch_name: Optional[str] = None) -> Optional[str]:
        return self.branches.get_file(file_path, branch_name)

    def has_diff(self, ref: str) -> bool:
        return self.branches.has_diff(ref)

    def checkout_branch(self, branch_name: str) -> str:
        return self.branches.checkout_branch(branch_name)

    def is_branch_stale(self, branch_name: str) -> bool:
        return self.branches.is_branch_stale(branch_name)

    def is_branch_modified(self, branch_name: str) -> bool:
        return self.branches.is_branch_modified(branch_name)

    def check_branch_conflict(self, base_branch: str, branch_name: str) -> ConflictResult:
        return self.branches.check_branch_conflict(base_branch, branch_name)

    def is_branch_conflicted(self, base_branch: str, branch_name: str) -> bool:
        return self.branches.is_branch_conflicted(base_branch, branch_name)

    def delete_branch(self, branch_name: str) -> None:
        self.branches.delete_branch(branch_name)

    def merge_branch(self, branch_name: str) -> None:
        self.branches.merge_branch(branch_name)

    # Commits

    def prepare_commit(self, request: CommitRequest) -> Optional[CommitResult]:
        return self.commits.prepare_commit(request)

    def push_commit(self, request: CommitRequest) -> None:
        self.commits.push_commit(request)

    def commit_files(self, request: CommitRequest) -> Optional[str]:
        return self.commits.commit_files(request)

    def fetch_commit(self, request: CommitRequest) -> Optional[str]:
        return self.commits.fetch_commit(request)

    # Side-channel refs

    def push_commit_to_ref(self, commit_sha: str, ref_name: str, section: str = "branches") -> None:
        self.refs.push_commit_to_ref(commit_sha, ref_name, section)

    def clear_refs(self) -> None:
        self.refs.clear_refs()

    # Queries

    def get_repo_status(self, path: Optional[str] = None) -> StatusResult:
        return self.queries.get_repo_status(path)

    def get_file_list(self) -> List[str]:
        return self.queries.get_file_list()

    def get_commit_messages(self) -> List[str]:
        return self.queries.get_commit_messages()

    def list_commit_tree(self, commit_sha: str) -> List[TreeItem]:
        return self.queries.list_commit_tree(commit_sha)

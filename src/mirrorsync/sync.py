"""Local mirror lifecycle: clone or incremental fetch, default branch, submodules.

A Synchronizer owns the git command handle for one mirror directory and the
RepositorySession describing it. Every other component reaches git through
it, so remote calls uniformly go through the retry executor and ``sync()``
is the single place where the mirror is brought up to date.
"""

from __future__ import annotations

import os
import shutil
from pathlib import Path
from typing import Callable, List, Optional, TypeVar

import git
from git import Repo
from git.exc import GitCommandError, InvalidGitRepositoryError, NoSuchPathError

from .config_schema import MirrorConfig
from .errors import (
    ExternalHostError,
    GitSyncError,
    InvalidPathError,
    RepositoryEmptyError,
    TemporaryError,
)
from .failures import (
    FailureKind,
    check_for_platform_failure,
    classify_failure,
    error_text,
    to_typed_error,
    typed_failure,
)
from .limits import UsageCounter
from .models import Outcome
from .observability import git_op, log_debug, log_error, log_info, log_warning, timeit
from .retry import RetryExecutor
from .session import RepositorySession

T = TypeVar("T")

GIT_MINIMUM_VERSION = (2, 33, 0)  # git show-current


def validate_git_version() -> bool:
    """Return True when the installed git is new enough."""
    try:
        version = git.Git().version_info
    except (GitCommandError, OSError) as err:
        log_error("Error fetching git version", error=str(err))
        return False
    if tuple(version[:3]) < GIT_MINIMUM_VERSION:
        log_error(
            "Git version needs upgrading",
            detected_version=".".join(str(v) for v in version),
            minimum_version=".".join(str(v) for v in GIT_MINIMUM_VERSION),
        )
        return False
    log_debug(f"Found valid git version: {'.'.join(str(v) for v in version)}")
    return True


def local_name(branch_name: str) -> str:
    """Strip the ``origin/`` prefix from a remote-tracking branch name."""
    return branch_name[len("origin/"):] if branch_name.startswith("origin/") else branch_name


def path_inside(local_dir: Path, path: str) -> Path:
    """Join ``path`` onto ``local_dir``, refusing anything that escapes it.

    Raises:
        InvalidPathError: ``path`` points outside ``local_dir``
    """
    root = os.path.normpath(os.path.abspath(local_dir))
    target = os.path.normpath(os.path.join(root, path))
    if target != root and not target.startswith(root + os.sep):
        log_warning("Preventing access to file outside the local directory", path=path)
        raise InvalidPathError(path, root)
    return Path(target)


def _empty_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)
    for child in path.iterdir():
        if child.is_dir() and not child.is_symlink():
            shutil.rmtree(child)
        else:
            child.unlink()


class Synchronizer:
    """Keeps a local mirror of ``session.url`` in step with the remote.

    Attributes:
        session: State of the tracked repository (owned by the caller)
        config: Clone, identity and retry settings
        local_dir: Directory holding the mirror's working copy
        retry: Retry executor wrapping every remote call
        counter: Usage counter bumped on successful pushes

    Thread Safety:
        Not thread-safe. Operations against one mirror must be serialized by
        the caller; distinct mirrors can run in parallel.
    """

    def __init__(
        self,
        session: RepositorySession,
        config: MirrorConfig,
        local_dir: Path,
        *,
        retry: Optional[RetryExecutor] = None,
        counter: Optional[UsageCounter] = None,
    ):
        self.session = session
        self.config = config
        self.local_dir = Path(local_dir)
        self.retry = retry or RetryExecutor(
            base_delay=config.retry.base_delay,
            backoff_factor=config.retry.backoff_factor,
        )
        self.counter = counter or UsageCounter()
        self._git: Optional[git.Git] = None

        # Disable interactive prompts so git fails fast instead of hanging
        # when credentials are required. Messages are forced to English since
        # failures are classified by their text.
        self._env = {
            "GIT_TERMINAL_PROMPT": "0",
            "GCM_INTERACTIVE": "never",
            "GIT_HTTP_LOW_SPEED_LIMIT": "1",
            "GIT_HTTP_LOW_SPEED_TIME": "30",
            "LC_ALL": "C",
            "LANGUAGE": "C",
        }
        url = session.url or ""
        if (url.startswith("git@") or url.startswith("ssh://")) and "GIT_SSH_COMMAND" not in os.environ:
            self._env["GIT_SSH_COMMAND"] = "ssh -o BatchMode=yes"

    # ------------------------------------------------------------------
    # GitPython helpers
    # ------------------------------------------------------------------

    @property
    def git(self) -> git.Git:
        """Git command handle running inside the mirror directory."""
        if self._git is None:
            self.local_dir.mkdir(parents=True, exist_ok=True)
            cmd = git.Git(str(self.local_dir))
            cmd.update_environment(**self._env)
            self._git = cmd
        return self._git

    @property
    def repo(self) -> Repo:
        """Get GitPython Repo object for the mirror."""
        try:
            return Repo(self.local_dir)
        except (InvalidGitRepositoryError, NoSuchPathError):
            raise GitSyncError(f"Not a git repository: {self.local_dir}")

    def remote(self, description: str, operation: Callable[[], T]) -> T:
        """Run a remote-touching git call through the retry executor."""
        with git_op(description):
            return self.retry(operation)

    # ------------------------------------------------------------------
    # Session setup
    # ------------------------------------------------------------------

    def init_repo(
        self,
        url: Optional[str] = None,
        *,
        current_branch: Optional[str] = None,
    ) -> None:
        """Start a fresh session for ``url`` and load the branch registry."""
        self.session.reset(url or self.session.url, current_branch)
        self.fetch_branch_commits()

    def fetch_branch_commits(self) -> None:
        """Replace the branch registry with the remote's current heads."""
        url = self.session.url
        try:
            output = self.remote("ls-remote --heads", lambda: self.git.ls_remote("--heads", url))
        except GitCommandError as err:
            log_debug("git error", error=str(err))
            typed = typed_failure(err)
            if typed is not None:
                raise typed from err
            raise

        branch_commits = {}
        for line in output.splitlines():
            parts = line.strip().split()
            if len(parts) != 2:
                continue
            sha, ref = parts
            branch_commits[ref.replace("refs/heads/", "", 1)] = sha
        self.session.branch_commits = branch_commits

    def write_git_author(self) -> None:
        """Write the bot identity into the mirror's git config (once per session)."""
        if self.session.write_git_done:
            return
        name = self.session.git_author_name
        email = self.session.git_author_email
        try:
            with self.repo.config_writer() as config:
                if name:
                    log_debug("Setting git author name", git_author_name=name)
                    config.set_value("user", "name", name)
                if email:
                    log_debug("Setting git author email", git_author_email=email)
                    config.set_value("user", "email", email)
        except (GitCommandError, OSError, GitSyncError) as err:
            log_debug(
                "Error setting git author config",
                error=str(err),
                git_author_name=name,
                git_author_email=email,
            )
            raise TemporaryError(f"Failed to write git author: {err}") from err
        self.session.write_git_done = True

    def configure_signing_key(self) -> None:
        if self.session.signing_configured or not self.session.signing_key:
            return
        with self.repo.config_writer() as config:
            config.set_value("user", "signingkey", self.session.signing_key)
            config.set_value("commit", "gpgsign", "true")
        self.session.signing_configured = True

    def handle_commit_auth(self) -> None:
        """Prepare identity and signing before the first commit of a session."""
        self.configure_signing_key()
        self.write_git_author()

    # ------------------------------------------------------------------
    # Local branch housekeeping
    # ------------------------------------------------------------------

    def get_default_branch(self) -> str:
        try:
            res = self.git.rev_parse("--abbrev-ref", "origin/HEAD")
        except GitCommandError as err:
            kind = classify_failure(err)
            if kind in (FailureKind.TRANSIENT_HOST_FAILURE, FailureKind.REPOSITORY_EMPTY):
                raise to_typed_error(err, kind) from err
            if "ambiguous argument 'origin/head'" not in error_text(err).lower():
                raise
            log_debug("Could not determine default branch using git rev-parse")
            res = ""

        if not res or res == "origin/HEAD":
            res = self._default_branch_from_remote_show()
        return local_name(res.strip())

    def _default_branch_from_remote_show(self) -> str:
        head_prefix = "HEAD branch: "
        try:
            output = self.remote("remote show origin", lambda: self.git.remote("show", "origin"))
        except GitCommandError as err:
            log_warning("Error getting default branch", error=str(err))
            raise TemporaryError(f"Could not determine default branch: {err}") from err
        for line in output.splitlines():
            line = line.strip()
            if line.startswith(head_prefix):
                branch = line[len(head_prefix):].strip()
                if branch == "(unknown)":
                    raise RepositoryEmptyError(f"Remote {self.session.url} has no HEAD branch")
                return branch
        raise TemporaryError("Could not determine default branch from remote")

    def reset_to_branch(self, branch_name: str) -> None:
        """Check out ``branch_name`` at its remote tip with a clean working tree."""
        log_debug(f"reset_to_branch({branch_name})")
        self.git.reset("--hard")
        self.remote(f"checkout {branch_name}", lambda: self.git.checkout(branch_name))
        self.git.reset("--hard", f"origin/{branch_name}")
        self.git.clean("-fd")

    def reset_to_commit(self, commit: str) -> None:
        log_debug(f"reset_to_commit({commit})")
        self.git.reset("--hard", commit)

    def delete_local_branch(self, branch_name: str) -> Outcome:
        try:
            self.git.branch("-D", branch_name)
        except GitCommandError as err:
            host_error = check_for_platform_failure(err)
            if host_error:
                raise host_error from err
            return Outcome.failure(err)
        return Outcome.success()

    def clean_local_branches(self) -> None:
        """Delete every local branch except the checked-out one."""
        current = self.active_branch()
        output = self.git.for_each_ref("--format=%(refname:short)", "refs/heads")
        existing = [b.strip() for b in output.splitlines() if b.strip() and b.strip() != current]
        log_debug("Cleaning local branches", existing_branches=existing)
        for branch_name in existing:
            outcome = self.delete_local_branch(branch_name)
            if not outcome.ok:
                log_debug(f"Could not delete local branch {branch_name}", error=outcome.error)

    def active_branch(self) -> Optional[str]:
        try:
            return self.git.symbolic_ref("--short", "HEAD")
        except GitCommandError:
            return None

    def head_sha(self) -> str:
        try:
            return self.git.rev_parse("HEAD")
        except GitCommandError as err:
            text = error_text(err).lower()
            if (
                classify_failure(err) is FailureKind.REPOSITORY_EMPTY
                or "ambiguous argument 'head'" in text
                or "unknown revision" in text
            ):
                raise RepositoryEmptyError(f"Repository {self.session.url} has no commits") from err
            raise

    # ------------------------------------------------------------------
    # Submodules
    # ------------------------------------------------------------------

    def get_submodules(self) -> List[str]:
        if not (self.local_dir / ".gitmodules").is_file():
            return []
        try:
            raw = self.git.config("--file", ".gitmodules", "--get-regexp", r"\.path")
        except GitCommandError as err:
            log_warning("Error getting submodules", error=str(err))
            return []
        # Lines look like "submodule.<name>.path <path>"
        return raw.strip().split()[1::2]

    def init_submodule(self, path: str) -> Outcome:
        log_debug(f"Cloning git submodule at {path}")
        try:
            self.remote(
                f"submodule update --init {path}",
                lambda: self.git.submodule("update", "--init", "--", path),
            )
        except (GitCommandError, GitSyncError) as err:
            return Outcome.failure(err)
        return Outcome.success()

    # ------------------------------------------------------------------
    # Synchronization
    # ------------------------------------------------------------------

    def sync(self) -> None:
        """Bring the mirror in line with the remote, at most once per session.

        An existing mirror is updated incrementally; if that fails for any
        reason other than an empty repository, the directory is wiped and
        cloned again.

        Raises:
            RepositoryEmptyError: The remote has no commits
            InsufficientDiskSpaceError: Clone ran out of disk space
            ExternalHostError: Clone failed for any other reason
        """
        if self.session.initialized:
            return

        log_debug(f"Initializing git repository into {self.local_dir}")
        clone = True

        if (self.local_dir / ".git" / "HEAD").exists():
            try:
                with timeit("git.fetch", url=self.session.url):
                    self._update_existing_mirror()
                clone = False
            except RepositoryEmptyError:
                raise
            except (GitCommandError, GitSyncError, OSError) as err:
                log_info("git fetch error, falling back to clone", error=str(err))

        if clone:
            self._clone()

        self.session.current_branch_sha = self.head_sha()
        pinned = self.session.current_branch
        if pinned and pinned != self.active_branch():
            self.reset_to_branch(pinned)
            self.session.current_branch_sha = self.head_sha()

        if self.config.clone.clone_submodules:
            for submodule in self.get_submodules():
                outcome = self.init_submodule(submodule)
                if not outcome.ok:
                    log_warning(
                        f"Unable to initialise git submodule at {submodule}",
                        error=outcome.error,
                    )

        if not self.session.current_branch:
            self.session.current_branch = self.get_default_branch()
        self.session.initialized = True

    def _update_existing_mirror(self) -> None:
        self.git.remote("set-url", "origin", self.session.url)
        self.reset_to_branch(self.get_default_branch())
        self.remote("pull", lambda: self.git.pull())
        self.remote("fetch", lambda: self.git.fetch())
        if not self.session.current_branch:
            self.session.current_branch = self.get_default_branch()
        self.reset_to_branch(self.session.current_branch)
        self.clean_local_branches()
        self.remote("remote prune origin", lambda: self.git.remote("prune", "origin"))

    def _clone(self) -> None:
        opts: List[str] = []
        if self.config.clone.full_clone:
            log_debug("Performing full clone")
        else:
            log_debug("Performing blobless clone")
            opts.append("--filter=blob:none")
        for key, value in self.config.clone.extra_clone_opts.items():
            opts.extend([key, str(value)])

        def empty_dir_and_clone() -> None:
            _empty_dir(self.local_dir)
            self.git.clone(self.session.url, ".", *opts)

        try:
            with timeit("git.clone", url=self.session.url, full_clone=self.config.clone.full_clone):
                self.remote(f"clone {self.session.url}", empty_dir_and_clone)
        except GitSyncError:
            raise
        except (GitCommandError, OSError) as err:
            log_debug("git clone error", error=str(err))
            raise (typed_failure(err) or ExternalHostError(err, "git")) from err

"""Branch lifecycle queries and operations.

Branch existence is answered from the session's branch registry alone, which
is loaded from the remote by ``Synchronizer.fetch_branch_commits`` and then
kept current by the commit pipeline and ``delete_branch``. Anything that has
to look at commits first brings the mirror up to date with ``sync()``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from git.exc import GitCommandError

from .cache import BranchStateCache
from .errors import GitSyncError, RepositoryChangedError, TemporaryError
from .failures import check_for_platform_failure, error_text
from .limits import Limit
from .models import ConflictResult, ConflictStatus
from .observability import log_debug, log_info, log_warning
from .session import RepositorySession
from .sync import Synchronizer, local_name


class BranchOperations:
    """Queries and mutations of the tracked repository's branches."""

    def __init__(self, synchronizer: Synchronizer, cache: BranchStateCache):
        self.sync = synchronizer
        self.cache = cache

    @property
    def session(self) -> RepositorySession:
        return self.sync.session

    # ------------------------------------------------------------------
    # Registry lookups (no git calls)
    # ------------------------------------------------------------------

    def branch_exists(self, branch_name: str) -> bool:
        return branch_name in self.session.branch_commits

    def get_branch_list(self) -> List[str]:
        return list(self.session.branch_commits)

    def get_branch_commit(self, branch_name: str) -> Optional[str]:
        return self.session.branch_commits.get(branch_name)

    # ------------------------------------------------------------------
    # Commit inspection
    # ------------------------------------------------------------------

    def get_branch_parent_sha(self, branch_name: str) -> Optional[str]:
        sha = self.get_branch_commit(branch_name)
        if not sha:
            return None
        self.sync.sync()
        try:
            return self.sync.git.rev_parse(f"{sha}^")
        except GitCommandError as err:
            log_debug(f"Could not resolve parent of {branch_name}", error=str(err))
            return None

    def get_branch_last_commit_time(self, branch_name: str) -> datetime:
        """Author date of the branch tip; falls back to now when unknown."""
        self.sync.sync()
        try:
            raw = self.sync.git.show("-s", "--format=%aI", f"origin/{branch_name}")
            return datetime.fromisoformat(raw.strip())
        except (GitCommandError, ValueError) as err:
            host_error = check_for_platform_failure(err)
            if host_error:
                raise host_error from err
            return datetime.now(timezone.utc)

    def get_branch_files(self, branch_name: str) -> Optional[List[str]]:
        """Files changed by the branch's last commit, or None if undeterminable."""
        self.sync.sync()
        try:
            output = self.sync.remote(
                f"diff origin/{branch_name}^",
                lambda: self.sync.git.diff(
                    "--name-only",
                    "--no-renames",
                    f"origin/{branch_name}^",
                    f"origin/{branch_name}",
                ),
            )
        except (GitCommandError, GitSyncError) as err:
            log_warning("get_branch_files error", branch_name=branch_name, error=str(err))
            host_error = check_for_platform_failure(err)
            if host_error:
                raise host_error from err
            return None
        return [line for line in output.splitlines() if line]

    def get_file(self, file_path: str, branch_name: Optional[str] = None) -> Optional[str]:
        """Contents of ``file_path`` at the remote tip of a branch (default: current)."""
        self.sync.sync()
        ref = f"origin/{branch_name or self.session.current_branch}:{file_path}"
        try:
            return self.sync.remote(
                f"show {ref}",
                lambda: self.sync.git.show(ref, strip_newline_in_stdout=False),
            )
        except (GitCommandError, GitSyncError) as err:
            host_error = check_for_platform_failure(err)
            if host_error:
                raise host_error from err
            return None

    def has_diff(self, ref: str) -> bool:
        """True when HEAD differs from ``ref``. Any failure counts as a difference."""
        try:
            output = self.sync.remote(
                f"diff HEAD {ref}",
                lambda: self.sync.git.diff("--name-only", "HEAD", ref),
            )
        except (GitCommandError, GitSyncError):
            return True
        return output != ""

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def checkout_branch(self, branch_name: str) -> str:
        """Check out the remote tip of ``branch_name`` and make it current.

        Returns:
            The SHA now checked out

        Raises:
            TemporaryError: git could not resolve the branch
        """
        log_debug(f"Setting current branch to {branch_name}")
        self.sync.sync()
        git = self.sync.git
        try:
            sha = git.rev_parse(f"origin/{branch_name}")
            self.sync.remote(
                f"checkout {branch_name}",
                lambda: git.checkout("-f", "-B", branch_name, f"origin/{branch_name}", "--"),
            )
            git.reset("--hard")
        except (GitCommandError, GitSyncError) as err:
            host_error = check_for_platform_failure(err)
            if host_error:
                raise host_error from err
            if "fatal: ambiguous argument" in error_text(err).lower():
                log_warning("Failed to checkout branch", branch_name=branch_name, error=str(err))
                raise TemporaryError(f"Failed to checkout branch {branch_name}") from err
            raise

        self.session.current_branch = branch_name
        self.session.current_branch_sha = sha
        log_debug(
            f"latest commit on {branch_name}",
            sha=sha,
            date=git.log("-1", "--format=%aI"),
        )
        return sha

    # ------------------------------------------------------------------
    # Branch state
    # ------------------------------------------------------------------

    def is_branch_stale(self, branch_name: str) -> bool:
        """True when the branch does not contain the current branch's tip."""
        self.sync.sync()
        sha = self.session.current_branch_sha
        try:
            output = self.sync.git.branch(
                "--remotes", "--contains", sha, "--format=%(refname:short)"
            )
        except GitCommandError as err:
            host_error = check_for_platform_failure(err)
            if host_error:
                raise host_error from err
            raise
        containing = [local_name(line.strip()) for line in output.splitlines() if line.strip()]
        is_stale = branch_name not in containing
        log_debug(
            "is_branch_stale result",
            branch_name=branch_name,
            current_branch=self.session.current_branch,
            current_branch_sha=sha,
            is_stale=is_stale,
        )
        return is_stale

    def is_branch_modified(self, branch_name: str) -> bool:
        """True when the branch tip was authored by someone other than the bot.

        Checked in order: registry, in-memory answer, persistent cache, and
        finally the tip's author address.

        Raises:
            RepositoryChangedError: The branch tip vanished from the remote
        """
        branch_sha = self.get_branch_commit(branch_name)
        if branch_sha is None:
            return False
        if branch_name in self.session.branch_is_modified:
            return self.session.branch_is_modified[branch_name]

        cached = self.cache.get_modified(branch_name, branch_sha)
        if cached is not None:
            self.session.branch_is_modified[branch_name] = cached
            return cached

        self.sync.sync()
        last_author: Optional[str] = None
        try:
            last_author = self.sync.git.log(
                "-1", "--pretty=format:%ae", f"origin/{branch_name}", "--"
            ).strip()
        except GitCommandError as err:
            if "fatal: bad revision" in error_text(err).lower():
                log_debug("Remote branch not found when checking last commit author - aborting run")
                raise RepositoryChangedError(str(err)) from err
            log_warning("Error checking last author for is_branch_modified", error=str(err))

        modified = not self.session.is_bot_author(last_author)
        if modified:
            log_debug(
                "Last commit author does not match git author email",
                branch_name=branch_name,
                last_author=last_author,
                git_author_email=self.session.git_author_email,
            )
        else:
            log_debug("Branch is not modified", branch_name=branch_name)
        self.session.branch_is_modified[branch_name] = modified
        self.cache.set_modified(branch_name, branch_sha, modified)
        return modified

    def check_branch_conflict(self, base_branch: str, branch_name: str) -> ConflictResult:
        """Trial-merge ``branch_name`` into ``base_branch`` without committing.

        The checkout is always restored afterwards. Clean and conflicted
        answers are memoized against both tip SHAs; errors are not.
        """
        base_sha = self.get_branch_commit(base_branch)
        sha = self.get_branch_commit(branch_name)
        if not base_sha or not sha:
            log_warning(
                "Branch commit not found",
                base_branch=base_branch,
                branch_name=branch_name,
                base_sha=base_sha,
                sha=sha,
            )
            return ConflictResult(ConflictStatus.ERROR, "branch does not exist")

        cached = self.cache.get_conflict(base_branch, base_sha, branch_name, sha)
        if cached is not None:
            log_debug(
                "Conflict result from cache",
                base_branch=base_branch,
                branch_name=branch_name,
                conflicted=cached,
            )
            return ConflictResult(ConflictStatus.CONFLICTED if cached else ConflictStatus.CLEAN)

        self.sync.sync()
        self.sync.write_git_author()
        result = self._trial_merge(base_branch, branch_name)
        if result.status is not ConflictStatus.ERROR:
            self.cache.set_conflict(
                base_branch, base_sha, branch_name, sha, result.status is ConflictStatus.CONFLICTED
            )
        log_debug(
            "is_branch_conflicted result",
            base_branch=base_branch,
            branch_name=branch_name,
            status=result.status.value,
        )
        return result

    def is_branch_conflicted(self, base_branch: str, branch_name: str) -> bool:
        return self.check_branch_conflict(base_branch, branch_name).is_conflicted

    def _trial_merge(self, base_branch: str, branch_name: str) -> ConflictResult:
        git = self.sync.git
        orig_branch = self.session.current_branch
        try:
            git.reset("--hard")
            if orig_branch != base_branch:
                git.checkout(base_branch)
            git.merge("--no-commit", "--no-ff", f"origin/{branch_name}")
            result = ConflictResult(ConflictStatus.CLEAN)
        except GitCommandError as err:
            text = error_text(err)
            if "conflict" in text.lower():
                result = ConflictResult(ConflictStatus.CONFLICTED, "merge conflict")
            else:
                log_debug("is_branch_conflicted: unknown error", error=str(err))
                result = ConflictResult(ConflictStatus.ERROR, text.strip().splitlines()[0])
        finally:
            self._restore_checkout(orig_branch, base_branch)
        return result

    def _restore_checkout(self, orig_branch: Optional[str], base_branch: str) -> None:
        git = self.sync.git
        steps = [
            ("merge --abort", lambda: git.merge("--abort")),
            ("reset --hard", lambda: git.reset("--hard")),
        ]
        if orig_branch and orig_branch != base_branch:
            steps.append((f"checkout {orig_branch}", lambda: git.checkout(orig_branch)))
        for description, step in steps:
            try:
                step()
            except GitCommandError as err:
                log_debug(f"Conflict check cleanup: {description} failed", error=str(err))

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def delete_branch(self, branch_name: str) -> None:
        """Delete ``branch_name`` on the remote and locally, then forget it."""
        self.sync.sync()
        try:
            self.sync.remote(
                f"push --delete origin {branch_name}",
                lambda: self.sync.git.push("--delete", "origin", branch_name),
            )
            log_debug(f"Deleted remote branch: {branch_name}")
        except (GitCommandError, GitSyncError) as err:
            host_error = check_for_platform_failure(err)
            if host_error:
                raise host_error from err
            log_debug(f"No remote branch to delete with name: {branch_name}")

        outcome = self.sync.delete_local_branch(branch_name)
        if outcome.ok:
            log_debug(f"Deleted local branch: {branch_name}")
        else:
            log_debug(f"No local branch to delete with name: {branch_name}", error=outcome.error)

        self.session.branch_commits.pop(branch_name, None)
        self.session.branch_is_modified.pop(branch_name, None)

    def merge_branch(self, branch_name: str) -> None:
        """Fast-forward the current branch to ``branch_name`` and push it."""
        self.sync.sync()
        git = self.sync.git
        current = self.session.current_branch
        try:
            git.reset("--hard")
            self.sync.remote(
                f"checkout {branch_name}",
                lambda: git.checkout("-B", branch_name, f"origin/{branch_name}"),
            )
            self.sync.remote(
                f"checkout {current}",
                lambda: git.checkout("-B", current, f"origin/{current}"),
            )
            self.sync.remote(f"merge --ff-only {branch_name}", lambda: git.merge("--ff-only", branch_name))
            self.sync.remote(f"push origin {current}", lambda: git.push("origin", current))
        except (GitCommandError, GitSyncError) as err:
            log_debug("merge_branch error", branch_name=branch_name, error=str(err))
            host_error = check_for_platform_failure(err)
            if host_error:
                raise host_error from err
            raise

        self.sync.counter.increment(Limit.COMMITS)
        sha = self.sync.head_sha()
        self.session.current_branch_sha = sha
        self.session.branch_commits[current] = sha
        log_info(f"Merged branch {branch_name} into {current}", sha=sha)

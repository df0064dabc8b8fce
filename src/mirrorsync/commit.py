"""Commit pipeline: prepare a commit locally, push it, or fetch one back.

A commit is always built on top of the remote tip of the current branch,
never on the previous state of the target branch, so rerunning the same
request reproduces the same tree. The branch registry is only updated once
the push has succeeded.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import List, NoReturn, Optional

from git.exc import GitCommandError

from .branches import BranchOperations
from .cache import BranchStateCache
from .errors import BranchBlockedError, GitSyncError, RepositoryChangedError
from .failures import FailureKind, classify_failure, error_text, to_typed_error
from .limits import Limit
from .models import CommitRequest, CommitResult, FileAddition, FileChange, FileDeletion
from .observability import log_debug, log_info, log_warning, timeit
from .session import RepositorySession
from .sync import Synchronizer, path_inside

IGNORED_PATHS_MESSAGE = "The following paths are ignored by one of your .gitignore files"


def handle_commit_error(files: List[FileChange], branch_name: str, err: BaseException) -> NoReturn:
    """Translate a failed commit or push into the matching typed error.

    Always raises; unrecognized failures are re-raised unchanged.
    """
    if isinstance(err, GitSyncError):
        raise err
    kind = classify_failure(err)
    if kind is FailureKind.REPOSITORY_CHANGED:
        log_info("Local copy is not up-to-date with the remote", branch_name=branch_name)
    typed = to_typed_error(err, kind)
    if typed is not None:
        raise typed from err

    text = error_text(err)
    lowered = text.lower()
    if "exists; cannot create" in lowered:
        log_warning(
            "Cannot create branch because an existing ref blocks it",
            branch_name=branch_name,
        )
        raise BranchBlockedError(f"An existing branch is blocking {branch_name}") from err
    if (
        "denying non-fast-forward" in lowered
        or "gh003: sorry, force-pushing" in lowered
        or "protected branch hook declined" in lowered
    ):
        log_debug("Branch is protected against this push", branch_name=branch_name)
        raise RepositoryChangedError(text) from err

    log_debug(
        "Unexpected commit error",
        branch_name=branch_name,
        files=[f.path for f in files],
        error=str(err),
    )
    raise err


class CommitPipeline:
    """Builds commits in the mirror and publishes them to the remote."""

    def __init__(
        self,
        synchronizer: Synchronizer,
        branches: BranchOperations,
        cache: BranchStateCache,
    ):
        self.sync = synchronizer
        self.branches = branches
        self.cache = cache

    @property
    def session(self) -> RepositorySession:
        return self.sync.session

    def prepare_commit(self, request: CommitRequest) -> Optional[CommitResult]:
        """Create the commit for ``request`` on a local branch.

        Returns:
            The commit, or None when it would be empty or (unless
            ``request.force``) identical to the remote branch or to the
            commit prepared for it earlier in this session
        """
        self.sync.sync()
        log_debug(f"Preparing files for committing to branch {request.branch_name}")
        self.sync.handle_commit_auth()
        try:
            return self._prepare(request)
        except (GitCommandError, OSError) as err:
            handle_commit_error(request.files, request.branch_name, err)
        finally:
            self._restore_current_branch()

    def _prepare(self, request: CommitRequest) -> Optional[CommitResult]:
        git = self.sync.git
        branch_name = request.branch_name
        current = self.session.current_branch

        git.reset("--hard")
        git.clean("-fd")
        parent_commit_sha = self.session.current_branch_sha
        previous_sha = self._local_branch_sha(branch_name)
        self.sync.remote(
            f"checkout -B {branch_name}",
            lambda: git.checkout("-B", branch_name, f"origin/{current}"),
        )

        deleted: List[str] = []
        added: List[str] = []
        ignored: List[str] = []
        for change in request.files:
            path = change.path
            if isinstance(change, FileDeletion):
                try:
                    git.rm("-f", "--", path)
                    deleted.append(path)
                except GitCommandError as err:
                    log_debug(f"Cannot delete {path}", error=str(err))
                    ignored.append(path)
                continue

            target = path_inside(self.sync.local_dir, path)
            if target.is_dir() and not target.is_symlink():
                log_debug(f"Adding directory commit for {path}")
            elif change.contents is None:
                continue
            else:
                self._write_file(target, change)

            try:
                git.add("--", path)
                if change.is_executable:
                    git.update_index("--chmod=+x", "--", path)
                added.append(path)
            except GitCommandError as err:
                if IGNORED_PATHS_MESSAGE not in error_text(err):
                    raise
                log_debug(f"Cannot commit ignored file: {path}")
                ignored.append(path)

        if not git.diff("--cached", "--name-only"):
            log_warning("Detected empty commit - aborting git push", branch_name=branch_name)
            return None

        args = ["-m", request.message]
        if "commit" in self.sync.config.git.no_verify:
            args.append("--no-verify")
        output = git.commit(*args)
        log_debug(
            "git commit",
            deleted_files=deleted,
            ignored_files=ignored,
            result=output.splitlines()[0] if output else "",
        )

        if not request.force and self._matches_existing(branch_name, previous_sha):
            log_debug(
                f"No file changes detected for {branch_name}. Skipping commit",
                branch_name=branch_name,
            )
            return None

        commit_sha = git.rev_parse(branch_name)
        applied = set(deleted) | set(added)
        files = [f for f in request.files if f.path in applied]
        return CommitResult(
            parent_commit_sha=parent_commit_sha,
            commit_sha=commit_sha,
            files=files,
        )

    def _local_branch_sha(self, branch_name: str) -> Optional[str]:
        try:
            return self.sync.git.rev_parse("--verify", "--quiet", f"refs/heads/{branch_name}")
        except GitCommandError:
            return None

    def _matches_existing(self, branch_name: str, previous_sha: Optional[str]) -> bool:
        """True when HEAD has the same tree as the remote branch or the last prepared commit."""
        if not self.branches.has_diff(f"origin/{branch_name}"):
            return True
        return previous_sha is not None and not self.branches.has_diff(previous_sha)

    @staticmethod
    def _write_file(target: Path, change: FileAddition) -> None:
        target.parent.mkdir(parents=True, exist_ok=True)
        if target.is_symlink() or target.exists():
            target.unlink()
        contents = change.contents
        if change.is_symlink:
            if isinstance(contents, bytes):
                contents = contents.decode("utf-8")
            os.symlink(contents, target)
            return
        if isinstance(contents, str):
            contents = contents.encode("utf-8")
        target.write_bytes(contents)
        os.chmod(target, 0o755 if change.is_executable else 0o644)

    def _restore_current_branch(self) -> None:
        # Keeps the checkout in line with session.current_branch
        current = self.session.current_branch
        if not current:
            return
        try:
            self.sync.git.checkout("-f", current)
        except GitCommandError as err:
            log_warning(f"Could not return to {current} after preparing commit", error=str(err))

    def push_commit(self, request: CommitRequest) -> None:
        """Push the prepared local branch, refusing to clobber unseen remote work.

        Raises on failure; there is no partial success.
        """
        self.sync.sync()
        branch_name = request.branch_name
        log_debug(f"Pushing branch {branch_name}")
        args = ["--force-with-lease", "-u"]
        if "push" in self.sync.config.git.no_verify:
            args.append("--no-verify")
        try:
            with timeit("git.push", branch_name=branch_name):
                output = self.sync.remote(
                    f"push origin {branch_name}",
                    lambda: self.sync.git.push(*args, "origin", f"{branch_name}:{branch_name}"),
                )
        except (GitCommandError, GitSyncError) as err:
            handle_commit_error(request.files, branch_name, err)
        log_debug("git push", result=output)
        self.sync.counter.increment(Limit.COMMITS)

    def commit_files(self, request: CommitRequest) -> Optional[str]:
        """Prepare and push a commit; returns its SHA or None if nothing changed.

        A failed push drops the prepared local branch again, so retrying the
        same request rebuilds and pushes it instead of matching the unpushed
        commit.

        Raises:
            RepositoryChangedError: The remote branch moved since the last sync
        """
        result = self.prepare_commit(request)
        if result is None:
            return None

        branch_name = request.branch_name
        try:
            self.push_commit(request)
        except Exception:
            outcome = self.sync.delete_local_branch(branch_name)
            if not outcome.ok:
                log_warning(f"Could not drop unpushed branch {branch_name}", error=outcome.error)
            raise

        self.session.branch_commits[branch_name] = result.commit_sha
        self.session.branch_is_modified[branch_name] = False
        self.cache.set_modified(branch_name, result.commit_sha, False)
        return result.commit_sha

    def fetch_commit(self, request: CommitRequest) -> Optional[str]:
        """Adopt a commit created on the remote for ``request.branch_name``."""
        self.sync.sync()
        branch_name = request.branch_name
        log_debug(f"Fetching branch {branch_name}")
        refspec = f"refs/heads/{branch_name}:refs/remotes/origin/{branch_name}"
        try:
            self.sync.remote(
                f"fetch origin {branch_name}",
                lambda: self.sync.git.fetch("--force", "origin", refspec),
            )
            commit = self.sync.git.rev_parse(f"origin/{branch_name}")
        except (GitCommandError, GitSyncError) as err:
            handle_commit_error(request.files, branch_name, err)
        self.session.branch_commits[branch_name] = commit
        self.session.branch_is_modified[branch_name] = False
        self.cache.set_modified(branch_name, commit, False)
        return commit

"""Read-only views of the mirror: status, file lists, history, trees."""

from __future__ import annotations

import re
from typing import List, Optional
from urllib.parse import urlunsplit

from git.exc import GitCommandError

from .errors import RepositoryChangedError
from .failures import error_text
from .models import StatusResult, TreeItem
from .observability import log_debug
from .sync import Synchronizer, path_inside

_TREE_SHA_RE = re.compile(r"^tree (?P<sha>[a-f0-9]+)$", re.MULTILINE)
_TREE_ITEM_RE = re.compile(
    r"^(?P<mode>\d+)\s+(?P<type>blob|tree|commit)\s+(?P<sha>[a-f0-9]+)\s+(?P<path>.*)$"
)


def get_url(
    repository: str,
    *,
    protocol: Optional[str] = None,
    auth: Optional[str] = None,
    hostname: Optional[str] = None,
    host: Optional[str] = None,
) -> str:
    """Build a clone URL for ``repository`` (e.g. ``org/repo``).

    ``host`` (which may carry a port) takes precedence over ``hostname``.
    """
    if protocol == "ssh":
        return f"git@{hostname}:{repository}.git"
    netloc = host or hostname or ""
    if auth:
        netloc = f"{auth}@{netloc}"
    path = f"{repository}.git"
    if not path.startswith("/"):
        path = "/" + path
    return urlunsplit((protocol or "https", netloc, path, "", ""))


def parse_status(output: str) -> StatusResult:
    """Parse ``git status --porcelain -b`` output."""
    status = StatusResult()
    for line in output.splitlines():
        if line.startswith("## "):
            header = line[3:]
            if header.startswith("No commits yet on "):
                status.current = header[len("No commits yet on "):]
            else:
                status.current = header.split("...")[0].split(" ")[0]
            continue
        if len(line) < 4:
            continue
        code, path = line[:2], line[3:]
        if code == "??":
            status.not_added.append(path)
        elif "U" in code or code in ("AA", "DD"):
            status.conflicted.append(path)
        elif code[0] == "R":
            status.renamed.append(path.split(" -> ")[-1])
        elif code[0] == "A":
            status.created.append(path)
        elif "D" in code:
            status.deleted.append(path)
        elif "M" in code:
            status.modified.append(path)
    return status


class RepositoryQueries:
    def __init__(self, synchronizer: Synchronizer):
        self.sync = synchronizer

    def get_repo_status(self, path: Optional[str] = None) -> StatusResult:
        """Working-tree status, optionally restricted to ``path``.

        Raises:
            InvalidPathError: ``path`` points outside the mirror
        """
        if path is not None:
            path_inside(self.sync.local_dir, path)
        self.sync.sync()
        args = ["--porcelain", "-b"]
        if path is not None:
            args.extend(["--", path])
        return parse_status(self.sync.git.status(*args, strip_newline_in_stdout=False))

    def get_file_list(self) -> List[str]:
        """Regular files on the current branch, excluding submodule contents."""
        self.sync.sync()
        branch = self.sync.session.current_branch
        submodules = self.sync.get_submodules()
        try:
            output = self.sync.git.ls_tree("-r", branch)
        except GitCommandError as err:
            if "not a valid object name" in error_text(err).lower():
                log_debug(f"Branch not found when checking branch list: {branch}")
                raise RepositoryChangedError(str(err)) from err
            raise
        files = []
        for line in output.splitlines():
            # Only regular files (mode 100644 / 100755)
            if not line.startswith("100"):
                continue
            file_path = line.split("\t", 1)[-1]
            if any(file_path.startswith(f"{sub}/") or file_path == sub for sub in submodules):
                continue
            files.append(file_path)
        return files

    def get_commit_messages(self) -> List[str]:
        """Subjects of the last ten commits on the checked-out branch."""
        self.sync.sync()
        log_debug("get_commit_messages")
        output = self.sync.git.log("-n", "10", "--format=%s")
        return output.splitlines()

    def list_commit_tree(self, commit_sha: str) -> List[TreeItem]:
        """Top-level entries of the tree of ``commit_sha``."""
        commit = self.sync.git.cat_file("-p", commit_sha)
        match = _TREE_SHA_RE.search(commit)
        if not match:
            return []
        tree = self.sync.git.cat_file("-p", match.group("sha"))
        items = []
        for line in tree.splitlines():
            item = _TREE_ITEM_RE.match(line)
            if item:
                items.append(
                    TreeItem(
                        path=item.group("path"),
                        mode=item.group("mode"),
                        type=item.group("type"),
                        sha=item.group("sha"),
                    )
                )
        return items

"""Side-channel refs: commits published outside ``refs/heads``.

Refs live at ``<prefix>/<section>/<name>``. Refs directly under the prefix
(``<prefix>/<name>``) come from the older flat layout and are always
considered obsolete.
"""

from __future__ import annotations

from typing import Dict, List

from git.exc import GitCommandError

from .errors import GitSyncError
from .observability import log_debug, log_warning
from .sync import Synchronizer

DEFAULT_SECTION = "branches"


class SideChannelRefs:
    def __init__(self, synchronizer: Synchronizer, prefix: str = "refs/mirrorsync"):
        self.sync = synchronizer
        self.prefix = prefix.rstrip("/")

    def full_ref_name(self, ref_name: str, section: str = DEFAULT_SECTION) -> str:
        return f"{self.prefix}/{section}/{ref_name}"

    def push_commit_to_ref(
        self, commit_sha: str, ref_name: str, section: str = DEFAULT_SECTION
    ) -> None:
        """Point a side-channel ref at ``commit_sha`` and force-push it."""
        self.sync.sync()
        full_ref = self.full_ref_name(ref_name, section)
        git = self.sync.git
        git.update_ref(full_ref, commit_sha)
        self.sync.remote(
            f"push --force origin {full_ref}",
            lambda: git.push("--force", "origin", full_ref),
        )
        self.sync.session.remote_refs_exist = True

    def list_refs(self) -> Dict[str, str]:
        """Remote side-channel refs mapped to the SHAs they point at."""
        url = self.sync.session.url
        output = self.sync.remote(
            f"ls-remote {self.prefix}",
            lambda: self.sync.git.ls_remote(url, f"{self.prefix}/*"),
        )
        refs: Dict[str, str] = {}
        for line in output.splitlines():
            parts = line.strip().split()
            if len(parts) == 2 and parts[1].startswith(f"{self.prefix}/"):
                refs[parts[1]] = parts[0]
        return refs

    def obsolete_refs(self, refs: List[str]) -> List[str]:
        depth = self.prefix.count("/") + 1
        legacy = [ref for ref in refs if ref.count("/") == depth]
        branch_refs = [ref for ref in refs if ref.startswith(f"{self.prefix}/{DEFAULT_SECTION}/")]
        return legacy + branch_refs

    def clear_refs(self) -> None:
        """Delete obsolete side-channel refs on the remote in one push.

        Does nothing unless this session has synced and pushed at least one
        side-channel ref.
        """
        session = self.sync.session
        if not session.initialized or not session.remote_refs_exist:
            return

        log_debug(f"Cleaning up refs: {self.prefix}/*")
        try:
            refs = list(self.list_refs())
        except (GitCommandError, GitSyncError) as err:
            log_warning("Could not list side-channel refs", error=str(err))
            return

        obsolete = self.obsolete_refs(refs)
        if obsolete:
            self.sync.remote(
                "push --delete side-channel refs",
                lambda: self.sync.git.push("--delete", "origin", *obsolete),
            )
        session.remote_refs_exist = False

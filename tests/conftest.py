from __future__ import annotations

import os
import sys
from dataclasses import dataclass
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"
if str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

# Keep test runs from writing log files into the real home directory
os.environ.setdefault("MIRRORSYNC_LOG_DISABLE_FILE", "1")

from git import Actor, Repo  # noqa: E402

from mirrorsync.config_schema import MirrorConfig  # noqa: E402
from mirrorsync.mirror import GitMirror  # noqa: E402
from mirrorsync.retry import RetryExecutor  # noqa: E402

SEED_AUTHOR = Actor("Seed Author", "seed@example.com")
HUMAN_AUTHOR = Actor("Jane Human", "jane@example.com")


@dataclass
class SeededRemote:
    """A bare remote plus a working clone used to push further changes."""

    path: Path
    work: Repo
    main_sha: str
    feature_sha: str

    @property
    def url(self) -> str:
        return self.path.as_posix()

    def push(self, *refspecs: str) -> None:
        self.work.git.push("origin", *refspecs)


def init_remote_repo(remote_path: Path) -> Repo:
    remote_path.mkdir(parents=True, exist_ok=True)
    repo = Repo.init(remote_path, bare=True)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    return repo


def commit_file(
    repo: Repo,
    name: str,
    content: str,
    message: str | None = None,
    author: Actor = SEED_AUTHOR,
) -> str:
    path = Path(repo.working_tree_dir) / name
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.index.add([name])
    commit = repo.index.commit(message or f"update {name}", author=author, committer=author)
    return commit.hexsha


def seed_remote(remote_path: Path) -> SeededRemote:
    """Create a bare remote with ``main`` and an unrelated ``feature`` branch."""
    init_remote_repo(remote_path)

    work_path = remote_path.parent / "seed"
    repo = Repo.init(work_path)
    repo.git.symbolic_ref("HEAD", "refs/heads/main")
    commit_file(repo, "README.md", "seed\n", "seed")
    main_sha = commit_file(repo, "src/app.txt", "v1\n", "add app")
    repo.create_remote("origin", remote_path.as_posix())
    repo.git.push("origin", "main:main")

    # feature shares no history with main
    feature_path = remote_path.parent / "seed-feature"
    feature = Repo.init(feature_path)
    feature_sha = commit_file(feature, "feature.txt", "feature\n", "feature work")
    feature.create_remote("origin", remote_path.as_posix())
    feature.git.push("origin", "HEAD:refs/heads/feature")

    repo.git.fetch("origin")
    return SeededRemote(path=remote_path, work=repo, main_sha=main_sha, feature_sha=feature_sha)


def no_sleep(_delay: float) -> None:
    return None


@pytest.fixture
def seeded(tmp_path) -> SeededRemote:
    return seed_remote(tmp_path / "remote.git")


@pytest.fixture
def make_mirror(tmp_path):
    """Factory for an initialized GitMirror against a local remote."""

    def _make(url: str, *, local_dir: Path | None = None, config: MirrorConfig | None = None, **kwargs):
        kwargs.setdefault("retry", RetryExecutor(sleep=no_sleep))
        mirror = GitMirror(
            url,
            config or MirrorConfig(),
            local_dir=local_dir or tmp_path / "mirror",
            **kwargs,
        )
        mirror.init_repo()
        return mirror

    return _make


@pytest.fixture
def mirror(seeded, make_mirror) -> GitMirror:
    return make_mirror(seeded.url)

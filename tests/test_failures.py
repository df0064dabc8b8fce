"""Tests for the git failure classifier."""

from __future__ import annotations

import re

import pytest
from git.exc import GitCommandError

from mirrorsync.errors import (
    ExternalHostError,
    InsufficientDiskSpaceError,
    RepositoryChangedError,
    RepositoryDisabledError,
    RepositoryEmptyError,
)
from mirrorsync.failures import (
    FAILURE_PATTERNS,
    FailureKind,
    check_for_platform_failure,
    classify_failure,
    error_text,
    to_typed_error,
    typed_failure,
)


def git_error(stderr: str, command: str = "git fetch", status: int = 128) -> GitCommandError:
    return GitCommandError(command, status, stderr=stderr)


class TestClassifyFailure:
    @pytest.mark.parametrize(
        "stderr",
        [
            "fatal: unable to access 'https://example.com/r.git/': Could not resolve host: example.com",
            "fatal: The remote end hung up unexpectedly",
            "error: RPC failed; curl 56 GnuTLS recv error",
            "fatal: unable to access: Failed to connect to example.com port 443: Connection timed out",
            "ssh: connect to host example.com port 22: Network is unreachable",
        ],
    )
    def test_transient_host_failures(self, stderr):
        assert classify_failure(git_error(stderr)) is FailureKind.TRANSIENT_HOST_FAILURE

    def test_disk_space(self):
        err = git_error("fatal: write error: No space left on device", "git clone")
        assert classify_failure(err) is FailureKind.INSUFFICIENT_DISK_SPACE

    def test_disabled_account(self):
        err = git_error("remote: Your account is suspended. Please ask the owner to check their account.")
        assert classify_failure(err) is FailureKind.REPOSITORY_DISABLED

    def test_empty_repository(self):
        err = git_error("fatal: your current branch 'main' does not have any commits yet", "git log")
        assert classify_failure(err) is FailureKind.REPOSITORY_EMPTY

    def test_stale_lease_rejection(self):
        err = git_error(
            "To /tmp/remote.git\n ! [rejected]        update/x -> update/x (stale info)\n"
            "error: failed to push some refs to '/tmp/remote.git'",
            "git push",
            1,
        )
        assert classify_failure(err) is FailureKind.REPOSITORY_CHANGED

    def test_bad_revision(self):
        err = git_error("fatal: bad revision 'origin/update/x'", "git log")
        assert classify_failure(err) is FailureKind.REPOSITORY_CHANGED

    def test_unknown_passes_through(self):
        err = git_error("fatal: something nobody has seen before")
        assert classify_failure(err) is FailureKind.UNKNOWN

    def test_first_matching_pattern_wins(self):
        """Fatal conditions are listed ahead of transient ones."""
        err = git_error("fatal: early EOF\nfatal: No space left on device")
        assert classify_failure(err) is FailureKind.INSUFFICIENT_DISK_SPACE

    def test_typed_errors_keep_their_kind(self):
        assert classify_failure(RepositoryChangedError("moved")) is FailureKind.REPOSITORY_CHANGED
        assert classify_failure(ExternalHostError(OSError("x"))) is FailureKind.TRANSIENT_HOST_FAILURE

    def test_plain_exceptions_are_classified_by_message(self):
        assert classify_failure(OSError(28, "No space left on device")) is FailureKind.INSUFFICIENT_DISK_SPACE

    def test_pattern_table_is_data(self):
        for pattern, kind in FAILURE_PATTERNS:
            assert isinstance(pattern, (str, re.Pattern))
            assert isinstance(kind, FailureKind)
            if isinstance(pattern, str):
                assert pattern == pattern.lower()


class TestErrorText:
    def test_includes_stderr(self):
        text = error_text(git_error("fatal: bad object"))
        assert "fatal: bad object" in text
        assert "git fetch" in text


class TestCheckForPlatformFailure:
    def test_wraps_transient_failure(self):
        err = git_error("fatal: Could not read from remote repository.")
        host_error = check_for_platform_failure(err)
        assert isinstance(host_error, ExternalHostError)
        assert host_error.err is err
        assert host_error.host_type == "git"

    def test_returns_existing_host_error(self):
        host_error = ExternalHostError(OSError("boom"))
        assert check_for_platform_failure(host_error) is host_error

    def test_non_transient_returns_none(self):
        assert check_for_platform_failure(git_error("fatal: bad revision 'x'")) is None


class TestToTypedError:
    @pytest.mark.parametrize(
        "kind,expected",
        [
            (FailureKind.TRANSIENT_HOST_FAILURE, ExternalHostError),
            (FailureKind.REPOSITORY_EMPTY, RepositoryEmptyError),
            (FailureKind.REPOSITORY_DISABLED, RepositoryDisabledError),
            (FailureKind.REPOSITORY_CHANGED, RepositoryChangedError),
            (FailureKind.INSUFFICIENT_DISK_SPACE, InsufficientDiskSpaceError),
        ],
    )
    def test_builds_matching_error(self, kind, expected):
        assert isinstance(to_typed_error(git_error("fatal: x"), kind), expected)

    def test_unknown_has_no_typed_error(self):
        assert to_typed_error(git_error("fatal: x"), FailureKind.UNKNOWN) is None

    def test_already_typed_error_is_reused(self):
        err = RepositoryChangedError("moved")
        assert to_typed_error(err, FailureKind.REPOSITORY_CHANGED) is err


class TestTypedFailure:
    def test_classifies_and_wraps(self):
        err = git_error("remote: Please ask the owner to check their account", command="git push")
        typed = typed_failure(err)
        assert isinstance(typed, RepositoryDisabledError)

    def test_unrecognized_failure(self):
        assert typed_failure(git_error("fatal: something odd")) is None

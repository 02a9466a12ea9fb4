"""
Errors — Failure taxonomy for the sync pipeline.

Every error knows which stage it came from and which commands get the
operator back to a known-good state. The CLI prints both.

## Usage

    from forksync.errors import ForkSyncError

    try:
        pipeline.run()
    except ForkSyncError as e:
        print(e.stage, e.message)
        for cmd in e.remediation:
            print("  " + cmd)
"""

from __future__ import annotations

from typing import List, Optional, Sequence


class ForkSyncError(Exception):
    """Base class for all pipeline failures."""

    stage = "pipeline"

    def __init__(
        self,
        message: str,
        stage: Optional[str] = None,
        remediation: Optional[Sequence[str]] = None,
    ):
        self.message = message
        if stage is not None:
            self.stage = stage
        self.remediation: List[str] = list(remediation or [])
        super().__init__(message)


class SyncEnvironmentError(ForkSyncError):
    """Not a repository, or a required remote/branch is missing."""

    stage = "preflight"


class DirtyStateError(ForkSyncError):
    """Uncommitted changes in the working tree."""

    stage = "preflight"


class FetchError(ForkSyncError):
    """Fetching a remote failed (network or auth)."""

    stage = "fetch"


class FastForwardViolation(ForkSyncError):
    """Mirror carries commits upstream does not have."""

    stage = "mirror"


class MergeConflict(ForkSyncError):
    """A merge stopped with conflicting paths."""

    stage = "integration"

    def __init__(self, message: str, paths: Sequence[str], backup_tag: Optional[str] = None, **kwargs):
        self.paths = list(paths)
        self.backup_tag = backup_tag
        super().__init__(message, **kwargs)


class TestFailure(ForkSyncError):
    """The verification command failed."""

    __test__ = False
    stage = "test"


class BuildVerificationFailure(ForkSyncError):
    """Rebuild failed or the custom marker is missing from the output."""

    stage = "notify"


class PushRejected(ForkSyncError):
    """The remote refused a push (lease violated or non-fast-forward)."""

    stage = "push"


class LeaseHeldError(ForkSyncError):
    """Another session holds the repository lease."""

    stage = "lease"


class BackupNotFoundError(ForkSyncError):
    """A requested backup tag does not exist."""

    stage = "rollback"


class GitCommandError(ForkSyncError):
    """A git command exited non-zero."""

    stage = "git"

    def __init__(self, args: Sequence[str], returncode: int, stderr: str, **kwargs):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr
        detail = stderr.strip() or f"exit code {returncode}"
        super().__init__(f"git {' '.join(self.args_list)} failed: {detail}", **kwargs)

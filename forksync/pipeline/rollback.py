"""
Rollback / Emergency Manager — Reset branches to a backup tag.

Every rollback first tags the current tip of each target branch as an
emergency set, so the rollback itself can be undone by rolling back to
that set. Branches are then reset locally and force-pushed in a single
atomic push, each leased against the remote tip seen at fetch time. If
anyone pushed in between, the remote refuses the whole push and the
local branches are put back.

## Usage

    manager = RollbackManager(refs, BackupManager(refs), settings)
    result = manager.rollback("backup/integration-20260203-120000", ["integration"])
    print(result.emergency_set)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from ..config.settings import SyncSettings
from ..errors import BackupNotFoundError, DirtyStateError, PushRejected, SyncEnvironmentError
from ..git.refs import RefStore
from ..models.session import BackupTag, session_timestamp
from .backup import BackupManager

logger = logging.getLogger(__name__)

ALL_ROLES = ["mirror", "integration", "production"]


@dataclass
class RollbackResult:
    target: str
    emergency_tags: List[BackupTag] = field(default_factory=list)
    # branch → (previous commit, new commit)
    changes: Dict[str, tuple] = field(default_factory=dict)

    @property
    def emergency_set(self) -> Optional[str]:
        if not self.emergency_tags:
            return None
        return self.emergency_tags[0].name.rsplit("/", 1)[0]


class RollbackManager:
    """Resets managed branches to a backup, reversibly."""

    def __init__(self, refs: RefStore, backups: BackupManager, settings: SyncSettings):
        self.refs = refs
        self.backups = backups
        self.settings = settings

    def candidates(self, limit: int = 20) -> List[BackupTag]:
        return self.backups.list_backups(limit=limit)

    def plan(self, target: str, roles: List[str]) -> Dict[str, str]:
        """Role → commit each branch will be reset to."""
        tags = self.backups.resolve_target(target)
        if target.startswith("refs/tags/"):
            target = target[len("refs/tags/"):]
        if len(tags) == 1 and tags[0].name == target.rstrip("/"):
            return {role: tags[0].source_commit for role in roles}

        by_role = {t.source_role: t.source_commit for t in tags}
        missing = [r for r in roles if r not in by_role]
        if missing:
            raise BackupNotFoundError(
                f"Emergency set '{target}' has no snapshot for: {', '.join(missing)}"
            )
        return {role: by_role[role] for role in roles}

    def default_roles(self, target: str) -> List[str]:
        """Roles a plain ``rollback`` touches: the one the tag was taken from."""
        tags = self.backups.resolve_target(target)
        roles = sorted({t.source_role for t in tags if t.source_role}, key=ALL_ROLES.index)
        if not roles:
            raise SyncEnvironmentError(
                f"Cannot tell which branch '{target}' belongs to",
                stage="rollback",
                remediation=[f"forksync rollback {target} --branch integration"],
            )
        return roles

    def _preflight(self, branches: List[str]) -> None:
        origin = self.settings.origin_remote
        if not self.refs.has_remote(origin):
            raise SyncEnvironmentError(f"Remote '{origin}' not found", stage="rollback")
        for branch in branches:
            if not self.refs.branch_exists(branch):
                raise SyncEnvironmentError(f"Branch '{branch}' does not exist", stage="rollback")
        if not self.refs.merge_in_progress() and self.refs.has_uncommitted_changes():
            raise DirtyStateError(
                "You have uncommitted changes. Commit or stash them first.",
                stage="rollback",
                remediation=["git status --short", "git stash"],
            )

    def rollback(
        self,
        target: str,
        roles: List[str],
        timestamp: Optional[str] = None,
    ) -> RollbackResult:
        branches = {role: self.settings.branch_for(role) for role in roles}
        self._preflight(list(branches.values()))

        commits = self.plan(target, roles)
        origin = self.settings.origin_remote

        self.refs.fetch(origin)
        expected = {branch: self.refs.remote_tip(origin, branch) for branch in branches.values()}

        result = RollbackResult(target=target)
        result.emergency_tags = self.backups.emergency_snapshot(branches, timestamp or session_timestamp())
        previous = {t.source_role: t.source_commit for t in result.emergency_tags}
        logger.info(f"Emergency save point: {result.emergency_set}")

        if self.refs.merge_in_progress():
            logger.warning("Aborting in-progress merge before rollback")
            self.refs.merge_abort()

        for role, branch in branches.items():
            self.refs.reset_branch(branch, commits[role])
            result.changes[branch] = (previous[role], commits[role])
            logger.info(f"Reset {branch} to {commits[role][:12]}")

        self.refs.push_tags(origin, [t.name for t in result.emergency_tags])
        try:
            self.refs.push_with_lease(origin, expected)
        except PushRejected as e:
            logger.error("Lease push rejected; restoring local branches")
            for role, branch in branches.items():
                self.refs.reset_branch(branch, previous[role])
            e.remediation = [
                f"git fetch {origin}",
                f"git log --oneline {origin}/<branch> -5   # see what changed",
                f"forksync rollback {target}   # retry once reviewed",
            ]
            raise

        logger.info(f"Rolled back {', '.join(branches.values())} to {target}")
        return result

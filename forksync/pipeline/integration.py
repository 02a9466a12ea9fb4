"""
Integration Merger — Bring mirror changes into the integration branch.

Always a merge commit (``--no-ff``) so both lines of history survive.
Conflicts are never auto-resolved: the merge is left in progress with
markers in the working tree and the session halts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..config.settings import SyncSettings
from ..errors import MergeConflict
from ..git.refs import RefStore
from ..models.session import BackupTag, ConflictEntry, SyncSession
from .backup import BackupManager

logger = logging.getLogger(__name__)


@dataclass
class IntegrationResult:
    merged: bool
    backup: Optional[BackupTag] = None
    commit: Optional[str] = None


def merge_message(session: SyncSession, backup: BackupTag) -> str:
    return (
        f"Sync: Merge upstream changes ({session.date})\n\n"
        f"Upstream commits: {session.new_commit_count}\n"
        f"Backup tag: {backup.name}"
    )


class IntegrationMerger:
    """Merges the mirror branch into the integration branch."""

    def __init__(self, refs: RefStore, backups: BackupManager, settings: SyncSettings):
        self.refs = refs
        self.backups = backups
        self.settings = settings

    def needs_merge(self) -> bool:
        return not self.refs.is_ancestor(
            f"refs/heads/{self.settings.mirror_branch}",
            f"refs/heads/{self.settings.integration_branch}",
        )

    def merge(self, session: SyncSession) -> IntegrationResult:
        mirror = self.settings.mirror_branch
        branch = self.settings.integration_branch

        if not self.needs_merge():
            logger.info(f"{branch} already contains {mirror}")
            return IntegrationResult(merged=False)

        backup = self.backups.snapshot("integration", branch, session.timestamp)
        session.record_backup(backup)

        self.refs.checkout(branch)
        outcome = self.refs.merge_no_ff(f"refs/heads/{mirror}", merge_message(session, backup))

        if not outcome.merged:
            session.conflict_files = [ConflictEntry(path=p) for p in outcome.conflicts]
            session.halted_stage = "integration"
            logger.error(f"Merge conflicts in {branch}: {', '.join(outcome.conflicts)}")
            raise MergeConflict(
                f"Merge conflicts detected in {branch} ({len(outcome.conflicts)} file(s))",
                paths=outcome.conflicts,
                backup_tag=backup.name,
                remediation=[
                    "forksync resolve-conflicts",
                    "# or by hand: resolve files, git add <files>, git merge --continue",
                    "# to abort and restore:",
                    "git merge --abort",
                    f"git reset --hard {backup.name}",
                ],
            )

        self.refs.push(self.settings.origin_remote, branch)
        commit = self.refs.rev_parse(f"refs/heads/{branch}")
        logger.info(f"Merged {mirror} into {branch} ({(commit or '')[:12]})")
        return IntegrationResult(merged=True, backup=backup, commit=commit)

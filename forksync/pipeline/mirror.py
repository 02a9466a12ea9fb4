"""
Mirror Updater — Keep the mirror branch identical to upstream.

The mirror must never carry commits upstream does not have. It is
fast-forwarded when its tip is an ancestor of upstream. If someone
committed to the mirror directly (whether upstream moved or not), the
branch is hard-reset to upstream and a warning is surfaced. Losing those
commits is the intended outcome: the backup tag taken beforehand still
holds them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from ..config.settings import SyncSettings
from ..errors import FastForwardViolation, SyncEnvironmentError
from ..git.refs import RefStore
from ..models.session import SyncSession
from .backup import BackupManager

logger = logging.getLogger(__name__)


@dataclass
class MirrorUpdate:
    changed: bool
    previous: Optional[str]
    current: str
    reset: bool = False
    warning: Optional[FastForwardViolation] = None


class MirrorUpdater:
    """Advances the mirror branch to the upstream tip."""

    def __init__(self, refs: RefStore, backups: BackupManager, settings: SyncSettings):
        self.refs = refs
        self.backups = backups
        self.settings = settings

    def update(self, session: SyncSession) -> MirrorUpdate:
        branch = self.settings.mirror_branch
        upstream = self.refs.rev_parse(self.settings.upstream_ref)
        if not upstream:
            raise SyncEnvironmentError(
                f"Upstream ref {self.settings.upstream_display} not found",
                remediation=[f"git fetch {self.settings.upstream_remote}"],
            )
        previous = self.refs.rev_parse(f"refs/heads/{branch}")

        if previous == upstream:
            logger.info(f"{branch} already matches {self.settings.upstream_display}")
            return MirrorUpdate(changed=False, previous=previous, current=upstream)

        session.record_backup(self.backups.snapshot("mirror", branch, session.timestamp))
        self.refs.checkout(branch)

        # Fast-forward only from an ancestor of upstream; a mirror that is
        # ahead of or diverged from upstream carries stray commits
        if self.refs.is_ancestor(f"refs/heads/{branch}", upstream):
            if not self.refs.merge_ff_only(upstream):
                raise SyncEnvironmentError(
                    f"Fast-forward of {branch} to {self.settings.upstream_display} failed",
                    stage="mirror",
                    remediation=["git status", f"git checkout {branch}"],
                )
            logger.info(f"Fast-forwarded {branch} to {self.settings.upstream_display}")
            self.refs.push(self.settings.origin_remote, branch)
            return MirrorUpdate(changed=True, previous=previous, current=upstream)

        warning = FastForwardViolation(
            f"{branch} had commits not in {self.settings.upstream_display}; "
            f"reset to upstream (previous tip kept in backup tag)",
            remediation=[f"git log {self.settings.upstream_ref}..{previous} --oneline"],
        )
        logger.warning(warning.message)
        self.refs.reset_branch(branch, upstream)
        session.mirror_reset = True

        # The remote mirror carries the same stray commits; overwrite it under lease
        expected = self.refs.remote_tip(self.settings.origin_remote, branch)
        self.refs.push_with_lease(self.settings.origin_remote, {branch: expected})
        return MirrorUpdate(changed=True, previous=previous, current=upstream, reset=True, warning=warning)

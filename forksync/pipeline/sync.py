"""
Sync Pipeline — One session from upstream fetch to production.

    preflight → lease → fetch → up-to-date check → confirm (manual)
      → mirror → integration → test gate → promote → notify
      → sync history → push backup tags

Each stage checks whether its work is already done and skips without
tagging if so. Running ``sync`` again after resolving conflicts, or after
declining a promotion, therefore picks up where the last session stopped.

Branches are updated one at a time; each update is its own atomic ref
change. A halt leaves every branch at its last valid state and the error
carries the commands that restore it.

## Usage

    pipeline = SyncPipeline(repo_root, SyncSettings.load(repo_root))
    session = pipeline.run(mode="auto")
    print(session.new_commit_count, session.promoted)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional

from ..config.settings import SyncSettings
from ..errors import (
    DirtyStateError,
    FetchError,
    ForkSyncError,
    SyncEnvironmentError,
)
from ..git.refs import CommitRange, RefStore
from ..git.runner import CommandRunner, SubprocessRunner
from ..models.session import SyncMode, SyncSession
from ..persistence.changelog import ChangelogWriter
from ..reliability.lease import LEASE_FILENAME, SessionLease
from .backup import BackupManager
from .gate import TestGate
from .integration import IntegrationMerger
from .mirror import MirrorUpdater
from .notifier import PostPromotionNotifier
from .promoter import Promoter

logger = logging.getLogger(__name__)

PROCEED_PROMPT = "Proceed with sync?"
PREVIEW_LIMIT = 10


@dataclass
class BranchStatus:
    """How far each managed branch is from where a full sync would put it."""

    upstream_commit: Optional[str]
    mirror_commit: Optional[str]
    new_commit_count: int
    integration_has_mirror: bool
    production_has_integration: bool

    @property
    def mirror_current(self) -> bool:
        return self.upstream_commit is not None and self.upstream_commit == self.mirror_commit

    @property
    def up_to_date(self) -> bool:
        return self.mirror_current and self.integration_has_mirror and self.production_has_integration


class SyncPipeline:
    """Wires the pipeline components around one repository."""

    def __init__(
        self,
        root: Path,
        settings: SyncSettings,
        runner: Optional[CommandRunner] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        confirm_promotion: Optional[Callable[[str], bool]] = None,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.root = Path(root)
        self.settings = settings
        self.runner = runner or SubprocessRunner()
        self.confirm = confirm or (lambda prompt: False)

        self.refs = RefStore(self.root, self.runner)
        self.backups = BackupManager(self.refs)
        self.mirror = MirrorUpdater(self.refs, self.backups, settings)
        self.integration = IntegrationMerger(self.refs, self.backups, settings)
        self.gate = TestGate(self.runner, self.root, settings)
        self.promoter = Promoter(self.refs, self.backups, settings, confirm_promotion or self.confirm)
        self.notifier = PostPromotionNotifier(self.runner, self.refs, settings, sleep=sleep)
        self.changelog = ChangelogWriter(self.root / settings.changelog_file)
        self.warnings: List[ForkSyncError] = []
        self.session: Optional[SyncSession] = None

    # ─── Preconditions ──────────────────────────────────────

    def preflight(self) -> None:
        """Refuse to start unless the repository is in a known state. Never mutates."""
        if not self.refs.is_repository():
            raise SyncEnvironmentError(f"Not a git repository: {self.root}")

        for remote in (self.settings.upstream_remote, self.settings.origin_remote):
            if not self.refs.has_remote(remote):
                raise SyncEnvironmentError(
                    f"Remote '{remote}' not found",
                    remediation=["forksync setup --upstream-url <url>", "git remote -v"],
                )

        for role, branch in self.settings.managed_branches.items():
            if not self.refs.branch_exists(branch):
                raise SyncEnvironmentError(
                    f"{role.capitalize()} branch '{branch}' does not exist",
                    remediation=["forksync setup"],
                )

        if self.refs.merge_in_progress():
            raise SyncEnvironmentError(
                "A merge is in progress",
                remediation=["forksync resolve-conflicts", "git merge --abort"],
            )

        if self.refs.has_uncommitted_changes():
            raise DirtyStateError(
                "You have uncommitted changes. Commit or stash them first.",
                remediation=["git status --short", "git stash"],
            )

    def lease(self, command: str) -> SessionLease:
        return SessionLease(
            self.refs.git_dir() / LEASE_FILENAME,
            command=command,
            ttl=self.settings.lease_ttl,
        )

    def fetch(self) -> None:
        """Upstream fetch is fatal; origin fetch only refreshes lease expectations."""
        self.refs.fetch(self.settings.upstream_remote)
        try:
            self.refs.fetch(self.settings.origin_remote)
        except FetchError as e:
            logger.warning(f"{e.message}; continuing with cached origin refs")

    # ─── State ──────────────────────────────────────────────

    def status(self) -> BranchStatus:
        settings = self.settings
        mirror = f"refs/heads/{settings.mirror_branch}"
        integration = f"refs/heads/{settings.integration_branch}"
        upstream = self.refs.rev_parse(settings.upstream_ref)
        return BranchStatus(
            upstream_commit=upstream,
            mirror_commit=self.refs.rev_parse(mirror),
            new_commit_count=self.refs.count_commits(CommitRange(mirror, settings.upstream_ref)) if upstream else 0,
            integration_has_mirror=self.refs.is_ancestor(mirror, integration),
            production_has_integration=self.refs.is_ancestor(
                integration, f"refs/heads/{settings.production_branch}"
            ),
        )

    # ─── Session ────────────────────────────────────────────

    def run(self, mode: SyncMode = "manual") -> SyncSession:
        """Full sync. Raises ForkSyncError on any halt."""
        session = self.session = SyncSession(mode=mode)
        self.warnings = []
        logger.info(f"=== Upstream sync {session.date} ({mode} mode) ===")

        self.preflight()
        with self.lease("sync"):
            self.fetch()
            status = self.status()
            if status.upstream_commit is None:
                raise SyncEnvironmentError(
                    f"{self.settings.upstream_display} not found after fetch",
                    stage="fetch",
                    remediation=[f"git ls-remote {self.settings.upstream_remote}"],
                )
            session.upstream_commit = status.upstream_commit
            session.new_commit_count = status.new_commit_count

            if status.up_to_date:
                session.up_to_date = True
                logger.info("Already up to date with upstream. Nothing to do.")
                return session

            if status.new_commit_count:
                logger.info(f"Found {status.new_commit_count} new upstream commit(s)")
                preview = self.refs.subjects(
                    CommitRange(f"refs/heads/{self.settings.mirror_branch}", self.settings.upstream_ref),
                    limit=PREVIEW_LIMIT,
                )
                for subject in preview:
                    logger.info(f"  {subject}")
            else:
                logger.info("Mirror is current; resuming from the first unfinished stage")

            if not session.auto and not self.confirm(PROCEED_PROMPT):
                session.cancelled = True
                logger.info("Sync cancelled by user")
                return session

            start_branch = self.refs.current_branch()
            try:
                self._stage(session, "mirror")
                update = self.mirror.update(session)
                if update.warning is not None:
                    self.warnings.append(update.warning)
                self._stage(session, "integration")
                self.integration.merge(session)
                self._promote(session)
            except ForkSyncError as e:
                session.halted_stage = session.halted_stage or e.stage
                raise
            finally:
                self._finish(session, start_branch)
        return session

    def promote(self, mode: SyncMode = "manual") -> SyncSession:
        """Gate and promotion only, for an integration branch already merged."""
        session = self.session = SyncSession(mode=mode)
        self.warnings = []
        self.preflight()
        with self.lease("promote"):
            try:
                self.refs.fetch(self.settings.origin_remote)
            except FetchError as e:
                logger.warning(f"{e.message}; continuing with cached origin refs")
            start_branch = self.refs.current_branch()
            try:
                self._promote(session)
            except ForkSyncError as e:
                session.halted_stage = session.halted_stage or e.stage
                raise
            finally:
                self._finish(session, start_branch)
        return session

    def _stage(self, session: SyncSession, stage: str) -> None:
        logger.info(f"--- {stage} ---", extra={"session": session.timestamp, "stage": stage})

    def _promote(self, session: SyncSession) -> None:
        if not self.promoter.needs_promotion():
            logger.info(f"{self.settings.production_branch} already contains {self.settings.integration_branch}")
            return

        self.refs.checkout(self.settings.integration_branch)
        self._stage(session, "test")
        self.gate.run(session)
        self._stage(session, "promote")
        if self.promoter.promote(session):
            self._stage(session, "notify")
            self.warnings += self.notifier.run(session)

    def _finish(self, session: SyncSession, start_branch: str) -> None:
        """Record and publish what this session did; runs on success and on halt."""
        if not session.backup_tags:
            return

        self.refs.push_tags(self.settings.origin_remote, [t.name for t in session.backup_tags])
        self.changelog.append(session)
        logger.debug(f"Appended session {session.timestamp} to {self.changelog.path}")

        if self.refs.merge_in_progress():
            return
        if start_branch and self.refs.current_branch() != start_branch:
            result = self.refs.git("checkout", "--quiet", start_branch)
            if not result.ok:
                logger.warning(f"Could not return to {start_branch}: {result.stderr.strip()}")

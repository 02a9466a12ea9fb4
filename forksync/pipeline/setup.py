"""
Fork Setup — Create the branch layout the sync pipeline expects.

Idempotent: remotes and branches that already exist are left alone, and
template files are only written when absent. Nothing is committed; the
operator reviews and commits the templates.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from ..config.protected import PROTECTED_TEMPLATE
from ..config.settings import SyncSettings
from ..errors import DirtyStateError, PushRejected, SyncEnvironmentError
from ..git.refs import RefStore

logger = logging.getLogger(__name__)

CUSTOM_CHANGES_TEMPLATE = """\
# Custom Modifications

This document tracks all custom modifications made to this fork.
Update this file whenever you make custom changes.

## Modified Files
<!-- List files you've modified from upstream -->
-

## Added Files/Directories
<!-- List new files/directories you've added -->
-

## Removed/Disabled Features
<!-- List anything you've removed or disabled -->
-

## Configuration Changes
<!-- List configuration modifications -->
-
"""


@dataclass
class SetupReport:
    created_branches: List[str] = field(default_factory=list)
    existing_branches: List[str] = field(default_factory=list)
    written_files: List[str] = field(default_factory=list)
    remote_added: bool = False
    push_failures: List[str] = field(default_factory=list)


class ForkSetup:
    """One-time preparation of a fork checkout."""

    def __init__(self, refs: RefStore, settings: SyncSettings):
        self.refs = refs
        self.settings = settings
        self.root = refs.root

    def run(self, upstream_url: Optional[str] = None, start: str = "HEAD") -> SetupReport:
        settings = self.settings
        report = SetupReport()

        if not self.refs.is_repository():
            raise SyncEnvironmentError(f"Not a git repository: {self.root}", stage="setup")
        if self.refs.has_uncommitted_changes():
            raise DirtyStateError(
                "Working directory has uncommitted changes. Commit or stash them first.",
                stage="setup",
                remediation=["git status --short"],
            )

        if not self.refs.has_remote(settings.upstream_remote):
            url = upstream_url or settings.upstream_url
            if not url:
                raise SyncEnvironmentError(
                    f"Remote '{settings.upstream_remote}' not found and no URL given",
                    stage="setup",
                    remediation=["forksync setup --upstream-url https://github.com/<owner>/<repo>.git"],
                )
            logger.info(f"Adding {settings.upstream_remote} remote: {url}")
            self.refs.add_remote(settings.upstream_remote, url)
            report.remote_added = True

        self.refs.fetch(settings.upstream_remote)
        if not self.refs.rev_parse(settings.upstream_ref):
            raise SyncEnvironmentError(f"{settings.upstream_display} not found after fetch", stage="setup")

        start_commit = self.refs.rev_parse(start)
        if not start_commit:
            raise SyncEnvironmentError(f"Start point '{start}' does not resolve to a commit", stage="setup")

        origins = {
            "mirror": settings.upstream_ref,
            "integration": start_commit,
            "production": start_commit,
        }
        for role, branch in settings.managed_branches.items():
            if self.refs.branch_exists(branch):
                logger.warning(f"{branch} branch already exists")
                report.existing_branches.append(branch)
                continue
            self.refs.create_branch(branch, origins[role])
            logger.info(f"Created {branch} ({role})")
            report.created_branches.append(branch)

        if self.refs.has_remote(settings.origin_remote):
            for branch in report.created_branches:
                try:
                    self.refs.push(settings.origin_remote, branch)
                except PushRejected as e:
                    logger.warning(f"Could not push {branch}: {e.message}")
                    report.push_failures.append(branch)
        else:
            logger.warning(f"Remote '{settings.origin_remote}' not found; branches not pushed")

        templates = [
            (settings.protected_file, PROTECTED_TEMPLATE),
            (settings.custom_changes_file, CUSTOM_CHANGES_TEMPLATE),
        ]
        for name, content in templates:
            path = self.root / name
            if not path.exists():
                path.write_text(content, encoding="utf-8")
                report.written_files.append(name)
                logger.info(f"Created {name}")

        self._exclude([settings.changelog_file])
        return report

    def _exclude(self, patterns: List[str]) -> None:
        """Keep tool-owned files out of ``git status``."""
        exclude = self.refs.git_dir() / "info" / "exclude"
        exclude.parent.mkdir(parents=True, exist_ok=True)
        existing = exclude.read_text(encoding="utf-8").splitlines() if exclude.exists() else []
        missing = [f"/{p}" for p in patterns if f"/{p}" not in existing]
        if missing:
            with exclude.open("a", encoding="utf-8") as f:
                f.write("\n# forksync\n" + "\n".join(missing) + "\n")

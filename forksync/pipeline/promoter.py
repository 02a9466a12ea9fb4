"""
Promoter — Merge the integration branch into production, gated.

Production only moves when the test gate said ``passed`` (or ``skipped``,
unless ``require_tests`` is set) and, in manual mode, the operator typed
``yes``. Declining is a normal outcome, not an error.
"""

from __future__ import annotations

import logging
from typing import Callable, List, Optional

from ..config.settings import SyncSettings
from ..errors import MergeConflict, TestFailure
from ..git.refs import RefStore
from ..models.session import SyncSession
from .backup import BackupManager

logger = logging.getLogger(__name__)

CONFIRM_PROMPT = "Have you reviewed changes and confirmed tests pass? (yes/no)"


class Promoter:
    """Advances production from integration."""

    def __init__(
        self,
        refs: RefStore,
        backups: BackupManager,
        settings: SyncSettings,
        confirm: Optional[Callable[[str], bool]] = None,
    ):
        self.refs = refs
        self.backups = backups
        self.settings = settings
        self.confirm = confirm or (lambda prompt: False)

    def needs_promotion(self) -> bool:
        return not self.refs.is_ancestor(
            f"refs/heads/{self.settings.integration_branch}",
            f"refs/heads/{self.settings.production_branch}",
        )

    def rollback_hint(self, session: SyncSession) -> List[str]:
        integration = self.settings.integration_branch
        backup = session.backup_for("integration")
        if backup is None:
            return [f"git log {integration} -5 --oneline", "forksync backups"]
        return [
            f"forksync rollback {backup.name}",
            "# or by hand:",
            f"git checkout {integration}",
            f"git reset --hard {backup.name}",
            f"git push --force-with-lease {self.settings.origin_remote} {integration}",
        ]

    def check_gate(self, session: SyncSession) -> None:
        """Fail closed: raise unless the test result allows promotion."""
        result = session.test_result
        if result == "passed":
            return
        if result == "skipped" and not self.settings.require_tests:
            logger.warning("Promoting without verification: no test command was found")
            return
        reason = {
            "failed": "Tests failed on the integration branch",
            "skipped": "No verification command found and require_tests is set",
        }.get(result or "", "Tests were not run")
        session.halted_stage = "test"
        raise TestFailure(
            f"{reason}; {self.settings.production_branch} left untouched",
            remediation=self.rollback_hint(session),
        )

    def promote(self, session: SyncSession) -> bool:
        """Returns True if production was advanced."""
        self.check_gate(session)

        integration = self.settings.integration_branch
        production = self.settings.production_branch

        if not session.auto:
            logger.warning(f"Ready to promote {integration} → {production}")
            if not self.confirm(CONFIRM_PROMPT):
                logger.info(f"Promotion to {production} skipped. {integration} is ready for review.")
                return False

        backup = self.backups.snapshot("production", production, session.timestamp)
        session.record_backup(backup)

        self.refs.checkout(production)
        message = f"Promote: {integration} to {production} ({session.date})\n\n"
        if session.test_result == "passed":
            message += "Tests passed, promoting staged upstream changes."
        else:
            message += "No verification command found; promoted without tests."
        outcome = self.refs.merge_no_ff(f"refs/heads/{integration}", message)
        if not outcome.merged:
            session.halted_stage = "promote"
            raise MergeConflict(
                f"Promotion merge into {production} conflicted",
                paths=outcome.conflicts,
                backup_tag=backup.name,
                remediation=[
                    "git merge --abort",
                    f"git reset --hard {backup.name}",
                    f"# {production} carries commits not in {integration}; reconcile them first",
                ],
            )

        self.refs.push(self.settings.origin_remote, production)
        session.promoted = True
        logger.info(f"Promoted {integration} into {production}")
        return True

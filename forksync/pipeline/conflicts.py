"""
Conflict Resolver — Per-file resolution of a halted integration merge.

Each conflicting path gets one action chosen at runtime:

    keep-local     take our side (the fork's version) for this path
    keep-incoming  take their side (upstream's version) for this path
    manual         edit the file, then re-scan for conflict markers
    view-diff      show the diff and ask again (changes nothing)
    skip           leave the path unresolved for now
    abort          undo the whole merge, back to the pre-merge tip

All actions go through ``ConflictResolver.apply``. The merge commit is
only made once no path is left unresolved.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional

from ..config.protected import ProtectedPathEntry, is_protected
from ..config.settings import SyncSettings
from ..errors import MergeConflict
from ..git.refs import RefStore
from ..models.session import ConflictEntry
from ..persistence.changelog import ChangelogWriter

logger = logging.getLogger(__name__)

MARKER_PREFIXES = ("<<<<<<<", ">>>>>>>")
DIFF_PREVIEW_LINES = 50


class ResolutionAction(str, Enum):
    KEEP_LOCAL = "keep-local"
    KEEP_INCOMING = "keep-incoming"
    MANUAL = "manual"
    VIEW_DIFF = "view-diff"
    SKIP = "skip"
    ABORT = "abort"


class StepStatus(str, Enum):
    RESOLVED = "resolved"
    UNCHANGED = "unchanged"
    REPROMPT = "reprompt"
    ABORTED = "aborted"


@dataclass
class StepResult:
    status: StepStatus
    detail: str = ""


@dataclass
class FileContext:
    """What the operator sees before choosing an action."""

    path: str
    sections: int
    local_change: Optional[str]
    incoming_change: Optional[str]
    protected: bool


@dataclass
class ResolutionReport:
    entries: List[ConflictEntry] = field(default_factory=list)
    aborted: bool = False

    @property
    def unresolved(self) -> List[ConflictEntry]:
        return [e for e in self.entries if not e.resolved]

    @property
    def complete(self) -> bool:
        return not self.aborted and not self.unresolved


def count_markers(text: str) -> int:
    return sum(1 for line in text.splitlines() if line.startswith("<<<<<<<"))


def has_markers(text: str) -> bool:
    return any(line.startswith(MARKER_PREFIXES) for line in text.splitlines())


class ConflictResolver:
    """Resolves the paths of an in-progress merge one by one."""

    def __init__(
        self,
        refs: RefStore,
        settings: SyncSettings,
        protected: Optional[List[ProtectedPathEntry]] = None,
        editor: Optional[Callable[[Path], None]] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        changelog: Optional[ChangelogWriter] = None,
    ):
        self.refs = refs
        self.settings = settings
        self.changelog = changelog or ChangelogWriter(refs.root / settings.changelog_file)
        self.resolved: List[ConflictEntry] = []
        self.protected = protected or []
        self.editor = editor
        self.confirm = confirm or (lambda prompt: False)

    def pending(self) -> List[ConflictEntry]:
        return [
            ConflictEntry(path=p, protected=is_protected(p, self.protected))
            for p in self.refs.conflicted_paths()
        ]

    def context(self, entry: ConflictEntry) -> FileContext:
        file_path = self.refs.root / entry.path
        try:
            sections = count_markers(file_path.read_text(encoding="utf-8", errors="replace"))
        except FileNotFoundError:
            sections = 0
        return FileContext(
            path=entry.path,
            sections=sections,
            local_change=self.refs.last_change("HEAD", entry.path),
            incoming_change=self.refs.last_change(
                f"refs/heads/{self.settings.mirror_branch}", entry.path
            ),
            protected=entry.protected,
        )

    def apply(self, entry: ConflictEntry, action: ResolutionAction) -> StepResult:
        """Carry out one action on one path."""
        if action == ResolutionAction.KEEP_LOCAL:
            self.refs.checkout_side(entry.path, "ours")
            entry.resolution = "ours"
            self.resolved.append(entry)
            logger.info(f"Kept local version of {entry.path}")
            return StepResult(StepStatus.RESOLVED)

        if action == ResolutionAction.KEEP_INCOMING:
            self.refs.checkout_side(entry.path, "theirs")
            entry.resolution = "theirs"
            self.resolved.append(entry)
            logger.info(f"Accepted upstream version of {entry.path}")
            return StepResult(StepStatus.RESOLVED)

        if action == ResolutionAction.MANUAL:
            return self._manual(entry)

        if action == ResolutionAction.VIEW_DIFF:
            lines = self.refs.diff_path(entry.path).splitlines()[:DIFF_PREVIEW_LINES]
            return StepResult(StepStatus.REPROMPT, "\n".join(lines))

        if action == ResolutionAction.SKIP:
            logger.info(f"Skipped {entry.path}")
            return StepResult(StepStatus.UNCHANGED)

        if action == ResolutionAction.ABORT:
            self.abort()
            return StepResult(StepStatus.ABORTED)

        raise ValueError(f"Unknown resolution action: {action}")

    def _manual(self, entry: ConflictEntry) -> StepResult:
        file_path = self.refs.root / entry.path
        if self.editor is None:
            raise RuntimeError("No editor available for manual resolution")
        self.editor(file_path)

        text = file_path.read_text(encoding="utf-8", errors="replace") if file_path.exists() else ""
        if has_markers(text):
            logger.warning(f"Conflict markers still present in {entry.path}")
            if not self.confirm(f"Conflict markers still present in {entry.path}. Mark as resolved anyway?"):
                return StepResult(StepStatus.UNCHANGED, "markers remain")
        self.refs.stage(entry.path)
        entry.resolution = "manual"
        self.resolved.append(entry)
        return StepResult(StepStatus.RESOLVED)

    def abort(self) -> None:
        """Undo the in-progress merge; fall back to the latest integration backup."""
        if self.refs.merge_abort():
            logger.warning("Merge aborted")
            return

        tags = [t for t in self.refs.list_tags("backup") if t.name.startswith("backup/integration-")]
        if not tags:
            raise MergeConflict(
                "git merge --abort failed and no integration backup tag exists",
                paths=self.refs.conflicted_paths(),
                remediation=["git status", "git reset --hard ORIG_HEAD"],
            )
        target = tags[0]
        logger.warning(f"git merge --abort failed; resetting to {target.name}")
        self.refs.git("reset", "--hard", "--quiet", target.commit)

    def run(
        self,
        choose: Callable[[ConflictEntry, FileContext], ResolutionAction],
        show: Callable[[str], None] = lambda text: None,
    ) -> ResolutionReport:
        """Walk every conflicting path, asking ``choose`` for an action."""
        report = ResolutionReport(entries=self.pending())
        for entry in report.entries:
            while True:
                result = self.apply(entry, choose(entry, self.context(entry)))
                if result.status == StepStatus.REPROMPT:
                    show(result.detail)
                    continue
                if result.status == StepStatus.ABORTED:
                    report.aborted = True
                    return report
                break
        return report

    def complete(self) -> str:
        """Commit the merge, record it in the sync history, push the branch."""
        remaining = self.refs.conflicted_paths()
        if remaining:
            raise MergeConflict(
                f"{len(remaining)} conflict(s) remain unresolved",
                paths=remaining,
                remediation=["forksync resolve-conflicts"],
            )
        branch = self.refs.current_branch() or self.settings.integration_branch
        self.refs.commit_merge()
        commit = self.refs.rev_parse("HEAD") or ""
        self.changelog.append_resolution(branch, commit, self.resolved)
        self.refs.push(self.settings.origin_remote, branch)
        logger.info(f"Merge completed on {branch} ({commit[:12]})")
        return commit

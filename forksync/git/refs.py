"""
Ref Store — Branches, tags, and remotes of the fork repository.

A thin, typed wrapper over git plumbing. Read helpers return ``None`` or
``False`` when a ref is missing; mutating helpers raise
``GitCommandError`` so a failed ref update can never be mistaken for a
successful one.

## Usage

    from forksync.git.refs import RefStore, CommitRange

    refs = RefStore(Path("."))
    new = refs.count_commits(CommitRange("pristine-upstream", "upstream/main"))
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from ..errors import FetchError, GitCommandError, PushRejected
from .runner import CommandResult, CommandRunner, SubprocessRunner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CommitRange:
    """Commits reachable from ``head`` but not from ``base``."""

    base: str
    head: str

    def __str__(self) -> str:
        return f"{self.base}..{self.head}"


@dataclass
class MergeOutcome:
    """Result of a merge attempt."""

    merged: bool
    conflicts: List[str] = field(default_factory=list)
    output: str = ""


@dataclass
class TagRecord:
    """A tag as listed by ``for-each-ref``."""

    name: str
    commit: str
    created_at: str
    subject: str = ""


class RefStore:
    """Git operations for one working copy."""

    def __init__(
        self,
        root: Path,
        runner: Optional[CommandRunner] = None,
        timeout: int = 120,
    ):
        self.root = Path(root)
        self.runner = runner or SubprocessRunner()
        self.timeout = timeout

    # ─── Low-level ──────────────────────────────────────────

    def git(self, *args: str, timeout: Optional[int] = None) -> CommandResult:
        """Run a git command in the repository."""
        return self.runner.run(["git", *args], cwd=self.root, timeout=timeout or self.timeout)

    def _checked(self, *args: str, timeout: Optional[int] = None) -> CommandResult:
        result = self.git(*args, timeout=timeout)
        if not result.ok:
            raise GitCommandError(args, result.returncode, result.stderr or result.stdout)
        return result

    def _output(self, *args: str) -> Optional[str]:
        result = self.git(*args)
        if not result.ok:
            return None
        return result.stdout.strip()

    # ─── Repository & remotes ───────────────────────────────

    def is_repository(self) -> bool:
        return self.git("rev-parse", "--git-dir").ok

    def git_dir(self) -> Path:
        out = self._output("rev-parse", "--absolute-git-dir")
        return Path(out) if out else self.root / ".git"

    def remotes(self) -> List[str]:
        out = self._output("remote") or ""
        return [line.strip() for line in out.splitlines() if line.strip()]

    def has_remote(self, name: str) -> bool:
        return name in self.remotes()

    def remote_url(self, name: str) -> Optional[str]:
        return self._output("remote", "get-url", name)

    def add_remote(self, name: str, url: str) -> None:
        self._checked("remote", "add", name, url)

    def fetch(self, remote: str, timeout: int = 300) -> None:
        """Fetch a remote (including tags). Raises FetchError on failure."""
        logger.info(f"Fetching {remote}...")
        result = self.git("fetch", "--tags", remote, timeout=timeout)
        if not result.ok:
            raise FetchError(
                f"Failed to fetch from {remote}: {result.stderr.strip() or 'unknown error'}",
                remediation=["git remote -v", f"git fetch {remote}"],
            )

    # ─── Refs ───────────────────────────────────────────────

    def rev_parse(self, ref: str) -> Optional[str]:
        """Resolve a ref to a commit id, or None if it does not exist."""
        return self._output("rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}") or None

    def remote_tip(self, remote: str, branch: str) -> Optional[str]:
        return self.rev_parse(f"refs/remotes/{remote}/{branch}")

    def branch_exists(self, branch: str) -> bool:
        return self.git("show-ref", "--verify", "--quiet", f"refs/heads/{branch}").ok

    def current_branch(self) -> str:
        return self._output("branch", "--show-current") or ""

    def is_ancestor(self, ancestor: str, descendant: str) -> bool:
        """True if ``ancestor`` is reachable from ``descendant``."""
        result = self.git("merge-base", "--is-ancestor", ancestor, descendant)
        if result.returncode in (0, 1):
            return result.returncode == 0
        raise GitCommandError(
            ["merge-base", "--is-ancestor", ancestor, descendant],
            result.returncode,
            result.stderr,
        )

    def count_commits(self, commits: CommitRange) -> int:
        out = self._output("rev-list", "--count", str(commits))
        return int(out) if out else 0

    def subjects(
        self,
        commits: CommitRange,
        limit: int = 10,
        grep: Optional[str] = None,
    ) -> List[str]:
        """Commit subjects in the range, newest first."""
        args = ["log", f"-n{limit}", "--format=%s"]
        if grep:
            args += [f"--grep={grep}", "--regexp-ignore-case", "--extended-regexp"]
        args.append(str(commits))
        out = self._output(*args) or ""
        return [line for line in out.splitlines() if line.strip()]

    def parents(self, ref: str) -> List[str]:
        out = self._output("rev-list", "--parents", "-n1", ref) or ""
        return out.split()[1:]

    # ─── Working tree ───────────────────────────────────────

    def has_uncommitted_changes(self) -> bool:
        """Tracked-file changes only; untracked files do not count."""
        self.git("update-index", "-q", "--refresh")
        result = self.git("diff-index", "--quiet", "HEAD", "--")
        return result.returncode != 0

    def status_short(self) -> str:
        return self._output("status", "--short") or ""

    def checkout(self, branch: str) -> None:
        self._checked("checkout", "--quiet", branch)

    def create_branch(self, branch: str, start: str) -> None:
        self._checked("branch", branch, start)

    def reset_branch(self, branch: str, commit: str) -> None:
        """Point ``branch`` at ``commit``; hard-resets if it is checked out."""
        if self.current_branch() == branch:
            self._checked("reset", "--hard", "--quiet", commit)
        else:
            self._checked("branch", "--force", branch, commit)

    # ─── Merging ────────────────────────────────────────────

    def merge_ff_only(self, ref: str) -> bool:
        """Fast-forward the checked-out branch. False if not possible."""
        return self.git("merge", "--ff-only", "--quiet", ref).ok

    def merge_no_ff(self, ref: str, message: str) -> MergeOutcome:
        """
        Merge ``ref`` with a merge commit.

        Conflicts leave the merge in progress and are reported in the
        outcome; any other failure raises.
        """
        result = self.git("merge", "--no-ff", "-m", message, ref)
        if result.ok:
            return MergeOutcome(merged=True, output=result.output)

        conflicts = self.conflicted_paths()
        if conflicts:
            return MergeOutcome(merged=False, conflicts=conflicts, output=result.output)
        raise GitCommandError(["merge", "--no-ff", ref], result.returncode, result.output)

    def merge_in_progress(self) -> bool:
        return self.git("rev-parse", "--verify", "--quiet", "MERGE_HEAD").ok

    def conflicted_paths(self) -> List[str]:
        out = self._output("diff", "--name-only", "--diff-filter=U") or ""
        return [line for line in out.splitlines() if line.strip()]

    def conflict_stages(self, path: str) -> List[int]:
        """Index stages present for a conflicted path (1=base, 2=ours, 3=theirs)."""
        out = self._output("ls-files", "--unmerged", "--", path) or ""
        stages = set()
        for line in out.splitlines():
            # <mode> <object> <stage>\t<path>
            meta = line.split("\t", 1)[0].split()
            if len(meta) == 3:
                stages.add(int(meta[2]))
        return sorted(stages)

    def checkout_side(self, path: str, side: str) -> None:
        """Take one side of a conflicted path and stage it."""
        stage = 2 if side == "ours" else 3
        if stage not in self.conflict_stages(path):
            # Deleted on the chosen side
            self._checked("rm", "--quiet", "--", path)
            return
        self._checked("checkout", f"--{side}", "--", path)
        self.stage(path)

    def stage(self, path: str) -> None:
        self._checked("add", "--", path)

    def merge_abort(self) -> bool:
        return self.git("merge", "--abort").ok

    def commit_merge(self) -> None:
        self._checked("commit", "--no-edit", "--quiet")

    def diff_path(self, path: str) -> str:
        return self._output("diff", "--", path) or ""

    def last_change(self, ref: str, path: str) -> Optional[str]:
        return self._output("log", "-1", "--format=%h - %s (%an, %ar)", ref, "--", path) or None

    # ─── Pushing ────────────────────────────────────────────

    def push(self, remote: str, branch: str) -> None:
        logger.info(f"Pushing {branch} to {remote}")
        result = self.git("push", remote, f"refs/heads/{branch}:refs/heads/{branch}", timeout=300)
        if not result.ok:
            raise PushRejected(
                f"Push of {branch} to {remote} rejected: {result.stderr.strip()}",
                remediation=[f"git fetch {remote}", f"git log {remote}/{branch} -5 --oneline"],
            )

    def push_with_lease(self, remote: str, expected: Dict[str, Optional[str]]) -> None:
        """
        Force-push several branches in one atomic push.

        Each branch is leased against the commit we last saw on the
        remote. If any remote ref moved, nothing is updated.
        """
        args = ["push", "--atomic", remote]
        for branch, commit in expected.items():
            args.append(f"--force-with-lease=refs/heads/{branch}:{commit or ''}")
        for branch in expected:
            args.append(f"refs/heads/{branch}:refs/heads/{branch}")

        result = self.git(*args, timeout=300)
        if not result.ok:
            raise PushRejected(
                f"Remote {remote} rejected the lease push: {result.output}",
                remediation=[
                    f"git fetch {remote}",
                    "Inspect concurrent changes before retrying the rollback",
                ],
            )

    def push_tags(self, remote: str, tags: List[str]) -> bool:
        if not tags:
            return True
        refspecs = [f"refs/tags/{t}:refs/tags/{t}" for t in tags]
        result = self.git("push", remote, *refspecs, timeout=300)
        if not result.ok:
            logger.warning(f"Failed to push tags to {remote}: {result.stderr.strip()}")
        return result.ok

    # ─── Tags ───────────────────────────────────────────────

    def tag_exists(self, name: str) -> bool:
        return self.git("rev-parse", "--verify", "--quiet", f"refs/tags/{name}").ok

    def create_tag(self, name: str, commit: str, message: str) -> None:
        self._checked("tag", "--annotate", "--message", message, name, commit)

    def tag_created_at(self, name: str) -> Optional[str]:
        """ISO-8601 creation date of a tag (tagger date, or commit date if lightweight)."""
        return self._output("for-each-ref", "--format=%(creatordate:iso-strict)", f"refs/tags/{name}") or None

    def list_tags(self, prefix: str) -> List[TagRecord]:
        """Tags under ``refs/tags/<prefix>``, newest first."""
        out = self._output(
            "for-each-ref",
            "--sort=-refname",
            "--sort=-creatordate",
            "--format=%(refname)\t%(objectname)\t%(*objectname)\t%(creatordate:iso-strict)\t%(contents:subject)",
            f"refs/tags/{prefix}",
        ) or ""
        records = []
        for line in out.splitlines():
            parts = line.split("\t")
            if len(parts) < 4:
                continue
            refname, obj, peeled, created = parts[:4]
            subject = parts[4] if len(parts) > 4 else ""
            records.append(TagRecord(
                name=refname[len("refs/tags/"):],
                commit=peeled or obj,
                created_at=created,
                subject=subject,
            ))
        return records

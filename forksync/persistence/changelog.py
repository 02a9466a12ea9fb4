"""
Sync History — Append-only markdown record of sync sessions.

One section per session that changed something. Entries are never
edited, only appended. The file stays untracked (``forksync setup``
excludes it) so writing it never dirties the working tree.

## Entry format

    ## 2026-02-03 12:00 UTC (20260203-120000)

    - Upstream commit: 3f2a9c1d0b7e
    - New upstream commits: 4
    - Conflicts resolved: 0
    - Tests: passed (npm test)
    - Promoted: yes
    - Backups: backup/mirror-20260203-120000, backup/integration-20260203-120000
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional, Sequence

from ..models.session import ConflictEntry, SyncSession, session_timestamp

HEADER = "# Sync History\n\nAppended by `forksync sync` after every session that changed a branch.\n"


class ChangelogWriter:
    """
    Append-only writer for the sync history document.

    Usage:
        history = ChangelogWriter(repo_root / "SYNC_HISTORY.md")
        history.append(session)
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _ensure_exists(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        if not self.path.exists():
            self.path.write_text(HEADER, encoding="utf-8")

    def render(self, session: SyncSession) -> str:
        started = session.started_at.replace("T", " ")[:16]
        resolved = [c for c in session.conflict_files if c.resolved]
        tests = session.test_result or "not run"
        if session.test_command:
            tests += f" ({session.test_command})"

        lines: List[str] = [
            f"## {started} UTC ({session.timestamp})",
            "",
            f"- Mode: {session.mode}",
            f"- Upstream commit: {(session.upstream_commit or 'unknown')[:12]}",
            f"- New upstream commits: {session.new_commit_count}",
            f"- Conflicts resolved: {len(resolved)}",
        ]
        lines += [f"  - {c.path}: {c.resolution}" for c in resolved]
        lines += [
            f"- Tests: {tests}",
            f"- Promoted: {'yes' if session.promoted else 'no'}",
        ]
        if session.mirror_reset:
            lines.append("- Mirror was reset to upstream (stray commits kept in backup)")
        if session.halted_stage:
            lines.append(f"- Halted at: {session.halted_stage}")
        if session.backup_tags:
            lines.append(f"- Backups: {', '.join(t.name for t in session.backup_tags)}")
        return "\n".join(lines) + "\n"

    def render_resolution(
        self,
        branch: str,
        commit: str,
        entries: Sequence[ConflictEntry],
        now: Optional[datetime] = None,
    ) -> str:
        """Entry for a merge completed by resolving conflicts."""
        now = now or datetime.now(timezone.utc)
        resolved = [e for e in entries if e.resolved]
        lines = [
            f"## {now.strftime('%Y-%m-%d %H:%M')} UTC ({session_timestamp(now)}) conflict resolution",
            "",
            f"- Branch: {branch}",
            f"- Merge commit: {commit[:12]}",
            f"- Conflicts resolved: {len(resolved)}",
        ]
        lines += [f"  - {e.path}: {e.resolution}" for e in resolved]
        return "\n".join(lines) + "\n"

    def _write_entry(self, entry: str) -> str:
        self._ensure_exists()
        with self.path.open("a", encoding="utf-8") as f:
            f.write("\n" + entry)
        return entry

    def append(self, session: SyncSession) -> str:
        """Append one entry; returns the text written."""
        return self._write_entry(self.render(session))

    def append_resolution(self, branch: str, commit: str, entries: Sequence[ConflictEntry]) -> str:
        return self._write_entry(self.render_resolution(branch, commit, entries))

    def entries(self) -> List[str]:
        """Section headings, oldest first."""
        if not self.path.exists():
            return []
        return [
            line[3:].strip()
            for line in self.path.read_text(encoding="utf-8").splitlines()
            if line.startswith("## ")
        ]

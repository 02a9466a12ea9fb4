"""
Session Models — Pydantic schemas for one pipeline run.

A ``SyncSession`` exists only while a command runs. Its fields feed the
run summary printed at the end and the entry appended to the sync
history document; nothing here is persisted on its own.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

BranchRole = Literal["upstream", "mirror", "integration", "production"]
SyncMode = Literal["manual", "auto"]
TestResult = Literal["passed", "failed", "skipped"]
Resolution = Literal["unresolved", "ours", "theirs", "manual"]

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def session_timestamp(now: Optional[datetime] = None) -> str:
    """Timestamp embedded in tag names, e.g. ``20260203-120000``."""
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


class BackupTag(BaseModel):
    """Immutable snapshot of a branch tip, stored as an annotated git tag."""

    name: str
    created_at: str
    source_role: Optional[BranchRole] = None
    source_commit: str

    @property
    def short_commit(self) -> str:
        return self.source_commit[:12]


class ConflictEntry(BaseModel):
    """One conflicting path of an in-progress merge."""

    path: str
    resolution: Resolution = "unresolved"
    protected: bool = False

    @property
    def resolved(self) -> bool:
        return self.resolution != "unresolved"


class SyncSession(BaseModel):
    """One execution of the sync pipeline."""

    timestamp: str = Field(default_factory=session_timestamp)
    started_at: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    )
    mode: SyncMode = "manual"
    new_commit_count: int = 0
    upstream_commit: Optional[str] = None
    backup_tags: List[BackupTag] = Field(default_factory=list)
    conflict_files: List[ConflictEntry] = Field(default_factory=list)
    test_result: Optional[TestResult] = None
    test_command: Optional[str] = None
    promoted: bool = False
    mirror_reset: bool = False
    up_to_date: bool = False
    cancelled: bool = False
    halted_stage: Optional[str] = None

    # Post-promotion outcome
    build_ok: Optional[bool] = None
    marker_ok: Optional[bool] = None
    service_restarted: bool = False
    service_healthy: Optional[bool] = None
    notified: bool = False

    @property
    def auto(self) -> bool:
        return self.mode == "auto"

    @property
    def date(self) -> str:
        return self.started_at[:10]

    def record_backup(self, tag: BackupTag) -> None:
        self.backup_tags.append(tag)

    def backup_for(self, role: BranchRole) -> Optional[BackupTag]:
        """Most recent backup of ``role`` taken in this session."""
        for tag in reversed(self.backup_tags):
            if tag.source_role == role:
                return tag
        return None

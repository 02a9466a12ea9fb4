"""
Backup Manager — Named snapshots taken before any branch tip moves.

Backups are annotated tags:

    backup/<role>-<YYYYmmdd-HHMMSS>          one branch, before a sync step
    emergency/<YYYYmmdd-HHMMSS>/<role>       every branch, before a rollback

The ``emergency/<timestamp>`` prefix names the whole set; rolling back to
it returns each branch to its own tagged commit. Tags are never deleted
by this tool.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Dict, List, Optional

from dateutil import parser as date_parser

from ..errors import BackupNotFoundError, SyncEnvironmentError
from ..git.refs import RefStore, TagRecord
from ..models.session import BackupTag

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backup"
EMERGENCY_PREFIX = "emergency"

_BACKUP_RE = re.compile(r"^backup/(mirror|integration|production)-")
_EMERGENCY_RE = re.compile(r"^emergency/[^/]+/(mirror|integration|production)$")


def role_from_tag(name: str) -> Optional[str]:
    """Branch role encoded in a tag name, if any."""
    for pattern in (_BACKUP_RE, _EMERGENCY_RE):
        match = pattern.match(name)
        if match:
            return match.group(1)
    return None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class BackupManager:
    """Creates, verifies, lists, and resolves backup tags."""

    def __init__(self, refs: RefStore):
        self.refs = refs

    # ─── Creating ───────────────────────────────────────────

    def _unique(self, name: str) -> str:
        if not self.refs.tag_exists(name):
            return name
        n = 2
        while self.refs.tag_exists(f"{name}-{n}"):
            n += 1
        return f"{name}-{n}"

    def _tag(self, name: str, role: str, branch: str, commit: str, reason: str) -> BackupTag:
        message = f"forksync {reason}: {branch} ({role}) at {commit}"
        self.refs.create_tag(name, commit, message)
        tag = BackupTag(
            name=name,
            created_at=_now_iso(),
            source_role=role,
            source_commit=commit,
        )
        if not self.verify(tag):
            raise SyncEnvironmentError(f"Backup tag {name} does not point at {commit}")
        logger.info(f"Created backup tag {name} → {commit[:12]}")
        return tag

    def snapshot(self, role: str, branch: str, timestamp: str) -> BackupTag:
        """Tag the current tip of ``branch`` before it is changed."""
        commit = self.refs.rev_parse(f"refs/heads/{branch}")
        if not commit:
            raise SyncEnvironmentError(f"Cannot back up missing branch '{branch}'")
        name = self._unique(f"{BACKUP_PREFIX}/{role}-{timestamp}")
        return self._tag(name, role, branch, commit, "backup")

    def emergency_snapshot(self, branches: Dict[str, str], timestamp: str) -> List[BackupTag]:
        """Tag the tips of all given branches as one emergency set."""
        base = f"{EMERGENCY_PREFIX}/{timestamp}"
        n = 1
        while self.refs.list_tags(base if n == 1 else f"{base}-{n}"):
            n += 1
        set_name = base if n == 1 else f"{base}-{n}"

        tags = []
        for role, branch in branches.items():
            commit = self.refs.rev_parse(f"refs/heads/{branch}")
            if not commit:
                raise SyncEnvironmentError(f"Cannot snapshot missing branch '{branch}'")
            tags.append(self._tag(f"{set_name}/{role}", role, branch, commit, "emergency snapshot"))
        return tags

    def verify(self, tag: BackupTag) -> bool:
        return self.refs.rev_parse(f"refs/tags/{tag.name}") == tag.source_commit

    # ─── Reading ────────────────────────────────────────────

    def _from_record(self, record: TagRecord) -> BackupTag:
        created = record.created_at
        if created:
            created = date_parser.isoparse(created).isoformat()
        return BackupTag(
            name=record.name,
            created_at=created,
            source_role=role_from_tag(record.name),
            source_commit=record.commit,
        )

    def list_backups(self, limit: Optional[int] = None) -> List[BackupTag]:
        """All backup and emergency tags, most recent first."""
        records = self.refs.list_tags(BACKUP_PREFIX) + self.refs.list_tags(EMERGENCY_PREFIX)
        tags = [self._from_record(r) for r in records]
        tags.sort(key=lambda t: (t.created_at, t.name), reverse=True)
        return tags[:limit] if limit else tags

    def resolve_target(self, name: str) -> List[BackupTag]:
        """
        Resolve a rollback target.

        A plain tag yields one entry; an emergency set prefix yields one
        entry per role it captured.
        """
        name = name[len("refs/tags/"):] if name.startswith("refs/tags/") else name
        if self.refs.tag_exists(name):
            commit = self.refs.rev_parse(f"refs/tags/{name}")
            if commit:
                created = self.refs.tag_created_at(name)
                return [BackupTag(
                    name=name,
                    created_at=date_parser.isoparse(created).isoformat() if created else "",
                    source_role=role_from_tag(name),
                    source_commit=commit,
                )]

        members = [
            self._from_record(r)
            for r in self.refs.list_tags(name.rstrip("/"))
            if r.name.count("/") == name.rstrip("/").count("/") + 1
        ]
        members = [m for m in members if m.source_role]
        if members:
            return members

        raise BackupNotFoundError(
            f"Backup tag '{name}' not found",
            remediation=["forksync backups", "git tag -l 'backup/*'"],
        )

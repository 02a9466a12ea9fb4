"""
Health Check — Read-only report on the fork's sync state.

Each check yields a ``ComponentHealth``; the aggregate is the worst of
them. Nothing here changes a branch or a tag. The only network access is
a best-effort fetch of upstream so "behind" counts are current.

## Usage

    from forksync.observability.health import HealthChecker

    checker = HealthChecker(refs, settings)
    result = checker.check()

    if result.status == HealthStatus.UNHEALTHY:
        raise SystemExit(1)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from ..config.protected import load_protected
from ..config.settings import SyncSettings
from ..errors import FetchError
from ..git.refs import CommitRange, RefStore
from ..pipeline.backup import BACKUP_PREFIX
from ..reliability.lease import LEASE_FILENAME, SessionLease

logger = logging.getLogger(__name__)

# Mirror this many commits behind upstream (or more) is a failure
BEHIND_FAIL_THRESHOLD = 5
# Backup tags beyond this many are reported as candidates for cleanup
BACKUP_RETENTION = 30


class HealthStatus(str, Enum):
    """Health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Result of a single check."""

    name: str
    status: HealthStatus
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SystemHealth:
    """Aggregate of all checks."""

    status: HealthStatus
    timestamp: str
    duration_ms: float
    components: List[ComponentHealth]

    @property
    def healthy(self) -> bool:
        return self.status == HealthStatus.HEALTHY

    @property
    def errors(self) -> int:
        return sum(1 for c in self.components if c.status == HealthStatus.UNHEALTHY)

    @property
    def warnings(self) -> int:
        return sum(1 for c in self.components if c.status == HealthStatus.DEGRADED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "duration_ms": self.duration_ms,
            "healthy": self.healthy,
            "errors": self.errors,
            "warnings": self.warnings,
            "components": [
                {
                    "name": c.name,
                    "status": c.status.value,
                    "message": c.message,
                    "details": c.details,
                }
                for c in self.components
            ],
        }


def _ok(name: str, message: str, **details: Any) -> ComponentHealth:
    return ComponentHealth(name, HealthStatus.HEALTHY, message, details)


def _warn(name: str, message: str, **details: Any) -> ComponentHealth:
    return ComponentHealth(name, HealthStatus.DEGRADED, message, details)


def _fail(name: str, message: str, **details: Any) -> ComponentHealth:
    return ComponentHealth(name, HealthStatus.UNHEALTHY, message, details)


class HealthChecker:
    """
    Fork health checker.

    Checks remotes, branches, sync lag, backups, protected paths and
    session state, and provides aggregate status.
    """

    def __init__(self, refs: RefStore, settings: SyncSettings, fetch: bool = True):
        self.refs = refs
        self.settings = settings
        self.root = refs.root
        self.fetch = fetch

    def check(self) -> SystemHealth:
        """Run all health checks and return status."""
        start = time.time()
        components: List[ComponentHealth] = []

        components += self._check_remotes()
        components += self._check_branches()

        if self.fetch and self.refs.has_remote(self.settings.upstream_remote):
            try:
                self.refs.fetch(self.settings.upstream_remote)
            except FetchError as e:
                logger.debug(f"Health check fetch failed: {e.message}")
                components.append(_warn("fetch", "Could not fetch upstream; lag figures may be stale"))

        components += self._check_lag()
        components += self._check_backups()
        components += self._check_protected()
        components.append(self._check_custom_changes())
        components.append(self._check_lease())
        components.append(self._check_merge())

        statuses = [c.status for c in components]
        if HealthStatus.UNHEALTHY in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        return SystemHealth(
            status=overall,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            duration_ms=(time.time() - start) * 1000,
            components=components,
        )

    def _check_remotes(self) -> List[ComponentHealth]:
        results = []
        upstream = self.settings.upstream_remote
        if self.refs.has_remote(upstream):
            url = self.refs.remote_url(upstream) or ""
            expected = self.settings.upstream_url
            if expected and expected.rstrip("/") not in url:
                results.append(_warn("upstream_remote", f"Upstream remote points to: {url}", url=url, expected=expected))
            else:
                results.append(_ok("upstream_remote", "Upstream remote configured", url=url))
        else:
            results.append(_fail("upstream_remote", f"Remote '{upstream}' not found"))

        origin = self.settings.origin_remote
        if self.refs.has_remote(origin):
            results.append(_ok("origin_remote", "Origin remote configured", url=self.refs.remote_url(origin)))
        else:
            results.append(_fail("origin_remote", f"Remote '{origin}' not found"))
        return results

    def _check_branches(self) -> List[ComponentHealth]:
        results = []
        for role, branch in self.settings.managed_branches.items():
            name = f"branch_{role}"
            if self.refs.branch_exists(branch):
                results.append(_ok(name, f"Branch exists: {branch}"))
            else:
                results.append(_fail(name, f"Branch missing: {branch}"))
        return results

    def _behind(self, branch: str, ahead_ref: str) -> Optional[int]:
        if not self.refs.rev_parse(ahead_ref) or not self.refs.branch_exists(branch):
            return None
        return self.refs.count_commits(CommitRange(f"refs/heads/{branch}", ahead_ref))

    def _check_lag(self) -> List[ComponentHealth]:
        s = self.settings
        results = []

        behind = self._behind(s.mirror_branch, s.upstream_ref)
        if behind is not None:
            if behind == 0:
                results.append(_ok("mirror_lag", f"{s.mirror_branch} is up to date", behind=0))
            elif behind < BEHIND_FAIL_THRESHOLD:
                results.append(_warn("mirror_lag", f"{s.mirror_branch} is {behind} commits behind upstream", behind=behind))
            else:
                results.append(_fail(
                    "mirror_lag",
                    f"{s.mirror_branch} is {behind} commits behind upstream (sync needed!)",
                    behind=behind,
                ))

        pairs = [
            ("integration_lag", s.integration_branch, s.mirror_branch, ""),
            ("production_lag", s.production_branch, s.integration_branch, " (promotion needed)"),
        ]
        for name, branch, ahead, hint in pairs:
            behind = self._behind(branch, f"refs/heads/{ahead}")
            if behind is None:
                continue
            if behind == 0:
                results.append(_ok(name, f"{branch} is current with {ahead}", behind=0))
            else:
                results.append(_warn(name, f"{branch} is {behind} commits behind {ahead}{hint}", behind=behind))
        return results

    def _check_backups(self) -> List[ComponentHealth]:
        tags = self.refs.list_tags(BACKUP_PREFIX)
        if not tags:
            return [_warn("backups", "No backup tags found", count=0)]

        results = [_ok("backups", f"Found {len(tags)} backup tag(s)", count=len(tags), latest=tags[0].name)]
        old = len(tags) - BACKUP_RETENTION
        if old > 0:
            results.append(_warn("backup_retention", f"{old} old backup tags (consider cleanup)", old=old))
        return results

    def _check_protected(self) -> List[ComponentHealth]:
        path = self.root / self.settings.protected_file
        if not path.exists():
            return [_warn("protected_paths", f"{self.settings.protected_file} not found")]

        entries = load_protected(path)
        missing_dirs = [e.pattern for e in entries if e.kind == "dir" and not e.exists_in(self.root)]
        missing_files = [e.pattern for e in entries if e.kind == "file" and not e.exists_in(self.root)]
        details = {"entries": len(entries), "missing_dirs": missing_dirs, "missing_files": missing_files}

        if missing_dirs:
            return [_fail("protected_paths", f"Protected directory missing: {', '.join(missing_dirs)}", **details)]
        if missing_files:
            return [_warn("protected_paths", f"Protected file not found: {', '.join(missing_files)}", **details)]
        return [_ok("protected_paths", f"All {len(entries)} protected path(s) present", **details)]

    def _check_custom_changes(self) -> ComponentHealth:
        name = self.settings.custom_changes_file
        if (self.root / name).exists():
            return _ok("custom_changes", f"{name} exists")
        return _warn("custom_changes", f"{name} not found")

    def _check_lease(self) -> ComponentHealth:
        lease = SessionLease(self.refs.git_dir() / LEASE_FILENAME)
        record = lease.read()
        if record is None:
            return _ok("lease", "No session in progress")
        if lease.is_stale(record):
            return _warn("lease", f"Stale lease left by pid {record.get('pid')}; next session will break it", **record)
        return _warn("lease", f"Session in progress: {record.get('command')} (pid {record.get('pid')})", **record)

    def _check_merge(self) -> ComponentHealth:
        if not self.refs.merge_in_progress():
            return _ok("merge", "No merge in progress")
        conflicts = self.refs.conflicted_paths()
        return _fail(
            "merge",
            f"Merge in progress on {self.refs.current_branch()} with {len(conflicts)} conflict(s)",
            conflicts=conflicts,
        )

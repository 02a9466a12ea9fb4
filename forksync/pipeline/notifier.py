"""
Post-Promotion Notifier — Rebuild, verify, restart, and report.

Runs only after production actually moved. Nothing here can undo the
promotion: a failed build or a missing marker is reported as a
``BuildVerificationFailure`` warning and the remaining steps still run.

Steps, each optional:

1. install      ``install_command``
2. build        ``build_command`` (or ``pnpm build`` / ``npm run build``
                when package.json has a build script)
3. marker       ``custom_marker`` must appear somewhere under
                ``build_output_dir``, proving local modifications survived
4. restart      ``service_restart_command`` when
                ``service_detect_command`` succeeds (``{profile}`` expands)
5. health       ``health_url`` (HTTP < 400) or ``health_command``,
                polled ``health_attempts`` × ``health_interval``
6. notify       ``notify_url`` webhook POST, or ``notify_command`` with
                ``{channel}``, ``{target}``, ``{message}``

Hook commands run through ``sh -c`` so they may use pipes.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import httpx
import requests

from ..config.settings import SyncSettings
from ..errors import BuildVerificationFailure
from ..git.refs import CommitRange, RefStore
from ..git.runner import CommandResult, CommandRunner
from ..models.session import SyncSession
from ..reliability.polling import poll_until

logger = logging.getLogger(__name__)

NOTABLE_PATTERN = "feat|fix|breaking"
NOTABLE_LIMIT = 10
HTTP_TIMEOUT = 10
# Build outputs can be large; stop scanning after this many bytes per file
MARKER_SCAN_LIMIT = 5 * 1024 * 1024


def find_marker(directory: Path, marker: str) -> Optional[Path]:
    """First file under ``directory`` containing ``marker``."""
    if not directory.is_dir():
        return None
    needle = marker.encode("utf-8")
    for path in sorted(directory.rglob("*")):
        if not path.is_file():
            continue
        try:
            with path.open("rb") as f:
                if needle in f.read(MARKER_SCAN_LIMIT):
                    return path
        except OSError:
            continue
    return None


def _package_scripts(root: Path) -> Dict[str, Any]:
    path = root / "package.json"
    if not path.exists():
        return {}
    try:
        return json.loads(path.read_text(encoding="utf-8")).get("scripts") or {}
    except (ValueError, AttributeError):
        return {}


class PostPromotionNotifier:
    """Everything that happens after production advanced."""

    def __init__(
        self,
        runner: CommandRunner,
        refs: RefStore,
        settings: SyncSettings,
        sleep: Optional[Callable[[float], None]] = None,
    ):
        self.runner = runner
        self.refs = refs
        self.settings = settings
        self.root = refs.root
        self.sleep = sleep
        self.warnings: List[BuildVerificationFailure] = []

    def _shell(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        logger.debug(f"$ {command}")
        return self.runner.run(["sh", "-c", command], cwd=self.root, timeout=timeout)

    def _warn(self, message: str, remediation: Optional[List[str]] = None) -> None:
        warning = BuildVerificationFailure(message, remediation=remediation)
        self.warnings.append(warning)
        logger.warning(message)

    # ─── Build ──────────────────────────────────────────────

    def discover_build(self) -> Optional[str]:
        if self.settings.build_command:
            return self.settings.build_command
        if "build" in _package_scripts(self.root):
            if (self.root / "pnpm-lock.yaml").exists():
                return "pnpm build"
            return "npm run build"
        return None

    def build(self, session: SyncSession) -> None:
        if self.settings.install_command:
            logger.info(f"Installing dependencies: {self.settings.install_command}")
            result = self._shell(self.settings.install_command, timeout=self.settings.test_timeout)
            if not result.ok:
                self._warn(f"Install step failed (exit code {result.returncode})")

        command = self.discover_build()
        if command is None:
            logger.info("No build command configured; skipping rebuild")
            return

        logger.info(f"Rebuilding: {command}")
        result = self._shell(command, timeout=self.settings.test_timeout)
        session.build_ok = result.ok
        if not result.ok:
            self._warn(
                f"Build failed (exit code {result.returncode}); "
                f"{self.settings.production_branch} was promoted anyway",
                remediation=[command, "forksync backups   # find the production backup to roll back to"],
            )
            return

        marker = self.settings.custom_marker
        if not marker:
            return
        found = find_marker(self.root / self.settings.build_output_dir, marker)
        session.marker_ok = found is not None
        if found:
            logger.info(f"Custom marker '{marker}' found in {found.relative_to(self.root)}")
        else:
            self._warn(
                f"Custom marker '{marker}' not found under {self.settings.build_output_dir}/; "
                "local modifications may have been lost in the merge",
                remediation=[
                    f"grep -r '{marker}' {self.settings.build_output_dir}/",
                    f"git log {self.settings.production_branch} -5 --oneline",
                ],
            )

    # ─── Service ────────────────────────────────────────────

    def _http_healthy(self) -> bool:
        response = requests.get(self.settings.health_url, timeout=HTTP_TIMEOUT)
        return response.status_code < 400

    def _command_healthy(self) -> bool:
        command = self.settings.format_command(self.settings.health_command)
        return self._shell(command, timeout=60).ok

    def restart(self, session: SyncSession) -> None:
        restart = self.settings.format_command(self.settings.service_restart_command)
        if not restart:
            return

        detect = self.settings.format_command(self.settings.service_detect_command)
        if detect and not self._shell(detect, timeout=60).ok:
            logger.info("Service not running; skipping restart")
            return

        logger.info(f"Restarting service ({self.settings.profile})")
        result = self._shell(restart, timeout=120)
        if not result.ok:
            logger.warning(f"Service restart failed (exit code {result.returncode}): {result.output}")
            session.service_healthy = False
            return
        session.service_restarted = True

        if self.settings.health_url:
            check = self._http_healthy
        elif self.settings.health_command:
            check = self._command_healthy
        else:
            return

        kwargs: Dict[str, Any] = {}
        if self.sleep is not None:
            kwargs["sleep"] = self.sleep
        poll = poll_until(
            check,
            attempts=self.settings.health_attempts,
            interval=self.settings.health_interval,
            label="service health",
            **kwargs,
        )
        session.service_healthy = poll.ok
        if poll.ok:
            logger.info(f"Service healthy after {poll.attempts} check(s)")
        else:
            logger.warning("Service did not report healthy; check it manually")

    # ─── Notification ───────────────────────────────────────

    def notable_commits(self, session: SyncSession) -> List[str]:
        backup = session.backup_for("production")
        if backup is None:
            return []
        commits = CommitRange(backup.source_commit, f"refs/heads/{self.settings.production_branch}")
        notable = self.refs.subjects(commits, limit=NOTABLE_LIMIT, grep=NOTABLE_PATTERN)
        return notable or self.refs.subjects(commits, limit=NOTABLE_LIMIT)

    def build_message(self, session: SyncSession) -> str:
        lines = [
            "🔄 Upstream sync complete",
            "",
            f"📦 {session.new_commit_count} new upstream commit(s)",
            f"🧪 Tests: {session.test_result or 'not run'}",
            f"🚀 Promoted to {self.settings.production_branch}",
        ]
        if session.build_ok is False or session.marker_ok is False:
            lines.append("⚠️ Build verification failed")
        if session.service_healthy is False:
            lines.append("⚠️ Service not healthy after restart")

        notable = self.notable_commits(session)
        if notable:
            lines += ["", "Notable changes:"]
            lines += [f"- {subject}" for subject in notable]
        return "\n".join(lines)

    def notify(self, session: SyncSession) -> None:
        settings = self.settings
        if not (settings.notify_url or settings.notify_command):
            if settings.notify_target:
                logger.warning("Notification target set but no notify_url or notify_command; not sent")
            return

        message = self.build_message(session)
        if settings.notify_url:
            payload = {
                "channel": settings.notify_channel,
                "target": settings.notify_target,
                "text": message,
                "session": session.model_dump(),
            }
            try:
                response = httpx.post(
                    settings.notify_url,
                    json=payload,
                    timeout=HTTP_TIMEOUT,
                    headers={"User-Agent": "forksync/1.0"},
                )
            except httpx.HTTPError as e:
                logger.warning(f"Notification webhook failed: {e}")
                return
            if response.status_code >= 400:
                logger.warning(f"Notification webhook returned {response.status_code}")
                return
        else:
            command = settings.format_command(
                settings.notify_command,
                channel=settings.notify_channel,
                target=settings.notify_target or "",
                message=message.replace("'", "'\\''"),
            )
            result = self._shell(command, timeout=60)
            if not result.ok:
                logger.warning(f"Notification command failed (exit code {result.returncode})")
                return

        session.notified = True
        logger.info(f"Notification sent via {settings.notify_channel}")

    def run(self, session: SyncSession) -> List[BuildVerificationFailure]:
        if not session.promoted:
            logger.debug("Production not advanced; nothing to rebuild or announce")
            return []
        self.warnings = []
        self.build(session)
        self.restart(session)
        self.notify(session)
        return self.warnings

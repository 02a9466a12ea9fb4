"""
Settings — Branch layout, external commands, and notification targets.

Values come from three layers, later layers winning:

1. Built-in defaults (the fork layout created by ``forksync setup``)
2. ``.forksync.yaml`` in the repository root
3. Environment variables (``FORKSYNC_*``, plus ``LOG_FILE``)

## Example .forksync.yaml

    mirror_branch: pristine-upstream
    integration_branch: staging
    production_branch: custom/main
    test_command: npm test
    build_command: pnpm build
    custom_marker: apiId
    health_url: http://127.0.0.1:18789/health

## Usage

    from forksync.config.settings import SyncSettings

    settings = SyncSettings.load(repo_root)
    settings.branch_for("integration")   # "staging"
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from ..errors import SyncEnvironmentError

logger = logging.getLogger(__name__)

SETTINGS_FILE = ".forksync.yaml"

# Field name → environment variable
ENV_VARS: Dict[str, str] = {
    "upstream_remote": "FORKSYNC_UPSTREAM_REMOTE",
    "upstream_branch": "FORKSYNC_UPSTREAM_BRANCH",
    "origin_remote": "FORKSYNC_ORIGIN_REMOTE",
    "mirror_branch": "FORKSYNC_MIRROR_BRANCH",
    "integration_branch": "FORKSYNC_INTEGRATION_BRANCH",
    "production_branch": "FORKSYNC_PRODUCTION_BRANCH",
    "upstream_url": "FORKSYNC_UPSTREAM_URL",
    "log_file": "LOG_FILE",
    "profile": "FORKSYNC_PROFILE",
    "notify_target": "FORKSYNC_NOTIFY_TARGET",
    "notify_channel": "FORKSYNC_NOTIFY_CHANNEL",
    "notify_url": "FORKSYNC_NOTIFY_URL",
    "notify_command": "FORKSYNC_NOTIFY_COMMAND",
    "test_command": "FORKSYNC_TEST_COMMAND",
    "test_timeout": "FORKSYNC_TEST_TIMEOUT",
    "require_tests": "FORKSYNC_REQUIRE_TESTS",
    "install_command": "FORKSYNC_INSTALL_COMMAND",
    "build_command": "FORKSYNC_BUILD_COMMAND",
    "build_output_dir": "FORKSYNC_BUILD_OUTPUT_DIR",
    "custom_marker": "FORKSYNC_CUSTOM_MARKER",
    "service_detect_command": "FORKSYNC_SERVICE_DETECT_COMMAND",
    "service_restart_command": "FORKSYNC_SERVICE_RESTART_COMMAND",
    "health_command": "FORKSYNC_HEALTH_COMMAND",
    "health_url": "FORKSYNC_HEALTH_URL",
    "health_attempts": "FORKSYNC_HEALTH_ATTEMPTS",
    "health_interval": "FORKSYNC_HEALTH_INTERVAL",
    "lease_ttl": "FORKSYNC_LEASE_TTL",
}


@dataclass
class SyncSettings:
    """Everything the pipeline needs to know about the fork."""

    # Remotes and branches
    upstream_remote: str = "upstream"
    upstream_branch: str = "main"
    origin_remote: str = "origin"
    mirror_branch: str = "pristine-upstream"
    integration_branch: str = "staging"
    production_branch: str = "custom/main"
    upstream_url: Optional[str] = None  # expected URL, checked by health-check

    # Logging / automation profile
    log_file: str = "/tmp/forksync-sync.log"
    profile: str = "default"

    # Notification
    notify_target: Optional[str] = None
    notify_channel: str = "telegram"
    notify_url: Optional[str] = None
    notify_command: Optional[str] = None

    # Test gate
    test_command: Optional[str] = None
    test_timeout: int = 1800
    require_tests: bool = False

    # Post-promotion
    install_command: Optional[str] = None
    build_command: Optional[str] = None
    build_output_dir: str = "dist"
    custom_marker: Optional[str] = None
    service_detect_command: Optional[str] = None
    service_restart_command: Optional[str] = None
    health_command: Optional[str] = None
    health_url: Optional[str] = None
    health_attempts: int = 10
    health_interval: float = 3.0

    # Repository files
    protected_file: str = ".sync-protected"
    changelog_file: str = "SYNC_HISTORY.md"
    custom_changes_file: str = "CUSTOM_CHANGES.md"

    # Session lease
    lease_ttl: int = 3600

    @classmethod
    def load(cls, root: Path, environ: Optional[Dict[str, str]] = None) -> "SyncSettings":
        """Build settings from defaults, the settings file, and the environment."""
        env = os.environ if environ is None else environ
        values: Dict[str, Any] = {}

        settings_path = Path(root) / SETTINGS_FILE
        if settings_path.exists():
            with settings_path.open("r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise SyncEnvironmentError(f"{SETTINGS_FILE} must contain a mapping")
            known = {f.name for f in fields(cls)}
            for key, value in data.items():
                if key not in known:
                    logger.warning(f"{SETTINGS_FILE}: unknown setting '{key}' ignored")
                    continue
                values[key] = value
            logger.debug(f"Loaded {len(values)} setting(s) from {settings_path}")

        for name, var in ENV_VARS.items():
            raw = env.get(var)
            if raw is not None and raw != "":
                values[name] = raw

        return cls(**{k: _coerce(cls, k, v) for k, v in values.items()})

    # ─── Branch roles ───────────────────────────────────────

    @property
    def upstream_ref(self) -> str:
        """Remote-tracking ref of the upstream branch."""
        return f"refs/remotes/{self.upstream_remote}/{self.upstream_branch}"

    @property
    def upstream_display(self) -> str:
        return f"{self.upstream_remote}/{self.upstream_branch}"

    def branch_for(self, role: str) -> str:
        mapping = self.managed_branches
        if role not in mapping:
            raise ValueError(f"Unknown branch role: {role}")
        return mapping[role]

    @property
    def managed_branches(self) -> Dict[str, str]:
        """Role → branch for the three branches this tool writes."""
        return {
            "mirror": self.mirror_branch,
            "integration": self.integration_branch,
            "production": self.production_branch,
        }

    def format_command(self, template: Optional[str], **extra: str) -> Optional[str]:
        """Substitute ``{profile}`` (and any extras) into a command template."""
        if not template:
            return None
        return template.format(profile=self.profile, **extra)


def _coerce(cls: type, name: str, value: Any) -> Any:
    """Convert string values from env/YAML to the field's default type."""
    default = next(f.default for f in fields(cls) if f.name == name)
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        return str(value).lower() in ("true", "1", "yes")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    return value if value is None else str(value)

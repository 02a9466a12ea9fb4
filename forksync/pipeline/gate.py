"""
Test Gate — Run the project's verification command on the integration tip.

The command itself is opaque. Discovery order:

1. ``test_command`` setting (``FORKSYNC_TEST_COMMAND`` / .forksync.yaml)
2. ``package.json`` with a ``test`` script  → ``npm test``
3. ``Makefile`` with a ``test`` target      → ``make test``
4. pytest configuration                     → ``python -m pytest``

Exit code 0 is ``passed``; anything else (including a timeout) is
``failed``. No command at all is ``skipped`` — reported separately from
``passed`` so "no tests" is never mistaken for "tests passed".
"""

from __future__ import annotations

import json
import logging
import re
import shlex
import sys
from pathlib import Path
from typing import List, Optional

from ..config.settings import SyncSettings
from ..git.runner import CommandRunner
from ..models.session import SyncSession

logger = logging.getLogger(__name__)

OUTPUT_TAIL_LINES = 20


def _package_json_has_test(root: Path) -> bool:
    path = root / "package.json"
    if not path.exists():
        return False
    try:
        scripts = json.loads(path.read_text(encoding="utf-8")).get("scripts") or {}
    except (ValueError, AttributeError):
        return False
    return "test" in scripts


def _makefile_has_test(root: Path) -> bool:
    path = root / "Makefile"
    if not path.exists():
        return False
    return re.search(r"^test\s*:", path.read_text(encoding="utf-8", errors="replace"), re.MULTILINE) is not None


def _has_pytest_config(root: Path) -> bool:
    if (root / "pytest.ini").exists():
        return True
    pyproject = root / "pyproject.toml"
    if pyproject.exists() and "[tool.pytest" in pyproject.read_text(encoding="utf-8", errors="replace"):
        return True
    setup_cfg = root / "setup.cfg"
    return setup_cfg.exists() and "[tool:pytest]" in setup_cfg.read_text(encoding="utf-8", errors="replace")


class TestGate:
    """Pass/fail decision for promotion."""

    __test__ = False

    def __init__(self, runner: CommandRunner, root: Path, settings: SyncSettings):
        self.runner = runner
        self.root = Path(root)
        self.settings = settings

    def discover(self) -> Optional[List[str]]:
        """The verification command for this checkout, or None."""
        if self.settings.test_command:
            return shlex.split(self.settings.test_command)
        if _package_json_has_test(self.root):
            return ["npm", "test"]
        if _makefile_has_test(self.root):
            return ["make", "test"]
        if _has_pytest_config(self.root):
            return [sys.executable, "-m", "pytest"]
        return None

    def run(self, session: SyncSession) -> str:
        """Run the verification command and record the result on the session."""
        command = self.discover()
        if command is None:
            if (self.root / "tests").is_dir() or (self.root / "test").is_dir():
                logger.warning("Test directory exists but no automated test runner configured")
            logger.warning("No verification command found; tests SKIPPED")
            session.test_result = "skipped"
            return "skipped"

        session.test_command = " ".join(command)
        logger.info(f"Running {session.test_command}...")
        result = self.runner.run(command, cwd=self.root, timeout=self.settings.test_timeout)

        output = (result.stdout + result.stderr).splitlines()
        logger.debug("\n".join(output))
        for line in output[-OUTPUT_TAIL_LINES:]:
            logger.info(f"  | {line}")

        session.test_result = "passed" if result.ok else "failed"
        if result.ok:
            logger.info("Tests passed")
        else:
            logger.error(f"Tests failed (exit code {result.returncode})")
        return session.test_result

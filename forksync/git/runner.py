"""
Command Runner — The one seam through which external tools are invoked.

Every git, test, build, and service command in the pipeline goes through
a ``CommandRunner``. Pipeline logic never calls ``subprocess`` directly,
so tests can swap in a recording fake.

## Usage

    from forksync.git.runner import SubprocessRunner

    runner = SubprocessRunner()
    result = runner.run(["git", "rev-parse", "HEAD"], cwd=repo)
    if result.ok:
        print(result.stdout.strip())
"""

from __future__ import annotations

import logging
import os
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Union

logger = logging.getLogger(__name__)

# Exit codes used when the process never produced one
EXIT_TIMEOUT = 124
EXIT_NOT_FOUND = 127


@dataclass
class CommandResult:
    """Outcome of a single external command."""

    args: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        """Combined output, stderr first (git reports progress there)."""
        return (self.stderr.strip() + "\n" + self.stdout.strip()).strip()


class CommandRunner:
    """Interface: run(command, args) -> {returncode, stdout, stderr}."""

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        raise NotImplementedError


class SubprocessRunner(CommandRunner):
    """
    Real runner backed by ``subprocess.run``.

    Never raises on a non-zero exit. Timeouts and missing executables
    come back as failed results so callers handle one shape only.
    """

    def __init__(self, default_timeout: float = 300):
        self.default_timeout = default_timeout

    def run(
        self,
        args: Sequence[str],
        cwd: Optional[Union[str, Path]] = None,
        timeout: Optional[float] = None,
        env: Optional[Dict[str, str]] = None,
    ) -> CommandResult:
        cmd = list(args)
        full_env = None
        if env:
            full_env = os.environ.copy()
            full_env.update(env)

        logger.debug(f"$ {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                timeout=timeout or self.default_timeout,
                env=full_env,
            )
        except subprocess.TimeoutExpired as e:
            logger.warning(f"Command timed out after {e.timeout}s: {' '.join(cmd)}")
            return CommandResult(cmd, EXIT_TIMEOUT, "", f"timed out after {e.timeout}s")
        except FileNotFoundError:
            return CommandResult(cmd, EXIT_NOT_FOUND, "", f"command not found: {cmd[0]}")

        return CommandResult(cmd, result.returncode, result.stdout or "", result.stderr or "")

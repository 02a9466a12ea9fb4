"""
Shared fixtures for pipeline tests.

Builds a real fork layout in a temporary directory:

    upstream.git   bare repository standing in for the upstream project
    upstream-work  clone used to author new upstream commits
    origin.git     bare repository standing in for the fork's remote
    fork           the working copy forksync operates on

The fork carries one local modification (``custom.txt``) on the
integration and production branches. Tests are skipped when git is not
installed.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional

import pytest

from forksync.config.settings import SyncSettings
from forksync.git.runner import CommandResult, CommandRunner
from forksync.logging_config import HumanFormatter, JSONFormatter

GIT_AVAILABLE = shutil.which("git") is not None

requires_git = pytest.mark.skipif(not GIT_AVAILABLE, reason="git is not installed")


def run_git(cwd: Path, *args: str) -> str:
    """Run git for test setup; fail loudly on error."""
    result = subprocess.run(["git", *args], cwd=cwd, capture_output=True, text=True)
    if result.returncode != 0:
        raise AssertionError(f"git {' '.join(args)} failed in {cwd}: {result.stderr}")
    return result.stdout.strip()


class ForkRepo:
    """Handles to the four repositories of a fork layout."""

    def __init__(self, base: Path):
        self.base = base
        self.upstream_bare = base / "upstream.git"
        self.upstream_work = base / "upstream-work"
        self.origin_bare = base / "origin.git"
        self.work = base / "fork"
        self._counter = 0

    # ─── Authoring ──────────────────────────────────────────

    def _write(self, repo: Path, files: Dict[str, str]) -> None:
        for name, content in files.items():
            path = repo / name
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content, encoding="utf-8")
            run_git(repo, "add", "--", name)

    def upstream_commit(self, files: Dict[str, str], message: str) -> str:
        """Commit to upstream main and publish it."""
        self._write(self.upstream_work, files)
        run_git(self.upstream_work, "commit", "--quiet", "-m", message)
        run_git(self.upstream_work, "push", "--quiet", "origin", "main")
        return run_git(self.upstream_work, "rev-parse", "HEAD")

    def upstream_commits(self, count: int, prefix: str = "feat: change") -> List[str]:
        commits = []
        for _ in range(count):
            self._counter += 1
            n = self._counter
            commits.append(self.upstream_commit({f"upstream-{n}.txt": f"{n}\n"}, f"{prefix} {n}"))
        return commits

    def fork_commit(self, branch: str, files: Dict[str, str], message: str, push: bool = True) -> str:
        """Commit to a fork branch, then return to main."""
        run_git(self.work, "checkout", "--quiet", branch)
        self._write(self.work, files)
        run_git(self.work, "commit", "--quiet", "-m", message)
        commit = run_git(self.work, "rev-parse", "HEAD")
        if push:
            run_git(self.work, "push", "--quiet", "origin", branch)
        run_git(self.work, "checkout", "--quiet", "main")
        return commit

    # ─── Inspection ─────────────────────────────────────────

    def rev(self, ref: str) -> str:
        return run_git(self.work, "rev-parse", f"{ref}^{{commit}}")

    def origin_rev(self, branch: str) -> str:
        return run_git(self.origin_bare, "rev-parse", f"refs/heads/{branch}")

    def parents(self, ref: str) -> List[str]:
        return run_git(self.work, "rev-list", "--parents", "-n1", ref).split()[1:]

    def tags(self, pattern: str = "*") -> List[str]:
        out = run_git(self.work, "tag", "-l", pattern)
        return [line for line in out.splitlines() if line]

    def show(self, ref: str, path: str) -> str:
        return run_git(self.work, "show", f"{ref}:{path}")

    def settings(self, **overrides) -> SyncSettings:
        values = {"log_file": "", "health_interval": 0.0}
        values.update(overrides)
        return SyncSettings(**values)


@pytest.fixture
def git_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Isolate git from the user's configuration."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.setenv("GIT_AUTHOR_NAME", "Fork Tester")
    monkeypatch.setenv("GIT_AUTHOR_EMAIL", "tester@example.com")
    monkeypatch.setenv("GIT_COMMITTER_NAME", "Fork Tester")
    monkeypatch.setenv("GIT_COMMITTER_EMAIL", "tester@example.com")
    monkeypatch.setenv("GIT_EDITOR", "true")
    monkeypatch.setenv("GIT_TERMINAL_PROMPT", "0")
    for var in ("FORKSYNC_TEST_COMMAND", "FORKSYNC_BUILD_COMMAND", "FORKSYNC_NOTIFY_URL", "LOG_FILE"):
        monkeypatch.delenv(var, raising=False)


@pytest.fixture
def fork(tmp_path: Path, git_env) -> ForkRepo:
    """A fork one commit ahead of upstream, with all managed branches published."""
    if not GIT_AVAILABLE:
        pytest.skip("git is not installed")

    repo = ForkRepo(tmp_path)

    for bare in (repo.upstream_bare, repo.origin_bare):
        run_git(tmp_path, "init", "--quiet", "--bare", str(bare))
        run_git(bare, "symbolic-ref", "HEAD", "refs/heads/main")

    repo.upstream_work.mkdir()
    run_git(repo.upstream_work, "init", "--quiet")
    run_git(repo.upstream_work, "symbolic-ref", "HEAD", "refs/heads/main")
    run_git(repo.upstream_work, "remote", "add", "origin", str(repo.upstream_bare))
    repo.upstream_commit(
        {"README.md": "upstream project\n", "app.txt": "alpha\nbeta\ngamma\n"},
        "Initial upstream commit",
    )

    repo.work.mkdir()
    run_git(repo.work, "init", "--quiet")
    run_git(repo.work, "remote", "add", "upstream", str(repo.upstream_bare))
    run_git(repo.work, "remote", "add", "origin", str(repo.origin_bare))
    run_git(repo.work, "fetch", "--quiet", "upstream")
    run_git(repo.work, "checkout", "--quiet", "-b", "main", "upstream/main")
    repo._write(repo.work, {"custom.txt": "apiId = fork-only\n"})
    run_git(repo.work, "commit", "--quiet", "-m", "Fork: add custom api id")

    run_git(repo.work, "branch", "pristine-upstream", "upstream/main")
    run_git(repo.work, "branch", "staging", "main")
    run_git(repo.work, "branch", "custom/main", "main")
    run_git(repo.work, "push", "--quiet", "origin", "main", "pristine-upstream", "staging", "custom/main")
    run_git(repo.work, "fetch", "--quiet", "origin")
    return repo


class FakeRunner(CommandRunner):
    """Records commands and answers them from a script of results."""

    def __init__(self, results: Optional[Dict[str, CommandResult]] = None, default: int = 0):
        self.calls: List[List[str]] = []
        self.results = results or {}
        self.default = default

    def run(self, args, cwd=None, timeout=None, env=None) -> CommandResult:
        cmd = list(args)
        self.calls.append(cmd)
        key = " ".join(cmd)
        for pattern, result in self.results.items():
            if pattern in key:
                return result
        return CommandResult(cmd, self.default)

    def commands(self) -> List[str]:
        return [" ".join(c) for c in self.calls]


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture(autouse=True)
def restore_root_logger():
    """CLI invocations reconfigure logging; drop the handlers they installed."""
    root = logging.getLogger()
    before, level = list(root.handlers), root.level
    yield
    for handler in list(root.handlers):
        if handler not in before and isinstance(handler.formatter, (HumanFormatter, JSONFormatter)):
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)

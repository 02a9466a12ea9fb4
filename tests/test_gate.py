"""
Tests for the Test Gate and the Promoter.
"""

import json
import sys
from unittest.mock import MagicMock

import pytest

from forksync.config.settings import SyncSettings
from forksync.errors import MergeConflict, TestFailure
from forksync.git.refs import MergeOutcome
from forksync.git.runner import CommandResult
from forksync.models.session import BackupTag, SyncSession
from forksync.pipeline.gate import TestGate
from forksync.pipeline.promoter import CONFIRM_PROMPT, Promoter

from conftest import FakeRunner


class TestDiscovery:
    """Tests for finding the verification command."""

    def test_configured_command_wins(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"scripts": {"test": "jest"}}))
        gate = TestGate(FakeRunner(), tmp_path, SyncSettings(test_command="pnpm test --run"))

        assert gate.discover() == ["pnpm", "test", "--run"]

    def test_package_json(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"scripts": {"test": "jest"}}))

        assert TestGate(FakeRunner(), tmp_path, SyncSettings()).discover() == ["npm", "test"]

    def test_package_json_without_test_script(self, tmp_path):
        (tmp_path / "package.json").write_text(json.dumps({"scripts": {"build": "tsc"}}))

        assert TestGate(FakeRunner(), tmp_path, SyncSettings()).discover() is None

    def test_makefile(self, tmp_path):
        (tmp_path / "Makefile").write_text("build:\n\techo build\n\ntest:\n\techo test\n")

        assert TestGate(FakeRunner(), tmp_path, SyncSettings()).discover() == ["make", "test"]

    def test_pytest_config(self, tmp_path):
        (tmp_path / "pyproject.toml").write_text("[tool.pytest.ini_options]\n")

        assert TestGate(FakeRunner(), tmp_path, SyncSettings()).discover() == [sys.executable, "-m", "pytest"]

    def test_nothing(self, tmp_path):
        assert TestGate(FakeRunner(), tmp_path, SyncSettings()).discover() is None


class TestGateRun:
    """Tests for running the gate."""

    def test_passed(self, tmp_path, fake_runner):
        gate = TestGate(fake_runner, tmp_path, SyncSettings(test_command="npm test", test_timeout=60))
        session = SyncSession()

        assert gate.run(session) == "passed"
        assert session.test_result == "passed"
        assert session.test_command == "npm test"
        assert fake_runner.commands() == ["npm test"]

    def test_failed(self, tmp_path):
        runner = FakeRunner({"npm test": CommandResult(["npm", "test"], 1, stderr="1 failing")})
        session = SyncSession()

        TestGate(runner, tmp_path, SyncSettings(test_command="npm test")).run(session)

        assert session.test_result == "failed"

    def test_timeout_is_failure(self, tmp_path):
        runner = FakeRunner({"npm": CommandResult(["npm"], 124, stderr="timed out")})
        session = SyncSession()

        TestGate(runner, tmp_path, SyncSettings(test_command="npm test")).run(session)

        assert session.test_result == "failed"

    def test_skipped(self, tmp_path, fake_runner):
        (tmp_path / "tests").mkdir()
        session = SyncSession()

        assert TestGate(fake_runner, tmp_path, SyncSettings()).run(session) == "skipped"
        assert fake_runner.calls == []


def _promoter(settings=None, needs=True, merged=True, confirm=None):
    refs = MagicMock()
    refs.is_ancestor.return_value = not needs
    refs.merge_no_ff.return_value = MergeOutcome(merged=merged, conflicts=[] if merged else ["app.txt"])
    backups = MagicMock()
    backups.snapshot.return_value = BackupTag(
        name="backup/production-20260203-120000",
        created_at="",
        source_role="production",
        source_commit="b" * 40,
    )
    return Promoter(refs, backups, settings or SyncSettings(), confirm), refs, backups


def _integration_backup():
    return BackupTag(
        name="backup/integration-20260203-120000",
        created_at="",
        source_role="integration",
        source_commit="a" * 40,
    )


class TestPromoter:
    """Tests for Promoter."""

    def test_needs_promotion(self):
        promoter, refs, _ = _promoter(needs=True)

        assert promoter.needs_promotion() is True
        refs.is_ancestor.assert_called_once_with("refs/heads/staging", "refs/heads/custom/main")

    def test_auto_promotes_on_pass(self):
        promoter, refs, backups = _promoter()
        session = SyncSession(mode="auto", test_result="passed")

        assert promoter.promote(session) is True
        assert session.promoted is True
        backups.snapshot.assert_called_once_with("production", "custom/main", session.timestamp)
        refs.checkout.assert_called_once_with("custom/main")
        refs.push.assert_called_once_with("origin", "custom/main")
        assert session.backup_for("production") is not None

    def test_failed_tests_block(self):
        promoter, refs, backups = _promoter()
        session = SyncSession(mode="auto", test_result="failed")
        session.record_backup(_integration_backup())

        with pytest.raises(TestFailure) as exc:
            promoter.promote(session)

        assert session.halted_stage == "test"
        backups.snapshot.assert_not_called()
        refs.merge_no_ff.assert_not_called()
        assert "forksync rollback backup/integration-20260203-120000" in exc.value.remediation

    def test_not_run_blocks(self):
        promoter, refs, _ = _promoter()

        with pytest.raises(TestFailure):
            promoter.promote(SyncSession(mode="auto"))

        refs.merge_no_ff.assert_not_called()

    def test_skipped_allowed(self):
        promoter, refs, _ = _promoter()
        session = SyncSession(mode="auto", test_result="skipped")

        assert promoter.promote(session) is True
        message = refs.merge_no_ff.call_args.args[1]
        assert "promoted without tests" in message

    def test_skipped_blocked_when_required(self):
        promoter, refs, _ = _promoter(settings=SyncSettings(require_tests=True))

        with pytest.raises(TestFailure):
            promoter.promote(SyncSession(mode="auto", test_result="skipped"))

    def test_manual_requires_yes(self):
        confirm = MagicMock(return_value=False)
        promoter, refs, backups = _promoter(confirm=confirm)
        session = SyncSession(mode="manual", test_result="passed")

        assert promoter.promote(session) is False
        confirm.assert_called_once_with(CONFIRM_PROMPT)
        backups.snapshot.assert_not_called()
        assert session.promoted is False
        assert session.halted_stage is None

    def test_manual_confirmed(self):
        promoter, _, _ = _promoter(confirm=lambda prompt: True)
        session = SyncSession(mode="manual", test_result="passed")

        assert promoter.promote(session) is True

    def test_promotion_conflict(self):
        promoter, refs, _ = _promoter(merged=False)
        session = SyncSession(mode="auto", test_result="passed")

        with pytest.raises(MergeConflict) as exc:
            promoter.promote(session)

        assert exc.value.paths == ["app.txt"]
        assert session.halted_stage == "promote"
        refs.push.assert_not_called()

    def test_rollback_hint_without_backup(self):
        promoter, _, _ = _promoter()

        assert promoter.rollback_hint(SyncSession()) == ["git log staging -5 --oneline", "forksync backups"]
